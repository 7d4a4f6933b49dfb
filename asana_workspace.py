from data import Config, ConfigError, AsanaUser, AsanaTask, TaskCreation, TaskDescriptor
import asana
import logging
from itertools import islice
from typing import Any, Dict, FrozenSet, List, Optional

logger = logging.getLogger(__name__)

# getTasksForSection is read one page deep; tasks past it are not seen by the duplicate check.
SECTION_PAGE_SIZE = 100


def _task_from_raw(raw: Dict[str, Any]) -> AsanaTask:
    return AsanaTask(
        gid=raw["gid"],
        name=raw.get("name"),
        notes=raw.get("notes") or "",
        assignee=AsanaUser(gid=raw["assignee"]["gid"]) if raw.get("assignee") else None,
        completed=raw.get("completed", False),
        parent_gid=raw["parent"]["gid"] if raw.get("parent") else None,
    )


class AsanaWorkspace:
    def __init__(self, config: Config):
        if not config.asana_token:
            raise ConfigError("Asana token not configured")

        configuration = asana.Configuration()
        configuration.access_token = config.asana_token
        api_client = asana.ApiClient(configuration)
        self.tasks_api = asana.TasksApi(api_client)
        self.custom_fields_api = asana.CustomFieldsApi(api_client)
        self.stories_api = asana.StoriesApi(api_client)

    def find_task_in_section(self, section_gid: str, name: str) -> str:
        """Return the gid of the first task named `name` in the section, or "0"."""
        try:
            logger.info(f"Searching tasks in section {section_gid}")
            tasks = list(islice(
                self.tasks_api.get_tasks_for_section(
                    section_gid, {"limit": SECTION_PAGE_SIZE, "opt_fields": "name,gid"}
                ),
                SECTION_PAGE_SIZE,
            ))
        except Exception as e:
            logger.error(f"Exception when listing tasks in section {section_gid}: {e}")
            return "0"

        if not tasks:
            logger.info(f"There are no tasks in section {section_gid}")
            return "0"
        task = next((t for t in tasks if t.get("name") == name), None)
        if not task:
            logger.info(f"Task '{name}' not found in section {section_gid}")
            return "0"
        logger.info(f"Task '{name}' found in section {section_gid}: {task['gid']}")
        return task["gid"]

    def create_task(self, descriptor: TaskDescriptor) -> TaskCreation:
        if descriptor.section_id:
            logger.info(f"Checking for duplicate task before creating '{descriptor.name}'")
            existing_gid = self.find_task_in_section(descriptor.section_id, descriptor.name)
            if existing_gid != "0":
                logger.info(f"Task '{descriptor.name}' already exists ({existing_gid}), skipping")
                return TaskCreation(task_id=existing_gid, duplicate=True)

        task_data = {
            "name": descriptor.name,
            "notes": descriptor.notes,
            "projects": [descriptor.project_id],
            "tags": list(descriptor.tags),
            "followers": list(descriptor.followers),
        }
        if descriptor.assignee:
            task_data["assignee"] = descriptor.assignee
        if descriptor.due_on:
            task_data["due_on"] = descriptor.due_on
        if descriptor.custom_fields:
            task_data["custom_fields"] = descriptor.custom_fields
        if descriptor.section_id:
            task_data["memberships"] = [{"project": descriptor.project_id, "section": descriptor.section_id}]

        logger.info(f"Creating new task with options: {task_data}")
        try:
            response = self.tasks_api.create_task({"data": task_data}, {})
        except Exception as e:
            logger.error(f"Exception when creating task '{descriptor.name}': {e}")
            return TaskCreation(task_id="0")
        logger.info(f"Task created: {response['gid']}")
        return TaskCreation(task_id=response["gid"], duplicate=False)

    def create_task_with_comment(self, descriptor: TaskDescriptor, comment: str) -> TaskCreation:
        creation = self.create_task(descriptor)
        if not creation.ok or creation.duplicate:
            return creation
        if self.create_story(creation.task_id, comment, is_pinned=True) is None:
            logger.error(f"Task {creation.task_id} created but its comment could not be added")
        return creation

    def create_story(self, task_gid: str, text: str, is_pinned: bool = False) -> Optional[str]:
        try:
            body = {"data": {"text": text, "is_pinned": is_pinned}}
            response = self.stories_api.create_story_for_task(body, task_gid, {})
        except Exception as e:
            logger.error(f"Failed to add comment to task {task_gid}: {e}")
            return None
        if not response:
            logger.error(f"Empty response adding comment to task {task_gid}")
            return None
        logger.info(f"Added comment to task {task_gid}")
        return response.get("gid")

    def create_subtask(self, parent_gid: str, child_gid: str) -> None:
        """Make `child_gid` a subtask of `parent_gid`. Errors propagate to the caller."""
        try:
            self.tasks_api.set_parent_for_task({"data": {"parent": parent_gid}}, child_gid, {})
        except Exception as e:
            logger.error(f"Exception when setting parent {parent_gid} for task {child_gid}: {e}")
            raise
        logger.info(f"Task {child_gid} linked as subtask of {parent_gid}")

    def update_task(self, task_gid: str, fields: Dict[str, Any]) -> bool:
        try:
            self.tasks_api.update_task({"data": fields}, task_gid, {})
        except Exception as e:
            logger.error(f"Exception when updating task {task_gid} with {fields}: {e}")
            return False
        logger.info(f"Task {task_gid} updated: {sorted(fields)}")
        return True

    def complete_task(self, task_gid: str, completed: bool = True) -> bool:
        logger.info(f"Marking task {task_gid} {'complete' if completed else 'incomplete'}")
        return self.update_task(task_gid, {"completed": completed})

    def add_task_to_project(self, task_gid: str, project_gid: str, section_gid: Optional[str] = None) -> bool:
        if section_gid:
            logger.info(f"Adding task {task_gid} to section {section_gid} in project {project_gid}")
            data = {"project": project_gid, "section": section_gid}
        else:
            logger.info(f"Adding task {task_gid} to project {project_gid}")
            data = {"project": project_gid, "insert_after": None}
        try:
            self.tasks_api.add_project_for_task({"data": data}, task_gid)
            return True
        except Exception as e:
            logger.error(f"Failed to add task {task_gid} to project {project_gid}: {e}")
            return False

    def get_permalink(self, task_gid: str) -> str:
        raw = self.tasks_api.get_task(task_gid, {"opt_fields": "permalink_url"})
        return raw["permalink_url"]

    def get_subtasks_for_task(self, task_gid: str) -> List[AsanaTask]:
        try:
            subtasks_raw = self.tasks_api.get_subtasks_for_task(
                task_gid, {"opt_fields": "name,gid,notes,completed,assignee.gid"}
            )
            return [_task_from_raw(dict(st, parent={"gid": task_gid})) for st in subtasks_raw]
        except Exception as e:
            logger.error(f"Exception when listing subtasks of {task_gid}: {e}")
            return []

    def list_project_tasks(self, project_gid: str) -> List[AsanaTask]:
        try:
            raw = self.tasks_api.get_tasks_for_project(project_gid, {"opt_fields": "name,gid,notes,completed"})
            return [_task_from_raw(t) for t in raw]
        except Exception as e:
            logger.error(f"Error listing tasks for project {project_gid}: {e}")
            return []

    def list_task_stories(self, task_gid: str) -> List[str]:
        try:
            stories = self.stories_api.get_stories_for_task(task_gid, {"opt_fields": "text,type"})
            return [s.get("text") or "" for s in stories]
        except Exception as e:
            logger.error(f"Error listing stories for task {task_gid}: {e}")
            return []

    def find_task_by_story_text(self, project_gid: str, text: str) -> Optional[AsanaTask]:
        """First task of the project with a story whose whole text is `text`."""
        for task in self.list_project_tasks(project_gid):
            if any(story.strip() == text for story in self.list_task_stories(task.gid)):
                logger.info(f"Task {task.gid} references '{text}'")
                return task
        logger.info(f"No task in project {project_gid} references '{text}'")
        return None

    def is_in_no_autoclose_projects(self, task_gid: str, no_autoclose: FrozenSet[str]) -> bool:
        """True when the task belongs to a project exempt from automatic completion.

        Lookup failures allow autoclose.
        """
        if not no_autoclose:
            return False
        try:
            raw = self.tasks_api.get_task(task_gid, {"opt_fields": "memberships.project.gid,projects.gid"})
        except Exception as e:
            logger.error(f"Could not read memberships of task {task_gid}, allowing autoclose: {e}")
            return False
        project_gids = {p["gid"] for p in raw.get("projects") or []}
        project_gids.update(
            m["project"]["gid"] for m in raw.get("memberships") or [] if m.get("project")
        )
        return bool(project_gids & set(no_autoclose))

    def get_custom_field_enum_options(self, custom_field_gid: str) -> List[Dict[str, str]]:
        try:
            field = self.custom_fields_api.get_custom_field(
                custom_field_gid, {"opt_fields": "enum_options.name"}
            )
            return [{"gid": opt["gid"], "name": opt["name"]} for opt in field.get("enum_options") or []]
        except Exception as e:
            logger.error(f"Error fetching enum options for custom field {custom_field_gid}: {e}")
            return []

    def set_custom_field_value(self, task_gid: str, custom_field_gid: str, value: str) -> bool:
        """Set a text or enum custom field; enum options are resolved by name."""
        options = self.get_custom_field_enum_options(custom_field_gid)
        if options:
            option = next((o for o in options if o["name"] == value), None)
            if option is None:
                logger.error(f"Custom field {custom_field_gid} has no option named '{value}'")
                return False
            value = option["gid"]
        return self.update_task(task_gid, {"custom_fields": {custom_field_gid: value}})
