"""Shared fixtures: a mocked Asana SDK, sample payloads and an in-memory Asana fake."""

import copy
import itertools
from unittest.mock import patch

import pytest

from action_io import EventContext
from asana_workspace import AsanaWorkspace
from data import AsanaTask, Config, PRSyncSettings, TaskCreation

PR_BODY = (
    "This PR fixes bugs.\n\n"
    "Closes https://app.asana.com/0/1111/2222\n"
    "Fixes https://app.asana.com/0/project/1111/task/3333/f\n"
    "Related: https://app.asana.com/0/1111/4444"
)

PULL_REQUEST_PAYLOAD = {
    "number": 123,
    "html_url": "https://github.com/test-owner/test-repo/pull/123",
    "title": "Test Pull Request",
    "body": PR_BODY,
    "state": "open",
    "merged": False,
    "draft": False,
    "user": {"login": "test-user"},
    "base": {"repo": {"owner": {"login": "test-owner"}}},
    "head": {"user": {"login": "test-user"}},
    "requested_reviewers": [],
    "requested_teams": [],
    "assignees": [],
}

ISSUE_PAYLOAD = {
    "html_url": "https://github.com/test-owner/test-repo/issues/456",
    "title": "Test Issue",
    "body": "This is a test issue description.",
    "user": {"login": "test-user"},
}


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("NO_AUTOCLOSE_PROJECTS", "USER_MAP_REPOSITORY", "USER_MAP_PATH",
                 "ASANA_TOKEN", "GITHUB_TOKEN", "MATTERMOST_TOKEN", "MATTERMOST_URL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config():
    return Config(
        asana_token="mock-asana-pat",
        github_token="mock-github-pat",
        mattermost_token="mock-mm-token",
        mattermost_url="https://chat.example.com",
    )


@pytest.fixture
def asana_sdk():
    """The `asana` module as seen by asana_workspace, with every API mocked."""
    with patch("asana_workspace.asana") as sdk:
        tasks = sdk.TasksApi.return_value
        tasks.create_task.return_value = {"gid": "5555", "name": "Newly Created Task"}
        tasks.get_tasks_for_section.return_value = []
        tasks.get_task.return_value = {
            "gid": "2222",
            "name": "Mock Asana Task",
            "permalink_url": "https://app.asana.com/0/1111/2222/f",
        }
        tasks.get_subtasks_for_task.return_value = []
        sdk.StoriesApi.return_value.create_story_for_task.return_value = {"gid": "story-1"}
        yield sdk


@pytest.fixture
def asana_ws(asana_sdk, config):
    return AsanaWorkspace(config)


@pytest.fixture
def pr_payload():
    return copy.deepcopy(PULL_REQUEST_PAYLOAD)


@pytest.fixture
def pr_context(pr_payload):
    return EventContext(event_name="pull_request", payload={"action": "opened", "pull_request": pr_payload})


@pytest.fixture
def issue_context():
    return EventContext(event_name="issues", payload={"action": "opened", "issue": copy.deepcopy(ISSUE_PAYLOAD)})


@pytest.fixture
def settings():
    return PRSyncSettings(project_id="1111", trigger_phrase="Closes")


class FakeAsanaWorkspace:
    """In-memory stand-in for AsanaWorkspace used by the orchestrator tests."""

    def __init__(self):
        self._ids = itertools.count(9000)
        self.tasks = {}
        self.stories = {}
        self.parents = {}
        self.projects = {}
        self.custom_fields = {}
        self.fail_link_for = set()
        self.fail_comment_for = set()
        self.membership_errors = set()
        self.descriptors = {}

    def add_task(self, name, notes="", project="1111", parent=None, completed=False):
        gid = str(next(self._ids))
        self.tasks[gid] = AsanaTask(gid=gid, name=name, notes=notes, completed=completed)
        self.projects[gid] = {project}
        self.stories[gid] = []
        if parent:
            self.parents[gid] = parent
        return gid

    def create_task(self, descriptor):
        gid = self.add_task(descriptor.name, descriptor.notes, descriptor.project_id)
        self.descriptors[gid] = descriptor
        return TaskCreation(task_id=gid)

    def create_task_with_comment(self, descriptor, comment):
        creation = self.create_task(descriptor)
        self.create_story(creation.task_id, comment, True)
        return creation

    def create_story(self, task_gid, text, is_pinned=False):
        if task_gid in self.fail_comment_for:
            return None
        self.stories.setdefault(task_gid, []).append(text)
        return f"story-{len(self.stories[task_gid])}"

    def create_subtask(self, parent_gid, child_gid):
        if parent_gid in self.fail_link_for:
            raise RuntimeError(f"cannot link under {parent_gid}")
        self.parents[child_gid] = parent_gid

    def update_task(self, task_gid, fields):
        task = self.tasks[task_gid]
        for key, value in fields.items():
            if key == "custom_fields":
                self.custom_fields.setdefault(task_gid, {}).update(value)
            else:
                setattr(task, key, value)
        return True

    def complete_task(self, task_gid, completed=True):
        return self.update_task(task_gid, {"completed": completed})

    def get_subtasks_for_task(self, task_gid):
        return [self.tasks[gid] for gid, parent in self.parents.items() if parent == task_gid]

    def find_task_by_story_text(self, project_gid, text):
        for gid, stories in self.stories.items():
            if project_gid in self.projects.get(gid, set()) and any(s.strip() == text for s in stories):
                return self.tasks[gid]
        return None

    def is_in_no_autoclose_projects(self, task_gid, no_autoclose):
        if task_gid in self.membership_errors:
            return False
        return bool(self.projects.get(task_gid, set()) & set(no_autoclose))

    def set_custom_field_value(self, task_gid, custom_field_gid, value):
        return self.update_task(task_gid, {"custom_fields": {custom_field_gid: value}})


@pytest.fixture
def fake_asana():
    return FakeAsanaWorkspace()
