import logging
import os
import sys
import asana_sync
import utils
from action_io import ActionIO, EventContext
from asana_workspace import AsanaWorkspace
from enum import Enum
from data import Config, PRSyncSettings, TaskDescriptor
from github_workspace import GitHubWorkspace
from mattermost import MattermostClient, MattermostError

logger = logging.getLogger(__name__)


class Action(str, Enum):
    CREATE_ISSUE_TASK = "create-asana-issue-task"
    NOTIFY_PR_APPROVED = "notify-pr-approved"
    NOTIFY_PR_MERGED = "notify-pr-merged"
    CHECK_PR_MEMBERSHIP = "check-pr-membership"
    ADD_ASANA_COMMENT = "add-asana-comment"
    ADD_TASK_ASANA_PROJECT = "add-task-asana-project"
    CREATE_ASANA_PR_TASK = "create-asana-pr-task"
    CREATE_PR_TASK = "create-pr-task"
    GET_LATEST_REPO_RELEASE = "get-latest-repo-release"
    CREATE_ASANA_TASK = "create-asana-task"
    ADD_TASK_PR_DESCRIPTION = "add-task-pr-description"
    GET_ASANA_USER_ID = "get-asana-user-id"
    FIND_ASANA_TASK_ID = "find-asana-task-id"
    FIND_ASANA_TASK_IDS = "find-asana-task-ids"
    POST_COMMENT_ASANA_TASK = "post-comment-asana-task"
    SEND_MATTERMOST_MESSAGE = "send-mattermost-message"
    GET_ASANA_TASK_PERMALINK = "get-asana-task-permalink"
    MARK_ASANA_TASK_COMPLETE = "mark-asana-task-complete"
    ASANA_PR_SYNC = "asana-pr-sync"


def _task_ids_from_pr(io: ActionIO, ctx: EventContext):
    pr = ctx.require_pull_request()
    return pr, utils.find_task_ids(pr.body, io.get_input('trigger-phrase'), io.get_input('asana-project') or None)


def create_issue_task(io: ActionIO, ctx: EventContext, config: Config):
    issue = ctx.require_issue()
    project_id = io.get_input('asana-project', required=True)
    asana_ws = AsanaWorkspace(config)

    logger.info(f"Creating Asana task from issue {issue.get('title')}")
    descriptor = TaskDescriptor(
        name=f"Github Issue: {issue.get('title')}",
        notes=f"Description: {issue.get('body') or ''}",
        project_id=project_id,
    )
    creation = asana_ws.create_task_with_comment(descriptor, f"Link to Issue: {issue.get('html_url')}")
    if not creation.ok:
        io.set_failed(f"Failed to create Asana task for issue {issue.get('html_url')}")
        return
    io.set_output('taskId', creation.task_id)


def notify_pr_approved(io: ActionIO, ctx: EventContext, config: Config):
    pr, task_ids = _task_ids_from_pr(io, ctx)
    asana_ws = AsanaWorkspace(config)
    for task_id in task_ids:
        asana_ws.create_story(task_id, f"PR: {pr.html_url} has been approved", False)


def notify_pr_merged(io: ActionIO, ctx: EventContext, config: Config):
    _, task_ids = _task_ids_from_pr(io, ctx)
    is_complete = io.get_bool_input('is-complete')
    asana_ws = AsanaWorkspace(config)
    for task_id in task_ids:
        asana_ws.complete_task(task_id, is_complete)


def check_pr_membership(io: ActionIO, ctx: EventContext, config: Config):
    pr = ctx.require_pull_request()
    logger.info(f"PR opened/reopened by {pr.author_login}, checking membership in {pr.base_owner_login}")
    external = pr.head_owner_login != pr.base_owner_login
    logger.info(f"{pr.head_owner_login} {'does not belong' if external else 'belongs'} to {pr.base_owner_login}")
    io.set_output('external', external)


def add_asana_comment(io: ActionIO, ctx: EventContext, config: Config):
    pr, task_ids = _task_ids_from_pr(io, ctx)
    is_pinned = io.get_bool_input('is-pinned')
    asana_ws = AsanaWorkspace(config)
    for task_id in task_ids:
        asana_ws.create_story(task_id, f"PR: {pr.html_url}", is_pinned)


def add_task_asana_project(io: ActionIO, ctx: EventContext, config: Config):
    project_id = io.get_input('asana-project', required=True)
    section_id = io.get_input('asana-section') or None
    task_ids = utils.split_csv(io.get_input('asana-task-id', required=True))
    if not task_ids:
        io.set_failed("No valid task IDs provided")
        return

    asana_ws = AsanaWorkspace(config)
    for task_id in task_ids:
        asana_ws.add_task_to_project(task_id, project_id, section_id)


def _pr_sync_settings(io: ActionIO, config: Config, user_map=None) -> PRSyncSettings:
    return PRSyncSettings(
        project_id=io.get_input('asana-project', required=True),
        section_id=io.get_input('asana-section') or None,
        tags=utils.split_csv(io.get_input('asana-tags')),
        collaborators=utils.split_csv(io.get_input('asana-collaborators')),
        assignee=io.get_input('asana-task-assignee') or None,
        custom_fields=utils.parse_custom_fields(io.get_input('asana-task-custom-fields')),
        trigger_phrase=io.get_input('trigger-phrase'),
        state_field_gid=io.get_input('asana-pr-state-field') or None,
        no_autoclose=config.no_autoclose_projects,
        user_map=user_map or {},
    )


def create_pr_task(io: ActionIO, ctx: EventContext, config: Config):
    pr = ctx.require_pull_request()
    settings = _pr_sync_settings(io, config)
    logger.info(f"Creating Asana task from pull request {pr.title}")

    result = asana_sync.create_pr_task(AsanaWorkspace(config), pr, settings)
    if not result.task_gid:
        io.set_failed(f"Failed to create Asana task for PR #{pr.number}")
        return
    io.set_output('asanaTaskId', result.task_gid)
    io.set_output('parentTaskId', result.parent_task_gid or "")


def get_latest_repo_release(io: ActionIO, ctx: EventContext, config: Config):
    org = io.get_input('github-org', required=True)
    repo = io.get_input('github-repository', required=True)
    github_ws = GitHubWorkspace(config)
    try:
        version = github_ws.get_latest_release_tag(org, repo)
    except Exception as e:
        logger.error(f"{repo} can't find latest version: {e}")
        io.set_failed(f"can't find latest version for {repo}")
        return
    io.set_output('version', version)


def create_asana_task(io: ActionIO, ctx: EventContext, config: Config):
    descriptor = TaskDescriptor(
        name=io.get_input('asana-task-name', required=True),
        notes=io.get_input('asana-task-description', required=True),
        project_id=io.get_input('asana-project', required=True),
        section_id=io.get_input('asana-section') or None,
        tags=utils.split_csv(io.get_input('asana-tags')),
        followers=utils.split_csv(io.get_input('asana-collaborators')),
        assignee=io.get_input('asana-task-assignee') or None,
        custom_fields=utils.parse_custom_fields(io.get_input('asana-task-custom-fields')),
    )
    creation = AsanaWorkspace(config).create_task(descriptor)
    if not creation.ok:
        io.set_failed(f"Failed to create Asana task '{descriptor.name}'")
        return
    io.set_output('taskId', creation.task_id)
    io.set_output('duplicate', creation.duplicate)


def add_task_pr_description(io: ActionIO, ctx: EventContext, config: Config):
    org = io.get_input('github-org', required=True)
    repo = io.get_input('github-repository', required=True)
    pr_number = io.get_input('github-pr', required=True)
    project_id = io.get_input('asana-project', required=True)
    task_id = io.get_input('asana-task-id', required=True)

    github_ws = GitHubWorkspace(config)
    body = github_ws.get_pull_body(org, repo, pr_number)
    message = f"Task/Issue URL: {utils.task_url(project_id, task_id)}"
    github_ws.update_pull_body(org, repo, pr_number, f"{message} \n\n ----- \n{body}")


def get_asana_user_id(io: ActionIO, ctx: EventContext, config: Config):
    username = io.get_input('github-username') or ctx.require_pull_request().author_login
    logger.info(f"Looking up Asana user ID for {username}")
    try:
        user_map = GitHubWorkspace(config).get_user_map()
    except Exception as e:
        logger.error(f"Could not load user map: {e}")
        io.set_failed(str(e))
        return
    if username not in user_map:
        io.set_failed(f"User {username} not found in user map")
        return
    io.set_output('asanaUserId', user_map[username])


def find_asana_task_id(io: ActionIO, ctx: EventContext, config: Config):
    _, task_ids = _task_ids_from_pr(io, ctx)
    if not task_ids:
        io.set_failed("Can't find an Asana task with the expected prefix")
        return
    io.set_output('asanaTaskId', task_ids[0])


def find_asana_task_ids(io: ActionIO, ctx: EventContext, config: Config):
    _, task_ids = _task_ids_from_pr(io, ctx)
    if not task_ids:
        io.set_failed("Can't find any Asana tasks with the expected prefix")
        return
    io.set_output('asanaTaskIds', ",".join(task_ids))


def post_comment_asana_task(io: ActionIO, ctx: EventContext, config: Config):
    task_ids = utils.split_csv(io.get_input('asana-task-id'))
    comment = io.get_input('asana-task-comment')
    is_pinned = io.get_bool_input('asana-task-comment-pinned')
    if not task_ids:
        io.set_failed("No valid task IDs provided")
        return

    asana_ws = AsanaWorkspace(config)
    success = True
    for task_id in task_ids:
        logger.info(f"Adding comment to Asana task {task_id}")
        if asana_ws.create_story(task_id, comment, is_pinned) is None:
            logger.error(f"Failed to add comment to task {task_id}")
            success = False

    if success:
        logger.info(f"Comments added to {len(task_ids)} Asana task(s)")
    else:
        io.set_failed("Failed to post comments to one or more Asana tasks")


def send_mattermost_message(io: ActionIO, ctx: EventContext, config: Config):
    channel_name = io.get_input('mattermost-channel-name', required=True)
    team_id = io.get_input('mattermost-team-id', required=True)
    message = io.get_input('mattermost-message', required=True)

    client = MattermostClient(config)
    channel = client.get_channel_by_name(team_id, channel_name)
    if not channel:
        io.set_failed(f'Channel "{channel_name}" not found.')
        return
    logger.info(f"Channel {channel['id']} found")
    try:
        client.create_post(channel["id"], message)
    except MattermostError as e:
        logger.error(str(e))
        io.set_failed("Error sending message")


def get_asana_task_permalink(io: ActionIO, ctx: EventContext, config: Config):
    task_id = io.get_input('asana-task-id', required=True)
    try:
        permalink = AsanaWorkspace(config).get_permalink(task_id)
    except Exception as e:
        io.set_failed(f"Failed to retrieve task {task_id}: {e}")
        return
    io.set_output('asanaTaskPermalink', permalink)


def mark_asana_task_complete(io: ActionIO, ctx: EventContext, config: Config):
    task_ids = utils.split_csv(io.get_input('asana-task-id', required=True))
    is_complete = io.get_bool_input('is-complete')
    if not task_ids:
        io.set_failed("No valid task IDs provided")
        return

    asana_ws = AsanaWorkspace(config)
    failed = [task_id for task_id in task_ids if not asana_ws.complete_task(task_id, is_complete)]
    if failed:
        io.set_failed(f"Failed to update Asana task(s) {','.join(failed)}")


def asana_pr_sync(io: ActionIO, ctx: EventContext, config: Config):
    user_map = {}
    if config.github_token:
        try:
            user_map = GitHubWorkspace(config).get_user_map()
        except Exception as e:
            logger.warning(f"User map unavailable, review subtasks will be unassigned: {e}")
    settings = _pr_sync_settings(io, config, user_map)

    result = asana_sync.sync_pull_request(AsanaWorkspace(config), ctx, settings)
    if result.task_gid:
        io.set_output('asanaTaskId', result.task_gid)
    if result.failures:
        io.set_failed(f"Failed to sync {len(result.failures)} review subtask(s)")


HANDLERS = {
    Action.CREATE_ISSUE_TASK: create_issue_task,
    Action.NOTIFY_PR_APPROVED: notify_pr_approved,
    Action.NOTIFY_PR_MERGED: notify_pr_merged,
    Action.CHECK_PR_MEMBERSHIP: check_pr_membership,
    Action.ADD_ASANA_COMMENT: add_asana_comment,
    Action.ADD_TASK_ASANA_PROJECT: add_task_asana_project,
    Action.CREATE_ASANA_PR_TASK: create_pr_task,
    Action.CREATE_PR_TASK: create_pr_task,
    Action.GET_LATEST_REPO_RELEASE: get_latest_repo_release,
    Action.CREATE_ASANA_TASK: create_asana_task,
    Action.ADD_TASK_PR_DESCRIPTION: add_task_pr_description,
    Action.GET_ASANA_USER_ID: get_asana_user_id,
    Action.FIND_ASANA_TASK_ID: find_asana_task_id,
    Action.FIND_ASANA_TASK_IDS: find_asana_task_ids,
    Action.POST_COMMENT_ASANA_TASK: post_comment_asana_task,
    Action.SEND_MATTERMOST_MESSAGE: send_mattermost_message,
    Action.GET_ASANA_TASK_PERMALINK: get_asana_task_permalink,
    Action.MARK_ASANA_TASK_COMPLETE: mark_asana_task_complete,
    Action.ASANA_PR_SYNC: asana_pr_sync,
}


def dispatch(io: ActionIO, ctx: EventContext) -> None:
    name = io.get_input('action', required=True)
    logger.info(f"calling {name}")
    try:
        action = Action(name)
    except ValueError:
        io.set_failed(f"unexpected action {name}")
        return
    HANDLERS[action](io, ctx, utils.load_config(io))


def run(io: ActionIO, ctx: EventContext) -> ActionIO:
    try:
        dispatch(io, ctx)
    except Exception as e:
        logger.exception("Action failed")
        io.set_failed(str(e))
    return io


def main():
    debug = os.getenv('ACTIONS_STEP_DEBUG', '').lower() == 'true'
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    io = run(ActionIO.from_env(), EventContext.from_env())
    sys.exit(1 if io.failed else 0)


if __name__ == "__main__":
    main()
