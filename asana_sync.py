import logging
import re
import utils
from action_io import EventContext
from asana_workspace import AsanaWorkspace
from typing import List, Optional
from data import (
    AsanaTask, PRData, PRState, PRSyncResult, PRSyncSettings, ReviewEvent, ReviewState,
    SubtaskResult, TaskDescriptor,
)

logger = logging.getLogger(__name__)

PR_TASK_NAME = "Community Pull Request: {title}"
PR_TASK_PRELUDE = "Description: "
PR_TASK_COMMENT = "Link to Pull Request: {url}"

REVIEW_SUBTASK_NAME = "{prefix} for PR #{number}: {title}"
REVIEW_SUBTASK_PATTERN = re.compile(r"^(Code review|Changes requested|Review comments) for PR #(?P<number>\d+)")
# Business days a reviewer has before the review subtask is due.
REVIEW_DUE_DAYS = 2
REVIEW_SUBTASK_NOTES = (
    "Please review the pull request {url}\n\n"
    "Reviewer: @{login}\n\n"
    "{title}"
)


def pr_task_name(pr: PRData) -> str:
    return PR_TASK_NAME.format(title=pr.title)


def pr_task_notes(pr: PRData) -> str:
    return f"{PR_TASK_PRELUDE}{pr.body}"


def review_subtask_name(pr: PRData, prefix: str = "Code review") -> str:
    return REVIEW_SUBTASK_NAME.format(prefix=prefix, number=pr.number, title=pr.title)


def match_review_subtask(subtask: AsanaTask, login: str) -> bool:
    """Whether `subtask` is the review subtask of `login`.

    Reviewers are linked to subtasks only through the subtask name and an
    `@login` mention in its notes.
    """
    if not REVIEW_SUBTASK_PATTERN.match(subtask.name or ""):
        return False
    return re.search(rf"@{re.escape(login)}(?![\w-])", subtask.notes or "") is not None


def collect_reviewers(pr: PRData) -> List[str]:
    """Requested reviewers, requested teams and assignees, each login once."""
    seen = []
    for login in pr.requested_reviewers + pr.requested_teams + pr.assignees:
        if login and login not in seen:
            seen.append(login)
    return seen


def determine_pr_state(pr: PRData, review_states: List[str]) -> PRState:
    if pr.merged:
        return PRState.MERGED
    if pr.state == "closed":
        return PRState.CLOSED
    if ReviewState.APPROVED.value in review_states:
        return PRState.APPROVED
    return PRState.DRAFT if pr.draft else PRState.OPEN


def update_pr_state(asana_ws: AsanaWorkspace, task_gid: str, state: PRState, settings: PRSyncSettings) -> None:
    if not settings.state_field_gid:
        return
    if not asana_ws.set_custom_field_value(task_gid, settings.state_field_gid, state.value):
        logger.error(f"Could not set state {state.value} on task {task_gid}")


def find_pr_task(asana_ws: AsanaWorkspace, pr: PRData, settings: PRSyncSettings) -> Optional[AsanaTask]:
    task = asana_ws.find_task_by_story_text(settings.project_id, PR_TASK_COMMENT.format(url=pr.html_url))
    if task is None:
        logger.warning(f"No Asana task found for PR #{pr.number} ({pr.html_url})")
    return task


def create_pr_task(asana_ws: AsanaWorkspace, pr: PRData, settings: PRSyncSettings) -> PRSyncResult:
    descriptor = TaskDescriptor(
        name=pr_task_name(pr),
        notes=pr_task_notes(pr),
        project_id=settings.project_id,
        section_id=settings.section_id,
        tags=settings.tags,
        followers=settings.collaborators,
        assignee=settings.assignee,
        custom_fields=settings.custom_fields,
    )
    creation = asana_ws.create_task_with_comment(descriptor, PR_TASK_COMMENT.format(url=pr.html_url))
    result = PRSyncResult(duplicate=creation.duplicate)
    if not creation.ok:
        logger.error(f"Could not create task for PR #{pr.number}")
        return result
    result.task_gid = creation.task_id

    references = utils.find_task_references(pr.body, settings.trigger_phrase)
    if references:
        parent_gid = references[0].task_id
        try:
            asana_ws.create_subtask(parent_gid, creation.task_id)
            result.parent_task_gid = parent_gid
        except Exception as e:
            logger.error(f"Could not link PR task {creation.task_id} under {parent_gid}: {e}")
    return result


def create_review_subtasks(
        asana_ws: AsanaWorkspace,
        pr: PRData,
        pr_task_gid: str,
        reviewers: List[str],
        settings: PRSyncSettings) -> List[SubtaskResult]:
    results = []
    for login in reviewers:
        descriptor = TaskDescriptor(
            name=review_subtask_name(pr),
            notes=REVIEW_SUBTASK_NOTES.format(url=pr.html_url, login=login, title=pr.title),
            project_id=settings.project_id,
            assignee=settings.user_map.get(login),
            due_on=utils.get_due_on(REVIEW_DUE_DAYS),
        )
        creation = asana_ws.create_task(descriptor)
        if not creation.ok:
            results.append(SubtaskResult(login, None, "failed", "create failed"))
            continue

        try:
            asana_ws.create_subtask(pr_task_gid, creation.task_id)
        except Exception as e:
            results.append(SubtaskResult(login, creation.task_id, "failed", f"link failed: {e}"))
            continue

        if asana_ws.create_story(creation.task_id, f"@{login} your review was requested") is None:
            results.append(SubtaskResult(login, creation.task_id, "failed", "comment failed"))
            continue
        results.append(SubtaskResult(login, creation.task_id, "created"))

    logger.info(f"[REVIEWERS] PR #{pr.number} – subtasks: {[(r.reviewer, r.status) for r in results]}")
    return results


def handle_opened(asana_ws: AsanaWorkspace, pr: PRData, settings: PRSyncSettings) -> PRSyncResult:
    result = create_pr_task(asana_ws, pr, settings)
    if not result.task_gid:
        return result
    result.state = determine_pr_state(pr, [])
    update_pr_state(asana_ws, result.task_gid, result.state, settings)
    result.subtasks = create_review_subtasks(asana_ws, pr, result.task_gid, collect_reviewers(pr), settings)
    logger.info(
        f"[OPEN] PR #{pr.number} '{pr.title}' – Task {result.task_gid}, parent {result.parent_task_gid}, "
        f"{len(result.subtasks)} review subtask(s)")
    return result


def handle_edited(asana_ws: AsanaWorkspace, pr: PRData, settings: PRSyncSettings) -> PRSyncResult:
    task = find_pr_task(asana_ws, pr, settings)
    if task is None:
        return PRSyncResult()
    asana_ws.update_task(task.gid, {"name": pr_task_name(pr), "notes": pr_task_notes(pr)})
    logger.info(f"[EDITED] PR #{pr.number} – Task {task.gid} re-synced")
    return PRSyncResult(task_gid=task.gid)


def handle_closed(asana_ws: AsanaWorkspace, pr: PRData, settings: PRSyncSettings) -> PRSyncResult:
    task = find_pr_task(asana_ws, pr, settings)
    if task is None:
        return PRSyncResult()
    result = PRSyncResult(task_gid=task.gid, state=determine_pr_state(pr, []))
    update_pr_state(asana_ws, task.gid, result.state, settings)

    for subtask in asana_ws.get_subtasks_for_task(task.gid):
        if subtask.completed or not REVIEW_SUBTASK_PATTERN.match(subtask.name or ""):
            continue
        if asana_ws.is_in_no_autoclose_projects(subtask.gid, settings.no_autoclose):
            result.subtasks.append(SubtaskResult("", subtask.gid, "skipped"))
            continue
        asana_ws.create_story(subtask.gid, f"Pull request {result.state.value.lower()}")
        status = "completed" if asana_ws.complete_task(subtask.gid) else "failed"
        result.subtasks.append(SubtaskResult("", subtask.gid, status))

    logger.info(f"[CLOSED] PR #{pr.number} – {result.state.value}, subtasks: "
                f"{[(r.task_gid, r.status) for r in result.subtasks]}")
    return result


def handle_review_requested(asana_ws: AsanaWorkspace, pr: PRData, settings: PRSyncSettings) -> PRSyncResult:
    # Reviewers that already have a subtask get another one.
    task = find_pr_task(asana_ws, pr, settings)
    if task is None:
        return PRSyncResult()
    subtasks = create_review_subtasks(asana_ws, pr, task.gid, collect_reviewers(pr), settings)
    return PRSyncResult(task_gid=task.gid, subtasks=subtasks)


def find_review_subtask(asana_ws: AsanaWorkspace, pr_task_gid: str, login: str) -> Optional[AsanaTask]:
    matches = [st for st in asana_ws.get_subtasks_for_task(pr_task_gid) if match_review_subtask(st, login)]
    open_matches = [st for st in matches if not st.completed]
    return (open_matches or matches or [None])[0]


def handle_review_submitted(
        asana_ws: AsanaWorkspace,
        pr: PRData,
        review: ReviewEvent,
        settings: PRSyncSettings) -> PRSyncResult:
    task = find_pr_task(asana_ws, pr, settings)
    if task is None:
        return PRSyncResult()
    result = PRSyncResult(task_gid=task.gid)
    login = review.reviewer_login

    subtask = find_review_subtask(asana_ws, task.gid, login)
    if subtask is None:
        logger.info(f"[REVIEW] PR #{pr.number} – no review subtask for @{login}")
        result.subtasks.append(SubtaskResult(login, None, "not_found"))
        return result

    if review.state == ReviewState.APPROVED:
        result.state = determine_pr_state(pr, [review.state.value])
        update_pr_state(asana_ws, task.gid, result.state, settings)
        if asana_ws.is_in_no_autoclose_projects(subtask.gid, settings.no_autoclose):
            result.subtasks.append(SubtaskResult(login, subtask.gid, "skipped"))
        else:
            asana_ws.create_story(subtask.gid, f"Pull request approved by @{login}")
            status = "completed" if asana_ws.complete_task(subtask.gid) else "failed"
            result.subtasks.append(SubtaskResult(login, subtask.gid, status))
    else:
        if review.state == ReviewState.CHANGES_REQUESTED:
            prefix, comment = "Changes requested", f"Changes requested by @{login}"
        else:
            prefix, comment = "Review comments", f"@{login} commented on the pull request"
        renamed = asana_ws.update_task(subtask.gid, {"name": review_subtask_name(pr, prefix)})
        commented = asana_ws.create_story(subtask.gid, comment) is not None
        status = "commented" if renamed and commented else "failed"
        result.subtasks.append(SubtaskResult(login, subtask.gid, status))

    logger.info(f"[REVIEW] PR #{pr.number} – @{login} {review.state.value}: {result.subtasks[-1].status}")
    return result


def sync_pull_request(asana_ws: AsanaWorkspace, ctx: EventContext, settings: PRSyncSettings) -> PRSyncResult:
    pr = ctx.require_pull_request()
    action = ctx.payload.get("action", "")
    logger.info(f"Event: {ctx.event_name}/{action}\nPR #{pr.number} Title: {pr.title}")

    if ctx.event_name == "pull_request_review":
        review = ctx.review_event()
        if action != "submitted" or review is None:
            logger.info(f"Ignoring review event {action}")
            return PRSyncResult()
        return handle_review_submitted(asana_ws, pr, review, settings)

    if action == "opened":
        return handle_opened(asana_ws, pr, settings)
    elif action == "edited":
        return handle_edited(asana_ws, pr, settings)
    elif action == "closed":
        return handle_closed(asana_ws, pr, settings)
    elif action in ("review_requested", "assigned"):
        return handle_review_requested(asana_ws, pr, settings)
    logger.info(f"Nothing to sync for pull request action {action!r}")
    return PRSyncResult()
