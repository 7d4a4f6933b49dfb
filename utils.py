import os
import json
import re
from datetime import date, timedelta
from typing import Dict, List, Optional
from data import Config, TaskReference
from dotenv import load_dotenv

import logging

logger = logging.getLogger(__name__)

ASANA_URL_PATTERN = (
    r"https://app\.asana\.com/(?P<workspace>\d+)/"
    r"(?:[^\s/]+/)*?"
    r"(?:project/)?(?P<project>\d+)(?:/task)?/(?P<task>\d+)"
)


def load_config(io=None) -> Config:
    """Build the runtime config from action inputs, falling back to the environment."""
    load_dotenv()

    def value(input_name: str, env_name: str) -> Optional[str]:
        if io is not None:
            from_input = io.get_input(input_name)
            if from_input:
                return from_input
        return os.getenv(env_name) or None

    config = Config(
        asana_token=value('asana-pat', 'ASANA_TOKEN'),
        github_token=value('github-pat', 'GITHUB_TOKEN'),
        mattermost_token=value('mattermost-token', 'MATTERMOST_TOKEN'),
        no_autoclose_projects=frozenset(
            split_csv(value('no-autoclose-projects', 'NO_AUTOCLOSE_PROJECTS'))
        ),
    )
    if url := value('mattermost-url', 'MATTERMOST_URL'):
        config.mattermost_url = url
    if repository := os.getenv('USER_MAP_REPOSITORY'):
        config.user_map_repository = repository
    if path := os.getenv('USER_MAP_PATH'):
        config.user_map_path = path
    return config


def split_csv(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(',') if item.strip()]


def parse_custom_fields(raw: Optional[str]) -> Optional[Dict[str, str]]:
    if not raw:
        return None
    try:
        fields = json.loads(raw)
    except Exception as e:
        logger.error(f"Error parsing custom fields {raw!r}, ignoring them: {e}")
        return None
    if not isinstance(fields, dict):
        logger.error(f"Custom fields must be a JSON object, got {raw!r}; ignoring them")
        return None
    return fields


def build_reference_pattern(trigger_phrase: str) -> re.Pattern:
    prefix = rf"{re.escape(trigger_phrase)}\s+" if trigger_phrase else ""
    return re.compile(prefix + ASANA_URL_PATTERN)


def find_task_references(
        body: Optional[str],
        trigger_phrase: str = "",
        project_filter: Optional[str] = None) -> List[TaskReference]:
    """Extract Asana (project, task) ids following `trigger_phrase` in `body`.

    Matches are returned in the order they appear; duplicates are kept.
    """
    if not body:
        return []

    pattern = build_reference_pattern(trigger_phrase)
    logger.info(f"Looking for Asana task links in body, regex {pattern.pattern}")

    found = []
    for match in pattern.finditer(body):
        task_id = match.group("task")
        project_id = match.group("project")
        if not task_id:
            suffix = f" after trigger-phrase {trigger_phrase}" if trigger_phrase else ""
            logger.error(f"Invalid Asana task URL{suffix}")
            continue
        if project_filter and project_filter != project_id:
            logger.info(f"Skipping {task_id} as it is not in project {project_filter}")
            continue
        found.append(TaskReference(project_id=project_id, task_id=task_id))

    logger.info(f"Found {len(found)} task id(s): {','.join(r.task_id for r in found)}")
    return found


def find_task_ids(body: Optional[str], trigger_phrase: str = "", project_filter: Optional[str] = None) -> List[str]:
    return [ref.task_id for ref in find_task_references(body, trigger_phrase, project_filter)]


def task_url(project_id: str, task_id: str) -> str:
    return f"https://app.asana.com/0/{project_id}/{task_id}/f"


def get_due_on(days: int, today: Optional[date] = None) -> str:
    """ISO date `days` business days from `today`, skipping Saturdays and Sundays."""
    due = today or date.today()
    while days > 0:
        due += timedelta(days=1)
        if due.weekday() < 5:
            days -= 1
    return due.isoformat()
