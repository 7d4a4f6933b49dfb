from dataclasses import dataclass, field
from enum import Enum
from pydantic import BaseModel
from typing import List, Dict, Optional, FrozenSet


class ActionError(Exception):
    """Base class for failures reported through the action's failure channel."""


class InputError(ActionError):
    pass


class ContextError(ActionError):
    pass


class ConfigError(ActionError):
    pass


@dataclass
class TaskReference:
    project_id: str
    task_id: str


@dataclass
class TaskDescriptor:
    name: str
    notes: str
    project_id: str
    section_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    followers: List[str] = field(default_factory=list)
    assignee: Optional[str] = None
    custom_fields: Optional[Dict[str, str]] = None
    due_on: Optional[str] = None


@dataclass
class TaskCreation:
    task_id: str
    duplicate: bool = False

    @property
    def ok(self) -> bool:
        return self.task_id != "0"


@dataclass
class PRData:
    number: int
    title: str
    body: str
    html_url: str
    state: str = "open"
    merged: bool = False
    draft: bool = False
    author_login: str = ""
    head_owner_login: str = ""
    base_owner_login: str = ""
    requested_reviewers: List[str] = field(default_factory=list)
    requested_teams: List[str] = field(default_factory=list)
    assignees: List[str] = field(default_factory=list)


class PRState(str, Enum):
    OPEN = "Open"
    DRAFT = "Draft"
    APPROVED = "Approved"
    MERGED = "Merged"
    CLOSED = "Closed"


class ReviewState(str, Enum):
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    COMMENTED = "commented"


@dataclass
class ReviewEvent:
    reviewer_login: str
    state: ReviewState


@dataclass
class SubtaskResult:
    reviewer: str
    task_gid: Optional[str]
    status: str
    error: Optional[str] = None


class Config(BaseModel):
    asana_token: Optional[str] = None
    github_token: Optional[str] = None
    mattermost_token: Optional[str] = None
    mattermost_url: str = "https://chat.duckduckgo.com"
    no_autoclose_projects: FrozenSet[str] = frozenset()
    user_map_repository: str = "duckduckgo/internal-github-asana-utils"
    user_map_path: str = "user_map.yml"


@dataclass
class AsanaUser:
    gid: str


@dataclass
class AsanaTask:
    gid: str
    name: Optional[str]
    assignee: Optional[AsanaUser] = None
    notes: str = ""
    completed: Optional[bool] = None
    parent_gid: Optional[str] = None


@dataclass
class PRSyncSettings:
    project_id: str
    section_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    collaborators: List[str] = field(default_factory=list)
    assignee: Optional[str] = None
    custom_fields: Optional[Dict[str, str]] = None
    due_on: Optional[str] = None
    trigger_phrase: str = ""
    state_field_gid: Optional[str] = None
    no_autoclose: FrozenSet[str] = frozenset()
    user_map: Dict[str, str] = field(default_factory=dict)


@dataclass
class PRSyncResult:
    task_gid: Optional[str] = None
    parent_task_gid: Optional[str] = None
    duplicate: bool = False
    state: Optional[PRState] = None
    subtasks: List[SubtaskResult] = field(default_factory=list)

    @property
    def failures(self) -> List[SubtaskResult]:
        return [s for s in self.subtasks if s.status == "failed"]
