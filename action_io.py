from data import ContextError, InputError, PRData, ReviewEvent, ReviewState
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import json
import logging
import os
import sys
import uuid

logger = logging.getLogger(__name__)


class ActionIO:
    """Reads `INPUT_*` values and writes outputs the way the runner expects them.

    Outputs are kept in `outputs` as the Python values passed in and, when the
    runner provides a `GITHUB_OUTPUT` file, appended to it as strings.
    """

    def __init__(self, inputs: Optional[Dict[str, str]] = None, output_path: Optional[str] = None):
        self.inputs = {self._key(k): v for k, v in (inputs or {}).items()}
        self.output_path = output_path
        self.outputs: Dict[str, Any] = {}
        self.failed = False
        self.failure_message: Optional[str] = None

    @staticmethod
    def _key(name: str) -> str:
        return name.replace(" ", "_").lower()

    @classmethod
    def from_env(cls, environ=None) -> "ActionIO":
        environ = os.environ if environ is None else environ
        inputs = {
            key[len("INPUT_"):]: value
            for key, value in environ.items()
            if key.startswith("INPUT_")
        }
        return cls(inputs, environ.get("GITHUB_OUTPUT"))

    def get_input(self, name: str, required: bool = False) -> str:
        value = self.inputs.get(self._key(name), "").strip()
        if required and not value:
            raise InputError(f"Input required and not supplied: {name}")
        return value

    def get_bool_input(self, name: str) -> bool:
        return self.get_input(name).lower() == "true"

    def set_output(self, name: str, value: Any) -> None:
        self.outputs[name] = value
        if isinstance(value, bool):
            text = "true" if value else "false"
        else:
            text = str(value)
        logger.debug(f"output {name}={text}")
        if not self.output_path:
            return
        with open(self.output_path, "a", encoding="utf-8") as f:
            if "\n" in text:
                delimiter = f"ghadelimiter_{uuid.uuid4()}"
                f.write(f"{name}<<{delimiter}\n{text}\n{delimiter}\n")
            else:
                f.write(f"{name}={text}\n")

    def set_failed(self, message: str) -> None:
        self.failed = True
        self.failure_message = message
        logger.error(message)
        sys.stdout.write(f"::error::{message}\n")


@dataclass
class EventContext:
    """The triggering GitHub event, passed explicitly into every handler."""

    event_name: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls, environ=None) -> "EventContext":
        environ = os.environ if environ is None else environ
        payload = {}
        path = environ.get("GITHUB_EVENT_PATH")
        if path and os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        else:
            logger.warning(f"GitHub event payload not found at {path!r}")
        return cls(event_name=environ.get("GITHUB_EVENT_NAME", ""), payload=payload)

    @property
    def pull_request(self) -> Optional[PRData]:
        raw = self.payload.get("pull_request")
        if not raw:
            return None
        return pull_request_from_payload(raw)

    @property
    def issue(self) -> Optional[Dict[str, Any]]:
        return self.payload.get("issue") or None

    def require_pull_request(self) -> PRData:
        pr = self.pull_request
        if pr is None:
            raise ContextError("pull request context not found")
        return pr

    def require_issue(self) -> Dict[str, Any]:
        issue = self.issue
        if issue is None:
            raise ContextError("issue context not found")
        return issue

    def review_event(self) -> Optional[ReviewEvent]:
        review = self.payload.get("review")
        if not review:
            return None
        try:
            state = ReviewState((review.get("state") or "").lower())
        except ValueError:
            logger.info(f"Ignoring review with state {review.get('state')!r}")
            return None
        login = (review.get("user") or {}).get("login", "")
        return ReviewEvent(reviewer_login=login, state=state)


def _login(obj: Optional[Dict[str, Any]]) -> str:
    return (obj or {}).get("login", "") or ""


def pull_request_from_payload(raw: Dict[str, Any]) -> PRData:
    return PRData(
        number=raw.get("number", 0),
        title=raw.get("title") or "",
        body=raw.get("body") or "",
        html_url=raw.get("html_url") or "",
        state=raw.get("state") or "open",
        merged=bool(raw.get("merged")),
        draft=bool(raw.get("draft")),
        author_login=_login(raw.get("user")),
        head_owner_login=_login((raw.get("head") or {}).get("user")),
        base_owner_login=_login(((raw.get("base") or {}).get("repo") or {}).get("owner")),
        requested_reviewers=[_login(r) for r in raw.get("requested_reviewers") or []],
        requested_teams=[t.get("slug") or t.get("name", "") for t in raw.get("requested_teams") or []],
        assignees=[_login(a) for a in raw.get("assignees") or []],
    )
