"""Data models for Tracer plans.

This module contains the core data structures used throughout the Tracer
system: tasks, plans, the status and priority vocabularies, and the raw
task candidate used to coerce untyped generated payloads into typed tasks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

TASK_STATUSES = ("pending", "in-progress", "completed", "failed")
PLAN_STATUSES = ("draft", "approved", "executing", "completed", "failed")
PRIORITIES = ("low", "medium", "high")

DEFAULT_PRIORITY = "medium"
DEFAULT_ESTIMATED_TIME = "30 minutes"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z``."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _as_str_list(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [text for text in (_as_text(item) for item in value) if text is not None]


def normalize_priority(value: Any) -> str:
    """Clamp a priority to the vocabulary, falling back to ``medium``."""
    text = _as_text(value)
    if text and text.lower() in PRIORITIES:
        return text.lower()
    return DEFAULT_PRIORITY


@dataclass(slots=True)
class Task:
    """A unit of implementation work inside a plan."""

    id: str
    title: str
    description: str
    files: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    status: str = "pending"
    estimated_time: str = DEFAULT_ESTIMATED_TIME
    priority: str = DEFAULT_PRIORITY
    code: Optional[str] = None
    accepted_with_issues: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the canonical JSON representation."""
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "files": list(self.files),
            "dependencies": list(self.dependencies),
            "status": self.status,
            "estimatedTime": self.estimated_time,
            "priority": self.priority,
        }
        if self.code is not None:
            data["code"] = self.code
        if self.accepted_with_issues:
            data["acceptedWithIssues"] = True
        return data

    def validate(self) -> List[str]:
        """Validate task structure and return any issues."""
        issues = []

        if not self.title or not self.title.strip():
            issues.append("Task title is required")
        if not self.description or not self.description.strip():
            issues.append("Task description is required")
        if self.priority not in PRIORITIES:
            issues.append("Task priority must be 'low', 'medium', or 'high'")
        if not self.estimated_time or not self.estimated_time.strip():
            issues.append("Task estimated time is required")
        if self.status not in TASK_STATUSES:
            issues.append(f"Invalid task status: {self.status}")
        if self.id in self.dependencies:
            issues.append(f"Task {self.id} depends on itself")

        return issues


@dataclass(slots=True)
class Plan:
    """Top-level unit of work: an ordered task collection plus its own status."""

    id: str
    title: str
    description: str
    tasks: List[Task] = field(default_factory=list)
    created: datetime = field(default_factory=utcnow)
    updated: datetime = field(default_factory=utcnow)
    status: str = "draft"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the canonical JSON representation."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "tasks": [task.to_dict() for task in self.tasks],
            "created": self.created.isoformat(),
            "updated": self.updated.isoformat(),
            "status": self.status,
        }

    def touch(self) -> None:
        """Refresh the ``updated`` timestamp after a mutation."""
        self.updated = utcnow()

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def task_ids(self) -> List[str]:
        return [task.id for task in self.tasks]

    def tasks_by_status(self, status: str) -> List[Task]:
        return [task for task in self.tasks if task.status == status]

    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")


@dataclass(slots=True)
class RawTaskCandidate:
    """A task entry from an untyped payload, coerced but not yet defaulted.

    Every field is either a cleaned value or ``None``/empty when the payload
    carried nothing usable. ``to_task`` applies the defaults.
    """

    index: int
    id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    files: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    estimated_time: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    code: Optional[str] = None
    accepted_with_issues: bool = False

    @classmethod
    def from_payload(cls, data: Any, index: int) -> Optional["RawTaskCandidate"]:
        """Coerce one payload entry; returns ``None`` for non-object entries."""
        if not isinstance(data, dict):
            return None
        code = data.get("code")
        return cls(
            index=index,
            id=_as_text(data.get("id")),
            title=_as_text(data.get("title")),
            description=_as_text(data.get("description")),
            files=_as_str_list(data.get("files")),
            dependencies=_as_str_list(data.get("dependencies")),
            estimated_time=_as_text(data.get("estimatedTime", data.get("estimated_time"))),
            priority=_as_text(data.get("priority")),
            status=_as_text(data.get("status")),
            code=code if isinstance(code, str) else None,
            accepted_with_issues=data.get("acceptedWithIssues", data.get("accepted_with_issues")) is True,
        )

    def to_task(self, task_id: str, *, keep_status: bool = False) -> Task:
        """Build a typed Task, applying defaults.

        Status is forced to ``pending`` unless ``keep_status`` is set and the
        candidate carries a valid status (used when restoring saved plans).
        """
        status = "pending"
        if keep_status and self.status in TASK_STATUSES:
            status = self.status
        return Task(
            id=task_id,
            title=self.title or f"Task {self.index + 1}",
            description=self.description or "No description provided",
            files=list(self.files),
            dependencies=list(self.dependencies),
            status=status,
            estimated_time=self.estimated_time or DEFAULT_ESTIMATED_TIME,
            priority=normalize_priority(self.priority),
            code=self.code if keep_status else None,
            accepted_with_issues=self.accepted_with_issues if keep_status else False,
        )
