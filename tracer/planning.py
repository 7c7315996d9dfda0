"""Plan construction, editing and persistence format.

``PlanService`` turns generated payloads into validated plans, applies the
interactive edits (modify, add, remove a task) and drives status updates.
Untrusted input never makes it raise: a payload that cannot be interpreted
produces the single-task fallback plan, and bad task references are
recorded in the error collector and leave the plan unchanged. The one hard
failure is ``import_plan`` on unreadable JSON.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Protocol

from .graph import GraphReport, validate_task_graph
from .helpers import extract_json_from_response, generate_id
from .lifecycle import (
    MUTABLE_PLAN_STATUSES,
    InvalidTransitionError,
    all_tasks_completed,
    transition_plan,
    transition_task,
)
from .models import (
    PLAN_STATUSES,
    Plan,
    RawTaskCandidate,
    Task,
    normalize_priority,
    parse_timestamp,
    utcnow,
)
from .tracer_logging import (
    ErrorCollector,
    ErrorType,
    error_collector,
    log_operation,
    log_performance,
    plan_events,
)

DEFAULT_PLAN_TITLE = "Generated Implementation Plan"
FALLBACK_PLAN_TITLE = "Manual Implementation Plan"
FALLBACK_TASK_TITLE = "Implement requirements"
FALLBACK_ESTIMATED_TIME = "60 minutes"

# Task fields an edit may replace; ``id`` is never among them
_EDITABLE_FIELDS = {
    "title": "title",
    "description": "description",
    "files": "files",
    "dependencies": "dependencies",
    "estimatedTime": "estimated_time",
    "estimated_time": "estimated_time",
    "priority": "priority",
}


class PlanGenerator(Protocol):
    """Text-generation collaborator that drafts a plan payload."""

    def generate_plan(self, requirements: str, codebase_context: str) -> str:
        ...


class PlanImportError(ValueError):
    """Raised when a serialized plan cannot be read back."""


def export_plan(plan: Plan) -> str:
    """Serialize a plan to its canonical JSON representation."""
    return json.dumps(plan.to_dict(), indent=2)


def _text_field(value: Any, default: str) -> str:
    """Trimmed string value, or ``default`` for blanks and non-strings."""
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


class PlanService:
    """Builds, edits and tracks the status of plans."""

    def __init__(self, errors: Optional[ErrorCollector] = None):
        self.errors = errors if errors is not None else error_collector
        self.logger = logging.getLogger("tracer.planning")

    # ------------------------------------------------------------------
    # Plan construction
    # ------------------------------------------------------------------

    def create_plan(self, requirements: str, generator: PlanGenerator, codebase_context: str = "") -> Plan:
        """Ask the generation collaborator for a payload and build a plan from it."""
        self.logger.info(f"Creating new plan (requirements length {len(requirements)})")
        try:
            response = generator.generate_plan(requirements, codebase_context)
        except Exception as e:
            self.errors.handle(e, ErrorType.API_ERROR, {"operation": "create_plan"})
            return self.create_fallback_plan(requirements)
        return self.build_plan(response, requirements)

    @log_performance("build_plan")
    def build_plan(self, raw_payload: Any, requirements: str) -> Plan:
        """Build a plan from a generated payload.

        ``raw_payload`` may be a decoded object or raw model output. Anything
        that does not yield at least one task falls back to a single-task plan.
        """
        with log_operation("build_plan", requirements_length=len(requirements or "")):
            data = raw_payload if isinstance(raw_payload, dict) else extract_json_from_response(raw_payload)
            if data is None:
                self.errors.handle(
                    "Could not extract valid JSON from plan response",
                    ErrorType.PARSING_ERROR,
                    {"operation": "build_plan", "payload_type": type(raw_payload).__name__},
                )
                return self.create_fallback_plan(requirements)

            tasks = self._build_tasks(data.get("tasks"))
            if not tasks:
                self.errors.handle(
                    "Plan response contained no usable tasks",
                    ErrorType.PARSING_ERROR,
                    {"operation": "build_plan"},
                )
                return self.create_fallback_plan(requirements)

            plan = Plan(
                id=generate_id("plan"),
                title=_text_field(data.get("title"), DEFAULT_PLAN_TITLE),
                description=_text_field(data.get("description"), requirements),
                tasks=tasks,
            )
            self.validate_plan(plan)

        self.logger.info(f"Plan {plan.id} created with {len(plan.tasks)} tasks")
        plan_events.log_plan_event("plan_created", plan_id=plan.id, task_count=len(plan.tasks))
        return plan

    def create_fallback_plan(self, requirements: str) -> Plan:
        """Single-task plan used when a generated payload is unusable."""
        plan = Plan(
            id=generate_id("plan"),
            title=FALLBACK_PLAN_TITLE,
            description=requirements,
            tasks=[
                Task(
                    id=generate_id("task"),
                    title=FALLBACK_TASK_TITLE,
                    description=requirements or "No description provided",
                    priority="high",
                    estimated_time=FALLBACK_ESTIMATED_TIME,
                )
            ],
        )
        self.logger.warning(f"Using fallback plan {plan.id}")
        plan_events.log_plan_event("plan_created", plan_id=plan.id, task_count=1, fallback=True)
        return plan

    def _build_tasks(self, entries: Any, *, keep_status: bool = False) -> List[Task]:
        if not isinstance(entries, list):
            return []

        tasks: List[Task] = []
        seen_ids = set()
        for index, entry in enumerate(entries):
            candidate = RawTaskCandidate.from_payload(entry, index)
            if candidate is None:
                self.logger.warning(f"Skipping task entry {index}: expected an object, got {type(entry).__name__}")
                continue

            task_id = candidate.id
            if not task_id or task_id in seen_ids:
                task_id = generate_id("task")
            seen_ids.add(task_id)

            task = candidate.to_task(task_id, keep_status=keep_status)
            issues = task.validate()
            if issues:
                self.logger.warning(f"Task validation issues for {task.id}: {issues}")
            tasks.append(task)
        return tasks

    def validate_plan(self, plan: Plan) -> GraphReport:
        """Check the dependency graph; problems are warnings, never fatal."""
        report = validate_task_graph(plan.tasks)
        if report.has_issues:
            self.errors.handle(
                "Plan validation issues: " + "; ".join(report.warnings),
                ErrorType.VALIDATION_ERROR,
                {"plan_id": plan.id, **report.to_dict()},
            )
        return report

    # ------------------------------------------------------------------
    # Plan editing
    # ------------------------------------------------------------------

    def _ensure_mutable(self, plan: Plan, operation: str) -> bool:
        if plan.status in MUTABLE_PLAN_STATUSES:
            return True
        self.errors.handle(
            f"Plan {plan.id} cannot be edited while {plan.status}",
            ErrorType.VALIDATION_ERROR,
            {"operation": operation, "plan_id": plan.id, "status": plan.status},
        )
        return False

    def _ensure_index(self, plan: Plan, task_index: int, operation: str) -> bool:
        if isinstance(task_index, int) and not isinstance(task_index, bool) and 0 <= task_index < len(plan.tasks):
            return True
        self.errors.handle(
            f"Invalid task number: {task_index}",
            ErrorType.USER_INPUT_ERROR,
            {"operation": operation, "plan_id": plan.id, "task_count": len(plan.tasks)},
        )
        return False

    def _after_edit(self, plan: Plan) -> None:
        plan.touch()
        # An edited plan needs approving again
        if plan.status == "approved":
            transition_plan(plan, "draft")
        self.validate_plan(plan)

    def modify_task(self, plan: Plan, task_index: int, fields: Dict[str, Any]) -> Plan:
        """Replace fields of the task at ``task_index``; the task id is kept."""
        if not self._ensure_mutable(plan, "modify_task") or not self._ensure_index(plan, task_index, "modify_task"):
            return plan

        task = plan.tasks[task_index]
        candidate = RawTaskCandidate.from_payload(fields, task_index)
        if candidate is None:
            self.errors.handle(
                "Task modification must be an object",
                ErrorType.USER_INPUT_ERROR,
                {"operation": "modify_task", "plan_id": plan.id},
            )
            return plan

        ignored = sorted(key for key in fields if key not in _EDITABLE_FIELDS)
        if ignored:
            self.logger.warning(f"Ignoring non-editable task fields {ignored} for {task.id}")

        for key in fields:
            attribute = _EDITABLE_FIELDS.get(key)
            if attribute is None:
                continue
            if attribute == "priority":
                task.priority = normalize_priority(candidate.priority)
            elif attribute in ("files", "dependencies"):
                setattr(task, attribute, list(getattr(candidate, attribute)))
            else:
                value = getattr(candidate, attribute)
                if value is None:
                    self.logger.warning(f"Ignoring empty {key} for task {task.id}")
                    continue
                setattr(task, attribute, value)

        issues = task.validate()
        if issues:
            self.logger.warning(f"Task validation issues for {task.id}: {issues}")

        self._after_edit(plan)
        self.logger.info(f"Task {task.id} modified")
        plan_events.log_plan_event("task_modified", plan_id=plan.id, task_id=task.id)
        return plan

    def add_task(self, plan: Plan, fields: Dict[str, Any]) -> Plan:
        """Append a new task built from ``fields`` with a fresh id."""
        if not self._ensure_mutable(plan, "add_task"):
            return plan

        candidate = RawTaskCandidate.from_payload(fields, len(plan.tasks))
        if candidate is None:
            self.errors.handle(
                "New task must be an object",
                ErrorType.USER_INPUT_ERROR,
                {"operation": "add_task", "plan_id": plan.id},
            )
            return plan

        task = candidate.to_task(generate_id("task"))
        if not candidate.title:
            task.title = "New Task"
        issues = task.validate()
        if issues:
            self.logger.warning(f"Task validation issues for {task.id}: {issues}")

        plan.tasks.append(task)
        self._after_edit(plan)
        self.logger.info(f"Task {task.id} added to plan {plan.id}")
        plan_events.log_plan_event("task_added", plan_id=plan.id, task_id=task.id)
        return plan

    def remove_task(self, plan: Plan, task_index: int) -> Plan:
        """Remove the task at ``task_index`` and every dependency on it."""
        if not self._ensure_mutable(plan, "remove_task") or not self._ensure_index(plan, task_index, "remove_task"):
            return plan

        removed = plan.tasks.pop(task_index)
        for task in plan.tasks:
            task.dependencies = [dep_id for dep_id in task.dependencies if dep_id != removed.id]

        self._after_edit(plan)
        self.logger.info(f"Task {removed.id} removed from plan {plan.id}")
        plan_events.log_plan_event("task_removed", plan_id=plan.id, task_id=removed.id)
        return plan

    # ------------------------------------------------------------------
    # Status management
    # ------------------------------------------------------------------

    def update_task_status(self, plan: Plan, task_id: str, status: str) -> Plan:
        """Move a task through its lifecycle.

        Unknown ids and disallowed transitions are recorded, not raised.
        Completing the last task of an executing plan completes the plan.
        """
        task = plan.get_task(task_id)
        if task is None:
            self.errors.handle(
                f"Task not found for status update: {task_id}",
                ErrorType.USER_INPUT_ERROR,
                {"operation": "update_task_status", "plan_id": plan.id, "task_id": task_id},
            )
            return plan

        try:
            transition_task(plan, task, status)
        except (InvalidTransitionError, ValueError) as e:
            self.errors.handle(
                e,
                ErrorType.VALIDATION_ERROR,
                {"operation": "update_task_status", "plan_id": plan.id, "task_id": task_id},
            )
            return plan

        if plan.status == "executing" and all_tasks_completed(plan):
            transition_plan(plan, "completed")
        return plan

    def approve_plan(self, plan: Plan) -> Plan:
        return transition_plan(plan, "approved")

    def start_execution(self, plan: Plan) -> Plan:
        """Move a plan into ``executing``, approving a draft first."""
        if plan.status == "draft":
            transition_plan(plan, "approved")
        return transition_plan(plan, "executing")

    def complete_plan(self, plan: Plan) -> Plan:
        return transition_plan(plan, "completed")

    def fail_plan(self, plan: Plan, reason: str = "") -> Plan:
        """Halt a plan after an unrecoverable task failure."""
        transition_plan(plan, "failed")
        if reason:
            self.logger.warning(f"Plan {plan.id} failed: {reason}")
        return plan

    def get_tasks_by_status(self, plan: Plan, status: str) -> List[Task]:
        return plan.tasks_by_status(status)

    # ------------------------------------------------------------------
    # Persistence format
    # ------------------------------------------------------------------

    def export_plan(self, plan: Plan) -> str:
        return export_plan(plan)

    def import_plan(self, plan_json: str) -> Plan:
        """Restore a plan from its JSON form, re-running validation.

        Task ids, dependencies and statuses are kept; ``updated`` is refreshed.
        """
        try:
            data = json.loads(plan_json)
        except (TypeError, ValueError, RecursionError) as e:
            self.logger.error(f"Error importing plan: {e}")
            raise PlanImportError(f"Failed to import plan: {e}") from e
        if not isinstance(data, dict):
            raise PlanImportError("Failed to import plan: expected a JSON object")

        status = data.get("status")
        plan = Plan(
            id=data.get("id") if isinstance(data.get("id"), str) and data.get("id") else generate_id("plan"),
            title=_text_field(data.get("title"), "Imported Plan"),
            description=_text_field(data.get("description"), "Imported plan"),
            tasks=self._build_tasks(data.get("tasks"), keep_status=True),
            created=parse_timestamp(data.get("created")) or utcnow(),
            updated=utcnow(),
            status=status if status in PLAN_STATUSES else "draft",
        )
        self.validate_plan(plan)
        self.logger.info(f"Plan {plan.id} imported with {len(plan.tasks)} tasks")
        return plan
