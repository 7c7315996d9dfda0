"""Status state machines for tasks and plans."""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet

from .models import PLAN_STATUSES, TASK_STATUSES, Plan, Task
from .tracer_logging import plan_events

logger = logging.getLogger("tracer.lifecycle")

TASK_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"in-progress"}),
    "in-progress": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    # Reset for a skip or retry decided by the executor
    "failed": frozenset({"pending"}),
}

PLAN_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "draft": frozenset({"approved"}),
    "approved": frozenset({"draft", "executing"}),
    "executing": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}

MUTABLE_PLAN_STATUSES = frozenset({"draft", "approved"})


class InvalidTransitionError(ValueError):
    """Raised when a status change is not allowed by the state machine."""

    def __init__(self, kind: str, subject_id: str, current: str, target: str):
        self.kind = kind
        self.subject_id = subject_id
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {kind} {subject_id} from '{current}' to '{target}'")


def can_transition_task(current: str, target: str) -> bool:
    return current == target or target in TASK_TRANSITIONS.get(current, frozenset())


def can_transition_plan(current: str, target: str) -> bool:
    return current == target or target in PLAN_TRANSITIONS.get(current, frozenset())


def transition_task(plan: Plan, task: Task, target: str) -> Task:
    """Move ``task`` to ``target`` and refresh the plan timestamp.

    Re-applying the current status is a no-op.
    """
    if target not in TASK_STATUSES:
        raise ValueError(f"Unknown task status: {target}")
    if task.status == target:
        return task
    if not can_transition_task(task.status, target):
        raise InvalidTransitionError("task", task.id, task.status, target)

    previous = task.status
    task.status = target
    if target == "pending":
        task.code = None
        task.accepted_with_issues = False
    plan.touch()

    logger.info(f"Task {task.id} moved from {previous} to {target}")
    plan_events.log_plan_event(
        "task_status_changed",
        plan_id=plan.id,
        task_id=task.id,
        previous=previous,
        status=target,
    )
    return task


def transition_plan(plan: Plan, target: str) -> Plan:
    """Move ``plan`` to ``target``.

    Completing a plan requires every task to be completed.
    """
    if target not in PLAN_STATUSES:
        raise ValueError(f"Unknown plan status: {target}")
    if plan.status == target:
        return plan
    if not can_transition_plan(plan.status, target):
        raise InvalidTransitionError("plan", plan.id, plan.status, target)
    if target == "completed":
        unfinished = [task.id for task in plan.tasks if task.status != "completed"]
        if unfinished:
            raise InvalidTransitionError("plan", plan.id, plan.status, target)

    previous = plan.status
    plan.status = target
    plan.touch()

    logger.info(f"Plan {plan.id} moved from {previous} to {target}")
    plan_events.log_plan_event("plan_status_changed", plan_id=plan.id, previous=previous, status=target)
    return plan


def all_tasks_completed(plan: Plan) -> bool:
    return bool(plan.tasks) and all(task.status == "completed" for task in plan.tasks)
