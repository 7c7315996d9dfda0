"""Generate/review/retry loop over the executable tasks of a plan.

The code generator, the reviewer and the decision taken after a failed
review are all injected, so the loop only owns ordering and status
bookkeeping.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Protocol

from .graph import get_executable_tasks
from .models import Plan, Task
from .planning import PlanService
from .tracer_logging import log_error_with_context, log_operation
from .workspace import Workspace


@dataclass(slots=True)
class ReviewResult:
    passed: bool
    score: float = 0.0
    issues: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    analysis: str = ""


class FailureAction(str, Enum):
    RETRY = "retry"
    ACCEPT = "accept"
    SKIP = "skip"
    ABORT = "abort"


class CodeGenerator(Protocol):
    def generate_code(self, task: Task, previous_review: Optional[ReviewResult] = None) -> str:
        ...


class CodeReviewer(Protocol):
    def review(self, task: Task, code: str) -> ReviewResult:
        ...


class TaskExecutor:
    """Runs a plan's tasks in dependency order until done or halted."""

    def __init__(
        self,
        code_generator: CodeGenerator,
        reviewer: CodeReviewer,
        on_review_failure: Callable[[Task, ReviewResult], FailureAction],
        service: Optional[PlanService] = None,
        workspace: Optional[Workspace] = None,
    ):
        self.code_generator = code_generator
        self.reviewer = reviewer
        self.on_review_failure = on_review_failure
        self.service = service or PlanService()
        self.workspace = workspace
        self.logger = logging.getLogger("tracer.executor")

    def execute_plan(self, plan: Plan) -> Plan:
        """Execute every task; the plan fails at the first unrecoverable failure.

        With a workspace, the final plan and its execution output are saved.
        """
        with log_operation("execute_plan", plan_id=plan.id, task_count=len(plan.tasks)):
            self._run(plan)

        if self.workspace is not None:
            self.workspace.save_plan(plan)
            self.workspace.save_execution_output(plan)
        return plan

    def _run(self, plan: Plan) -> None:
        self.service.start_execution(plan)

        while True:
            ready = get_executable_tasks(plan)
            if not ready:
                break
            for task in ready:
                if not self.execute_task(plan, task):
                    self.service.fail_plan(plan, f"task {task.id} did not complete")
                    return

        if plan.status == "executing":
            blocked = [task.id for task in plan.tasks if task.status != "completed"]
            if blocked:
                # Dependencies that can never complete (cycle or missing task)
                self.service.fail_plan(plan, f"tasks blocked by unmet dependencies: {', '.join(blocked)}")
            else:
                self.service.complete_plan(plan)

    def execute_task(self, plan: Plan, task: Task) -> bool:
        """Run one task through generation and review; True when it completed."""
        self.service.update_task_status(plan, task.id, "in-progress")
        try:
            code = self.code_generator.generate_code(task)
            review = self.reviewer.review(task, code)
        except Exception as e:
            log_error_with_context(e, {"operation": "execute_task", "plan_id": plan.id, "task_id": task.id})
            self.service.update_task_status(plan, task.id, "failed")
            return False

        if review.passed:
            self.logger.info(f"Task {task.id} passed review with score {review.score}")
            return self._complete(plan, task, code)
        return self._handle_review_failure(plan, task, code, review)

    def _complete(self, plan: Plan, task: Task, code: str, *, accepted_with_issues: bool = False) -> bool:
        task.code = code
        task.accepted_with_issues = accepted_with_issues
        self.service.update_task_status(plan, task.id, "completed")
        return True

    def _handle_review_failure(self, plan: Plan, task: Task, code: str, review: ReviewResult) -> bool:
        self.logger.warning(f"Task {task.id} failed review with score {review.score}: {review.issues}")
        action = self._decide(plan, task, review)

        if action is FailureAction.RETRY:
            return self._retry(plan, task, review)
        if action is FailureAction.ACCEPT:
            self.logger.warning(f"Accepting task {task.id} despite review issues")
            return self._complete(plan, task, code, accepted_with_issues=True)

        self.service.update_task_status(plan, task.id, "failed")
        if action is FailureAction.SKIP:
            self.logger.info(f"Skipping task {task.id}")
            self.service.update_task_status(plan, task.id, "pending")
        return False

    def _decide(self, plan: Plan, task: Task, review: ReviewResult) -> FailureAction:
        """Ask for a decision on a failed review; anything unusable aborts."""
        try:
            decision = self.on_review_failure(task, review)
        except Exception as e:
            log_error_with_context(e, {"operation": "review_decision", "plan_id": plan.id, "task_id": task.id})
            return FailureAction.ABORT
        try:
            return FailureAction(decision)
        except (TypeError, ValueError):
            self.logger.warning(f"Unknown review decision {decision!r} for task {task.id}, aborting")
            return FailureAction.ABORT

    def _retry(self, plan: Plan, task: Task, previous: ReviewResult) -> bool:
        self.logger.info(f"Retrying task {task.id} with review feedback")
        try:
            code = self.code_generator.generate_code(task, previous)
            review = self.reviewer.review(task, code)
        except Exception as e:
            log_error_with_context(e, {"operation": "retry_task", "plan_id": plan.id, "task_id": task.id})
            review = None

        if review is not None and review.passed:
            return self._complete(plan, task, code)

        self.service.update_task_status(plan, task.id, "failed")
        return False
