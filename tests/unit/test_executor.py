"""Unit tests for the generate/review/retry executor."""

from unittest.mock import MagicMock

import pytest

from tracer.executor import FailureAction, ReviewResult, TaskExecutor
from tracer.models import Plan, Task
from tracer.planning import PlanService
from tracer.tracer_logging import ErrorCollector
from tracer.workspace import Workspace

PASS = ReviewResult(passed=True, score=9)
FAIL = ReviewResult(passed=False, score=3, issues=["missing error handling"], suggestions=["add try/except"])


def make_plan(*tasks):
    return Plan(id="plan-1", title="Plan", description="d", tasks=list(tasks))


@pytest.fixture
def service():
    return PlanService(errors=ErrorCollector())


@pytest.fixture
def generator():
    generator = MagicMock()
    generator.generate_code.side_effect = lambda task, previous=None: f"# code for {task.id}"
    return generator


def make_executor(service, generator, reviews, action=FailureAction.ABORT):
    reviewer = MagicMock()
    reviewer.review.side_effect = list(reviews)
    decide = MagicMock(return_value=action)
    return TaskExecutor(generator, reviewer, decide, service=service), reviewer, decide


class TestExecutePlan:
    """Test cases for TaskExecutor.execute_plan."""

    def test_runs_tasks_in_dependency_order(self, service, generator):
        plan = make_plan(
            Task(id="b", title="B", description="B", dependencies=["a"]),
            Task(id="a", title="A", description="A"),
        )
        executor, _, _ = make_executor(service, generator, [PASS, PASS])

        executor.execute_plan(plan)

        assert [call.args[0].id for call in generator.generate_code.call_args_list] == ["a", "b"]
        assert plan.status == "completed"
        assert plan.get_task("a").code == "# code for a"
        assert all(t.status == "completed" for t in plan.tasks)

    def test_halts_at_first_unrecoverable_failure(self, service, generator):
        plan = make_plan(
            Task(id="a", title="A", description="A"),
            Task(id="b", title="B", description="B", dependencies=["a"]),
        )
        executor, _, decide = make_executor(service, generator, [FAIL], FailureAction.ABORT)

        executor.execute_plan(plan)

        assert plan.status == "failed"
        assert plan.get_task("a").status == "failed"
        assert plan.get_task("b").status == "pending"
        decide.assert_called_once()

    def test_generator_exception_fails_task(self, service):
        generator = MagicMock()
        generator.generate_code.side_effect = RuntimeError("quota exceeded")
        plan = make_plan(Task(id="a", title="A", description="A"))
        executor, _, _ = make_executor(service, generator, [])

        executor.execute_plan(plan)

        assert plan.get_task("a").status == "failed"
        assert plan.status == "failed"

    def test_cycle_blocks_and_fails_plan(self, service, generator):
        plan = make_plan(
            Task(id="a", title="A", description="A", dependencies=["b"]),
            Task(id="b", title="B", description="B", dependencies=["a"]),
        )
        executor, _, _ = make_executor(service, generator, [])

        executor.execute_plan(plan)

        assert plan.status == "failed"
        generator.generate_code.assert_not_called()

    def test_empty_plan_completes(self, service, generator):
        plan = make_plan()
        executor, _, _ = make_executor(service, generator, [])

        executor.execute_plan(plan)

        assert plan.status == "completed"


class TestReviewFailureActions:
    """Test cases for the decision taken after a failed review."""

    def test_retry_success(self, service, generator):
        plan = make_plan(Task(id="a", title="A", description="A"))
        executor, _, _ = make_executor(service, generator, [FAIL, PASS], FailureAction.RETRY)

        executor.execute_plan(plan)

        task = plan.get_task("a")
        assert task.status == "completed"
        assert task.accepted_with_issues is False
        assert generator.generate_code.call_args_list[1].args == (task, FAIL)
        assert plan.status == "completed"

    def test_retry_failure_fails_task(self, service, generator):
        plan = make_plan(Task(id="a", title="A", description="A"))
        executor, _, _ = make_executor(service, generator, [FAIL, FAIL], FailureAction.RETRY)

        executor.execute_plan(plan)

        assert plan.get_task("a").status == "failed"
        assert plan.status == "failed"

    def test_accept_marks_completed_with_issues(self, service, generator):
        plan = make_plan(Task(id="a", title="A", description="A"))
        executor, _, _ = make_executor(service, generator, [FAIL], FailureAction.ACCEPT)

        executor.execute_plan(plan)

        task = plan.get_task("a")
        assert task.status == "completed"
        assert task.accepted_with_issues is True
        assert task.code == "# code for a"
        assert plan.status == "completed"

    def test_skip_resets_task_and_halts(self, service, generator):
        plan = make_plan(Task(id="a", title="A", description="A"))
        executor, _, _ = make_executor(service, generator, [FAIL], FailureAction.SKIP)

        executor.execute_plan(plan)

        assert plan.get_task("a").status == "pending"
        assert plan.status == "failed"

    def test_decision_may_be_plain_string(self, service, generator):
        plan = make_plan(Task(id="a", title="A", description="A"))
        executor, _, _ = make_executor(service, generator, [FAIL], "accept")

        executor.execute_plan(plan)

        assert plan.get_task("a").accepted_with_issues is True

    @pytest.mark.parametrize("decision", ["review", None, 3])
    def test_unknown_decision_aborts(self, service, generator, decision):
        plan = make_plan(
            Task(id="a", title="A", description="A"),
            Task(id="b", title="B", description="B", dependencies=["a"]),
        )
        executor, _, _ = make_executor(service, generator, [FAIL], decision)

        executor.execute_plan(plan)

        assert plan.get_task("a").status == "failed"
        assert plan.get_task("b").status == "pending"
        assert plan.status == "failed"

    def test_failing_decision_callback_aborts(self, service, generator):
        plan = make_plan(Task(id="a", title="A", description="A"))
        executor, _, decide = make_executor(service, generator, [FAIL])
        decide.side_effect = RuntimeError("prompt closed")

        executor.execute_plan(plan)

        assert plan.get_task("a").status == "failed"
        assert plan.status == "failed"


class TestExecutionRecording:
    """Test cases for saving results through a workspace."""

    def test_saves_plan_and_output(self, tmp_path, service, generator):
        workspace = Workspace(tmp_path, service=service)
        plan = make_plan(Task(id="a", title="A", description="A"))
        reviewer = MagicMock()
        reviewer.review.return_value = PASS
        executor = TaskExecutor(generator, reviewer, MagicMock(), service=service, workspace=workspace)

        executor.execute_plan(plan)

        assert workspace.load_plan("plan-1").status == "completed"
        output = (workspace.output_dir / "plan-1-output.md").read_text(encoding="utf-8")
        assert "# code for a" in output

    def test_package_exports_executor(self):
        import tracer

        assert tracer.TaskExecutor is TaskExecutor
        assert "TaskExecutor" in tracer.__all__
