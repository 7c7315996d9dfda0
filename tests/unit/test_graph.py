"""Unit tests for dependency validation and scheduling."""

import pytest

from tracer.graph import (
    CycleEdge,
    InvalidDependency,
    detect_circular_dependencies,
    find_invalid_dependencies,
    get_executable_tasks,
    topological_order,
    validate_task_graph,
)
from tracer.models import Plan, Task


def make_task(task_id, *dependencies, status="pending"):
    return Task(id=task_id, title=task_id.upper(), description=f"Do {task_id}", dependencies=list(dependencies), status=status)


def position(ordered, task_id):
    return [task.id for task in ordered].index(task_id)


class TestDetectCircularDependencies:
    """Test cases for cycle detection."""

    def test_acyclic_graph_has_no_cycles(self):
        tasks = [make_task("a"), make_task("b", "a"), make_task("c", "a", "b"), make_task("d", "c")]
        assert detect_circular_dependencies(tasks) == []

    def test_two_task_cycle(self):
        tasks = [make_task("a", "b"), make_task("b", "a")]

        cycles = detect_circular_dependencies(tasks)

        assert len(cycles) >= 1
        assert all(edge in {CycleEdge("a", "b"), CycleEdge("b", "a")} for edge in cycles)

    def test_self_dependency_is_a_cycle(self):
        assert detect_circular_dependencies([make_task("a", "a")]) == [CycleEdge("a", "a")]

    def test_longer_cycle_reports_closing_edge(self):
        tasks = [make_task("a", "c"), make_task("b", "a"), make_task("c", "b"), make_task("d")]

        cycles = detect_circular_dependencies(tasks)

        assert cycles == [CycleEdge("b", "a")]

    def test_unknown_dependencies_are_ignored(self):
        assert detect_circular_dependencies([make_task("a", "ghost")]) == []

    def test_deep_chain_does_not_hit_recursion_limit(self):
        tasks = [make_task("t0")] + [make_task(f"t{i}", f"t{i - 1}") for i in range(1, 5000)]
        tasks.reverse()

        assert detect_circular_dependencies(tasks) == []
        assert topological_order(tasks)[0].id == "t0"

    def test_cycle_edge_str(self):
        assert str(CycleEdge("a", "b")) == "a -> b"


class TestFindInvalidDependencies:
    """Test cases for dangling dependency detection."""

    def test_reports_missing_ids(self):
        tasks = [make_task("a"), make_task("b", "a", "ghost"), make_task("c", "phantom")]

        assert find_invalid_dependencies(tasks) == [
            InvalidDependency("b", "ghost"),
            InvalidDependency("c", "phantom"),
        ]

    def test_valid_graph(self):
        assert find_invalid_dependencies([make_task("a"), make_task("b", "a")]) == []


class TestValidateTaskGraph:
    """Test cases for the combined report."""

    def test_report_warnings(self):
        report = validate_task_graph([make_task("a", "b"), make_task("b", "a", "ghost")])

        assert report.has_issues
        assert any(w.startswith("Circular dependencies detected") for w in report.warnings)
        assert "Invalid dependencies found: b depends on non-existent task ghost" in report.warnings

    def test_empty_task_list(self):
        report = validate_task_graph([])

        assert report.has_issues
        assert report.warnings == ["Plan contains no tasks"]

    def test_clean_report(self):
        report = validate_task_graph([make_task("a")])

        assert not report.has_issues
        assert report.to_dict() == {"cycles": [], "invalid_dependencies": [], "warnings": []}


class TestTopologicalOrder:
    """Test cases for execution ordering."""

    def test_dependencies_come_first(self):
        tasks = [make_task("d", "c"), make_task("c", "a", "b"), make_task("b", "a"), make_task("a")]

        ordered = topological_order(tasks)

        assert sorted(t.id for t in ordered) == ["a", "b", "c", "d"]
        for task in tasks:
            for dep in task.dependencies:
                assert position(ordered, dep) < position(ordered, task.id)

    def test_independent_tasks_keep_input_order(self):
        tasks = [make_task("x"), make_task("y"), make_task("z")]
        assert [t.id for t in topological_order(tasks)] == ["x", "y", "z"]

    def test_cycle_still_returns_every_task_once(self, caplog):
        tasks = [make_task("a", "b"), make_task("b", "a"), make_task("c", "a")]

        ordered = topological_order(tasks)

        assert len(ordered) == 3
        assert sorted(t.id for t in ordered) == ["a", "b", "c"]
        assert "Cycle edges ignored" in caplog.text

    def test_self_dependency_is_tolerated(self):
        assert [t.id for t in topological_order([make_task("a", "a")])] == ["a"]

    def test_unknown_dependency_is_ignored(self):
        assert [t.id for t in topological_order([make_task("b", "ghost"), make_task("a")])] == ["b", "a"]

    def test_duplicate_ids_are_not_dropped(self):
        first, second = make_task("a"), make_task("a")

        ordered = topological_order([first, second])

        assert len(ordered) == 2
        assert ordered[0] is first and ordered[1] is second

    def test_empty(self):
        assert topological_order([]) == []


class TestGetExecutableTasks:
    """Test cases for executable task selection."""

    @pytest.fixture
    def plan(self):
        return Plan(id="p", title="Plan", description="d", tasks=[make_task("a"), make_task("b", "a")])

    def test_initially_only_root_task(self, plan):
        assert [t.id for t in get_executable_tasks(plan)] == ["a"]

    def test_dependent_unlocks_after_completion(self, plan):
        plan.tasks[0].status = "completed"
        assert [t.id for t in get_executable_tasks(plan)] == ["b"]

    def test_failed_dependency_blocks_forever(self, plan):
        plan.tasks[0].status = "failed"
        for _ in range(3):
            assert get_executable_tasks(plan) == []

    def test_in_progress_tasks_are_not_executable(self, plan):
        plan.tasks[0].status = "in-progress"
        assert get_executable_tasks(plan) == []

    def test_dangling_dependency_is_never_executable(self):
        plan = Plan(id="p", title="Plan", description="d", tasks=[make_task("a", "ghost")])
        assert get_executable_tasks(plan) == []
