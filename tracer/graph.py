"""Dependency graph checks and scheduling for plan tasks.

Tasks reference each other by id through ``Task.dependencies``; an edge
``task -> dependency`` means the dependency must complete first. Everything
here is pure: findings are returned as data and nothing raises on a
malformed graph. Traversals use an explicit stack, so plan size is not
bounded by the interpreter recursion limit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, List, NamedTuple, Set, Tuple

if TYPE_CHECKING:
    from .models import Plan, Task

logger = logging.getLogger("tracer.graph")


class CycleEdge(NamedTuple):
    task_id: str
    dependency_id: str

    def __str__(self) -> str:
        return f"{self.task_id} -> {self.dependency_id}"


class InvalidDependency(NamedTuple):
    task_id: str
    missing_id: str

    def __str__(self) -> str:
        return f"{self.task_id} depends on non-existent task {self.missing_id}"


@dataclass(slots=True)
class GraphReport:
    """Result of validating a task collection."""

    cycles: List[CycleEdge] = field(default_factory=list)
    invalid_dependencies: List[InvalidDependency] = field(default_factory=list)
    empty: bool = False

    @property
    def warnings(self) -> List[str]:
        warnings = []
        if self.cycles:
            warnings.append("Circular dependencies detected: " + ", ".join(str(edge) for edge in self.cycles))
        if self.invalid_dependencies:
            warnings.append("Invalid dependencies found: " + ", ".join(str(dep) for dep in self.invalid_dependencies))
        if self.empty:
            warnings.append("Plan contains no tasks")
        return warnings

    @property
    def has_issues(self) -> bool:
        return bool(self.cycles or self.invalid_dependencies or self.empty)

    def to_dict(self) -> Dict[str, object]:
        return {
            "cycles": [list(edge) for edge in self.cycles],
            "invalid_dependencies": [list(dep) for dep in self.invalid_dependencies],
            "warnings": self.warnings,
        }


def _index_by_id(tasks: Iterable["Task"]) -> Dict[str, "Task"]:
    # First occurrence wins when ids collide
    index: Dict[str, "Task"] = {}
    for task in tasks:
        index.setdefault(task.id, task)
    return index


def _walk(tasks: List["Task"]) -> Iterator[Tuple[str, str, str]]:
    """Depth-first walk over every task, yielding traversal events.

    Events are ``("back", task_id, dep_id)`` for an edge that reaches a task
    still on the stack, and ``("done", task_id, "")`` when a task leaves the
    stack after all of its dependencies. Each task is entered once; unknown
    dependency ids are ignored.
    """
    by_id = _index_by_id(tasks)
    visited: Set[str] = set()
    on_stack: Set[str] = set()

    for root in tasks:
        if root.id in visited:
            continue
        visited.add(root.id)
        on_stack.add(root.id)
        stack = [(root.id, iter(by_id[root.id].dependencies))]

        while stack:
            task_id, pending_deps = stack[-1]
            descended = False
            for dep_id in pending_deps:
                if dep_id in on_stack:
                    yield "back", task_id, dep_id
                    continue
                if dep_id in visited or dep_id not in by_id:
                    continue
                visited.add(dep_id)
                on_stack.add(dep_id)
                stack.append((dep_id, iter(by_id[dep_id].dependencies)))
                descended = True
                break
            if not descended:
                stack.pop()
                on_stack.discard(task_id)
                yield "done", task_id, ""


def detect_circular_dependencies(tasks: List["Task"]) -> List[CycleEdge]:
    """Report every edge that closes a cycle, including self-dependencies."""
    return [CycleEdge(task_id, dep_id) for kind, task_id, dep_id in _walk(tasks) if kind == "back"]


def find_invalid_dependencies(tasks: List["Task"]) -> List[InvalidDependency]:
    """Report ``(task_id, missing_id)`` for each dependency naming no task."""
    task_ids = {task.id for task in tasks}
    return [
        InvalidDependency(task.id, dep_id)
        for task in tasks
        for dep_id in task.dependencies
        if dep_id not in task_ids
    ]


def validate_task_graph(tasks: List["Task"]) -> GraphReport:
    return GraphReport(
        cycles=detect_circular_dependencies(tasks),
        invalid_dependencies=find_invalid_dependencies(tasks),
        empty=not tasks,
    )


def topological_order(tasks: List["Task"]) -> List["Task"]:
    """Order tasks so each appears after all of its dependencies.

    Edges that close a cycle are skipped, so the ordering still contains
    every task exactly once; within a cycle the order is best effort.
    """
    by_id = _index_by_id(tasks)
    ordered: List["Task"] = []
    skipped: List[CycleEdge] = []

    for kind, task_id, dep_id in _walk(tasks):
        if kind == "done":
            ordered.append(by_id[task_id])
        else:
            skipped.append(CycleEdge(task_id, dep_id))

    if skipped:
        logger.warning(
            "Cycle edges ignored while ordering tasks: %s",
            ", ".join(str(edge) for edge in skipped),
        )

    # Tasks that reuse an already-seen id are appended in input order
    emitted = {id(task) for task in ordered}
    ordered.extend(task for task in tasks if id(task) not in emitted)
    return ordered


def get_executable_tasks(plan: "Plan") -> List["Task"]:
    """Pending tasks whose dependencies have all completed.

    Computed from current statuses on every call.
    """
    completed_ids = {task.id for task in plan.tasks if task.status == "completed"}
    return [
        task
        for task in plan.tasks
        if task.status == "pending" and all(dep_id in completed_ids for dep_id in task.dependencies)
    ]
