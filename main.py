"""MCP server exposing the Tracer planning tools."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from tracer.config import PROJECT_ROOT_ENV, load_config
from tracer.graph import get_executable_tasks, topological_order, validate_task_graph
from tracer.helpers import calculate_total_time, get_plan_progress
from tracer.lifecycle import MUTABLE_PLAN_STATUSES, can_transition_task
from tracer.models import Plan, Task
from tracer.planning import PlanService
from tracer.tracer_logging import setup_logging
from tracer.workspace import Workspace, summarize_codebase

mcp = FastMCP("tracer")

PROJECT_MARKER_DIRECTORY = ".tracer"

_service = PlanService()


def _locate_workspace_root() -> Optional[Path]:
    cwd = Path.cwd().resolve()
    for base in [cwd, *cwd.parents]:
        if (base / PROJECT_MARKER_DIRECTORY).is_dir():
            return base
    return None


def _resolve_root(root: Optional[str]) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_path = load_config().project_path
    if env_path is not None:
        if not env_path.exists():
            raise ValueError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{env_path}', which does not exist."
            )
        return env_path

    detected_root = _locate_workspace_root()
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument when calling the tool "
        f"or set the {PROJECT_ROOT_ENV} environment variable."
    )


def _workspace(root: Optional[str]) -> Workspace:
    return Workspace(_resolve_root(root), service=_service)


def _load(plan_id: str, root: Optional[str]) -> tuple[Workspace, Plan]:
    workspace = _workspace(root)
    if not workspace.plan_exists(plan_id):
        raise ValueError(f"Plan '{plan_id}' not found. Create it with create_plan first.")
    return workspace, workspace.load_plan(plan_id)


def _task_index(plan: Plan, task_number: int) -> int:
    if not 1 <= task_number <= len(plan.tasks):
        raise ValueError(f"Invalid task number {task_number}; plan has {len(plan.tasks)} tasks.")
    return task_number - 1


def _require_editable(plan: Plan) -> None:
    if plan.status not in MUTABLE_PLAN_STATUSES:
        raise ValueError(f"Plan '{plan.id}' is {plan.status} and can no longer be edited.")


def _require_open(plan: Plan) -> None:
    if plan.is_terminal():
        raise ValueError(f"Plan '{plan.id}' is already {plan.status}.")


def _require_task(plan: Plan, task_id: str, target: str) -> Task:
    task = plan.get_task(task_id)
    if task is None:
        raise ValueError(f"Task '{task_id}' not found in plan '{plan.id}'.")
    if not can_transition_task(task.status, target):
        raise ValueError(f"Task '{task_id}' is {task.status} and cannot become {target}.")
    return task


def _plan_view(plan: Plan, path: Optional[Path] = None) -> Dict[str, Any]:
    report = validate_task_graph(plan.tasks)
    view = {
        "plan": plan.to_dict(),
        "progress": get_plan_progress(plan),
        "estimated_total_time": calculate_total_time(plan),
        "warnings": report.warnings,
    }
    if path is not None:
        view["plan_path"] = str(path)
    return view


@mcp.tool()
def get_codebase_summary(root: Optional[str] = None) -> Dict[str, str]:
    """STEP 1: Summarize the project's source files as context for drafting a plan."""

    resolved = _resolve_root(root)
    config = load_config()
    return {"root": str(resolved), "summary": summarize_codebase(resolved, config)}


@mcp.tool()
def create_plan(requirements: str, plan_response: str, root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 2: Build and store a plan from generated plan text.

    plan_response should contain a JSON object with title, description and tasks
    (id, title, description, files, dependencies, estimatedTime, priority). Text that
    cannot be interpreted produces a single-task fallback plan."""

    if not requirements or not requirements.strip():
        raise ValueError("Requirements cannot be empty")

    workspace = _workspace(root)
    plan = _service.build_plan(plan_response, requirements.strip())
    path = workspace.save_plan(plan)
    return {
        **_plan_view(plan, path),
        "next_suggested_step": "approve_plan",
    }


@mcp.tool()
def get_plan(plan_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Retrieve a stored plan with progress and validation warnings."""

    workspace, plan = _load(plan_id, root)
    return _plan_view(plan, workspace.plan_path(plan_id))


@mcp.tool()
def list_plans(root: Optional[str] = None) -> Dict[str, Any]:
    """Enumerate the plans stored in the workspace."""

    return {"plans": _workspace(root).list_plans()}


@mcp.resource("tracer://plans")
def resource_plans() -> str:
    """Resource view listing stored plans."""

    try:
        workspace = _workspace(None)
    except ValueError:
        return (
            f"No project root detected. Launch tools with a 'root' argument or set {PROJECT_ROOT_ENV}."
        )

    plans = workspace.list_plans()
    if not plans:
        return "No plans have been created yet."

    lines = ["Tracer Plans"]
    for summary in plans:
        progress = summary["progress"]
        lines.append("")
        lines.append(f"- {summary['plan_id']}: {summary['title']} [{summary['status']}]")
        lines.append(f"  Progress: {progress['completed']}/{progress['total']} ({progress['percentage']}%)")
    return "\n".join(lines)


@mcp.tool()
def modify_task(plan_id: str, task_number: int, changes: Dict[str, Any], root: Optional[str] = None) -> Dict[str, Any]:
    """Change fields of a task (1-based task_number). The task id never changes."""

    workspace, plan = _load(plan_id, root)
    _require_editable(plan)
    index = _task_index(plan, task_number)
    _service.modify_task(plan, index, changes)
    path = workspace.save_plan(plan)
    return {**_plan_view(plan, path), "task": plan.tasks[index].to_dict()}


@mcp.tool()
def add_task(plan_id: str, task: Dict[str, Any], root: Optional[str] = None) -> Dict[str, Any]:
    """Append a task to a draft or approved plan."""

    workspace, plan = _load(plan_id, root)
    _require_editable(plan)
    _service.add_task(plan, task)
    path = workspace.save_plan(plan)
    return {**_plan_view(plan, path), "task": plan.tasks[-1].to_dict()}


@mcp.tool()
def remove_task(plan_id: str, task_number: int, root: Optional[str] = None) -> Dict[str, Any]:
    """Remove a task (1-based task_number) and every dependency on it."""

    workspace, plan = _load(plan_id, root)
    _require_editable(plan)
    removed = plan.tasks[_task_index(plan, task_number)]
    _service.remove_task(plan, task_number - 1)
    path = workspace.save_plan(plan)
    return {**_plan_view(plan, path), "removed_task_id": removed.id}


@mcp.tool()
def approve_plan(plan_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 3: Approve a draft plan for execution."""

    workspace, plan = _load(plan_id, root)
    if plan.status != "draft":
        raise ValueError(f"Plan '{plan_id}' is {plan.status}; only draft plans can be approved.")
    _service.approve_plan(plan)
    path = workspace.save_plan(plan)
    return {**_plan_view(plan, path), "next_suggested_step": "next_tasks"}


@mcp.tool()
def validate_plan(plan_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Report circular and dangling task dependencies."""

    _, plan = _load(plan_id, root)
    report = validate_task_graph(plan.tasks)
    task_issues = {task.id: task.validate() for task in plan.tasks if task.validate()}
    return {**report.to_dict(), "task_issues": task_issues, "valid": not report.has_issues and not task_issues}


@mcp.tool()
def execution_order(plan_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """List tasks so that each appears after its dependencies."""

    _, plan = _load(plan_id, root)
    return {"plan_id": plan_id, "tasks": [task.to_dict() for task in topological_order(plan.tasks)]}


@mcp.tool()
def next_tasks(plan_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 4: Pending tasks whose dependencies are all completed."""

    _, plan = _load(plan_id, root)
    ready = get_executable_tasks(plan)
    return {
        "plan_id": plan_id,
        "plan_status": plan.status,
        "tasks": [task.to_dict() for task in ready],
        "progress": get_plan_progress(plan),
    }


@mcp.tool()
def start_task(plan_id: str, task_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Mark an executable task in-progress; the plan starts executing if it has not yet."""

    workspace, plan = _load(plan_id, root)
    _require_open(plan)
    task = _require_task(plan, task_id, "in-progress")
    if all(item is not task for item in get_executable_tasks(plan)):
        raise ValueError(f"Task '{task_id}' has unfinished dependencies: {', '.join(task.dependencies)}")

    _service.start_execution(plan)
    _service.update_task_status(plan, task_id, "in-progress")
    workspace.save_plan(plan)
    return {"plan_id": plan_id, "plan_status": plan.status, "task": task.to_dict()}


@mcp.tool()
def complete_task(
    plan_id: str,
    task_id: str,
    code: Optional[str] = None,
    accepted_with_issues: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Mark an in-progress task completed; the plan completes with its last task."""

    workspace, plan = _load(plan_id, root)
    _require_open(plan)
    task = _require_task(plan, task_id, "completed")
    if code is not None:
        task.code = code
    task.accepted_with_issues = accepted_with_issues
    _service.update_task_status(plan, task_id, "completed")
    workspace.save_plan(plan)
    return {
        "plan_id": plan_id,
        "plan_status": plan.status,
        "task": task.to_dict(),
        "progress": get_plan_progress(plan),
        "next_tasks": [item.id for item in get_executable_tasks(plan)],
    }


@mcp.tool()
def fail_task(plan_id: str, task_id: str, halt: bool = True, reason: str = "", root: Optional[str] = None) -> Dict[str, Any]:
    """Mark an in-progress task failed. With halt, the whole plan is marked failed."""

    workspace, plan = _load(plan_id, root)
    _require_open(plan)
    task = _require_task(plan, task_id, "failed")
    _service.update_task_status(plan, task_id, "failed")
    if halt and plan.status == "executing":
        _service.fail_plan(plan, reason or f"task {task_id} failed")
    workspace.save_plan(plan)
    return {"plan_id": plan_id, "plan_status": plan.status, "task": task.to_dict()}


@mcp.tool()
def reset_task(plan_id: str, task_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Return a failed task to pending so it can be retried."""

    workspace, plan = _load(plan_id, root)
    _require_open(plan)
    task = _require_task(plan, task_id, "pending")
    _service.update_task_status(plan, task_id, "pending")
    workspace.save_plan(plan)
    return {"plan_id": plan_id, "plan_status": plan.status, "task": task.to_dict()}


@mcp.tool()
def plan_progress(plan_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Completion counts per status for a plan."""

    _, plan = _load(plan_id, root)
    by_status: Dict[str, List[str]] = {}
    for task in plan.tasks:
        by_status.setdefault(task.status, []).append(task.id)
    return {
        "plan_id": plan_id,
        "plan_status": plan.status,
        "progress": get_plan_progress(plan),
        "tasks_by_status": by_status,
        "estimated_total_time": calculate_total_time(plan),
    }


@mcp.tool()
def export_handoff(plan_id: str, root: Optional[str] = None) -> Dict[str, str]:
    """Write a Markdown hand-off prompt for an external coding agent."""

    workspace, plan = _load(plan_id, root)
    path = workspace.save_handoff(plan)
    return {"plan_id": plan_id, "handoff_path": str(path), "content": path.read_text(encoding="utf-8")}


@mcp.tool()
def export_execution_output(plan_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Write the code attached to completed tasks as a Markdown document."""

    workspace, plan = _load(plan_id, root)
    path = workspace.save_execution_output(plan)
    return {
        "plan_id": plan_id,
        "plan_status": plan.status,
        "output_path": str(path),
        "progress": get_plan_progress(plan),
    }


def main() -> None:
    config = load_config()
    setup_logging(config.log_level, config.log_file)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
