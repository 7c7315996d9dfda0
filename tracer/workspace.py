"""Workspace management for Tracer.

This module stores plans on disk, writes execution output and hand-off
documents, and summarizes the project's source files for the plan
generator.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import TracerConfig
from .graph import topological_order
from .helpers import calculate_total_time, get_plan_progress
from .models import Plan
from .planning import PlanService, export_plan
from .tracer_logging import (
    ErrorType,
    log_error_with_context,
    log_operation,
    log_performance,
    plan_events,
)

logger = logging.getLogger("tracer.workspace")

SKIPPED_DIRECTORIES = {"node_modules"}


class Workspace:
    """Manage Tracer plan files within a repository."""

    STORAGE_DIR_ENV = "TRACER_STORAGE_DIR"
    DEFAULT_STORAGE_DIR = ".tracer"

    def __init__(self, root: Path | str, service: Optional[PlanService] = None):
        """Initialize workspace with given root directory."""
        try:
            self.root = Path(root).resolve()
            self.service = service or PlanService()
            storage_name = os.getenv(self.STORAGE_DIR_ENV) or self.DEFAULT_STORAGE_DIR

            self.base_dir = self.root / storage_name
            self.plans_dir = self.base_dir / "plans"
            self.output_dir = self.base_dir / "output"

            try:
                self.plans_dir.mkdir(parents=True, exist_ok=True)
                self.output_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error(f"Failed to create workspace directories: {e}")
                raise RuntimeError(f"Could not initialize workspace at {self.root}: {e}")

            logger.debug(f"Workspace initialized at {self.root}")

        except Exception as e:
            log_error_with_context(e, {"operation": "workspace_init", "root": str(root)})
            raise

    # ------------------------------------------------------------------
    # Plan storage
    # ------------------------------------------------------------------

    def plan_path(self, plan_id: str) -> Path:
        if not plan_id or "/" in plan_id or "\\" in plan_id or plan_id.startswith("."):
            raise ValueError(f"Invalid plan id: '{plan_id}'")
        return self.plans_dir / f"{plan_id}.json"

    def plan_exists(self, plan_id: str) -> bool:
        return self.plan_path(plan_id).exists()

    @log_performance("save_plan")
    def save_plan(self, plan: Plan) -> Path:
        """Write the plan's canonical JSON to the plans directory."""
        path = self.plan_path(plan.id)
        with log_operation("save_plan", plan_id=plan.id, path=str(path)):
            try:
                path.write_text(export_plan(plan) + "\n", encoding="utf-8")
            except OSError as e:
                self.service.errors.handle(e, ErrorType.FILE_ERROR, {"operation": "save_plan", "path": str(path)})
                raise RuntimeError(f"Could not save plan '{plan.id}': {e}")

        plan_events.log_plan_event("plan_saved", plan_id=plan.id, path=str(path))
        return path

    def load_plan(self, plan_id: str) -> Plan:
        """Read a stored plan; raises ``FileNotFoundError`` or ``PlanImportError``."""
        path = self.plan_path(plan_id)
        if not path.exists():
            raise FileNotFoundError(f"Plan '{plan_id}' not found in {self.plans_dir}")
        plan = self.service.import_plan(path.read_text(encoding="utf-8"))
        if plan.id != plan_id:
            logger.warning(f"Plan file {path.name} holds plan id '{plan.id}'")
        return plan

    def list_plans(self) -> List[Dict[str, Any]]:
        """Summaries of stored plans, newest file first; unreadable files are skipped."""
        summaries = []
        paths = sorted(self.plans_dir.glob("*.json"), key=lambda p: p.stat().st_mtime, reverse=True)
        for path in paths:
            try:
                plan = self.service.import_plan(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable plan file {path}: {e}")
                continue
            summaries.append({
                "plan_id": plan.id,
                "title": plan.title,
                "status": plan.status,
                "progress": get_plan_progress(plan),
                "plan_path": str(path),
            })
        return summaries

    def delete_plan(self, plan_id: str) -> bool:
        path = self.plan_path(plan_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"Deleted plan {plan_id}")
        return True

    # ------------------------------------------------------------------
    # Output documents
    # ------------------------------------------------------------------

    def save_handoff(self, plan: Plan) -> Path:
        """Write the hand-off prompt for an external coding agent."""
        path = self.output_dir / f"{plan.id}-handoff.md"
        path.write_text(render_handoff(plan), encoding="utf-8")
        logger.info(f"Hand-off prompt saved to {path}")
        return path

    def save_execution_output(self, plan: Plan) -> Path:
        """Write the code attached to completed tasks, in execution order."""
        path = self.output_dir / f"{plan.id}-output.md"
        path.write_text(render_execution_output(plan), encoding="utf-8")
        logger.info(f"Execution output saved to {path}")
        return path


# ------------------------------------------------------------------
# Rendering
# ------------------------------------------------------------------

def render_handoff(plan: Plan) -> str:
    """Markdown prompt describing the plan for an external coding agent."""
    lines = [
        f"# {plan.title}",
        "",
        plan.description,
        "",
        f"Estimated total time: {calculate_total_time(plan)}",
        "",
        "Implement the following tasks in order. Each task lists the files it touches",
        "and the tasks that must be finished before it starts.",
        "",
    ]
    for number, task in enumerate(topological_order(plan.tasks), start=1):
        lines.append(f"## {number}. {task.title} (`{task.id}`)")
        lines.append("")
        lines.append(f"- Priority: {task.priority}")
        lines.append(f"- Estimated time: {task.estimated_time}")
        lines.append(f"- Files: {', '.join(task.files) if task.files else 'none specified'}")
        lines.append(f"- Depends on: {', '.join(task.dependencies) if task.dependencies else 'nothing'}")
        lines.append("")
        lines.append(task.description)
        lines.append("")
    return "\n".join(lines)


def render_execution_output(plan: Plan) -> str:
    progress = get_plan_progress(plan)
    lines = [
        f"# Execution output: {plan.title}",
        "",
        f"Status: {plan.status} ({progress['completed']}/{progress['total']} tasks completed)",
        "",
    ]
    for task in topological_order(plan.tasks):
        lines.append(f"## {task.title} [{task.status}]")
        if task.accepted_with_issues:
            lines.append("")
            lines.append("Accepted despite unresolved review issues.")
        lines.append("")
        if task.code:
            lines.append("```")
            lines.append(task.code.rstrip("\n"))
            lines.append("```")
        else:
            lines.append("No code generated.")
        lines.append("")
    return "\n".join(lines)


# ------------------------------------------------------------------
# Codebase summary
# ------------------------------------------------------------------

def _source_files(root: Path, extensions) -> List[Path]:
    files = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(
            name for name in dirnames
            if not name.startswith(".") and name not in SKIPPED_DIRECTORIES
        )
        for filename in sorted(filenames):
            if filename.endswith(tuple(extensions)):
                files.append(Path(dirpath) / filename)
    return files


def summarize_codebase(root: Path | str, config: Optional[TracerConfig] = None) -> str:
    """Plain-text digest of a bounded number of source files, each truncated."""
    config = config or TracerConfig()
    root = Path(root).resolve()
    files = _source_files(root, config.supported_extensions)[:config.max_files_to_analyze]
    if not files:
        return "No source files found in project."

    sections = []
    for path in files:
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Could not read {path}: {e}")
            continue
        if len(content) > config.max_file_content_length:
            content = content[:config.max_file_content_length] + "\n... (truncated)"
        sections.append(f"File: {path.relative_to(root).as_posix()}\n{content}")

    logger.debug(f"Summarized {len(sections)} files under {root}")
    return "\n\n".join(sections) if sections else "No source files found in project."
