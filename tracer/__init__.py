"""Tracer - plan/task dependency engine for an AI planning assistant."""

# Submodules import each other relatively and never from the package root

from .config import TracerConfig, load_config
from .executor import CodeGenerator, CodeReviewer, FailureAction, ReviewResult, TaskExecutor
from .models import Plan, Task
from .planning import PlanGenerator, PlanImportError, PlanService
from .workspace import Workspace

__version__ = "0.1.0"

__all__ = [
    "CodeGenerator",
    "CodeReviewer",
    "FailureAction",
    "Plan",
    "PlanGenerator",
    "PlanImportError",
    "PlanService",
    "ReviewResult",
    "Task",
    "TaskExecutor",
    "TracerConfig",
    "Workspace",
    "load_config",
]
