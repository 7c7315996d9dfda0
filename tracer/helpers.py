"""Utility functions shared across the Tracer planning core."""

from __future__ import annotations

import json
import random
import re
import string
import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from .models import Plan, Task

_ID_ALPHABET = string.digits + string.ascii_lowercase
_TIME_PATTERN = re.compile(r"(\d+)\s*(minutes?|mins?|hours?|hrs?)", re.IGNORECASE)
PRIORITY_RANK = {"high": 3, "medium": 2, "low": 1}


def generate_id(prefix: str = "item") -> str:
    """Generate an identifier of the form ``<prefix>-<millis>-<suffix>``.

    The timestamp gives rough chronological hinting and the random suffix
    makes collisions unlikely. Uniqueness is not cryptographically guaranteed.
    """
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


_DECODER = json.JSONDecoder()
# A JSON object opens with a key or closes immediately
_OBJECT_START = re.compile(r"\{\s*[\"}]")


def _first_object(text: str) -> Optional[Dict[str, Any]]:
    """Decode the first JSON object found at a plausible ``{`` in ``text``."""
    for match in _OBJECT_START.finditer(text):
        try:
            data, _ = _DECODER.raw_decode(text, match.start())
        except (ValueError, RecursionError):
            continue
        if isinstance(data, dict):
            return data
    return None


def extract_json_from_response(response: Any) -> Optional[Dict[str, Any]]:
    """Extract a JSON object from free text produced by a language model.

    Tries the whole text first, then the first object that decodes from a
    ``{`` inside surrounding prose or code fences. Returns ``None`` when
    nothing usable is found, including for input nested too deeply to decode.
    """
    if not isinstance(response, str) or not response.strip():
        return None

    try:
        data = json.loads(response)
    except (ValueError, RecursionError):
        data = None
    if isinstance(data, dict):
        return data

    return _first_object(response)


def estimated_minutes(estimated_time: str) -> int:
    """Best-effort parse of a free-form duration; unparseable values count as 30."""
    match = _TIME_PATTERN.search(estimated_time or "")
    if not match:
        return 30
    value = int(match.group(1))
    unit = match.group(2).lower()
    if unit.startswith("hour") or unit.startswith("hr"):
        return value * 60
    return value


def calculate_total_time(plan: "Plan") -> str:
    """Sum task estimates into a display string such as ``2h 15m``."""
    total_minutes = sum(estimated_minutes(task.estimated_time) for task in plan.tasks)

    if total_minutes >= 60:
        hours, minutes = divmod(total_minutes, 60)
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    return f"{total_minutes}m"


def get_plan_progress(plan: "Plan") -> Dict[str, int]:
    """Get completed/total counts and the rounded completion percentage."""
    total = len(plan.tasks)
    completed = sum(1 for task in plan.tasks if task.status == "completed")
    percentage = round(completed / total * 100) if total else 0
    return {"completed": completed, "total": total, "percentage": percentage}


def sort_tasks_by_priority(tasks: List["Task"]) -> List["Task"]:
    """Sort by priority (high first), then by fewest dependencies."""
    return sorted(
        tasks,
        key=lambda task: (-PRIORITY_RANK.get(task.priority, 2), len(task.dependencies)),
    )
