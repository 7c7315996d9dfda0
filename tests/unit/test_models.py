"""Unit tests for Tracer models.

This module tests the core data structures, their validation,
serialization, and the coercion of raw generated task entries.
"""

import pytest
from datetime import datetime, timezone

from tracer.models import (
    Plan,
    RawTaskCandidate,
    Task,
    normalize_priority,
    parse_timestamp,
)


class TestTask:
    """Test cases for Task model."""

    def test_task_defaults(self):
        task = Task(id="t1", title="Setup", description="Create the project")

        assert task.status == "pending"
        assert task.priority == "medium"
        assert task.estimated_time == "30 minutes"
        assert task.files == []
        assert task.dependencies == []
        assert task.code is None
        assert task.accepted_with_issues is False

    def test_task_to_dict_uses_canonical_keys(self):
        task = Task(
            id="t1",
            title="Setup",
            description="Create the project",
            files=["package.json"],
            dependencies=["t0"],
            estimated_time="15 minutes",
            priority="high",
        )

        result = task.to_dict()

        assert result["estimatedTime"] == "15 minutes"
        assert result["files"] == ["package.json"]
        assert result["dependencies"] == ["t0"]
        assert "code" not in result
        assert "acceptedWithIssues" not in result

    def test_task_to_dict_includes_code_when_set(self):
        task = Task(id="t1", title="A", description="B", code="print('hi')", accepted_with_issues=True)

        result = task.to_dict()

        assert result["code"] == "print('hi')"
        assert result["acceptedWithIssues"] is True

    def test_task_validation_success(self):
        task = Task(id="t1", title="Setup", description="Create the project")
        assert task.validate() == []

    def test_task_validation_failures(self):
        task = Task(id="t1", title=" ", description="", estimated_time="", priority="urgent", dependencies=["t1"])

        issues = task.validate()

        assert "Task title is required" in issues
        assert "Task description is required" in issues
        assert "Task priority must be 'low', 'medium', or 'high'" in issues
        assert "Task estimated time is required" in issues
        assert "Task t1 depends on itself" in issues


class TestPlan:
    """Test cases for Plan model."""

    def test_plan_defaults(self):
        plan = Plan(id="p1", title="Plan", description="Desc")

        assert plan.status == "draft"
        assert plan.tasks == []
        assert plan.created.tzinfo is not None

    def test_plan_to_dict(self):
        created = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        plan = Plan(
            id="p1",
            title="Plan",
            description="Desc",
            tasks=[Task(id="t1", title="A", description="B")],
            created=created,
            updated=created,
        )

        result = plan.to_dict()

        assert result["id"] == "p1"
        assert result["created"] == "2024-05-01T12:00:00+00:00"
        assert result["status"] == "draft"
        assert result["tasks"][0]["id"] == "t1"

    def test_touch_refreshes_updated(self):
        old = datetime(2020, 1, 1, tzinfo=timezone.utc)
        plan = Plan(id="p1", title="Plan", description="Desc", created=old, updated=old)

        plan.touch()

        assert plan.updated > old
        assert plan.created == old

    def test_get_task_and_status_queries(self):
        plan = Plan(
            id="p1",
            title="Plan",
            description="Desc",
            tasks=[
                Task(id="t1", title="A", description="B", status="completed"),
                Task(id="t2", title="C", description="D"),
            ],
        )

        assert plan.get_task("t2").title == "C"
        assert plan.get_task("missing") is None
        assert plan.task_ids() == ["t1", "t2"]
        assert [t.id for t in plan.tasks_by_status("completed")] == ["t1"]

    @pytest.mark.parametrize("status,terminal", [
        ("draft", False), ("approved", False), ("executing", False), ("completed", True), ("failed", True),
    ])
    def test_is_terminal(self, status, terminal):
        assert Plan(id="p", title="t", description="d", status=status).is_terminal() is terminal


class TestRawTaskCandidate:
    """Test cases for coercing untyped task entries."""

    def test_non_object_entries_are_rejected(self):
        assert RawTaskCandidate.from_payload("a task", 0) is None
        assert RawTaskCandidate.from_payload(None, 0) is None
        assert RawTaskCandidate.from_payload(["t1"], 0) is None

    def test_coerces_fields(self):
        candidate = RawTaskCandidate.from_payload(
            {
                "id": "  t1 ",
                "title": "Setup",
                "files": ["a.py", 3, None, ""],
                "dependencies": "t0",
                "estimatedTime": "1 hour",
                "priority": "HIGH",
                "status": "completed",
            },
            0,
        )

        assert candidate.id == "t1"
        assert candidate.files == ["a.py", "3"]
        assert candidate.dependencies == []
        assert candidate.estimated_time == "1 hour"

    def test_accepts_snake_case_estimated_time(self):
        candidate = RawTaskCandidate.from_payload({"estimated_time": "2 hours"}, 0)
        assert candidate.estimated_time == "2 hours"

    def test_to_task_applies_defaults_and_forces_pending(self):
        candidate = RawTaskCandidate.from_payload({"status": "completed", "priority": "urgent", "code": "x"}, 2)

        task = candidate.to_task("task-1")

        assert task.id == "task-1"
        assert task.title == "Task 3"
        assert task.description == "No description provided"
        assert task.status == "pending"
        assert task.priority == "medium"
        assert task.estimated_time == "30 minutes"
        assert task.code is None

    def test_to_task_keeps_status_when_restoring(self):
        candidate = RawTaskCandidate.from_payload(
            {"title": "A", "status": "completed", "code": "x", "acceptedWithIssues": True}, 0
        )

        task = candidate.to_task("t1", keep_status=True)

        assert task.status == "completed"
        assert task.code == "x"
        assert task.accepted_with_issues is True

    def test_to_task_ignores_unknown_status_when_restoring(self):
        candidate = RawTaskCandidate.from_payload({"status": "done"}, 0)
        assert candidate.to_task("t1", keep_status=True).status == "pending"


class TestHelpers:
    """Test cases for module-level model helpers."""

    @pytest.mark.parametrize("value,expected", [
        ("low", "low"), ("High", "high"), ("urgent", "medium"), (None, "medium"), (3, "medium"),
    ])
    def test_normalize_priority(self, value, expected):
        assert normalize_priority(value) == expected

    def test_parse_timestamp_with_z_suffix(self):
        parsed = parse_timestamp("2024-05-01T12:00:00.000Z")
        assert parsed == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def test_parse_timestamp_naive_assumed_utc(self):
        assert parse_timestamp("2024-05-01T12:00:00").tzinfo == timezone.utc

    def test_parse_timestamp_invalid(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None
