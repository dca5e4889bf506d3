"""Unit tests for Task Master data models.

This module tests identifier parsing, task and subtask serialization,
collection bookkeeping and the complexity report structures.
"""

import pytest

from taskmaster.errors import InvalidArgumentError
from taskmaster.models import (
    WORKFLOW_STEPS,
    ComplexityAnalysis,
    ComplexityReport,
    Subtask,
    Task,
    TaskCollection,
    TaskRef,
    is_complete,
    parse_task_ref,
    split_id_list,
    validate_status,
)


class TestTaskRef:
    """Test cases for task identifier parsing."""

    @pytest.mark.parametrize("value, expected", [
        (7, TaskRef(7)),
        ("7", TaskRef(7)),
        (" 3.2 ", TaskRef(3, 2)),
        ("12.10", TaskRef(12, 10)),
        (4.0, TaskRef(4)),
    ])
    def test_parse_valid_ids(self, value, expected):
        """Integers, digit strings and parent.sub strings parse."""
        assert parse_task_ref(value) == expected

    @pytest.mark.parametrize("value", [0, -1, "abc", "1.2.3", "", "1.0", "1.", True, None, "2.x"])
    def test_parse_invalid_ids(self, value):
        """Malformed ids are rejected."""
        with pytest.raises(InvalidArgumentError):
            parse_task_ref(value)

    def test_parse_returns_existing_ref(self):
        """A TaskRef passes through unchanged."""
        ref = TaskRef(3, 1)
        assert parse_task_ref(ref) is ref

    def test_string_and_dependency_forms(self):
        """Tasks are stored as ints and subtasks as dotted strings."""
        assert str(TaskRef(3)) == "3"
        assert str(TaskRef(3, 2)) == "3.2"
        assert TaskRef(3).as_dependency() == 3
        assert TaskRef(3, 2).as_dependency() == "3.2"
        assert TaskRef(3, 2).parent == TaskRef(3)
        assert TaskRef(3, 2).is_subtask
        assert not TaskRef(3).is_subtask

    def test_split_id_list(self):
        """Comma separated ids are trimmed and empty entries dropped."""
        assert split_id_list("1, 2,,3 ") == ["1", "2", "3"]
        assert split_id_list([1, "2.1"]) == ["1", "2.1"]
        assert split_id_list(5) == ["5"]
        assert split_id_list(None) == []


class TestStatuses:
    """Test cases for status helpers."""

    def test_complete_statuses(self):
        assert is_complete("done")
        assert is_complete("completed")
        assert not is_complete("in-progress")
        assert not is_complete(None)

    def test_validate_status(self):
        """Unknown statuses are rejected with the valid list."""
        assert validate_status("deferred") == "deferred"
        with pytest.raises(InvalidArgumentError, match="Valid statuses"):
            validate_status("finished")


class TestTask:
    """Test cases for Task and Subtask serialization."""

    def test_minimal_task_round_trip_omits_absent_keys(self):
        """Keys that were not in the document and still hold defaults are not emitted."""
        data = {"id": 1, "title": "A", "status": "pending"}
        assert Task.from_dict(data).to_dict() == data

    def test_unknown_keys_round_trip(self):
        """Unknown keys on tasks and subtasks survive load and save."""
        data = {
            "id": 2,
            "title": "B",
            "status": "pending",
            "customField": {"nested": True},
            "subtasks": [{"id": 1, "title": "S", "status": "pending", "estimate": 3}],
        }
        result = Task.from_dict(data).to_dict()
        assert result["customField"] == {"nested": True}
        assert result["subtasks"][0]["estimate"] == 3

    def test_present_default_values_are_kept(self):
        """Keys present in the source document are written back even when empty."""
        data = {"id": 1, "title": "A", "status": "pending", "dependencies": [], "priority": "medium"}
        assert Task.from_dict(data).to_dict() == data

    def test_null_values_are_written_back_as_null(self):
        """Nulls read as defaults are saved as null, not as the default."""
        data = {
            "id": 1,
            "title": "A",
            "description": None,
            "details": None,
            "status": None,
            "priority": None,
            "dependencies": None,
            "subtasks": [{"id": 1, "title": None, "status": "pending", "testStrategy": None}],
        }
        task = Task.from_dict(data)
        assert task.priority == "medium"
        assert task.dependencies == []
        assert task.to_dict() == data

    def test_changed_null_value_is_written(self):
        task = Task.from_dict({"id": 1, "title": "A", "status": None, "description": None})
        task.status = "done"
        task.null_keys.discard("status")
        task.description = "Filled in"
        assert task.to_dict() == {"id": 1, "title": "A", "status": "done", "description": "Filled in"}

    def test_from_dict_fills_defaults(self):
        task = Task.from_dict({"id": "4", "title": "Typed"})
        assert task.id == 4
        assert task.status == "pending"
        assert task.priority == "medium"
        assert task.subtasks == []

    def test_effective_priority_defaults_to_medium(self):
        assert Task(id=1, title="A", priority="urgent").effective_priority == "medium"
        assert Task(id=1, title="A", priority="high").effective_priority == "high"

    def test_next_subtask_id(self):
        """Subtask ids are max + 1 per parent, starting at 1."""
        task = Task(id=1, title="A")
        assert task.next_subtask_id() == 1
        task.subtasks = [Subtask(id=1, title="x"), Subtask(id=4, title="y")]
        assert task.next_subtask_id() == 5
        assert task.find_subtask(4).title == "y"
        assert task.find_subtask(2) is None

    def test_validate_reports_issues(self):
        task = Task(
            id=1,
            title="",
            priority="urgent",
            keywords=["a", "b"],
            subtasks=[Subtask(id=1, title="x"), Subtask(id=1, title="y", status="nope")],
        )
        issues = task.validate()
        assert "Task title is required" in issues
        assert "Invalid priority: urgent" in issues
        assert "Tasks should carry between 3 and 8 keywords" in issues
        assert "Duplicate subtask ID: 1.1" in issues
        assert "Subtask 1.1: Invalid status: nope" in issues

    def test_subtask_round_trip(self):
        data = {"id": 2, "title": "S", "status": "done", "dependencies": ["1.1"], "parentTaskId": 1}
        subtask = Subtask.from_dict(data)
        assert subtask.parent_task_id == 1
        assert subtask.to_dict() == data


class TestTaskCollection:
    """Test cases for the task document."""

    def test_next_task_id(self, collection):
        assert collection.next_task_id() == 6
        assert TaskCollection().next_task_id() == 1

    def test_get_task(self, collection):
        assert collection.get_task(3).title == "Session management"
        assert collection.get_task(42) is None

    def test_iter_items_yields_tasks_then_subtasks(self, collection):
        refs = [str(ref) for ref, _ in collection.iter_items()]
        assert refs == ["1", "2", "2.1", "2.2", "3", "4", "5"]

    def test_bump_version(self, collection):
        """Every committed mutation increments the version."""
        assert collection.version == 3
        assert collection.bump_version() == 4
        assert collection.metadata["totalTasks"] == 5
        assert "updatedAt" in collection.metadata

    def test_round_trip_keeps_metadata_and_extra(self, sample_document):
        sample_document["tag"] = "master"
        result = TaskCollection.from_dict(sample_document).to_dict()
        assert result["metadata"] == sample_document["metadata"]
        assert result["tag"] == "master"
        assert result["tasks"] == sample_document["tasks"]

    @pytest.mark.parametrize("data", [{"tasks": {}}, [], {"metadata": {}}])
    def test_from_dict_rejects_invalid_documents(self, data):
        with pytest.raises(InvalidArgumentError):
            TaskCollection.from_dict(data)

    def test_empty(self):
        empty = TaskCollection.empty("Demo")
        assert empty.tasks == []
        assert empty.metadata["projectName"] == "Demo"

    def test_validate_duplicate_ids(self):
        collection = TaskCollection(tasks=[Task(id=1, title="a"), Task(id=1, title="b")])
        assert "Duplicate task ID: 1" in collection.validate()


class TestComplexity:
    """Test cases for complexity analysis structures."""

    def test_analysis_round_trip(self):
        data = {
            "taskId": 3,
            "taskTitle": "Session management",
            "complexityScore": 7,
            "recommendedSubtasks": 4,
            "expansionPrompt": "Split by token lifecycle",
            "reasoning": "Several moving parts",
            "model": "external",
        }
        analysis = ComplexityAnalysis.from_dict(data)
        assert analysis.task_id == 3
        assert analysis.to_dict() == data

    def test_analysis_requires_task_id(self):
        with pytest.raises(InvalidArgumentError):
            ComplexityAnalysis.from_dict({"complexityScore": 3})

    def test_analysis_validation(self):
        analysis = ComplexityAnalysis(task_id=1, task_title="A", complexity_score=11, recommended_subtasks=-1)
        issues = analysis.validate()
        assert len(issues) == 2

    def test_report_round_trip(self):
        data = {
            "meta": {"thresholdScore": 5},
            "complexityAnalysis": [{"taskId": 1, "taskTitle": "A", "complexityScore": 3}],
        }
        report = ComplexityReport.from_dict(data)
        assert report.get(1).complexity_score == 3
        assert report.get(2) is None
        assert report.to_dict()["meta"] == {"thresholdScore": 5}
        assert report.to_dict()["complexityAnalysis"][0]["taskId"] == 1


class TestWorkflowSteps:
    """Test cases for the workflow guide steps."""

    def test_steps_are_numbered_in_order(self):
        assert [step.step_number for step in WORKFLOW_STEPS] == list(range(1, len(WORKFLOW_STEPS) + 1))

    def test_step_to_dict(self):
        data = WORKFLOW_STEPS[0].to_dict()
        assert data["step"] == 1
        assert data["tools"] == ["init_project"]
        assert set(data) == {"step", "name", "tools", "description", "purpose"}


class TestPackageExports:
    """Test cases for the names exported by the package."""

    def test_public_names_resolve(self):
        import taskmaster

        for name in taskmaster.__all__:
            assert getattr(taskmaster, name) is not None
        assert taskmaster.TaskCollection is TaskCollection
