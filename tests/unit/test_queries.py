"""Unit tests for read-only task queries."""

import pytest

from taskmaster.errors import InvalidArgumentError, NotFoundError
from taskmaster.models import ComplexityAnalysis, ComplexityReport, Task, TaskCollection
from taskmaster.queries import (
    format_dependencies,
    get_tasks_by_terms,
    list_tasks,
    list_terms,
    next_task,
    show_task,
    status_report,
    truncate_text,
    validate_dependencies,
)


class TestFormatting:
    """Test cases for display helpers."""

    def test_truncate_text(self):
        assert truncate_text("short", 10) == "short"
        assert truncate_text("a" * 12, 10) == "aaaaaaa..."
        assert truncate_text(None, 10) == ""

    def test_format_dependencies(self, collection):
        assert format_dependencies([], collection) == "None"
        assert format_dependencies([1, 2, 99], collection) == "✅ 1, ⏳ 2, ❓ 99"


class TestListTasks:
    """Test cases for task listing."""

    def test_summary(self, collection):
        result = list_tasks(collection)
        summary = result["summary"]
        assert summary["totalTasks"] == 5
        assert summary["completionPercentage"] == 20.0
        assert summary["statusCounts"]["pending"] == 3
        assert summary["filter"] == "all"
        assert result["tasks"][1]["dependencies"] == "✅ 1"

    def test_status_filter(self, collection):
        result = list_tasks(collection, "pending")
        assert [row["id"] for row in result["tasks"]] == [2, 3, 4]
        assert result["summary"]["filteredTasks"] == 3

    def test_all_filter_is_case_insensitive(self, collection):
        assert len(list_tasks(collection, "ALL")["tasks"]) == 5

    def test_with_subtasks(self, collection):
        result = list_tasks(collection, with_subtasks=True)
        assert [str(row["id"]) for row in result["tasks"]] == ["1", "2", "2.1", "2.2", "3", "4", "5"]
        assert result["summary"]["subtaskStats"]["completed"] == 1

    def test_invalid_filter(self, collection):
        with pytest.raises(InvalidArgumentError, match="Invalid status filter"):
            list_tasks(collection, "finished")


class TestShowTask:
    """Test cases for task details."""

    def test_task_details(self, collection):
        task = show_task(collection, 2)["task"]
        assert task["priority"] == "high"
        assert task["keywords"] == ["auth", "login", "security"]
        assert [item["id"] for item in task["subtasks"]] == ["2.1", "2.2"]
        assert task["dependentTasks"] == [{"id": 3, "title": "Session management", "status": "⏳ pending"}]
        assert task["details"] == "Use bcrypt for password storage"

    def test_subtask_details(self, collection):
        task = show_task(collection, "2.2")["task"]
        assert task["isSubtask"] is True
        assert task["parentTask"]["id"] == 2
        assert task["rawDependencies"] == ["2.1"]
        assert "priority" not in task

    def test_subtask_status_filter(self, collection):
        task = show_task(collection, 2, status_filter="done")["task"]
        assert [item["id"] for item in task["subtasks"]] == ["2.1"]
        assert task["subtaskStats"]["filtered"] == 1
        assert task["subtaskStats"]["total"] == 2

    def test_missing_task(self, collection):
        with pytest.raises(NotFoundError):
            show_task(collection, 42)


class TestNextTask:
    """Test cases for the next-task payload."""

    def test_next_task_details(self, collection):
        result = next_task(collection)
        assert result["next_task"]["id"] == 2
        assert result["next_task"]["dependentCount"] == 1
        assert result["next_task"]["subtasks"]["stats"]["completed"] == 1
        assert result["recommendation"]["action"] == "Start working on this task"

    def test_empty_collection(self):
        result = next_task(TaskCollection())
        assert result["next_task"] is None
        assert "Create some tasks" in result["message"]

    def test_no_eligible_task(self):
        collection = TaskCollection(tasks=[Task(id=1, title="a", status="done")])
        result = next_task(collection)
        assert result["next_task"] is None
        assert result["analysis"]["completedTasks"] == 1


class TestTermSearch:
    """Test cases for keyword and flow searches."""

    def test_keyword_search(self, collection):
        result = get_tasks_by_terms(collection, ["auth"])
        tasks = result["results"]["tasks"]
        assert [task["id"] for task in tasks] == [2, 3]
        assert tasks[0]["score"] == 0.333
        assert tasks[0]["matchedKeywords"] == ["auth"]
        assert result["batch_info"] == {"useBatching": False}

    def test_status_filter_and_max_results(self, collection):
        result = get_tasks_by_terms(collection, ["auth"], max_results=1)
        assert result["results"]["totalMatches"] == 2
        assert result["results"]["returnedCount"] == 1
        collection.get_task(3).status = "done"
        result = get_tasks_by_terms(collection, ["auth"], status_filter="done")
        assert [task["id"] for task in result["results"]["tasks"]] == [3]

    def test_flow_search_with_analysis(self, collection):
        result = get_tasks_by_terms(
            collection, ["User Login"], field="flowNames", min_score=0.4, include_flow_analysis=True
        )
        assert [task["id"] for task in result["results"]["tasks"]] == [2, 3]
        assert result["results"]["tasks"][0]["matchedFlows"] == ["User Login"]
        status = result["flow_analysis"]["searchedFlowsStatus"][0]
        assert status == {"flow": "User Login", "found": True, "taskCount": 2}

    def test_subtask_terms(self, sample_document):
        sample_document["tasks"][1]["subtasks"][0]["keywords"] = ["hashing"]
        collection = TaskCollection.from_dict(sample_document)
        result = get_tasks_by_terms(collection, ["hashing"], include_subtasks=True)
        task = result["results"]["tasks"][0]
        assert task["id"] == "2.1"
        assert task["isSubtask"] is True

    @pytest.mark.parametrize("kwargs", [
        {"terms": []},
        {"terms": ["  "]},
        {"terms": ["auth"], "min_score": 1.5},
        {"terms": ["auth"], "max_results": 0},
        {"terms": ["auth"], "field": "tags"},
    ])
    def test_invalid_arguments(self, collection, kwargs):
        with pytest.raises(InvalidArgumentError):
            get_tasks_by_terms(collection, **kwargs)


class TestListTerms:
    """Test cases for keyword and flow analytics."""

    def test_keyword_listing(self, collection):
        result = list_terms(collection, "keywords")
        assert result["summary"]["totalKeywords"] == 14
        assert result["summary"]["totalUsages"] == 15
        first = result["keywords"][0]
        assert first["keyword"] == "auth"
        assert first["usageCount"] == 2
        assert first["percentage"] == 40.0
        assert result["analytics"]["coverage"]["coveragePercentage"] == 100.0

    def test_search_pattern(self, collection):
        result = list_terms(collection, "keywords", search_pattern="SE")
        assert [item["keyword"] for item in result["keywords"]] == ["security", "session", "setup"]

    def test_flow_listing(self, collection):
        result = list_terms(collection, "flowNames", status_filter="completed", include_task_details=True)
        assert [item["flow"] for item in result["flows"]] == ["Onboarding"]
        assert result["flows"][0]["tasks"][0]["id"] == 1
        assert result["analytics"]["flowDependencies"]["Checkout"] == ["Onboarding"]

    def test_keywords_merge_case_variants(self, sample_document):
        sample_document["tasks"][2]["keywords"] = ["Session", "AUTH", "tokens"]
        collection = TaskCollection.from_dict(sample_document)

        result = list_terms(collection, "keywords", sort_by="alphabetical", search_pattern="auth")

        assert result["keywords"] == [{"keyword": "auth", "usageCount": 2, "taskCount": 2, "percentage": 40.0}]
        assert result["summary"]["totalKeywords"] == 14

    def test_flow_search_status_ignores_case(self, collection):
        result = get_tasks_by_terms(
            collection, ["user login"], field="flowNames", min_score=0.4, include_flow_analysis=True
        )
        status = result["flow_analysis"]["searchedFlowsStatus"][0]
        assert status == {"flow": "user login", "found": True, "taskCount": 2}

    def test_flow_sort_by_tasks(self, collection):
        result = list_terms(collection, "flowNames", sort_by="tasks", include_analytics=False)
        assert result["flows"][0]["flow"] == "User Login"
        assert "analytics" not in result

    def test_completion_sort_only_for_flows(self, collection):
        with pytest.raises(InvalidArgumentError):
            list_terms(collection, "keywords", sort_by="completion")

    def test_invalid_status_filter(self, collection):
        with pytest.raises(InvalidArgumentError):
            list_terms(collection, "flowNames", status_filter="stalled")


class TestValidateDependencies:
    """Test cases for dependency validation."""

    def test_sample_is_valid(self, collection):
        result = validate_dependencies(collection)
        assert result["valid"]
        assert result["message"] == "All dependencies are valid"

    def test_detects_cycles(self):
        collection = TaskCollection(tasks=[
            Task(id=1, title="a", dependencies=[2]),
            Task(id=2, title="b", dependencies=[1]),
        ])
        result = validate_dependencies(collection)
        assert not result["valid"]
        assert result["summary"]["circularChains"] == 1
        assert result["issues"][0]["cycle"] == ["1", "2", "1"]

    def test_detects_bad_entries(self):
        collection = TaskCollection(tasks=[
            Task(id=1, title="a", dependencies=[1, 99, "x"], relevant_tasks=[42]),
        ])
        types = [issue["type"] for issue in validate_dependencies(collection)["issues"]]
        assert types == ["self-dependency", "missing", "malformed", "missing-relevant-task"]


class TestStatusReport:
    """Test cases for the CSV status report."""

    def test_basic_report(self, collection):
        report = ComplexityReport(analyses=[ComplexityAnalysis(task_id=3, task_title="Session", complexity_score=6)])
        result = status_report(collection, report)
        lines = result["csv_data"].splitlines()
        assert lines[0].startswith("Task ID,Title,Status,Complexity")
        assert lines[2] == '2,"User authentication",pending,N/A,"[1]",2,1,Yes,1,No'
        assert lines[3].split(",")[3] == "6"
        assert result["report_type"] == "basic_status"
        assert result["summary"]["completedTasks"] == 1
        assert result["summary"]["completionPercentage"] == 20.0

    def test_subtasks_and_filter(self, collection):
        result = status_report(collection, status_filter="pending", include_subtasks=True)
        ids = [row["taskId"] for row in result["tasks"]]
        assert ids == [2, "2.2", 3, 4]
        assert result["summary"]["totalSubtasks"] == 1

    def test_detailed_report(self, collection):
        result = status_report(collection, detailed=True)
        assert result["report_type"] == "detailed_status"
        assert "Keywords" in result["csv_data"].splitlines()[0]
