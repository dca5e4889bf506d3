"""
Contract tests for the task-graph engine.

These pin down the behaviour callers rely on: similarity and match score
bounds, fail-closed dependency checks, next-task ranking, relevance chain
depth, batch sizing, lossless persistence, dependency validation and
partial success of batch status changes.
"""

import math
from unittest.mock import patch

import pytest

from conftest import read_tasks
from taskmaster import mutations
from taskmaster.batching import UPDATE_DOMAIN, plan_for_size
from taskmaster.errors import InvalidArgumentError
from taskmaster.graph import build_relevance_chain, dependencies_satisfied, select_next_task
from taskmaster.matching import keyword_match_score, match_score, similarity
from taskmaster.models import TaskCollection
from taskmaster.workflow import TaskManager
from taskmaster.workspace import Workspace


def ranking_collection(b_status="pending"):
    return TaskCollection.from_dict({
        "tasks": [
            {"id": 1, "title": "A", "status": "pending", "priority": "low", "dependencies": []},
            {"id": 2, "title": "B", "status": b_status, "priority": "high", "dependencies": []},
            {"id": 3, "title": "C", "status": "pending", "priority": "high", "dependencies": [2]},
        ]
    })


class TestSimilarityContract:
    """Contract tests for string similarity and term matching."""

    @pytest.mark.parametrize("text", ["", "a", "checkout", "User Login"])
    def test_identity(self, text):
        assert similarity(text, text) == 1.0

    @pytest.mark.parametrize("a, b", [("kitten", "sitting"), ("", "abc"), ("flow", "flaw")])
    def test_symmetry(self, a, b):
        assert similarity(a, b) == similarity(b, a)

    @pytest.mark.parametrize("query, candidates", [
        ([], ["auth"]),
        (["auth"], []),
        ([], []),
    ])
    def test_empty_sets_score_zero(self, query, candidates):
        assert match_score(query, candidates) == 0

    def test_score_is_capped(self):
        """
        Given: Many query terms that each hit several candidates
        When: The aggregate score is computed
        Then: It never exceeds 1.0
        """
        score = keyword_match_score(["auth", "authentication", "au"], ["auth", "oauth", "author"])
        assert score <= 1.0


class TestDependencyContract:
    """Contract tests for dependency satisfaction and validation."""

    def test_empty_dependencies_are_satisfied(self, collection):
        assert dependencies_satisfied([], collection) is True
        assert dependencies_satisfied([], TaskCollection.empty()) is True

    def test_missing_dependency_fails_closed(self, collection):
        assert dependencies_satisfied([42], collection) is False
        assert dependencies_satisfied(["2.9"], collection) is False

    def test_self_dependency_is_rejected_without_mutation(self, collection):
        """
        Given: Task 4 with no dependencies
        When: A self dependency 4 -> 4 is added
        Then: InvalidArgument is raised and the dependency list is untouched
        """
        with pytest.raises(InvalidArgumentError):
            mutations.add_dependency(collection, 4, 4)

        assert collection.get_task(4).dependencies == []

    def test_duplicate_dependency_is_rejected(self, collection):
        with pytest.raises(InvalidArgumentError):
            mutations.add_dependency(collection, 2, 1)

        assert collection.get_task(2).dependencies == [1]


class TestNextTaskContract:
    """Contract tests for next task selection."""

    def test_higher_priority_eligible_task_wins(self):
        """
        Given: A (low), B (high) with no dependencies and C (high) depending on B
        When: The next task is selected
        Then: B is returned because C is blocked by B
        """
        assert select_next_task(ranking_collection()).title == "B"

    def test_dependent_becomes_eligible(self):
        """
        Given: B is done
        When: The next task is selected
        Then: C outranks A on priority
        """
        assert select_next_task(ranking_collection(b_status="done")).title == "C"


class TestRelevanceChainContract:
    """Contract tests for relevance chain expansion."""

    def test_depth_zero_keeps_seed_and_direct_links(self, collection):
        chain = build_relevance_chain(collection, 2, 0)

        assert 2 in chain
        assert {1, 3} <= chain

    def test_unknown_seed_yields_itself(self, collection):
        assert build_relevance_chain(collection, 42, 2) == {42}


class TestBatchPlannerContract:
    """Contract tests for token budget batching."""

    def test_large_update_is_batched(self):
        """
        Given: 40 tasks serialising to 80,000 characters
        When: An update batch plan is computed
        Then: 30,000 estimated tokens exceed the ceiling and batches hold at most 5 tasks
        """
        plan = plan_for_size(40, 80000, UPDATE_DOMAIN)

        assert plan.estimated_tokens == 30000
        assert plan.use_batches is True
        assert plan.batch_size <= 5
        assert plan.total_batches == math.ceil(40 / plan.batch_size)

    def test_explicit_batch_size_overrides(self):
        plan = plan_for_size(40, 80000, UPDATE_DOMAIN, explicit_batch_size=8)
        assert plan.batch_size == 8
        assert plan.total_batches == 5


class TestPersistenceContract:
    """Contract tests for task document persistence."""

    def test_load_then_save_is_lossless(self, project_root, sample_document):
        sample_document["tasks"][0]["customField"] = {"owner": "ops"}
        sample_document["metadata"]["generatedAt"] = "2024-01-01T00:00:00Z"
        workspace = Workspace(project_root)
        workspace.save_collection(TaskCollection.from_dict(sample_document))
        expected = read_tasks(project_root)

        workspace.save_collection(workspace.load_collection())

        assert read_tasks(project_root) == expected

    def test_null_fields_survive_load_and_save(self, project_root, sample_document):
        """
        Given: A task document with explicit nulls on task and subtask fields
        When: It is loaded and saved without changes
        Then: The nulls are written back unchanged
        """
        task = sample_document["tasks"][3]
        task.update({"description": None, "priority": None, "details": None, "keywords": None})
        sample_document["tasks"][1]["subtasks"][0]["details"] = None
        workspace = Workspace(project_root)
        workspace.save_collection(TaskCollection.from_dict(sample_document))

        workspace.save_collection(workspace.load_collection())

        saved = read_tasks(project_root)
        assert saved["tasks"][3]["description"] is None
        assert saved["tasks"][3]["priority"] is None
        assert saved["tasks"][3]["details"] is None
        assert saved["tasks"][3]["keywords"] is None
        assert saved["tasks"][1]["subtasks"][0]["details"] is None
        assert saved["tasks"][3] == task

    def test_failed_save_discards_the_change(self, project_root, sample_document):
        """
        Given: A project whose task file cannot be replaced
        When: A status change is requested
        Then: A PersistenceFailure is reported and later calls see the old state
        """
        manager = TaskManager(project_root)
        with patch("taskmaster.workspace.os.replace", side_effect=OSError("read-only file system")):
            result = manager.set_task_status("4", "done")

        assert result["error_type"] == "PersistenceFailure"
        assert manager.show_task(4)["task"]["status"] == "⏳ pending"
        assert read_tasks(project_root) == sample_document


class TestStatusChangeContract:
    """Contract tests for batch status changes."""

    def test_mixed_ids_partially_succeed(self, collection):
        """
        Given: A list mixing valid and unknown ids
        When: The status is set to done
        Then: Valid ids change and only the unknown ids are reported
        """
        result = mutations.set_task_status(collection, "3,99,2.2,2.7", "done")

        assert result.changed is True
        assert [item["id"] for item in result.payload["updated_tasks"]] == ["3", "2.2"]
        assert collection.get_task(3).status == "done"
        assert collection.get_task(2).find_subtask(2).status == "done"
        assert len(result.payload["errors"]) == 2

    def test_invalid_status_changes_nothing(self, collection):
        with pytest.raises(InvalidArgumentError):
            mutations.set_task_status(collection, "3", "finished")

        assert collection.get_task(3).status == "pending"
