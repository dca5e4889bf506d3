"""Unit tests for token-budget batch planning."""

import pytest

from taskmaster.batching import (
    COMPLEXITY_DOMAIN,
    UPDATE_DOMAIN,
    BatchPlan,
    batch_breakdown,
    merge_complexity_analyses,
    plan_batches,
    plan_for_size,
    serialized_length,
    sort_and_page_results,
    split_batches,
)
from taskmaster.errors import InvalidArgumentError
from taskmaster.models import ComplexityAnalysis, ComplexityReport


class TestPlanning:
    """Test cases for batch size selection."""

    def test_small_sets_fit_one_batch(self):
        plan = plan_for_size(3, 1000, UPDATE_DOMAIN)
        assert plan.batch_size == 3
        assert plan.total_batches == 1
        assert not plan.use_batches
        assert plan.estimated_tokens == pytest.approx(375)

    def test_update_domain_over_ceiling(self):
        """20 tasks averaging 1000 tokens split into batches of at most 5."""
        plan = plan_for_size(20, 80000, UPDATE_DOMAIN)
        assert plan.estimated_tokens == pytest.approx(30000)
        assert plan.batch_size == 5
        assert plan.total_batches == 4
        assert plan.tokens_per_batch == 7500
        assert plan.use_batches

    def test_complexity_domain_caps_at_ten(self):
        plan = plan_for_size(40, 160000, COMPLEXITY_DOMAIN)
        assert plan.batch_size == 10
        assert plan.total_batches == 4

    def test_large_items_get_single_item_batches(self):
        plan = plan_for_size(3, 200000, UPDATE_DOMAIN)
        assert plan.batch_size == 1
        assert plan.total_batches == 3

    def test_single_oversized_item_is_batched(self):
        """One task over the token ceiling still takes the batched path."""
        plan = plan_for_size(1, 80000, UPDATE_DOMAIN)
        assert plan.estimated_tokens == pytest.approx(30000)
        assert plan.total_batches == 1
        assert plan.use_batches is True

    def test_explicit_batch_size(self):
        plan = plan_for_size(5, 100, UPDATE_DOMAIN, explicit_batch_size=2)
        assert plan.batch_size == 2
        assert plan.total_batches == 3
        assert plan.use_batches is True

    def test_explicit_batch_size_capped_by_count(self):
        plan = plan_for_size(2, 100, UPDATE_DOMAIN, explicit_batch_size=10)
        assert plan.batch_size == 2
        assert plan.total_batches == 1
        assert plan.use_batches is False

    def test_invalid_explicit_batch_size(self):
        with pytest.raises(InvalidArgumentError):
            plan_for_size(5, 100, UPDATE_DOMAIN, explicit_batch_size=0)

    def test_empty_input(self):
        plan = plan_for_size(0, 0, UPDATE_DOMAIN)
        assert plan.total_batches == 0
        assert plan.to_dict()["useBatches"] is False

    def test_plan_batches_uses_compact_json(self):
        items = [{"id": 1, "title": "A"}]
        assert serialized_length(items) == len('[{"id":1,"title":"A"}]')
        assert plan_batches(items).total_batches == 1


class TestSplitting:
    """Test cases for grouping ids and resume markers."""

    def test_split_marks_resume_point(self):
        plan = BatchPlan(True, 2, 3, 0)
        groups = split_batches([1, 2, 3, 4, 5], plan, resume_from=2)
        assert [group["taskIds"] for group in groups] == [[1, 2], [3, 4], [5]]
        assert [group["status"] for group in groups] == ["completed", "start", "pending"]
        assert groups[2]["size"] == 1

    def test_split_defaults_to_first_batch(self):
        groups = split_batches([1, 2], BatchPlan(False, 2, 1, 0))
        assert groups[0]["status"] == "start"

    def test_resume_out_of_range(self):
        with pytest.raises(InvalidArgumentError, match="Cannot resume from batch 4"):
            split_batches([1, 2, 3], BatchPlan(True, 1, 3, 0), resume_from=4)

    def test_empty_plan(self):
        assert split_batches([], BatchPlan(False, 0, 0, 0)) == []

    def test_breakdown_text(self):
        groups = split_batches([1, 2, 3], BatchPlan(True, 2, 2, 0), resume_from=2)
        text = batch_breakdown(groups, with_status=True)
        assert text.splitlines()[0].startswith("Batch 1: Tasks 1, 2 (2 tasks)")
        assert "START HERE" in text.splitlines()[1]
        assert "START HERE" not in batch_breakdown(groups)


class TestComplexityMerge:
    """Test cases for merging analyses into a report."""

    def test_merge_replaces_and_appends(self):
        report = ComplexityReport(
            meta={"thresholdScore": 5},
            analyses=[
                ComplexityAnalysis(task_id=1, task_title="A", complexity_score=3),
                ComplexityAnalysis(task_id=2, task_title="B", complexity_score=4),
            ],
        )
        merged = merge_complexity_analyses(
            report,
            [
                ComplexityAnalysis(task_id=2, task_title="B", complexity_score=9),
                ComplexityAnalysis(task_id=3, task_title="C", complexity_score=6),
            ],
            meta={"tasksAnalyzed": 2},
        )
        assert [a.task_id for a in merged.analyses] == [1, 2, 3]
        assert merged.get(2).complexity_score == 9
        assert merged.meta["thresholdScore"] == 5
        assert merged.meta["tasksAnalyzed"] == 2
        assert "generatedAt" in merged.meta

    def test_merge_without_report(self):
        merged = merge_complexity_analyses(None, [ComplexityAnalysis(task_id=4, task_title="D")])
        assert [a.task_id for a in merged.analyses] == [4]


class TestResultPaging:
    """Test cases for sorting and paging search results."""

    RESULTS = [
        {"id": 3, "title": "beta", "score": 0.5},
        {"id": "2.1", "title": "Alpha", "score": 0.9},
        {"id": 1, "title": "gamma", "score": 0.5},
    ]

    def test_score_desc_breaks_ties_by_id(self):
        page = sort_and_page_results(list(self.RESULTS))
        assert [item["id"] for item in page["tasks"]] == ["2.1", 1, 3]
        assert page["totalMatches"] == 3
        assert page["useBatching"] is False

    def test_sort_by_id_ascending(self):
        page = sort_and_page_results(list(self.RESULTS), sort_by="id", order="asc")
        assert [item["id"] for item in page["tasks"]] == [1, "2.1", 3]

    def test_sort_by_title_is_case_insensitive(self):
        page = sort_and_page_results(list(self.RESULTS), sort_by="title", order="asc")
        assert [item["title"] for item in page["tasks"]] == ["Alpha", "beta", "gamma"]

    def test_paging_counts(self):
        results = [{"id": i, "title": str(i), "score": 1.0} for i in range(1, 8)]
        page = sort_and_page_results(results, batch_size=3)
        assert page["totalBatches"] == 3
        assert page["useBatching"] is True

    @pytest.mark.parametrize("sort_by, order", [("rank", "desc"), ("score", "down")])
    def test_invalid_sort_options(self, sort_by, order):
        with pytest.raises(InvalidArgumentError):
            sort_and_page_results([], sort_by=sort_by, order=order)
