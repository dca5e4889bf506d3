"""Token-budget batch planning.

Estimates the prompt cost of a task set from its serialized length and
splits it into size-bounded batches that can be resumed at any batch.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .errors import InvalidArgumentError
from .models import ComplexityAnalysis, ComplexityReport, parse_task_ref, utc_now


CHARS_PER_TOKEN = 4
RESULT_PAGE_SIZE = 50


@dataclass(frozen=True, slots=True)
class BatchDomain:
    """Cost model for one kind of batched prompt."""

    name: str
    overhead_factor: float
    token_ceiling: int
    target_tokens_per_batch: int
    max_batch_size: int


UPDATE_DOMAIN = BatchDomain("update", overhead_factor=1.5, token_ceiling=15000,
                            target_tokens_per_batch=10000, max_batch_size=5)
COMPLEXITY_DOMAIN = BatchDomain("complexity", overhead_factor=2.0, token_ceiling=20000,
                                target_tokens_per_batch=15000, max_batch_size=10)


@dataclass(slots=True)
class BatchPlan:
    use_batches: bool
    batch_size: int
    total_batches: int
    estimated_tokens: float
    tokens_per_batch: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "useBatches": self.use_batches,
            "batchSize": self.batch_size,
            "totalBatches": self.total_batches,
            "estimatedTokens": self.estimated_tokens,
            "tokensPerBatch": self.tokens_per_batch,
        }


def serialized_length(items: Sequence[Any]) -> int:
    """Length of the compact JSON form used for token estimates."""
    return len(json.dumps(list(items), separators=(",", ":"), ensure_ascii=False))


def estimate_tokens(length: int, domain: BatchDomain) -> float:
    return (length / CHARS_PER_TOKEN) * domain.overhead_factor


def plan_for_size(
    count: int,
    length: int,
    domain: BatchDomain,
    explicit_batch_size: Optional[int] = None,
) -> BatchPlan:
    """Batch plan for ``count`` items whose serialized form is ``length`` characters."""
    if count <= 0:
        return BatchPlan(False, 0, 0, 0)
    if explicit_batch_size is not None and explicit_batch_size <= 0:
        raise InvalidArgumentError("Batch size must be a positive integer")

    estimated = estimate_tokens(length, domain)
    if explicit_batch_size is not None:
        batch_size = min(explicit_batch_size, count)
        use_batches = explicit_batch_size < count
    elif estimated > domain.token_ceiling:
        average_tokens = (length / count) / CHARS_PER_TOKEN
        batch_size = max(1, math.floor(domain.target_tokens_per_batch / average_tokens))
        batch_size = min(batch_size, domain.max_batch_size)
        use_batches = True
    else:
        batch_size = count
        use_batches = False

    total_batches = math.ceil(count / batch_size)
    return BatchPlan(
        use_batches=use_batches,
        batch_size=batch_size,
        total_batches=total_batches,
        estimated_tokens=estimated,
        tokens_per_batch=round(estimated / total_batches),
    )


def plan_batches(
    items: Sequence[Any],
    domain: BatchDomain = UPDATE_DOMAIN,
    explicit_batch_size: Optional[int] = None,
) -> BatchPlan:
    """Plan batches for serializable task dicts."""
    return plan_for_size(len(items), serialized_length(items), domain, explicit_batch_size)


def split_batches(
    task_ids: Sequence[Any],
    plan: BatchPlan,
    resume_from: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Group ids into batches, marking those before ``resume_from`` as completed."""
    if plan.total_batches == 0:
        return []
    start = resume_from or 1
    if not 1 <= start <= plan.total_batches:
        raise InvalidArgumentError(
            f"Cannot resume from batch {start}: plan has {plan.total_batches} batch(es)"
        )

    groups = []
    for index in range(plan.total_batches):
        number = index + 1
        ids = list(task_ids[index * plan.batch_size:(index + 1) * plan.batch_size])
        if number < start:
            status = "completed"
        elif number == start:
            status = "start"
        else:
            status = "pending"
        groups.append({"batch": number, "taskIds": ids, "size": len(ids), "status": status})
    return groups


_STATUS_LABELS = {
    "completed": "✅ COMPLETED",
    "start": "🔄 START HERE",
    "pending": "⏳ PENDING",
}


def batch_breakdown(groups: Sequence[Dict[str, Any]], with_status: bool = False) -> str:
    """Human readable batch list used inside guidance prompts."""
    lines = []
    for group in groups:
        line = (
            f"Batch {group['batch']}: Tasks {', '.join(str(i) for i in group['taskIds'])} "
            f"({group['size']} tasks)"
        )
        if with_status:
            line += f" {_STATUS_LABELS[group['status']]}"
        lines.append(line)
    return "\n".join(lines)


def merge_complexity_analyses(
    report: Optional[ComplexityReport],
    entries: Sequence[ComplexityAnalysis],
    meta: Optional[Dict[str, Any]] = None,
) -> ComplexityReport:
    """Merge new analyses into ``report`` by task id.

    Analyses of tasks outside ``entries`` are kept; re-analysed tasks are
    replaced in place and new ones appended.
    """
    existing = list(report.analyses) if report else []
    incoming = {entry.task_id: entry for entry in entries}

    merged = []
    for analysis in existing:
        merged.append(incoming.pop(analysis.task_id, analysis))
    merged.extend(incoming.values())

    new_meta = dict(report.meta) if report else {}
    new_meta.update(meta or {})
    new_meta["generatedAt"] = utc_now()
    return ComplexityReport(meta=new_meta, analyses=merged)


def _id_key(value: Any):
    try:
        ref = parse_task_ref(value)
    except InvalidArgumentError:
        return (math.inf, math.inf)
    return (ref.task_id, ref.subtask_id or 0)


def sort_and_page_results(
    results: List[Dict[str, Any]],
    sort_by: str = "score",
    order: str = "desc",
    batch_size: int = RESULT_PAGE_SIZE,
) -> Dict[str, Any]:
    """Sort scored matches and describe how they split into result pages."""
    if sort_by not in ("score", "id", "title"):
        raise InvalidArgumentError(f"Invalid sortBy '{sort_by}'. Use 'score', 'id' or 'title'")
    if order not in ("asc", "desc"):
        raise InvalidArgumentError(f"Invalid order '{order}'. Use 'asc' or 'desc'")

    descending = order == "desc"
    ordered = sorted(results, key=lambda item: _id_key(item.get("id")))
    if sort_by == "score":
        ordered.sort(key=lambda item: item.get("score", 0), reverse=descending)
    elif sort_by == "id":
        ordered.sort(key=lambda item: _id_key(item.get("id")), reverse=descending)
    else:
        ordered.sort(key=lambda item: (item.get("title") or "").casefold(), reverse=descending)

    total = len(ordered)
    return {
        "tasks": ordered,
        "totalMatches": total,
        "totalBatches": math.ceil(total / batch_size) if batch_size else 0,
        "batchSize": batch_size,
        "useBatching": total > batch_size,
        "metadata": {"sortedBy": sort_by, "order": order},
    }
