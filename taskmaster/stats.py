"""Summary statistics over a task collection.

Pure functions only. Percentages are rounded to one decimal place and any
zero denominator yields 0.
"""

from __future__ import annotations

from collections import Counter
from itertools import combinations
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .models import (
    VALID_STATUSES,
    ComplexityAnalysis,
    ComplexityReport,
    TaskCollection,
    TaskRef,
    is_complete,
)
from .graph import dependency_ref


HIGH_COMPLEXITY = 7
MEDIUM_COMPLEXITY = 4
DEFAULT_EXPANSION_THRESHOLD = 5


def percentage(part: float, whole: float) -> float:
    if not whole:
        return 0
    return round(part / whole * 100, 1)


def status_counts(items: Iterable[Any]) -> Dict[str, int]:
    counts = {status: 0 for status in VALID_STATUSES}
    for item in items:
        counts[item.status] = counts.get(item.status, 0) + 1
    return counts


def completion_stats(collection: TaskCollection, include_subtasks: bool = False) -> Dict[str, Any]:
    """Totals and completion percentage for tasks (and optionally subtasks)."""
    items: List[Any] = list(collection.tasks)
    if include_subtasks:
        items.extend(subtask for task in collection.tasks for subtask in task.subtasks)

    counts = status_counts(items)
    completed = counts["done"] + counts["completed"]
    return {
        "total": len(items),
        "completed": completed,
        "inProgress": counts["in-progress"],
        "pending": counts["pending"],
        "blocked": counts["blocked"],
        "deferred": counts["deferred"],
        "cancelled": counts["cancelled"],
        "completionPercentage": percentage(completed, len(items)),
        "statusCounts": counts,
    }


def subtask_stats(subtasks: Sequence[Any]) -> Dict[str, Any]:
    completed = sum(1 for subtask in subtasks if is_complete(subtask.status))
    return {
        "total": len(subtasks),
        "completed": completed,
        "completionPercentage": percentage(completed, len(subtasks)),
    }


# ----------------------------------------------------------------------
# Complexity
# ----------------------------------------------------------------------


def complexity_label(score: float) -> str:
    if score >= HIGH_COMPLEXITY:
        return "🔴 High"
    if score >= MEDIUM_COMPLEXITY:
        return "🟡 Medium"
    return "🟢 Low"


def complexity_distribution(
    analyses: Sequence[ComplexityAnalysis],
    threshold: float = DEFAULT_EXPANSION_THRESHOLD,
) -> Dict[str, Any]:
    """Bucket scores into high (>=7), medium (4-6) and low (<4)."""
    total = len(analyses)
    high = [a for a in analyses if a.complexity_score >= HIGH_COMPLEXITY]
    medium = [a for a in analyses if MEDIUM_COMPLEXITY <= a.complexity_score < HIGH_COMPLEXITY]
    low = [a for a in analyses if a.complexity_score < MEDIUM_COMPLEXITY]
    needs_expansion = [a for a in analyses if a.complexity_score >= threshold]
    recommended = sum(a.recommended_subtasks for a in analyses)
    average = sum(a.complexity_score for a in analyses) / total if total else 0

    return {
        "totalAnalyzed": total,
        "averageComplexity": round(average, 2),
        "distribution": {
            "high": {"count": len(high), "percentage": percentage(len(high), total)},
            "medium": {"count": len(medium), "percentage": percentage(len(medium), total)},
            "low": {"count": len(low), "percentage": percentage(len(low), total)},
        },
        "expansion": {
            "threshold": threshold,
            "tasksNeedingExpansion": len(needs_expansion),
            "taskIds": [a.task_id for a in needs_expansion],
            "totalRecommendedSubtasks": recommended,
            "averageSubtasksPerTask": round(recommended / total, 1) if total else 0,
        },
    }


def summarize_complexity_report(report: ComplexityReport) -> Dict[str, Any]:
    threshold = report.meta.get("thresholdScore") or DEFAULT_EXPANSION_THRESHOLD
    statistics = complexity_distribution(report.analyses, threshold)
    ordered = sorted(report.analyses, key=lambda a: (-a.complexity_score, a.task_id))
    return {
        "metadata": dict(report.meta),
        "statistics": statistics,
        "highComplexityTasks": [
            {
                "taskId": a.task_id,
                "title": a.task_title,
                "complexityScore": a.complexity_score,
                "recommendedSubtasks": a.recommended_subtasks,
                "reasoning": a.reasoning,
            }
            for a in ordered
            if a.complexity_score >= HIGH_COMPLEXITY
        ],
        "allTasks": [
            {
                "taskId": a.task_id,
                "title": a.task_title,
                "complexityScore": a.complexity_score,
                "recommendedSubtasks": a.recommended_subtasks,
                "complexity": complexity_label(a.complexity_score),
                "expansionPrompt": a.expansion_prompt or "None provided",
            }
            for a in ordered
        ],
    }


# ----------------------------------------------------------------------
# Keyword and flow usage
# ----------------------------------------------------------------------

_TERM_ATTRIBUTES = {"keywords": "keywords", "flowNames": "flow_names"}


def _term_carriers(collection: TaskCollection, field: str, include_subtasks: bool):
    attribute = _TERM_ATTRIBUTES[field]
    for task in collection.tasks:
        yield TaskRef(task.id), task, None, list(getattr(task, attribute))
        if include_subtasks:
            for subtask in task.subtasks:
                # Subtasks carry terms only through unknown keys.
                terms = subtask.extra.get(field) or []
                yield TaskRef(task.id, subtask.id), subtask, task, list(terms)


def term_key(term: Any) -> str:
    return str(term).strip().lower()


def _distinct_terms(terms: Iterable[Any], names: Dict[str, str]) -> List[str]:
    # Terms match case-insensitively and are reported under their first spelling.
    distinct: List[str] = []
    for term in terms:
        key = term_key(term)
        if not key:
            continue
        name = names.setdefault(key, str(term).strip())
        if name not in distinct:
            distinct.append(name)
    return distinct


def term_usage(collection: TaskCollection, field: str = "keywords", include_subtasks: bool = False) -> Dict[str, Any]:
    """Frequency, per-term task lists and pairwise co-occurrence of terms."""
    names: Dict[str, str] = {}
    counts: Counter = Counter()
    term_tasks: Dict[str, List[Dict[str, Any]]] = {}
    co_occurrence: Counter = Counter()
    carriers = 0
    carried_terms = 0
    top_level_carriers = 0

    for ref, item, parent, raw_terms in _term_carriers(collection, field, include_subtasks):
        terms = _distinct_terms(raw_terms, names)
        if not terms:
            continue
        carriers += 1
        carried_terms += len(terms)
        if not ref.is_subtask:
            top_level_carriers += 1
        for term in terms:
            counts[term] += 1
            entry = {
                "id": str(ref) if ref.is_subtask else ref.task_id,
                "title": item.title,
                "status": item.status,
                "priority": getattr(item, "priority", None) or "medium",
                "dependencies": list(item.dependencies),
            }
            if parent is not None:
                entry.update({"isSubtask": True, "parentTaskId": parent.id, "parentTaskTitle": parent.title})
            term_tasks.setdefault(term, []).append(entry)
        for first, second in combinations(terms, 2):
            co_occurrence[" + ".join(sorted((first, second)))] += 1

    by_count = sorted(counts.items(), key=lambda pair: (-pair[1], pair[0]))
    return {
        "totalTerms": len(counts),
        "totalUsages": sum(counts.values()),
        "averageTermsPerTask": round(carried_terms / carriers, 2) if carriers else 0,
        "termCounts": dict(counts),
        "termTasks": term_tasks,
        "termNames": names,
        "topTerms": [{"term": term, "count": count} for term, count in by_count[:20]],
        "topCoOccurrences": [
            {"terms": pair, "count": count}
            for pair, count in sorted(co_occurrence.items(), key=lambda pair: (-pair[1], pair[0]))[:10]
        ],
        "allTerms": sorted(counts),
        "tasksWithTerms": carriers,
        "tasksWithoutTerms": len(collection.tasks) - top_level_carriers,
        "coveragePercentage": percentage(top_level_carriers, len(collection.tasks)),
    }


def flow_completion(term_tasks: Dict[str, List[Dict[str, Any]]]) -> Dict[str, Dict[str, Any]]:
    """Completed/total per flow with a coarse status label."""
    result = {}
    for flow, tasks in term_tasks.items():
        completed = sum(1 for task in tasks if is_complete(task["status"]))
        total = len(tasks)
        if total and completed == total:
            status = "completed"
        elif completed == 0:
            status = "not-started"
        else:
            status = "in-progress"
        result[flow] = {
            "completed": completed,
            "total": total,
            "percentage": percentage(completed, total),
            "status": status,
        }
    return result


def flow_dependencies(collection: TaskCollection, names: Optional[Dict[str, str]] = None) -> Dict[str, List[str]]:
    """For each flow, the other flows its tasks depend on.

    Flows are matched case-insensitively and reported through ``names``.
    """
    names = {} if names is None else names
    edges: Dict[str, set] = {}
    for task in collection.tasks:
        if not task.flow_names or not task.dependencies:
            continue
        for flow in _distinct_terms(task.flow_names, names):
            targets = edges.setdefault(flow, set())
            for dep in task.dependencies:
                ref = dependency_ref(dep)
                if ref is None or ref.is_subtask:
                    continue
                dep_task = collection.get_task(ref.task_id)
                if dep_task is None:
                    continue
                targets.update(other for other in _distinct_terms(dep_task.flow_names, names) if other != flow)
    return {flow: sorted(targets) for flow, targets in edges.items()}


def completion_overview(completion: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    values = list(completion.values())
    average = sum(value["percentage"] for value in values) / len(values) if values else 0
    return {
        "completed": sum(1 for value in values if value["status"] == "completed"),
        "inProgress": sum(1 for value in values if value["status"] == "in-progress"),
        "notStarted": sum(1 for value in values if value["status"] == "not-started"),
        "averageCompletion": round(average, 1),
    }
