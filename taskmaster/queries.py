"""Read-only queries over a task collection.

Every function here builds a response payload from the collection passed
in and never mutates it.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from .batching import sort_and_page_results
from .errors import InvalidArgumentError
from .graph import (
    dependencies_satisfied,
    dependency_ref,
    dependents_of,
    diagnose_no_next_task,
    resolve,
    select_next_task,
    try_resolve,
)
from .matching import match_score, matched_terms
from .models import (
    STATUS_ICONS,
    VALID_STATUSES,
    ComplexityReport,
    Task,
    TaskCollection,
    TaskRef,
    is_complete,
)
from .stats import (
    completion_overview,
    completion_stats,
    flow_completion,
    flow_dependencies,
    percentage,
    status_counts,
    subtask_stats,
    term_key,
    term_usage,
)


DESCRIPTION_LIMIT = 100
SUBTASK_DESCRIPTION_LIMIT = 80


def status_display(status: str) -> str:
    return f"{STATUS_ICONS.get(status, '❓')} {status}"


def truncate_text(text: Optional[str], limit: int) -> str:
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit - 3] + "..."


def format_dependencies(dependencies: Sequence[Any], collection: TaskCollection) -> str:
    """Render a dependency list with a completion icon per entry."""
    if not dependencies:
        return "None"
    parts = []
    for dep in dependencies:
        resolved = try_resolve(collection, dep)
        if resolved is None:
            parts.append(f"❓ {dep}")
        elif is_complete(resolved.item.status):
            parts.append(f"✅ {dep}")
        elif resolved.item.status == "in-progress":
            parts.append(f"🔄 {dep}")
        else:
            parts.append(f"⏳ {dep}")
    return ", ".join(parts)


def _check_status_filter(status_filter: Optional[str]) -> Optional[str]:
    if not status_filter or status_filter.lower() == "all":
        return None
    status_filter = status_filter.lower()
    if status_filter not in VALID_STATUSES:
        raise InvalidArgumentError(
            f"Invalid status filter '{status_filter}'. Use 'all' or one of: {', '.join(VALID_STATUSES)}"
        )
    return status_filter


# ----------------------------------------------------------------------
# Listing and details
# ----------------------------------------------------------------------


def list_tasks(collection: TaskCollection, status_filter: Optional[str] = None, with_subtasks: bool = False) -> Dict[str, Any]:
    """Task summaries plus completion statistics."""
    wanted = _check_status_filter(status_filter)
    filtered = [task for task in collection.tasks if wanted is None or task.status == wanted]

    rows = []
    for task in filtered:
        rows.append({
            "id": task.id,
            "title": task.title,
            "description": truncate_text(task.description, DESCRIPTION_LIMIT),
            "status": status_display(task.status),
            "priority": task.effective_priority,
            "dependencies": format_dependencies(task.dependencies, collection),
        })
        if with_subtasks:
            for subtask in task.subtasks:
                rows.append({
                    "id": f"{task.id}.{subtask.id}",
                    "title": f"  └─ {subtask.title}",
                    "description": truncate_text(subtask.description, SUBTASK_DESCRIPTION_LIMIT),
                    "status": status_display(subtask.status),
                    "priority": "-",
                    "dependencies": format_dependencies(subtask.dependencies, collection),
                })

    stats = completion_stats(collection)
    summary: Dict[str, Any] = {
        "totalTasks": stats["total"],
        "filteredTasks": len(filtered),
        "completionPercentage": stats["completionPercentage"],
        "statusCounts": stats["statusCounts"],
        "filter": wanted or "all",
    }
    if with_subtasks:
        summary["subtaskStats"] = subtask_stats(
            [subtask for task in collection.tasks for subtask in task.subtasks]
        )
    return {"summary": summary, "tasks": rows}


def show_task(collection: TaskCollection, task_id: Any, status_filter: Optional[str] = None) -> Dict[str, Any]:
    """Full detail of one task or subtask, including who depends on it."""
    resolved = resolve(collection, task_id)
    item = resolved.item
    wanted = _check_status_filter(status_filter)

    details: Dict[str, Any] = {
        "id": str(resolved.ref) if resolved.is_subtask else item.id,
        "title": item.title,
        "description": item.description or "No description",
        "status": status_display(item.status),
        "dependencies": format_dependencies(item.dependencies, collection),
        "rawDependencies": list(item.dependencies),
        "details": item.details or "No details provided",
        "isSubtask": resolved.is_subtask,
    }
    if resolved.is_subtask:
        details["parentTask"] = {
            "id": resolved.parent.id,
            "title": resolved.parent.title,
            "status": status_display(resolved.parent.status),
        }
    else:
        details["priority"] = item.effective_priority
        details["keywords"] = list(item.keywords)
        details["flowNames"] = list(item.flow_names)
        details["relevantTasks"] = list(item.relevant_tasks)
        if item.subtasks:
            shown = [s for s in item.subtasks if wanted is None or s.status == wanted]
            details["subtasks"] = [
                {
                    "id": f"{item.id}.{subtask.id}",
                    "title": subtask.title,
                    "status": status_display(subtask.status),
                    "dependencies": format_dependencies(subtask.dependencies, collection),
                }
                for subtask in shown
            ]
            details["subtaskStats"] = {
                **subtask_stats(item.subtasks),
                "filtered": len(shown),
                "filter": wanted or "all",
            }

    dependents = []
    for ref in dependents_of(collection, resolved.ref):
        dependent = resolve(collection, ref)
        dependents.append({
            "id": ref if dependent.is_subtask else dependent.item.id,
            "title": dependent.item.title,
            "status": status_display(dependent.item.status),
        })
    if dependents:
        details["dependentTasks"] = dependents
    if item.test_strategy:
        details["testStrategy"] = item.test_strategy
    for key in ("createdAt", "updatedAt"):
        value = item.created_at if key == "createdAt" else item.updated_at
        if value:
            details[key] = value

    return {"task": details}


def next_task(collection: TaskCollection) -> Dict[str, Any]:
    """The best task to work on next, or a diagnostic when none is eligible."""
    if not collection.tasks:
        return {
            "next_task": None,
            "message": "No tasks available. Create some tasks first.",
            "suggestion": "Use the add_task tool or parse a PRD to create tasks.",
        }

    task = select_next_task(collection)
    if task is None:
        analysis = diagnose_no_next_task(collection)
        return {
            "next_task": None,
            "message": "No eligible tasks available to work on.",
            "analysis": analysis,
            "suggestions": analysis["suggestions"],
        }

    details: Dict[str, Any] = {
        "id": task.id,
        "title": task.title,
        "description": task.description or "No description",
        "status": status_display(task.status),
        "priority": task.effective_priority,
        "dependencies": format_dependencies(task.dependencies, collection),
        "dependentCount": len(dependents_of(collection, TaskRef(task.id))),
    }
    if task.subtasks:
        counts = status_counts(task.subtasks)
        details["subtasks"] = {
            "stats": {
                "total": len(task.subtasks),
                "completed": counts["done"] + counts["completed"],
                "pending": counts["pending"],
                "inProgress": counts["in-progress"],
            },
            "list": [
                {"id": f"{task.id}.{s.id}", "title": s.title, "status": status_display(s.status)}
                for s in task.subtasks
            ],
        }

    action = (
        "Continue working on this in-progress task"
        if task.status == "in-progress"
        else "Start working on this task"
    )
    return {
        "next_task": details,
        "recommendation": {
            "action": action,
            "set_status_command": f'set_task_status with task_ids: "{task.id}" and status: "in-progress"',
            "view_details_command": f'show_task with task_id: "{task.id}"',
        },
    }


# ----------------------------------------------------------------------
# Term search and analytics
# ----------------------------------------------------------------------

_FIELDS = {
    "keywords": ("keywords", "keyword", "matchedKeywords"),
    "flowNames": ("flow_names", "flow", "matchedFlows"),
}


def _field_spec(field: str):
    try:
        return _FIELDS[field]
    except KeyError:
        raise InvalidArgumentError(f"Unknown term field '{field}'. Use 'keywords' or 'flowNames'") from None


def get_tasks_by_terms(
    collection: TaskCollection,
    terms: Sequence[str],
    field: str = "keywords",
    min_score: float = 0.3,
    max_results: int = 100,
    include_subtasks: bool = False,
    status_filter: Optional[str] = None,
    sort_by: str = "score",
    order: str = "desc",
    include_flow_analysis: bool = False,
) -> Dict[str, Any]:
    """Tasks whose keywords (or flow names) fuzzily match ``terms``."""
    attribute, context, matched_key = _field_spec(field)
    if not terms or not any(str(term).strip() for term in terms):
        raise InvalidArgumentError(f"At least one search term is required for {field}")
    if not 0 <= min_score <= 1:
        raise InvalidArgumentError("min_score must be between 0 and 1")
    if max_results <= 0:
        raise InvalidArgumentError("max_results must be a positive integer")
    wanted = _check_status_filter(status_filter)

    results = []
    for task in collection.tasks:
        candidates = getattr(task, attribute)
        if (wanted is None or task.status == wanted) and candidates:
            score = match_score(terms, candidates, context)
            if score >= min_score:
                results.append({
                    "id": task.id,
                    "title": task.title,
                    "description": task.description,
                    "status": task.status,
                    "priority": task.effective_priority,
                    field: list(candidates),
                    matched_key: matched_terms(terms, candidates, context),
                    "score": round(score, 3),
                    "dependencies": list(task.dependencies),
                    "createdAt": task.created_at,
                    "updatedAt": task.updated_at,
                })
        if not include_subtasks:
            continue
        for subtask in task.subtasks:
            candidates = subtask.extra.get(field) or []
            if not candidates or (wanted is not None and subtask.status != wanted):
                continue
            score = match_score(terms, candidates, context)
            if score >= min_score:
                results.append({
                    "id": f"{task.id}.{subtask.id}",
                    "title": subtask.title,
                    "description": subtask.description,
                    "status": subtask.status,
                    "priority": subtask.extra.get("priority") or "medium",
                    field: list(candidates),
                    matched_key: matched_terms(terms, candidates, context),
                    "score": round(score, 3),
                    "parentTaskId": task.id,
                    "parentTaskTitle": task.title,
                    "isSubtask": True,
                    "dependencies": list(subtask.dependencies),
                    "createdAt": subtask.created_at,
                    "updatedAt": subtask.updated_at,
                })

    paged = sort_and_page_results(results, sort_by, order)
    limited = paged["tasks"][:max_results]
    payload: Dict[str, Any] = {
        "search_criteria": {
            field: list(terms),
            "minScore": min_score,
            "statusFilter": wanted or "all",
            "includeSubtasks": include_subtasks,
        },
        "results": {
            "totalMatches": paged["totalMatches"],
            "returnedCount": len(limited),
            "maxResults": max_results,
            "tasks": limited,
        },
        "sorting": {"sortBy": sort_by, "order": order},
        "batch_info": (
            {"useBatching": True, "totalBatches": paged["totalBatches"], "batchSize": paged["batchSize"]}
            if paged["useBatching"]
            else {"useBatching": False}
        ),
    }
    if include_flow_analysis and field == "flowNames":
        usage = term_usage(collection, "flowNames")
        payload["flow_analysis"] = {
            "totalFlows": usage["totalTerms"],
            "topFlows": [{"flow": item["term"], "count": item["count"]} for item in usage["topTerms"][:15]],
            "searchedFlowsStatus": [
                {
                    "flow": flow,
                    "found": term_key(flow) in usage["termNames"],
                    "taskCount": usage["termCounts"].get(usage["termNames"].get(term_key(flow)), 0),
                }
                for flow in terms
            ],
        }
    return payload


_SORTS = ("frequency", "alphabetical", "tasks", "completion")
_FLOW_STATUSES = ("completed", "in-progress", "not-started", "all")


def list_terms(
    collection: TaskCollection,
    field: str = "keywords",
    include_subtasks: bool = False,
    sort_by: str = "frequency",
    min_usage: int = 1,
    max_results: int = 100,
    search_pattern: Optional[str] = None,
    status_filter: str = "all",
    include_task_details: bool = False,
    include_analytics: bool = True,
) -> Dict[str, Any]:
    """Usage analytics for keywords or flow names."""
    _field_spec(field)
    is_flow = field == "flowNames"
    if sort_by not in _SORTS or (sort_by == "completion" and not is_flow):
        raise InvalidArgumentError(f"Invalid sort_by '{sort_by}' for {field}")
    if status_filter not in _FLOW_STATUSES:
        raise InvalidArgumentError(f"Invalid status_filter '{status_filter}'. Use one of: {', '.join(_FLOW_STATUSES)}")

    usage = term_usage(collection, field, include_subtasks)
    completion = flow_completion(usage["termTasks"]) if is_flow else {}
    flow_deps = flow_dependencies(collection, usage["termNames"]) if is_flow else {}

    entries = [(term, count) for term, count in usage["termCounts"].items() if count >= min_usage]
    if search_pattern:
        pattern = search_pattern.lower()
        entries = [(term, count) for term, count in entries if pattern in term.lower()]
    if is_flow and status_filter != "all":
        entries = [(term, count) for term, count in entries if completion[term]["status"] == status_filter]

    task_counts = {term: len(tasks) for term, tasks in usage["termTasks"].items()}
    if sort_by == "alphabetical":
        entries.sort(key=lambda pair: pair[0].casefold())
    elif sort_by == "tasks":
        entries.sort(key=lambda pair: (-task_counts[pair[0]], pair[0].casefold()))
    elif sort_by == "completion":
        entries.sort(key=lambda pair: (-completion[pair[0]]["percentage"], pair[0].casefold()))
    else:
        entries.sort(key=lambda pair: (-pair[1], pair[0].casefold()))
    limited = entries[:max_results]

    label = "flow" if is_flow else "keyword"
    items = []
    for term, count in limited:
        item: Dict[str, Any] = {label: term, "usageCount": count, "taskCount": task_counts[term]}
        if is_flow:
            item["completion"] = completion[term]
            item["dependencies"] = flow_deps.get(term, [])
        else:
            item["percentage"] = percentage(task_counts[term], len(collection.tasks))
        if include_task_details:
            item["tasks"] = usage["termTasks"][term]
        items.append(item)

    payload: Dict[str, Any] = {
        "criteria": {
            "includeSubtasks": include_subtasks,
            "sortBy": sort_by,
            "minUsage": min_usage,
            "maxResults": max_results,
            "searchPattern": search_pattern,
        },
        "summary": {
            f"total{label.capitalize()}s": usage["totalTerms"],
            f"filtered{label.capitalize()}s": len(limited),
            "totalUsages": usage["totalUsages"],
            f"average{label.capitalize()}sPerTask": usage["averageTermsPerTask"],
            "tasksWithTerms": usage["tasksWithTerms"],
            "tasksWithoutTerms": usage["tasksWithoutTerms"],
        },
        f"{label}s": items,
    }
    if is_flow:
        payload["criteria"]["statusFilter"] = status_filter

    if include_analytics:
        analytics: Dict[str, Any] = {
            "coverage": {
                "tasksWithTerms": usage["tasksWithTerms"],
                "totalTasks": len(collection.tasks),
                "coveragePercentage": usage["coveragePercentage"],
            },
        }
        if is_flow:
            analytics["topFlows"] = [{"flow": i["term"], "count": i["count"]} for i in usage["topTerms"][:15]]
            analytics["completionOverview"] = completion_overview(completion)
            analytics["flowDependencies"] = flow_deps
        else:
            analytics["topKeywords"] = [{"keyword": i["term"], "count": i["count"]} for i in usage["topTerms"]]
            analytics["topCoOccurrences"] = [
                {"keywords": i["terms"], "count": i["count"]} for i in usage["topCoOccurrences"]
            ]
            analytics["allKeywords"] = usage["allTerms"]
        payload["analytics"] = analytics
    return payload


# ----------------------------------------------------------------------
# Dependency validation
# ----------------------------------------------------------------------


def _find_cycles(collection: TaskCollection) -> List[List[str]]:
    graph: Dict[TaskRef, List[TaskRef]] = {}
    for ref, item in collection.iter_items():
        edges = []
        for dep in item.dependencies:
            dep_ref = dependency_ref(dep)
            if dep_ref is not None and dep_ref != ref and try_resolve(collection, dep_ref) is not None:
                edges.append(dep_ref)
        graph[ref] = edges

    cycles: List[List[str]] = []
    seen_cycles = set()
    state: Dict[TaskRef, int] = {}
    stack: List[TaskRef] = []

    def visit(node: TaskRef) -> None:
        state[node] = 1
        stack.append(node)
        for nxt in graph.get(node, []):
            if state.get(nxt) == 1:
                cycle = stack[stack.index(nxt):]
                key = frozenset(cycle)
                if key not in seen_cycles:
                    seen_cycles.add(key)
                    cycles.append([str(r) for r in cycle] + [str(nxt)])
            elif state.get(nxt) is None:
                visit(nxt)
        stack.pop()
        state[node] = 2

    for node in graph:
        if node not in state:
            visit(node)
    return cycles


def validate_dependencies(collection: TaskCollection) -> Dict[str, Any]:
    """Report malformed, missing, self, duplicate and circular dependencies."""
    issues = []
    for ref, item in collection.iter_items():
        seen = set()
        for dep in item.dependencies:
            dep_ref = dependency_ref(dep)
            if dep_ref is None:
                issues.append({"id": str(ref), "dependency": dep, "type": "malformed"})
                continue
            if dep_ref == ref:
                issues.append({"id": str(ref), "dependency": dep, "type": "self-dependency"})
            elif dep_ref in seen:
                issues.append({"id": str(ref), "dependency": dep, "type": "duplicate"})
            elif try_resolve(collection, dep_ref) is None:
                issues.append({"id": str(ref), "dependency": dep, "type": "missing"})
            seen.add(dep_ref)
        if isinstance(item, Task):
            for tid in item.relevant_tasks:
                rel_ref = dependency_ref(tid)
                if rel_ref is None or collection.get_task(rel_ref.task_id) is None:
                    issues.append({"id": str(ref), "relevantTask": tid, "type": "missing-relevant-task"})

    cycles = _find_cycles(collection)
    for cycle in cycles:
        issues.append({"id": cycle[0], "cycle": cycle, "type": "circular"})

    return {
        "valid": not issues,
        "issues": issues,
        "summary": {
            "tasksChecked": len(collection.tasks),
            "issueCount": len(issues),
            "circularChains": len(cycles),
        },
        "message": "All dependencies are valid" if not issues else f"Found {len(issues)} dependency issue(s)",
    }


# ----------------------------------------------------------------------
# Status report
# ----------------------------------------------------------------------


def _csv_cell(text: str) -> str:
    return '"' + str(text).replace('"', '""') + '"'


def _csv_list(values: Sequence[Any]) -> str:
    if not values:
        return "[]"
    return '"[' + ", ".join(str(value) for value in values) + ']"'


def status_report(
    collection: TaskCollection,
    report: Optional[ComplexityReport] = None,
    status_filter: Optional[str] = None,
    include_subtasks: bool = False,
    detailed: bool = False,
) -> Dict[str, Any]:
    """Tabular project status rendered as CSV for plain-text display."""
    wanted = _check_status_filter(status_filter)

    def complexity_of(task_id: int) -> str:
        analysis = report.get(task_id) if report else None
        return str(analysis.complexity_score) if analysis else "N/A"

    def relevant_done(task: Task) -> bool:
        return all(
            collection.get_task(tid) is not None and is_complete(collection.get_task(tid).status)
            for tid in task.relevant_tasks
        )

    if detailed:
        headers = ["Task ID", "Title", "Description", "Status", "Complexity", "Dependencies", "Flows",
                   "Keywords", "Relevant Tasks", "All Deps Done", "All Relevant Done", "Priority",
                   "Subtasks Count"]
    else:
        headers = ["Task ID", "Title", "Status", "Complexity", "Dependencies", "Subtasks", "Deps Count",
                   "All Deps Done", "Relevant Count", "All Relevant Done"]
    lines = [",".join(headers)]
    rows = []

    for task in collection.tasks:
        if wanted is not None and task.status != wanted:
            continue
        deps_done = dependencies_satisfied(task.dependencies, collection)
        rel_done = relevant_done(task)
        rows.append({
            "taskId": task.id,
            "title": task.title,
            "status": task.status,
            "complexity": complexity_of(task.id),
            "dependencies": list(task.dependencies),
            "allDepsCompleted": deps_done,
            "relevantTasks": list(task.relevant_tasks),
            "allRelevantCompleted": rel_done,
            "type": "task",
        })
        if detailed:
            cells = [str(task.id), _csv_cell(task.title),
                     _csv_cell(truncate_text(task.description, DESCRIPTION_LIMIT)), task.status,
                     complexity_of(task.id), _csv_list(task.dependencies), _csv_list(task.flow_names),
                     _csv_list(task.keywords), _csv_list(task.relevant_tasks),
                     "Yes" if deps_done else "No", "Yes" if rel_done else "No",
                     task.effective_priority, str(len(task.subtasks))]
        else:
            cells = [str(task.id), _csv_cell(task.title), task.status, complexity_of(task.id),
                     _csv_list(task.dependencies), str(len(task.subtasks)), str(len(task.dependencies)),
                     "Yes" if deps_done else "No", str(len(task.relevant_tasks)),
                     "Yes" if rel_done else "No"]
        lines.append(",".join(cells))

        if not include_subtasks:
            continue
        for subtask in task.subtasks:
            if wanted is not None and subtask.status != wanted:
                continue
            sub_done = dependencies_satisfied(subtask.dependencies, collection)
            sub_id = f"{task.id}.{subtask.id}"
            rows.append({
                "taskId": sub_id,
                "title": f"  └─ {subtask.title}",
                "status": subtask.status,
                "complexity": "N/A",
                "dependencies": list(subtask.dependencies),
                "allDepsCompleted": sub_done,
                "relevantTasks": [],
                "allRelevantCompleted": True,
                "type": "subtask",
            })
            if detailed:
                cells = [sub_id, _csv_cell(f"  └─ {subtask.title}"),
                         _csv_cell(truncate_text(subtask.description, SUBTASK_DESCRIPTION_LIMIT)),
                         subtask.status, "N/A", _csv_list(subtask.dependencies), "[]", "[]", "[]",
                         "Yes" if sub_done else "No", "Yes", "N/A", "0"]
            else:
                cells = [sub_id, _csv_cell(f"  └─ {subtask.title}"), subtask.status, "N/A",
                         _csv_list(subtask.dependencies), "0", str(len(subtask.dependencies)),
                         "Yes" if sub_done else "No", "0", "Yes"]
            lines.append(",".join(cells))

    task_rows = [row for row in rows if row["type"] == "task"]
    completed = sum(1 for row in task_rows if is_complete(row["status"]))
    return {
        "report_type": "detailed_status" if detailed else "basic_status",
        "summary": {
            "totalTasks": len(task_rows),
            "totalSubtasks": len(rows) - len(task_rows),
            "completedTasks": completed,
            "inProgressTasks": sum(1 for row in task_rows if row["status"] == "in-progress"),
            "pendingTasks": sum(1 for row in task_rows if row["status"] == "pending"),
            "completionPercentage": percentage(completed, len(task_rows)),
        },
        "csv_data": "\n".join(lines),
        "display_instructions": (
            "Present this data as a bare minimum plain text table built from csv_data. "
            "Do not create HTML, graphs or charts."
        ),
        "tasks": rows,
        "filters": {"statusFilter": wanted or "all", "includeSubtasks": include_subtasks},
    }
