"""Task-graph algorithms.

Identifier resolution, dependent lookup, dependency satisfaction,
relevance-chain expansion and next-task selection. Every function takes the
collection explicitly and never mutates it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

from .errors import InvalidArgumentError, NotFoundError
from .models import (
    PRIORITY_WEIGHTS,
    UNAVAILABLE_STATUSES,
    Subtask,
    Task,
    TaskCollection,
    TaskRef,
    is_complete,
    parse_task_ref,
)


@dataclass(slots=True)
class Resolved:
    """Result of resolving a ``TaskRef`` against a collection."""

    ref: TaskRef
    item: Union[Task, Subtask]
    parent: Optional[Task] = None

    @property
    def is_subtask(self) -> bool:
        return self.parent is not None


def dependency_ref(value: Any) -> Optional[TaskRef]:
    """Parse a stored dependency entry, returning None for malformed values."""
    try:
        return parse_task_ref(value)
    except InvalidArgumentError:
        return None


def resolve(collection: TaskCollection, ref: Any) -> Resolved:
    """Find the task or subtask addressed by ``ref``."""
    ref = parse_task_ref(ref)
    task = collection.get_task(ref.task_id)
    if task is None:
        if ref.is_subtask:
            raise NotFoundError(f"Parent task {ref.task_id} not found")
        raise NotFoundError(f"Task {ref.task_id} not found")
    if not ref.is_subtask:
        return Resolved(ref, task)
    subtask = task.find_subtask(ref.subtask_id)
    if subtask is None:
        raise NotFoundError(f"Subtask {ref} not found")
    return Resolved(ref, subtask, parent=task)


def try_resolve(collection: TaskCollection, value: Any) -> Optional[Resolved]:
    ref = dependency_ref(value)
    if ref is None:
        return None
    try:
        return resolve(collection, ref)
    except NotFoundError:
        return None


def dependents_of(collection: TaskCollection, ref: Any) -> List[str]:
    """Ids of every task and subtask whose dependency list contains ``ref``."""
    target = parse_task_ref(ref)
    found = []
    for item_ref, item in collection.iter_items():
        if any(dependency_ref(dep) == target for dep in item.dependencies):
            found.append(str(item_ref))
    return found


def dependent_counts(collection: TaskCollection) -> Dict[TaskRef, int]:
    """How many task-level and subtask-level dependency entries point at each ref."""
    counts: Dict[TaskRef, int] = {}
    for _, item in collection.iter_items():
        for dep in item.dependencies:
            dep_ref = dependency_ref(dep)
            if dep_ref is not None:
                counts[dep_ref] = counts.get(dep_ref, 0) + 1
    return counts


def dependencies_satisfied(dependency_ids: Iterable[Any], collection: TaskCollection) -> bool:
    """True when every dependency resolves to a complete task or subtask.

    An empty list is satisfied; an unresolvable id is not.
    """
    for dep in dependency_ids or []:
        resolved = try_resolve(collection, dep)
        if resolved is None or not is_complete(resolved.item.status):
            return False
    return True


def unsatisfied_dependencies(dependency_ids: Iterable[Any], collection: TaskCollection) -> List[Any]:
    missing = []
    for dep in dependency_ids or []:
        resolved = try_resolve(collection, dep)
        if resolved is None or not is_complete(resolved.item.status):
            missing.append(dep)
    return missing


# ----------------------------------------------------------------------
# Relevance chains
# ----------------------------------------------------------------------


def _chain_id(value: Any) -> Optional[int]:
    # Chains hold top-level ids; a subtask reference contributes its parent.
    ref = dependency_ref(value)
    return ref.task_id if ref is not None else None


def build_relevance_chain(
    collection: TaskCollection,
    seed: int,
    max_depth: int = 3,
    visited: Optional[Set[int]] = None,
) -> Set[int]:
    """Expand ``seed`` into the ids of related tasks.

    ``relevantTasks`` links are followed recursively with ``max_depth - 1`` and a
    copy of the visited set, so sibling branches never prune each other.
    Dependencies and reverse dependencies are added one level deep. Depth 0
    still yields the seed and its direct links.
    """
    visited = set() if visited is None else visited
    if max_depth < 0 or seed in visited:
        return set()

    visited.add(seed)
    chain = {seed}

    task = collection.get_task(seed)
    if task is None:
        return chain

    for related in task.relevant_tasks:
        related_id = _chain_id(related)
        if related_id is None or related_id in visited:
            continue
        chain.add(related_id)
        chain |= build_relevance_chain(collection, related_id, max_depth - 1, set(visited))

    for dep in task.dependencies:
        dep_id = _chain_id(dep)
        if dep_id is not None and dep_id not in visited:
            chain.add(dep_id)

    seed_ref = TaskRef(seed)
    for other in collection.tasks:
        if other.id in visited:
            continue
        if any(dependency_ref(dep) == seed_ref for dep in other.dependencies):
            chain.add(other.id)

    return chain


MatchFunction = Callable[[Sequence[str], Sequence[str]], float]

_FIELD_ATTRIBUTES = {
    "keywords": "keywords",
    "flowNames": "flow_names",
    "flow_names": "flow_names",
}


def build_field_chain(
    collection: TaskCollection,
    search_terms: Sequence[str],
    min_score: float,
    max_depth: int,
    match_fn: MatchFunction,
    field: str = "keywords",
) -> Set[int]:
    """Tasks whose ``field`` terms score at least ``min_score``.

    When ``max_depth > 0`` the ``relevantTasks`` of each initial match are added,
    one level only.
    """
    try:
        attribute = _FIELD_ATTRIBUTES[field]
    except KeyError:
        raise InvalidArgumentError(f"Unknown term field '{field}'. Use 'keywords' or 'flowNames'") from None

    matches: Set[int] = set()
    for task in collection.tasks:
        terms = getattr(task, attribute)
        if terms and match_fn(search_terms, terms) >= min_score:
            matches.add(task.id)

    chain = set(matches)
    if max_depth > 0:
        for task_id in matches:
            task = collection.get_task(task_id)
            for related in task.relevant_tasks:
                related_id = _chain_id(related)
                if related_id is not None:
                    chain.add(related_id)
    return chain


# ----------------------------------------------------------------------
# Next task selection
# ----------------------------------------------------------------------


def eligible_tasks(collection: TaskCollection) -> List[Task]:
    """Open tasks whose dependencies are all complete."""
    return [
        task
        for task in collection.tasks
        if task.status not in UNAVAILABLE_STATUSES
        and dependencies_satisfied(task.dependencies, collection)
    ]


def rank_key(task: Task, counts: Dict[TaskRef, int]):
    """Sort key: in-progress first, then priority, then dependents, then lowest id."""
    return (
        0 if task.status == "in-progress" else 1,
        -PRIORITY_WEIGHTS[task.effective_priority],
        -counts.get(TaskRef(task.id), 0),
        task.id,
    )


def select_next_task(collection: TaskCollection) -> Optional[Task]:
    """Pick the single best task to work on next, or None."""
    candidates = eligible_tasks(collection)
    if not candidates:
        return None
    counts = dependent_counts(collection)
    return min(candidates, key=lambda task: rank_key(task, counts))


def diagnose_no_next_task(collection: TaskCollection) -> Dict[str, Any]:
    """Explain why ``select_next_task`` found nothing."""
    tasks = collection.tasks
    completed = sum(1 for task in tasks if is_complete(task.status))
    in_progress = sum(1 for task in tasks if task.status == "in-progress")
    blocked = sum(1 for task in tasks if task.status in ("blocked", "deferred"))
    starved = [
        task.id
        for task in tasks
        if task.status not in UNAVAILABLE_STATUSES
        and not dependencies_satisfied(task.dependencies, collection)
    ]

    suggestions = []
    if tasks and completed == len(tasks):
        suggestions.append("All tasks are complete. Add new tasks or parse a new PRD.")
    if blocked:
        suggestions.append("Review blocked or deferred tasks and update their status when they can proceed.")
    if starved:
        suggestions.append("Complete the dependencies of waiting tasks, or check them with validate_dependencies.")
    if in_progress:
        suggestions.append("Finish the tasks already in progress.")
    if not tasks:
        suggestions.append("Create tasks with add_task or parse_prd.")

    return {
        "totalTasks": len(tasks),
        "completedTasks": completed,
        "inProgressTasks": in_progress,
        "blockedTasks": blocked,
        "tasksWithUnsatisfiedDependencies": len(starved),
        "waitingTaskIds": starved,
        "suggestions": suggestions,
    }
