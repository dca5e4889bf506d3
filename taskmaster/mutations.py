"""Single-purpose mutations of a task collection.

Each function changes the collection in place and returns a
``MutationResult``; the caller persists the collection only when
``changed`` is set. Whole-call argument problems raise, per-item problems
in batch operations are collected into ``errors``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Union

from .errors import InvalidArgumentError, NotFoundError, TaskMasterError
from .graph import dependency_ref, resolve, try_resolve
from .models import (
    Subtask,
    Task,
    TaskCollection,
    TaskRef,
    parse_task_ref,
    split_id_list,
    utc_now,
    validate_status,
)


@dataclass(slots=True)
class MutationResult:
    """Outcome of a mutation: whether anything changed plus the response payload."""

    changed: bool
    payload: Dict[str, Any] = field(default_factory=dict)
    task_ids: List[str] = field(default_factory=list)


def _touch(item: Union[Task, Subtask], parent: Optional[Task] = None) -> None:
    item.touch()
    if parent is not None:
        parent.updated_at = item.updated_at


def _parse_dependencies(values: Optional[Sequence[Any]]) -> List[Any]:
    parsed = []
    for value in values or []:
        dep = parse_task_ref(value).as_dependency()
        if dep not in parsed:
            parsed.append(dep)
    return parsed


def _rewrite_references(collection: TaskCollection, old: TaskRef, new: TaskRef) -> List[str]:
    """Point dependency entries at ``new`` wherever they referenced ``old``."""
    rewritten = []
    for ref, item in collection.iter_items():
        changed = False
        updated = []
        for dep in item.dependencies:
            if dependency_ref(dep) == old:
                dep = new.as_dependency()
                changed = True
            if dep not in updated:
                updated.append(dep)
        if changed:
            item.dependencies = updated
            item.touch()
            rewritten.append(str(ref))
    return rewritten


# ----------------------------------------------------------------------
# Status
# ----------------------------------------------------------------------


def set_task_status(collection: TaskCollection, task_ids: Union[str, Sequence[Any]], status: str) -> MutationResult:
    """Set ``status`` on every id in a comma separated list, collecting per-id errors."""
    validate_status(status)
    tokens = split_id_list(task_ids)
    if not tokens:
        raise InvalidArgumentError("At least one task id is required")

    updated = []
    errors = []
    for token in tokens:
        try:
            resolved = resolve(collection, token)
        except NotFoundError:
            errors.append(f"Task {token} not found")
            continue
        except InvalidArgumentError as e:
            errors.append(str(e))
            continue

        old_status = resolved.item.status
        resolved.item.status = status
        resolved.item.null_keys.discard("status")
        _touch(resolved.item, resolved.parent)
        updated.append({
            "id": str(resolved.ref),
            "title": resolved.item.title,
            "oldStatus": old_status,
            "newStatus": status,
            "isSubtask": resolved.is_subtask,
        })

    summary = f"Updated {len(updated)} task(s) to status: {status}"
    if errors:
        summary += f". {len(errors)} error(s) occurred."
    return MutationResult(
        changed=bool(updated),
        payload={"updated_tasks": updated, "errors": errors, "summary": summary},
        task_ids=[item["id"] for item in updated],
    )


# ----------------------------------------------------------------------
# Subtasks
# ----------------------------------------------------------------------


def add_subtask(
    collection: TaskCollection,
    parent_id: Any,
    existing_task_id: Optional[Any] = None,
    title: Optional[str] = None,
    description: str = "",
    details: str = "",
    status: str = "pending",
    dependencies: Optional[Sequence[Any]] = None,
    test_strategy: str = "",
) -> MutationResult:
    """Create a new subtask under ``parent_id`` or convert an existing top-level task."""
    parent_ref = parse_task_ref(parent_id)
    if parent_ref.is_subtask:
        raise InvalidArgumentError(f"Parent id must be a top-level task id, got '{parent_id}'")
    parent = collection.get_task(parent_ref.task_id)
    if parent is None:
        raise NotFoundError(f"Parent task with ID {parent_ref.task_id} not found")

    new_id = parent.next_subtask_id()
    now = utc_now()
    rewritten: List[str] = []

    if existing_task_id is not None:
        existing_ref = parse_task_ref(existing_task_id)
        if existing_ref.is_subtask:
            raise InvalidArgumentError(f"Task {existing_ref} is already a subtask of task {existing_ref.task_id}")
        if existing_ref.task_id == parent.id:
            raise InvalidArgumentError("Cannot make a task a subtask of itself")
        existing = collection.get_task(existing_ref.task_id)
        if existing is None:
            raise NotFoundError(f"Task with ID {existing_ref.task_id} not found")
        if existing.extra.get("parentTaskId"):
            raise InvalidArgumentError(
                f"Task {existing.id} is already a subtask of task {existing.extra['parentTaskId']}"
            )
        if existing.subtasks:
            # Subtasks cannot nest.
            raise InvalidArgumentError(
                f"Task {existing.id} has {len(existing.subtasks)} subtask(s) and cannot become a subtask. "
                f"Run clear_subtasks or remove_subtask on task {existing.id} first"
            )

        data = existing.to_dict()
        data.pop("subtasks", None)
        data.update({"id": new_id, "parentTaskId": parent.id, "updatedAt": now})
        subtask = Subtask.from_dict(data)
        collection.tasks.remove(existing)
        parent.subtasks.append(subtask)
        new_ref = TaskRef(parent.id, new_id)
        rewritten = _rewrite_references(collection, existing_ref, new_ref)
        for task in collection.tasks:
            if existing.id in task.relevant_tasks:
                task.relevant_tasks = [tid for tid in task.relevant_tasks if tid != existing.id]
                if parent.id not in task.relevant_tasks and task.id != parent.id:
                    task.relevant_tasks.append(parent.id)
        operation = "converted"
        message = f"Successfully converted task {existing.id} to subtask {new_ref}"
    else:
        if not title or not title.strip():
            raise InvalidArgumentError("Title is required when creating a new subtask")
        validate_status(status)
        subtask = Subtask(
            id=new_id,
            title=title.strip(),
            description=description or "",
            details=details or "",
            status=status,
            dependencies=_parse_dependencies(dependencies),
            test_strategy=test_strategy or "",
            parent_task_id=parent.id,
            created_at=now,
            updated_at=now,
        )
        parent.subtasks.append(subtask)
        new_ref = TaskRef(parent.id, new_id)
        operation = "created"
        message = f"Successfully created new subtask {new_ref}"

    parent.updated_at = now
    return MutationResult(
        changed=True,
        payload={
            "operation": operation,
            "subtask": {
                "id": str(new_ref),
                "title": subtask.title,
                "description": subtask.description,
                "status": subtask.status,
                "dependencies": list(subtask.dependencies),
                "parentTask": {"id": parent.id, "title": parent.title},
            },
            "rewritten_references": rewritten,
            "message": message,
            "next_steps": [
                f'View parent task: show_task with task_id "{parent.id}"',
                f'Set subtask status: set_task_status with task_ids "{new_ref}" and status "in-progress"',
            ],
        },
        task_ids=[str(new_ref)],
    )


def remove_subtask(
    collection: TaskCollection,
    subtask_ids: Union[str, Sequence[Any]],
    convert_to_task: bool = False,
) -> MutationResult:
    """Remove subtasks, or promote them to standalone tasks when ``convert_to_task`` is set."""
    tokens = split_id_list(subtask_ids)
    if not tokens:
        raise InvalidArgumentError("At least one subtask id is required")

    removed = []
    converted = []
    errors = []
    removed_refs: Set[TaskRef] = set()
    for token in tokens:
        try:
            ref = parse_task_ref(token)
        except InvalidArgumentError as e:
            errors.append(str(e))
            continue
        if not ref.is_subtask:
            errors.append(f'Invalid subtask ID format: {token}. Must be in format "parentId.subtaskId"')
            continue
        try:
            resolved = resolve(collection, ref)
        except NotFoundError as e:
            errors.append(str(e))
            continue

        parent, subtask = resolved.parent, resolved.item
        parent.subtasks.remove(subtask)
        parent.touch()

        if convert_to_task:
            new_id = collection.next_task_id()
            data = subtask.to_dict()
            data.pop("parentTaskId", None)
            data.update({"id": new_id, "updatedAt": utc_now()})
            collection.tasks.append(Task.from_dict(data))
            rewritten = _rewrite_references(collection, ref, TaskRef(new_id))
            converted.append({
                "originalId": str(ref),
                "newTaskId": new_id,
                "title": subtask.title,
                "status": subtask.status,
                "rewrittenReferences": rewritten,
            })
        else:
            removed.append({"id": str(ref), "title": subtask.title, "status": subtask.status})
            removed_refs.add(ref)

    swept = _sweep_references(collection, removed_refs, set()) if removed_refs else []
    if convert_to_task:
        summary = f"Converted {len(converted)} subtask(s) to standalone task(s)"
    else:
        summary = f"Removed {len(removed)} subtask(s)"
    payload: Dict[str, Any] = {
        "operation": "converted" if convert_to_task else "removed",
        "summary": summary,
        "removed_subtasks": removed,
        "converted_tasks": converted,
        "swept_references": swept,
        "errors": errors,
    }
    if converted:
        payload["next_steps"] = [
            f'View converted task: show_task with task_id "{item["newTaskId"]}"' for item in converted
        ]
    return MutationResult(
        changed=bool(removed or converted),
        payload=payload,
        task_ids=[item["id"] for item in removed] + [item["originalId"] for item in converted],
    )


def clear_subtasks(
    collection: TaskCollection,
    task_ids: Union[str, Sequence[Any], None] = None,
    clear_all: bool = False,
) -> MutationResult:
    """Drop every subtask of the selected tasks (or of all tasks)."""
    errors = []
    if clear_all:
        targets = list(collection.tasks)
    elif task_ids:
        targets = []
        for token in split_id_list(task_ids):
            try:
                ref = parse_task_ref(token)
            except InvalidArgumentError as e:
                errors.append(str(e))
                continue
            task = collection.get_task(ref.task_id) if not ref.is_subtask else None
            if task is None:
                errors.append(f"Task {token} not found")
                continue
            if task not in targets:
                targets.append(task)
    else:
        raise InvalidArgumentError("Either provide task_ids or set clear_all to clear subtasks")

    cleared = []
    total = 0
    removed_refs: Set[TaskRef] = set()
    for task in targets:
        if not task.subtasks:
            continue
        count = len(task.subtasks)
        removed_refs.update(TaskRef(task.id, subtask.id) for subtask in task.subtasks)
        cleared.append({"taskId": task.id, "title": task.title, "subtasksCleared": count})
        total += count
        task.subtasks = []
        task.touch()

    swept = _sweep_references(collection, removed_refs, set()) if removed_refs else []
    if cleared:
        message = f"Successfully cleared {total} subtasks from {len(cleared)} task(s)"
    else:
        message = "No tasks with subtasks found to clear"
    return MutationResult(
        changed=bool(cleared),
        payload={
            "summary": {
                "tasksProcessed": len(cleared),
                "totalSubtasksCleared": total,
                "operation": "cleared_all" if clear_all else "cleared_selected",
            },
            "cleared_tasks": cleared,
            "swept_references": swept,
            "errors": errors,
            "message": message,
        },
        task_ids=[str(item["taskId"]) for item in cleared],
    )


# ----------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------


def add_dependency(collection: TaskCollection, task_id: Any, depends_on: Any) -> MutationResult:
    """Add ``depends_on`` to the dependency list of ``task_id``."""
    target_ref = parse_task_ref(task_id)
    dep_ref = parse_task_ref(depends_on)
    if target_ref == dep_ref:
        raise InvalidArgumentError("A task cannot depend on itself")

    target = resolve(collection, target_ref)
    dependency = try_resolve(collection, dep_ref)
    if dependency is None:
        raise NotFoundError(f"Dependency task {dep_ref} not found")

    if any(dependency_ref(dep) == dep_ref for dep in target.item.dependencies):
        raise InvalidArgumentError(f"Task {target_ref} already depends on {dep_ref}")

    target.item.dependencies.append(dep_ref.as_dependency())
    _touch(target.item, target.parent)
    return MutationResult(
        changed=True,
        payload={
            "dependency": {
                "task": {
                    "id": str(target_ref),
                    "title": target.item.title,
                    "type": "subtask" if target.is_subtask else "task",
                },
                "dependsOn": {
                    "id": str(dep_ref),
                    "title": dependency.item.title,
                    "type": "subtask" if dependency.is_subtask else "task",
                },
            },
            "all_dependencies": list(target.item.dependencies),
            "message": f"Successfully added dependency: {target_ref} now depends on {dep_ref}",
        },
        task_ids=[str(target_ref)],
    )


def remove_dependency(collection: TaskCollection, task_id: Any, depends_on: Any) -> MutationResult:
    """Remove ``depends_on`` from the dependency list of ``task_id``."""
    target_ref = parse_task_ref(task_id)
    dep_ref = parse_task_ref(depends_on)
    target = resolve(collection, target_ref)

    remaining = [dep for dep in target.item.dependencies if dependency_ref(dep) != dep_ref]
    if len(remaining) == len(target.item.dependencies):
        raise NotFoundError(f"Task {target_ref} does not depend on {dep_ref}")

    target.item.dependencies = remaining
    _touch(target.item, target.parent)
    return MutationResult(
        changed=True,
        payload={
            "all_dependencies": list(remaining),
            "message": f"Successfully removed dependency: {target_ref} no longer depends on {dep_ref}",
        },
        task_ids=[str(target_ref)],
    )


def _points_at(value: Any, task_ids: Set[int]) -> bool:
    ref = dependency_ref(value)
    return ref is not None and ref.task_id in task_ids


def _sweep_references(collection: TaskCollection, removed: Set[TaskRef], removed_tasks: Set[int]) -> List[Dict[str, Any]]:
    """Drop dependency and relevance entries that point at removed items."""
    swept = []
    for ref, item in collection.iter_items():
        dangling = []
        for dep in item.dependencies:
            dep_ref = dependency_ref(dep)
            if dep_ref is not None and (dep_ref in removed or dep_ref.task_id in removed_tasks):
                dangling.append(dep)
        if dangling:
            item.dependencies = [dep for dep in item.dependencies if dep not in dangling]
            item.touch()
            swept.append({"id": str(ref), "field": "dependencies", "removed": dangling})

        if isinstance(item, Task):
            stale = [tid for tid in item.relevant_tasks if _points_at(tid, removed_tasks)]
            if stale:
                item.relevant_tasks = [tid for tid in item.relevant_tasks if tid not in stale]
                item.touch()
                swept.append({"id": str(ref), "field": "relevantTasks", "removed": stale})
    return swept


def remove_task(collection: TaskCollection, task_ids: Union[str, Sequence[Any]]) -> MutationResult:
    """Remove tasks or subtasks and sweep every reference to them."""
    tokens = split_id_list(task_ids)
    if not tokens:
        raise InvalidArgumentError("At least one task id is required")

    removed_refs: Set[TaskRef] = set()
    removed_tasks: Set[int] = set()
    removed = []
    errors = []
    for token in tokens:
        try:
            resolved = resolve(collection, token)
        except TaskMasterError as e:
            errors.append(str(e))
            continue

        if resolved.is_subtask:
            resolved.parent.subtasks.remove(resolved.item)
            resolved.parent.touch()
        else:
            collection.tasks.remove(resolved.item)
            removed_tasks.add(resolved.item.id)
        removed_refs.add(resolved.ref)
        removed.append({
            "id": str(resolved.ref),
            "title": resolved.item.title,
            "status": resolved.item.status,
            "subtasksRemoved": 0 if resolved.is_subtask else len(resolved.item.subtasks),
        })

    swept = _sweep_references(collection, removed_refs, removed_tasks) if removed else []
    return MutationResult(
        changed=bool(removed),
        payload={
            "removed_tasks": removed,
            "swept_references": swept,
            "errors": errors,
            "summary": f"Removed {len(removed)} task(s) and cleaned {len(swept)} dangling reference list(s)",
        },
        task_ids=[item["id"] for item in removed],
    )


def fix_dependencies(collection: TaskCollection) -> MutationResult:
    """Drop malformed, unresolvable, self and duplicate dependency entries."""
    fixes = []
    normalized = False
    for ref, item in collection.iter_items():
        kept = []
        seen: Set[TaskRef] = set()
        for dep in item.dependencies:
            dep_ref = dependency_ref(dep)
            reason = None
            if dep_ref is None:
                reason = "malformed"
            elif dep_ref == ref:
                reason = "self-dependency"
            elif dep_ref in seen:
                reason = "duplicate"
            elif try_resolve(collection, dep_ref) is None:
                reason = "missing"
            if reason:
                fixes.append({"id": str(ref), "dependency": dep, "reason": reason})
                continue
            seen.add(dep_ref)
            kept.append(dep_ref.as_dependency())
        if kept != item.dependencies:
            item.dependencies = kept
            item.touch()
            normalized = True

        if isinstance(item, Task):
            relevant = []
            for tid in item.relevant_tasks:
                rel_ref = dependency_ref(tid)
                if rel_ref is None or rel_ref.task_id == item.id or collection.get_task(rel_ref.task_id) is None:
                    fixes.append({"id": str(ref), "relevantTask": tid, "reason": "invalid relevant task"})
                    continue
                if rel_ref.task_id not in relevant:
                    relevant.append(rel_ref.task_id)
            if relevant != item.relevant_tasks:
                item.relevant_tasks = relevant
                item.touch()
                normalized = True

    return MutationResult(
        changed=bool(fixes) or normalized,
        payload={
            "fixes": fixes,
            "summary": f"Fixed {len(fixes)} dependency issue(s)" if fixes else "No dependency issues found",
        },
        task_ids=sorted({fix["id"] for fix in fixes}),
    )
