"""Data models for Task Master task tracking.

This module contains the core data structures used throughout the system:
tasks, subtasks, the task collection document, complexity analyses, and the
tagged identifier type used to address tasks and subtasks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .errors import InvalidArgumentError


VALID_STATUSES = (
    "pending",
    "in-progress",
    "done",
    "completed",
    "blocked",
    "deferred",
    "cancelled",
)

COMPLETE_STATUSES = frozenset({"done", "completed"})

# Statuses that can never be picked as the next task to work on.
UNAVAILABLE_STATUSES = frozenset({"done", "completed", "blocked", "deferred", "cancelled"})

VALID_PRIORITIES = ("high", "medium", "low")
DEFAULT_PRIORITY = "medium"
PRIORITY_WEIGHTS = {"high": 3, "medium": 2, "low": 1}

STATUS_ICONS = {
    "done": "✅",
    "completed": "✅",
    "in-progress": "🔄",
    "pending": "⏳",
    "blocked": "🚫",
    "deferred": "⏸️",
    "cancelled": "❌",
}

DependencyId = Union[int, str]


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def is_complete(status: Optional[str]) -> bool:
    """Return True for the terminal, complete-equivalent statuses."""
    return status in COMPLETE_STATUSES


def validate_status(status: str) -> str:
    """Return the status unchanged or raise for unknown values."""
    if status not in VALID_STATUSES:
        raise InvalidArgumentError(
            f"Invalid status '{status}'. Valid statuses: {', '.join(VALID_STATUSES)}"
        )
    return status


# ----------------------------------------------------------------------
# Identifiers
# ----------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TaskRef:
    """Address of a task (``7``) or of a subtask inside its parent (``7.2``)."""

    task_id: int
    subtask_id: Optional[int] = None

    @property
    def is_subtask(self) -> bool:
        return self.subtask_id is not None

    @property
    def parent(self) -> "TaskRef":
        return TaskRef(self.task_id)

    def as_dependency(self) -> DependencyId:
        """Form used inside ``dependencies`` lists: int for tasks, string for subtasks."""
        if self.is_subtask:
            return str(self)
        return self.task_id

    def __str__(self) -> str:
        if self.is_subtask:
            return f"{self.task_id}.{self.subtask_id}"
        return str(self.task_id)


def _positive_int(text: str, original: Any) -> int:
    text = text.strip()
    if not text.isdigit() or int(text) <= 0:
        raise InvalidArgumentError(
            f"Invalid task id '{original}'. Use a positive integer or the 'parentId.subtaskId' format"
        )
    return int(text)


def parse_task_ref(value: Any) -> TaskRef:
    """Parse an external identifier into a ``TaskRef``.

    Accepts positive integers, digit strings and ``"parent.sub"`` strings.
    """
    if isinstance(value, TaskRef):
        return value
    if isinstance(value, bool):
        raise InvalidArgumentError(f"Invalid task id '{value}'")
    if isinstance(value, int):
        if value <= 0:
            raise InvalidArgumentError(f"Invalid task id '{value}'. Task ids are positive integers")
        return TaskRef(value)
    if isinstance(value, float) and value.is_integer():
        return parse_task_ref(int(value))
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"Invalid task id '{value}'")

    parts = value.strip().split(".")
    if len(parts) == 1:
        return TaskRef(_positive_int(parts[0], value))
    if len(parts) == 2:
        return TaskRef(_positive_int(parts[0], value), _positive_int(parts[1], value))
    raise InvalidArgumentError(
        f"Invalid task id '{value}'. Use a positive integer or the 'parentId.subtaskId' format"
    )


def split_id_list(value: Union[str, int, List[Any], None]) -> List[str]:
    """Split a comma separated id argument into trimmed, non-empty tokens."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        items = str(value).split(",")
    return [item.strip() for item in items if str(item).strip()]


def _restore(key: str, value: Any, default: Any, nulls: set) -> Any:
    # A null read from disk was replaced by its default; write it back as null.
    if key in nulls and value == default:
        return None
    return value


def _emit(data: Dict[str, Any], key: str, value: Any, default: Any, present: set, nulls: set) -> None:
    if key in present or value != default:
        data[key] = _restore(key, value, default, nulls)


def _null_keys(data: Dict[str, Any]) -> set:
    return {key for key, value in data.items() if value is None}


# ----------------------------------------------------------------------
# Tasks
# ----------------------------------------------------------------------

_SUBTASK_KEYS = (
    "id",
    "title",
    "description",
    "details",
    "status",
    "dependencies",
    "testStrategy",
    "parentTaskId",
    "createdAt",
    "updatedAt",
)


@dataclass(slots=True)
class Subtask:
    """A unit of work owned by exactly one parent task."""

    id: int
    title: str = ""
    description: str = ""
    details: str = ""
    status: str = "pending"
    dependencies: List[DependencyId] = field(default_factory=list)
    test_strategy: str = ""
    parent_task_id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    present_keys: set = field(
        default_factory=lambda: {"id", "title", "description", "details", "status", "dependencies"},
        repr=False,
        compare=False,
    )
    null_keys: set = field(default_factory=set, repr=False, compare=False)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        present, nulls = self.present_keys, self.null_keys
        data: Dict[str, Any] = {"id": self.id, "title": _restore("title", self.title, "", nulls)}
        _emit(data, "description", self.description, "", present, nulls)
        _emit(data, "details", self.details, "", present, nulls)
        data["status"] = _restore("status", self.status, "pending", nulls)
        _emit(data, "dependencies", list(self.dependencies), [], present, nulls)
        _emit(data, "testStrategy", self.test_strategy, "", present, nulls)
        _emit(data, "parentTaskId", self.parent_task_id, None, present, nulls)
        _emit(data, "createdAt", self.created_at, None, present, nulls)
        _emit(data, "updatedAt", self.updated_at, None, present, nulls)
        data.update({k: v for k, v in self.extra.items() if k not in data})
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subtask":
        """Create from dictionary representation."""
        return cls(
            id=int(data["id"]),
            title=data.get("title") or "",
            description=data.get("description") or "",
            details=data.get("details") or "",
            status=data.get("status") or "pending",
            dependencies=list(data.get("dependencies") or []),
            test_strategy=data.get("testStrategy") or "",
            parent_task_id=data.get("parentTaskId"),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            extra={k: v for k, v in data.items() if k not in _SUBTASK_KEYS},
            present_keys=set(data.keys()),
            null_keys=_null_keys(data),
        )

    def validate(self) -> List[str]:
        """Validate the subtask and return any issues."""
        issues = []
        if self.id <= 0:
            issues.append("Subtask ID must be a positive integer")
        if not self.title:
            issues.append("Subtask title is required")
        if self.status not in VALID_STATUSES:
            issues.append(f"Invalid status: {self.status}")
        return issues


_TASK_KEYS = (
    "id",
    "title",
    "description",
    "details",
    "testStrategy",
    "status",
    "priority",
    "dependencies",
    "keywords",
    "flowNames",
    "relevantTasks",
    "subtasks",
    "createdAt",
    "updatedAt",
)


@dataclass(slots=True)
class Task:
    """Top-level unit of work with status, priority, dependencies and subtasks."""

    id: int
    title: str = ""
    description: str = ""
    details: str = ""
    test_strategy: str = ""
    status: str = "pending"
    priority: str = DEFAULT_PRIORITY
    dependencies: List[DependencyId] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    flow_names: List[str] = field(default_factory=list)
    relevant_tasks: List[int] = field(default_factory=list)
    subtasks: List[Subtask] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    present_keys: set = field(
        default_factory=lambda: {
            "id", "title", "description", "details", "testStrategy",
            "status", "priority", "dependencies", "subtasks",
        },
        repr=False,
        compare=False,
    )
    null_keys: set = field(default_factory=set, repr=False, compare=False)

    @property
    def effective_priority(self) -> str:
        return self.priority if self.priority in PRIORITY_WEIGHTS else DEFAULT_PRIORITY

    def touch(self) -> None:
        self.updated_at = utc_now()

    def find_subtask(self, subtask_id: int) -> Optional[Subtask]:
        for subtask in self.subtasks:
            if subtask.id == subtask_id:
                return subtask
        return None

    def next_subtask_id(self) -> int:
        """Next per-parent subtask id: ``max(existing) + 1`` or ``1``."""
        return max((subtask.id for subtask in self.subtasks), default=0) + 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        present, nulls = self.present_keys, self.null_keys
        data: Dict[str, Any] = {"id": self.id, "title": _restore("title", self.title, "", nulls)}
        _emit(data, "description", self.description, "", present, nulls)
        _emit(data, "details", self.details, "", present, nulls)
        _emit(data, "testStrategy", self.test_strategy, "", present, nulls)
        data["status"] = _restore("status", self.status, "pending", nulls)
        _emit(data, "priority", self.priority, DEFAULT_PRIORITY, present, nulls)
        _emit(data, "dependencies", list(self.dependencies), [], present, nulls)
        _emit(data, "keywords", list(self.keywords), [], present, nulls)
        _emit(data, "flowNames", list(self.flow_names), [], present, nulls)
        _emit(data, "relevantTasks", list(self.relevant_tasks), [], present, nulls)
        _emit(data, "subtasks", [subtask.to_dict() for subtask in self.subtasks], [], present, nulls)
        _emit(data, "createdAt", self.created_at, None, present, nulls)
        _emit(data, "updatedAt", self.updated_at, None, present, nulls)
        data.update({k: v for k, v in self.extra.items() if k not in data})
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Create from dictionary representation."""
        return cls(
            id=int(data["id"]),
            title=data.get("title") or "",
            description=data.get("description") or "",
            details=data.get("details") or "",
            test_strategy=data.get("testStrategy") or "",
            status=data.get("status") or "pending",
            priority=data.get("priority") or DEFAULT_PRIORITY,
            dependencies=list(data.get("dependencies") or []),
            keywords=list(data.get("keywords") or []),
            flow_names=list(data.get("flowNames") or []),
            relevant_tasks=list(data.get("relevantTasks") or []),
            subtasks=[Subtask.from_dict(item) for item in data.get("subtasks") or []],
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            extra={k: v for k, v in data.items() if k not in _TASK_KEYS},
            present_keys=set(data.keys()),
            null_keys=_null_keys(data),
        )

    def validate(self) -> List[str]:
        """Validate the task and return any issues."""
        issues = []

        if self.id <= 0:
            issues.append("Task ID must be a positive integer")
        if not self.title:
            issues.append("Task title is required")
        if self.status not in VALID_STATUSES:
            issues.append(f"Invalid status: {self.status}")
        if self.priority not in VALID_PRIORITIES:
            issues.append(f"Invalid priority: {self.priority}")
        if self.keywords and not 3 <= len(self.keywords) <= 8:
            issues.append("Tasks should carry between 3 and 8 keywords")
        if self.flow_names and not 1 <= len(self.flow_names) <= 4:
            issues.append("Tasks should belong to between 1 and 4 flows")
        seen_subtasks = set()
        for subtask in self.subtasks:
            if subtask.id in seen_subtasks:
                issues.append(f"Duplicate subtask ID: {self.id}.{subtask.id}")
            seen_subtasks.add(subtask.id)
            issues.extend(f"Subtask {self.id}.{subtask.id}: {issue}" for issue in subtask.validate())

        return issues


@dataclass(slots=True)
class TaskCollection:
    """The persisted task document: ordered tasks plus collection metadata."""

    tasks: List[Task] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def version(self) -> int:
        return int(self.metadata.get("version", 0))

    def bump_version(self) -> int:
        """Record a committed mutation in the metadata."""
        self.metadata["version"] = self.version + 1
        self.metadata["totalTasks"] = len(self.tasks)
        self.metadata["updatedAt"] = utc_now()
        return self.metadata["version"]

    def get_task(self, task_id: int) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def task_ids(self) -> List[int]:
        return [task.id for task in self.tasks]

    def next_task_id(self) -> int:
        """Next top-level id: ``max(existing) + 1`` or ``1``."""
        return max(self.task_ids(), default=0) + 1

    def iter_items(self) -> Iterator[Tuple[TaskRef, Union[Task, Subtask]]]:
        """Yield every task followed by its subtasks, with their refs."""
        for task in self.tasks:
            yield TaskRef(task.id), task
            for subtask in task.subtasks:
                yield TaskRef(task.id, subtask.id), subtask

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {"tasks": [task.to_dict() for task in self.tasks]}
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        data.update({k: v for k, v in self.extra.items() if k not in data})
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskCollection":
        """Create from dictionary representation."""
        if not isinstance(data, dict) or not isinstance(data.get("tasks"), list):
            raise InvalidArgumentError("Task document must be an object with a 'tasks' array")
        return cls(
            tasks=[Task.from_dict(item) for item in data["tasks"]],
            metadata=dict(data.get("metadata") or {}),
            extra={k: v for k, v in data.items() if k not in ("tasks", "metadata")},
        )

    @classmethod
    def empty(cls, project_name: str = "Task Master Project") -> "TaskCollection":
        return cls(
            tasks=[],
            metadata={"projectName": project_name, "totalTasks": 0, "generatedAt": utc_now()},
        )

    def validate(self) -> List[str]:
        """Validate the collection and return any issues."""
        issues = []
        seen = set()
        for task in self.tasks:
            if task.id in seen:
                issues.append(f"Duplicate task ID: {task.id}")
            seen.add(task.id)
            issues.extend(f"Task {task.id}: {issue}" for issue in task.validate())
        return issues


# ----------------------------------------------------------------------
# Complexity analysis
# ----------------------------------------------------------------------


@dataclass(slots=True)
class ComplexityAnalysis:
    """Externally produced complexity rating for one task."""

    task_id: int
    task_title: str
    complexity_score: float
    recommended_subtasks: int = 0
    expansion_prompt: str = ""
    reasoning: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "taskId": self.task_id,
            "taskTitle": self.task_title,
            "complexityScore": self.complexity_score,
            "recommendedSubtasks": self.recommended_subtasks,
            "expansionPrompt": self.expansion_prompt,
            "reasoning": self.reasoning,
        }
        data.update({k: v for k, v in self.extra.items() if k not in data})
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComplexityAnalysis":
        known = {"taskId", "taskTitle", "complexityScore", "recommendedSubtasks", "expansionPrompt", "reasoning"}
        if "taskId" not in data:
            raise InvalidArgumentError("Complexity analysis entries require a 'taskId'")
        return cls(
            task_id=int(data["taskId"]),
            task_title=data.get("taskTitle") or "",
            complexity_score=data.get("complexityScore") or 0,
            recommended_subtasks=int(data.get("recommendedSubtasks") or 0),
            expansion_prompt=data.get("expansionPrompt") or "",
            reasoning=data.get("reasoning") or "",
            extra={k: v for k, v in data.items() if k not in known},
        )

    def validate(self) -> List[str]:
        issues = []
        if not 1 <= self.complexity_score <= 10:
            issues.append(f"Task {self.task_id}: complexity score must be between 1 and 10")
        if self.recommended_subtasks < 0:
            issues.append(f"Task {self.task_id}: recommended subtasks cannot be negative")
        return issues


@dataclass(slots=True)
class ComplexityReport:
    """Companion document holding complexity analyses and run metadata."""

    meta: Dict[str, Any] = field(default_factory=dict)
    analyses: List[ComplexityAnalysis] = field(default_factory=list)

    def get(self, task_id: int) -> Optional[ComplexityAnalysis]:
        for analysis in self.analyses:
            if analysis.task_id == task_id:
                return analysis
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "meta": dict(self.meta),
            "complexityAnalysis": [analysis.to_dict() for analysis in self.analyses],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComplexityReport":
        return cls(
            meta=dict(data.get("meta") or {}),
            analyses=[ComplexityAnalysis.from_dict(item) for item in data.get("complexityAnalysis") or []],
        )


# ----------------------------------------------------------------------
# Workflow guide
# ----------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class WorkflowStep:
    """One step of the recommended Task Master workflow."""

    step_number: int
    name: str
    tool_names: Tuple[str, ...]
    description: str
    purpose: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step_number,
            "name": self.name,
            "tools": list(self.tool_names),
            "description": self.description,
            "purpose": self.purpose,
        }


WORKFLOW_STEPS = [
    WorkflowStep(
        step_number=1,
        name="Project Setup",
        tool_names=("init_project",),
        description="Create the .taskmaster directory, config, PRD template and empty task list",
        purpose="Give every later tool a task document to work on",
    ),
    WorkflowStep(
        step_number=2,
        name="Task Generation",
        tool_names=("parse_prd", "add_task"),
        description="Turn a requirements document or a single request into tasks",
        purpose="Build the initial task graph with keywords, flows and dependencies",
    ),
    WorkflowStep(
        step_number=3,
        name="Complexity Analysis",
        tool_names=("analyze_task_complexity", "save_complexity_analysis", "complexity_report"),
        description="Rate each task and record how many subtasks it needs",
        purpose="Find the tasks that must be broken down before work starts",
    ),
    WorkflowStep(
        step_number=4,
        name="Task Expansion",
        tool_names=("expand_task", "add_subtask", "clear_subtasks"),
        description="Break complex tasks into ordered subtasks",
        purpose="Turn large tasks into units that can be finished one by one",
    ),
    WorkflowStep(
        step_number=5,
        name="Dependency Review",
        tool_names=("validate_dependencies", "fix_dependencies", "add_dependency", "remove_dependency"),
        description="Check the dependency graph for missing, duplicate, self and circular edges",
        purpose="Keep next_task selection reliable",
    ),
    WorkflowStep(
        step_number=6,
        name="Execution",
        tool_names=("next_task", "show_task", "set_task_status", "update_subtask_by_id"),
        description="Work through tasks in dependency and priority order",
        purpose="Always pick the most valuable task that can start now",
    ),
    WorkflowStep(
        step_number=7,
        name="Change Propagation",
        tool_names=("update_tasks", "update_tasks_by_flows", "update_tasks_by_keywords", "update_task_by_id"),
        description="Apply new context to a task and everything related to it",
        purpose="Keep pending tasks consistent when requirements change",
    ),
    WorkflowStep(
        step_number=8,
        name="Reporting",
        tool_names=("list_tasks", "status_report", "list_keywords", "list_flows", "generate_task_files"),
        description="Review progress, coverage and per-task files",
        purpose="Track completion across tasks, keywords and business flows",
    ),
]
