"""MCP server exposing Task Master task-graph tools."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from mcp.server.fastmcp import FastMCP

from taskmaster.taskmaster_logging import log_error_with_context, setup_logging
from taskmaster.workflow import TaskManager
from taskmaster.workspace import Workspace

mcp = FastMCP("task-master")


ROOT_ENV = "TASKMASTER_PROJECT_ROOT"
SERVER_ROOT = Path(__file__).resolve().parent

_log_file = os.getenv("TASKMASTER_LOG_FILE")
setup_logging(os.getenv("TASKMASTER_LOG_LEVEL", "INFO"), Path(_log_file) if _log_file else None)


def _marker_directories() -> tuple:
    return (os.getenv(Workspace.STORAGE_DIR_ENV) or Workspace.DEFAULT_STORAGE_DIR,)


def _candidate_bases() -> List[Path]:
    cwd = Path.cwd().resolve()
    bases: List[Path] = [cwd]
    bases.extend(cwd.parents)
    if SERVER_ROOT not in bases:
        bases.append(SERVER_ROOT)
    for parent in SERVER_ROOT.parents:
        if parent not in bases:
            bases.append(parent)
    seen: set[Path] = set()
    ordered: List[Path] = []
    for base in bases:
        if base not in seen:
            seen.add(base)
            ordered.append(base)
    return ordered


def _locate_workspace_root() -> Optional[Path]:
    for base in _candidate_bases():
        for marker in _marker_directories():
            if (base / marker).is_dir():
                return base
    return None


def _resolve_root(root: Optional[str]) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv(ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable {ROOT_ENV} points to '{env_root}', which does not exist."
            )
        return env_path

    detected_root = _locate_workspace_root()
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument when calling the tool "
        f"or set the {ROOT_ENV} environment variable."
    )


def _manager(root: Optional[str]) -> TaskManager:
    return TaskManager(_resolve_root(root))


def _with_manager(operation: str, root: Optional[str], call: Callable[[TaskManager], Dict[str, Any]]) -> Dict[str, Any]:
    """Resolve the project root and run ``call``; an unresolvable root becomes an error envelope."""
    try:
        manager = _manager(root)
    except ValueError as e:
        log_error_with_context(e, {"operation": operation, "root": root})
        return {
            "error": str(e),
            "error_type": "InvalidArgument",
            "suggestion": f"Pass the project directory as 'root' or set {ROOT_ENV}",
            "next_suggested_action": "init_project",
            "message": f"Error: {e}",
        }
    return call(manager)


IdList = Union[str, int, List[Union[str, int]]]


# ----------------------------------------------------------------------
# Project setup
# ----------------------------------------------------------------------


@mcp.tool()
def init_project(project_name: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 1: Initialize a Task Master project in the given root directory.
    Creates the .taskmaster storage layout (tasks, docs, reports, templates), a default
    config and an empty tasks.json. Existing files are never overwritten."""

    return _with_manager("init_project", root, lambda m: m.init_project(project_name))


@mcp.tool()
def parse_prd(
    prd_path: str,
    num_tasks: int = 10,
    research: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 2: Get instructions for turning a Product Requirements Document into tasks.
    The response contains a prompt to run; write the generated tasks into the returned targetFile."""

    return _with_manager("parse_prd", root, lambda m: m.parse_prd(prd_path, num_tasks, research))


@mcp.tool()
def get_workflow_guide() -> Dict[str, Any]:
    """Get the recommended Task Master workflow, step by step, with the tools for each step."""

    return TaskManager.get_workflow_guide()


# ----------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------


@mcp.tool()
def list_tasks(
    status: Optional[str] = None,
    with_subtasks: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """List tasks with a status summary, optionally filtered by status and including subtasks."""

    return _with_manager("list_tasks", root, lambda m: m.list_tasks(status, with_subtasks))


@mcp.tool()
def show_task(task_id: str, status: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Show full details for a task or subtask (use "parentId.subtaskId" for subtasks)."""

    return _with_manager("show_task", root, lambda m: m.show_task(task_id, status))


@mcp.tool()
def next_task(root: Optional[str] = None) -> Dict[str, Any]:
    """Find the next task to work on: eligible, dependencies complete, ranked by priority."""

    return _with_manager("next_task", root, lambda m: m.next_task())


@mcp.tool()
def get_tasks_by_keywords(
    keywords: List[str],
    min_score: float = 0.3,
    max_results: int = 100,
    include_subtasks: bool = False,
    status: Optional[str] = None,
    sort_by: str = "score",
    order: str = "desc",
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Find tasks whose keywords fuzzily match the given keywords, ranked by match score."""

    return _with_manager(
        "get_tasks_by_keywords", root,
        lambda m: m.get_tasks_by_keywords(
            keywords, min_score, max_results, include_subtasks, status, sort_by, order
        ),
    )


@mcp.tool()
def get_tasks_by_flows(
    flow_names: List[str],
    min_score: float = 0.3,
    max_results: int = 100,
    include_subtasks: bool = False,
    status: Optional[str] = None,
    sort_by: str = "score",
    order: str = "desc",
    include_flow_analysis: bool = True,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Find tasks belonging to the given user flows, with optional flow completion analysis."""

    return _with_manager(
        "get_tasks_by_flows", root,
        lambda m: m.get_tasks_by_flows(
            flow_names, min_score, max_results, include_subtasks, status, sort_by, order,
            include_flow_analysis,
        ),
    )


@mcp.tool()
def list_keywords(
    include_subtasks: bool = False,
    sort_by: str = "frequency",
    min_usage: int = 1,
    max_results: int = 100,
    search_pattern: Optional[str] = None,
    include_task_details: bool = False,
    include_analytics: bool = True,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """List every keyword in use with frequency, coverage and co-occurrence analytics."""

    return _with_manager(
        "list_keywords", root,
        lambda m: m.list_keywords(
            include_subtasks=include_subtasks, sort_by=sort_by, min_usage=min_usage,
            max_results=max_results, search_pattern=search_pattern,
            include_task_details=include_task_details, include_analytics=include_analytics,
        ),
    )


@mcp.tool()
def list_flows(
    include_subtasks: bool = False,
    sort_by: str = "frequency",
    min_usage: int = 1,
    max_results: int = 100,
    search_pattern: Optional[str] = None,
    status: str = "all",
    include_task_details: bool = False,
    include_analytics: bool = True,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """List every user flow with usage, completion status and inter-flow dependencies.
    status filters flows by completion: completed, in-progress, not-started or all."""

    return _with_manager(
        "list_flows", root,
        lambda m: m.list_flows(
            include_subtasks=include_subtasks, sort_by=sort_by, min_usage=min_usage,
            max_results=max_results, search_pattern=search_pattern, status_filter=status,
            include_task_details=include_task_details, include_analytics=include_analytics,
        ),
    )


@mcp.tool()
def validate_dependencies(root: Optional[str] = None) -> Dict[str, Any]:
    """Check every dependency for missing targets, self references, duplicates and cycles."""

    return _with_manager("validate_dependencies", root, lambda m: m.validate_dependencies())


@mcp.tool()
def status_report(
    status: Optional[str] = None,
    include_subtasks: bool = False,
    detailed: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Project status as CSV rows (with complexity scores when a report exists) for tabular display."""

    return _with_manager(
        "status_report", root, lambda m: m.status_report(status, include_subtasks, detailed)
    )


# ----------------------------------------------------------------------
# Mutations
# ----------------------------------------------------------------------


@mcp.tool()
def set_task_status(
    task_ids: IdList,
    status: str,
    expected_version: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Set the status of one or more tasks or subtasks (comma-separated ids allowed).
    Valid statuses: pending, in-progress, done, completed, blocked, deferred, cancelled."""

    return _with_manager(
        "set_task_status", root, lambda m: m.set_task_status(task_ids, status, expected_version)
    )


@mcp.tool()
def add_subtask(
    parent_id: str,
    task_id: Optional[str] = None,
    title: Optional[str] = None,
    description: str = "",
    details: str = "",
    status: str = "pending",
    dependencies: Optional[List[Union[str, int]]] = None,
    test_strategy: str = "",
    expected_version: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Add a subtask to a parent task, or convert an existing task (task_id) into a subtask."""

    return _with_manager(
        "add_subtask", root,
        lambda m: m.add_subtask(
            parent_id, task_id, expected_version=expected_version, title=title,
            description=description, details=details, status=status,
            dependencies=dependencies, test_strategy=test_strategy,
        ),
    )


@mcp.tool()
def remove_subtask(
    subtask_ids: IdList,
    convert_to_task: bool = False,
    expected_version: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Remove subtasks ("parentId.subtaskId"), or promote them to standalone tasks."""

    return _with_manager(
        "remove_subtask", root,
        lambda m: m.remove_subtask(subtask_ids, convert_to_task, expected_version),
    )


@mcp.tool()
def clear_subtasks(
    task_ids: Optional[IdList] = None,
    clear_all: bool = False,
    expected_version: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Remove every subtask from the given tasks, or from all tasks."""

    return _with_manager(
        "clear_subtasks", root, lambda m: m.clear_subtasks(task_ids, clear_all, expected_version)
    )


@mcp.tool()
def add_dependency(
    task_id: str,
    depends_on: str,
    expected_version: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Make task_id depend on depends_on. Self references are rejected; validate_dependencies reports cycles."""

    return _with_manager(
        "add_dependency", root, lambda m: m.add_dependency(task_id, depends_on, expected_version)
    )


@mcp.tool()
def remove_dependency(
    task_id: str,
    depends_on: str,
    expected_version: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Remove a dependency from a task or subtask."""

    return _with_manager(
        "remove_dependency", root,
        lambda m: m.remove_dependency(task_id, depends_on, expected_version),
    )


@mcp.tool()
def remove_task(
    task_ids: IdList,
    expected_version: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Permanently remove tasks or subtasks and every reference to them."""

    return _with_manager("remove_task", root, lambda m: m.remove_task(task_ids, expected_version))


@mcp.tool()
def fix_dependencies(expected_version: Optional[int] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Drop missing, duplicate and self-referencing dependencies automatically."""

    return _with_manager("fix_dependencies", root, lambda m: m.fix_dependencies(expected_version))


@mcp.tool()
def generate_task_files(output_dir: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Write one task_NNN.txt file per task for reading outside the MCP client."""

    return _with_manager("generate_task_files", root, lambda m: m.generate_task_files(output_dir))


# ----------------------------------------------------------------------
# Complexity analysis
# ----------------------------------------------------------------------


@mcp.tool()
def analyze_task_complexity(
    threshold: float = 5,
    research: bool = False,
    ids: Optional[IdList] = None,
    from_id: Optional[int] = None,
    to_id: Optional[int] = None,
    batch_size: Optional[int] = None,
    resume_from_batch: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 3: Get instructions for rating the complexity of pending tasks.
    Large task sets are split into batches; save each batch with save_complexity_analysis."""

    return _with_manager(
        "analyze_task_complexity", root,
        lambda m: m.analyze_task_complexity(
            threshold, research, ids, from_id, to_id, batch_size, resume_from_batch
        ),
    )


@mcp.tool()
def save_complexity_analysis(
    analyses: List[Dict[str, Any]],
    batch_number: Optional[int] = None,
    total_batches: Optional[int] = None,
    threshold: float = 5,
    research: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Merge complexity analyses (taskId, taskTitle, complexityScore, recommendedSubtasks,
    expansionPrompt, reasoning) into the complexity report."""

    return _with_manager(
        "save_complexity_analysis", root,
        lambda m: m.save_complexity_analysis(analyses, batch_number, total_batches, threshold, research),
    )


@mcp.tool()
def complexity_report(root: Optional[str] = None) -> Dict[str, Any]:
    """Summarize the complexity report: distribution, tasks needing expansion and recommendations."""

    return _with_manager("complexity_report", root, lambda m: m.complexity_report())


@mcp.tool()
def plan_update_batches(
    from_id: Optional[int] = None,
    task_ids: Optional[List[Union[str, int]]] = None,
    max_depth: int = 2,
    batch_size: Optional[int] = None,
    resume_from_batch: Optional[int] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Preview which tasks an update would touch and how they would be batched."""

    return _with_manager(
        "plan_update_batches", root,
        lambda m: m.plan_update_batches(from_id, task_ids, max_depth, batch_size, resume_from_batch),
    )


# ----------------------------------------------------------------------
# Guidance
# ----------------------------------------------------------------------


@mcp.tool()
def add_task(
    prompt: str,
    dependencies: Optional[List[Union[str, int]]] = None,
    priority: Optional[str] = None,
    keywords: Optional[List[str]] = None,
    flow_names: Optional[List[str]] = None,
    research: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Get instructions for creating a new task from a description; write it into targetFile."""

    return _with_manager(
        "add_task", root,
        lambda m: m.add_task(prompt, dependencies, priority, keywords, flow_names, research),
    )


@mcp.tool()
def expand_task(
    task_id: str,
    num_subtasks: Optional[int] = None,
    research: bool = False,
    additional_context: str = "",
    force: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 4: Get instructions for breaking a task into subtasks.
    Uses the complexity report's recommendation when present; force replaces existing subtasks."""

    return _with_manager(
        "expand_task", root,
        lambda m: m.expand_task(task_id, num_subtasks, research, additional_context, force),
    )


@mcp.tool()
def update_task_by_id(task_id: str, prompt: str, research: bool = False, root: Optional[str] = None) -> Dict[str, Any]:
    """Get instructions for updating one task with new context. Completed tasks are locked."""

    return _with_manager("update_task_by_id", root, lambda m: m.update_task_by_id(task_id, prompt, research))


@mcp.tool()
def update_subtask_by_id(
    subtask_id: str,
    prompt: str,
    research: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Get instructions for appending timestamped information to a subtask ("parentId.subtaskId")."""

    return _with_manager(
        "update_subtask_by_id", root, lambda m: m.update_subtask_by_id(subtask_id, prompt, research)
    )


@mcp.tool()
def update_tasks(
    prompt: str,
    from_id: Optional[int] = None,
    task_ids: Optional[List[Union[str, int]]] = None,
    max_depth: int = 2,
    batch_size: Optional[int] = None,
    resume_from_batch: Optional[int] = None,
    research: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Get instructions for updating a task and everything related to it.
    The selection follows relevantTasks, dependencies and dependents of from_id, or uses task_ids."""

    return _with_manager(
        "update_tasks", root,
        lambda m: m.update_tasks(prompt, from_id, task_ids, max_depth, batch_size, resume_from_batch, research),
    )


@mcp.tool()
def update_tasks_by_flows(
    flow_names: List[str],
    prompt: str,
    min_score: float = 0.4,
    max_depth: int = 2,
    batch_size: Optional[int] = None,
    resume_from_batch: Optional[int] = None,
    research: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Get instructions for updating every task in the matching user flows."""

    return _with_manager(
        "update_tasks_by_flows", root,
        lambda m: m.update_tasks_by_flows(
            flow_names, prompt, min_score, max_depth, batch_size, resume_from_batch, research,
        ),
    )


@mcp.tool()
def update_tasks_by_keywords(
    keywords: List[str],
    prompt: str,
    min_score: float = 0.3,
    max_depth: int = 2,
    batch_size: Optional[int] = None,
    resume_from_batch: Optional[int] = None,
    research: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Get instructions for updating every task whose keywords match."""

    return _with_manager(
        "update_tasks_by_keywords", root,
        lambda m: m.update_tasks_by_keywords(
            keywords, prompt, min_score, max_depth, batch_size, resume_from_batch, research,
        ),
    )


@mcp.resource("taskmaster://tasks")
def resource_tasks() -> str:
    """Resource view listing tasks and their status for discovery."""

    try:
        manager = _manager(None)
    except ValueError:
        return f"No project root detected. Launch tools with a 'root' argument or set {ROOT_ENV}."

    result = manager.list_tasks()
    if not result.get("success"):
        return result["message"]
    if not result["tasks"]:
        return "No tasks have been created yet."

    summary = result["summary"]
    lines = [f"Task Master Tasks ({summary['completionPercentage']}% complete)"]
    for row in result["tasks"]:
        lines.append(f"- {row['id']}: {row['title']} [{row['status']}]")
    return "\n".join(lines)


if __name__ == "__main__":
    mcp.run(transport="stdio")
