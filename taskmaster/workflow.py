"""Operation management for Task Master.

``TaskManager`` is the boundary between the MCP tools and the pure task-graph
functions: it loads the task document, runs a query, mutation or guidance
builder on it, saves when something changed and wraps the outcome in a
response envelope. Every call reloads from disk, so a failed save never
leaves stale state behind.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from . import mutations, queries
from .batching import (
    COMPLEXITY_DOMAIN,
    UPDATE_DOMAIN,
    merge_complexity_analyses,
    plan_batches,
    split_batches,
)
from .errors import (
    AlreadyLockedError,
    InvalidArgumentError,
    NotFoundError,
    PersistenceError,
    TaskMasterError,
)
from .graph import build_field_chain, build_relevance_chain, resolve, try_resolve
from .matching import flow_match_score, keyword_match_score
from .models import (
    VALID_PRIORITIES,
    WORKFLOW_STEPS,
    ComplexityAnalysis,
    Task,
    TaskCollection,
    is_complete,
    parse_task_ref,
    split_id_list,
)
from .prompts import (
    add_task_prompt,
    analyze_complexity_prompt,
    expand_task_prompt,
    parse_prd_prompt,
    update_subtask_prompt,
    update_task_prompt,
    update_tasks_prompt,
)
from .stats import DEFAULT_EXPANSION_THRESHOLD, summarize_complexity_report
from .taskmaster_logging import (
    log_error_with_context,
    log_guidance_event,
    log_operation,
    log_performance,
    log_task_mutation,
)
from .workspace import Workspace


DEFAULT_SUBTASK_COUNT = 3
DEFAULT_UPDATE_DEPTH = 2
KEYWORD_SEARCH_MIN_SCORE = 0.3
FLOW_SEARCH_MIN_SCORE = 0.3
KEYWORD_UPDATE_MIN_SCORE = 0.3
FLOW_UPDATE_MIN_SCORE = 0.4
ANALYZABLE_STATUSES = ("pending", "blocked", "in-progress")

logger = logging.getLogger("taskmaster.workflow")

Envelope = Dict[str, Any]


class TaskManager:
    """Runs Task Master operations against one project root."""

    def __init__(self, root: Path | str):
        """Initialize the manager with the project root."""
        self.workspace = Workspace(root)

    @property
    def root(self) -> str:
        return str(self.workspace.root)

    @property
    def target_file(self) -> str:
        return str(self.workspace.tasks_path)

    # ------------------------------------------------------------------
    # Envelopes
    # ------------------------------------------------------------------

    def _next_action_for(self, error: Exception, operation: str) -> str:
        if isinstance(error, NotFoundError) and not self.workspace.is_initialized():
            return "init_project"
        if isinstance(error, NotFoundError):
            return "list_tasks"
        if isinstance(error, AlreadyLockedError):
            return "set_task_status"
        return operation

    def _error(self, operation: str, error: Exception, **context: Any) -> Envelope:
        """Log ``error`` and turn it into an error envelope."""
        log_error_with_context(error, {"operation": operation, "root": self.root, **context})
        if isinstance(error, TaskMasterError):
            error_type = error.kind
            suggestion = error.suggestion
        else:
            error_type = "InternalError"
            suggestion = "Check the server log for details and report the problem if it persists"
        return {
            "error": str(error),
            "error_type": error_type,
            "suggestion": suggestion,
            "next_suggested_action": self._next_action_for(error, operation),
            "message": f"Error: {error}",
        }

    def _query(
        self,
        operation: str,
        query: Callable[..., Dict[str, Any]],
        *args: Any,
        tip: Optional[str] = None,
        **kwargs: Any,
    ) -> Envelope:
        try:
            collection = self.workspace.load_collection()
            payload = query(collection, *args, **kwargs)
        except Exception as e:
            return self._error(operation, e)

        envelope: Envelope = {"success": True, **payload}
        if tip:
            envelope["workflow_tip"] = tip
        return envelope

    def _mutate(
        self,
        operation: str,
        mutation: Callable[..., mutations.MutationResult],
        *args: Any,
        expected_version: Optional[int] = None,
        tip: Optional[str] = None,
        **kwargs: Any,
    ) -> Envelope:
        """Load, apply ``mutation``, and save only when it reports a change."""
        try:
            with log_operation(operation, root=self.root):
                collection = self.workspace.load_collection()
                result = mutation(collection, *args, **kwargs)
                if result.changed:
                    collection.bump_version()
                    self.workspace.save_collection(collection, expected_version=expected_version)
        except Exception as e:
            return self._error(operation, e)

        if result.changed:
            log_task_mutation(operation, self.root, result.task_ids)
        logger.info(f"{operation}: changed={result.changed} tasks={result.task_ids}")

        envelope: Envelope = {
            "success": True,
            **result.payload,
            "changed": result.changed,
            "version": collection.version,
        }
        if tip:
            envelope["workflow_tip"] = tip
        return envelope

    def _guidance(
        self,
        action: str,
        target_file: str,
        parameters: Dict[str, Any],
        instructions: str,
        **extra: Any,
    ) -> Envelope:
        log_guidance_event(action, self.root, target_file=target_file)
        return {
            "success": True,
            "action": action,
            "targetFile": target_file,
            **extra,
            "parameters": parameters,
            "instructions": instructions,
        }

    def _load_or_empty(self) -> TaskCollection:
        if not self.workspace.is_initialized():
            return TaskCollection.empty(self.workspace.project_name)
        return self.workspace.load_collection()

    # ------------------------------------------------------------------
    # Project setup and files
    # ------------------------------------------------------------------

    def init_project(self, project_name: Optional[str] = None) -> Envelope:
        """Create the storage layout under the project root."""
        try:
            if not self.workspace.root.exists():
                raise NotFoundError(f"Project root directory does not exist: {self.root}")
            created = self.workspace.init_project(project_name)
        except Exception as e:
            return self._error("init_project", e)

        return {
            "success": True,
            "project_root": self.root,
            "tasks_file": self.target_file,
            "summary": {
                "directoriesCreated": len(created["directories"]),
                "filesCreated": len(created["files"]),
            },
            "details": created,
            "next_suggested_action": "parse_prd",
            "workflow_tip": (
                f"Next: write a PRD in {self.workspace.relative(self.workspace.docs_dir)} using "
                f"{self.workspace.relative(self.workspace.prd_template_path)}, then call parse_prd"
            ),
            "message": f"Task Master project initialized in {self.root}",
        }

    @log_performance("generate_task_files")
    def generate_task_files(self, output_dir: Optional[str] = None) -> Envelope:
        try:
            collection = self.workspace.load_collection()
            result = self.workspace.generate_task_files(collection, output_dir)
        except Exception as e:
            return self._error("generate_task_files", e)

        envelope: Envelope = {
            "success": True,
            "summary": {
                "totalTasks": result["totalTasks"],
                "generatedFiles": len(result["generatedFiles"]),
                "errors": len(result["errors"]),
                "outputDirectory": result["outputDirectory"],
            },
            "files": result["generatedFiles"],
            "message": f"Generated {len(result['generatedFiles'])} task file(s) in {result['outputDirectory']}",
        }
        if result["errors"]:
            envelope["errors"] = result["errors"]
        return envelope

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_tasks(self, status: Optional[str] = None, with_subtasks: bool = False) -> Envelope:
        return self._query(
            "list_tasks", queries.list_tasks, status, with_subtasks,
            tip="Use next_task to pick what to work on, or show_task for full details",
        )

    def show_task(self, task_id: Union[str, int], status: Optional[str] = None) -> Envelope:
        return self._query("show_task", queries.show_task, task_id, status)

    def next_task(self) -> Envelope:
        return self._query(
            "next_task", queries.next_task,
            tip="Set the task to in-progress with set_task_status before starting work",
        )

    def validate_dependencies(self) -> Envelope:
        return self._query(
            "validate_dependencies", queries.validate_dependencies,
            tip="Run fix_dependencies to drop missing, duplicate and self references automatically",
        )

    def status_report(
        self,
        status: Optional[str] = None,
        include_subtasks: bool = False,
        detailed: bool = False,
    ) -> Envelope:
        try:
            collection = self.workspace.load_collection()
            report = self.workspace.load_report()
            payload = queries.status_report(collection, report, status, include_subtasks, detailed)
        except Exception as e:
            return self._error("status_report", e)
        return {"success": True, **payload}

    def get_tasks_by_keywords(
        self,
        keywords: Sequence[str],
        min_score: float = KEYWORD_SEARCH_MIN_SCORE,
        max_results: int = 100,
        include_subtasks: bool = False,
        status: Optional[str] = None,
        sort_by: str = "score",
        order: str = "desc",
    ) -> Envelope:
        return self._query(
            "get_tasks_by_keywords", queries.get_tasks_by_terms, keywords,
            field="keywords", min_score=min_score, max_results=max_results,
            include_subtasks=include_subtasks, status_filter=status, sort_by=sort_by, order=order,
        )

    def get_tasks_by_flows(
        self,
        flow_names: Sequence[str],
        min_score: float = FLOW_SEARCH_MIN_SCORE,
        max_results: int = 100,
        include_subtasks: bool = False,
        status: Optional[str] = None,
        sort_by: str = "score",
        order: str = "desc",
        include_flow_analysis: bool = True,
    ) -> Envelope:
        return self._query(
            "get_tasks_by_flows", queries.get_tasks_by_terms, flow_names,
            field="flowNames", min_score=min_score, max_results=max_results,
            include_subtasks=include_subtasks, status_filter=status, sort_by=sort_by, order=order,
            include_flow_analysis=include_flow_analysis,
        )

    def list_keywords(self, **options: Any) -> Envelope:
        return self._query("list_keywords", queries.list_terms, field="keywords", **options)

    def list_flows(self, **options: Any) -> Envelope:
        return self._query("list_flows", queries.list_terms, field="flowNames", **options)

    def complexity_report(self) -> Envelope:
        try:
            report = self.workspace.load_report()
            if report is None:
                raise NotFoundError(
                    f"No complexity report found at {self.workspace.relative(self.workspace.report_path)}. "
                    "Run analyze_task_complexity first."
                )
            formatted = summarize_complexity_report(report)
        except Exception as e:
            return self._error("complexity_report", e)

        statistics = formatted["statistics"]
        expansion = statistics["expansion"]
        if expansion["tasksNeedingExpansion"]:
            recommendations = [
                f"{expansion['tasksNeedingExpansion']} task(s) exceed the complexity threshold",
                "Expand high-complexity tasks with the expand_task tool",
                f"Total of {expansion['totalRecommendedSubtasks']} subtasks recommended",
            ]
        else:
            recommendations = [
                "All tasks are within acceptable complexity levels",
                "No immediate expansion needed",
            ]
        return {
            "success": True,
            "report": formatted,
            "summary": {
                "totalTasks": statistics["totalAnalyzed"],
                "averageComplexity": statistics["averageComplexity"],
                "highComplexityTasks": statistics["distribution"]["high"]["count"],
                "tasksNeedingExpansion": expansion["tasksNeedingExpansion"],
                "recommendedSubtasks": expansion["totalRecommendedSubtasks"],
            },
            "recommendations": recommendations,
            "report_location": str(self.workspace.report_path),
            "last_generated": formatted["metadata"].get("generatedAt"),
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_task_status(self, task_ids: Union[str, Sequence[Any]], status: str,
                        expected_version: Optional[int] = None) -> Envelope:
        return self._mutate(
            "set_task_status", mutations.set_task_status, task_ids, status,
            expected_version=expected_version,
            tip="Use next_task to find the next task once this one is done",
        )

    def add_subtask(self, parent_id: Union[str, int], task_id: Optional[Union[str, int]] = None,
                    expected_version: Optional[int] = None, **fields: Any) -> Envelope:
        return self._mutate(
            "add_subtask", mutations.add_subtask, parent_id, task_id,
            expected_version=expected_version, **fields,
        )

    def remove_subtask(self, subtask_ids: Union[str, Sequence[Any]], convert_to_task: bool = False,
                       expected_version: Optional[int] = None) -> Envelope:
        return self._mutate(
            "remove_subtask", mutations.remove_subtask, subtask_ids, convert_to_task,
            expected_version=expected_version,
        )

    def clear_subtasks(self, task_ids: Union[str, Sequence[Any], None] = None, clear_all: bool = False,
                       expected_version: Optional[int] = None) -> Envelope:
        return self._mutate(
            "clear_subtasks", mutations.clear_subtasks, task_ids, clear_all,
            expected_version=expected_version,
            tip="Use expand_task to generate a fresh set of subtasks",
        )

    def add_dependency(self, task_id: Union[str, int], depends_on: Union[str, int],
                       expected_version: Optional[int] = None) -> Envelope:
        return self._mutate(
            "add_dependency", mutations.add_dependency, task_id, depends_on,
            expected_version=expected_version,
            tip="Run validate_dependencies to check the graph for cycles",
        )

    def remove_dependency(self, task_id: Union[str, int], depends_on: Union[str, int],
                          expected_version: Optional[int] = None) -> Envelope:
        return self._mutate(
            "remove_dependency", mutations.remove_dependency, task_id, depends_on,
            expected_version=expected_version,
        )

    def remove_task(self, task_ids: Union[str, Sequence[Any]],
                    expected_version: Optional[int] = None) -> Envelope:
        return self._mutate(
            "remove_task", mutations.remove_task, task_ids,
            expected_version=expected_version,
            tip="Run generate_task_files to refresh the per-task files",
        )

    def fix_dependencies(self, expected_version: Optional[int] = None) -> Envelope:
        return self._mutate(
            "fix_dependencies", mutations.fix_dependencies,
            expected_version=expected_version,
        )

    # ------------------------------------------------------------------
    # Batch planning and complexity analysis
    # ------------------------------------------------------------------

    def _update_selection(
        self,
        collection: TaskCollection,
        from_id: Optional[int],
        task_ids: Optional[Sequence[Any]],
        max_depth: int,
    ) -> tuple:
        """Tasks chosen for an update: explicit ids or the relevance chain of ``from_id``."""
        if task_ids:
            chain = []
            for value in task_ids:
                ref = parse_task_ref(value)
                if ref.is_subtask:
                    raise InvalidArgumentError(f"update_tasks works on top-level tasks, got '{ref}'")
                if ref.task_id not in chain:
                    chain.append(ref.task_id)
        elif from_id is not None:
            seed = parse_task_ref(from_id)
            if seed.is_subtask:
                raise InvalidArgumentError(f"from_id must be a top-level task id, got '{seed}'")
            if collection.get_task(seed.task_id) is None:
                raise NotFoundError(f"Task {seed.task_id} not found")
            chain = sorted(build_relevance_chain(collection, seed.task_id, max_depth))
        else:
            raise InvalidArgumentError("Either from_id or task_ids must be provided")

        wanted = set(chain)
        selected = [task for task in collection.tasks if task.id in wanted and not is_complete(task.status)]
        if not selected:
            raise NotFoundError("No updatable tasks found: every selected task is missing or already complete")
        return selected, chain

    def _plan(self, tasks: Sequence[Task], domain, batch_size: Optional[int], resume_from: Optional[int] = None):
        plan = plan_batches([task.to_dict() for task in tasks], domain, batch_size)
        groups = split_batches([task.id for task in tasks], plan, resume_from)
        return plan, groups

    def plan_update_batches(
        self,
        from_id: Optional[int] = None,
        task_ids: Optional[Sequence[Any]] = None,
        max_depth: int = DEFAULT_UPDATE_DEPTH,
        batch_size: Optional[int] = None,
        resume_from_batch: Optional[int] = None,
    ) -> Envelope:
        """Preview how an update_tasks run would be batched."""
        try:
            collection = self.workspace.load_collection()
            selected, chain = self._update_selection(collection, from_id, task_ids, max_depth)
            plan, groups = self._plan(selected, UPDATE_DOMAIN, batch_size, resume_from_batch)
        except Exception as e:
            return self._error("plan_update_batches", e)

        return {
            "success": True,
            "relevant_tasks_chain": chain,
            "task_ids": [task.id for task in selected],
            "batch_config": plan.to_dict(),
            "batches": groups,
            "message": (
                f"{len(selected)} task(s) in {plan.total_batches} batch(es) of up to {plan.batch_size}"
            ),
        }

    def _analysis_targets(
        self,
        collection: TaskCollection,
        ids: Union[str, Sequence[Any], None],
        from_id: Optional[int],
        to_id: Optional[int],
    ) -> List[Task]:
        tasks = [task for task in collection.tasks if (task.status or "pending").lower() in ANALYZABLE_STATUSES]
        if ids:
            wanted = set()
            for token in split_id_list(ids):
                ref = parse_task_ref(token)
                if ref.is_subtask:
                    raise InvalidArgumentError(f"Complexity analysis works on top-level tasks, got '{ref}'")
                wanted.add(ref.task_id)
            tasks = [task for task in tasks if task.id in wanted]
        elif from_id is not None or to_id is not None:
            low = from_id if from_id is not None else 1
            high = to_id if to_id is not None else max(collection.task_ids(), default=0)
            if low > high:
                raise InvalidArgumentError(f"from_id ({low}) must not be greater than to_id ({high})")
            tasks = [task for task in tasks if low <= task.id <= high]
        if not tasks:
            raise NotFoundError("No matching pending, blocked or in-progress tasks found for analysis")
        return tasks

    def analyze_task_complexity(
        self,
        threshold: float = DEFAULT_EXPANSION_THRESHOLD,
        research: bool = False,
        ids: Union[str, Sequence[Any], None] = None,
        from_id: Optional[int] = None,
        to_id: Optional[int] = None,
        batch_size: Optional[int] = None,
        resume_from_batch: Optional[int] = None,
    ) -> Envelope:
        """Guidance for rating task complexity, batched when the task set is large."""
        operation = "analyze_task_complexity"
        try:
            if not 1 <= threshold <= 10:
                raise InvalidArgumentError("threshold must be between 1 and 10")
            collection = self.workspace.load_collection()
            tasks = self._analysis_targets(collection, ids, from_id, to_id)
            plan, groups = self._plan(tasks, COMPLEXITY_DOMAIN, batch_size, resume_from_batch)
            report = self.workspace.load_report()
        except Exception as e:
            return self._error(operation, e)

        start_batch = resume_from_batch or 1
        action = "analyze_task_complexity_batched_guidance" if plan.use_batches else "analyze_task_complexity_guidance"
        logger.info(
            f"Complexity analysis plan: {'BATCHED' if plan.use_batches else 'SINGLE'}, "
            f"{plan.total_batches} batch(es) of {plan.batch_size}, ~{plan.estimated_tokens:.0f} tokens"
        )
        return self._guidance(
            action,
            str(self.workspace.report_path),
            {
                "threshold": threshold,
                "research": research,
                "tasksToAnalyze": len(tasks),
                "totalTasks": len(collection.tasks),
                "ids": ids,
                "fromId": from_id,
                "toId": to_id,
                "batchConfig": plan.to_dict(),
                "batches": groups,
                "resumeFromBatch": resume_from_batch,
                "existingAnalysisCount": len(report.analyses) if report else 0,
            },
            analyze_complexity_prompt(tasks, plan, groups, threshold, start_batch),
        )

    def save_complexity_analysis(
        self,
        analyses: Sequence[Dict[str, Any]],
        batch_number: Optional[int] = None,
        total_batches: Optional[int] = None,
        threshold: float = DEFAULT_EXPANSION_THRESHOLD,
        research: bool = False,
    ) -> Envelope:
        """Merge a completed batch of analyses into the complexity report by task id."""
        operation = "save_complexity_analysis"
        try:
            if not analyses:
                raise InvalidArgumentError("At least one analysis entry is required")
            collection = self.workspace.load_collection()
            entries = [ComplexityAnalysis.from_dict(item) for item in analyses]
            issues = [issue for entry in entries for issue in entry.validate()]
            unknown = [entry.task_id for entry in entries if collection.get_task(entry.task_id) is None]
            if unknown:
                raise NotFoundError(f"Analyses reference unknown task(s): {', '.join(map(str, unknown))}")
            if issues:
                raise InvalidArgumentError("; ".join(issues))

            with log_operation(operation, root=self.root, analyses=len(entries)):
                existing = self.workspace.load_report()
                meta: Dict[str, Any] = {
                    "totalTasks": len(collection.tasks),
                    "thresholdScore": threshold,
                    "usedResearch": research,
                }
                if batch_number is not None:
                    batching = dict(existing.meta.get("batchProcessing") or {}) if existing else {}
                    batching["lastProcessedBatch"] = batch_number
                    if total_batches is not None:
                        batching["totalBatches"] = total_batches
                    meta["batchProcessing"] = batching
                report = merge_complexity_analyses(existing, entries, meta)
                report.meta["tasksAnalyzed"] = len(report.analyses)
                self.workspace.save_report(report)
        except Exception as e:
            return self._error(operation, e)

        log_task_mutation(operation, self.root, [str(entry.task_id) for entry in entries])
        return {
            "success": True,
            "saved_analyses": [entry.task_id for entry in entries],
            "total_analyses": len(report.analyses),
            "report_location": str(self.workspace.report_path),
            "meta": report.meta,
            "next_suggested_action": "complexity_report",
            "message": f"Saved {len(entries)} analysis entr{'y' if len(entries) == 1 else 'ies'} to the complexity report",
        }

    # ------------------------------------------------------------------
    # Guidance
    # ------------------------------------------------------------------

    def add_task(
        self,
        prompt: str,
        dependencies: Optional[Sequence[Any]] = None,
        priority: Optional[str] = None,
        keywords: Optional[Sequence[str]] = None,
        flow_names: Optional[Sequence[str]] = None,
        research: bool = False,
    ) -> Envelope:
        operation = "add_task"
        try:
            if not prompt or not prompt.strip():
                raise InvalidArgumentError("A prompt describing the task is required")
            priority = priority or self.workspace.load_config()["global"].get("defaultPriority") or "medium"
            if priority not in VALID_PRIORITIES:
                raise InvalidArgumentError(f"Invalid priority '{priority}'. Use one of: {', '.join(VALID_PRIORITIES)}")
            collection = self._load_or_empty()
        except Exception as e:
            return self._error(operation, e)

        valid, invalid = [], []
        for dep in dependencies or []:
            resolved = try_resolve(collection, dep)
            (valid if resolved is not None else invalid).append(
                resolved.ref.as_dependency() if resolved is not None else dep
            )
        new_task_id = collection.next_task_id()
        instructions = add_task_prompt(
            collection.tasks, new_task_id, prompt, priority, keywords or [], flow_names or [],
            valid, invalid, self.target_file,
        )
        return self._guidance(
            "add_task_guidance",
            self.target_file,
            {
                "newTaskId": new_task_id,
                "prompt": prompt,
                "dependencies": valid,
                "invalidDependencies": invalid,
                "priority": priority,
                "keywords": list(keywords or []),
                "flowNames": list(flow_names or []),
                "research": research,
                "existingTasksCount": len(collection.tasks),
            },
            instructions,
        )

    def parse_prd(self, prd_path: str, num_tasks: int = 10, research: bool = False) -> Envelope:
        operation = "parse_prd"
        try:
            if num_tasks <= 0:
                raise InvalidArgumentError("num_tasks must be a positive integer")
            path = Path(prd_path).expanduser()
            if not path.is_absolute():
                path = self.workspace.root / path
            if not path.exists():
                raise NotFoundError(f"PRD file not found: {path}")
            try:
                content = path.read_text(encoding="utf-8")
            except OSError as e:
                raise PersistenceError(f"Could not read PRD file {path}: {e}") from e
            if not content.strip():
                raise InvalidArgumentError(f"PRD file is empty: {path}")
            collection = self._load_or_empty()
        except Exception as e:
            return self._error(operation, e)

        next_id = collection.next_task_id()
        return self._guidance(
            "parse_prd_guidance",
            self.target_file,
            {"numTasks": num_tasks, "nextId": next_id, "research": research},
            parse_prd_prompt(content, str(path), num_tasks, next_id, research, self.target_file),
            prdFile=str(path),
        )

    def expand_task(
        self,
        task_id: Union[str, int],
        num_subtasks: Optional[int] = None,
        research: bool = False,
        additional_context: str = "",
        force: bool = False,
    ) -> Envelope:
        operation = "expand_task"
        try:
            ref = parse_task_ref(task_id)
            if ref.is_subtask:
                raise InvalidArgumentError(f"Only top-level tasks can be expanded, got '{ref}'")
            if num_subtasks is not None and num_subtasks <= 0:
                raise InvalidArgumentError("num_subtasks must be a positive integer")
            collection = self.workspace.load_collection()
            task = resolve(collection, ref).item
            try:
                report = self.workspace.load_report()
            except PersistenceError as e:
                logger.warning(f"Ignoring unreadable complexity report: {e}")
                report = None
            default_count = self.workspace.load_config()["global"].get("defaultSubtasks")
        except Exception as e:
            return self._error(operation, e)

        analysis = report.get(task.id) if report else None
        count = num_subtasks or (analysis.recommended_subtasks if analysis else None)
        count = count or default_count or DEFAULT_SUBTASK_COUNT
        expansion_prompt = analysis.expansion_prompt if analysis else None
        next_subtask_id = 1 if force else task.next_subtask_id()

        return self._guidance(
            "expand_task_guidance",
            self.target_file,
            {
                "taskId": task.id,
                "taskTitle": task.title,
                "numSubtasks": count,
                "nextSubtaskId": next_subtask_id,
                "research": research,
                "force": force,
                "usedComplexityReport": analysis is not None,
                "existingSubtasks": len(task.subtasks),
            },
            expand_task_prompt(task, count, next_subtask_id, expansion_prompt, additional_context, force),
        )

    def update_task_by_id(self, task_id: Union[str, int], prompt: str, research: bool = False) -> Envelope:
        operation = "update_task_by_id"
        try:
            if not prompt or not prompt.strip():
                raise InvalidArgumentError("A prompt with the new context is required")
            ref = parse_task_ref(task_id)
            if ref.is_subtask:
                raise InvalidArgumentError(f"Use update_subtask_by_id for subtask '{ref}'")
            collection = self.workspace.load_collection()
            task = resolve(collection, ref).item
            if is_complete(task.status):
                raise AlreadyLockedError(
                    f"Task {task.id} is already marked as {task.status} and cannot be updated. "
                    "Change its status to 'pending' or 'in-progress' first."
                )
        except Exception as e:
            return self._error(operation, e)

        return self._guidance(
            "update_task_by_id_guidance",
            self.target_file,
            {
                "taskId": task.id,
                "prompt": prompt,
                "research": research,
                "taskTitle": task.title,
                "taskStatus": task.status,
            },
            update_task_prompt(task, prompt, self.target_file),
        )

    def update_subtask_by_id(self, subtask_id: str, prompt: str, research: bool = False) -> Envelope:
        operation = "update_subtask_by_id"
        try:
            if not prompt or not prompt.strip():
                raise InvalidArgumentError("A prompt with the new information is required")
            ref = parse_task_ref(subtask_id)
            if not ref.is_subtask:
                raise InvalidArgumentError(
                    f'Invalid subtask ID format: {subtask_id}. Use the "parentId.subtaskId" format'
                )
            collection = self.workspace.load_collection()
            resolved = resolve(collection, ref)
        except Exception as e:
            return self._error(operation, e)

        parent, subtask = resolved.parent, resolved.item
        return self._guidance(
            "update_subtask_by_id_guidance",
            self.target_file,
            {
                "subtaskId": str(ref),
                "parentId": parent.id,
                "subtaskIdNum": subtask.id,
                "prompt": prompt,
                "research": research,
                "subtaskTitle": subtask.title,
                "subtaskStatus": subtask.status,
            },
            update_subtask_prompt(parent, subtask, prompt, self.target_file),
        )

    def _update_guidance(
        self,
        action: str,
        selected: List[Task],
        chain: List[int],
        prompt: str,
        batch_size: Optional[int],
        resume_from_batch: Optional[int],
        selection: str,
        parameters: Dict[str, Any],
    ) -> Envelope:
        plan, groups = self._plan(selected, UPDATE_DOMAIN, batch_size, resume_from_batch)
        logger.info(
            f"{action}: {'BATCHED' if plan.use_batches else 'SINGLE'}, {plan.total_batches} batch(es) "
            f"of {plan.batch_size}, ~{plan.estimated_tokens:.0f} tokens"
        )
        chain_summary = (
            f"{' → '.join(str(task_id) for task_id in chain)} "
            f"({len(chain)} task(s) selected, {len(selected)} updatable)"
        )
        instructions = update_tasks_prompt(
            selected, prompt, plan, groups, selection, chain_summary, self.target_file, resume_from_batch or 1
        )
        return self._guidance(
            f"{action}_batched_guidance" if plan.use_batches else f"{action}_guidance",
            self.target_file,
            {
                **parameters,
                "prompt": prompt,
                "tasksToUpdateCount": len(selected),
                "batchConfig": plan.to_dict(),
                "batches": groups,
                "relevantTasksChain": chain,
                "resumeFromBatch": resume_from_batch,
            },
            instructions,
        )

    def update_tasks(
        self,
        prompt: str,
        from_id: Optional[int] = None,
        task_ids: Optional[Sequence[Any]] = None,
        max_depth: int = DEFAULT_UPDATE_DEPTH,
        batch_size: Optional[int] = None,
        resume_from_batch: Optional[int] = None,
        research: bool = False,
    ) -> Envelope:
        """Guidance for updating a task and its relevance chain."""
        operation = "update_tasks"
        try:
            if not prompt or not prompt.strip():
                raise InvalidArgumentError("A prompt with the new context is required")
            collection = self.workspace.load_collection()
            selected, chain = self._update_selection(collection, from_id, task_ids, max_depth)
            return self._update_guidance(
                operation, selected, chain, prompt, batch_size, resume_from_batch,
                "selected through their relevantTasks, dependency and dependent links",
                {"fromId": from_id, "taskIds": list(task_ids or chain), "maxDepth": max_depth, "research": research},
            )
        except Exception as e:
            return self._error(operation, e)

    def _update_by_terms(
        self,
        operation: str,
        field: str,
        terms: Sequence[str],
        prompt: str,
        min_score: float,
        max_depth: int,
        batch_size: Optional[int],
        resume_from_batch: Optional[int],
        research: bool,
    ) -> Envelope:
        try:
            if not prompt or not prompt.strip():
                raise InvalidArgumentError("A prompt with the new context is required")
            if not terms:
                raise InvalidArgumentError(f"At least one entry in {field} is required")
            if not 0 <= min_score <= 1:
                raise InvalidArgumentError("min_score must be between 0 and 1")
            collection = self.workspace.load_collection()
            match_fn = flow_match_score if field == "flowNames" else keyword_match_score
            chain = sorted(build_field_chain(collection, terms, min_score, max_depth, match_fn, field))
            if not chain:
                raise NotFoundError(
                    f"No tasks found matching {field}: {', '.join(terms)} with minimum score {min_score}"
                )
            wanted = set(chain)
            selected = [task for task in collection.tasks if task.id in wanted and not is_complete(task.status)]
            if not selected:
                raise NotFoundError(f"No updatable tasks found: every task matching the {field} is already complete")
            label = "flow names" if field == "flowNames" else "keywords"
            return self._update_guidance(
                operation, selected, chain, prompt, batch_size, resume_from_batch,
                f"whose {label} match: {', '.join(terms)}",
                {field: list(terms), "minScore": min_score, "maxDepth": max_depth, "research": research},
            )
        except Exception as e:
            return self._error(operation, e)

    def update_tasks_by_flows(
        self,
        flow_names: Sequence[str],
        prompt: str,
        min_score: float = FLOW_UPDATE_MIN_SCORE,
        max_depth: int = DEFAULT_UPDATE_DEPTH,
        batch_size: Optional[int] = None,
        resume_from_batch: Optional[int] = None,
        research: bool = False,
    ) -> Envelope:
        return self._update_by_terms(
            "update_tasks_by_flows", "flowNames", flow_names, prompt, min_score, max_depth,
            batch_size, resume_from_batch, research,
        )

    def update_tasks_by_keywords(
        self,
        keywords: Sequence[str],
        prompt: str,
        min_score: float = KEYWORD_UPDATE_MIN_SCORE,
        max_depth: int = DEFAULT_UPDATE_DEPTH,
        batch_size: Optional[int] = None,
        resume_from_batch: Optional[int] = None,
        research: bool = False,
    ) -> Envelope:
        return self._update_by_terms(
            "update_tasks_by_keywords", "keywords", keywords, prompt, min_score, max_depth,
            batch_size, resume_from_batch, research,
        )

    # ------------------------------------------------------------------
    # Workflow guidance
    # ------------------------------------------------------------------

    @staticmethod
    def get_workflow_guide() -> Dict[str, Any]:
        """Get comprehensive workflow guidance."""
        return {
            "workflow_overview": "Task Master workflow in recommended order",
            "steps": [step.to_dict() for step in WORKFLOW_STEPS],
            "tips": [
                "Guidance tools return prompts; run them and persist the result as instructed",
                "Use next_task to get the highest-priority task whose dependencies are complete",
                "Mark tasks in-progress before starting and done when finished",
                "Completed tasks are locked; reopen them before calling update_task_by_id",
                "Large updates and analyses are batched; resume them with resume_from_batch",
            ],
        }
