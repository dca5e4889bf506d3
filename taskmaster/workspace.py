"""Workspace management for Task Master.

This module owns the on-disk layout of a project: the ``.taskmaster``
storage directory, the task document, the complexity report, the project
config and the generated per-task text files.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import NotFoundError, PersistenceError, StaleVersionError
from .models import STATUS_ICONS, ComplexityReport, Task, TaskCollection, utc_now
from .taskmaster_logging import (
    log_error_with_context,
    log_operation,
    log_performance,
    observability_hooks,
)


DEFAULT_PROJECT_NAME = "Task Master Project"

DEFAULT_CONFIG = {
    "global": {
        "logLevel": "info",
        "debug": False,
        "defaultSubtasks": 3,
        "defaultPriority": "medium",
        "projectName": DEFAULT_PROJECT_NAME,
    },
    "version": "0.1.0",
}

PRD_TEMPLATE = """# Project Requirements Document (PRD) Template

## Project Overview

### Project Name
[Your project name here]

### Description
[Brief description of what this project does]

### Goals
- [Goal 1]
- [Goal 2]

## Requirements

### Functional Requirements
1. [Requirement 1]
2. [Requirement 2]

### Technical Requirements
- [Technical requirement 1]

### Non-Functional Requirements
- Performance: [Performance requirements]
- Security: [Security requirements]

## Implementation Notes

[Any specific implementation notes or constraints]

## Success Criteria

- [Success criteria 1]

---

*Generated on: {generated_at}*
"""


class Workspace:
    """File-backed store for one Task Master project."""

    STORAGE_DIR_ENV = "TASKMASTER_STORAGE_DIR"
    DEFAULT_STORAGE_DIR = ".taskmaster"

    def __init__(self, root: Path | str):
        """Initialize workspace with given root directory."""
        import logging

        self.logger = logging.getLogger("taskmaster.workspace")
        self.root = Path(root).resolve()
        storage_name = os.getenv(self.STORAGE_DIR_ENV) or self.DEFAULT_STORAGE_DIR

        self.base_dir = self.root / storage_name
        self.tasks_dir = self.base_dir / "tasks"
        self.docs_dir = self.base_dir / "docs"
        self.reports_dir = self.base_dir / "reports"
        self.templates_dir = self.base_dir / "templates"

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @property
    def tasks_path(self) -> Path:
        return self.tasks_dir / "tasks.json"

    @property
    def report_path(self) -> Path:
        return self.base_dir / "complexity-report.json"

    @property
    def config_path(self) -> Path:
        return self.base_dir / "config.json"

    @property
    def prd_template_path(self) -> Path:
        return self.templates_dir / "example_prd.txt"

    def relative(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.root))
        except ValueError:
            return str(path)

    def is_initialized(self) -> bool:
        return self.tasks_path.exists()

    # ------------------------------------------------------------------
    # Raw JSON and text access
    # ------------------------------------------------------------------

    def _read_json(self, path: Path) -> Any:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Could not parse {self.relative(path)}: {e}") from e
        except OSError as e:
            raise PersistenceError(f"Could not read {self.relative(path)}: {e}") from e

    def _write_atomic(self, path: Path, content: str) -> None:
        """Write through a temporary file in the same directory, then rename."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(content)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise PersistenceError(f"Could not write {self.relative(path)}: {e}") from e

    def write_text(self, path: Path | str, content: str) -> Path:
        """Write ``content`` to ``path`` (relative paths are taken from the root)."""
        target = Path(path)
        if not target.is_absolute():
            target = self.root / target
        self._write_atomic(target, content)
        return target

    # ------------------------------------------------------------------
    # Task document
    # ------------------------------------------------------------------

    @log_performance("load_collection")
    def load_collection(self) -> TaskCollection:
        """Read and parse the task document."""
        if not self.tasks_path.exists():
            raise NotFoundError(
                f"Tasks file not found at {self.relative(self.tasks_path)}. Run init_project first."
            )
        data = self._read_json(self.tasks_path)
        try:
            return TaskCollection.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Invalid task document {self.relative(self.tasks_path)}: {e}") from e

    def _on_disk_version(self) -> int:
        if not self.tasks_path.exists():
            return 0
        data = self._read_json(self.tasks_path)
        metadata = data.get("metadata") if isinstance(data, dict) else None
        try:
            return int((metadata or {}).get("version", 0))
        except (TypeError, ValueError):
            return 0

    @log_performance("save_collection")
    def save_collection(self, collection: TaskCollection, expected_version: Optional[int] = None) -> Path:
        """Overwrite the task document with ``collection``.

        When ``expected_version`` is given the save is rejected unless the file
        still carries that version.
        """
        with log_operation("save_collection", path=str(self.tasks_path), tasks=len(collection.tasks)):
            if expected_version is not None:
                current = self._on_disk_version()
                if current != expected_version:
                    raise StaleVersionError(
                        f"Task document is at version {current}, expected {expected_version}"
                    )
            content = json.dumps(collection.to_dict(), indent=2, ensure_ascii=False)
            self._write_atomic(self.tasks_path, content + "\n")

        self.logger.info(f"Saved {len(collection.tasks)} tasks to {self.tasks_path}")
        return self.tasks_path

    # ------------------------------------------------------------------
    # Complexity report and config
    # ------------------------------------------------------------------

    def load_report(self) -> Optional[ComplexityReport]:
        if not self.report_path.exists():
            return None
        data = self._read_json(self.report_path)
        if not isinstance(data, dict):
            raise PersistenceError(f"Invalid complexity report {self.relative(self.report_path)}")
        return ComplexityReport.from_dict(data)

    def save_report(self, report: ComplexityReport) -> Path:
        with log_operation("save_report", path=str(self.report_path), analyses=len(report.analyses)):
            self._write_atomic(self.report_path, json.dumps(report.to_dict(), indent=2, ensure_ascii=False) + "\n")
        return self.report_path

    def load_config(self) -> Dict[str, Any]:
        """Project config merged over the defaults; a missing file gives the defaults."""
        config = json.loads(json.dumps(DEFAULT_CONFIG))
        if not self.config_path.exists():
            return config
        data = self._read_json(self.config_path)
        if isinstance(data, dict):
            config["global"].update(data.get("global") or {})
            config.update({k: v for k, v in data.items() if k != "global"})
        return config

    @property
    def project_name(self) -> str:
        return self.load_config()["global"].get("projectName") or DEFAULT_PROJECT_NAME

    # ------------------------------------------------------------------
    # Scaffolding
    # ------------------------------------------------------------------

    def _write_if_missing(self, path: Path, content: str, created: List[str]) -> None:
        if path.exists():
            self.logger.info(f"File already exists, skipping: {path}")
            return
        self._write_atomic(path, content)
        created.append(self.relative(path))

    @log_performance("init_project")
    def init_project(self, project_name: Optional[str] = None) -> Dict[str, Any]:
        """Create the storage layout without touching existing files."""
        created_dirs: List[str] = []
        created_files: List[str] = []

        try:
            for directory in (self.base_dir, self.tasks_dir, self.docs_dir, self.reports_dir, self.templates_dir):
                if not directory.exists():
                    directory.mkdir(parents=True, exist_ok=True)
                    created_dirs.append(self.relative(directory))
        except OSError as e:
            log_error_with_context(e, {"operation": "init_project", "root": str(self.root)})
            raise PersistenceError(f"Could not create project directories under {self.root}: {e}") from e

        name = project_name or DEFAULT_PROJECT_NAME
        config = json.loads(json.dumps(DEFAULT_CONFIG))
        config["global"]["projectName"] = name
        config["createdAt"] = utc_now()
        self._write_if_missing(self.config_path, json.dumps(config, indent=2) + "\n", created_files)
        self._write_if_missing(
            self.prd_template_path, PRD_TEMPLATE.format(generated_at=utc_now()), created_files
        )

        if not self.tasks_path.exists():
            empty = TaskCollection.empty(self.project_name)
            self._write_atomic(self.tasks_path, json.dumps(empty.to_dict(), indent=2) + "\n")
            created_files.append(self.relative(self.tasks_path))

        self.logger.info(f"Task Master project initialized at {self.root}")
        observability_hooks.log_task_event(
            "project_initialized",
            project_root=str(self.root),
            created_files=created_files,
        )
        return {"directories": created_dirs, "files": created_files}

    # ------------------------------------------------------------------
    # Task files
    # ------------------------------------------------------------------

    @staticmethod
    def task_filename(task_id: int) -> str:
        return f"task_{task_id:03d}.txt"

    def render_task_file(self, task: Task) -> str:
        lines = [f"# Task {task.id}: {task.title}", ""]
        lines.append(f"**Status:** {task.status or 'pending'}")
        lines.append(f"**Priority:** {task.priority or 'medium'}")
        lines.append("")
        if task.dependencies:
            lines.append(f"**Dependencies:** {', '.join(str(dep) for dep in task.dependencies)}")
            lines.append("")
        if task.description:
            lines.extend(["## Description", "", task.description, ""])
        if task.details:
            lines.extend(["## Implementation Details", "", task.details, ""])
        if task.subtasks:
            lines.extend(["## Subtasks", ""])
            for subtask in task.subtasks:
                icon = STATUS_ICONS.get(subtask.status, "❓")
                lines.append(f"- {icon} **{task.id}.{subtask.id}:** {subtask.title}")
                if subtask.description:
                    lines.append(f"  - {subtask.description}")
            lines.append("")
        if task.test_strategy:
            lines.extend(["## Test Strategy", "", task.test_strategy, ""])
        lines.extend(["---", "", f"*Generated on: {utc_now()}*", ""])
        return "\n".join(lines)

    @log_performance("generate_task_files")
    def generate_task_files(self, collection: TaskCollection, output_dir: Optional[Path | str] = None) -> Dict[str, Any]:
        """Write one ``task_NNN.txt`` per task, collecting per-file failures."""
        target_dir = Path(output_dir) if output_dir else self.tasks_dir
        if not target_dir.is_absolute():
            target_dir = self.root / target_dir

        generated = []
        errors = []
        for task in collection.tasks:
            path = target_dir / self.task_filename(task.id)
            try:
                self._write_atomic(path, self.render_task_file(task))
            except PersistenceError as e:
                errors.append({"taskId": task.id, "error": str(e)})
                continue
            generated.append({
                "filename": path.name,
                "path": str(path),
                "taskId": task.id,
                "title": task.title,
            })

        return {
            "generatedFiles": generated,
            "errors": errors,
            "outputDirectory": str(target_dir),
            "totalTasks": len(collection.tasks),
        }
