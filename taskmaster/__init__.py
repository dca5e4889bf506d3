"""Task Master MCP Server - Core functionality package."""

from .models import ComplexityReport, Subtask, Task, TaskCollection
from .workflow import TaskManager
from .workspace import Workspace

__all__ = [
    "TaskManager",
    "Task",
    "Subtask",
    "TaskCollection",
    "ComplexityReport",
    "Workspace",
]
