"""Error taxonomy for Task Master operations.

Pure engine functions raise these; ``TaskManager`` turns them into
error envelopes for the MCP caller.
"""

from __future__ import annotations


class TaskMasterError(Exception):
    """Base class for every error reported back to a caller."""

    kind = "TaskMasterError"
    suggestion = "Check the arguments and try again"


class NotFoundError(TaskMasterError):
    """Raised when a task, subtask or project file does not exist."""

    kind = "NotFound"
    suggestion = "Verify the id with list_tasks or show_task"


class InvalidArgumentError(TaskMasterError, ValueError):
    """Raised for malformed ids, unknown statuses and illegal dependency edges."""

    kind = "InvalidArgument"
    suggestion = "Fix the argument and call the tool again"


class AlreadyLockedError(TaskMasterError):
    """Raised when content updates target a task that is already complete."""

    kind = "AlreadyLocked"
    suggestion = "Set the task status back to 'pending' or 'in-progress' before updating it"


class PersistenceError(TaskMasterError):
    """Raised when the task document cannot be read or written."""

    kind = "PersistenceFailure"
    suggestion = "Check that the project root exists and is writable"


class StaleVersionError(PersistenceError):
    """Raised when a save is attempted against an outdated document version."""

    kind = "StaleVersion"
    suggestion = "Reload the tasks and re-apply the change"
