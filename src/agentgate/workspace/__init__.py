"""Workspace domain records and the read/write boundaries around them."""

from .interfaces import WorkspaceError, WorkspaceReader, WorkspaceWriter
from .memory import InMemoryWorkspace
from .schema import Event, EventComment, Notification, Project, Scope, Task

__all__ = [
    "Event",
    "EventComment",
    "InMemoryWorkspace",
    "Notification",
    "Project",
    "Scope",
    "Task",
    "WorkspaceError",
    "WorkspaceReader",
    "WorkspaceWriter",
]
