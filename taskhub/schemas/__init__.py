"""Pydantic schemas package for event payloads and task snapshots."""

from .notification import (
    NotificationEvent,
    NotificationEventKind,
    PAYLOAD_MODELS,
    build_payload,
    note_excerpt,
)
from .task import (
    NoteSnapshot,
    ProjectRef,
    SubtaskSnapshot,
    TaskPriority,
    TaskSnapshot,
    TaskStatus,
    UserRef,
)

__all__ = [
    # Notification events
    "NotificationEvent",
    "NotificationEventKind",
    "PAYLOAD_MODELS",
    "build_payload",
    "note_excerpt",
    # Task snapshots
    "NoteSnapshot",
    "ProjectRef",
    "SubtaskSnapshot",
    "TaskPriority",
    "TaskSnapshot",
    "TaskStatus",
    "UserRef",
]
