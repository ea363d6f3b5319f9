"""Pydantic schemas for real-time notification events.

Every event pushed to a user room is built from one of the payload models
below. Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

NOTE_EXCERPT_LENGTH = 100
ELLIPSIS = "..."


class NotificationEventKind(str, Enum):
    """Server -> client notification event names."""

    TASK_ASSIGNED = "task-assigned"
    TASK_UPDATED = "task-updated"
    TASK_COMPLETED = "task-completed"
    SUBTASK_ADDED = "subtask-added"
    SUBTASK_UPDATED = "subtask-updated"
    SUBTASK_COMPLETED = "subtask-completed"
    NOTE_ADDED = "note-added"
    NOTE_UPDATED = "note-updated"


def note_excerpt(content: str, limit: int = NOTE_EXCERPT_LENGTH) -> str:
    """
    Shorten note content for a notification banner.

    Args:
        content: Full note text
        limit: Maximum number of characters kept before the ellipsis

    Returns:
        str: The first ``limit`` characters, plus "..." when the text was longer
    """
    if len(content) > limit:
        return content[:limit] + ELLIPSIS
    return content


class EventPayload(BaseModel):
    """Fields shared by every notification payload."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    task_id: int = Field(..., description="Task the event refers to")
    title: str = Field(..., description="Task title")

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class TaskAssignedPayload(EventPayload):
    assigned_by: str
    project_name: str


class TaskUpdatedPayload(EventPayload):
    updated_by: str
    status: str
    priority: str
    old_status: Optional[str] = None


class TaskCompletedPayload(EventPayload):
    completed_by: str
    project_name: str


class SubtaskAddedPayload(EventPayload):
    subtask_id: Optional[int] = None
    added_by: str
    subtask_title: str
    project_name: Optional[str] = None


class SubtaskUpdatedPayload(EventPayload):
    """Payload for both subtask-updated and subtask-completed."""

    subtask_id: Optional[int] = None
    updated_by: str
    subtask_title: str
    completed: bool
    project_name: Optional[str] = None


class NoteAddedPayload(EventPayload):
    note_id: Optional[int] = None
    added_by: str
    content: str
    project_name: Optional[str] = None


class NoteUpdatedPayload(EventPayload):
    note_id: Optional[int] = None
    updated_by: str
    content: str
    project_name: Optional[str] = None


PAYLOAD_MODELS: dict[NotificationEventKind, type[EventPayload]] = {
    NotificationEventKind.TASK_ASSIGNED: TaskAssignedPayload,
    NotificationEventKind.TASK_UPDATED: TaskUpdatedPayload,
    NotificationEventKind.TASK_COMPLETED: TaskCompletedPayload,
    NotificationEventKind.SUBTASK_ADDED: SubtaskAddedPayload,
    NotificationEventKind.SUBTASK_UPDATED: SubtaskUpdatedPayload,
    NotificationEventKind.SUBTASK_COMPLETED: SubtaskUpdatedPayload,
    NotificationEventKind.NOTE_ADDED: NoteAddedPayload,
    NotificationEventKind.NOTE_UPDATED: NoteUpdatedPayload,
}

PayloadInput = Union[EventPayload, dict[str, Any]]


def build_payload(kind: NotificationEventKind | str, payload: PayloadInput) -> EventPayload:
    """
    Validate a payload against the shape contract of an event kind.

    Args:
        kind: The event kind (enum member or its wire name)
        payload: A payload model or a dict with snake_case or camelCase keys

    Returns:
        EventPayload: The validated, immutable payload

    Raises:
        ValueError: If the kind is unknown or the payload does not match it
            (pydantic.ValidationError is a ValueError)
    """
    kind = NotificationEventKind(kind)
    model = PAYLOAD_MODELS[kind]
    if isinstance(payload, EventPayload):
        if not isinstance(payload, model):
            raise ValueError(
                f"{type(payload).__name__} is not a valid payload for {kind.value}"
            )
        return payload
    return model.model_validate(payload)


class NotificationEvent(BaseModel):
    """An immutable notification addressed to a single user."""

    model_config = ConfigDict(frozen=True)

    kind: NotificationEventKind
    user_id: int
    payload: EventPayload
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_message(self) -> dict[str, Any]:
        """Build the WebSocket frame pushed to the user's room."""
        return {"type": self.kind.value, "data": self.payload.to_wire()}
