"""Pydantic schemas describing committed task state for notifications.

The task/subtask/note handlers build these snapshots after their database
write succeeds and pass them to the notification service. Only the fields
needed to pick recipients and fill event payloads are carried.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TaskStatus(str, Enum):
    """Task status values."""

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    STUCK = "STUCK"
    COMPLETED = "COMPLETED"


class TaskPriority(str, Enum):
    """Task priority values."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"


class UserRef(BaseModel):
    """The user performing an action."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str


class ProjectRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    owner_id: int


class TaskSnapshot(BaseModel):
    """Task state as committed to the database."""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    status: TaskStatus = TaskStatus.NOT_STARTED
    priority: TaskPriority = TaskPriority.NORMAL
    assignee_ids: tuple[int, ...] = Field(
        default=(),
        description="Users the task is assigned to, in assignment order",
    )
    project: ProjectRef


class SubtaskSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    title: str
    completed: bool = False


class NoteSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    content: str
