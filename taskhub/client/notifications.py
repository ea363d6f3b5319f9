"""Client-side projection of notification events.

Received events become ``ClientNotification`` records kept newest-first in
a per-session ``NotificationStore``. Nothing here is persisted: logging out
or restarting the client loses the history.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol
from uuid import uuid4

from ..schemas.notification import NotificationEventKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientNotification:
    """A received notification as shown in the notification menu."""

    type: str
    title: str
    message: str
    data: dict[str, Any]
    id: str = field(default_factory=lambda: uuid4().hex)
    read: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def task_id(self) -> Optional[int]:
        return self.data.get("taskId")

    @property
    def project_name(self) -> Optional[str]:
        return self.data.get("projectName")


def _task_updated_message(data: dict[str, Any]) -> str:
    if data.get("oldStatus"):
        return (
            f'{data.get("updatedBy")} changed the status of "{data["title"]}" '
            f'from {data["oldStatus"]} to {data.get("status")}'
        )
    return f'{data.get("updatedBy")} updated the task "{data["title"]}"'


_RENDERERS: dict[NotificationEventKind, tuple[str, Callable[[dict[str, Any]], str]]] = {
    NotificationEventKind.TASK_ASSIGNED: (
        "New task assigned",
        lambda d: f'{d.get("assignedBy")} assigned you the task "{d["title"]}"',
    ),
    NotificationEventKind.TASK_UPDATED: ("Task updated", _task_updated_message),
    NotificationEventKind.TASK_COMPLETED: (
        "Task completed",
        lambda d: f'{d.get("completedBy")} completed the task "{d["title"]}"',
    ),
    NotificationEventKind.SUBTASK_ADDED: (
        "New subtask added",
        lambda d: f'{d.get("addedBy")} added the subtask "{d.get("subtaskTitle")}" to "{d["title"]}"',
    ),
    NotificationEventKind.SUBTASK_UPDATED: (
        "Subtask updated",
        lambda d: f'{d.get("updatedBy")} updated the subtask "{d.get("subtaskTitle")}" in "{d["title"]}"',
    ),
    NotificationEventKind.SUBTASK_COMPLETED: (
        "Subtask completed",
        lambda d: f'{d.get("updatedBy")} completed the subtask "{d.get("subtaskTitle")}" in "{d["title"]}"',
    ),
    NotificationEventKind.NOTE_ADDED: (
        "New note added",
        lambda d: f'{d.get("addedBy")} added a note to "{d["title"]}": {d.get("content", "")}',
    ),
    NotificationEventKind.NOTE_UPDATED: (
        "Note updated",
        lambda d: f'{d.get("updatedBy")} updated a note on "{d["title"]}": {d.get("content", "")}',
    ),
}


def build_notification(kind: str, data: Any) -> Optional[ClientNotification]:
    """
    Render a received event into a ClientNotification.

    Args:
        kind: The event name from the frame's ``type``
        data: The event payload (camelCase keys)

    Returns:
        Optional[ClientNotification]: None for unknown kinds and for payloads
            without a ``taskId``, which the client ignores
    """
    try:
        event_kind = NotificationEventKind(kind)
    except ValueError:
        return None

    if not isinstance(data, dict) or not data.get("taskId"):
        return None

    title, render = _RENDERERS[event_kind]
    return ClientNotification(
        type=event_kind.value,
        title=title,
        message=render({"title": "", **data}),
        data=dict(data),
    )


class NotificationStore:
    """In-memory, newest-first list of notifications for one session."""

    def __init__(self, limit: Optional[int] = None) -> None:
        self._items: list[ClientNotification] = []
        self._limit = limit

    def __len__(self) -> int:
        return len(self._items)

    @property
    def notifications(self) -> list[ClientNotification]:
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._items if not n.read)

    def add(self, notification: ClientNotification) -> None:
        self._items.insert(0, notification)
        if self._limit is not None:
            del self._items[self._limit:]

    def mark_as_read(self, notification_id: str) -> bool:
        """Flag one notification as read; False if the id is unknown."""
        for index, item in enumerate(self._items):
            if item.id == notification_id:
                self._items[index] = replace(item, read=True)
                return True
        return False

    def mark_all_as_read(self) -> int:
        changed = self.unread_count
        self._items = [replace(n, read=True) if not n.read else n for n in self._items]
        return changed

    def clear_all(self) -> None:
        self._items.clear()


class DesktopNotifier(Protocol):
    """OS-level notification sink, used only when permission was granted."""

    permission_granted: bool

    def request_permission(self) -> bool | Awaitable[bool]:
        """Ask the user for permission; called by the client on start."""
        ...

    def show(self, title: str, body: str) -> None: ...
