"""Notification service for task, subtask and note mutations.

Provides the recipient rules for every mutation that produces a live
notification:
- Task created: each assignee
- Task updated: newly added assignees, removed assignees, project owner
- Task completed: project owner
- Subtask/note added or updated: task assignees and project owner

The acting user is never notified, and a recipient gets at most one event
per call. Handlers call these methods only after their commit succeeds.
"""

import logging
from typing import Any, Iterable

from fastapi import Request

from ..config import settings
from ..schemas.notification import NotificationEventKind, note_excerpt
from ..schemas.task import (
    NoteSnapshot,
    SubtaskSnapshot,
    TaskSnapshot,
    TaskStatus,
    UserRef,
)
from ..websocket.dispatcher import EventDispatcher

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Turn committed mutations into notification events.

    Every ``notify_*`` method returns the user ids an event was dispatched
    to (whether or not they were online) and never raises.
    """

    def __init__(
        self,
        dispatcher: EventDispatcher,
        excerpt_length: int = settings.note_excerpt_length,
    ) -> None:
        self._dispatcher = dispatcher
        self._excerpt_length = excerpt_length

    def _emit(
        self,
        user_id: int,
        kind: NotificationEventKind,
        payload: dict[str, Any],
    ) -> None:
        try:
            self._dispatcher.emit_to_user(user_id, kind, payload)
        except Exception as e:
            logger.error(f"Failed to dispatch {kind.value} to user {user_id}: {e}")

    @staticmethod
    def _recipients(candidates: Iterable[int], actor: UserRef) -> list[int]:
        """Dedupe candidates in order and drop the acting user."""
        seen: list[int] = []
        for user_id in candidates:
            if user_id == actor.id or user_id in seen:
                continue
            seen.append(user_id)
        return seen

    # =========================================================================
    # Tasks
    # =========================================================================

    def notify_task_created(self, task: TaskSnapshot, actor: UserRef) -> list[int]:
        """
        Notify every assignee of a new task.

        Args:
            task: The created task
            actor: The user who created it

        Returns:
            list[int]: Recipients of task-assigned
        """
        recipients = self._recipients(task.assignee_ids, actor)
        for user_id in recipients:
            self._emit(
                user_id,
                NotificationEventKind.TASK_ASSIGNED,
                {
                    "task_id": task.id,
                    "title": task.title,
                    "assigned_by": actor.name,
                    "project_name": task.project.name,
                },
            )
        return recipients

    def notify_task_updated(
        self,
        before: TaskSnapshot,
        after: TaskSnapshot,
        actor: UserRef,
    ) -> list[int]:
        """
        Notify users affected by a task update.

        New assignees get task-assigned, removed assignees get task-updated.
        The project owner gets task-completed when the status moved into
        COMPLETED, and task-updated otherwise.

        Returns:
            list[int]: Every recipient, in dispatch order
        """
        notified: list[int] = []

        added = [uid for uid in after.assignee_ids if uid not in before.assignee_ids]
        for user_id in self._recipients(added, actor):
            self._emit(
                user_id,
                NotificationEventKind.TASK_ASSIGNED,
                {
                    "task_id": after.id,
                    "title": after.title,
                    "assigned_by": actor.name,
                    "project_name": after.project.name,
                },
            )
            notified.append(user_id)

        status_changed = before.status != after.status
        update_payload: dict[str, Any] = {
            "task_id": after.id,
            "title": after.title,
            "updated_by": actor.name,
            "status": after.status.value,
            "priority": after.priority.value,
        }
        if status_changed:
            update_payload["old_status"] = before.status.value

        removed = [uid for uid in before.assignee_ids if uid not in after.assignee_ids]
        for user_id in self._recipients(removed, actor):
            if user_id in notified:
                continue
            self._emit(user_id, NotificationEventKind.TASK_UPDATED, update_payload)
            notified.append(user_id)

        owner_id = after.project.owner_id
        if owner_id != actor.id and owner_id not in notified:
            if status_changed and after.status == TaskStatus.COMPLETED:
                self._emit(
                    owner_id,
                    NotificationEventKind.TASK_COMPLETED,
                    {
                        "task_id": after.id,
                        "title": after.title,
                        "completed_by": actor.name,
                        "project_name": after.project.name,
                    },
                )
            else:
                self._emit(owner_id, NotificationEventKind.TASK_UPDATED, update_payload)
            notified.append(owner_id)

        return notified

    # =========================================================================
    # Subtasks
    # =========================================================================

    def _notify_task_watchers(
        self,
        task: TaskSnapshot,
        actor: UserRef,
        kind: NotificationEventKind,
        payload: dict[str, Any],
    ) -> list[int]:
        """Send to the task's assignees and its project owner."""
        owner_id = task.project.owner_id
        recipients = self._recipients([*task.assignee_ids, owner_id], actor)
        for user_id in recipients:
            data = dict(payload)
            if user_id == owner_id and user_id not in task.assignee_ids:
                data["project_name"] = task.project.name
            self._emit(user_id, kind, data)
        return recipients

    def notify_subtask_added(
        self,
        task: TaskSnapshot,
        subtask: SubtaskSnapshot,
        actor: UserRef,
    ) -> list[int]:
        return self._notify_task_watchers(
            task,
            actor,
            NotificationEventKind.SUBTASK_ADDED,
            {
                "task_id": task.id,
                "subtask_id": subtask.id,
                "title": task.title,
                "subtask_title": subtask.title,
                "added_by": actor.name,
            },
        )

    def notify_subtask_updated(
        self,
        task: TaskSnapshot,
        subtask: SubtaskSnapshot,
        actor: UserRef,
    ) -> list[int]:
        """Send subtask-completed if the subtask is now done, else subtask-updated."""
        kind = (
            NotificationEventKind.SUBTASK_COMPLETED
            if subtask.completed
            else NotificationEventKind.SUBTASK_UPDATED
        )
        return self._notify_task_watchers(
            task,
            actor,
            kind,
            {
                "task_id": task.id,
                "subtask_id": subtask.id,
                "title": task.title,
                "subtask_title": subtask.title,
                "updated_by": actor.name,
                "completed": subtask.completed,
            },
        )

    # =========================================================================
    # Notes
    # =========================================================================

    def notify_note_added(
        self,
        task: TaskSnapshot,
        note: NoteSnapshot,
        actor: UserRef,
    ) -> list[int]:
        return self._notify_task_watchers(
            task,
            actor,
            NotificationEventKind.NOTE_ADDED,
            {
                "task_id": task.id,
                "note_id": note.id,
                "title": task.title,
                "content": note_excerpt(note.content, self._excerpt_length),
                "added_by": actor.name,
            },
        )

    def notify_note_updated(
        self,
        task: TaskSnapshot,
        note: NoteSnapshot,
        actor: UserRef,
    ) -> list[int]:
        return self._notify_task_watchers(
            task,
            actor,
            NotificationEventKind.NOTE_UPDATED,
            {
                "task_id": task.id,
                "note_id": note.id,
                "title": task.title,
                "content": note_excerpt(note.content, self._excerpt_length),
                "updated_by": actor.name,
            },
        )


def get_notification_service(request: Request) -> NotificationService:
    """FastAPI dependency for the service built in the app lifespan."""
    return request.app.state.notifications
