"""Task service: typed reads and writes against persisted task rows."""

import logging
import time
from typing import Any
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from app.core.config import settings
from app.core.database import get_session
from app.core.errors import NotFoundError
from app.models import Task, TaskLog, TaskMessage, TaskStatus
from app.models.task import utc_now

logger = logging.getLogger(__name__)


class TaskService:
    """Service for task-related business logic.

    The database is the single source of truth for task state; nothing here
    caches rows between calls.
    """

    @staticmethod
    def create_task(
        user_id: str,
        prompt: str,
        repo_url: str | None = None,
        selected_agent: str = "claude",
        selected_model: str | None = None,
        install_dependencies: bool = False,
        keep_alive: bool = False,
        max_duration: int | None = None,
    ) -> Task:
        """Create a new task in pending status."""
        with get_session() as session:
            task = Task(
                user_id=user_id,
                prompt=prompt,
                repo_url=repo_url or None,
                selected_agent=selected_agent,
                selected_model=selected_model,
                install_dependencies=install_dependencies,
                keep_alive=keep_alive,
                max_duration=max_duration,
                status=TaskStatus.PENDING.value,
                progress=0,
            )
            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    @staticmethod
    def get_task_by_id(task_id: UUID) -> Task:
        """Get task by ID, excluding soft-deleted tasks."""
        with get_session() as session:
            statement = select(Task).where(Task.id == task_id, Task.deleted_at.is_(None))
            task = session.execute(statement).scalar_one_or_none()

            if task is None:
                raise NotFoundError(f"Task with id {task_id} not found")

            return task

    @staticmethod
    def get_user_task(task_id: UUID, user_id: str) -> Task:
        """Get a task owned by user_id, excluding soft-deleted tasks."""
        with get_session() as session:
            statement = select(Task).where(
                Task.id == task_id,
                Task.user_id == user_id,
                Task.deleted_at.is_(None),
            )
            task = session.execute(statement).scalar_one_or_none()

            if task is None:
                raise NotFoundError(f"Task with id {task_id} not found")

            return task

    @staticmethod
    def list_tasks(
        user_id: str, limit: int = 100, offset: int = 0
    ) -> tuple[list[Task], int]:
        """List a user's tasks with pagination, newest first."""
        with get_session() as session:
            filters = (Task.user_id == user_id, Task.deleted_at.is_(None))

            count_statement = select(func.count()).select_from(Task).where(*filters)
            total = session.execute(count_statement).scalar()

            statement = (
                select(Task)
                .where(*filters)
                .order_by(Task.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            tasks = session.execute(statement).scalars().all()

            return list(tasks), total

    @staticmethod
    def update_task(task_id: UUID, **fields: Any) -> Task:
        """Update arbitrary task fields."""
        with get_session() as session:
            task = session.get(Task, task_id)

            if task is None:
                raise NotFoundError(f"Task with id {task_id} not found")

            for name, value in fields.items():
                setattr(task, name, value)
            task.updated_at = utc_now()

            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    @staticmethod
    def transition_status(
        task_id: UUID,
        status: TaskStatus,
        *,
        expected: TaskStatus,
        error: str | None = None,
    ) -> Task | None:
        """Move a task to `status` only if it is currently `expected`.

        Returns the updated task, or None when the task was no longer in the
        expected status (e.g. a stop request got there first).
        """
        status = TaskStatus(status)
        expected = TaskStatus(expected)
        now = utc_now()
        values: dict[str, Any] = {"status": status.value, "updated_at": now}
        if error is not None:
            values["error"] = error
        if status.is_terminal:
            values["completed_at"] = now

        with get_session() as session:
            result = session.execute(
                update(Task)
                .where(Task.id == task_id, Task.status == expected.value)
                .values(**values)
            )
            if result.rowcount == 0:
                logger.info(
                    f"Task {task_id} not moved to {status}: no longer {expected}"
                )
                return None
            session.commit()
            return session.get(Task, task_id)

    @staticmethod
    def update_progress(task_id: UUID, progress: int) -> bool:
        """Raise the progress of a running task; never lowers it."""
        progress = max(0, min(100, progress))
        with get_session() as session:
            result = session.execute(
                update(Task)
                .where(
                    Task.id == task_id,
                    Task.status == TaskStatus.PROCESSING.value,
                    Task.progress <= progress,
                )
                .values(progress=progress, updated_at=utc_now())
            )
            return result.rowcount > 0

    @staticmethod
    def _set_if_unset(task_id: UUID, column: str, value: str) -> str | None:
        attribute = getattr(Task, column)
        with get_session() as session:
            session.execute(
                update(Task)
                .where(Task.id == task_id, attribute.is_(None))
                .values({column: value, "updated_at": utc_now()})
            )
            session.commit()
            return session.execute(
                select(attribute).where(Task.id == task_id)
            ).scalar_one_or_none()

    @staticmethod
    def set_branch_name_if_unset(task_id: UUID, branch_name: str) -> str | None:
        """Persist a branch name unless one is already set; return the stored one."""
        return TaskService._set_if_unset(task_id, "branch_name", branch_name)

    @staticmethod
    def set_title_if_unset(task_id: UUID, title: str) -> str | None:
        """Persist a title unless one is already set; return the stored one."""
        return TaskService._set_if_unset(task_id, "title", title)

    @staticmethod
    def get_branch_name(task_id: UUID) -> str | None:
        with get_session() as session:
            return session.execute(
                select(Task.branch_name).where(Task.id == task_id)
            ).scalar_one_or_none()

    @staticmethod
    def is_task_stopped(task_id: UUID) -> bool:
        """Check whether a stop request has been persisted for the task.

        Read errors are retried; if the store stays unreachable the task is
        reported as not stopped so that a flaky read never aborts a run.
        """
        attempts = max(1, settings.store_retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                with get_session() as session:
                    status = session.execute(
                        select(Task.status).where(Task.id == task_id)
                    ).scalar_one_or_none()
                return status == TaskStatus.STOPPED
            except SQLAlchemyError as e:
                logger.warning(
                    f"Failed to read status of task {task_id} "
                    f"(attempt {attempt}/{attempts}): {e}"
                )
                if attempt < attempts:
                    time.sleep(settings.poll_interval_seconds)
        return False

    @staticmethod
    def soft_delete_task(task_id: UUID, user_id: str) -> None:
        """Mark a task deleted; it disappears from all normal reads."""
        TaskService.get_user_task(task_id, user_id)
        with get_session() as session:
            session.execute(
                update(Task)
                .where(Task.id == task_id, Task.user_id == user_id)
                .values(deleted_at=utc_now())
            )

    @staticmethod
    def add_message(task_id: UUID, role: str, content: str) -> TaskMessage:
        """Append a message to the task conversation."""
        with get_session() as session:
            message = TaskMessage(task_id=task_id, role=role, content=content)
            session.add(message)
            session.commit()
            session.refresh(message)
            return message

    @staticmethod
    def list_messages(task_id: UUID) -> list[TaskMessage]:
        """List task messages in creation order."""
        with get_session() as session:
            statement = (
                select(TaskMessage)
                .where(TaskMessage.task_id == task_id)
                .order_by(TaskMessage.created_at.asc())
            )
            return list(session.execute(statement).scalars().all())

    @staticmethod
    def add_log(task_id: UUID, log_type: str, message: str) -> TaskLog:
        """Append a user-visible log entry."""
        with get_session() as session:
            entry = TaskLog(task_id=task_id, type=log_type, message=message)
            session.add(entry)
            session.commit()
            session.refresh(entry)
            return entry

    @staticmethod
    def get_task_logs(
        task_id: UUID, limit: int = 100, offset: int = 0
    ) -> tuple[list[TaskLog], int]:
        """Get log entries for a task in creation order with pagination."""
        # Verify task exists
        TaskService.get_task_by_id(task_id)

        with get_session() as session:
            count_statement = (
                select(func.count())
                .select_from(TaskLog)
                .where(TaskLog.task_id == task_id)
            )
            total = session.execute(count_statement).scalar()

            statement = (
                select(TaskLog)
                .where(TaskLog.task_id == task_id)
                .order_by(TaskLog.created_at.asc())
                .offset(offset)
                .limit(limit)
            )
            logs = session.execute(statement).scalars().all()

            return list(logs), total

    @staticmethod
    def get_sandbox_id(task_id: UUID) -> str | None:
        """Sandbox id persisted for a task, including soft-deleted ones."""
        with get_session() as session:
            return session.execute(
                select(Task.sandbox_id).where(Task.id == task_id)
            ).scalar_one_or_none()
