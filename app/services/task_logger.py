"""User-visible task logging."""

import logging
import re
from uuid import UUID

from app.models import LogType, TaskStatus
from app.services.task import TaskService

logger = logging.getLogger(__name__)

_REDACTIONS = [
    # Credentials embedded in clone URLs
    (re.compile(r"(https?://)[^/\s:@]+(?::[^/\s@]+)?@"), r"\1***@"),
    (re.compile(r"\b(gh[pousr]_[A-Za-z0-9]{16,})"), "***"),
    (re.compile(r"\bgithub_pat_[A-Za-z0-9_]{16,}"), "***"),
    (re.compile(r"\bsk-[A-Za-z0-9_\-]{16,}"), "***"),
    (
        re.compile(r"\b([A-Z][A-Z0-9_]*(?:API_KEY|TOKEN|SECRET)=)(\S+)"),
        r"\1***",
    ),
]


def redact_sensitive_info(text: str) -> str:
    """Mask tokens and API keys before text reaches the task log."""
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


class TaskLogger:
    """Writes progress, status and log lines for one task.

    Logging must never fail the pipeline: every store error is caught here
    and only reported through the module logger.
    """

    def __init__(self, task_id: UUID):
        self.task_id = task_id

    def _append(self, log_type: LogType, message: str) -> None:
        message = redact_sensitive_info(message)
        level = logging.ERROR if log_type == LogType.ERROR else logging.INFO
        logger.log(level, f"[task {self.task_id}] {message}")
        try:
            TaskService.add_log(self.task_id, log_type.value, message)
        except Exception as e:
            logger.warning(f"Failed to persist log for task {self.task_id}: {e}")

    def info(self, message: str) -> None:
        self._append(LogType.INFO, message)

    def success(self, message: str) -> None:
        self._append(LogType.SUCCESS, message)

    def error(self, message: str) -> None:
        self._append(LogType.ERROR, message)

    def command(self, command: str) -> None:
        self._append(LogType.COMMAND, f"$ {command}")

    def update_progress(self, progress: int, message: str) -> None:
        """Record a progress checkpoint; lower values than the current one are ignored."""
        try:
            TaskService.update_progress(self.task_id, progress)
        except Exception as e:
            logger.warning(f"Failed to update progress for task {self.task_id}: {e}")
        self.info(message)

    def update_status(
        self,
        status: TaskStatus,
        message: str | None = None,
        *,
        expected: TaskStatus = TaskStatus.PROCESSING,
    ) -> bool:
        """Transition the task status if it is still `expected`.

        For terminal failures the message becomes the task's error.
        Returns False when the transition did not happen.
        """
        error = message if status in (TaskStatus.ERROR, TaskStatus.STOPPED) else None
        try:
            task = TaskService.transition_status(
                self.task_id, status, expected=expected, error=error
            )
        except Exception as e:
            logger.warning(f"Failed to update status for task {self.task_id}: {e}")
            return False
        if task is not None and message and error is None:
            self.info(message)
        return task is not None
