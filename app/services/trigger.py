"""Execution trigger: validate a start request and hand the task to a worker."""

import logging
from uuid import UUID

from app.core.errors import (
    AlreadyProcessingError,
    AlreadyTerminalError,
    UnauthorizedError,
)
from app.models import TaskStatus
from app.services.credentials import CredentialService
from app.services.task import TaskService

logger = logging.getLogger(__name__)


class ExecutionTriggerService:
    """Service for starting task execution."""

    @staticmethod
    def effective_duration(requested: int | None, limit: int) -> int:
        """Requested budget in minutes, capped by the owner's limit."""
        if not requested or requested <= 0:
            return limit
        return min(requested, limit)

    @staticmethod
    def start_execution(
        task_id: UUID, user_id: str | None = None, internal: bool = False
    ) -> dict:
        """Claim a pending task and dispatch its pipeline.

        Args:
            task_id: Task to start
            user_id: Caller's user id; must own the task when given
            internal: Whether the call carries the internal service secret

        Returns:
            Acknowledgement payload for the HTTP response

        Raises:
            UnauthorizedError: Neither internal nor a user id, or not the owner
            NotFoundError: Unknown or deleted task
            AlreadyProcessingError: Task is already running (or lost the claim)
            AlreadyTerminalError: Task has already finished
        """
        from app.tasks import execute_agent_task

        if not internal and not user_id:
            raise UnauthorizedError("Unauthorized")

        task = TaskService.get_task_by_id(task_id)

        if user_id and task.user_id != user_id:
            raise UnauthorizedError("Unauthorized")

        status = TaskStatus(task.status)
        if status == TaskStatus.PROCESSING:
            raise AlreadyProcessingError(
                "Task is already being processed", status=status.value
            )
        if status.is_terminal:
            raise AlreadyTerminalError("Task has already finished", status=status.value)

        credentials = CredentialService.get_credentials(task.user_id)
        limit = CredentialService.get_max_sandbox_duration(task.user_id)
        max_duration = ExecutionTriggerService.effective_duration(task.max_duration, limit)

        claimed = TaskService.transition_status(
            task_id, TaskStatus.PROCESSING, expected=TaskStatus.PENDING
        )
        if claimed is None:
            raise AlreadyProcessingError(
                "Task is already being processed", status=TaskStatus.PROCESSING.value
            )

        try:
            execute_agent_task.delay(
                str(task_id),
                task.user_id,
                max_duration,
                CredentialService.seal(credentials),
            )
        except Exception as e:
            logger.error(f"Failed to dispatch task {task_id}: {e}")
            TaskService.transition_status(
                task_id,
                TaskStatus.ERROR,
                expected=TaskStatus.PROCESSING,
                error="Failed to start task execution",
            )
            raise

        logger.info(f"Dispatched task {task_id} with a {max_duration} minute budget")
        return {
            "success": True,
            "taskId": str(task_id),
            "message": "Task execution started",
        }
