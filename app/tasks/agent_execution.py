"""Agent execution Celery task."""

import logging
from uuid import UUID

from app.celery_app import app
from app.models import TaskStatus
from app.services import (
    AgentExecutionService,
    CredentialService,
    ExecutionContext,
    TaskService,
)

logger = logging.getLogger(__name__)


@app.task(
    bind=True,
    name="app.tasks.agent_execution.execute_agent_task",
    max_retries=0,
)
def execute_agent_task(
    self, task_id: str, user_id: str, max_duration: int, sealed_credentials: str
):
    """Run a claimed task's pipeline in a sandbox.

    This is a thin Celery wrapper around AgentExecutionService. Pipelines are
    never retried; anything unexpected leaves the task in error.

    Args:
        task_id: UUID of the task to execute
        user_id: Owner of the task
        max_duration: Execution budget in minutes
        sealed_credentials: Credentials encrypted with CredentialService.seal
    """
    task_uuid = UUID(task_id)

    try:
        context = ExecutionContext(
            task_id=task_uuid,
            user_id=user_id,
            max_duration=max_duration,
            credentials=CredentialService.unseal(sealed_credentials),
        )
        AgentExecutionService.process_task_with_timeout(context)
    except Exception as exc:
        logger.error(f"Error executing task {task_id}: {exc}")
        TaskService.transition_status(
            task_uuid,
            TaskStatus.ERROR,
            expected=TaskStatus.PROCESSING,
            error=f"Error: {exc!s}",
        )
        raise
