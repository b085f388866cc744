"""Task API endpoints."""

import hmac
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Security, status
from pydantic import BaseModel, ConfigDict, Field

from app.core.auth import api_key_header, get_current_user_id, is_internal_call
from app.core.config import settings
from app.core.errors import InvalidTaskStateError, NotFoundError, UnauthorizedError
from app.models import Task, TaskStatus
from app.services import (
    AgentType,
    ExecutionTriggerService,
    SandboxService,
    TaskLogger,
    TaskService,
)

router = APIRouter()


class TaskCreate(BaseModel):
    """Request model for creating a task."""

    prompt: str = Field(min_length=1)
    repo_url: str | None = None
    selected_agent: AgentType = AgentType.CLAUDE
    selected_model: str | None = None
    install_dependencies: bool = False
    keep_alive: bool = False
    max_duration: int | None = Field(default=None, ge=1)


class TaskUpdate(BaseModel):
    """Request model for task actions."""

    action: str


class ExecuteRequest(BaseModel):
    """Request model for starting task execution."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(default=None, alias="userId")


class TaskResponse(BaseModel):
    """Response model for task data."""

    id: UUID
    user_id: str
    prompt: str
    title: str | None
    repo_url: str | None
    selected_agent: str
    selected_model: str | None
    install_dependencies: bool
    keep_alive: bool
    max_duration: int | None
    branch_name: str | None
    status: str
    progress: int
    sandbox_id: str | None
    sandbox_url: str | None
    error: str | None
    mcp_server_ids: list[str] | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls.model_validate(task, from_attributes=True)


class TaskListResponse(BaseModel):
    """Response model for list of tasks."""

    tasks: list[TaskResponse]
    total: int
    limit: int
    offset: int


class TaskActionResponse(BaseModel):
    message: str
    task: TaskResponse


class ExecuteResponse(BaseModel):
    success: bool
    taskId: str
    message: str


class TaskMessageResponse(BaseModel):
    id: UUID
    role: str
    content: str
    created_at: datetime


class TaskMessageListResponse(BaseModel):
    messages: list[TaskMessageResponse]


class TaskLogResponse(BaseModel):
    """Response model for a task log entry."""

    id: UUID
    type: str
    message: str
    created_at: datetime


class TaskLogListResponse(BaseModel):
    """Response model for list of task logs."""

    logs: list[TaskLogResponse]
    total: int
    limit: int
    offset: int


def _get_user_task_or_404(task_id: UUID, user_id: str) -> Task:
    try:
        return TaskService.get_user_task(task_id, user_id)
    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        ) from e


def _start_execution(task_id: UUID, user_id: str | None, internal: bool) -> dict:
    try:
        return ExecutionTriggerService.start_execution(
            task_id, user_id=user_id, internal=internal
        )
    except UnauthorizedError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
        ) from e
    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        ) from e
    except InvalidTaskStateError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": str(e), "status": e.status},
        ) from e


@router.post("/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
def create_task(task_data: TaskCreate, user_id: str = Depends(get_current_user_id)):
    """Create a new task and start executing it."""
    task = TaskService.create_task(
        user_id=user_id,
        prompt=task_data.prompt,
        repo_url=task_data.repo_url,
        selected_agent=task_data.selected_agent.value,
        selected_model=task_data.selected_model,
        install_dependencies=task_data.install_dependencies,
        keep_alive=task_data.keep_alive,
        max_duration=task_data.max_duration,
    )

    _start_execution(task.id, user_id=user_id, internal=False)

    return TaskResponse.from_task(TaskService.get_task_by_id(task.id))


@router.get("/tasks", response_model=TaskListResponse)
def list_tasks(
    limit: int = 100, offset: int = 0, user_id: str = Depends(get_current_user_id)
):
    """List the caller's tasks with pagination."""
    tasks, total = TaskService.list_tasks(user_id, limit=limit, offset=offset)

    return TaskListResponse(
        tasks=[TaskResponse.from_task(task) for task in tasks],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/tasks/{task_id}", response_model=TaskResponse)
def get_task(task_id: UUID, user_id: str = Depends(get_current_user_id)):
    """Get a task by ID."""
    return TaskResponse.from_task(_get_user_task_or_404(task_id, user_id))


@router.patch("/tasks/{task_id}", response_model=TaskActionResponse)
def update_task(
    task_id: UUID, update: TaskUpdate, user_id: str = Depends(get_current_user_id)
):
    """Apply an action to a task. Only `stop` is supported."""
    task = _get_user_task_or_404(task_id, user_id)

    if update.action != "stop":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid action",
        )

    not_running = HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Task can only be stopped when it is in progress",
    )
    if task.status != TaskStatus.PROCESSING:
        raise not_running

    stopped = TaskService.transition_status(
        task_id,
        TaskStatus.STOPPED,
        expected=TaskStatus.PROCESSING,
        error="Task was stopped by user",
    )
    if stopped is None:
        raise not_running

    TaskLogger(task_id).error("Task was stopped by user")
    SandboxService.terminate_task_sandbox(task_id)

    return TaskActionResponse(
        message="Task stopped successfully",
        task=TaskResponse.from_task(stopped),
    )


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(task_id: UUID, user_id: str = Depends(get_current_user_id)):
    """Soft-delete a task."""
    try:
        TaskService.soft_delete_task(task_id, user_id)
    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        ) from e


@router.post("/tasks/{task_id}/execute", response_model=ExecuteResponse)
def execute_task(
    task_id: UUID,
    request: ExecuteRequest | None = None,
    internal: bool = Depends(is_internal_call),
    api_key: str | None = Security(api_key_header),
):
    """Start executing a pending task.

    Internal callers authenticate with X-Internal-Secret. Everyone else needs
    the service API key and the owning user's id in the body.
    """
    user_id = request.user_id if request else None

    if not internal and (
        not api_key or not hmac.compare_digest(api_key, settings.api_secret_key)
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

    return _start_execution(task_id, user_id=user_id, internal=internal)


@router.get("/tasks/{task_id}/messages", response_model=TaskMessageListResponse)
def get_task_messages(task_id: UUID, user_id: str = Depends(get_current_user_id)):
    """Get the task conversation in creation order."""
    _get_user_task_or_404(task_id, user_id)
    messages = TaskService.list_messages(task_id)

    return TaskMessageListResponse(
        messages=[
            TaskMessageResponse.model_validate(message, from_attributes=True)
            for message in messages
        ]
    )


@router.get("/tasks/{task_id}/logs", response_model=TaskLogListResponse)
def get_task_logs(
    task_id: UUID,
    limit: int = 100,
    offset: int = 0,
    user_id: str = Depends(get_current_user_id),
):
    """Get progress logs for a task with pagination."""
    _get_user_task_or_404(task_id, user_id)
    logs, total = TaskService.get_task_logs(task_id, limit=limit, offset=offset)

    return TaskLogListResponse(
        logs=[TaskLogResponse.model_validate(log, from_attributes=True) for log in logs],
        total=total,
        limit=limit,
        offset=offset,
    )
