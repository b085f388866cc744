"""Task model for agent execution."""

from datetime import UTC, datetime
from enum import StrEnum
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime, String, Text
from sqlmodel import Field, SQLModel


class TaskStatus(StrEnum):
    """Lifecycle of a task: pending -> processing -> completed | error | stopped."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.ERROR, TaskStatus.STOPPED}
)


def utc_now() -> datetime:
    return datetime.now(UTC)


class Task(SQLModel, table=True):
    """Task for agent execution."""

    __tablename__ = "tasks"

    # Primary key and timestamps
    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique identifier for the task",
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True)),
        description="Timestamp when the task was created",
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True)),
        description="Timestamp when the task was last updated",
    )
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
        description="Timestamp when the task reached a terminal status",
    )
    deleted_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), index=True),
        description="Soft-delete marker; deleted tasks are hidden from reads",
    )

    # Ownership and inputs
    user_id: str = Field(
        sa_column=Column(String, index=True, nullable=False),
        description="ID of the user who owns the task",
    )
    prompt: str = Field(
        sa_column=Column(Text, nullable=False),
        description="Natural language prompt describing the task to execute",
    )
    repo_url: str | None = Field(
        default=None,
        description="Repository URL to clone; empty for standalone tasks",
    )
    selected_agent: str = Field(default="claude", description="Coding agent CLI")
    selected_model: str | None = Field(default=None, description="Model for the agent")
    install_dependencies: bool = Field(default=False)
    keep_alive: bool = Field(
        default=False, description="Keep the sandbox running after completion"
    )
    max_duration: int | None = Field(
        default=None, description="Requested execution budget in minutes"
    )

    # Generated fields
    title: str | None = Field(default=None)
    branch_name: str | None = Field(default=None)

    # Runtime state
    status: str = Field(
        default=TaskStatus.PENDING.value,
        sa_column=Column(String, index=True, nullable=False),
        description="Task status: pending, processing, completed, error, stopped",
    )
    progress: int = Field(default=0, description="Progress percentage (0-100)")
    sandbox_id: str | None = Field(
        default=None,
        sa_column=Column(String, index=True),
        description="ID of the sandbox where the task is running",
    )
    sandbox_url: str | None = Field(default=None)
    error: str | None = Field(
        default=None,
        sa_column=Column(Text),
        description="Failure or stop annotation",
    )
    mcp_server_ids: list[str] | None = Field(
        default=None,
        sa_column=Column(JSON),
        description="Connectors made available to the agent for the run",
    )
