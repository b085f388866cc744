"""Task log model for storing user-visible execution logs."""

from datetime import datetime
from enum import StrEnum
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlmodel import Field, SQLModel

from app.models.task import utc_now


class LogType(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"
    COMMAND = "command"


class TaskLog(SQLModel, table=True):
    """Log entry for task execution."""

    __tablename__ = "task_logs"

    # Primary key and timestamps
    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique identifier for the log entry",
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), index=True),
        description="Timestamp when the log entry was created",
    )

    # Foreign key to task
    task_id: UUID = Field(
        sa_column=Column(ForeignKey("tasks.id", ondelete="CASCADE"), index=True),
        description="ID of the task this log belongs to",
    )

    # Log fields
    type: str = Field(
        sa_column=Column(String, index=True),
        description="Entry type: info, success, error or command",
    )
    message: str = Field(
        sa_column=Column(Text),
        description="Log line with secrets redacted",
    )
