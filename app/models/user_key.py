"""Per-user provider credentials and setting overrides."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, String, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from app.models.task import utc_now


class UserKey(SQLModel, table=True):
    """Encrypted API key for one provider (one key per provider per user)."""

    __tablename__ = "keys"
    __table_args__ = (UniqueConstraint("user_id", "provider"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True)),
    )
    user_id: str = Field(sa_column=Column(String, index=True, nullable=False))
    provider: str = Field(
        sa_column=Column(String, nullable=False),
        description="anthropic, openai, gemini, cursor, aigateway or github",
    )
    value: str = Field(sa_column=Column(Text, nullable=False))


class UserSetting(SQLModel, table=True):
    """Per-user override of an operator default, e.g. maxSandboxDuration."""

    __tablename__ = "settings"
    __table_args__ = (UniqueConstraint("user_id", "key"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(sa_column=Column(String, index=True, nullable=False))
    key: str = Field(sa_column=Column(String, nullable=False))
    value: str = Field(sa_column=Column(Text, nullable=False))
