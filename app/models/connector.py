"""External tool (MCP server) connectors configured by users."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, String, Text
from sqlmodel import Field, SQLModel

from app.models.task import utc_now


class Connector(SQLModel, table=True):
    """MCP server configuration; env and OAuth secret are stored encrypted."""

    __tablename__ = "connectors"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True)),
    )
    user_id: str = Field(sa_column=Column(String, index=True, nullable=False))
    name: str
    type: str = Field(default="remote", description="local (stdio) or remote (HTTP)")
    base_url: str | None = Field(default=None)
    command: str | None = Field(default=None)
    env: str | None = Field(
        default=None,
        sa_column=Column(Text),
        description="Encrypted JSON object of environment variables",
    )
    oauth_client_id: str | None = Field(default=None)
    oauth_client_secret: str | None = Field(
        default=None,
        sa_column=Column(Text),
        description="Encrypted OAuth client secret",
    )
    status: str = Field(default="connected", sa_column=Column(String, index=True))
