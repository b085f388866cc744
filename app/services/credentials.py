"""Resolution of per-user credentials, connectors and limits."""

import json
import logging
import shlex
from dataclasses import asdict, dataclass, field
from typing import Any

from cryptography.fernet import InvalidToken
from sqlmodel import select

from app.core.config import settings
from app.core.database import get_session
from app.core.encryption import decrypt_data, decrypt_json, encrypt_json
from app.models import Connector, UserKey, UserSetting

logger = logging.getLogger(__name__)

MAX_SANDBOX_DURATION_KEY = "maxSandboxDuration"


@dataclass
class ApiKeys:
    """Model-provider keys made available to the sandbox."""

    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    gemini_api_key: str | None = None
    cursor_api_key: str | None = None
    ai_gateway_api_key: str | None = None

    def as_env(self) -> dict[str, str]:
        """Environment variables for the agent CLIs; unset keys are omitted."""
        env = {
            "ANTHROPIC_API_KEY": self.anthropic_api_key,
            "OPENAI_API_KEY": self.openai_api_key,
            "GEMINI_API_KEY": self.gemini_api_key,
            "CURSOR_API_KEY": self.cursor_api_key,
            "AI_GATEWAY_API_KEY": self.ai_gateway_api_key,
        }
        return {name: value for name, value in env.items() if value}


@dataclass
class Credentials:
    """Everything a run needs to authenticate against external services."""

    api_keys: ApiKeys = field(default_factory=ApiKeys)
    github_token: str | None = None


@dataclass
class ConnectorConfig:
    """A connector with its secrets decrypted for the current run only."""

    id: str
    name: str
    type: str
    base_url: str | None = None
    command: str | None = None
    env: dict[str, str] | None = None
    oauth_client_id: str | None = None
    oauth_client_secret: str | None = None


_PROVIDER_FIELDS = {
    "anthropic": "anthropic_api_key",
    "openai": "openai_api_key",
    "gemini": "gemini_api_key",
    "cursor": "cursor_api_key",
    "aigateway": "ai_gateway_api_key",
}


class CredentialService:
    """Service for looking up a user's credentials without a browser session."""

    @staticmethod
    def get_api_keys_by_user_id(user_id: str) -> ApiKeys:
        """Get API keys for a user, falling back to operator keys.

        A user key that cannot be decrypted leaves the operator default in place.
        """
        api_keys = ApiKeys(
            anthropic_api_key=settings.system_anthropic_api_key,
            openai_api_key=settings.system_openai_api_key,
            gemini_api_key=settings.system_gemini_api_key,
            cursor_api_key=settings.system_cursor_api_key,
            ai_gateway_api_key=settings.ai_gateway_api_key,
        )

        with get_session() as session:
            user_keys = session.execute(
                select(UserKey).where(UserKey.user_id == user_id)
            ).scalars().all()

        for key in user_keys:
            field_name = _PROVIDER_FIELDS.get(key.provider)
            if field_name is None:
                continue
            try:
                setattr(api_keys, field_name, decrypt_data(key.value))
            except (InvalidToken, ValueError) as e:
                logger.warning(
                    f"Could not decrypt {key.provider} key for user {user_id}: {e}"
                )

        return api_keys

    @staticmethod
    def get_github_token_by_user_id(user_id: str) -> str | None:
        """Get the GitHub token stored by the user, if any."""
        with get_session() as session:
            key = session.execute(
                select(UserKey).where(
                    UserKey.user_id == user_id, UserKey.provider == "github"
                )
            ).scalar_one_or_none()

        if key is None:
            return None

        try:
            return decrypt_data(key.value)
        except (InvalidToken, ValueError) as e:
            logger.warning(f"Could not decrypt GitHub token for user {user_id}: {e}")
            return None

    @staticmethod
    def get_credentials(user_id: str) -> Credentials:
        return Credentials(
            api_keys=CredentialService.get_api_keys_by_user_id(user_id),
            github_token=CredentialService.get_github_token_by_user_id(user_id),
        )

    @staticmethod
    def get_max_sandbox_duration(user_id: str) -> int:
        """Get the user's execution budget limit in minutes."""
        with get_session() as session:
            setting = session.execute(
                select(UserSetting).where(
                    UserSetting.user_id == user_id,
                    UserSetting.key == MAX_SANDBOX_DURATION_KEY,
                )
            ).scalar_one_or_none()

        if setting is not None:
            try:
                value = int(setting.value)
            except ValueError:
                logger.warning(
                    f"Ignoring invalid {MAX_SANDBOX_DURATION_KEY} for user {user_id}: "
                    f"{setting.value!r}"
                )
            else:
                if value > 0:
                    return value

        return settings.max_sandbox_duration

    @staticmethod
    def get_user_connectors(user_id: str) -> list[ConnectorConfig]:
        """Get the user's connected connectors with secrets decrypted.

        Raises:
            cryptography.fernet.InvalidToken: If a stored secret cannot be decrypted
        """
        with get_session() as session:
            connectors = session.execute(
                select(Connector).where(
                    Connector.user_id == user_id, Connector.status == "connected"
                )
            ).scalars().all()

        return [
            ConnectorConfig(
                id=str(connector.id),
                name=connector.name,
                type=connector.type,
                base_url=connector.base_url,
                command=connector.command,
                env=decrypt_json(connector.env) if connector.env else None,
                oauth_client_id=connector.oauth_client_id,
                oauth_client_secret=(
                    decrypt_data(connector.oauth_client_secret)
                    if connector.oauth_client_secret
                    else None
                ),
            )
            for connector in connectors
        ]

    @staticmethod
    def seal(credentials: Credentials) -> str:
        """Encrypt credentials for transport through the task queue."""
        return encrypt_json(asdict(credentials))

    @staticmethod
    def unseal(token: str) -> Credentials:
        """Inverse of seal()."""
        payload: dict[str, Any] = decrypt_json(token)
        return Credentials(
            api_keys=ApiKeys(**payload.get("api_keys", {})),
            github_token=payload.get("github_token"),
        )


def connector_to_mcp_entry(connector: ConnectorConfig) -> dict[str, Any]:
    """Render a connector in the `mcpServers` format agent CLIs understand."""
    if connector.type == "local" and connector.command:
        command, *args = shlex.split(connector.command)
        entry: dict[str, Any] = {"command": command, "args": args}
        if connector.env:
            entry["env"] = connector.env
        return entry

    entry = {"type": "http", "url": connector.base_url}
    if connector.oauth_client_secret:
        entry["headers"] = {"Authorization": f"Bearer {connector.oauth_client_secret}"}
    return entry


def mcp_config_json(connectors: list[ConnectorConfig]) -> str:
    """Serialize connectors into an MCP config file body."""
    servers = {
        connector.name: connector_to_mcp_entry(connector) for connector in connectors
    }
    return json.dumps({"mcpServers": servers}, indent=2)
