"""Application configuration."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Environment
    env: str = os.getenv("APP_ENV", "development")
    api_secret_key: str = os.getenv("API_SECRET_KEY", "dev-secret-key")
    internal_api_secret: str | None = os.getenv("INTERNAL_API_SECRET")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    # Default uses local socket connection with trust auth (no password needed in sandboxes)
    database_url: str = os.getenv(
        "DATABASE_URL", "postgresql:///codingagent?user=postgres"
    )

    # Celery
    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379")

    # Fernet key used for credentials at rest and in queued jobs
    encryption_key: str | None = os.getenv("ENCRYPTION_KEY")

    # Sandbox
    e2b_api_key: str | None = os.getenv("E2B_API_KEY")
    e2b_domain: str | None = os.getenv("E2B_DOMAIN")
    sandbox_template: str = os.getenv("SANDBOX_TEMPLATE", "coding-agent-v1")
    sandbox_vcpus: int = int(os.getenv("SANDBOX_VCPUS", "4"))
    git_author_name: str = os.getenv("GIT_AUTHOR_NAME", "Coding Agent")
    git_author_email: str = os.getenv("GIT_AUTHOR_EMAIL", "agent@example.com")

    # Operator fallback keys (users may override with their own)
    system_anthropic_api_key: str | None = os.getenv("ANTHROPIC_API_KEY")
    system_openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    system_gemini_api_key: str | None = os.getenv("GEMINI_API_KEY")
    system_cursor_api_key: str | None = os.getenv("CURSOR_API_KEY")

    # Branch name / title / commit message generation
    ai_gateway_api_key: str | None = os.getenv("AI_GATEWAY_API_KEY")
    ai_gateway_url: str = os.getenv("AI_GATEWAY_URL", "https://ai-gateway.vercel.sh/v1")
    naming_model: str = os.getenv("NAMING_MODEL", "openai/gpt-4o-mini")
    naming_timeout: float = float(os.getenv("NAMING_TIMEOUT", "15"))

    # Task execution limits
    max_sandbox_duration: int = int(os.getenv("MAX_SANDBOX_DURATION", "300"))  # minutes
    timeout_warning_seconds: int = int(os.getenv("TIMEOUT_WARNING_SECONDS", "60"))
    poll_interval_seconds: float = float(os.getenv("POLL_INTERVAL_SECONDS", "0.5"))
    branch_name_wait_seconds: float = float(os.getenv("BRANCH_NAME_WAIT_SECONDS", "10"))
    store_retry_attempts: int = int(os.getenv("STORE_RETRY_ATTEMPTS", "3"))


settings = Settings()
