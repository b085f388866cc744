"""AI-generated branch names, titles and commit messages with local fallbacks."""

import logging
import re
from datetime import UTC, datetime
from uuid import UUID

import httpx

from app.core.config import settings
from app.core.errors import NameGenerationError

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "agent/"
MAX_BRANCH_SLUG_LENGTH = 50
MAX_TITLE_LENGTH = 60
MAX_COMMIT_SUBJECT_LENGTH = 72
DEFAULT_COMMIT_MESSAGE = "Apply changes from coding agent"

BRANCH_NAME_INSTRUCTIONS = (
    "Generate a short git branch name for the task below. "
    "Use lowercase kebab-case, at most 5 words, no prefix, no explanation. "
    "Reply with the branch name only."
)
TITLE_INSTRUCTIONS = (
    "Write a concise title (at most 8 words) for the coding task below. "
    "Reply with the title only, without quotes."
)
COMMIT_MESSAGE_INSTRUCTIONS = (
    "Write a conventional git commit message for the change described below. "
    "First line at most 72 characters, imperative mood. "
    "Reply with the commit message only."
)


def _first_line(text: str) -> str:
    for line in text.splitlines():
        line = line.strip()
        if line:
            return line
    return ""


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def slugify_branch(text: str) -> str:
    """Reduce arbitrary text to a git-safe kebab-case slug."""
    slug = text.strip().lower()
    if slug.startswith(BRANCH_PREFIX):
        slug = slug[len(BRANCH_PREFIX) :]
    slug = re.sub(r"[^a-z0-9]+", "-", slug).strip("-")
    return slug[:MAX_BRANCH_SLUG_LENGTH].rstrip("-")


class NameGenerationService:
    """Service for generated names and their deterministic fallbacks."""

    @staticmethod
    def is_configured(api_key: str | None = None) -> bool:
        return bool(api_key or settings.ai_gateway_api_key)

    @staticmethod
    def _complete(instructions: str, content: str, api_key: str | None = None) -> str:
        """Run one chat completion against the AI gateway.

        Raises:
            NameGenerationError: If the gateway is not configured, unreachable,
                or returns an empty answer
        """
        key = api_key or settings.ai_gateway_api_key
        if not key:
            raise NameGenerationError("AI gateway is not configured")

        try:
            with httpx.Client(
                base_url=settings.ai_gateway_url,
                headers={"Authorization": f"Bearer {key}"},
                timeout=settings.naming_timeout,
            ) as client:
                response = client.post(
                    "/chat/completions",
                    json={
                        "model": settings.naming_model,
                        "messages": [
                            {"role": "system", "content": instructions},
                            {"role": "user", "content": content},
                        ],
                        "max_tokens": 200,
                        "temperature": 0.2,
                    },
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise NameGenerationError(f"Generation request failed: {e}") from e

        try:
            text = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise NameGenerationError("Malformed generation response") from e

        text = text.strip().strip("`\"'").strip()
        if not text:
            raise NameGenerationError("Empty generation response")
        return text

    @staticmethod
    def generate_branch_name(
        description: str,
        repo_name: str | None = None,
        context: str | None = None,
        api_key: str | None = None,
    ) -> str:
        content = f"Task: {description}"
        if repo_name:
            content += f"\nRepository: {repo_name}"
        if context:
            content += f"\nContext: {context}"

        raw = NameGenerationService._complete(BRANCH_NAME_INSTRUCTIONS, content, api_key)
        slug = slugify_branch(_first_line(raw))
        if not slug:
            raise NameGenerationError(f"Unusable branch name: {raw!r}")
        return f"{BRANCH_PREFIX}{slug}"

    @staticmethod
    def create_fallback_branch_name(task_id: UUID | str) -> str:
        timestamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
        return f"{BRANCH_PREFIX}{timestamp}-{str(task_id)[:8]}"

    @staticmethod
    def generate_task_title(
        prompt: str,
        repo_name: str | None = None,
        context: str | None = None,
        api_key: str | None = None,
    ) -> str:
        content = f"Task: {prompt}"
        if repo_name:
            content += f"\nRepository: {repo_name}"
        if context:
            content += f"\nContext: {context}"

        raw = NameGenerationService._complete(TITLE_INSTRUCTIONS, content, api_key)
        return _truncate(_first_line(raw), MAX_TITLE_LENGTH)

    @staticmethod
    def create_fallback_title(prompt: str) -> str:
        return _truncate(_first_line(prompt), MAX_TITLE_LENGTH) or "Untitled task"

    @staticmethod
    def generate_commit_message(
        description: str,
        context: str | None = None,
        api_key: str | None = None,
    ) -> str:
        content = description
        if context:
            content += f"\n\nContext: {context}"
        return NameGenerationService._complete(
            COMMIT_MESSAGE_INSTRUCTIONS, content, api_key
        )

    @staticmethod
    def create_fallback_commit_message(description: str | None) -> str:
        subject = _first_line(description or "")
        if not subject:
            return DEFAULT_COMMIT_MESSAGE
        return _truncate(subject, MAX_COMMIT_SUBJECT_LENGTH)
