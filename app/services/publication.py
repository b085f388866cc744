"""Commit and push the agent's work from the sandbox."""

import logging
import shlex
from dataclasses import dataclass
from enum import StrEnum

from e2b_code_interpreter import Sandbox

from app.core.errors import NameGenerationError
from app.services.naming import NameGenerationService
from app.services.sandbox import PROJECT_DIR, SandboxService
from app.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

PUSH_TIMEOUT = 120


class PublicationOutcome(StrEnum):
    PUSHED = "pushed"
    COMMITTED_NOT_PUSHED = "committed_not_pushed"
    NO_CHANGES = "no_changes"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class PushResult:
    outcome: PublicationOutcome
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome in (
            PublicationOutcome.PUSHED,
            PublicationOutcome.NO_CHANGES,
            PublicationOutcome.SKIPPED,
        )

    @property
    def push_failed(self) -> bool:
        return self.outcome == PublicationOutcome.COMMITTED_NOT_PUSHED


class PublicationService:
    """Service for turning sandbox changes into a pushed branch."""

    @staticmethod
    def build_commit_message(
        description: str | None, context: str | None = None, api_key: str | None = None
    ) -> str:
        """Generated commit message, or the deterministic fallback."""
        if description and NameGenerationService.is_configured(api_key):
            try:
                return NameGenerationService.generate_commit_message(
                    description, context=context, api_key=api_key
                )
            except NameGenerationError as e:
                logger.warning(f"Commit message generation failed: {e}")
        return NameGenerationService.create_fallback_commit_message(description)

    @staticmethod
    def push_changes_to_branch(
        sandbox: Sandbox,
        branch_name: str,
        commit_message: str,
        task_logger: TaskLogger,
    ) -> PushResult:
        """Stage everything, commit and push HEAD to `branch_name`.

        A rejected push keeps the local commit and reports
        COMMITTED_NOT_PUSHED; the caller decides how to surface it.
        """
        status = SandboxService.run_command(
            sandbox, "git status --porcelain", cwd=PROJECT_DIR
        )
        if status.exit_code != 0:
            task_logger.error("Could not read repository status")
            return PushResult(PublicationOutcome.FAILED, error=status.stderr.strip())

        if not status.stdout.strip():
            task_logger.info("No changes to commit")
            return PushResult(PublicationOutcome.NO_CHANGES)

        add = SandboxService.run_command(sandbox, "git add -A", cwd=PROJECT_DIR)
        if add.exit_code != 0:
            task_logger.error("Failed to stage changes")
            return PushResult(PublicationOutcome.FAILED, error=add.stderr.strip())

        commit_command = f"git commit -m {shlex.quote(commit_message)}"
        task_logger.command(commit_command)
        commit = SandboxService.run_command(sandbox, commit_command, cwd=PROJECT_DIR)
        if commit.exit_code != 0:
            task_logger.error("Failed to commit changes")
            return PushResult(PublicationOutcome.FAILED, error=commit.stderr.strip())

        push_command = f"git push origin HEAD:{shlex.quote(branch_name)}"
        task_logger.command(push_command)
        push = SandboxService.run_command(
            sandbox, push_command, timeout=PUSH_TIMEOUT, cwd=PROJECT_DIR
        )
        if push.exit_code != 0:
            logger.warning(f"Push to {branch_name} failed: {push.stderr}")
            return PushResult(
                PublicationOutcome.COMMITTED_NOT_PUSHED, error=push.stderr.strip()
            )

        task_logger.success(f"Changes pushed to branch {branch_name}")
        return PushResult(PublicationOutcome.PUSHED)
