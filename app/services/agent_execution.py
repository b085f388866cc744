"""Agent execution service: the per-task orchestration pipeline."""

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from uuid import UUID

from cryptography.fernet import InvalidToken
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.errors import (
    AgentExecutionError,
    EnvironmentProvisioningError,
    NameGenerationError,
    TaskCancelledError,
    TaskTimeoutError,
)
from app.models import MessageRole, Task, TaskStatus
from app.services.agents import AgentResult, get_agent
from app.services.credentials import ConnectorConfig, CredentialService, Credentials
from app.services.git import GitService
from app.services.naming import NameGenerationService
from app.services.publication import PublicationService, PushResult
from app.services.sandbox import SandboxConfig, SandboxService
from app.services.task import TaskService
from app.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)


@dataclass
class ExecutionContext:
    """Everything the worker needs to run one task."""

    task_id: UUID
    user_id: str
    max_duration: int
    credentials: Credentials = field(default_factory=Credentials)


def sanitize_prompt(prompt: str) -> str:
    """Neutralize shell metacharacters before the prompt reaches an agent CLI."""
    prompt = prompt.replace("`", "'").replace("$", "").replace("\\", "")
    return re.sub(r"^-", " -", prompt, flags=re.MULTILINE)


def _task_timeout_seconds(max_duration: int) -> float:
    return max_duration * 60


class AgentExecutionService:
    """Service for agent execution business logic."""

    @staticmethod
    def process_task_with_timeout(context: ExecutionContext) -> None:
        """Run the pipeline, racing it against the task's time budget.

        On deadline the task is moved to error and its persisted sandbox is
        terminated. The pipeline thread is not killed; killing the sandbox
        unblocks any in-flight command, and the thread then sees the deadline
        event at its next checkpoint and cleans up after itself. It is a
        daemon thread so an orphaned pipeline never holds up worker shutdown.
        """
        task_logger = TaskLogger(context.task_id)
        deadline = threading.Event()
        timeout_seconds = _task_timeout_seconds(context.max_duration)

        warning = threading.Timer(
            max(0.0, timeout_seconds - settings.timeout_warning_seconds),
            task_logger.info,
            args=["Task is approaching timeout, will complete soon"],
        )
        warning.daemon = True
        pipeline = threading.Thread(
            target=AgentExecutionService.process_task,
            args=(context, deadline),
            name=f"task-{str(context.task_id)[:8]}",
            daemon=True,
        )

        try:
            warning.start()
            pipeline.start()
            pipeline.join(timeout_seconds)
            if pipeline.is_alive():
                deadline.set()
                AgentExecutionService.handle_timeout(context, task_logger)
        finally:
            warning.cancel()

    @staticmethod
    def handle_timeout(context: ExecutionContext, task_logger: TaskLogger) -> None:
        error = TaskTimeoutError(
            f"Task execution timed out after {context.max_duration} minutes. "
            "The operation took too long to complete."
        )
        logger.warning(f"Task {context.task_id}: {error}")
        if task_logger.update_status(TaskStatus.ERROR, str(error)):
            task_logger.error("Task execution timed out")
        SandboxService.terminate_task_sandbox(context.task_id)

    @staticmethod
    def is_cancelled(task_id: UUID, deadline: threading.Event) -> bool:
        return deadline.is_set() or TaskService.is_task_stopped(task_id)

    @staticmethod
    def checkpoint(task_id: UUID, deadline: threading.Event, message: str) -> None:
        """Raise TaskCancelledError if the task was stopped or ran out of time."""
        if deadline.is_set():
            raise TaskCancelledError("Task exceeded its time limit, cleaning up")
        if TaskService.is_task_stopped(task_id):
            raise TaskCancelledError(message)

    @staticmethod
    def process_task(context: ExecutionContext, deadline: threading.Event) -> None:
        """Run the full pipeline for one task.

        Failures end in status `error`; stops and deadlines end silently.
        The sandbox is shut down on every exit path except a completed
        keep-alive run.
        """
        task_id = context.task_id
        task_logger = TaskLogger(task_id)
        credentials = context.credentials
        sandbox = None

        try:
            task = TaskService.get_task_by_id(task_id)

            task_logger.update_progress(10, "Initializing task execution...")
            try:
                TaskService.add_message(task_id, MessageRole.USER.value, task.prompt)
            except SQLAlchemyError as e:
                logger.warning(f"Failed to save prompt message for task {task_id}: {e}")

            if credentials.github_token:
                task_logger.info("Using authenticated GitHub access")
            elif task.repo_url:
                task_logger.info(
                    "No GitHub token available, attempting unauthenticated access"
                )
            else:
                task_logger.info("Running in standalone mode (no repository)")

            AgentExecutionService.checkpoint(
                task_id, deadline, "Task was stopped before execution began"
            )

            branch_name = AgentExecutionService.resolve_branch_name(
                task, credentials, deadline, task_logger
            )

            AgentExecutionService.checkpoint(
                task_id, deadline, "Task was stopped during branch name generation"
            )

            task_logger.update_progress(15, "Creating sandbox environment")
            sandbox_result = SandboxService.create_sandbox(
                SandboxConfig(
                    task_id=task_id,
                    repo_url=task.repo_url,
                    branch_name=branch_name,
                    logger=task_logger,
                    github_token=credentials.github_token,
                    api_keys=credentials.api_keys,
                    timeout_minutes=context.max_duration,
                    ports=None if task.repo_url else [3000],
                    vcpus=settings.sandbox_vcpus,
                    install_dependencies=task.install_dependencies,
                    keep_alive=task.keep_alive,
                    on_progress=task_logger.update_progress,
                    on_cancellation_check=lambda: AgentExecutionService.is_cancelled(
                        task_id, deadline
                    ),
                )
            )

            if not sandbox_result.success:
                if sandbox_result.cancelled:
                    raise TaskCancelledError("Task was cancelled during sandbox creation")
                raise EnvironmentProvisioningError(
                    sandbox_result.error or "Failed to create sandbox"
                )

            sandbox = sandbox_result.sandbox
            AgentExecutionService.checkpoint(
                task_id, deadline, "Task was stopped during sandbox creation"
            )

            TaskService.update_task(
                task_id,
                sandbox_id=sandbox_result.sandbox_id,
                sandbox_url=sandbox_result.url,
            )

            AgentExecutionService.checkpoint(
                task_id, deadline, "Task was stopped before agent execution"
            )

            task_logger.update_progress(50, "Installing and executing agent")
            connectors = AgentExecutionService.load_connectors(context, task_logger)

            agent = get_agent(task.selected_agent, credentials.api_keys)
            agent_result = agent.execute(
                sandbox,
                sanitize_prompt(task.prompt),
                task_logger,
                model=task.selected_model,
                connectors=connectors,
                task_id=task_id,
            )

            if not agent_result.success:
                AgentExecutionService.checkpoint(
                    task_id, deadline, "Agent execution was stopped"
                )
                raise AgentExecutionError(agent_result.error or "Agent execution failed")

            task_logger.success("Agent completed work")
            if agent_result.agent_response:
                try:
                    TaskService.add_message(
                        task_id, MessageRole.AGENT.value, agent_result.agent_response
                    )
                except SQLAlchemyError as e:
                    logger.warning(f"Failed to save agent message for task {task_id}: {e}")

            AgentExecutionService.checkpoint(
                task_id, deadline, "Task was stopped before publishing changes"
            )

            task_logger.update_progress(90, "Committing and pushing changes")
            AgentExecutionService.publish_changes(
                task, credentials, sandbox, agent_result, sandbox_result.branch_name,
                task_logger,
            )

            task_logger.update_progress(100, "Task completed")
            task_logger.update_status(TaskStatus.COMPLETED, "Task completed successfully")

            if task.keep_alive:
                task_logger.info(f"Sandbox kept alive at {sandbox_result.url}")
            else:
                task_logger.info("Shutting down sandbox")
                SandboxService.shutdown_sandbox(sandbox)

        except TaskCancelledError as e:
            task_logger.info(str(e))
            if sandbox is not None:
                SandboxService.shutdown_sandbox(sandbox)

        except Exception as e:
            if AgentExecutionService.is_cancelled(task_id, deadline):
                # A stop or deadline made the in-flight step fail
                logger.info(f"Task {task_id} ended after cancellation: {e}")
                task_logger.info("Task execution was cancelled")
                if sandbox is not None:
                    SandboxService.shutdown_sandbox(sandbox)
                return

            logger.exception(f"Task {task_id} failed")
            task_logger.error("Task failed")
            task_logger.update_status(
                TaskStatus.ERROR, str(e) or "An unexpected error occurred"
            )
            if sandbox is not None:
                SandboxService.shutdown_sandbox(sandbox)

    @staticmethod
    def resolve_branch_name(
        task: Task,
        credentials: Credentials,
        deadline: threading.Event,
        task_logger: TaskLogger,
    ) -> str | None:
        """Settle the branch name before the sandbox is created.

        With a generator configured, names are generated in the background
        and the branch name is awaited for a bounded time. A missing name is
        replaced by the fallback; whichever value lands first is kept.
        """
        gateway_key = credentials.api_keys.ai_gateway_api_key
        fallback = NameGenerationService.create_fallback_branch_name(task.id)

        if not NameGenerationService.is_configured(gateway_key):
            TaskService.set_title_if_unset(
                task.id, NameGenerationService.create_fallback_title(task.prompt)
            )
            return TaskService.set_branch_name_if_unset(task.id, fallback)

        AgentExecutionService.start_name_generation(task, gateway_key, task_logger)
        branch_name = AgentExecutionService.wait_for_branch_name(task.id, deadline)
        if branch_name:
            task_logger.info("Using AI-generated branch name")
            return branch_name

        task_logger.info("AI branch name not ready, using fallback")
        return TaskService.set_branch_name_if_unset(task.id, fallback)

    @staticmethod
    def start_name_generation(
        task: Task, api_key: str | None, task_logger: TaskLogger
    ) -> threading.Thread:
        thread = threading.Thread(
            target=AgentExecutionService.generate_names,
            args=(task, api_key, task_logger),
            name=f"naming-{str(task.id)[:8]}",
            daemon=True,
        )
        thread.start()
        return thread

    @staticmethod
    def generate_names(task: Task, api_key: str | None, task_logger: TaskLogger) -> None:
        """Generate branch name then title; each falls back on failure."""
        repo_name = GitService.repo_name(task.repo_url)
        context = f"{task.selected_agent} agent task"

        task_logger.info("Generating AI-powered branch name...")
        try:
            branch_name = NameGenerationService.generate_branch_name(
                task.prompt, repo_name=repo_name, context=context, api_key=api_key
            )
        except NameGenerationError as e:
            logger.warning(f"Branch name generation failed for task {task.id}: {e}")
            branch_name = NameGenerationService.create_fallback_branch_name(task.id)
        else:
            task_logger.success("Generated AI branch name")

        try:
            TaskService.set_branch_name_if_unset(task.id, branch_name)
        except SQLAlchemyError as e:
            logger.error(f"Failed to store branch name for task {task.id}: {e}")

        try:
            title = NameGenerationService.generate_task_title(
                task.prompt, repo_name=repo_name, context=context, api_key=api_key
            )
        except NameGenerationError as e:
            logger.warning(f"Title generation failed for task {task.id}: {e}")
            title = NameGenerationService.create_fallback_title(task.prompt)

        try:
            TaskService.set_title_if_unset(task.id, title)
        except SQLAlchemyError as e:
            logger.error(f"Failed to store title for task {task.id}: {e}")

    @staticmethod
    def wait_for_branch_name(task_id: UUID, deadline: threading.Event) -> str | None:
        """Poll the store for a branch name, up to branch_name_wait_seconds."""
        started = time.monotonic()
        while time.monotonic() - started < settings.branch_name_wait_seconds:
            if deadline.is_set():
                return None
            try:
                branch_name = TaskService.get_branch_name(task_id)
            except SQLAlchemyError as e:
                logger.warning(f"Failed to read branch name for task {task_id}: {e}")
            else:
                if branch_name:
                    return branch_name
            time.sleep(settings.poll_interval_seconds)
        return None

    @staticmethod
    def load_connectors(
        context: ExecutionContext, task_logger: TaskLogger
    ) -> list[ConnectorConfig]:
        """Load the user's connectors; any failure means running without them."""
        try:
            connectors = CredentialService.get_user_connectors(context.user_id)
        except (InvalidToken, ValueError, SQLAlchemyError) as e:
            logger.warning(f"Could not load connectors for task {context.task_id}: {e}")
            task_logger.info("Warning: Could not fetch MCP servers, continuing without them")
            return []

        if connectors:
            task_logger.info(f"Found {len(connectors)} connected MCP server(s)")
            TaskService.update_task(
                context.task_id, mcp_server_ids=[connector.id for connector in connectors]
            )
        return connectors

    @staticmethod
    def publish_changes(
        task: Task,
        credentials: Credentials,
        sandbox,
        agent_result: AgentResult,
        sandbox_branch: str | None,
        task_logger: TaskLogger,
    ) -> PushResult | None:
        """Commit and push the agent's work; None when publication is skipped."""
        if not task.repo_url:
            return None
        if not credentials.github_token:
            task_logger.info("No GitHub token available, skipping push")
            return None

        branch_name = (
            TaskService.get_branch_name(task.id)
            or sandbox_branch
            or NameGenerationService.create_fallback_branch_name(task.id)
        )
        description = agent_result.agent_response or agent_result.output or task.prompt
        commit_message = PublicationService.build_commit_message(
            description,
            context=f"{task.selected_agent} agent task",
            api_key=credentials.api_keys.ai_gateway_api_key,
        )

        result = PublicationService.push_changes_to_branch(
            sandbox, branch_name, commit_message, task_logger
        )
        if result.push_failed:
            task_logger.info("Changes committed locally but could not be pushed to remote")
        elif not result.success:
            task_logger.error(f"Failed to commit changes: {result.error}")
        return result
