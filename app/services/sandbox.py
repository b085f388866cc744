"""Sandbox service: lifecycle of the isolated E2B execution environment."""

import json
import logging
import shlex
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from e2b import CommandExitException, NotFoundException
from e2b_code_interpreter import Sandbox

from app.core.config import settings
from app.core.errors import EnvironmentProvisioningError, TaskCancelledError
from app.services.credentials import ApiKeys
from app.services.git import GitService
from app.services.task import TaskService
from app.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

PROJECT_DIR = "/home/user/project"
DEFAULT_PORT = 3000
CLONE_TIMEOUT = 300

# Dev-server ports by framework dependency, first match wins
FRAMEWORK_PORTS = [
    ("vite", 5173),
    ("astro", 4321),
    ("@angular/core", 4200),
    ("@vue/cli-service", 8080),
    ("next", 3000),
]


@dataclass
class CommandResult:
    """Outcome of a sandbox command, including non-zero exits."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""


@dataclass
class SandboxConfig:
    """Parameters for provisioning a task's sandbox."""

    task_id: UUID
    repo_url: str | None
    branch_name: str | None
    logger: TaskLogger
    github_token: str | None = None
    api_keys: ApiKeys = field(default_factory=ApiKeys)
    timeout_minutes: int = 60
    ports: list[int] | None = None
    vcpus: int = 4
    install_dependencies: bool = False
    keep_alive: bool = False
    on_progress: Callable[[int, str], None] = lambda progress, message: None
    on_cancellation_check: Callable[[], bool] = lambda: False


@dataclass
class SandboxResult:
    """Result of create_sandbox; errors are reported here rather than raised."""

    success: bool
    sandbox: Any = None
    sandbox_id: str | None = None
    url: str | None = None
    branch_name: str | None = None
    port: int | None = None
    cancelled: bool = False
    error: str | None = None


def _connection_opts() -> dict[str, str]:
    opts = {}
    if settings.e2b_api_key:
        opts["api_key"] = settings.e2b_api_key
    if settings.e2b_domain:
        opts["domain"] = settings.e2b_domain
    return opts


def _check_cancelled(config: SandboxConfig) -> None:
    if config.on_cancellation_check():
        raise TaskCancelledError(f"Task {config.task_id} was stopped")


class SandboxService:
    """Service for E2B sandbox operations."""

    @staticmethod
    def create_sandbox(config: SandboxConfig) -> SandboxResult:
        """Create a sandbox, clone the repository and prepare it for the agent.

        The cancellation callback is polled between steps and during
        dependency installation; an observed stop yields `cancelled=True`.
        A partially built sandbox is always shut down before returning a
        failed or cancelled result.
        """
        task_logger = config.logger
        sandbox = None

        try:
            if not settings.e2b_api_key:
                raise EnvironmentProvisioningError(
                    "Sandbox provider is not configured (E2B_API_KEY is missing)"
                )

            envs = config.api_keys.as_env()
            if config.github_token:
                envs["GITHUB_TOKEN"] = config.github_token

            lifetime_minutes = config.timeout_minutes
            if config.keep_alive:
                lifetime_minutes = max(lifetime_minutes, settings.max_sandbox_duration)

            config.on_progress(20, "Provisioning sandbox")
            sandbox = Sandbox.create(
                template=settings.sandbox_template,
                timeout=lifetime_minutes * 60,
                envs=envs,
                metadata={"task_id": str(config.task_id), "vcpus": str(config.vcpus)},
                **_connection_opts(),
            )
            task_logger.info("Sandbox created")
            logger.info(
                f"Created sandbox {sandbox.sandbox_id} for task {config.task_id} "
                f"with {lifetime_minutes}m lifetime"
            )
            _check_cancelled(config)

            SandboxService.configure_git(sandbox)

            branch_name = None
            if config.repo_url:
                config.on_progress(25, "Cloning repository")
                branch_name = SandboxService.clone_repository(sandbox, config)
            else:
                SandboxService.run_command(sandbox, f"mkdir -p {PROJECT_DIR}")
                task_logger.info("Running in standalone mode (no repository)")
            _check_cancelled(config)

            config.on_progress(30, "Sandbox configured")

            if config.ports:
                port = config.ports[0]
            elif config.repo_url:
                port = SandboxService.detect_port(sandbox)
            else:
                port = DEFAULT_PORT

            if config.install_dependencies and config.repo_url:
                config.on_progress(40, "Installing dependencies")
                SandboxService.install_dependencies(sandbox, config)
            _check_cancelled(config)

            url = f"https://{sandbox.get_host(port)}"
            config.on_progress(45, "Sandbox ready")

            return SandboxResult(
                success=True,
                sandbox=sandbox,
                sandbox_id=sandbox.sandbox_id,
                url=url,
                branch_name=branch_name,
                port=port,
            )

        except TaskCancelledError:
            task_logger.info("Sandbox creation cancelled")
            if sandbox is not None:
                SandboxService.shutdown_sandbox(sandbox)
            return SandboxResult(success=False, cancelled=True)

        except Exception as e:
            logger.error(f"Failed to create sandbox for task {config.task_id}: {e}")
            if sandbox is not None:
                SandboxService.shutdown_sandbox(sandbox)
            return SandboxResult(success=False, error=str(e))

    @staticmethod
    def configure_git(sandbox: Sandbox) -> None:
        """Set the commit identity used by the agent."""
        SandboxService.run_command(
            sandbox,
            f"git config --global user.name {shlex.quote(settings.git_author_name)}",
        )
        SandboxService.run_command(
            sandbox,
            f"git config --global user.email {shlex.quote(settings.git_author_email)}",
        )

    @staticmethod
    def clone_repository(sandbox: Sandbox, config: SandboxConfig) -> str:
        """Clone the task repository and check out the working branch.

        Returns:
            The branch checked out in the sandbox

        Raises:
            EnvironmentProvisioningError: If cloning or branch creation fails
        """
        task_logger = config.logger
        clone_url = GitService.authenticated_clone_url(
            config.repo_url, config.github_token
        )
        command = f"git clone {shlex.quote(clone_url)} {PROJECT_DIR}"
        task_logger.command(command)

        result = SandboxService.run_command(sandbox, command, timeout=CLONE_TIMEOUT)
        if result.exit_code != 0:
            raise EnvironmentProvisioningError(
                f"Failed to clone repository: {result.stderr.strip()}"
            )
        task_logger.success("Repository cloned")

        branch_name = config.branch_name or f"agent/{str(config.task_id)[:8]}"
        result = SandboxService.run_command(
            sandbox, f"git checkout -b {shlex.quote(branch_name)}", cwd=PROJECT_DIR
        )
        if result.exit_code != 0:
            raise EnvironmentProvisioningError(
                f"Failed to create branch {branch_name}: {result.stderr.strip()}"
            )
        task_logger.info(f"Working on branch {branch_name}")
        return branch_name

    @staticmethod
    def detect_port(sandbox: Sandbox) -> int:
        """Guess the dev-server port from the project's package.json."""
        try:
            package = json.loads(sandbox.files.read(f"{PROJECT_DIR}/package.json"))
        except (NotFoundException, ValueError):
            return DEFAULT_PORT

        dependencies = {
            **package.get("dependencies", {}),
            **package.get("devDependencies", {}),
        }
        for dependency, port in FRAMEWORK_PORTS:
            if dependency in dependencies:
                return port
        return DEFAULT_PORT

    @staticmethod
    def dependency_install_command(sandbox: Sandbox) -> str | None:
        """Pick the install command for the project's package manager."""
        listing = SandboxService.run_command(sandbox, "ls -1", cwd=PROJECT_DIR)
        files = set(listing.stdout.split())

        if "package.json" in files:
            if "pnpm-lock.yaml" in files:
                return "pnpm install --frozen-lockfile"
            if "yarn.lock" in files:
                return "yarn install --frozen-lockfile"
            return "npm install"
        if "requirements.txt" in files:
            return "pip install -r requirements.txt"
        if "pyproject.toml" in files:
            return "pip install -e ."
        return None

    @staticmethod
    def install_dependencies(sandbox: Sandbox, config: SandboxConfig) -> None:
        """Install project dependencies while polling for cancellation.

        Installation failures are logged and do not abort the run.

        Raises:
            TaskCancelledError: If a stop is observed while installing
        """
        task_logger = config.logger
        command = SandboxService.dependency_install_command(sandbox)
        if command is None:
            task_logger.info("No dependency manifest found, skipping installation")
            return

        task_logger.command(command)
        handle = sandbox.commands.run(command, background=True, cwd=PROJECT_DIR, timeout=0)

        with ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(handle.wait)
            while True:
                try:
                    future.result(timeout=settings.poll_interval_seconds)
                    break
                except FuturesTimeoutError:
                    if config.on_cancellation_check():
                        handle.kill()
                        raise TaskCancelledError(
                            f"Task {config.task_id} was stopped during installation"
                        ) from None
                except CommandExitException as e:
                    task_logger.error(
                        f"Dependency installation failed (exit {e.exit_code})"
                    )
                    return

        task_logger.success("Dependencies installed")

    @staticmethod
    def run_command(
        sandbox: Sandbox,
        command: str,
        timeout: int | None = None,
        cwd: str | None = None,
    ) -> CommandResult:
        """Run a command in the sandbox.

        Thin wrapper around sandbox.commands.run() that converts non-zero
        exits into a CommandResult instead of an exception.
        """
        try:
            result = sandbox.commands.run(command, timeout=timeout, cwd=cwd)
            return CommandResult(
                exit_code=result.exit_code,
                stdout=result.stdout or "",
                stderr=result.stderr or "",
            )
        except CommandExitException as e:
            # E2B raises for non-zero exit codes, the output is still on the exception
            return CommandResult(
                exit_code=e.exit_code,
                stdout=getattr(e, "stdout", "") or "",
                stderr=getattr(e, "stderr", "") or str(e),
            )

    @staticmethod
    def shutdown_sandbox(sandbox: Sandbox) -> None:
        """Kill a sandbox. Teardown errors are logged, never raised."""
        try:
            sandbox.kill()
            logger.info(f"Sandbox {sandbox.sandbox_id} killed")
        except Exception as e:
            logger.error(f"Error killing sandbox: {e}")

    @staticmethod
    def terminate_sandbox_by_id(sandbox_id: str) -> bool:
        """Stop a sandbox known only by its persisted id.

        Tries to reconnect and kill first, then a direct kill by id.
        """
        try:
            Sandbox.connect(sandbox_id, **_connection_opts()).kill()
            logger.info(f"Sandbox {sandbox_id} stopped via reconnect")
            return True
        except Exception as e:
            logger.warning(f"Could not reconnect to sandbox {sandbox_id}: {e}")

        try:
            killed = bool(Sandbox.kill(sandbox_id, **_connection_opts()))
        except Exception as e:
            logger.error(f"Failed to kill sandbox {sandbox_id}: {e}")
            return False

        if killed:
            logger.info(f"Sandbox {sandbox_id} killed by id")
        return killed

    @staticmethod
    def terminate_task_sandbox(task_id: UUID) -> bool:
        """Stop the sandbox persisted on a task, if it has one."""
        sandbox_id = TaskService.get_sandbox_id(task_id)
        if not sandbox_id:
            logger.info(f"Task {task_id} has no sandbox to terminate")
            return False
        return SandboxService.terminate_sandbox_by_id(sandbox_id)
