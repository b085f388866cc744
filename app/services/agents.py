"""Coding agent CLIs run inside the sandbox."""

import json
import logging
import shlex
from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID

from e2b_code_interpreter import Sandbox

from app.services.credentials import ApiKeys, ConnectorConfig, mcp_config_json
from app.services.sandbox import PROJECT_DIR, SandboxService
from app.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

INSTALL_TIMEOUT = 300


class AgentType(StrEnum):
    CLAUDE = "claude"
    CODEX = "codex"
    GEMINI = "gemini"
    CURSOR = "cursor"


@dataclass
class AgentResult:
    """What an agent run produced."""

    success: bool
    output: str | None = None
    agent_response: str | None = None
    error: str | None = None


class CodingAgent:
    """Base class for a coding agent CLI.

    Subclasses describe how to install, authenticate and invoke one CLI;
    `execute` drives the run and never raises for agent failures.
    """

    agent_type: AgentType
    binary: str
    install_command: str
    api_key_field: str
    api_key_env: str
    mcp_config_path: str | None = None

    def __init__(self, api_keys: ApiKeys):
        self.api_keys = api_keys

    def is_authenticated(self) -> bool:
        return bool(getattr(self.api_keys, self.api_key_field))

    def build_command(
        self, prompt: str, model: str | None, mcp_config_path: str | None
    ) -> str:
        raise NotImplementedError

    def parse_response(self, stdout: str) -> str | None:
        """Extract the agent's final answer from its stdout."""
        return stdout.strip() or None

    def ensure_installed(self, sandbox: Sandbox, task_logger: TaskLogger) -> bool:
        check = SandboxService.run_command(sandbox, f"command -v {self.binary}")
        if check.exit_code == 0:
            return True

        task_logger.info(f"Installing {self.agent_type} CLI")
        task_logger.command(self.install_command)
        result = SandboxService.run_command(
            sandbox, self.install_command, timeout=INSTALL_TIMEOUT
        )
        if result.exit_code != 0:
            task_logger.error(f"Failed to install {self.agent_type} CLI")
            logger.error(f"{self.binary} install failed: {result.stderr}")
            return False
        return True

    def write_mcp_config(
        self, sandbox: Sandbox, connectors: list[ConnectorConfig]
    ) -> str | None:
        if not connectors or self.mcp_config_path is None:
            return None
        sandbox.files.write(self.mcp_config_path, mcp_config_json(connectors))
        return self.mcp_config_path

    def execute(
        self,
        sandbox: Sandbox,
        prompt: str,
        task_logger: TaskLogger,
        model: str | None = None,
        connectors: list[ConnectorConfig] | None = None,
        task_id: UUID | None = None,
    ) -> AgentResult:
        if not self.is_authenticated():
            return AgentResult(
                success=False,
                error=f"{self.api_key_env} is required for the {self.agent_type} agent",
            )

        if not self.ensure_installed(sandbox, task_logger):
            return AgentResult(
                success=False, error=f"Failed to install {self.agent_type} CLI"
            )

        mcp_config_path = self.write_mcp_config(sandbox, connectors or [])
        if mcp_config_path:
            task_logger.info(f"Configured {len(connectors)} connector(s)")

        command = self.build_command(prompt, model, mcp_config_path)
        task_logger.command(f"{self.binary} ({self.agent_type} agent)")
        logger.info(f"Running {self.agent_type} agent for task {task_id}")

        # No command timeout: the run is bounded by the task deadline
        result = SandboxService.run_command(sandbox, command, timeout=0, cwd=PROJECT_DIR)
        if result.exit_code != 0:
            return AgentResult(
                success=False,
                output=result.stdout,
                error=result.stderr.strip()
                or f"{self.agent_type} agent exited with code {result.exit_code}",
            )

        return AgentResult(
            success=True,
            output=result.stdout,
            agent_response=self.parse_response(result.stdout),
        )


class ClaudeAgent(CodingAgent):
    agent_type = AgentType.CLAUDE
    binary = "claude"
    install_command = "npm install -g @anthropic-ai/claude-code"
    api_key_field = "anthropic_api_key"
    api_key_env = "ANTHROPIC_API_KEY"
    mcp_config_path = "/home/user/.mcp-config.json"

    def build_command(self, prompt, model, mcp_config_path):
        parts = ["claude", "-p", "--dangerously-skip-permissions", "--output-format", "json"]
        if model:
            parts += ["--model", shlex.quote(model)]
        if mcp_config_path:
            parts += ["--mcp-config", mcp_config_path]
        parts.append(shlex.quote(prompt))
        return " ".join(parts)

    def execute(self, sandbox, prompt, task_logger, model=None, connectors=None, task_id=None):
        result = super().execute(sandbox, prompt, task_logger, model, connectors, task_id)
        if result.success and result.agent_response is None and result.output:
            return AgentResult(
                success=False,
                output=result.output,
                error="Claude reported an error",
            )
        return result

    def parse_response(self, stdout):
        try:
            data = json.loads(stdout)
        except ValueError:
            return super().parse_response(stdout)
        if not isinstance(data, dict) or data.get("is_error"):
            return None
        return data.get("result")


class CodexAgent(CodingAgent):
    agent_type = AgentType.CODEX
    binary = "codex"
    install_command = "npm install -g @openai/codex"
    api_key_field = "openai_api_key"
    api_key_env = "OPENAI_API_KEY"

    def build_command(self, prompt, model, mcp_config_path):
        parts = ["codex", "exec", "--dangerously-bypass-approvals-and-sandbox"]
        if model:
            parts += ["-m", shlex.quote(model)]
        parts.append(shlex.quote(prompt))
        return " ".join(parts)


class GeminiAgent(CodingAgent):
    agent_type = AgentType.GEMINI
    binary = "gemini"
    install_command = "npm install -g @google/gemini-cli"
    api_key_field = "gemini_api_key"
    api_key_env = "GEMINI_API_KEY"
    mcp_config_path = "/home/user/.gemini/settings.json"

    def build_command(self, prompt, model, mcp_config_path):
        parts = ["gemini", "--yolo"]
        if model:
            parts += ["-m", shlex.quote(model)]
        parts += ["-p", shlex.quote(prompt)]
        return " ".join(parts)


class CursorAgent(CodingAgent):
    agent_type = AgentType.CURSOR
    binary = "cursor-agent"
    install_command = "curl https://cursor.com/install -fsS | bash"
    api_key_field = "cursor_api_key"
    api_key_env = "CURSOR_API_KEY"
    mcp_config_path = "/home/user/.cursor/mcp.json"

    def build_command(self, prompt, model, mcp_config_path):
        parts = ["cursor-agent", "-p", "--force", "--output-format", "text"]
        if model:
            parts += ["--model", shlex.quote(model)]
        parts.append(shlex.quote(prompt))
        return " ".join(parts)


AGENTS: dict[AgentType, type[CodingAgent]] = {
    AgentType.CLAUDE: ClaudeAgent,
    AgentType.CODEX: CodexAgent,
    AgentType.GEMINI: GeminiAgent,
    AgentType.CURSOR: CursorAgent,
}


def get_agent(agent_type: str, api_keys: ApiKeys) -> CodingAgent:
    """Instantiate the agent for `agent_type`.

    Raises:
        ValueError: If the agent type is unknown
    """
    try:
        agent_cls = AGENTS[AgentType(agent_type)]
    except ValueError:
        raise ValueError(f"Unknown agent: {agent_type}") from None
    return agent_cls(api_keys)
