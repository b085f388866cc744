"""Business logic services."""

from .agent_execution import AgentExecutionService, ExecutionContext
from .agents import AgentType, get_agent
from .credentials import CredentialService
from .naming import NameGenerationService
from .publication import PublicationService
from .sandbox import SandboxService
from .task import TaskService
from .task_logger import TaskLogger
from .trigger import ExecutionTriggerService

__all__ = [
    "AgentExecutionService",
    "AgentType",
    "CredentialService",
    "ExecutionContext",
    "ExecutionTriggerService",
    "NameGenerationService",
    "PublicationService",
    "SandboxService",
    "TaskLogger",
    "TaskService",
    "get_agent",
]
