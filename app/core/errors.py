"""Core exception classes for the application."""


class NotFoundError(Exception):
    """Raised when a resource is not found."""


class UnauthorizedError(Exception):
    """Raised when the caller may not act on a resource."""


class InvalidTaskStateError(Exception):
    """Raised when a task is not in the status an operation requires."""

    def __init__(self, message: str, status: str | None = None):
        super().__init__(message)
        self.status = status


class AlreadyProcessingError(InvalidTaskStateError):
    """Raised when starting a task that is already running."""


class AlreadyTerminalError(InvalidTaskStateError):
    """Raised when starting a task that has already finished."""


class EnvironmentProvisioningError(Exception):
    """Raised when the sandbox could not be created."""


class AgentExecutionError(Exception):
    """Raised when the coding agent reports a failure."""


class TaskTimeoutError(Exception):
    """Raised when a task exceeds its execution budget."""


class TaskCancelledError(Exception):
    """Raised at a checkpoint once a stop has been observed.

    Not a failure: the pipeline unwinds, cleans up and leaves the status alone.
    """


class NameGenerationError(Exception):
    """Raised when an AI-generated name or message could not be produced."""
