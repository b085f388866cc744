"""Database models."""

from .connector import Connector
from .task import TERMINAL_STATUSES, Task, TaskStatus
from .task_log import LogType, TaskLog
from .task_message import MessageRole, TaskMessage
from .user_key import UserKey, UserSetting

__all__ = [
    "TERMINAL_STATUSES",
    "Connector",
    "LogType",
    "MessageRole",
    "Task",
    "TaskLog",
    "TaskMessage",
    "TaskStatus",
    "UserKey",
    "UserSetting",
]
