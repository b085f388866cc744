"""Celery tasks."""

from .agent_execution import execute_agent_task

__all__ = ["execute_agent_task"]
