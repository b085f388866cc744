"""Celery application configuration."""

import logging

from celery import Celery
from celery.signals import worker_shutting_down

from app.core.config import settings

logger = logging.getLogger(__name__)

# Create Celery app
app = Celery("coding-agent")

# Configure Celery
app.conf.update(
    # Broker configuration
    broker_url=settings.celery_broker_url,
    broker_connection_retry_on_startup=True,
    broker_connection_retry=True,
    broker_connection_max_retries=10,
    # Result backend - disabled (fire-and-forget pattern, state tracked in the database)
    result_backend=None,
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Task execution
    task_track_started=True,
    task_acks_late=False,  # A redelivered message must never replay a pipeline
    worker_prefetch_multiplier=1,  # Only fetch one task at a time
    # Task routing
    task_routes={
        "app.tasks.agent_execution.*": {"queue": "agent_execution"},
    },
)

# Auto-discover tasks from app.tasks module
app.autodiscover_tasks(["app.tasks"])


@worker_shutting_down.connect
def log_worker_shutdown(sig=None, how=None, exitcode=None, **kwargs):
    """Warm shutdown lets running pipelines finish before the worker exits."""
    logger.info(f"Worker shutting down ({how}, signal {sig}); draining running tasks")
