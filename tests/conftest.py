"""Pytest configuration and fixtures."""

import os
import tempfile

from cryptography.fernet import Fernet

# Set test environment before any app module reads settings
os.environ["APP_ENV"] = "test"
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite:///{os.path.join(tempfile.gettempdir(), 'coding_agent_test.db')}",
)
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("API_SECRET_KEY", "test-api-key")
os.environ.setdefault("INTERNAL_API_SECRET", "test-internal-secret")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.core.database import clean_database, close_db, create_tables  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Task, TaskStatus  # noqa: E402
from app.services import TaskService  # noqa: E402

TEST_USER_ID = "user-123"


def create_test_task(
    prompt: str = "Test task prompt",
    repo_url: str | None = "https://github.com/test/repo.git",
    user_id: str = TEST_USER_ID,
    status: TaskStatus | None = None,
    **fields,
) -> Task:
    """Helper function to create a test task with default values."""
    task = TaskService.create_task(
        user_id=user_id, prompt=prompt, repo_url=repo_url, **fields
    )
    if status is not None:
        task = TaskService.update_task(task.id, status=status.value)
    return task


@pytest.fixture(autouse=True, scope="function")
def mock_celery_task(mocker):
    """Mock Celery task execution for all tests."""
    return mocker.patch("app.tasks.agent_execution.execute_agent_task.delay")


@pytest.fixture(autouse=True, scope="function")
def clean_db():
    """Initialize and clean database for each test."""
    create_tables()

    # Clean all tables before test to ensure isolation
    clean_database()

    yield

    # Close DB connections
    close_db()


@pytest.fixture(autouse=True, scope="function")
def fast_polling(mocker):
    """Shrink poll and wait intervals so pipeline tests run quickly."""
    from app.core.config import settings

    mocker.patch.object(settings, "poll_interval_seconds", 0.01)
    mocker.patch.object(settings, "branch_name_wait_seconds", 0.2)


@pytest.fixture(scope="function")
def test_client():
    """Create a test client."""
    with TestClient(app) as client:
        yield client


@pytest.fixture(scope="function")
def auth_headers():
    """Provide authentication headers for API requests."""
    from app.core.config import settings

    return {"X-API-Key": settings.api_secret_key, "X-User-Id": TEST_USER_ID}
