"""Tests for ApiClientService."""

import os
from uuid import UUID

import httpx
import pytest

from app.services.api_client import ApiClientService

TEST_UUID = UUID("12345678-1234-5678-1234-567812345678")


def make_task(status: str = "processing") -> dict:
    return {
        "id": str(TEST_UUID),
        "prompt": "Test prompt",
        "repo_url": "https://github.com/test/repo.git",
        "selected_agent": "claude",
        "status": status,
        "progress": 0,
    }


@pytest.fixture
def mock_client(mocker):
    """Patch get_client with a mock whose responses return `make_task()`."""
    client = mocker.Mock(spec=httpx.Client)
    client.request.return_value.json.return_value = make_task()
    mocker.patch.object(ApiClientService, "get_client", return_value=client)
    return client


def test_get_client_default_values(mocker):
    """Test get_client with default values from environment."""
    mocker.patch.dict(
        os.environ,
        {
            "CODING_AGENT_URL": "http://test.example.com",
            "API_SECRET_KEY": "test-key",
            "CODING_AGENT_USER_ID": "user-123",
        },
    )

    client = ApiClientService.get_client()

    assert str(client.base_url) == "http://test.example.com"
    assert client.headers["X-API-Key"] == "test-key"
    assert client.headers["X-User-Id"] == "user-123"
    assert client.timeout.read == 30.0
    client.close()


def test_get_client_with_explicit_values():
    """Test get_client with explicitly provided values."""
    client = ApiClientService.get_client(
        base_url="http://custom.example.com", api_key="custom-key", user_id="user-9"
    )

    assert str(client.base_url) == "http://custom.example.com"
    assert client.headers["X-API-Key"] == "custom-key"
    assert client.headers["X-User-Id"] == "user-9"
    client.close()


def test_create_task(mock_client):
    """Test creating a task sends only the given options."""
    task = ApiClientService.create_task(
        prompt="Test prompt",
        repo_url="https://github.com/test/repo.git",
        selected_agent="codex",
        max_duration=30,
    )

    assert task["id"] == str(TEST_UUID)
    mock_client.request.assert_called_once_with(
        "POST",
        "/v1/tasks",
        json={
            "prompt": "Test prompt",
            "selected_agent": "codex",
            "install_dependencies": False,
            "keep_alive": False,
            "repo_url": "https://github.com/test/repo.git",
            "max_duration": 30,
        },
    )
    mock_client.request.return_value.raise_for_status.assert_called_once()
    mock_client.close.assert_called_once()


def test_create_task_with_provided_client(mocker):
    """Test a caller-provided client is not closed."""
    client = mocker.Mock(spec=httpx.Client)
    client.request.return_value.json.return_value = make_task()

    ApiClientService.create_task(prompt="Test", client=client)

    client.close.assert_not_called()
    assert "repo_url" not in client.request.call_args.kwargs["json"]


def test_create_task_http_error(mock_client, mocker):
    """Test HTTP errors propagate to the caller."""
    mock_client.request.return_value.raise_for_status.side_effect = httpx.HTTPStatusError(
        "Bad Request", request=mocker.Mock(), response=mocker.Mock(status_code=400)
    )

    with pytest.raises(httpx.HTTPStatusError):
        ApiClientService.create_task(prompt="Test")

    mock_client.close.assert_called_once()


def test_get_task(mock_client):
    """Test getting a task."""
    task = ApiClientService.get_task(str(TEST_UUID))

    assert task["status"] == "processing"
    mock_client.request.assert_called_once_with("GET", f"/v1/tasks/{TEST_UUID}")


def test_list_tasks(mock_client):
    """Test listing tasks with pagination."""
    mock_client.request.return_value.json.return_value = {
        "tasks": [make_task()],
        "total": 1,
        "limit": 5,
        "offset": 0,
    }

    result = ApiClientService.list_tasks(limit=5)

    assert result["total"] == 1
    mock_client.request.assert_called_once_with(
        "GET", "/v1/tasks", params={"limit": 5, "offset": 0}
    )


def test_stop_task(mock_client):
    """Test stopping a task sends the stop action."""
    ApiClientService.stop_task(str(TEST_UUID))

    mock_client.request.assert_called_once_with(
        "PATCH", f"/v1/tasks/{TEST_UUID}", json={"action": "stop"}
    )


def test_delete_task(mock_client):
    """Test deleting a task."""
    ApiClientService.delete_task(str(TEST_UUID))

    mock_client.request.assert_called_once_with("DELETE", f"/v1/tasks/{TEST_UUID}")


def test_get_logs(mock_client):
    """Test getting task logs."""
    mock_client.request.return_value.json.return_value = {
        "logs": [{"type": "info", "message": "Creating sandbox"}],
        "total": 1,
        "limit": 100,
        "offset": 0,
    }

    result = ApiClientService.get_logs(str(TEST_UUID))

    assert result["logs"][0]["message"] == "Creating sandbox"


def test_get_messages(mock_client):
    """Test getting the task conversation."""
    mock_client.request.return_value.json.return_value = {
        "messages": [{"role": "user", "content": "Test prompt"}]
    }

    messages = ApiClientService.get_messages(str(TEST_UUID))

    assert messages == [{"role": "user", "content": "Test prompt"}]


def test_wait_for_task(mocker):
    """Test waiting until the task reaches a terminal status."""
    mocker.patch("app.services.api_client.time.sleep")
    mocker.patch.object(
        ApiClientService,
        "get_task",
        side_effect=[make_task("processing"), make_task("stopped")],
    )

    task = ApiClientService.wait_for_task(str(TEST_UUID), poll_interval=1)

    assert task["status"] == "stopped"


def test_wait_for_task_timeout(mocker):
    """Test wait_for_task gives up after the timeout."""
    mocker.patch("app.services.api_client.time.sleep")
    mocker.patch("app.services.api_client.time.time", side_effect=[0, 0, 11])
    mocker.patch.object(ApiClientService, "get_task", return_value=make_task())

    with pytest.raises(TimeoutError, match="did not complete within 10s"):
        ApiClientService.wait_for_task(str(TEST_UUID), timeout=10)
