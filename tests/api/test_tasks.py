"""Tests for task API endpoints."""

from uuid import uuid4

from app.models import TaskStatus
from app.services import TaskLogger, TaskService
from tests.conftest import TEST_USER_ID, create_test_task

INTERNAL_HEADERS = {"X-Internal-Secret": "test-internal-secret"}


def test_health_requires_api_key(test_client, auth_headers):
    """Test GET /health endpoint."""
    assert test_client.get("/health").status_code == 401
    response = test_client.get("/health", headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_create_task(test_client, auth_headers, mock_celery_task):
    """Test POST /v1/tasks creates the task and starts it."""
    response = test_client.post(
        "/v1/tasks",
        json={
            "prompt": "Add a login page",
            "repo_url": "https://github.com/test/repo.git",
            "selected_agent": "codex",
            "max_duration": 30,
        },
        headers=auth_headers,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["prompt"] == "Add a login page"
    assert data["repo_url"] == "https://github.com/test/repo.git"
    assert data["selected_agent"] == "codex"
    assert data["user_id"] == TEST_USER_ID
    assert data["status"] == "processing"
    assert data["progress"] == 0
    assert data["sandbox_id"] is None

    mock_celery_task.assert_called_once()
    assert mock_celery_task.call_args.args[0] == data["id"]
    assert mock_celery_task.call_args.args[2] == 30


def test_create_standalone_task(test_client, auth_headers):
    """Test a task without a repository is accepted."""
    response = test_client.post(
        "/v1/tasks", json={"prompt": "Build a todo app"}, headers=auth_headers
    )

    assert response.status_code == 201
    assert response.json()["repo_url"] is None


def test_create_task_validation(test_client, auth_headers, mock_celery_task):
    """Test invalid payloads are rejected before anything is stored."""
    for payload in (
        {"prompt": ""},
        {"prompt": "x", "selected_agent": "unknown"},
        {"prompt": "x", "max_duration": 0},
    ):
        response = test_client.post("/v1/tasks", json=payload, headers=auth_headers)
        assert response.status_code == 422

    mock_celery_task.assert_not_called()
    assert TaskService.list_tasks(TEST_USER_ID)[1] == 0


def test_create_task_requires_auth(test_client):
    """Test requests without credentials are rejected."""
    response = test_client.post("/v1/tasks", json={"prompt": "x"})
    assert response.status_code == 401

    response = test_client.post(
        "/v1/tasks", json={"prompt": "x"}, headers={"X-API-Key": "test-api-key"}
    )
    assert response.status_code == 401


def test_get_task(test_client, auth_headers):
    """Test GET /v1/tasks/{task_id} endpoint."""
    task = create_test_task(prompt="Task to retrieve via API")

    response = test_client.get(f"/v1/tasks/{task.id}", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["id"] == str(task.id)
    assert data["prompt"] == task.prompt
    assert data["status"] == "pending"


def test_get_task_not_found(test_client, auth_headers):
    """Test GET /v1/tasks/{task_id} with non-existent ID."""
    response = test_client.get(f"/v1/tasks/{uuid4()}", headers=auth_headers)

    assert response.status_code == 404
    assert "not found" in response.json()["detail"]


def test_get_task_of_other_user(test_client, auth_headers):
    """Test other users' tasks are invisible."""
    task = create_test_task(user_id="user-999")

    response = test_client.get(f"/v1/tasks/{task.id}", headers=auth_headers)

    assert response.status_code == 404


def test_list_tasks(test_client, auth_headers):
    """Test GET /v1/tasks only lists the caller's tasks."""
    create_test_task(prompt="Task 1")
    create_test_task(prompt="Task 2")
    create_test_task(prompt="Not mine", user_id="user-999")

    response = test_client.get("/v1/tasks", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert {task["prompt"] for task in data["tasks"]} == {"Task 1", "Task 2"}


def test_list_tasks_pagination(test_client, auth_headers):
    """Test GET /v1/tasks with pagination."""
    for i in range(5):
        create_test_task(prompt=f"Task {i}")

    response = test_client.get("/v1/tasks?limit=2&offset=1", headers=auth_headers)

    data = response.json()
    assert len(data["tasks"]) == 2
    assert data["total"] == 5
    assert data["limit"] == 2
    assert data["offset"] == 1


def test_stop_task(mocker, test_client, auth_headers):
    """Test PATCH /v1/tasks/{task_id} stops a running task."""
    terminate = mocker.patch("app.api.tasks.SandboxService.terminate_task_sandbox")
    task = create_test_task(status=TaskStatus.PROCESSING)

    response = test_client.patch(
        f"/v1/tasks/{task.id}", json={"action": "stop"}, headers=auth_headers
    )

    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Task stopped successfully"
    assert data["task"]["status"] == "stopped"
    assert data["task"]["completed_at"] is not None
    terminate.assert_called_once_with(task.id)

    logs, _ = TaskService.get_task_logs(task.id)
    assert logs[-1].type == "error"
    assert logs[-1].message == "Task was stopped by user"


def test_stop_task_not_running(mocker, test_client, auth_headers):
    """Test only processing tasks can be stopped."""
    terminate = mocker.patch("app.api.tasks.SandboxService.terminate_task_sandbox")
    task = create_test_task(status=TaskStatus.COMPLETED)

    response = test_client.patch(
        f"/v1/tasks/{task.id}", json={"action": "stop"}, headers=auth_headers
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Task can only be stopped when it is in progress"
    assert TaskService.get_task_by_id(task.id).status == "completed"
    terminate.assert_not_called()


def test_stop_task_invalid_action(test_client, auth_headers):
    """Test unknown actions are rejected."""
    task = create_test_task(status=TaskStatus.PROCESSING)

    response = test_client.patch(
        f"/v1/tasks/{task.id}", json={"action": "pause"}, headers=auth_headers
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid action"


def test_stop_task_of_other_user(test_client, auth_headers):
    """Test users cannot stop each other's tasks."""
    task = create_test_task(user_id="user-999", status=TaskStatus.PROCESSING)

    response = test_client.patch(
        f"/v1/tasks/{task.id}", json={"action": "stop"}, headers=auth_headers
    )

    assert response.status_code == 404
    assert TaskService.get_task_by_id(task.id).status == "processing"


def test_delete_task(test_client, auth_headers):
    """Test DELETE /v1/tasks/{task_id} hides the task."""
    task = create_test_task()

    response = test_client.delete(f"/v1/tasks/{task.id}", headers=auth_headers)

    assert response.status_code == 204
    assert test_client.get(f"/v1/tasks/{task.id}", headers=auth_headers).status_code == 404
    assert test_client.get("/v1/tasks", headers=auth_headers).json()["total"] == 0


def test_delete_task_not_found(test_client, auth_headers):
    """Test deleting an unknown task."""
    response = test_client.delete(f"/v1/tasks/{uuid4()}", headers=auth_headers)

    assert response.status_code == 404


def test_execute_task_internal(test_client, mock_celery_task):
    """Test POST /v1/tasks/{task_id}/execute with the internal secret."""
    task = create_test_task()

    response = test_client.post(f"/v1/tasks/{task.id}/execute", headers=INTERNAL_HEADERS)

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "taskId": str(task.id),
        "message": "Task execution started",
    }
    mock_celery_task.assert_called_once()


def test_execute_task_with_user_id(test_client, mock_celery_task):
    """Test API key callers must name the owning user."""
    task = create_test_task()

    response = test_client.post(
        f"/v1/tasks/{task.id}/execute",
        json={"userId": TEST_USER_ID},
        headers={"X-API-Key": "test-api-key"},
    )

    assert response.status_code == 200
    assert TaskService.get_task_by_id(task.id).status == "processing"


def test_execute_task_unauthorized(test_client, mock_celery_task):
    """Test execute requests without valid credentials."""
    task = create_test_task()
    url = f"/v1/tasks/{task.id}/execute"

    assert test_client.post(url, json={"userId": TEST_USER_ID}).status_code == 401
    assert (
        test_client.post(url, headers={"X-Internal-Secret": "wrong"}).status_code == 401
    )
    assert test_client.post(url, headers={"X-API-Key": "test-api-key"}).status_code == 401
    assert (
        test_client.post(
            url, json={"userId": "user-999"}, headers={"X-API-Key": "test-api-key"}
        ).status_code
        == 401
    )
    mock_celery_task.assert_not_called()


def test_execute_task_not_found(test_client):
    """Test executing an unknown task."""
    response = test_client.post(f"/v1/tasks/{uuid4()}/execute", headers=INTERNAL_HEADERS)

    assert response.status_code == 404


def test_execute_task_already_processing(test_client, mock_celery_task):
    """Test a running task is not started twice."""
    task = create_test_task(status=TaskStatus.PROCESSING)

    response = test_client.post(f"/v1/tasks/{task.id}/execute", headers=INTERNAL_HEADERS)

    assert response.status_code == 400
    assert response.json()["detail"]["status"] == "processing"
    mock_celery_task.assert_not_called()


def test_execute_task_already_finished(test_client):
    """Test a finished task cannot be restarted."""
    task = create_test_task(status=TaskStatus.COMPLETED)

    response = test_client.post(f"/v1/tasks/{task.id}/execute", headers=INTERNAL_HEADERS)

    assert response.status_code == 400
    assert response.json()["detail"] == {
        "error": "Task has already finished",
        "status": "completed",
    }


def test_get_task_messages(test_client, auth_headers):
    """Test GET /v1/tasks/{task_id}/messages returns the conversation."""
    task = create_test_task()
    TaskService.add_message(task.id, "user", "Add a login page")
    TaskService.add_message(task.id, "agent", "Added it")

    response = test_client.get(f"/v1/tasks/{task.id}/messages", headers=auth_headers)

    assert response.status_code == 200
    messages = response.json()["messages"]
    assert [(m["role"], m["content"]) for m in messages] == [
        ("user", "Add a login page"),
        ("agent", "Added it"),
    ]


def test_get_task_logs(test_client, auth_headers):
    """Test GET /v1/tasks/{task_id}/logs endpoint."""
    task = create_test_task()
    task_logger = TaskLogger(task.id)
    task_logger.info("Creating sandbox")
    task_logger.command("npm install")

    response = test_client.get(f"/v1/tasks/{task.id}/logs", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert [(log["type"], log["message"]) for log in data["logs"]] == [
        ("info", "Creating sandbox"),
        ("command", "$ npm install"),
    ]


def test_get_task_logs_of_other_user(test_client, auth_headers):
    """Test logs of other users' tasks are invisible."""
    task = create_test_task(user_id="user-999")

    response = test_client.get(f"/v1/tasks/{task.id}/logs", headers=auth_headers)

    assert response.status_code == 404
