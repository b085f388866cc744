"""Tests for TaskService."""

from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from app.core.errors import NotFoundError
from app.models import TaskStatus
from app.services import TaskService
from tests.conftest import TEST_USER_ID, create_test_task


def test_create_task():
    """Test creating a task."""
    task = TaskService.create_task(
        user_id=TEST_USER_ID,
        prompt="Add a health endpoint",
        repo_url="https://github.com/test/repo.git",
        selected_agent="codex",
        max_duration=30,
    )

    assert task.id is not None
    assert task.user_id == TEST_USER_ID
    assert task.prompt == "Add a health endpoint"
    assert task.selected_agent == "codex"
    assert task.max_duration == 30
    assert task.status == "pending"
    assert task.progress == 0
    assert task.branch_name is None
    assert task.sandbox_id is None
    assert task.created_at is not None


def test_create_task_empty_repo_url_is_standalone():
    """Test an empty repo URL is stored as no repository."""
    task = TaskService.create_task(user_id=TEST_USER_ID, prompt="Hi", repo_url="")

    assert task.repo_url is None


def test_get_task_by_id():
    """Test getting a task by ID."""
    created_task = create_test_task(prompt="Test task for retrieval")

    retrieved_task = TaskService.get_task_by_id(created_task.id)

    assert retrieved_task.id == created_task.id
    assert retrieved_task.prompt == created_task.prompt


def test_get_task_by_id_not_found():
    """Test getting a non-existent task."""
    non_existent_id = uuid4()

    with pytest.raises(NotFoundError) as exc_info:
        TaskService.get_task_by_id(non_existent_id)

    assert f"Task with id {non_existent_id} not found" in str(exc_info.value)


def test_get_user_task_other_owner():
    """Test a task is invisible to users who do not own it."""
    task = create_test_task()

    with pytest.raises(NotFoundError):
        TaskService.get_user_task(task.id, "someone-else")


def test_list_tasks():
    """Test listing only the user's tasks, newest first."""
    create_test_task(prompt="Task 1")
    create_test_task(prompt="Task 2")
    create_test_task(prompt="Other user's task", user_id="user-999")

    tasks, total = TaskService.list_tasks(TEST_USER_ID, limit=10, offset=0)

    assert total == 2
    assert [task.prompt for task in tasks] == ["Task 2", "Task 1"]


def test_list_tasks_pagination():
    """Test listing tasks with pagination."""
    for i in range(5):
        create_test_task(prompt=f"Task {i}")

    tasks, total = TaskService.list_tasks(TEST_USER_ID, limit=2, offset=2)

    assert len(tasks) == 2
    assert total == 5


def test_soft_delete_hides_task():
    """Test soft-deleted tasks disappear from reads."""
    task = create_test_task()

    TaskService.soft_delete_task(task.id, TEST_USER_ID)

    with pytest.raises(NotFoundError):
        TaskService.get_task_by_id(task.id)
    tasks, total = TaskService.list_tasks(TEST_USER_ID)
    assert tasks == []
    assert total == 0


def test_soft_delete_other_owner():
    """Test users cannot delete tasks they do not own."""
    task = create_test_task()

    with pytest.raises(NotFoundError):
        TaskService.soft_delete_task(task.id, "someone-else")

    assert TaskService.get_task_by_id(task.id).deleted_at is None


def test_transition_status():
    """Test a transition from the expected status succeeds."""
    task = create_test_task()

    updated = TaskService.transition_status(
        task.id, TaskStatus.PROCESSING, expected=TaskStatus.PENDING
    )

    assert updated is not None
    assert updated.status == "processing"
    assert updated.completed_at is None


def test_transition_status_terminal_sets_completed_at():
    """Test terminal statuses record the error and completion time."""
    task = create_test_task(status=TaskStatus.PROCESSING)

    updated = TaskService.transition_status(
        task.id, TaskStatus.ERROR, expected=TaskStatus.PROCESSING, error="boom"
    )

    assert updated.status == "error"
    assert updated.error == "boom"
    assert updated.completed_at is not None


def test_transition_status_precondition_failed():
    """Test a transition from the wrong status is a no-op."""
    task = create_test_task(status=TaskStatus.PENDING)

    updated = TaskService.transition_status(
        task.id, TaskStatus.COMPLETED, expected=TaskStatus.PROCESSING
    )

    assert updated is None
    assert TaskService.get_task_by_id(task.id).status == "pending"


def test_stopped_is_not_overwritten():
    """Test completion or error cannot replace a stop."""
    task = create_test_task(status=TaskStatus.PROCESSING)
    TaskService.transition_status(
        task.id,
        TaskStatus.STOPPED,
        expected=TaskStatus.PROCESSING,
        error="Task was stopped by user",
    )

    completed = TaskService.transition_status(
        task.id, TaskStatus.COMPLETED, expected=TaskStatus.PROCESSING
    )
    errored = TaskService.transition_status(
        task.id, TaskStatus.ERROR, expected=TaskStatus.PROCESSING, error="late failure"
    )

    assert completed is None
    assert errored is None
    task = TaskService.get_task_by_id(task.id)
    assert task.status == "stopped"
    assert task.error == "Task was stopped by user"


def test_update_progress_is_monotonic():
    """Test progress never moves backwards."""
    task = create_test_task(status=TaskStatus.PROCESSING)

    assert TaskService.update_progress(task.id, 50) is True
    assert TaskService.update_progress(task.id, 20) is False
    assert TaskService.update_progress(task.id, 90) is True

    assert TaskService.get_task_by_id(task.id).progress == 90


def test_update_progress_requires_processing():
    """Test progress is frozen once the task left processing."""
    task = create_test_task(status=TaskStatus.STOPPED)

    assert TaskService.update_progress(task.id, 50) is False
    assert TaskService.get_task_by_id(task.id).progress == 0


def test_set_branch_name_if_unset():
    """Test the first branch name written wins."""
    task = create_test_task()

    first = TaskService.set_branch_name_if_unset(task.id, "agent/add-login")
    second = TaskService.set_branch_name_if_unset(task.id, "agent/fallback")

    assert first == "agent/add-login"
    assert second == "agent/add-login"
    assert TaskService.get_branch_name(task.id) == "agent/add-login"


def test_set_title_if_unset():
    """Test the first title written wins."""
    task = create_test_task()

    TaskService.set_title_if_unset(task.id, "Add login page")

    assert TaskService.set_title_if_unset(task.id, "Other") == "Add login page"


def test_is_task_stopped():
    """Test reading the stop flag."""
    running = create_test_task(status=TaskStatus.PROCESSING)
    stopped = create_test_task(status=TaskStatus.STOPPED)

    assert TaskService.is_task_stopped(running.id) is False
    assert TaskService.is_task_stopped(stopped.id) is True


def test_is_task_stopped_retries_store_errors(mocker):
    """Test read failures are retried and then reported as not stopped."""
    task = create_test_task(status=TaskStatus.STOPPED)
    mock_session = mocker.patch(
        "app.services.task.get_session",
        side_effect=OperationalError("SELECT", {}, Exception("db down")),
    )

    assert TaskService.is_task_stopped(task.id) is False
    assert mock_session.call_count == 3


def test_messages_in_creation_order():
    """Test task messages are returned oldest first."""
    task = create_test_task()
    TaskService.add_message(task.id, "user", "Please add tests")
    TaskService.add_message(task.id, "agent", "Added tests")

    messages = TaskService.list_messages(task.id)

    assert [(m.role, m.content) for m in messages] == [
        ("user", "Please add tests"),
        ("agent", "Added tests"),
    ]


def test_get_task_logs_empty():
    """Test getting logs for a task with none."""
    task = create_test_task()

    logs, total = TaskService.get_task_logs(task.id)

    assert logs == []
    assert total == 0


def test_get_task_logs_with_pagination():
    """Test getting log entries with pagination."""
    task = create_test_task()
    for i in range(5):
        TaskService.add_log(task.id, "info", f"Step {i}")

    logs, total = TaskService.get_task_logs(task.id, limit=2, offset=1)

    assert total == 5
    assert [log.message for log in logs] == ["Step 1", "Step 2"]


def test_get_task_logs_not_found():
    """Test getting logs for a non-existent task."""
    with pytest.raises(NotFoundError):
        TaskService.get_task_logs(uuid4())
