"""API client service for interacting with the Coding Agent API."""

import os
import time
from typing import Any

import httpx

TERMINAL_STATUSES = ("completed", "error", "stopped")


class ApiClientService:
    """Service for Coding Agent API client operations."""

    @staticmethod
    def get_client(
        base_url: str | None = None,
        api_key: str | None = None,
        user_id: str | None = None,
    ) -> httpx.Client:
        """Get configured HTTP client.

        Args:
            base_url: API base URL (defaults to CODING_AGENT_URL env var or http://localhost:8000)
            api_key: API key for authentication (defaults to API_SECRET_KEY env var)
            user_id: Acting user (defaults to CODING_AGENT_USER_ID env var)

        Returns:
            Configured httpx.Client with base_url, headers, and timeout
        """
        if base_url is None:
            base_url = os.getenv("CODING_AGENT_URL", "http://localhost:8000")
        if api_key is None:
            api_key = os.getenv("API_SECRET_KEY", "")
        if user_id is None:
            user_id = os.getenv("CODING_AGENT_USER_ID", "")

        return httpx.Client(
            base_url=base_url,
            headers={"X-API-Key": api_key, "X-User-Id": user_id},
            timeout=30.0,
        )

    @staticmethod
    def _send(
        method: str, path: str, client: httpx.Client | None = None, **kwargs: Any
    ) -> httpx.Response:
        should_close = client is None
        if client is None:
            client = ApiClientService.get_client()

        try:
            response = client.request(method, path, **kwargs)
            response.raise_for_status()
            return response
        finally:
            if should_close:
                client.close()

    @staticmethod
    def create_task(
        prompt: str,
        repo_url: str | None = None,
        selected_agent: str = "claude",
        selected_model: str | None = None,
        install_dependencies: bool = False,
        keep_alive: bool = False,
        max_duration: int | None = None,
        client: httpx.Client | None = None,
    ) -> dict[str, Any]:
        """Create a new task; the server starts executing it immediately.

        Args:
            prompt: Natural language prompt for the task
            repo_url: Repository URL to clone, or None for a standalone task
            selected_agent: Agent CLI to run (claude, codex, gemini, cursor)
            selected_model: Optional model passed to the agent
            install_dependencies: Install project dependencies before the agent runs
            keep_alive: Keep the sandbox running after completion
            max_duration: Execution budget in minutes
            client: Optional httpx.Client to use (if None, creates new client)

        Returns:
            Task data as dict with id, status, prompt, repo_url, etc.

        Raises:
            httpx.HTTPStatusError: If API request fails
        """
        payload: dict[str, Any] = {
            "prompt": prompt,
            "selected_agent": selected_agent,
            "install_dependencies": install_dependencies,
            "keep_alive": keep_alive,
        }
        if repo_url is not None:
            payload["repo_url"] = repo_url
        if selected_model is not None:
            payload["selected_model"] = selected_model
        if max_duration is not None:
            payload["max_duration"] = max_duration

        return ApiClientService._send("POST", "/v1/tasks", client, json=payload).json()

    @staticmethod
    def get_task(task_id: str, client: httpx.Client | None = None) -> dict[str, Any]:
        """Get task by ID.

        Raises:
            httpx.HTTPStatusError: If API request fails (e.g., 404 for not found)
        """
        return ApiClientService._send("GET", f"/v1/tasks/{task_id}", client).json()

    @staticmethod
    def list_tasks(
        limit: int = 10, offset: int = 0, client: httpx.Client | None = None
    ) -> dict[str, Any]:
        return ApiClientService._send(
            "GET", "/v1/tasks", client, params={"limit": limit, "offset": offset}
        ).json()

    @staticmethod
    def stop_task(task_id: str, client: httpx.Client | None = None) -> dict[str, Any]:
        """Stop a running task.

        Raises:
            httpx.HTTPStatusError: 400 if the task is not in progress
        """
        return ApiClientService._send(
            "PATCH", f"/v1/tasks/{task_id}", client, json={"action": "stop"}
        ).json()

    @staticmethod
    def delete_task(task_id: str, client: httpx.Client | None = None) -> None:
        ApiClientService._send("DELETE", f"/v1/tasks/{task_id}", client)

    @staticmethod
    def get_logs(
        task_id: str,
        limit: int = 100,
        offset: int = 0,
        client: httpx.Client | None = None,
    ) -> dict[str, Any]:
        return ApiClientService._send(
            "GET",
            f"/v1/tasks/{task_id}/logs",
            client,
            params={"limit": limit, "offset": offset},
        ).json()

    @staticmethod
    def get_messages(task_id: str, client: httpx.Client | None = None) -> list[dict]:
        response = ApiClientService._send("GET", f"/v1/tasks/{task_id}/messages", client)
        return response.json()["messages"]

    @staticmethod
    def wait_for_task(
        task_id: str,
        timeout: int = 600,
        poll_interval: int = 5,
    ) -> dict[str, Any]:
        """Wait for task to finish with polling.

        Args:
            task_id: Task ID to wait for
            timeout: Maximum time to wait in seconds (default: 600)
            poll_interval: Time between status checks in seconds (default: 5)

        Returns:
            Final task data once completed, errored or stopped

        Raises:
            TimeoutError: If task doesn't finish within timeout period
            httpx.HTTPStatusError: If the API returns an error
        """
        start_time = time.time()

        while True:
            if time.time() - start_time > timeout:
                raise TimeoutError(f"Task {task_id} did not complete within {timeout}s")

            task = ApiClientService.get_task(task_id)

            if task["status"] in TERMINAL_STATUSES:
                return task

            time.sleep(poll_interval)
