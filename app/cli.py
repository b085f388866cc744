"""Coding Agent CLI - command-line interface for the coding-agent API."""

import time
from datetime import datetime
from pathlib import Path
from typing import NoReturn

import httpx
import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from app.services.api_client import TERMINAL_STATUSES, ApiClientService
from app.services.git import GitError, GitService

# Load .env file from project root (parent of app/ directory)
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path)

app = typer.Typer(help="Coding Agent CLI")
task_app = typer.Typer(help="Task management commands")
app.add_typer(task_app, name="task")

console = Console()

LOG_STYLES = {
    "info": "white",
    "success": "green",
    "error": "red",
    "command": "cyan",
}


def resolve_repo(repo: str | None, standalone: bool) -> str | None:
    """Repository URL for a new task.

    Raises:
        typer.Exit: If no repo was given and the current directory has none
    """
    if standalone:
        return None
    if repo is not None:
        return GitService.normalize_repo_url(repo)

    try:
        repo_url, _ = GitService.get_current_repo()
    except GitError as e:
        console.print(f"[red]✗[/red] {e}")
        console.print("  Either run from a git repo, pass --repo, or use --standalone")
        raise typer.Exit(1) from None
    return repo_url


def fail_on_http_error(error: httpx.HTTPStatusError) -> NoReturn:
    detail = error.response.text
    try:
        detail = error.response.json().get("detail", detail)
    except ValueError:
        pass
    console.print(f"[red]✗[/red] {error.response.status_code}: {detail}")
    raise typer.Exit(1)


@task_app.command("create")
def create_task(
    prompt: str = typer.Argument(..., help="Natural language prompt for the task"),
    repo: str = typer.Option(
        None, "--repo", help="Repository (org/name or URL, defaults to current git repo)"
    ),
    standalone: bool = typer.Option(
        False, "--standalone", help="Run without a repository"
    ),
    agent: str = typer.Option("claude", "--agent", "-a", help="Agent CLI to run"),
    model: str = typer.Option(None, "--model", "-m", help="Model for the agent"),
    install: bool = typer.Option(
        False, "--install-deps", help="Install project dependencies first"
    ),
    keep_alive: bool = typer.Option(
        False, "--keep-alive", help="Keep the sandbox running afterwards"
    ),
    max_duration: int = typer.Option(
        None, "--max-duration", help="Execution budget in minutes"
    ),
):
    """Create a task and start executing it."""
    repo_url = resolve_repo(repo, standalone)

    try:
        task = ApiClientService.create_task(
            prompt,
            repo_url=repo_url,
            selected_agent=agent,
            selected_model=model,
            install_dependencies=install,
            keep_alive=keep_alive,
            max_duration=max_duration,
        )
    except httpx.HTTPStatusError as e:
        fail_on_http_error(e)

    console.print(f"[green]✓[/green] Task created: [bold]{task['id']}[/bold]")
    console.print(f"  Status: {task['status']}")
    console.print(f"  Agent: {task['selected_agent']}")
    console.print(f"  Repository: {task['repo_url'] or '(standalone)'}")

    if task.get("branch_name"):
        console.print(f"  Branch: [cyan]{task['branch_name']}[/cyan]")


@task_app.command("list")
def list_tasks(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of tasks to show"),
):
    """List recent tasks."""
    data = ApiClientService.list_tasks(limit=limit)
    tasks = data["tasks"]

    if not tasks:
        console.print("[yellow]No tasks found[/yellow]")
        return

    table = Table(title=f"Recent Tasks (showing {len(tasks)} of {data['total']})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Status", style="magenta")
    table.add_column("Progress", justify="right")
    table.add_column("Title", style="white")
    table.add_column("Created", style="dim")

    for task in tasks:
        title = task["title"] or task["prompt"]
        title = title[:50] + "..." if len(title) > 50 else title

        table.add_row(
            task["id"][:8],  # Show first 8 chars of UUID
            task["status"],
            f"{task['progress']}%",
            title,
            task["created_at"][:10],
        )

    console.print(table)


@task_app.command("get")
def get_task(task_id: str = typer.Argument(..., help="Task ID")):
    """Get task details."""
    try:
        task = ApiClientService.get_task(task_id)
    except httpx.HTTPStatusError as e:
        fail_on_http_error(e)

    created = datetime.fromisoformat(task["created_at"].replace("Z", "+00:00"))
    finished = task["completed_at"] or task["updated_at"]
    duration = datetime.fromisoformat(finished.replace("Z", "+00:00")) - created

    console.print(f"[bold]Task {task['id']}[/bold]")
    if task.get("title"):
        console.print(f"  Title: {task['title']}")
    console.print(f"  Status: {task['status']} ({task['progress']}%)")
    console.print(f"  Agent: {task['selected_agent']}")
    console.print(f"  Repository: {task['repo_url'] or '(standalone)'}")
    console.print(f"  Created: {task['created_at']}")
    console.print(f"  Duration: {duration.total_seconds():.1f}s")

    if task.get("branch_name"):
        console.print(f"  Branch: [cyan]{task['branch_name']}[/cyan]")

    if task.get("sandbox_url"):
        console.print(f"  Sandbox: {task['sandbox_url']}")

    console.print(f"\n[bold]Prompt:[/bold]\n{task['prompt']}")

    if task.get("error"):
        console.print(f"\n[bold red]Error:[/bold red]\n{task['error']}")


@task_app.command("stop")
def stop_task(task_id: str = typer.Argument(..., help="Task ID")):
    """Stop a running task."""
    try:
        data = ApiClientService.stop_task(task_id)
    except httpx.HTTPStatusError as e:
        fail_on_http_error(e)

    console.print(f"[green]✓[/green] {data['message']}")


@task_app.command("delete")
def delete_task(task_id: str = typer.Argument(..., help="Task ID")):
    """Delete a task."""
    try:
        ApiClientService.delete_task(task_id)
    except httpx.HTTPStatusError as e:
        fail_on_http_error(e)

    console.print(f"[green]✓[/green] Task {task_id} deleted")


@task_app.command("logs")
def get_logs(
    task_id: str = typer.Argument(..., help="Task ID"),
    limit: int = typer.Option(100, "--limit", "-n", help="Number of entries"),
):
    """Get task logs."""
    try:
        data = ApiClientService.get_logs(task_id, limit=limit)
    except httpx.HTTPStatusError as e:
        fail_on_http_error(e)

    logs = data["logs"]

    if not logs:
        console.print("[yellow]No logs found[/yellow]")
        return

    console.print(f"[bold]Logs for task {task_id}[/bold] ({data['total']} entries)\n")

    for log in logs:
        style = LOG_STYLES.get(log["type"], "white")
        timestamp = log["created_at"][11:19]
        console.print(f"[dim]{timestamp}[/dim] [{style}]{log['message']}[/{style}]")


@task_app.command("messages")
def get_messages(task_id: str = typer.Argument(..., help="Task ID")):
    """Show the task conversation."""
    try:
        messages = ApiClientService.get_messages(task_id)
    except httpx.HTTPStatusError as e:
        fail_on_http_error(e)

    for message in messages:
        role_style = "cyan" if message["role"] == "user" else "green"
        console.print(f"[bold {role_style}]{message['role']}[/bold {role_style}]")
        console.print(message["content"])
        console.print()


@task_app.command("wait")
def wait_task(
    task_id: str = typer.Argument(..., help="Task ID"),
    timeout: int = typer.Option(600, "--timeout", "-t", help="Timeout in seconds"),
):
    """Wait for task to finish."""
    start_time = time.time()

    while True:
        if time.time() - start_time > timeout:
            console.print(f"[red]✗[/red] Timeout after {timeout}s")
            raise typer.Exit(1)

        task = ApiClientService.get_task(task_id)

        status = task["status"]
        console.print(f"Status: {status} ({task['progress']}%)...", end="\r")

        if status in TERMINAL_STATUSES:
            console.print()  # New line
            if status == "completed":
                console.print("[green]✓[/green] Task completed")
            else:
                console.print(f"[red]✗[/red] Task {status}")
                if task.get("error"):
                    console.print(f"  {task['error']}")
                raise typer.Exit(1)
            break

        time.sleep(5)


if __name__ == "__main__":
    app()
