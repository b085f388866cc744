"""Git service for repository URL handling."""

import re
import subprocess
from urllib.parse import quote, urlsplit, urlunsplit

GITHUB_REPO_PATTERN = re.compile(r"github\.com[:/](.+/.+?)(?:\.git)?/?$")


class GitError(Exception):
    """Raised when git operations fail."""


class GitService:
    """Service for git-related operations."""

    @staticmethod
    def get_current_repo() -> tuple[str, str]:
        """Get current git repository URL and org/name.

        Returns:
            tuple[str, str]: (repository_url, org/name)

        Raises:
            GitError: If not in a git repository or no remote found
        """
        try:
            result = subprocess.run(
                ["git", "remote", "get-url", "origin"],
                capture_output=True,
                text=True,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise GitError("Not in a git repository or no remote 'origin' found") from e

        remote_url = result.stdout.strip()
        try:
            return GitService.parse_github_url(remote_url)
        except ValueError as e:
            raise GitError(
                f"Could not parse GitHub repo from remote URL: {remote_url}"
            ) from e

    @staticmethod
    def normalize_repo_url(repo: str) -> str:
        """Normalize repository input to HTTPS GitHub URL.

        Handles multiple input formats:
        - org/name format: "myorg/myrepo"
        - Full HTTPS URL: "https://github.com/myorg/myrepo.git"
        - SSH URL: "git@github.com:myorg/myrepo.git"

        Args:
            repo: Repository in any of the supported formats

        Returns:
            str: Normalized HTTPS URL ending with .git
        """
        if not repo.startswith(("http://", "https://", "git@")):
            return f"https://github.com/{repo}.git"

        return GitService.parse_github_url(repo)[0]

    @staticmethod
    def parse_github_url(repo: str) -> tuple[str, str]:
        """Parse GitHub repository URL to extract org/repo.

        Args:
            repo: GitHub repository URL (HTTPS or SSH)

        Returns:
            tuple[str, str]: (normalized_https_url, org/repo)

        Raises:
            ValueError: If URL cannot be parsed as a GitHub repository
        """
        match = GITHUB_REPO_PATTERN.search(repo)
        if not match:
            raise ValueError(f"Could not parse GitHub repo from URL: {repo}")

        org_repo = match.group(1)
        return f"https://github.com/{org_repo}.git", org_repo

    @staticmethod
    def repo_name(repo_url: str | None) -> str | None:
        """Repository name (last path segment without .git), if parseable."""
        if not repo_url:
            return None
        path = urlsplit(repo_url).path if "://" in repo_url else repo_url
        segments = [segment for segment in re.split(r"[/:]", path) if segment]
        if len(segments) < 2:
            return None
        return segments[-1].removesuffix(".git") or None

    @staticmethod
    def authenticated_clone_url(repo_url: str, token: str | None) -> str:
        """Embed an access token in an HTTPS clone URL.

        SSH and tokenless URLs are returned unchanged.
        """
        if not token:
            return repo_url

        if repo_url.startswith("git@"):
            try:
                repo_url = GitService.parse_github_url(repo_url)[0]
            except ValueError:
                return repo_url

        parts = urlsplit(repo_url)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            return repo_url

        host = parts.hostname
        if parts.port:
            host = f"{host}:{parts.port}"
        netloc = f"x-access-token:{quote(token, safe='')}@{host}"
        return urlunsplit(parts._replace(netloc=netloc))
