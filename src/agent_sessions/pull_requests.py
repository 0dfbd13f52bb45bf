"""GitHub pull request publishing.

Parses the ``origin`` URL into owner/repo, resolves an API token and opens a
pull request for the pushed feature branch.
"""

import json
import os
import subprocess
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import urlparse

import httpx

from .errors import AuthError, GitError, NetworkError, RemoteParseError
from .git_manager import GitManager
from .models import RepoInfo, RunnerConfig


TITLE_PREFIX = "claude: "
TITLE_MAX_LENGTH = 72


def parse_remote(url: str, domain: str = "github.com") -> RepoInfo:
    """Extract owner and repository name from a remote URL.

    Accepted forms:
        git@<host>:<owner>/<repo>[.git]      (host ending in ``domain``)
        https://<host>/<owner>/<repo>[.git]  (host is ``domain`` or a subdomain)

    Raises:
        RemoteParseError: The URL matches neither form
    """
    url = url.strip()

    if url.startswith("git@") and f"{domain}:" in url:
        path = url.split(":", 1)[1]
        path = path[:-4] if path.endswith(".git") else path
        parts = path.split("/")
        if len(parts) == 2 and all(parts):
            return RepoInfo(owner=parts[0], repo=parts[1])

    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if parsed.scheme == "https" and (host == domain or host.endswith(f".{domain}")):
        path = parsed.path.strip("/")
        path = path[:-4] if path.endswith(".git") else path
        parts = path.split("/")
        if len(parts) >= 2 and parts[0] and parts[1]:
            return RepoInfo(owner=parts[0], repo=parts[1])

    raise RemoteParseError(url)


def gh_auth_token() -> Optional[str]:
    """Token from the GitHub CLI, or None if it is missing or logged out."""
    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
        )
    except OSError:
        return None
    token = result.stdout.strip()
    return token if result.returncode == 0 and token else None


def resolve_github_token(
    credentials_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """Find a GitHub API token.

    Order: ``github_token`` in the credentials file, then ``gh auth token``,
    then the ``GITHUB_TOKEN`` environment variable.

    Raises:
        AuthError: No source yielded a token
    """
    environ = os.environ if environ is None else environ

    if credentials_file and Path(credentials_file).exists():
        try:
            data = json.loads(Path(credentials_file).read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            data = {}
        token = data.get("github_token") if isinstance(data, dict) else None
        if isinstance(token, str) and token.strip():
            return token.strip()

    token = gh_auth_token()
    if token:
        return token

    token = environ.get("GITHUB_TOKEN", "").strip()
    if token:
        return token

    raise AuthError(
        f"No GitHub token found. Add github_token to {credentials_file or 'credentials.json'}, "
        "log in with `gh auth login`, or set GITHUB_TOKEN"
    )


def pull_request_title(user_instructions: str) -> str:
    """``claude: <first line of the task>``, capped at 72 characters."""
    lines = user_instructions.strip().splitlines()
    first_line = lines[0].strip() if lines else ""
    title = f"{TITLE_PREFIX}{first_line or 'automated changes'}"
    if len(title) > TITLE_MAX_LENGTH:
        title = title[:TITLE_MAX_LENGTH - 3].rstrip() + "..."
    return title


def pull_request_body(composed_instructions: str, session_id: str) -> str:
    return (
        "## Task\n\n"
        f"{composed_instructions.strip()}\n\n"
        "---\n"
        f"Created by agent session `{session_id}`.\n"
    )


class PullRequestClient:
    """Opens pull requests through the GitHub REST API."""

    def __init__(
        self,
        config: Optional[RunnerConfig] = None,
        credentials_file: Optional[Path] = None,
        token: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            config: API URL, version, user agent and timeout
            credentials_file: JSON file that may hold ``github_token``
            token: Fixed token; skips resolution when given
            transport: httpx transport override (tests use ``MockTransport``)
        """
        self.config = config or RunnerConfig()
        self.credentials_file = credentials_file
        self._token = token
        self._transport = transport

    def _resolve_token(self) -> str:
        return self._token or resolve_github_token(self.credentials_file)

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": self.config.github_api_version,
            "User-Agent": self.config.user_agent,
        }

    def create_pull_request(
        self,
        repo_path: Path,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> str:
        """Open a pull request from ``head`` into ``base``.

        Returns:
            The pull request's html_url

        Raises:
            GitError: No origin, unparseable remote, or the API rejected it
            AuthError: No token available
            NetworkError: The request could not be completed
        """
        remote_url = GitManager(repo_path, self.config).get_remote_url("origin")
        repo = parse_remote(remote_url, self.config.hosting_domain)
        token = self._resolve_token()

        api_url = self.config.github_api_url.rstrip("/")
        endpoint = f"{api_url}/repos/{repo.owner}/{repo.repo}/pulls"
        payload = {"title": title, "body": body, "head": head, "base": base}

        try:
            with httpx.Client(
                timeout=self.config.request_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = client.post(endpoint, headers=self._headers(token), json=payload)
        except httpx.HTTPError as e:
            raise NetworkError(str(e)) from e

        if not response.is_success:
            raise GitError(f"GitHub API error ({response.status_code}): {response.text}")

        try:
            data = response.json()
        except ValueError as e:
            raise NetworkError(f"Invalid JSON in response: {e}") from e

        html_url = data.get("html_url") if isinstance(data, dict) else None
        if not isinstance(html_url, str) or not html_url:
            raise GitError("No PR URL in response")
        return html_url
