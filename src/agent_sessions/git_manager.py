"""Git operations for a session's working copy.

Creates the feature branch, commits the agent's changes and pushes them to
``origin``. Every call shells out to the ``git`` CLI.
"""

import os
import re
import subprocess
import threading
import time
from pathlib import Path
from typing import Optional

from .credentials import build_context, credential_attempts, looks_like_auth_failure
from .errors import AuthError, GitError
from .models import RunnerConfig


_suffix_lock = threading.Lock()
_last_suffix = 0


def _next_suffix() -> int:
    """Millisecond timestamp, strictly increasing within this process."""
    global _last_suffix
    now = int(time.time() * 1000)
    with _suffix_lock:
        _last_suffix = max(now, _last_suffix + 1)
        return _last_suffix


def slugify(description: str, max_length: int = 30) -> str:
    """Lowercase ASCII slug of a task description; ``task`` when empty."""
    slug = re.sub(r"[^a-z0-9]+", "-", description.lower()).strip("-")
    slug = slug[:max_length].strip("-")
    return slug or "task"


def generate_branch_name(
    description: str,
    prefix: str = "claude",
    max_slug: int = 30,
) -> str:
    """Unique feature branch name, e.g. ``claude/fix-login-bug-1718000000000``."""
    return f"{prefix}/{slugify(description, max_slug)}-{_next_suffix()}"


class GitManager:
    """Manages git operations for one working copy."""

    def __init__(self, repo_path: Path, config: Optional[RunnerConfig] = None):
        self.repo_path = Path(repo_path)
        self.config = config or RunnerConfig()

    def _run(
        self,
        *args: str,
        check: bool = True,
        env: Optional[dict[str, str]] = None,
    ) -> subprocess.CompletedProcess:
        """Run a git command.

        Raises:
            GitError: git exited non-zero and ``check`` is set, or could not run
        """
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.repo_path,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                env=env,
            )
        except OSError as e:
            raise GitError(f"git {args[0] if args else ''}: {e}") from e

        if check and result.returncode != 0:
            raise GitError(
                f"git {' '.join(args[:2])} failed: {result.stderr.strip() or result.stdout.strip()}"
            )
        return result

    def _config_value(self, key: str) -> Optional[str]:
        result = self._run("config", "--get", key, check=False)
        value = result.stdout.strip()
        return value if result.returncode == 0 and value else None

    # =========================================================================
    # Branches
    # =========================================================================

    def head_commit(self) -> str:
        result = self._run("rev-parse", "--verify", "HEAD", check=False)
        if result.returncode != 0:
            raise GitError(f"Could not resolve HEAD: {result.stderr.strip()}")
        return result.stdout.strip()

    def create_feature_branch(self, branch_name: str) -> None:
        """Create ``branch_name`` at the current commit and check it out."""
        sha = self.head_commit()
        self._run("checkout", "-b", branch_name, sha)

    def current_branch(self) -> str:
        result = self._run("symbolic-ref", "--short", "HEAD", check=False)
        if result.returncode != 0:
            raise GitError("Could not get branch name (detached HEAD?)")
        return result.stdout.strip()

    # =========================================================================
    # Commits
    # =========================================================================

    def stage_all(self) -> None:
        """Stage all changes, including deletions and untracked files."""
        self._run("add", "-A")

    def create_commit(self, message: str) -> str:
        """Commit the index on top of HEAD and return the new commit hash.

        Uses the repository's configured identity, falling back to the
        configured agent identity when none resolves. Empty commits are
        allowed so a run that changed nothing is still publishable.
        """
        args = []
        if not (self._config_value("user.name") and self._config_value("user.email")):
            args += [
                "-c", f"user.name={self.config.fallback_author_name}",
                "-c", f"user.email={self.config.fallback_author_email}",
            ]
        self._run(*args, "commit", "--allow-empty", "-m", message)
        return self.head_commit()

    # =========================================================================
    # Remote
    # =========================================================================

    def get_remote_url(self, remote: str = "origin") -> str:
        result = self._run("remote", "get-url", remote, check=False)
        if result.returncode != 0 or not result.stdout.strip():
            raise GitError(f"Remote '{remote}' not found")
        return result.stdout.strip()

    def push_to_remote(self, branch_name: str) -> str:
        """Push a branch to the same name on ``origin``.

        Tries each credential strategy in order and stops at the first
        successful push, or at the first failure that is not an
        authentication failure.

        Returns:
            Name of the credential strategy that succeeded

        Raises:
            AuthError: Every attempt was rejected for authentication
            GitError: No origin, or the push failed for another reason
        """
        remote_url = self.get_remote_url("origin")
        ctx = build_context(remote_url, self._config_value("credential.helper"))
        refspec = f"refs/heads/{branch_name}:refs/heads/{branch_name}"

        attempts = credential_attempts(ctx)
        last_stderr = ""
        for credential in attempts:
            env = {**os.environ, **credential.env}
            result = self._run("push", "origin", refspec, check=False, env=env)
            if result.returncode == 0:
                return credential.name
            last_stderr = result.stderr.strip()
            # Only rejected credentials move on to the next attempt
            if not looks_like_auth_failure(last_stderr):
                raise GitError(f"Push failed: {last_stderr}")

        tried = ", ".join(c.name for c in attempts)
        raise AuthError(f"No valid credentials found (tried: {tried}): {last_stderr}")

    def commit_and_push(self, message: str) -> str:
        """Stage everything, commit, and push the current branch.

        Returns:
            The pushed commit hash
        """
        self.stage_all()
        sha = self.create_commit(message)
        self.push_to_remote(self.current_branch())
        return sha
