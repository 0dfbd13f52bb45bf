"""Protocol definitions for dependency injection.

The orchestrator depends on these interfaces rather than the concrete
classes, so tests can substitute fakes for git, the filesystem, the agent
process and the hosting API.
"""

import asyncio
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from .models import ProcessResult, SessionInfo


@runtime_checkable
class GitOperations(Protocol):
    """Git operations on one working copy."""

    def create_feature_branch(self, branch_name: str) -> None:
        """Create and check out a branch at the current commit."""
        ...

    def commit_and_push(self, message: str) -> str:
        """Stage, commit and push the current branch; return the commit hash."""
        ...


@runtime_checkable
class Isolator(Protocol):
    """Produces and removes per-session working copies."""

    def session_dir(self, session_id: str) -> Path:
        ...

    def isolate(self, source_path: Path, session_id: str) -> Path:
        """Copy a repository into the session's working copy."""
        ...

    def cleanup(self, session_id: str) -> None:
        ...

    def cleanup_dir(self, path: Path) -> None:
        ...

    def reclaim_orphans(self) -> int:
        """Remove every session working copy; return how many."""
        ...


@runtime_checkable
class AgentRunner(Protocol):
    """Starts, awaits and kills the coding agent."""

    async def spawn(self, work_dir: Path, instructions: str) -> asyncio.subprocess.Process:
        ...

    async def wait(self, process: asyncio.subprocess.Process) -> ProcessResult:
        ...

    def kill(self, process_id: int) -> None:
        ...


@runtime_checkable
class PullRequestPublisher(Protocol):
    """Opens a pull request for a pushed branch."""

    def create_pull_request(
        self,
        repo_path: Path,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> str:
        """Return the pull request URL."""
        ...


@runtime_checkable
class RecordStore(Protocol):
    """Durable storage for session records."""

    def save(self, info: SessionInfo) -> Path:
        ...

    def load(self, session_id: str) -> Optional[SessionInfo]:
        ...

    def delete(self, session_id: str) -> bool:
        ...
