"""Repository isolation.

Each session works in its own full copy of the source repository under the
temp-checkouts root, so the caller's checkout is never touched and no two
sessions share a working tree.
"""

import shutil
import subprocess
from pathlib import Path

from rich.console import Console

from .errors import GitError, IsolationError, SessionExistsError
from .workspace import SESSION_DIR_PREFIX


console = Console(stderr=True)


class RepositoryIsolator:
    """Creates, validates and reclaims session working copies."""

    def __init__(self, checkouts_dir: Path):
        """Initialize the isolator.

        Args:
            checkouts_dir: Root directory holding every session working copy
        """
        self.checkouts_dir = Path(checkouts_dir)

    def session_dir(self, session_id: str) -> Path:
        return self.checkouts_dir / f"{SESSION_DIR_PREFIX}{session_id}"

    def isolate(self, source_path: Path, session_id: str) -> Path:
        """Copy a repository into a fresh working copy for a session.

        Args:
            source_path: Repository to copy (left unmodified)
            session_id: Session the copy belongs to

        Returns:
            Path to the new working copy

        Raises:
            SessionExistsError: A working copy for this session already exists
            IsolationError: The source is missing or the copy failed
            GitError: The copy is not a usable git repository
        """
        source = Path(source_path).expanduser()
        if not source.is_dir():
            raise IsolationError(f"Source repository not found: {source}")

        self.checkouts_dir.mkdir(parents=True, exist_ok=True)
        session_dir = self.session_dir(session_id)
        if session_dir.exists():
            raise SessionExistsError(session_id)

        try:
            shutil.copytree(source, session_dir, symlinks=True)
        except (shutil.Error, OSError) as e:
            raise IsolationError(f"Failed to copy {source}: {e}") from e

        self._validate_repository(session_dir)
        return session_dir

    def _validate_repository(self, repo_path: Path) -> None:
        """Check the copy is itself the top level of a git work tree.

        Without this a plain directory nested inside another repository
        would be accepted.
        """
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            cwd=repo_path,
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise GitError(
                f"Not a git repository: {repo_path}: {result.stderr.strip()}"
            )
        if Path(result.stdout.strip()).resolve() != repo_path.resolve():
            raise GitError(f"Not a git repository root: {repo_path}")

    def reclaim_orphans(self) -> int:
        """Remove every session working copy under the checkouts root.

        Unconditional: it does not consult the registry, so it must only run
        before any session has started.

        Returns:
            Number of working copies removed
        """
        if not self.checkouts_dir.exists():
            return 0

        cleaned = 0
        for entry in self.checkouts_dir.iterdir():
            if entry.is_dir() and entry.name.startswith(SESSION_DIR_PREFIX):
                self.cleanup_dir(entry)
                cleaned += 1

        if cleaned:
            console.print(f"[dim]Reclaimed {cleaned} orphaned working copies[/dim]")
        return cleaned

    def cleanup(self, session_id: str) -> None:
        """Remove a session's working copy. A missing copy is not an error."""
        self.cleanup_dir(self.session_dir(session_id))

    def cleanup_dir(self, path: Path) -> None:
        """Recursively remove a directory. A missing path is not an error."""
        path = Path(path)
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            pass  # removed concurrently
        except OSError as e:
            raise IsolationError(f"Failed to remove {path}: {e}") from e
