"""Concurrency-safe session registry.

The registry is the single source of truth for session status. It is
injected into every component that needs it; there is no module-level
instance.

Every operation takes the lock for its own duration only, so status queries
never wait behind a session's agent process or network calls. A lock that
cannot be acquired within ``lock_timeout`` surfaces as ``LockError``.
"""

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .errors import LockError, SessionAlreadyExistsError, SessionNotFoundError
from .models import Session, SessionInfo, SessionStatus


class SessionRegistry:
    """In-memory keyed store of session records."""

    DEFAULT_LOCK_TIMEOUT = 5.0

    def __init__(self, lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        self.lock_timeout = lock_timeout
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}

    @contextmanager
    def _locked(self) -> Iterator[dict[str, Session]]:
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise LockError(self.lock_timeout)
        try:
            yield self._sessions
        finally:
            self._lock.release()

    @staticmethod
    def _require(sessions: dict[str, Session], session_id: str) -> Session:
        session = sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    # =========================================================================
    # Creation and lookup
    # =========================================================================

    def create(
        self,
        session_id: str,
        git_directory: str,
        instructions: str,
        work_dir: Path,
        branch_name: str,
    ) -> SessionInfo:
        """Insert a new session in the ``initializing`` state.

        Raises:
            SessionAlreadyExistsError: If the id is already registered
        """
        with self._locked() as sessions:
            if session_id in sessions:
                raise SessionAlreadyExistsError(session_id)
            session = Session.new(
                id=session_id,
                git_directory=git_directory,
                instructions=instructions,
                work_dir=work_dir,
                branch_name=branch_name,
            )
            sessions[session_id] = session
            return session.info.model_copy(deep=True)

    def get_info(self, session_id: str) -> SessionInfo:
        with self._locked() as sessions:
            return self._require(sessions, session_id).info.model_copy(deep=True)

    def get_snapshot(self, session_id: str) -> Session:
        """Return a copy of the full record taken under one lock acquisition.

        Cancellation uses this so that ``process_id`` and ``work_dir`` come
        from the same consistent state.
        """
        with self._locked() as sessions:
            return self._require(sessions, session_id).model_copy(deep=True)

    def get_process_id(self, session_id: str) -> Optional[int]:
        with self._locked() as sessions:
            return self._require(sessions, session_id).process_id

    def get_work_dir(self, session_id: str) -> Path:
        with self._locked() as sessions:
            return self._require(sessions, session_id).work_dir

    def get_branch_name(self, session_id: str) -> str:
        with self._locked() as sessions:
            return self._require(sessions, session_id).branch_name

    # =========================================================================
    # Transitions
    # =========================================================================
    #
    # A transition requested on a session that already reached a terminal
    # state leaves it untouched. The returned info tells the caller which
    # state actually holds.

    def set_working(self, session_id: str, process_id: int) -> SessionInfo:
        with self._locked() as sessions:
            session = self._require(sessions, session_id)
            if not session.is_terminal:
                session.set_working(process_id)
            return session.info.model_copy(deep=True)

    def set_completed(self, session_id: str, pr_url: str) -> SessionInfo:
        with self._locked() as sessions:
            session = self._require(sessions, session_id)
            if not session.is_terminal:
                session.set_completed(pr_url)
            return session.info.model_copy(deep=True)

    def set_error(self, session_id: str, message: str) -> SessionInfo:
        with self._locked() as sessions:
            session = self._require(sessions, session_id)
            if not session.is_terminal:
                session.set_error(message)
            return session.info.model_copy(deep=True)

    def is_terminal(self, session_id: str) -> bool:
        with self._locked() as sessions:
            return self._require(sessions, session_id).is_terminal

    # =========================================================================
    # Removal and listing
    # =========================================================================

    def remove(self, session_id: str) -> Session:
        """Delete a record and return it."""
        with self._locked() as sessions:
            session = sessions.pop(session_id, None)
            if session is None:
                raise SessionNotFoundError(session_id)
            return session

    def list_active(self) -> list[SessionInfo]:
        """Records still initializing or working."""
        with self._locked() as sessions:
            return [
                s.info.model_copy(deep=True)
                for s in sessions.values()
                if s.info.status in (SessionStatus.INITIALIZING, SessionStatus.WORKING)
            ]

    def __contains__(self, session_id: object) -> bool:
        with self._locked() as sessions:
            return session_id in sessions

    def __len__(self) -> int:
        with self._locked() as sessions:
            return len(sessions)

    # Keep last: shadows the builtin ``list`` for the rest of the class body.
    def list(self) -> list[SessionInfo]:
        """Snapshot of every record, in no particular order."""
        with self._locked() as sessions:
            return [s.info.model_copy(deep=True) for s in sessions.values()]
