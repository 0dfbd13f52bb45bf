"""Error kinds raised by the session subsystem.

Every component raises one of these instead of aborting; the orchestrator
turns any of them into a terminal ``error`` record with ``str(exc)`` as the
human-readable message.
"""

from typing import Optional


class AgentSessionsError(Exception):
    """Base class for all session subsystem failures."""


# =============================================================================
# Registry
# =============================================================================

class RegistryError(AgentSessionsError):
    """Failure reported by the session registry."""


class SessionNotFoundError(RegistryError):
    """No session with the given id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class SessionAlreadyExistsError(RegistryError):
    """A session with the given id is already registered."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session already exists: {session_id}")


class LockError(RegistryError):
    """The registry lock could not be acquired in time."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Failed to acquire session lock within {timeout}s")


class InvalidSessionIdError(RegistryError, ValueError):
    """Session id unusable as a file name."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            f"Invalid session id: {session_id!r} "
            "(use letters, digits, '.', '_' or '-'; not '.' or '..')"
        )


class SessionActiveError(RegistryError):
    """Operation needs a terminal session but the session is still running."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session is still active: {session_id}")


# =============================================================================
# Agent process
# =============================================================================

class ProcessError(AgentSessionsError):
    """Failure starting, supervising or stopping the agent process."""


class SpawnFailedError(ProcessError):
    """The agent executable could not be started."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Failed to spawn agent process: {detail}")


class ProcessFailedError(ProcessError):
    """The agent process exited with a non-zero status."""

    def __init__(self, exit_code: Optional[int], stderr: str):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(
            f"Agent process failed (exit code: {exit_code}): {stderr.strip()}"
        )


class AgentIOError(ProcessError):
    """OS-level error while talking to the agent process."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"IO error: {detail}")


# =============================================================================
# Git / isolation / hosting
# =============================================================================

class GitOpsError(AgentSessionsError):
    """Failure in the isolation or git/publish layer."""


class GitError(GitOpsError):
    """A git command or hosting API call failed."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Git error: {detail}")


class RemoteParseError(GitError):
    """A remote URL did not match any accepted grammar."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Could not parse GitHub remote URL: {url}")


class SessionExistsError(GitOpsError):
    """A working copy for this session id is already on disk."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Working copy already exists for session: {session_id}")


class IsolationError(GitOpsError):
    """Filesystem error while producing or removing a working copy."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"IO error: {detail}")


class AuthError(GitOpsError):
    """No usable credentials for the remote or the hosting API."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Authentication error: {detail}")


class NetworkError(GitOpsError):
    """Transport-level failure talking to the hosting API."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Network error: {detail}")
