"""Data models for agent sessions.

Uses Pydantic for validation and for the on-disk session record format.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .errors import InvalidSessionIdError


# Session ids name record, log and working-copy paths
SESSION_ID_PATTERN = re.compile(r"[A-Za-z0-9._-]+")


def is_valid_session_id(session_id: str) -> bool:
    return session_id not in (".", "..") and bool(SESSION_ID_PATTERN.fullmatch(session_id))


def check_session_id(session_id: str) -> str:
    """Return ``session_id`` if it is a single safe path component.

    Raises:
        InvalidSessionIdError: Empty, "." or "..", or has other characters
    """
    if not is_valid_session_id(session_id):
        raise InvalidSessionIdError(session_id)
    return session_id


class SessionStatus(str, Enum):
    """Lifecycle state of a session.

    Transitions only move forward:
    initializing -> working -> completed | error.
    """
    INITIALIZING = "initializing"
    WORKING = "working"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.ERROR)


class SessionInfo(BaseModel):
    """Public view of a session, as returned to callers and written to disk."""
    id: str = Field(..., description="Unique session identifier")
    status: SessionStatus = Field(default=SessionStatus.INITIALIZING)
    pr_url: Optional[str] = Field(
        default=None,
        description="Pull request URL, set only once the session completed"
    )
    error_message: Optional[str] = Field(
        default=None,
        description="Failure reason, set only once the session errored"
    )
    git_directory: str = Field(..., description="Source repository supplied by the caller")
    instructions: str = Field(..., description="Task description given to the agent")
    branch_name: str = Field(default="", description="Feature branch created for this session")
    created_at: datetime = Field(default_factory=datetime.now)


class Session(BaseModel):
    """Registry-internal session record.

    Holds the public info plus the resources owned by the run: the isolated
    working copy and the running agent's process id.
    """
    info: SessionInfo
    work_dir: Path
    process_id: Optional[int] = None

    @classmethod
    def new(
        cls,
        id: str,
        git_directory: str,
        instructions: str,
        work_dir: Path,
        branch_name: str,
    ) -> "Session":
        return cls(
            info=SessionInfo(
                id=id,
                git_directory=git_directory,
                instructions=instructions,
                branch_name=branch_name,
            ),
            work_dir=Path(work_dir),
        )

    @property
    def status(self) -> SessionStatus:
        return self.info.status

    @property
    def branch_name(self) -> str:
        return self.info.branch_name

    @property
    def is_terminal(self) -> bool:
        return self.info.status.is_terminal

    def set_working(self, process_id: int) -> None:
        """Mark the agent process as running."""
        self.info.status = SessionStatus.WORKING
        self.process_id = process_id

    def set_completed(self, pr_url: str) -> None:
        """Mark the session as published."""
        self.info.status = SessionStatus.COMPLETED
        self.info.pr_url = pr_url
        self.info.error_message = None
        self.process_id = None

    def set_error(self, message: str) -> None:
        """Mark the session as failed."""
        self.info.status = SessionStatus.ERROR
        self.info.error_message = message
        self.info.pr_url = None
        self.process_id = None


class SessionConfig(BaseModel):
    """Input for a single orchestrator run. Consumed once, never shared."""
    session_id: str
    git_directory: str
    user_instructions: str
    additional_instructions: Optional[str] = None
    instructions_file_content: Optional[str] = None
    base_branch: str = "main"

    @field_validator("session_id")
    @classmethod
    def session_id_is_path_safe(cls, value: str) -> str:
        return check_session_id(value)


class RepoInfo(BaseModel):
    """Owner and repository name parsed from a remote URL."""
    owner: str
    repo: str


@dataclass
class InvocationSpec:
    """Everything needed to start the agent executable."""
    argv: list[str]
    cwd: Path
    capture_output: bool = True

    @property
    def program(self) -> str:
        return self.argv[0]

    @property
    def args(self) -> list[str]:
        return self.argv[1:]


@dataclass
class ProcessResult:
    """Exit status and captured output of a finished agent process."""
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.returncode == 0


class RunnerConfig(BaseModel):
    """Configuration for the session runner.

    Defaults reproduce the fixed behaviour; ``config.json`` in the
    application home can override any field.
    """
    # Agent process
    agent_executable: str = Field(
        default="claude",
        description="Agent CLI to invoke (bare name is resolved on PATH)"
    )
    allowed_tools: list[str] = Field(
        default_factory=lambda: ["Edit", "Write", "Read", "Bash"],
        description="Tools the agent may use without prompting"
    )
    permission_prompt_tool: str = Field(
        default="Bash",
        description="Tool the agent delegates permission prompts to"
    )
    allowed_commands: list[str] = Field(
        default_factory=lambda: [
            "npm run test",
            "npm run test:run",
            "npm test",
            "cargo test",
            "go test",
            "pytest",
            "jest",
        ],
        description="Shell commands the agent may run (test runners)"
    )

    # Branches and commits
    branch_prefix: str = Field(default="claude", description="Namespace for feature branches")
    branch_slug_max_length: int = Field(default=30)
    default_base_branch: str = Field(default="main")
    fallback_author_name: str = Field(
        default="Claude",
        description="Commit identity used when the repository has none configured"
    )
    fallback_author_email: str = Field(default="claude@agent-sessions.local")

    # Hosting
    hosting_domain: str = Field(
        default="github.com",
        description="Remote hosts must contain this domain"
    )
    github_api_url: str = Field(default="https://api.github.com")
    github_api_version: str = Field(default="2022-11-28")
    user_agent: str = Field(default="agent-sessions")
    request_timeout_seconds: float = Field(default=30.0)

    # Registry
    lock_timeout_seconds: float = Field(
        default=5.0,
        description="How long a registry operation waits for the lock before failing"
    )

    # Event logs
    output_truncation_limit: int = Field(
        default=50000,
        description="Max chars of agent output kept in the event log (0 = no limit)"
    )


class LogEntryType(str, Enum):
    """Event types written to a session's JSONL log."""
    SESSION_START = "session_start"
    STATUS_CHANGE = "status_change"
    STEP = "step"
    PROMPT = "prompt"
    PROCESS_OUTPUT = "process_output"
    ERROR = "error"
    SESSION_END = "session_end"
