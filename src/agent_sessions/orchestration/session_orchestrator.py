"""Session orchestration - the end-to-end lifecycle of one agent session.

Handles:
- Registering the session and scheduling its pipeline task
- Isolating the repository and creating the feature branch
- Running the agent and publishing its work as a pull request
- Cancellation, removal and status queries
"""

import asyncio
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console
from rich.panel import Panel

from ..agent_process import compose_instructions
from ..errors import (
    AgentSessionsError,
    ProcessError,
    ProcessFailedError,
    SessionActiveError,
    SessionExistsError,
    SessionNotFoundError,
)
from ..git_manager import generate_branch_name
from ..models import RunnerConfig, SessionConfig, SessionInfo, SessionStatus
from ..protocols import AgentRunner, GitOperations, Isolator, PullRequestPublisher, RecordStore
from ..pull_requests import pull_request_body, pull_request_title
from ..registry import SessionRegistry
from ..session_logger import SessionLogger


console = Console()

CANCELLED_MESSAGE = "cancelled by caller"


class SessionAborted(Exception):
    """The session reached a terminal state while its pipeline was running."""


class SessionOrchestrator:
    """Runs agent sessions from registration to pull request.

    Dependencies are injected for testability:
    - SessionRegistry: Single source of truth for session status
    - Isolator: Working copy creation and cleanup
    - AgentRunner: Spawning, awaiting and killing the agent
    - git_factory: Builds GitOperations for a working copy
    - PullRequestPublisher: Opens the pull request
    - RecordStore: Optional durable session records
    """

    def __init__(
        self,
        registry: SessionRegistry,
        isolator: Isolator,
        runner: AgentRunner,
        git_factory: Callable[[Path], GitOperations],
        pr_client: PullRequestPublisher,
        store: Optional[RecordStore] = None,
        logs_dir: Optional[Path] = None,
        config: Optional[RunnerConfig] = None,
    ):
        """Initialize the orchestrator.

        Args:
            registry: Session registry shared with every status reader
            isolator: Repository isolator rooted at the checkouts directory
            runner: Agent process runner
            git_factory: Callable returning git operations for a working copy
            pr_client: Pull request publisher
            store: Record store; each transition is persisted when given
            logs_dir: Directory for per-session JSONL event logs
            config: Runner configuration
        """
        self.registry = registry
        self.isolator = isolator
        self.runner = runner
        self.git_factory = git_factory
        self.pr_client = pr_client
        self.store = store
        self.logs_dir = Path(logs_dir) if logs_dir else None
        self.config = config or RunnerConfig()

        self._tasks: dict[str, asyncio.Task] = {}
        self._loggers: dict[str, SessionLogger] = {}

    # =========================================================================
    # Starting and waiting
    # =========================================================================

    async def start_session(self, config: SessionConfig) -> SessionInfo:
        """Register a session and schedule its pipeline.

        Returns as soon as the session is registered as ``initializing``;
        poll ``get_status`` or await ``wait_for_session`` for the outcome.

        Raises:
            SessionAlreadyExistsError: The id is already registered
        """
        session_id = config.session_id
        branch_name = generate_branch_name(
            config.user_instructions,
            prefix=self.config.branch_prefix,
            max_slug=self.config.branch_slug_max_length,
        )
        work_dir = self.isolator.session_dir(session_id)

        info = self.registry.create(
            session_id,
            git_directory=config.git_directory,
            instructions=config.user_instructions,
            work_dir=work_dir,
            branch_name=branch_name,
        )

        logger = self._open_logger(session_id)
        if logger:
            logger.log_session_start(info)
        self._record(info)

        console.print(Panel(
            f"[bold]Session:[/bold] {session_id}\n"
            f"[bold]Repository:[/bold] {config.git_directory}\n"
            f"[bold]Branch:[/bold] {branch_name}",
            title="Starting Session",
            border_style="blue",
        ))

        task = asyncio.create_task(
            self._run_pipeline(config, branch_name),
            name=f"session-{session_id}",
        )
        self._tasks[session_id] = task
        task.add_done_callback(lambda t, sid=session_id: self._forget_task(sid, t))
        return info

    def _forget_task(self, session_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(session_id) is task:
            del self._tasks[session_id]

    async def wait_for_session(self, session_id: str) -> SessionInfo:
        """Wait for a session's pipeline to finish and return its record."""
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.wait([task])
        return self.get_status(session_id)

    async def run_session(self, config: SessionConfig) -> SessionInfo:
        """Start a session and wait for it to reach a terminal state."""
        await self.start_session(config)
        return await self.wait_for_session(config.session_id)

    def is_running(self, session_id: str) -> bool:
        return session_id in self._tasks

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _check_not_terminal(self, session_id: str) -> None:
        if self.registry.is_terminal(session_id):
            raise SessionAborted(session_id)

    async def _run_pipeline(self, config: SessionConfig, branch_name: str) -> None:
        session_id = config.session_id
        logger = self._loggers.get(session_id)
        process = None
        step = "isolate"

        try:
            self._log_step(session_id, step)
            work_dir = await asyncio.to_thread(
                self.isolator.isolate, Path(config.git_directory), session_id
            )
            self._check_not_terminal(session_id)

            step = "create_branch"
            self._log_step(session_id, step, branch_name=branch_name)
            git = self.git_factory(work_dir)
            await asyncio.to_thread(git.create_feature_branch, branch_name)
            self._check_not_terminal(session_id)

            step = "spawn_agent"
            instructions = compose_instructions(
                config.user_instructions,
                config.additional_instructions,
                config.instructions_file_content,
            )
            if logger:
                logger.log_prompt(instructions)
            process = await self.runner.spawn(work_dir, instructions)

            info = self.registry.set_working(session_id, process.pid)
            if info.status != SessionStatus.WORKING:
                # Cancelled between registration and spawn
                self._kill_quietly(process.pid)
                await process.wait()
                raise SessionAborted(session_id)
            self._record(info)
            console.print(f"[cyan]Agent running[/cyan] (session {session_id}, pid {process.pid})")

            step = "wait_agent"
            self._log_step(session_id, step, pid=process.pid)
            result = await self.runner.wait(process)
            process = None
            if logger:
                logger.log_process_output(result)
            if not result.success:
                raise ProcessFailedError(result.returncode, result.stderr)
            self._check_not_terminal(session_id)

            step = "commit_and_push"
            self._log_step(session_id, step)
            title = pull_request_title(config.user_instructions)
            await asyncio.to_thread(git.commit_and_push, title)
            self._check_not_terminal(session_id)

            step = "create_pull_request"
            self._log_step(session_id, step, base=config.base_branch)
            pr_url = await asyncio.to_thread(
                self.pr_client.create_pull_request,
                work_dir,
                title,
                pull_request_body(instructions, session_id),
                branch_name,
                config.base_branch,
            )

            info = self.registry.set_completed(session_id, pr_url)
            self._record(info)
            if info.status == SessionStatus.COMPLETED:
                console.print(f"[green]Session {session_id} completed:[/green] {pr_url}")
            await self._cleanup_quietly(session_id)

        except SessionAborted:
            console.print(f"[yellow]Session {session_id} stopped: already {self._status_of(session_id)}[/yellow]")
            await self._cleanup_quietly(session_id)

        except asyncio.CancelledError:
            if process is not None:
                self._kill_quietly(process.pid)
            self._fail(session_id, step, "session task was cancelled", "CancelledError")
            await self._cleanup_quietly(session_id)
            raise

        except Exception as e:
            if process is not None:
                self._kill_quietly(process.pid)
            self._fail(session_id, step, str(e), type(e).__name__)
            # The directory behind SessionExistsError belongs to another run
            if not isinstance(e, SessionExistsError):
                await self._cleanup_quietly(session_id)

        finally:
            self._close_logger(session_id)

    def _fail(self, session_id: str, step: str, message: str, error_type: str) -> None:
        logger = self._loggers.get(session_id)
        if logger:
            logger.log_error(step, message, error_type)
        info = self.registry.set_error(session_id, message)
        self._record(info)
        console.print(f"[red]Session {session_id} failed during {step}:[/red] {info.error_message}")

    def _status_of(self, session_id: str) -> str:
        try:
            return self.registry.get_info(session_id).status.value
        except SessionNotFoundError:
            return "removed"

    def _kill_quietly(self, process_id: int) -> None:
        try:
            self.runner.kill(process_id)
        except ProcessError as e:
            console.print(f"[yellow]Warning:[/yellow] {e}")

    async def _cleanup_quietly(self, session_id: str) -> None:
        """Remove a session's working copy; failures are reported, not raised."""
        try:
            await asyncio.to_thread(self.isolator.cleanup, session_id)
        except (AgentSessionsError, OSError) as e:
            console.print(f"[yellow]Warning: cleanup of session {session_id} failed:[/yellow] {e}")

    # =========================================================================
    # Records and event logs
    # =========================================================================

    def _open_logger(self, session_id: str) -> Optional[SessionLogger]:
        if self.logs_dir is None:
            return None
        logger = SessionLogger(
            self.logs_dir / f"{session_id}.jsonl",
            session_id,
            output_truncation_limit=self.config.output_truncation_limit,
        )
        self._loggers[session_id] = logger
        return logger

    def _close_logger(self, session_id: str) -> None:
        logger = self._loggers.pop(session_id, None)
        if logger is None:
            return
        try:
            logger.log_session_end(self.registry.get_info(session_id))
        except SessionNotFoundError:
            logger.close()

    def _log_step(self, session_id: str, step: str, **details) -> None:
        logger = self._loggers.get(session_id)
        if logger:
            logger.log_step(step, **details)

    def _record(self, info: SessionInfo) -> None:
        """Persist a snapshot and append a status event."""
        logger = self._loggers.get(info.id)
        if logger:
            logger.log_status(info)
        if self.store is None:
            return
        try:
            self.store.save(info)
        except OSError as e:
            console.print(f"[yellow]Warning: could not persist session {info.id}:[/yellow] {e}")

    # =========================================================================
    # Control and queries
    # =========================================================================

    async def cancel_session(self, session_id: str) -> SessionInfo:
        """Stop a session: kill its agent, remove its copy, mark it failed.

        The session always ends up ``error`` with "cancelled by caller"
        unless it had already finished. A failure to remove the working copy
        is raised after the status has been recorded.

        Raises:
            SessionNotFoundError: Unknown session id
            IsolationError: The working copy could not be removed
        """
        snapshot = self.registry.get_snapshot(session_id)
        info = snapshot.info
        try:
            if snapshot.process_id:
                self._kill_quietly(snapshot.process_id)
            await asyncio.to_thread(self.isolator.cleanup_dir, snapshot.work_dir)
        finally:
            info = self.registry.set_error(session_id, CANCELLED_MESSAGE)
            self._record(info)
            console.print(f"[yellow]Session {session_id} cancelled[/yellow]")
        return info

    async def cancel_all(self) -> list[SessionInfo]:
        """Cancel every active session, reporting individual failures."""
        cancelled = []
        for info in self.registry.list_active():
            try:
                cancelled.append(await self.cancel_session(info.id))
            except AgentSessionsError as e:
                console.print(f"[red]Failed to cancel {info.id}:[/red] {e}")
        return cancelled

    def remove_session(self, session_id: str) -> SessionInfo:
        """Forget a finished session and delete its record file.

        Raises:
            SessionNotFoundError: Unknown session id
            SessionActiveError: The session has not finished yet
        """
        if not self.registry.is_terminal(session_id):
            raise SessionActiveError(session_id)
        removed = self.registry.remove(session_id)
        if self.store is not None:
            self.store.delete(session_id)
        return removed.info

    def get_status(self, session_id: str) -> SessionInfo:
        """Current record from memory, else from the record store.

        Raises:
            SessionNotFoundError: Neither knows the session
        """
        try:
            return self.registry.get_info(session_id)
        except SessionNotFoundError:
            if self.store is not None:
                info = self.store.load(session_id)
                if info is not None:
                    return info
            raise

    def list_sessions(self) -> list[SessionInfo]:
        return sorted(self.registry.list(), key=lambda s: s.created_at)

    def list_active_sessions(self) -> list[SessionInfo]:
        return sorted(self.registry.list_active(), key=lambda s: s.created_at)

    def reclaim_orphans(self) -> int:
        """Remove working copies left by earlier runs.

        Raises:
            SessionActiveError: A session is running and owns a working copy
        """
        active = self.registry.list_active()
        if active:
            raise SessionActiveError(active[0].id)
        return self.isolator.reclaim_orphans()
