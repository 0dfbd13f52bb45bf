"""Startup recovery and shutdown handling.

Handles:
- Reclaiming working copies orphaned by a previous process
- Marking records a previous process left unfinished as failed
- Signal handlers (SIGINT, SIGTERM) that cancel every active session
"""

import asyncio
import signal
import sys
from typing import Any, Optional

from rich.console import Console

from ..models import SessionInfo, SessionStatus
from ..persistence import SessionStore
from .session_orchestrator import SessionOrchestrator


console = Console()

INTERRUPTED_MESSAGE = "interrupted: the process running this session exited"


class SessionRecoveryManager:
    """Keeps on-disk state consistent across process restarts.

    Dependencies are injected for testability:
    - SessionOrchestrator: For reclaiming copies and cancelling sessions
    - SessionStore: For records left behind by an earlier process
    """

    def __init__(
        self,
        orchestrator: SessionOrchestrator,
        store: Optional[SessionStore] = None,
    ):
        self.orchestrator = orchestrator
        self.store = store

        self._shutdown_requested = False
        self._shutdown_task: Optional[asyncio.Task] = None
        self._installed: list[int] = []

    # =========================================================================
    # Startup
    # =========================================================================

    def recover_on_startup(self) -> int:
        """Run before any session starts in this process.

        Returns:
            Number of orphaned working copies removed
        """
        self.mark_interrupted_records()
        return self.orchestrator.reclaim_orphans()

    def mark_interrupted_records(self) -> list[SessionInfo]:
        """Fail persisted records that never reached a terminal state.

        Nothing in this process owns them, so their agent is gone.
        """
        if self.store is None:
            return []

        marked = []
        for session_id in self.store.list_ids():
            if session_id in self.orchestrator.registry:
                continue
            info = self.store.load(session_id)
            if info is None or info.status.is_terminal:
                continue
            info.status = SessionStatus.ERROR
            info.error_message = INTERRUPTED_MESSAGE
            info.pr_url = None
            self.store.save(info)
            marked.append(info)

        if marked:
            console.print(f"[yellow]Marked {len(marked)} interrupted session(s) as failed[/yellow]")
        return marked

    # =========================================================================
    # Shutdown
    # =========================================================================

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def setup_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        """Cancel active sessions on SIGINT/SIGTERM.

        On Windows, only SIGINT (Ctrl+C) is supported and the handler is
        installed with ``signal.signal``.
        """
        signals = [signal.SIGINT]
        if sys.platform != "win32":
            signals.append(signal.SIGTERM)

        for signum in signals:
            try:
                loop.add_signal_handler(signum, self._handle_shutdown_signal, signum)
            except NotImplementedError:
                signal.signal(
                    signum,
                    lambda s, frame: loop.call_soon_threadsafe(self._handle_shutdown_signal, s),
                )
            self._installed.append(signum)

    def remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for signum in self._installed:
            try:
                loop.remove_signal_handler(signum)
            except NotImplementedError:
                signal.signal(signum, signal.SIG_DFL)
        self._installed.clear()

    def _handle_shutdown_signal(self, signum: Any) -> None:
        signal_name = signal.Signals(signum).name
        if self._shutdown_requested:
            console.print(f"[yellow]{signal_name} received again - still cancelling sessions...[/yellow]")
            return

        console.print(f"\n[yellow]Shutdown signal received ({signal_name}) - cancelling active sessions...[/yellow]")
        self._shutdown_requested = True
        self._shutdown_task = asyncio.ensure_future(self.cancel_active())

    async def cancel_active(self) -> list[SessionInfo]:
        """Cancel every session that has not finished yet."""
        cancelled = await self.orchestrator.cancel_all()
        if cancelled:
            console.print(f"[yellow]Cancelled {len(cancelled)} session(s)[/yellow]")
        return cancelled

    async def wait_for_shutdown(self) -> None:
        """Wait until a signal-triggered cancellation has finished."""
        if self._shutdown_task is not None:
            await self._shutdown_task
