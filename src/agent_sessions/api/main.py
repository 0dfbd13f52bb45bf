"""FastAPI application serving the session API."""

from contextlib import asynccontextmanager
from typing import Optional, TYPE_CHECKING

from fastapi import FastAPI
from rich.console import Console

from .. import __version__
from ..orchestration import SessionOrchestrator, SessionRecoveryManager
from .routes import sessions

if TYPE_CHECKING:
    from ..harness import SessionHarness


console = Console()


def create_app(
    orchestrator: Optional[SessionOrchestrator] = None,
    recovery: Optional[SessionRecoveryManager] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        orchestrator: Orchestrator whose sessions the API exposes
        recovery: When given, runs startup recovery before serving and
            cancels active sessions on shutdown

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if recovery is not None:
            recovery.recover_on_startup()
        yield
        if orchestrator is not None and orchestrator.list_active_sessions():
            console.print("[yellow]Server stopping - cancelling active sessions...[/yellow]")
            await orchestrator.cancel_all()

    app = FastAPI(
        title="Agent Sessions API",
        description="Run coding agent sessions in isolated repository copies",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.orchestrator = orchestrator

    app.include_router(sessions.router, prefix="/api", tags=["sessions"])

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        active = len(orchestrator.list_active_sessions()) if orchestrator else 0
        return {"status": "healthy", "active_sessions": active}

    return app


def run_server(
    harness: "SessionHarness",
    host: str = "127.0.0.1",
    port: int = 8000,
) -> None:
    """Serve the API for a harness until interrupted.

    Args:
        harness: Wired session components
        host: Host to bind to
        port: Port to listen on
    """
    import uvicorn

    app = create_app(harness.orchestrator, harness.recovery)
    uvicorn.run(app, host=host, port=port)
