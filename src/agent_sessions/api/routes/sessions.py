"""Session endpoints: start, list, inspect, cancel and remove sessions."""

import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field, field_validator

from ...errors import (
    AgentSessionsError,
    InvalidSessionIdError,
    SessionActiveError,
    SessionAlreadyExistsError,
    SessionNotFoundError,
)
from ...models import SessionConfig, SessionInfo, check_session_id
from ...orchestration import SessionOrchestrator

router = APIRouter()


class CreateSessionRequest(BaseModel):
    """Request body for starting a session."""
    git_directory: str = Field(..., description="Local repository to work on")
    instructions: str = Field(..., min_length=1, description="Task for the agent")
    session_id: Optional[str] = Field(default=None, description="Generated when omitted")
    additional_instructions: Optional[str] = None
    instructions_file: Optional[str] = Field(
        default=None,
        description="Path to a file whose content is appended to the prompt"
    )
    base_branch: Optional[str] = Field(default=None, description="Pull request target branch")

    @field_validator("session_id")
    @classmethod
    def session_id_is_path_safe(cls, value: Optional[str]) -> Optional[str]:
        return value if value is None else check_session_id(value)


class SessionListResponse(BaseModel):
    """List of sessions."""
    sessions: list[SessionInfo]
    total: int


def get_orchestrator(request: Request) -> SessionOrchestrator:
    """Get the orchestrator from app state."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Session orchestrator not configured")
    return orchestrator


def to_http_error(error: AgentSessionsError) -> HTTPException:
    if isinstance(error, InvalidSessionIdError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, SessionNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, (SessionAlreadyExistsError, SessionActiveError)):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


@router.post("/sessions", response_model=SessionInfo, status_code=201)
async def create_session(request: Request, body: CreateSessionRequest) -> SessionInfo:
    """Start a session; it runs in the background and is polled by id."""
    orchestrator = get_orchestrator(request)

    file_content = None
    if body.instructions_file:
        try:
            file_content = Path(body.instructions_file).expanduser().read_text(encoding="utf-8")
        except OSError as e:
            raise HTTPException(status_code=400, detail=f"Cannot read instructions file: {e}")

    config = SessionConfig(
        session_id=body.session_id or uuid.uuid4().hex,
        git_directory=body.git_directory,
        user_instructions=body.instructions,
        additional_instructions=body.additional_instructions,
        instructions_file_content=file_content,
        base_branch=body.base_branch or orchestrator.config.default_base_branch,
    )
    try:
        return await orchestrator.start_session(config)
    except AgentSessionsError as e:
        raise to_http_error(e)


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(request: Request) -> SessionListResponse:
    """Every session known to this server, oldest first."""
    sessions = get_orchestrator(request).list_sessions()
    return SessionListResponse(sessions=sessions, total=len(sessions))


@router.get("/sessions/active", response_model=SessionListResponse)
async def list_active_sessions(request: Request) -> SessionListResponse:
    """Sessions still initializing or working."""
    sessions = get_orchestrator(request).list_active_sessions()
    return SessionListResponse(sessions=sessions, total=len(sessions))


@router.get("/sessions/{session_id}", response_model=SessionInfo)
async def get_session(request: Request, session_id: str) -> SessionInfo:
    """Get a session by ID, including ones persisted by earlier runs."""
    try:
        return get_orchestrator(request).get_status(session_id)
    except AgentSessionsError as e:
        raise to_http_error(e)


@router.post("/sessions/{session_id}/cancel", response_model=SessionInfo)
async def cancel_session(request: Request, session_id: str) -> SessionInfo:
    """Kill the session's agent, remove its working copy and mark it failed."""
    try:
        return await get_orchestrator(request).cancel_session(session_id)
    except AgentSessionsError as e:
        raise to_http_error(e)


@router.delete("/sessions/{session_id}", response_model=SessionInfo)
async def delete_session(request: Request, session_id: str) -> SessionInfo:
    """Forget a finished session."""
    try:
        return get_orchestrator(request).remove_session(session_id)
    except AgentSessionsError as e:
        raise to_http_error(e)
