"""Orchestration components for agent sessions.

- SessionOrchestrator: Runs a session from registration to pull request
- SessionRecoveryManager: Startup reclaim and signal-driven cancellation
"""

from .session_orchestrator import CANCELLED_MESSAGE, SessionOrchestrator
from .recovery import SessionRecoveryManager

__all__ = [
    "CANCELLED_MESSAGE",
    "SessionOrchestrator",
    "SessionRecoveryManager",
]
