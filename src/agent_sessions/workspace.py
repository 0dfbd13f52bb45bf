"""Application home directory layout and configuration loading.

Directory structure:
    ~/.agent-sessions/            # or $AGENT_SESSIONS_HOME
    ├── config.json               # Optional RunnerConfig overrides
    ├── credentials.json          # {"github_token": "..."}
    ├── sessions/                 # One record file per session
    │   └── {session_id}.json
    ├── logs/                     # JSONL event log per session
    │   └── {session_id}.jsonl
    └── temp-checkouts/           # Isolated working copies
        └── session-{session_id}/
"""

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError
from rich.console import Console

from .models import RunnerConfig


console = Console(stderr=True)

HOME_ENV_VAR = "AGENT_SESSIONS_HOME"
DEFAULT_HOME_DIRNAME = ".agent-sessions"

# Working copies are named SESSION_DIR_PREFIX + session id
SESSION_DIR_PREFIX = "session-"


class WorkspaceManager:
    """Resolves every path the session subsystem reads or writes."""

    def __init__(self, home: Optional[Path] = None):
        """Initialize workspace manager.

        Args:
            home: Application home; defaults to $AGENT_SESSIONS_HOME, then
                ~/.agent-sessions
        """
        self.home = Path(home) if home else default_home()
        self.sessions_dir = self.home / "sessions"
        self.logs_dir = self.home / "logs"
        self.checkouts_dir = self.home / "temp-checkouts"

        # File paths
        self.config_file = self.home / "config.json"
        self.credentials_file = self.home / "credentials.json"

    def ensure_structure(self) -> None:
        """Create the home directory structure if it doesn't exist."""
        for directory in (self.home, self.sessions_dir, self.logs_dir, self.checkouts_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def exists(self) -> bool:
        return self.home.exists()

    def session_log_path(self, session_id: str) -> Path:
        return self.logs_dir / f"{session_id}.jsonl"

    # =========================================================================
    # Configuration
    # =========================================================================

    def load_config(self) -> RunnerConfig:
        """Load RunnerConfig, overlaying config.json when present.

        An unreadable or invalid config file is reported and ignored.
        """
        if not self.config_file.exists():
            return RunnerConfig()

        try:
            data = json.loads(self.config_file.read_text(encoding="utf-8"))
            return RunnerConfig.model_validate(data)
        except (json.JSONDecodeError, ValidationError, OSError) as e:
            console.print(f"[yellow]Warning:[/yellow] Could not load {self.config_file}: {e}")
            return RunnerConfig()

    def save_config(self, config: RunnerConfig) -> None:
        self.home.mkdir(parents=True, exist_ok=True)
        self.config_file.write_text(config.model_dump_json(indent=2), encoding="utf-8")


def default_home() -> Path:
    """Application home from the environment, else under the user's home."""
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / DEFAULT_HOME_DIRNAME
