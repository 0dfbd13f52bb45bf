"""Wiring for the session subsystem.

Builds one registry, isolator, runner, publisher and record store rooted at
the application home and hands them to a ``SessionOrchestrator``. The CLI
and the HTTP API both go through this.
"""

from pathlib import Path
from typing import Optional

from .agent_process import AgentProcessRunner
from .git_manager import GitManager
from .isolation import RepositoryIsolator
from .models import RunnerConfig
from .orchestration import SessionOrchestrator, SessionRecoveryManager
from .persistence import SessionStore
from .protocols import PullRequestPublisher
from .pull_requests import PullRequestClient
from .registry import SessionRegistry
from .workspace import WorkspaceManager


class SessionHarness:
    """All session components for one application home."""

    def __init__(
        self,
        home: Optional[Path] = None,
        config: Optional[RunnerConfig] = None,
        pr_client: Optional[PullRequestPublisher] = None,
    ):
        """Initialize the harness.

        Args:
            home: Application home (default: $AGENT_SESSIONS_HOME or ~/.agent-sessions)
            config: Runner configuration (default: loaded from the home's config.json)
            pr_client: Pull request publisher override
        """
        self.workspace = WorkspaceManager(home)
        self.workspace.ensure_structure()
        self.config = config or self.workspace.load_config()

        self.registry = SessionRegistry(lock_timeout=self.config.lock_timeout_seconds)
        self.store = SessionStore(self.workspace.sessions_dir)
        self.isolator = RepositoryIsolator(self.workspace.checkouts_dir)
        self.runner = AgentProcessRunner(self.config)
        self.pr_client = pr_client or PullRequestClient(
            self.config, credentials_file=self.workspace.credentials_file
        )

        self.orchestrator = SessionOrchestrator(
            registry=self.registry,
            isolator=self.isolator,
            runner=self.runner,
            git_factory=self._git_for,
            pr_client=self.pr_client,
            store=self.store,
            logs_dir=self.workspace.logs_dir,
            config=self.config,
        )
        self.recovery = SessionRecoveryManager(self.orchestrator, self.store)

    def _git_for(self, work_dir: Path) -> GitManager:
        return GitManager(work_dir, self.config)
