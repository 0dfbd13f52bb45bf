"""Shared fixtures: an isolated git environment and throwaway repositories."""

import subprocess
from pathlib import Path
from typing import Optional

import pytest


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
    )
    return result.stdout.strip()


@pytest.fixture(autouse=True)
def isolated_git_env(tmp_path_factory, monkeypatch):
    """Keep the user's git config, ssh agent and tokens out of every test."""
    home = tmp_path_factory.mktemp("home")
    global_config = home / ".gitconfig"
    global_config.write_text("")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(global_config))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")
    monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
    monkeypatch.delenv("GIT_SSH_COMMAND", raising=False)
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("AGENT_SESSIONS_HOME", raising=False)
    return home


@pytest.fixture
def make_repo(tmp_path):
    """Factory creating a git repository with one commit on ``main``."""

    def _make(
        name: str = "repo",
        identity: bool = True,
        origin: Optional[str] = None,
    ) -> Path:
        repo = tmp_path / name
        repo.mkdir()
        git(repo, "init", "-q")
        git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
        if identity:
            git(repo, "config", "user.name", "Test User")
            git(repo, "config", "user.email", "test@example.com")
        (repo / "README.md").write_text("# test\n")
        git(repo, "add", "README.md")
        git(
            repo,
            "-c", "user.name=Setup", "-c", "user.email=setup@example.com",
            "commit", "-q", "-m", "Initial commit",
        )
        if origin:
            git(repo, "remote", "add", "origin", origin)
        return repo

    return _make


@pytest.fixture
def bare_origin(tmp_path):
    """A bare repository usable as a local ``origin``."""
    origin = tmp_path / "origin.git"
    subprocess.run(
        ["git", "init", "-q", "--bare", str(origin)], capture_output=True, check=True
    )
    return origin
