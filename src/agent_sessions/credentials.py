"""Push credential strategies.

A push is attempted once per ``PushCredential``, in strategy order, until one
succeeds. Each strategy is a pure function of a ``CredentialContext`` and
returns zero or more attempts, so the order and the environment each attempt
runs with can be inspected without touching git.
"""

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Optional


# Substrings of git/ssh stderr that mean "credentials were rejected"
AUTH_FAILURE_MARKERS = (
    "permission denied",
    "authentication failed",
    "could not read username",
    "could not read password",
    "terminal prompts disabled",
    "invalid username or password",
    "host key verification failed",
    "returned error: 403",
    "returned error: 401",
)

SSH_KEY_NAMES = ("id_ed25519", "id_rsa")


@dataclass(frozen=True)
class PushCredential:
    """One way of authenticating a push: a name and extra environment."""
    name: str
    env: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CredentialContext:
    """Inputs the strategies decide on."""
    remote_url: str
    environ: Mapping[str, str]
    home: Path
    credential_helper: Optional[str] = None


def is_ssh_remote(url: str) -> bool:
    url = url.strip()
    if url.startswith("ssh://"):
        return True
    if "://" in url:
        return False
    # scp-like syntax: [user@]host:path
    head, sep, _ = url.partition(":")
    return bool(sep) and "/" not in head and len(head) > 1


def is_https_remote(url: str) -> bool:
    return url.strip().lower().startswith("https://")


def looks_like_auth_failure(stderr: str) -> bool:
    text = stderr.lower()
    return any(marker in text for marker in AUTH_FAILURE_MARKERS)


# =============================================================================
# Strategies
# =============================================================================

def ssh_agent_credentials(ctx: CredentialContext) -> list[PushCredential]:
    """Keys held by a running ssh-agent."""
    if not ctx.environ.get("SSH_AUTH_SOCK") or not is_ssh_remote(ctx.remote_url):
        return []
    return [PushCredential("ssh-agent", {"GIT_SSH_COMMAND": "ssh -o BatchMode=yes"})]


def ssh_key_credentials(ctx: CredentialContext) -> list[PushCredential]:
    """Unencrypted default key files in ~/.ssh, ed25519 first."""
    if not is_ssh_remote(ctx.remote_url):
        return []

    attempts = []
    for name in SSH_KEY_NAMES:
        key_path = ctx.home / ".ssh" / name
        if key_path.exists():
            command = (
                f"ssh -i {shlex.quote(str(key_path))} "
                "-o IdentitiesOnly=yes -o BatchMode=yes"
            )
            attempts.append(PushCredential(f"ssh-key:{name}", {"GIT_SSH_COMMAND": command}))
    return attempts


def credential_helper_credentials(ctx: CredentialContext) -> list[PushCredential]:
    """The configured git credential helper, with prompting disabled."""
    if not ctx.credential_helper or not is_https_remote(ctx.remote_url):
        return []
    return [PushCredential("credential-helper", {"GIT_TERMINAL_PROMPT": "0"})]


def default_credentials(ctx: CredentialContext) -> list[PushCredential]:
    """Whatever git and ssh pick up from the environment on their own.

    Prompts are disabled for both, so a missing passphrase or unknown host
    key fails the attempt instead of waiting for input.
    """
    env = {"GIT_TERMINAL_PROMPT": "0"}
    if is_ssh_remote(ctx.remote_url):
        ssh_command = ctx.environ.get("GIT_SSH_COMMAND") or "ssh"
        env["GIT_SSH_COMMAND"] = f"{ssh_command} -o BatchMode=yes"
    return [PushCredential("default", env)]


CredentialStrategy = Callable[[CredentialContext], list[PushCredential]]

CREDENTIAL_STRATEGIES: tuple[CredentialStrategy, ...] = (
    ssh_agent_credentials,
    ssh_key_credentials,
    credential_helper_credentials,
    default_credentials,
)


def credential_attempts(
    ctx: CredentialContext,
    strategies: tuple[CredentialStrategy, ...] = CREDENTIAL_STRATEGIES,
) -> list[PushCredential]:
    """Flatten the strategies into the ordered list of push attempts."""
    attempts: list[PushCredential] = []
    for strategy in strategies:
        attempts.extend(strategy(ctx))
    return attempts


def build_context(
    remote_url: str,
    credential_helper: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> CredentialContext:
    return CredentialContext(
        remote_url=remote_url,
        environ=dict(os.environ if environ is None else environ),
        home=home or Path.home(),
        credential_helper=credential_helper or None,
    )
