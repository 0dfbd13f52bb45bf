"""Agent process runner.

Builds the ``claude`` invocation with a constrained tool/permission surface,
runs it non-interactively inside a session's working copy, captures its
output and can forcibly terminate it by process id.
"""

import asyncio
import os
import shutil
import signal
import subprocess
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from .errors import AgentIOError, ProcessFailedError, SpawnFailedError
from .models import InvocationSpec, ProcessResult, RunnerConfig


# asyncio's default 64 KiB line limit is too small for agent output
STREAM_LIMIT = 16 * 1024 * 1024

GUIDELINES = (
    "\n\n## Important Guidelines\n"
    "- Make the requested changes to the codebase\n"
    "- Run tests to verify your changes work correctly\n"
    "- Do NOT perform any git operations (no git add, commit, push, branch, etc.)\n"
    "- When you have completed all changes and tests pass, simply stop working\n"
)


def compose_instructions(
    user_instructions: str,
    additional_instructions: Optional[str] = None,
    instructions_file_content: Optional[str] = None,
) -> str:
    """Assemble the prompt handed to the agent.

    Order is fixed: the user's text, then an "Additional Instructions"
    section, then an "Instructions from File" section, then the closing
    guidelines. Optional inputs that are missing or blank produce no
    section at all.
    """
    parts = [user_instructions]

    if additional_instructions and additional_instructions.strip():
        parts.append("\n\n## Additional Instructions\n")
        parts.append(additional_instructions)

    if instructions_file_content and instructions_file_content.strip():
        parts.append("\n\n## Instructions from File\n")
        parts.append(instructions_file_content)

    parts.append(GUIDELINES)
    return "".join(parts)


def find_agent_executable(name: str) -> Optional[str]:
    """Locate the agent CLI.

    Searches in order:
    1. PATH (via shutil.which)
    2. Windows-specific: .cmd extension, npm global locations
    3. Unix-specific: common installation directories

    Returns:
        Path to the executable, or None if not found.
    """
    found = shutil.which(name)
    if found:
        return found

    if sys.platform == "win32":
        found = shutil.which(f"{name}.cmd")
        if found:
            return found
        candidates = [
            Path(os.environ.get("APPDATA", "")) / "npm" / f"{name}.cmd",
            Path.home() / "AppData" / "Roaming" / "npm" / f"{name}.cmd",
        ]
    else:
        candidates = [
            Path.home() / ".npm-global" / "bin" / name,
            Path("/usr/local/bin") / name,
            Path.home() / ".local" / "bin" / name,
            Path.home() / ".claude" / "local" / name,
        ]

    for candidate in candidates:
        if candidate.exists():
            return str(candidate)
    return None


async def _drain_lines(stream: Optional[asyncio.StreamReader]) -> str:
    if stream is None:
        return ""
    lines = []
    while True:
        line = await stream.readline()
        if not line:
            break
        lines.append(line.decode("utf-8", errors="replace").rstrip("\r\n"))
    return "\n".join(lines)


class AgentProcessRunner:
    """Starts, supervises and stops the external coding agent."""

    def __init__(self, config: Optional[RunnerConfig] = None):
        self.config = config or RunnerConfig()

    def resolve_executable(self) -> str:
        """Absolute path of the agent CLI, or the configured name as-is.

        Falling back to the bare name lets the spawn report the OS error.
        """
        name = self.config.agent_executable
        if os.path.sep in name:
            return name
        return find_agent_executable(name) or name

    def build_invocation(self, work_dir: Path, instructions: str) -> InvocationSpec:
        """Build the non-interactive agent command for a working copy."""
        argv = [
            self.resolve_executable(),
            "--print",
            "--allowedTools",
            ",".join(self.config.allowed_tools),
            "--permission-prompt-tool",
            self.config.permission_prompt_tool,
            "--allowedCommands",
            ",".join(self.config.allowed_commands),
            instructions,
        ]
        return InvocationSpec(argv=argv, cwd=Path(work_dir))

    async def spawn(self, work_dir: Path, instructions: str) -> asyncio.subprocess.Process:
        """Start the agent with stdout/stderr piped back to us.

        Raises:
            SpawnFailedError: The OS refused to start the executable
        """
        spec = self.build_invocation(work_dir, instructions)
        pipe = asyncio.subprocess.PIPE if spec.capture_output else None
        try:
            return await asyncio.create_subprocess_exec(
                *spec.argv,
                cwd=str(spec.cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=pipe,
                stderr=pipe,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise SpawnFailedError(f"{spec.program}: {e}") from e

    async def wait(self, process: asyncio.subprocess.Process) -> ProcessResult:
        """Wait for exit while draining both output streams concurrently."""
        started_at = datetime.now()
        try:
            stdout, stderr = await asyncio.gather(
                _drain_lines(process.stdout),
                _drain_lines(process.stderr),
            )
            returncode = await process.wait()
        except OSError as e:
            raise AgentIOError(str(e)) from e

        return ProcessResult(
            returncode=returncode,
            stdout=stdout,
            stderr=stderr,
            started_at=started_at,
            ended_at=datetime.now(),
        )

    async def run_to_completion(self, work_dir: Path, instructions: str) -> ProcessResult:
        """Spawn the agent and wait for it.

        Raises:
            SpawnFailedError: The agent could not be started
            ProcessFailedError: The agent exited non-zero
        """
        process = await self.spawn(work_dir, instructions)
        result = await self.wait(process)
        if not result.success:
            raise ProcessFailedError(result.returncode, result.stderr)
        return result

    @staticmethod
    def kill(process_id: int) -> None:
        """Forcefully terminate a process by id.

        Best-effort: an error here (for example the process already exited)
        does not mean the process is still alive.

        Raises:
            AgentIOError: The OS call failed
        """
        if sys.platform == "win32":
            result = subprocess.run(
                ["taskkill", "/F", "/PID", str(process_id)],
                capture_output=True,
                text=True,
            )
            if result.returncode != 0:
                raise AgentIOError(
                    f"taskkill {process_id} failed: {result.stderr.strip() or result.stdout.strip()}"
                )
            return

        try:
            os.kill(process_id, signal.SIGKILL)
        except OSError as e:
            raise AgentIOError(f"kill {process_id} failed: {e}") from e
