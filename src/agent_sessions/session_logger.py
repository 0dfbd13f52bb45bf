"""Per-session JSONL event logs.

Each orchestrator run appends its events to ``<home>/logs/<session_id>.jsonl``:
- Session start/end
- Status transitions and pipeline steps
- The composed prompt
- Captured agent output
- Errors

Lines are flushed and fsync'd as they are written so a log can be tailed
while the session runs.
"""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from .models import LogEntryType, ProcessResult, SessionInfo


class SessionLogger:
    """JSONL event logger for one session.

    Example output:
        {"type": "session_start", "timestamp": "...", "session_id": "..."}
        {"type": "step", "timestamp": "...", "step": "isolate", ...}
        {"type": "status_change", "timestamp": "...", "status": "working", ...}
        {"type": "process_output", "timestamp": "...", "returncode": 0, ...}
        {"type": "session_end", "timestamp": "...", "status": "completed", ...}
    """

    DEFAULT_TRUNCATION_LIMIT = 50000

    def __init__(
        self,
        log_file: Path,
        session_id: str,
        output_truncation_limit: int = DEFAULT_TRUNCATION_LIMIT
    ):
        """Initialize session logger.

        Args:
            log_file: JSONL file to append to (parent is created on demand)
            session_id: Session the events belong to
            output_truncation_limit: Max chars of process output (0 to disable)
        """
        self.log_file = Path(log_file)
        self.session_id = session_id
        self.output_truncation_limit = output_truncation_limit
        self._started_at = datetime.now()
        self._file_handle: Optional[Any] = None

    def _write_entry(self, entry: dict) -> None:
        if "timestamp" not in entry:
            entry["timestamp"] = datetime.now().isoformat()

        if self._file_handle is None:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            self._file_handle = open(self.log_file, "a", encoding="utf-8")

        self._file_handle.write(json.dumps(entry, default=str) + "\n")
        self._file_handle.flush()

        try:
            os.fsync(self._file_handle.fileno())
        except OSError:
            pass  # not supported on every filesystem

    def _truncate(self, text: str) -> tuple[str, bool]:
        limit = self.output_truncation_limit
        if limit > 0 and len(text) > limit:
            return text[:limit], True
        return text, False

    def log_session_start(self, info: SessionInfo) -> None:
        self._write_entry({
            "type": LogEntryType.SESSION_START.value,
            "session_id": self.session_id,
            "git_directory": info.git_directory,
            "branch_name": info.branch_name,
        })

    def log_step(self, step: str, **details: Any) -> None:
        """Log a pipeline step being entered."""
        self._write_entry({
            "type": LogEntryType.STEP.value,
            "step": step,
            **details,
        })

    def log_status(self, info: SessionInfo) -> None:
        self._write_entry({
            "type": LogEntryType.STATUS_CHANGE.value,
            "status": info.status.value,
            "pr_url": info.pr_url,
            "error_message": info.error_message,
        })

    def log_prompt(self, prompt_text: str) -> None:
        self._write_entry({
            "type": LogEntryType.PROMPT.value,
            "prompt_length": len(prompt_text),
            "prompt_text": prompt_text,
        })

    def log_process_output(self, result: ProcessResult) -> None:
        """Log captured agent output, truncated to the configured limit."""
        stdout, stdout_truncated = self._truncate(result.stdout)
        stderr, stderr_truncated = self._truncate(result.stderr)
        self._write_entry({
            "type": LogEntryType.PROCESS_OUTPUT.value,
            "returncode": result.returncode,
            "stdout": stdout,
            "stderr": stderr,
            "stdout_length": len(result.stdout),
            "stderr_length": len(result.stderr),
            "truncated": stdout_truncated or stderr_truncated,
        })

    def log_error(self, step: str, message: str, error_type: Optional[str] = None) -> None:
        self._write_entry({
            "type": LogEntryType.ERROR.value,
            "step": step,
            "error_type": error_type,
            "message": message,
        })

    def log_session_end(self, info: SessionInfo) -> None:
        duration_seconds = (datetime.now() - self._started_at).total_seconds()
        self._write_entry({
            "type": LogEntryType.SESSION_END.value,
            "session_id": self.session_id,
            "status": info.status.value,
            "pr_url": info.pr_url,
            "error_message": info.error_message,
            "duration_seconds": round(duration_seconds, 2),
        })
        self.close()

    def close(self) -> None:
        if self._file_handle:
            self._file_handle.close()
            self._file_handle = None

    def __enter__(self) -> "SessionLogger":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def read_session_log(log_path: Path) -> list[dict]:
    """Read all entries from a session log file.

    Args:
        log_path: Path to the JSONL log file

    Returns:
        List of log entry dicts (unparseable lines are skipped)
    """
    entries = []
    if not log_path.exists():
        return entries

    with open(log_path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    continue

    return entries
