"""Session record files.

One JSON file per session under ``<home>/sessions``. Files are written
wholesale (temp file + atomic replace) and read back verbatim; a missing
file means there is no persisted record.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional

from .errors import InvalidSessionIdError
from .models import SessionInfo, check_session_id, is_valid_session_id


class SessionStore:
    """Reads and writes ``SessionInfo`` record files."""

    def __init__(self, sessions_dir: Path):
        self.sessions_dir = Path(sessions_dir)

    def path_for(self, session_id: str) -> Path:
        """Record file for a session id.

        Raises:
            InvalidSessionIdError: The id would name a file outside the store
        """
        check_session_id(session_id)
        path = self.sessions_dir / f"{session_id}.json"
        if Path(os.path.abspath(path)).parent != Path(os.path.abspath(self.sessions_dir)):
            raise InvalidSessionIdError(session_id)
        return path

    def save(self, info: SessionInfo) -> Path:
        """Write the full record for a session, replacing any previous one."""
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(info.id)

        fd, tmp_name = tempfile.mkstemp(
            dir=self.sessions_dir, prefix=f".{info.id}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(info.model_dump_json(indent=2))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return path

    def load(self, session_id: str) -> Optional[SessionInfo]:
        """Read a record back, or None if it was never written."""
        path = self.path_for(session_id)
        if not path.exists():
            return None
        return SessionInfo.model_validate_json(path.read_text(encoding="utf-8"))

    def delete(self, session_id: str) -> bool:
        path = self.path_for(session_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def list_ids(self) -> list[str]:
        if not self.sessions_dir.exists():
            return []
        return sorted(
            p.stem for p in self.sessions_dir.glob("*.json")
            if is_valid_session_id(p.stem)
        )
