"""Scratch storage for transient source files.

Every session gets its own subdirectory below a common base directory so
that two clients running the same language never write to the same path.
Files only live for the duration of a single run; the whole subdirectory
is removed when the session closes.

Deletion is best effort: failures are logged and reported through the
return value, never raised, so cleanup can always finish resetting the
session.  The storage is not thread‑safe per session; the supervisor
serialises access for its own session.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

logger = logging.getLogger("coderelay.storage")


class ScratchStorage:
    """Store session files on the local filesystem."""

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir)

    def prepare(self, clear: bool = True) -> None:
        """Create the base directory and optionally drop stale contents."""
        self.base_dir.mkdir(parents=True, exist_ok=True)
        if not clear:
            return
        for entry in self.base_dir.iterdir():
            try:
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
            except OSError as exc:
                logger.warning("Failed to delete stale scratch entry %s: %s", entry, exc)

    def session_dir(self, session_id: str) -> Path:
        return self.base_dir / session_id

    def save(self, session_id: str, relative_path: str, content: str) -> Path:
        session_dir = self.session_dir(session_id)
        session_dir.mkdir(parents=True, exist_ok=True)
        dest = session_dir / relative_path
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(content, encoding="utf-8")
        return dest

    def delete(self, path: Path) -> bool:
        """Remove one file.  A file that is already gone counts as deleted."""
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to delete %s: %s", path, exc)
            return False
        return True

    def delete_session(self, session_id: str) -> None:
        session_dir = self.session_dir(session_id)
        if not session_dir.exists():
            return
        try:
            shutil.rmtree(session_dir)
        except OSError as exc:
            logger.warning("Failed to remove session directory %s: %s", session_dir, exc)
