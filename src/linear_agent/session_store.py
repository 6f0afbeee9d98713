"""Resumption store — Linear session id → Claude conversation id.

Lets a follow-up message continue the agent's own conversation instead of
starting over. One JSON object on disk, loaded lazily and cached for the
life of the process. Writes go to a sibling temp file that is then renamed
over the real one, so a crash mid-write never leaves a torn file.

Persistence is a convenience: a corrupt file loads as empty, and callers
treat write failures as non-fatal.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class ResumptionStore:
    def __init__(self, path: Path):
        self.path = Path(path)
        self._cache: dict[str, str] | None = None

    def get(self, session_id: str) -> str | None:
        return self._load().get(session_id)

    def set(self, session_id: str, conversation_id: str) -> None:
        """Record the conversation for ``session_id`` and persist.

        Raises:
            OSError: If the file cannot be written. The in-memory entry is
                kept, so resumption still works until restart.
        """
        entries = self._load()
        entries[session_id] = conversation_id
        self._write(entries)
        logger.debug("Stored conversation %s for session %s", conversation_id, session_id)

    def delete(self, session_id: str) -> bool:
        """Drop the entry for ``session_id``. Returns False if there was none."""
        entries = self._load()
        if entries.pop(session_id, None) is None:
            return False
        self._write(entries)
        logger.info("Evicted resumption entry for session %s", session_id)
        return True

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._load()

    def __len__(self) -> int:
        return len(self._load())

    # ── Disk I/O ─────────────────────────────────────────────────────────

    def _load(self) -> dict[str, str]:
        if self._cache is not None:
            return self._cache

        self._cache = {}
        if not self.path.exists():
            return self._cache

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Could not load session map %s, starting empty: %s", self.path, e)
            return self._cache

        if not isinstance(data, dict):
            logger.warning("Session map %s is not a JSON object, starting empty", self.path)
            return self._cache

        self._cache = {str(k): str(v) for k, v in data.items() if isinstance(v, str)}
        logger.info("Loaded %d resumption entries from %s", len(self._cache), self.path)
        return self._cache

    def _write(self, entries: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(entries, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
