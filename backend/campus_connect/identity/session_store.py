"""Local persistence of the logged-in session.

The session is a single JSON record stored under a fixed key in a small
JSON file, so a client can restore its login across restarts. Records
are validated on load and discarded when malformed.
"""
import json
import logging
import re
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .schemas import SessionUser

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


class SessionStore:
    """Key-value JSON file holding the session record."""

    def __init__(self, path: str, key: str = "cc_user") -> None:
        self._path = Path(path)
        self._key = key

    def save(self, user: SessionUser) -> None:
        data = self._read_all()
        data[self._key] = user.model_dump()
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def load(self) -> Optional[SessionUser]:
        """Return the stored session, or None if absent or invalid.

        An invalid record (unparseable, missing fields, or an id that is
        not UUID-shaped) is removed so it is not retried on every start.
        """
        raw = self._read_all().get(self._key)
        if raw is None:
            return None
        try:
            user = SessionUser(**raw)
        except (TypeError, ValidationError) as e:
            logger.warning("[Session] Discarding malformed session record: %s", e)
            self.clear()
            return None
        if not UUID_PATTERN.match(user.id):
            logger.warning("[Session] Discarding session with invalid id %r", user.id)
            self.clear()
            return None
        return user

    def clear(self) -> None:
        data = self._read_all()
        if data.pop(self._key, None) is not None:
            self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError:
            logger.warning("[Session] %s is not valid JSON; starting fresh", self._path)
            self._path.unlink()
            return {}
        return data if isinstance(data, dict) else {}
