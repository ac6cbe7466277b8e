"""File-backed key-value storage for the persisted session."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from otpflow.auth.models import Session

LOGGER = logging.getLogger(__name__)


class SessionRepository:
    """Stores the session record under one key of a JSON object file."""

    def __init__(self, state_path: Path, storage_key: str = "authState") -> None:
        self._state_path = state_path
        self._storage_key = storage_key

    @property
    def state_path(self) -> Path:
        return self._state_path

    def _read_json_file(self) -> dict[str, Any]:
        """Read the key-value object; unreadable content counts as empty."""
        if not self._state_path.exists():
            return {}
        try:
            payload = json.loads(self._state_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning("session_store_unreadable: %s", exc)
            return {}
        return payload if isinstance(payload, dict) else {}

    def _write_json_file(self, payload: dict[str, Any]) -> None:
        """Persist the key-value object with an atomic replace."""
        self._state_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._state_path.with_suffix(self._state_path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp_path, self._state_path)

    def load(self) -> Session:
        """Return the stored session, or an empty one when absent or malformed."""
        record = self._read_json_file().get(self._storage_key)
        if record is None:
            return Session.empty()
        if isinstance(record, str):
            try:
                record = json.loads(record)
            except ValueError:
                LOGGER.warning("session_record_malformed")
                return Session.empty()
        if not isinstance(record, dict):
            LOGGER.warning("session_record_malformed")
            return Session.empty()
        try:
            session = Session.model_validate(record)
        except PydanticValidationError:
            LOGGER.warning("session_record_malformed")
            return Session.empty()
        if session.is_authenticated and not (session.token and session.user):
            LOGGER.warning("session_record_incomplete")
            return Session.empty()
        return session

    def save(self, session: Session) -> None:
        payload = self._read_json_file()
        payload[self._storage_key] = session.to_record()
        self._write_json_file(payload)

    def clear(self) -> None:
        self.save(Session.empty())
