"""Session slot stored as one row of the ``capture_state`` table."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import delete

from ..store import STATE_KEY
from .client import session_scope
from .models import CaptureState


class SqlSlot:
    """:class:`~transactions_exporter.store.SessionSlot` backed by SQLAlchemy."""

    def __init__(self, *, database_url: str | None = None, key: str = STATE_KEY) -> None:
        self.database_url = database_url
        self.key = key

    def read(self) -> str | None:
        with session_scope(database_url=self.database_url) as s:
            row = s.get(CaptureState, self.key)
            return row.payload if row is not None else None

    def write(self, payload: str) -> None:
        now = datetime.now(UTC)
        with session_scope(database_url=self.database_url) as s:
            row = s.get(CaptureState, self.key)
            if row is None:
                s.add(CaptureState(key=self.key, payload=payload, updated_at=now))
            else:
                row.payload = payload
                row.updated_at = now

    def clear(self) -> None:
        with session_scope(database_url=self.database_url) as s:
            s.execute(delete(CaptureState).where(CaptureState.key == self.key))


__all__ = ["SqlSlot"]
