"""Persisted capture session and the deduplicating accumulator over it.

Storage is a single string slot behind the :class:`SessionSlot` port:

- :class:`MemorySlot`: process-local, for tests and one-off runs.
- :class:`FileSlot`: one JSON file under the state directory. Writes target a
  ``.tmp`` sibling and are then ``os.replace``-d into place.
- ``transactions_exporter.db.SqlSlot``: one row in a key-value table.

:class:`SessionStorage` serializes a :class:`CaptureSession` into that slot,
and :class:`AccumulatorStore` merges newly captured records into the session
at most once per natural key.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from .errors import SessionStateError
from .logging_setup import get_logger
from .models import (
    SCHEMA_VERSION,
    CaptureSession,
    MultiPageRun,
    NaturalKey,
    SessionStateFile,
    StoredMultiPageRun,
    StoredRecord,
    TransactionRecord,
)

_logger = get_logger("transactions_exporter.store")

STATE_KEY = "transactionsExporter"
STATE_FILENAME = "session.json"

# ----------------------------------------------------------------------------
# Slots
# ----------------------------------------------------------------------------


class SessionSlot(Protocol):
    """A single string-keyed slot holding the serialized session."""

    def read(self) -> str | None: ...

    def write(self, payload: str) -> None: ...

    def clear(self) -> None: ...


class MemorySlot:
    def __init__(self, payload: str | None = None) -> None:
        self.payload = payload
        self.writes = 0

    def read(self) -> str | None:
        return self.payload

    def write(self, payload: str) -> None:
        self.payload = payload
        self.writes += 1

    def clear(self) -> None:
        self.payload = None


def get_state_dir() -> Path:
    """Return the state directory.

    Default: ``./.state`` under the current working directory.
    Override: ``TXN_EXPORTER_STATE_DIR`` (absolute or relative).
    """

    root = os.getenv("TXN_EXPORTER_STATE_DIR")
    if root and root.strip():
        return Path(root).expanduser().resolve()
    return (Path.cwd() / ".state").resolve()


class FileSlot:
    """Session slot stored as ``<state_dir>/session.json``."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or (get_state_dir() / STATE_FILENAME)

    def read(self) -> str | None:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(payload, encoding="utf-8")
        os.replace(tmp, self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


# ----------------------------------------------------------------------------
# Serialization
# ----------------------------------------------------------------------------


def dump_session(session: CaptureSession) -> str:
    run = session.multi_page_run
    state = SessionStateFile(
        schema_version=SCHEMA_VERSION,
        records={
            rid: StoredRecord(
                id=r.id,
                date=r.date,
                payment_method=r.payment_method,
                amount=r.amount,
                currency=r.currency,
                external_reference=r.external_reference,
                status=r.status,
                merchant=r.merchant,
                items=list(r.items),
            )
            for rid, r in session.records.items()
        },
        total_count=session.total_count,
        capture_run_count=session.capture_run_count,
        last_update=session.last_update,
        pages_to_capture=session.pages_to_capture,
        multi_page_run=(
            StoredMultiPageRun(current_page=run.current_page, total_pages=run.total_pages)
            if run is not None
            else None
        ),
        stop_requested=session.stop_requested,
    )
    return state.model_dump_json(indent=2)


def parse_session(payload: str) -> CaptureSession:
    """Decode a slot payload; raises :class:`SessionStateError` when malformed."""

    try:
        state = SessionStateFile.model_validate_json(payload)
    except ValidationError as exc:
        raise SessionStateError(f"persisted session is not readable: {exc}") from exc

    run = state.multi_page_run
    return CaptureSession(
        records={
            rid: TransactionRecord(
                id=r.id,
                date=r.date,
                payment_method=r.payment_method,
                amount=r.amount,
                currency=r.currency,
                external_reference=r.external_reference,
                status=r.status,
                merchant=r.merchant,
                items=tuple(r.items),
            )
            for rid, r in state.records.items()
        },
        total_count=state.total_count,
        capture_run_count=state.capture_run_count,
        last_update=state.last_update,
        pages_to_capture=state.pages_to_capture,
        multi_page_run=(
            MultiPageRun(current_page=run.current_page, total_pages=run.total_pages)
            if run is not None
            else None
        ),
        stop_requested=state.stop_requested,
    )


class SessionStorage:
    """Load/persist a :class:`CaptureSession` through a :class:`SessionSlot`."""

    def __init__(self, slot: SessionSlot) -> None:
        self.slot = slot

    def load(self) -> CaptureSession:
        payload = self.slot.read()
        if payload is None or not payload.strip():
            return CaptureSession()
        return parse_session(payload)

    def save(self, session: CaptureSession, *, keep_stop_request: bool = True) -> None:
        """Persist ``session``.

        A stop request written to the slot by another writer (the ``stop``
        command) is carried into ``session`` so this save does not drop it.
        The run that consumes the request saves with ``keep_stop_request=False``.
        """

        if keep_stop_request and not session.stop_requested and self._stop_pending():
            session.stop_requested = True
        self.slot.write(dump_session(session))

    def _stop_pending(self) -> bool:
        payload = self.slot.read()
        if payload is None or not payload.strip():
            return False
        try:
            return parse_session(payload).stop_requested
        except SessionStateError:
            _logger.warning("Overwriting unreadable session slot")
            return False

    def clear(self) -> None:
        self.slot.clear()


# ----------------------------------------------------------------------------
# Accumulator
# ----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MergeResult:
    inserted: int
    skipped: int


def _now_text() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


class AccumulatorStore:
    """At-most-once record store keyed by :attr:`TransactionRecord.natural_key`.

    Records are indexed by natural key so duplicate checks are constant time;
    the first capture of a key is kept and later ones are only counted.
    """

    def __init__(
        self,
        session: CaptureSession,
        storage: SessionStorage,
        *,
        clock: Callable[[], str] = _now_text,
    ) -> None:
        self.session = session
        self._storage = storage
        self._clock = clock
        self._by_key: dict[NaturalKey, str] = {}
        for rid, record in session.records.items():
            self._by_key.setdefault(record.natural_key, rid)

    def find_duplicate(self, record: TransactionRecord) -> str | None:
        """Return the id of the stored record sharing ``record``'s natural key."""

        return self._by_key.get(record.natural_key)

    def merge(self, new_records: Iterable[TransactionRecord]) -> MergeResult:
        """Insert records whose natural key is not yet stored.

        When at least one record is inserted, ``total_count``,
        ``capture_run_count`` and ``last_update`` are refreshed and the session
        is persisted.
        """

        inserted = skipped = 0
        for record in new_records:
            key = record.natural_key
            if key in self._by_key:
                skipped += 1
                continue
            self.session.records[record.id] = record
            self._by_key[key] = record.id
            inserted += 1

        if inserted:
            self.session.total_count = len(self.session.records)
            self.session.capture_run_count += 1
            self.session.last_update = self._clock()
            self._storage.save(self.session)
            _logger.info(
                "Stored %d new transactions (%d total, %d skipped)",
                inserted,
                self.session.total_count,
                skipped,
            )
        return MergeResult(inserted=inserted, skipped=skipped)

    def to_record_set(self) -> dict[str, TransactionRecord]:
        return dict(self.session.records)


__all__ = [
    "STATE_KEY",
    "STATE_FILENAME",
    "SessionSlot",
    "MemorySlot",
    "FileSlot",
    "get_state_dir",
    "dump_session",
    "parse_session",
    "SessionStorage",
    "MergeResult",
    "AccumulatorStore",
]
