"""Pytest configuration for test isolation.

The file-backed session slot defaults to ``./.state`` under the working
directory, and the CLI also reads ``DATABASE_URL`` and timing overrides from
the environment (or a local ``.env``). Any of these leaking in from the
developer's shell would let one test observe another test's session or wait
on real transition delays.

An autouse fixture points ``TXN_EXPORTER_STATE_DIR`` at the test's own
temporary directory and clears the other variables.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

_CLEARED_VARS = (
    "DATABASE_URL",
    "TXN_EXPORTER_BASE_URL",
    "TXN_EXPORTER_TRANSACTIONS_URL",
    "TXN_EXPORTER_ENRICH_DELAY",
    "TXN_EXPORTER_TRANSITION_TIMEOUT",
    "TXN_EXPORTER_SETTLE_DELAY",
)


@pytest.fixture(autouse=True)
def _isolate_state_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Force a per-test state dir so tests don't share a persisted session."""

    state_root = tmp_path / "state"
    state_root.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("TXN_EXPORTER_STATE_DIR", os.fspath(state_root))
    for name in _CLEARED_VARS:
        monkeypatch.delenv(name, raising=False)
    # Keep load_dotenv() from picking up a developer's .env in the repo root.
    monkeypatch.chdir(tmp_path)
