import json

from typer.testing import CliRunner

from tests.helpers.pages import date_group, line_item, scenario_a_page, transactions_page
from transactions_exporter import cli
from transactions_exporter.cli import app
from transactions_exporter.db.client import dispose_engines
from transactions_exporter.host import StaticHtmlHost
from transactions_exporter.models import MultiPageRun
from transactions_exporter.store import STATE_FILENAME, FileSlot, SessionStorage

runner = CliRunner()


def _fast(monkeypatch) -> None:
    monkeypatch.setenv("TXN_EXPORTER_SETTLE_DELAY", "0")
    monkeypatch.setenv("TXN_EXPORTER_TRANSITION_TIMEOUT", "0.2")


def _write(tmp_path, name: str, html: str):
    path = tmp_path / name
    path.write_text(html, encoding="utf-8")
    return path


def test_capture_file_then_status_and_export(tmp_path, monkeypatch):
    _fast(monkeypatch)
    page = _write(tmp_path, "page1.html", scenario_a_page())

    result = runner.invoke(app, ["capture-file", str(page)])
    assert result.exit_code == 0, result.output
    assert "2/3 transactions captured, 1 failed, 0 skipped" in result.output

    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0, result.output
    assert "Transactions" in result.output

    out = tmp_path / "export.csv"
    result = runner.invoke(app, ["export", "--format", "csv", "--output", str(out)])
    assert result.exit_code == 0, result.output
    lines = out.read_text(encoding="utf-8").split("\n")
    assert lines[0].startswith('"Date","PaymentMethod","Amount"')
    assert len(lines) == 3


def test_capture_file_multiple_pages_runs_pagination(tmp_path, monkeypatch):
    _fast(monkeypatch)
    pages = [
        _write(
            tmp_path,
            f"page{n}.html",
            transactions_page(date_group("August 24, 2025", line_item(reference=f"ref-{n}"))),
        )
        for n in (1, 2)
    ]

    result = runner.invoke(app, ["capture-file", *map(str, pages)])

    assert result.exit_code == 0, result.output
    assert "Processed 2 pages" in result.output

    result = runner.invoke(app, ["export", "--format", "json"])
    data = json.loads(result.stdout)
    assert {r["external_reference"] for r in data["records"].values()} == {"ref-1", "ref-2"}


def test_recapture_skips_duplicates(tmp_path, monkeypatch):
    _fast(monkeypatch)
    page = _write(tmp_path, "page1.html", scenario_a_page())
    runner.invoke(app, ["capture-file", str(page)])

    result = runner.invoke(app, ["capture-file", str(page)])

    assert "0/3 transactions captured, 1 failed, 2 skipped" in result.output


def test_export_without_data_fails():
    result = runner.invoke(app, ["export"])
    assert result.exit_code == 1
    assert "No transaction data to export" in result.output


def test_export_rejects_unknown_format():
    result = runner.invoke(app, ["export", "--format", "xml"])
    assert result.exit_code == 1


def test_pages_is_clamped_and_persisted():
    result = runner.invoke(app, ["pages", "80"])
    assert result.exit_code == 0
    assert "Pages to capture: 50" in result.output

    result = runner.invoke(app, ["status"])
    assert "50" in result.output


def test_stop_and_clear(tmp_path, monkeypatch):
    _fast(monkeypatch)
    page = _write(tmp_path, "page1.html", scenario_a_page())
    runner.invoke(app, ["capture-file", str(page)])

    assert runner.invoke(app, ["stop"]).exit_code == 0

    result = runner.invoke(app, ["clear"], input="n\n")
    assert result.exit_code == 1

    result = runner.invoke(app, ["clear", "--yes"])
    assert result.exit_code == 0
    assert runner.invoke(app, ["export"]).exit_code == 1


def test_state_dir_option(tmp_path, monkeypatch):
    _fast(monkeypatch)
    page = _write(tmp_path, "page1.html", scenario_a_page())
    state_dir = tmp_path / "elsewhere"

    result = runner.invoke(app, ["--state-dir", str(state_dir), "capture-file", str(page)])

    assert result.exit_code == 0, result.output
    assert (state_dir / "session.json").exists()


def test_database_url_option_uses_sql_slot(tmp_path, monkeypatch):
    _fast(monkeypatch)
    page = _write(tmp_path, "page1.html", scenario_a_page())
    url = f"sqlite+pysqlite:///{tmp_path / 'capture.db'}"
    try:
        result = runner.invoke(app, ["--database-url", url, "capture-file", str(page)])
        assert result.exit_code == 0, result.output

        result = runner.invoke(app, ["--database-url", url, "export", "--format", "json"])
        assert len(json.loads(result.stdout)["records"]) == 2
        # The file-backed slot was never touched.
        assert not (tmp_path / "state" / "session.json").exists()
    finally:
        dispose_engines()


def test_corrupt_session_is_reported(tmp_path):
    (tmp_path / "state" / "session.json").write_text("{broken", encoding="utf-8")

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 1
    assert "persisted session is not readable" in result.output
    assert "clear" in result.output


def test_clear_recovers_from_corrupt_session(tmp_path):
    session_file = tmp_path / "state" / "session.json"
    session_file.write_text("{broken", encoding="utf-8")

    result = runner.invoke(app, ["clear", "--yes"])

    assert result.exit_code == 0, result.output
    assert not session_file.exists()
    assert runner.invoke(app, ["status"]).exit_code == 0


def test_capture_file_reports_host_failure_without_traceback(tmp_path, monkeypatch):
    class BrokenHost(StaticHtmlHost):
        async def snapshot(self) -> str:
            raise RuntimeError("page crashed")

    monkeypatch.setattr(cli, "StaticHtmlHost", BrokenHost)
    page = _write(tmp_path, "page1.html", scenario_a_page())

    result = runner.invoke(app, ["capture-file", str(page)])

    assert result.exception is None
    assert result.exit_code == 0
    assert "Capture stopped: error during page capture: page crashed" in result.output


def test_status_flags_unfinished_run_until_next_capture(tmp_path, monkeypatch):
    _fast(monkeypatch)
    storage = SessionStorage(FileSlot(tmp_path / "state" / STATE_FILENAME))
    session = storage.load()
    session.multi_page_run = MultiPageRun(current_page=2, total_pages=5)
    storage.save(session)

    result = runner.invoke(app, ["status"])
    assert "Unfinished run" in result.output
    assert "page 2 of 5" in result.output

    page = _write(tmp_path, "page1.html", scenario_a_page())
    runner.invoke(app, ["capture-file", str(page)])

    assert "Unfinished run" not in runner.invoke(app, ["status"]).output
