"""Typer console interface for ``transactions_exporter``.

Every command loads ``.env`` from the current working directory (without
overriding variables that are already set), configures package logging and
then works on the persisted capture session: a JSON file under the state
directory, or one SQL row when ``DATABASE_URL``/``--database-url`` is given.
"""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

import httpx
import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from typer.models import ArgumentInfo

from .api import CaptureEngine, Timings
from .capture import ItemsFetcher
from .config import Settings, load_settings
from .enrichment import NoItemsFetcher, OrderItemsFetcher
from .errors import ExporterError, SessionStateError
from .exporters import to_csv, to_json
from .host import PageHost, StaticHtmlHost
from .logging_setup import configure_logging
from .models import ProgressSnapshot
from .pagination import RunState
from .store import STATE_FILENAME, FileSlot, SessionSlot, SessionStorage

console = Console(stderr=True)


@dataclass(slots=True)
class CliState:
    database_url: str | None = None
    state_dir: Path | None = None


def _settings(ctx: typer.Context) -> Settings:
    state: CliState = ctx.obj or CliState()
    return load_settings(database_url=state.database_url)


def _slot(ctx: typer.Context, settings: Settings) -> SessionSlot:
    state: CliState = ctx.obj or CliState()
    if settings.database_url:
        # Deferred import keeps SQLAlchemy off the file-backed path.
        from .db import SqlSlot

        return SqlSlot(database_url=settings.database_url)
    return FileSlot((state.state_dir or settings.state_dir) / STATE_FILENAME)


def _engine(
    ctx: typer.Context, settings: Settings, fetcher: ItemsFetcher | None = None
) -> CaptureEngine:
    storage = SessionStorage(_slot(ctx, settings))
    return CaptureEngine(
        storage,
        fetcher if fetcher is not None else NoItemsFetcher(),
        timings=Timings(
            transition_timeout=settings.transition_timeout,
            settle_delay=settings.settle_delay,
        ),
    )


def _fail(message: str) -> typer.Exit:
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(1)


def _report(exc: ExporterError) -> typer.Exit:
    if isinstance(exc, SessionStateError):
        return _fail(f"{exc}\nRun `transactions-exporter clear` to start a new session.")
    return _fail(str(exc))


def _order_fetcher(
    client: httpx.AsyncClient, settings: Settings, *, enrich: bool
) -> OrderItemsFetcher | NoItemsFetcher:
    if not enrich:
        return NoItemsFetcher()
    return OrderItemsFetcher(
        client,
        base_url=settings.base_url,
        url_template=settings.order_url_template,
        delay=settings.enrich_delay,
    )


async def _run_capture(engine: CaptureEngine, host: PageHost, pages: int) -> str:
    """Capture one page or a multi-page run and return the closing message."""

    with console.status("Capturing transactions...", spinner="dots") as status:

        def on_progress(progress: ProgressSnapshot) -> None:
            status.update(progress.status_line())

        def on_state(state: RunState) -> None:
            if state is RunState.AWAITING_TRANSITION:
                status.update("Navigating to next page...")

        engine.startup()
        if pages <= 1:
            result = await engine.capture_page(host, on_progress=on_progress)
            if result.error is not None:
                return f"Capture stopped: {result.error}"
            return result.progress.status_line(done=True)
        run = await engine.capture_pages(host, pages, on_progress=on_progress, on_state=on_state)
        return run.summary()


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Capture payment transactions from the paginated transactions page, "
        "enrich them with order items and export them as CSV or JSON."
    ),
)


# Module-level argument object to satisfy ruff B008 (no calls in parameter
# defaults).
HTML_PATHS_ARGUMENT: ArgumentInfo = typer.Argument(
    ...,
    help="Saved transactions pages, in page order.",
    exists=True,
    dir_okay=False,
    file_okay=True,
    readable=True,
)


@app.command("capture")
def capture_cmd(
    ctx: typer.Context,
    *,
    pages: int | None = typer.Option(
        None, min=1, help="Pages to capture (defaults to the saved pages setting)."
    ),
    url: str | None = typer.Option(
        None, help="Transactions page URL (falls back to TXN_EXPORTER_TRANSACTIONS_URL)."
    ),
    storage_state: Path | None = typer.Option(
        None, help="Browser storage state file, reused and refreshed to keep the sign-in."
    ),
    headless: bool = typer.Option(False, help="Run the browser without a window."),
    enrich: bool = typer.Option(True, help="Fetch item descriptions for each order."),
) -> None:
    """Capture from a live browser page (requires the ``browser`` extra)."""

    try:
        from .browser import browser_session
    except ImportError as e:
        raise _fail(f"browser capture needs Playwright: {e}") from e

    settings = _settings(ctx)
    target = url or settings.transactions_url

    async def _go() -> str:
        async with browser_session(target, storage_state=storage_state, headless=headless) as host:
            cookies = await host.cookies(settings.base_url)
            async with httpx.AsyncClient(cookies=cookies, follow_redirects=True) as client:
                engine = _engine(ctx, settings, _order_fetcher(client, settings, enrich=enrich))
                total = pages if pages is not None else engine.reload().pages_to_capture
                return await _run_capture(engine, host, total)

    try:
        message = asyncio.run(_go())
    except ExporterError as e:
        raise _report(e) from e
    typer.echo(message)


@app.command("capture-file")
def capture_file_cmd(
    ctx: typer.Context,
    paths: Annotated[list[Path], HTML_PATHS_ARGUMENT],
    *,
    enrich: bool = typer.Option(False, help="Fetch item descriptions over HTTP."),
) -> None:
    """Capture saved transactions pages as one run (one file per page)."""

    settings = _settings(ctx)
    try:
        documents = [p.read_text(encoding="utf-8") for p in paths]
    except (OSError, UnicodeDecodeError) as e:
        raise _fail(f"failed to read page: {e}") from e
    host = StaticHtmlHost(documents)

    async def _go() -> str:
        async with httpx.AsyncClient(follow_redirects=True) as client:
            engine = _engine(ctx, settings, _order_fetcher(client, settings, enrich=enrich))
            return await _run_capture(engine, host, len(documents))

    try:
        message = asyncio.run(_go())
    except ExporterError as e:
        raise _report(e) from e
    typer.echo(message)


@app.command("status")
def status_cmd(ctx: typer.Context) -> None:
    """Show counters of the persisted capture session."""

    try:
        summary = _engine(ctx, _settings(ctx)).summary()
    except ExporterError as e:
        raise _report(e) from e

    table = Table(title="Captured transactions", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Transactions", str(summary.total_transactions))
    table.add_row("Items", str(summary.total_items))
    table.add_row("Pages captured", str(summary.pages_captured))
    table.add_row("Last update", summary.last_update or "never")
    table.add_row("Pages per run", str(summary.pages_to_capture))
    run = summary.multi_page_run
    if run is not None:
        # Also left behind by an interrupted process; the next capture drops it.
        table.add_row(
            "Unfinished run",
            f"page {run.current_page} of {run.total_pages} (discarded by the next capture)",
        )
    Console().print(table)


@app.command("export")
def export_cmd(
    ctx: typer.Context,
    *,
    fmt: str = typer.Option("csv", "--format", help="Output format: csv or json."),
    output: Path | None = typer.Option(None, help="Write to this file instead of stdout."),
) -> None:
    """Export captured transactions."""

    if fmt not in ("csv", "json"):
        raise _fail(f"unsupported format {fmt!r} (expected csv or json)")

    try:
        session = _engine(ctx, _settings(ctx)).reload()
    except ExporterError as e:
        raise _report(e) from e
    if not session.records:
        raise _fail("No transaction data to export")

    text = to_csv(session) if fmt == "csv" else to_json(session)
    if output is None:
        sys.stdout.write(text + "\n")
        return
    output.write_text(text, encoding="utf-8")
    typer.echo(f"Exported {len(session.records)} transactions to {output}")


@app.command("pages")
def pages_cmd(
    ctx: typer.Context,
    count: int = typer.Argument(..., help="Pages to capture per run (clamped to 1..50)."),
) -> None:
    """Set how many pages a ``capture`` run walks by default."""

    try:
        value = _engine(ctx, _settings(ctx)).set_pages_to_capture(count)
    except ExporterError as e:
        raise _report(e) from e
    typer.echo(f"Pages to capture: {value}")


@app.command("stop")
def stop_cmd(ctx: typer.Context) -> None:
    """Ask a running multi-page capture to stop before its next page."""

    try:
        _engine(ctx, _settings(ctx)).request_stop()
    except ExporterError as e:
        raise _report(e) from e
    typer.echo("Stop requested.")


@app.command("clear")
def clear_cmd(
    ctx: typer.Context,
    *,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Delete all captured transaction data."""

    if not yes and not typer.confirm("Are you sure you want to clear all captured data?"):
        raise typer.Exit(1)
    _engine(ctx, _settings(ctx)).clear()
    typer.echo("All data cleared.")


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    *,
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
    state_dir: Path | None = typer.Option(
        None, help="Override TXN_EXPORTER_STATE_DIR for the file-backed session."
    ),
    log_level: str | None = typer.Option(
        None, help="Log level (falls back to TXN_EXPORTER_LOG_LEVEL, then INFO)."
    ),
) -> None:
    """Root command.

    Loads ``.env`` from the current working directory and sets up logging
    before any subcommand runs.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level)
    ctx.obj = CliState(database_url=database_url, state_dir=state_dir)

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()
