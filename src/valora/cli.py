"""Click-based CLI for valora.

Thin wrapper around library modules. Every operation delegates to the
refresh, storage, or api packages.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call."""
    if "config" not in ctx.obj:
        from valora.core import ConfigError, load_config

        try:
            ctx.obj["config"] = load_config(config_path=ctx.obj.get("config_path"))
        except ConfigError as e:
            raise click.ClickException(f"Invalid configuration: {e}") from e
    return ctx.obj["config"]


async def _create_store_async(config):
    """Create and initialize storage from config."""
    from valora.storage import create_store

    return await create_store(config.storage)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _fmt_ts(ts: int | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def _fmt_price(value: float | None) -> str:
    return "-" if value is None else f"{value:,.4f}"


def _print_refresh(result) -> None:
    if result.skipped:
        console.print(f"[yellow]-[/yellow] {result.category}: skipped (cooldown)")
    elif result.success:
        suffix = " via fallback" if result.used_fallback else ""
        console.print(
            f"[green]✓[/green] {result.category}: {result.quotes_count} quotes{suffix}"
        )
    else:
        console.print(f"[red]✗[/red] {result.category}: {result.error}")


def _print_summary(summary) -> None:
    console.print(
        f"[green]✓[/green] Backfill inserted {summary.inserted} quotes "
        f"({summary.succeeded} succeeded, {summary.skipped} skipped, "
        f"{summary.failed} failed, {summary.empty} empty)"
    )


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="VALORA_CONFIG",
    default=None,
    help="Path to valora.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable debug logging.",
)
@click.version_option(package_name="valora-backend")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """Valora: precious metal and exchange rate quote backend."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# refresh
# ---------------------------------------------------------------------------


@cli.command()
@click.argument(
    "category",
    type=click.Choice(["metals", "fx", "all"], case_sensitive=False),
    default="all",
)
@click.option(
    "--if-stale",
    is_flag=True,
    default=False,
    help="Only refresh categories whose last success is older than the staleness threshold.",
)
@click.pass_context
def refresh(ctx: click.Context, category: str, if_stale: bool) -> None:
    """Fetch current quotes and update the store."""
    config = _load_config(ctx)

    async def _run():
        from valora.core import Category
        from valora.refresh.runtime import build_runtime

        runtime = await build_runtime(config)
        try:
            categories = list(Category) if category == "all" else [Category(category)]
            results = []
            for cat in categories:
                if if_stale:
                    result = await runtime.orchestrator.refresh_if_stale(cat)
                    if result is None:
                        console.print(f"[dim]-[/dim] {cat}: fresh, nothing to do")
                        continue
                else:
                    result = await runtime.orchestrator.refresh(cat)
                _print_refresh(result)
                results.append(result)
            return results
        finally:
            await runtime.close()

    results = _run_async(_run())
    if any(not r.success and not r.skipped for r in results):
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# backfill
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--metals-years", type=click.IntRange(min=1), default=None, help="Metals lookback in years.")
@click.option("--fx-years", type=click.IntRange(min=1), default=None, help="FX lookback in years.")
@click.option("--skip-fx", is_flag=True, default=False, help="Only backfill metals.")
@click.pass_context
def backfill(
    ctx: click.Context, metals_years: int | None, fx_years: int | None, skip_fx: bool
) -> None:
    """Populate the historical series from the archive providers."""
    config = _load_config(ctx)

    async def _run():
        from valora.refresh.runtime import build_runtime

        runtime = await build_runtime(config)
        try:
            return await runtime.run_backfill(
                metals_years=metals_years, fx_years=fx_years, include_fx=not skip_fx
            )
        finally:
            await runtime.close()

    summary = _run_async(_run())
    _print_summary(summary)
    if summary.failed:
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show refresh state and data coverage."""
    config = _load_config(ctx)

    async def _run():
        from valora.core import Category

        store = await _create_store_async(config)
        try:
            table = Table(title="Valora Status")
            table.add_column("Category", style="bold")
            table.add_column("Status")
            table.add_column("Last success")
            table.add_column("Last attempt")
            table.add_column("Failures", justify="right")
            table.add_column("Instruments", justify="right")
            table.add_column("Oldest quote")

            for cat in Category:
                state = await store.get_fetch_state(str(cat))
                view = await store.get_latest(cat)
                oldest = await store.oldest_ts(cat)
                table.add_row(
                    str(cat),
                    str(state.last_status) if state and state.last_status else "never",
                    _fmt_ts(state.last_success_ts if state else None),
                    _fmt_ts(state.last_attempt_ts if state else None),
                    str(state.consecutive_failures if state else 0),
                    str(len(view.items)),
                    _fmt_ts(oldest),
                )
                if state and state.last_error:
                    table.add_row("", f"[red]{state.last_error}[/red]", "", "", "", "", "")

            console.print(table)
            console.print(f"Historical quotes: {await store.count_quotes()}")
        finally:
            await store.close()

    _run_async(_run())


# ---------------------------------------------------------------------------
# history
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("instrument_id")
@click.option("--days", type=click.IntRange(min=1), default=7, help="Lookback window in days.")
@click.option("--limit", "-n", type=click.IntRange(1, 10_000), default=20, help="Max rows.")
@click.pass_context
def history(ctx: click.Context, instrument_id: str, days: int, limit: int) -> None:
    """Print stored quotes for one instrument, newest first."""
    config = _load_config(ctx)

    async def _run():
        store = await _create_store_async(config)
        try:
            instrument = await store.get_instrument(instrument_id)
            if instrument is None:
                raise click.ClickException(f"Unknown instrument: {instrument_id}")
            start = int((datetime.now() - timedelta(days=days)).timestamp())
            return instrument, await store.get_history(instrument_id, start=start, limit=limit)
        finally:
            await store.close()

    instrument, points = _run_async(_run())
    if not points:
        console.print(f"[yellow]No quotes for {instrument_id} in the last {days} days.[/yellow]")
        return

    table = Table(title=f"{instrument.name} ({instrument.id})")
    table.add_column("Time")
    table.add_column("Price", justify="right")
    table.add_column("Buy", justify="right")
    table.add_column("Sell", justify="right")
    table.add_column("Source")
    for p in points:
        table.add_row(
            _fmt_ts(p.ts), _fmt_price(p.price), _fmt_price(p.buy), _fmt_price(p.sell), p.source or ""
        )
    console.print(table)


# ---------------------------------------------------------------------------
# purge-source
# ---------------------------------------------------------------------------


@cli.command("purge-source")
@click.argument("source")
@click.option("--yes", is_flag=True, default=False, help="Skip the confirmation prompt.")
@click.pass_context
def purge_source(ctx: click.Context, source: str, yes: bool) -> None:
    """Delete every quote written by SOURCE (e.g. a feed found to be corrupt)."""
    config = _load_config(ctx)
    if not yes:
        click.confirm(f"Delete all quotes with source '{source}'?", abort=True)

    async def _run():
        store = await _create_store_async(config)
        try:
            return await store.purge_source(source)
        finally:
            await store.close()

    historical, latest = _run_async(_run())
    console.print(
        f"[green]✓[/green] Purged {historical} historical and {latest} snapshot rows "
        f"from '{source}'"
    )


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--no-backfill", is_flag=True, default=False, help="Skip the startup backfill.")
@click.pass_context
def run(ctx: click.Context, no_backfill: bool) -> None:
    """Initial fetch, backfill, then refresh on schedule until interrupted."""
    config = _load_config(ctx)

    async def _run():
        from valora.refresh.runtime import build_runtime

        runtime = await build_runtime(config)
        try:
            for result in await runtime.orchestrator.refresh_all():
                _print_refresh(result)
            runtime.scheduler.start()
            if not no_backfill and config.backfill.enabled:
                _print_summary(await runtime.run_backfill())
            await asyncio.Event().wait()
        finally:
            await runtime.close()

    try:
        _run_async(_run())
    except KeyboardInterrupt:
        console.print("Stopped.")


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", default=None, help="Bind address (default from config).")
@click.option("--port", type=int, default=None, help="Port (default from config).")
@click.option(
    "--with-scheduler",
    is_flag=True,
    default=False,
    help="Also run the initial fetch, backfill, and periodic refresh in-process.",
)
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, with_scheduler: bool) -> None:
    """Start the REST API server."""
    import uvicorn

    from valora.api.app import create_app

    config = _load_config(ctx)
    host = host or config.api.host
    port = port or config.api.port

    console.print(f"Starting valora API on [bold]{host}:{port}[/bold]")
    console.print(f"API docs: http://{host}:{port}/docs")

    uvicorn.run(create_app(config, with_scheduler=with_scheduler), host=host, port=port)


if __name__ == "__main__":
    cli()
