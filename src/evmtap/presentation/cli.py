import asyncio, logging, signal
from typing import Optional

import typer
from rich.console import Console
from rich.progress import (
    Progress, BarColumn, TextColumn, TimeElapsedColumn,
    TimeRemainingColumn, MofNCompleteColumn, SpinnerColumn
)

from ..adapters.ws_heads import WebsocketHeadSource
from ..application.backfill import BackfillJob
from ..application.context import IngestionContext, build_context
from ..application.retention import sweep_retention
from ..application.tail import TailJob
from ..config import Settings
from ..domain.errors import ConfigError, DbError, RpcError
from ..domain.models import BackfillReport
from ..logging_setup import setup_logging

app = typer.Typer(help="evmtap: ingest ERC-20 transfers, pool creations and swaps into DuckDB.")
console = Console()
logger = logging.getLogger("evmtap")


def _startup() -> IngestionContext:
    try:
        settings = Settings.from_env()
    except ConfigError as e:
        console.print(f"[red]config error[/]: {e}")
        raise typer.Exit(code=1)
    setup_logging(settings.log_level)
    logger.info("Config: rpc_http=%s rpc_ws=%s duckdb=%s retention_days=%d batch_size=%d chunk_span=%d",
                settings.rpc_http, settings.rpc_ws, settings.duckdb_path,
                settings.retention_days, settings.batch_size, settings.chunk_span)
    try:
        return build_context(settings)
    except DbError as e:
        logger.error("cannot open store: %s", e)
        raise typer.Exit(code=1)


async def _check_rpc(ctx: IngestionContext) -> int:
    try:
        head = await ctx.rpc.block_number()
    except RpcError as e:
        logger.error("cannot reach RPC at %s: %s", ctx.settings.rpc_http, e)
        raise typer.Exit(code=1)
    logger.info("chain head at block %d", head)
    return head


async def _backfill(ctx: IngestionContext, days: float) -> BackfillReport:
    await _check_rpc(ctx)
    progress = Progress(SpinnerColumn(),
                        TextColumn("[bold]backfill[/]"),
                        BarColumn(),
                        MofNCompleteColumn(),
                        TextColumn("•"),
                        TimeElapsedColumn(),
                        TextColumn("→"),
                        TimeRemainingColumn(),
                        TextColumn(" • {task.description}"),
                        console=console,
                        transient=False,
                        expand=True,
                        )
    with progress:
        task = progress.add_task(description="", total=None)

        def on_batch(batch, ok):
            progress.update(task, advance=1, description=f"{batch.start:,}-{batch.end:,}{'' if ok else ' [red]failed[/]'}")

        def on_plan(window, batches):
            progress.update(task, total=len(batches))

        job = BackfillJob.from_context(ctx, on_batch=on_batch, on_plan=on_plan)
        report = await job.run(days)

    console.print(
        f"[bold]summary[/]: "
        f"blocks={report.blocks_processed:,}  logs={report.logs_ingested:,}  "
        f"[green]ok[/]={report.batches_ok}  [red]failed[/]={report.batches_failed}"
    )
    return report


def _install_stop(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # platforms without loop signal support fall back to KeyboardInterrupt
            pass


async def _tail(ctx: IngestionContext) -> None:
    await _check_rpc(ctx)
    stop = asyncio.Event()
    _install_stop(stop)
    job = TailJob.from_context(ctx, WebsocketHeadSource(ctx.settings.rpc_ws))
    report = await job.run(stop)
    console.print(f"[bold]tail stopped[/]: blocks={report.blocks_ok}  failed={report.blocks_failed}  last={report.last_block}")


def _run(main) -> None:
    ctx = _startup()

    async def runner():
        try:
            await main(ctx)
        finally:
            await ctx.aclose()

    try:
        asyncio.run(runner())
    except KeyboardInterrupt:
        logger.info("interrupted")


@app.callback(invoke_without_command=True)
def default(typer_ctx: typer.Context):
    """With no command: backfill the default window, then tail new blocks."""
    if typer_ctx.invoked_subcommand is not None:
        return

    async def main(ctx: IngestionContext):
        logger.info("Starting full indexer: backfill + tail...")
        await _backfill(ctx, ctx.settings.backfill_days)
        await _tail(ctx)

    _run(main)


@app.command()
def backfill(days: Optional[float] = typer.Argument(None, help="Days of history to ingest (default BACKFILL_DAYS)")):
    """Ingest a bounded historical window ending at the current head."""
    if days is not None and days <= 0:
        raise typer.BadParameter("days must be positive")

    async def main(ctx: IngestionContext):
        await _backfill(ctx, days if days is not None else ctx.settings.backfill_days)

    _run(main)


@app.command()
def tail():
    """Follow new blocks over the websocket endpoint until SIGINT/SIGTERM."""
    _run(_tail)


@app.command()
def retention(days: Optional[int] = typer.Option(None, "--days", min=1, help="Override RETENTION_DAYS")):
    """Delete transfers and swaps older than the retention horizon."""
    async def main(ctx: IngestionContext):
        deleted = await sweep_retention(ctx.store, days or ctx.settings.retention_days)
        console.print(f"[bold]retention[/]: " + "  ".join(f"{t}={n}" for t, n in deleted.items()))

    _run(main)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
