"""
ledgerscan command-line entry point.

Usage:
    ledgerscan [OPTIONS] COMMAND [ARGS]...
"""
from __future__ import annotations

import asyncio
import contextlib
import signal
from dataclasses import dataclass
from typing import AsyncIterator, Union

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .chore import Chore, TickResult
from .client import LedgerClient
from .config import LedgerscanSettings, load_settings, with_overrides
from .exceptions import ConfigurationError, LedgerscanError
from .logging_config import setup_logging
from .payments_db import InMemoryPaymentsDB, PaymentStatus
from .payments_db_postgres import PostgresPaymentsDB, PostgresWalletsDB
from .service import DepositWalletService
from .wallets_db import InMemoryWalletsDB

console = Console()


@dataclass
class Runtime:
    """Wired-up components for one CLI invocation."""
    settings: LedgerscanSettings
    client: LedgerClient
    payments_db: Union[InMemoryPaymentsDB, PostgresPaymentsDB]
    wallets_db: Union[InMemoryWalletsDB, PostgresWalletsDB]

    def chore(self, disable_loop: bool | None = None) -> Chore:
        return Chore(
            self.client,
            self.payments_db,
            confirmations=self.settings.confirmations,
            interval=self.settings.interval,
            disable_loop=self.settings.disable_loop if disable_loop is None else disable_loop,
        )

    def service(self) -> DepositWalletService:
        return DepositWalletService(self.wallets_db, self.payments_db, self.client)


@contextlib.asynccontextmanager
async def open_runtime(settings: LedgerscanSettings) -> AsyncIterator[Runtime]:
    """Build the client and stores described by ``settings`` and close them afterwards."""
    client = LedgerClient(
        endpoint=settings.endpoint,
        identifier=settings.auth.identifier,
        secret=settings.auth.secret.get_secret_value(),
        timeout=settings.http_timeout,
    )
    if settings.use_postgres:
        payments_db = PostgresPaymentsDB(settings.database_url)
        wallets_db = PostgresWalletsDB(settings.database_url)
    else:
        payments_db = InMemoryPaymentsDB()
        wallets_db = InMemoryWalletsDB()

    try:
        yield Runtime(settings, client, payments_db, wallets_db)
    finally:
        await client.close()
        if isinstance(payments_db, PostgresPaymentsDB):
            await payments_db.close()
        if isinstance(wallets_db, PostgresWalletsDB):
            await wallets_db.close()


def _print_error(e: LedgerscanError) -> None:
    console.print(f"[red]Error ({e.error_code}): {e.message}[/red]")


def _print_tick(result: TickResult) -> None:
    if result.skipped:
        console.print("[yellow]Tick skipped: loop is disabled[/yellow]")
        return

    console.print(f"Cursor: [cyan]{result.cursor}[/cyan]")
    if result.latest_block is not None:
        console.print(f"Latest block: [cyan]{result.latest_block}[/cyan]")
    console.print(f"Fetched: {result.fetched}")
    console.print(f"Pending: [yellow]{result.pending}[/yellow]")
    console.print(f"Confirmed: [green]{result.confirmed}[/green]")
    if result.error is not None:
        _print_error(result.error)


@click.group()
@click.version_option(version=__version__, message="%(prog)s %(version)s")
@click.option("--env-file", type=click.Path(dir_okay=False), help="Read settings from this .env file")
@click.option("--endpoint", help="Ledger source base URL")
@click.option("--database-url", help="memory:// or a PostgreSQL URL")
@click.option("--log-level", help="Logging level")
@click.pass_context
def cli(ctx, env_file: str | None, endpoint: str | None, database_url: str | None, log_level: str | None):
    """ledgerscan - reconcile ledger payments into a local cache."""
    ctx.ensure_object(dict)

    overrides = {}
    if endpoint:
        overrides["endpoint"] = endpoint.rstrip("/")
    if database_url:
        overrides["database_url"] = database_url
    if log_level:
        overrides["log_level"] = log_level.upper()

    try:
        settings = load_settings(env_file)
        if overrides:
            settings = with_overrides(settings, overrides)
    except ConfigurationError as e:
        raise click.UsageError(e.message) from e

    setup_logging(settings.log_level, json_format=settings.log_json)
    ctx.obj["settings"] = settings


@cli.command()
@click.pass_context
def run(ctx):
    """Run the reconciliation chore until interrupted."""
    settings: LedgerscanSettings = ctx.obj["settings"]
    if settings.disable_loop:
        console.print("[yellow]disable_loop is set: every tick will be skipped[/yellow]")

    async def _run() -> None:
        async with open_runtime(settings) as runtime:
            chore = runtime.chore()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                with contextlib.suppress(NotImplementedError):
                    loop.add_signal_handler(sig, chore.cycle.close)
            await chore.run()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass
    except LedgerscanError as e:
        _print_error(e)
        ctx.exit(1)


@cli.command()
@click.pass_context
def tick(ctx):
    """Run a single reconciliation pass, even if the loop is disabled."""
    settings: LedgerscanSettings = ctx.obj["settings"]

    async def _tick() -> TickResult:
        async with open_runtime(settings) as runtime:
            return await runtime.chore(disable_loop=False).run_once()

    result = asyncio.run(_tick())
    _print_tick(result)
    if not result.ok:
        ctx.exit(1)


@cli.command()
@click.argument("user_id")
@click.pass_context
def claim(ctx, user_id: str):
    """Claim (or show) the deposit wallet of USER_ID."""
    settings: LedgerscanSettings = ctx.obj["settings"]

    async def _claim() -> str:
        async with open_runtime(settings) as runtime:
            return await runtime.service().claim(user_id)

    try:
        address = asyncio.run(_claim())
    except LedgerscanError as e:
        _print_error(e)
        ctx.exit(1)
        return

    console.print(f"Wallet: [cyan]{address}[/cyan]")


@cli.command()
@click.argument("wallet")
@click.option("--limit", default=50, show_default=True, type=click.IntRange(min=1), help="Rows to show")
@click.option("--offset", default=0, show_default=True, type=click.IntRange(min=0), help="Rows to skip")
@click.option("--sync", is_flag=True, help="Run one reconciliation pass before listing")
@click.pass_context
def payments(ctx, wallet: str, limit: int, offset: int, sync: bool):
    """List cached payments received by WALLET."""
    settings: LedgerscanSettings = ctx.obj["settings"]

    async def _list():
        async with open_runtime(settings) as runtime:
            if sync:
                result = await runtime.chore(disable_loop=False).run_once()
                if result.error is not None:
                    raise result.error
            service = runtime.service()
            rows = await service.payments(wallet, limit=limit, offset=offset)
            totals = await service.totals(wallet)
            return rows, totals

    try:
        rows, totals = asyncio.run(_list())
    except LedgerscanError as e:
        _print_error(e)
        ctx.exit(1)
        return

    if not rows:
        console.print("[dim]No payments found[/dim]")
        return

    table = Table(title=f"Payments to {wallet.lower()}")
    table.add_column("Block", style="cyan", justify="right")
    table.add_column("Transaction")
    table.add_column("Log", justify="right")
    table.add_column("From")
    table.add_column("Tokens", style="yellow", justify="right")
    table.add_column("USD", justify="right")
    table.add_column("Status")

    for p in rows:
        status = "[green]confirmed[/green]" if p.status == PaymentStatus.CONFIRMED else "[yellow]pending[/yellow]"
        table.add_row(
            str(p.block_number),
            p.transaction,
            str(p.log_index),
            p.from_address,
            f"{p.token_value.as_decimal():f}",
            f"{p.usd_value.as_decimal():f}",
            status,
        )

    console.print(table)
    console.print(f"Confirmed: [green]{totals.confirmed_tokens}[/green] ({totals.confirmed_usd})")
    console.print(f"Pending: [yellow]{totals.pending_tokens}[/yellow] ({totals.pending_usd})")


@cli.command("init-db")
@click.pass_context
def init_db(ctx):
    """Create the PostgreSQL tables."""
    settings: LedgerscanSettings = ctx.obj["settings"]
    if not settings.use_postgres:
        console.print("[yellow]database_url is memory://, nothing to initialize[/yellow]")
        return

    async def _init() -> None:
        store = PostgresPaymentsDB(settings.database_url)
        try:
            await store.init_schema()
        finally:
            await store.close()

    try:
        asyncio.run(_init())
    except LedgerscanError as e:
        _print_error(e)
        ctx.exit(1)
        return

    console.print("[green]✓ Schema ready[/green]")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
