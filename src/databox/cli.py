from __future__ import annotations

import asyncio
import dataclasses
import functools
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import click
import httpx
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from databox.catalog import CatalogQueries, Match
from databox.clients.etherscan import CHAIN_IDS, fetch_abi
from databox.clients.source import RpcChainSource
from databox.constants import DEFAULT_DEPLOYMENTS
from databox.core.config import PIPELINE_KINDS, ChainSourceConfig, PipelineConfig, StoreConfig
from databox.core.models import CatalogEntry
from databox.decoding.abi import describe_event, get_event_schema, get_events_from_abi, make_registry_from_abi
from databox.errors import DataboxError
from databox.log import configure_logging
from databox.orchestration.manager import PipelineManager
from databox.storage import ALL_TABLES, make_store
from databox.storage.export import export_table
from databox.storage.tables import TableSchema

console = Console()

DEFAULT_DB = "databox.duckdb"

T = TypeVar("T")


def _run(coro: Awaitable[T]) -> T:
    """Run a coroutine, mapping package errors to a non-zero CLI exit."""
    try:
        return asyncio.run(coro)  # type: ignore[arg-type]
    except DataboxError as e:
        raise click.ClickException(str(e)) from e
    except httpx.HTTPError as e:
        raise click.ClickException(f"HTTP error: {e}") from e


def _store_config(ctx: click.Context) -> StoreConfig:
    return ctx.obj["store"]


def with_store(fn: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """Open the configured store for the duration of one command."""

    @functools.wraps(fn)
    async def wrapper(config: StoreConfig, *args: Any, **kwargs: Any) -> Any:
        store = make_store(config)
        try:
            return await fn(store, *args, **kwargs)
        finally:
            await store.close()

    return wrapper


def _table_schema(name: str) -> TableSchema:
    schema = ALL_TABLES.get(name)
    if schema is None:
        raise click.BadParameter(f"unknown table {name!r}; expected one of {', '.join(ALL_TABLES)}")
    return schema


def resolve_deployment(kind: str, contract: str | None, from_block: int | None) -> tuple[str, int]:
    """Fill in the known deployment of KIND for a missing contract or start block."""
    default = DEFAULT_DEPLOYMENTS.get(kind)
    if contract is None:
        if default is None:
            raise click.UsageError(f"--contract is required for {kind} pipelines")
        contract = default[0]
    if from_block is None:
        from_block = default[1] if default is not None and contract.lower() == default[0] else 0
    return contract, from_block


def _entries_table(entries: list[CatalogEntry], title: str) -> Table:
    table = Table(title=title)
    for col in ("block", "piece_cid", "name", "filetype", "price", "pay_address"):
        table.add_column(col)
    for e in entries:
        table.add_row(str(e.block_number), e.piece_cid, e.name, e.filetype, str(e.price), e.pay_address)
    return table


@click.group()
@click.option("--log-level", default="INFO", show_default=True, help="Logging level for the databox logger")
@click.option("--store", "backend", type=click.Choice(["duckdb", "clickhouse"]), default=None, help="Store backend (env DATABOX_STORE)")
@click.option("--db", "duckdb_path", default=None, help=f"DuckDB file (env DATABOX_DUCKDB_PATH, default {DEFAULT_DB})")
@click.pass_context
def cli(ctx: click.Context, log_level: str, backend: str | None, duckdb_path: str | None) -> None:
    """Databox: index marketplace and lending events into a columnar store."""
    configure_logging(log_level, console=Console(stderr=True))
    try:
        config = StoreConfig.from_env()
        overrides: dict[str, Any] = {}
        if backend:
            overrides["backend"] = backend
        if duckdb_path:
            overrides["duckdb_path"] = duckdb_path
        elif config.duckdb_path == ":memory:":
            overrides["duckdb_path"] = DEFAULT_DB
        config = dataclasses.replace(config, **overrides)
    except DataboxError as e:
        raise click.ClickException(str(e)) from e
    ctx.ensure_object(dict)
    ctx.obj["store"] = config


# ---------------------------------------------------------------------------
# index
# ---------------------------------------------------------------------------


@cli.command("index")
@click.argument("kind", type=click.Choice(PIPELINE_KINDS))
@click.option("--rpc", envvar="RPC_URL", required=True, help="RPC endpoint URL (env RPC_URL)")
@click.option("--contract", envvar="CONTRACT_ADDRESS", default=None, help="Emitter contract address (default: the known deployment for KIND)")
@click.option("--from-block", envvar="FROM_BLOCK", type=int, default=None, help="First block (default: the deployment block for KIND)")
@click.option("--to-block", envvar="TO_BLOCK", type=int, default=None, help="Stop after this block (default: follow the head)")
@click.option("--name", default=None, help="Job id / resume cursor key (default: KIND)")
@click.option("--step", type=int, default=1_000, show_default=True, help="Blocks per eth_getLogs")
@click.option("--confirmations", type=int, default=0, show_default=True)
@click.option("--signature", "signatures", multiple=True, help="Event signature for raw pipelines; repeat")
@click.option("--abi", "abi_path", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None, help="ABI JSON for raw pipelines")
@click.option("--table", default=None, help="Target table for raw pipelines")
@click.option("--resume/--no-resume", default=True, show_default=True)
@click.pass_context
def index_cmd(
    ctx: click.Context,
    kind: str,
    rpc: str,
    contract: str | None,
    from_block: int | None,
    to_block: int | None,
    name: str | None,
    step: int,
    confirmations: int,
    signatures: tuple[str, ...],
    abi_path: Path | None,
    table: str | None,
    resume: bool,
) -> None:
    """Index KIND events from a contract into the store."""
    contract, from_block = resolve_deployment(kind, contract, from_block)
    try:
        source_config = ChainSourceConfig(rpc_url=rpc, step=step, confirmations=confirmations)
        config = PipelineConfig(
            name=name or kind,
            contract_address=contract,
            from_block=from_block,
            to_block=to_block,
            kind=kind,  # type: ignore[arg-type]
            resume=resume,
            signatures=signatures,
            table=table,
        )
        registry = make_registry_from_abi(abi_path) if abi_path else None
    except DataboxError as e:
        raise click.ClickException(str(e)) from e

    store_config = _store_config(ctx)

    async def run() -> None:
        manager = PipelineManager(
            store_factory=lambda: make_store(store_config),
            source_factory=lambda c: RpcChainSource(source_config, to_block=c.to_block),
        )
        job_id = await manager.start(config, registry=registry)
        progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]indexing {task.fields[job]}[/]"),
            TextColumn("• {task.description}"),
            TimeElapsedColumn(),
            console=console,
            transient=False,
        )
        try:
            with progress:
                task = progress.add_task("waiting for first batch", job=job_id, total=None)
                waiter = asyncio.ensure_future(manager.wait(job_id))
                while not waiter.done():
                    info = manager.list()[0]
                    progress.update(
                        task,
                        description=f"block {info.last_block if info.last_block is not None else '-'} • rows {info.rows_written:,}",
                    )
                    await asyncio.wait({waiter}, timeout=0.5)
                stats = waiter.result()
        except (KeyboardInterrupt, asyncio.CancelledError):
            stats = await manager.stop(job_id)

        summary = Table(title=f"{job_id} summary", show_header=False)
        for key, value in dataclasses.asdict(stats).items():
            summary.add_row(key, str(value))
        console.print(summary)

    _run(run())


# ---------------------------------------------------------------------------
# catalog queries
# ---------------------------------------------------------------------------


@cli.command("search")
@click.argument("query")
@click.option("--all", "show_all", is_flag=True, help="Show every candidate above the threshold")
@click.pass_context
def search_cmd(ctx: click.Context, query: str, show_all: bool) -> None:
    """Find the catalog entry best matching QUERY."""

    @with_store
    async def run(store) -> None:
        queries = CatalogQueries(store)
        if show_all:
            matches = await queries.ranked(query)
            if not matches:
                console.print(f"[yellow]No match for {query!r}[/]")
                return
            table = Table(title=f"Matches for {query!r}")
            for col in ("score", "piece_cid", "name", "description"):
                table.add_column(col)
            for m in matches:
                table.add_row(f"{m.score:.1f}", m.entry.piece_cid, m.entry.name, m.entry.description)
            console.print(table)
            return

        result = await queries.best_match(query)
        if not isinstance(result, Match):
            console.print(f"[yellow]No match for {result.query!r}[/]")
            return
        e = result.entry
        console.print(f"[bold green]{e.name}[/] (score {result.score:.1f})")
        console.print(f"  piece_cid:   {e.piece_cid}")
        console.print(f"  description: {e.description}")
        console.print(f"  filetype:    {e.filetype}")
        console.print(f"  price:       {e.price}")
        console.print(f"  pay_address: {e.pay_address}")

    _run(run(_store_config(ctx)))


@cli.command("catalog")
@click.option("--cid", default=None, help="Show a single entry by piece CID")
@click.option("--downloads", is_flag=True, help="List paid downloads instead of listings")
@click.pass_context
def catalog_cmd(ctx: click.Context, cid: str | None, downloads: bool) -> None:
    """List catalog entries (most recent first)."""

    @with_store
    async def run(store) -> None:
        queries = CatalogQueries(store)
        if downloads:
            items = await queries.downloads(cid)
            table = Table(title="Downloads")
            for col in ("block", "piece_cid", "name", "price", "x402_tx_hash"):
                table.add_column(col)
            for d in items:
                table.add_row(str(d.entry.block_number), d.entry.piece_cid, d.entry.name, str(d.entry.price), d.x402_tx_hash)
            console.print(table)
            return
        if cid:
            entries = [await queries.get_entry(cid)]
        else:
            entries = await queries.all_entries()
        console.print(_entries_table(entries, f"Catalog ({len(entries)} entries)"))

    _run(run(_store_config(ctx)))


# ---------------------------------------------------------------------------
# table maintenance
# ---------------------------------------------------------------------------


@cli.command("check")
@click.argument("tables", nargs=-1)
@click.option("--limit", type=int, default=5, show_default=True, help="Latest rows to show per table")
@click.pass_context
def check_cmd(ctx: click.Context, tables: tuple[str, ...], limit: int) -> None:
    """Show row counts and the latest rows of TABLES (default: catalog tables)."""
    schemas = [_table_schema(t) for t in (tables or ("bahack_events", "bahack_downloads"))]

    @with_store
    async def run(store) -> None:
        for schema in schemas:
            await store.ensure_table(schema)
            n = await store.count(schema.name)
            console.print(f"[bold]{schema.name}[/]: {n:,} rows")
            if n and limit > 0:
                rows = (await store.query_all(schema.name))[:limit]
                table = Table()
                for col in schema.column_names:
                    table.add_column(col, overflow="fold")
                for row in rows:
                    table.add_row(*(str(row[c]) for c in schema.column_names))
                console.print(table)

    _run(run(_store_config(ctx)))


@cli.command("clear")
@click.argument("tables", nargs=-1, required=True)
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def clear_cmd(ctx: click.Context, tables: tuple[str, ...], yes: bool) -> None:
    """Drop TABLES so the next index run rebuilds them from scratch."""
    schemas = [_table_schema(t) for t in tables]
    if not yes:
        click.confirm(f"Drop {', '.join(s.name for s in schemas)}?", abort=True)

    @with_store
    async def run(store) -> None:
        for schema in schemas:
            await store.drop_table(schema.name)
            console.print(f"dropped [bold]{schema.name}[/]")

    _run(run(_store_config(ctx)))


@cli.command("export")
@click.argument("table")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--format", "fmt", type=click.Choice(["csv", "parquet"]), default=None, help="Default: from the file extension")
@click.pass_context
def export_cmd(ctx: click.Context, table: str, path: Path, fmt: str | None) -> None:
    """Export TABLE to a CSV or Parquet file at PATH."""
    schema = _table_schema(table)

    @with_store
    async def run(store) -> int:
        return await export_table(store, schema, path, fmt)  # type: ignore[arg-type]

    n = _run(run(_store_config(ctx)))
    console.print(f"wrote {n:,} rows to {path}")


# ---------------------------------------------------------------------------
# ABI inspection
# ---------------------------------------------------------------------------


@cli.command("events")
@click.argument("address", required=False)
@click.option("--abi", "abi_path", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None)
@click.option("--network", type=click.Choice(list(CHAIN_IDS)), default="mainnet", show_default=True)
@click.option("--api-key", envvar="ETHERSCAN_API_KEY", default="", help="Etherscan API key (env ETHERSCAN_API_KEY)")
def events_cmd(address: str | None, abi_path: Path | None, network: str, api_key: str) -> None:
    """List the events of a contract (verified ABI on Etherscan, or --abi FILE)."""
    if not address and not abi_path:
        raise click.UsageError("Pass a contract ADDRESS or --abi FILE")

    if abi_path is not None:
        abi: Any = abi_path
    else:
        abi = _run(fetch_abi(address, network, api_key=api_key))
    try:
        events = get_events_from_abi(abi)
        if not events:
            console.print("[yellow]No events in ABI[/]")
            return
        for event in events.values():
            console.print(describe_event(event), markup=False)
            console.print(f"  topic0: {get_event_schema(event).topic0}\n")
    except DataboxError as e:
        raise click.ClickException(str(e)) from e


if __name__ == "__main__":
    cli()
