from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import psycopg
import typer

from jewelry_inventory.config import get_settings
from jewelry_inventory.domain.models import JewelryStatus
from jewelry_inventory.errors import PersistenceError
from jewelry_inventory.infrastructure.db_factory import PoolManager, build_dsn
from jewelry_inventory.persistence.query_builder import Page
from jewelry_inventory.services import Services, build_services
from jewelry_inventory.utils.logging import configure_logging

app = typer.Typer(help="Jewelry inventory CLI.")

DEFAULT_SCHEMA = Path(__file__).resolve().parent.parent / "db" / "init.sql"

T = TypeVar("T")


def _dump(payload: Any) -> str:
    return json.dumps(payload, indent=2, default=str)


async def _with_services(action: Callable[[Services], Awaitable[T]]) -> T:
    async with PoolManager() as pool:
        return await action(build_services(pool))


def _run(action: Callable[[Services], Awaitable[T]]) -> T:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    try:
        return asyncio.run(_with_services(action))
    except (PersistenceError, psycopg.Error) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"pool={settings.db_pool_min_size}..{settings.db_pool_max_size} "
        f"tx_timeout={settings.db_transaction_timeout_seconds}s "
        f"statement_timeout={settings.db_statement_timeout_ms}ms env={settings.app_env}"
    )


@app.command("init-db")
def init_db(
    schema: Path = typer.Option(
        DEFAULT_SCHEMA,
        "--schema",
        help="SQL file with the table definitions.",
    ),
) -> None:
    """
    Create the inventory tables from the schema file.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    if not schema.exists():
        typer.echo(f"Schema file not found: {schema}", err=True)
        raise typer.Exit(code=2)

    async def _apply() -> None:
        async with await psycopg.AsyncConnection.connect(build_dsn(settings)) as conn:
            await conn.execute(schema.read_text(encoding="utf-8"))

    try:
        asyncio.run(_apply())
    except psycopg.Error as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"Schema applied from {schema}.")


@app.command()
def pieces(
    status: Optional[JewelryStatus] = typer.Option(
        None,
        "--status",
        "-s",
        help="Only pieces with this status.",
    ),
    limit: int = typer.Option(20, "--limit", "-l", min=0, help="Maximum pieces to list."),
    offset: int = typer.Option(0, "--offset", "-o", min=0, help="Pieces to skip."),
) -> None:
    """
    List pieces with category, vendor and stones as JSON.
    """
    where = {"status": status.value} if status else None
    found = _run(lambda services: services.jewelry.list(where, page=Page(limit, offset)))
    typer.echo(_dump([piece.as_dict() for piece in found]))


@app.command()
def show(jewelry_id: int = typer.Argument(..., help="Jewelry piece id.")) -> None:
    """
    Show one piece with its stones as JSON.
    """
    found = _run(lambda services: services.jewelry.get(jewelry_id))
    typer.echo(_dump(found.as_dict()))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
