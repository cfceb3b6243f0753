"""sync command - Create the registered tables, waiting for the database."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from orm_schemas.cli.commands._registry import build_registry, load_config
from orm_schemas.registry import SchemaRegistry


def sync_database(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="YAML registry configuration"),
    ] = None,
    schemas_dir: Annotated[
        Path | None,
        typer.Option("--schemas-dir", "-s", help="Directory of schema-definition files"),
    ] = None,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", help="Give up after this many seconds (default: wait forever)"),
    ] = None,
) -> None:
    """Synchronise the database schema with the schema definitions.

    Retries until the database is reachable, like the registry does at startup.

    Examples:
      orm-schemas sync --config registry.yaml
      ORM_SCHEMAS_URL=postgresql+asyncpg://app:secret@db/app orm-schemas sync -s ./schemas --timeout 60
    """
    registry = build_registry(load_config(config_path, schemas_dir))
    try:
        asyncio.run(_sync(registry, timeout))
    except asyncio.TimeoutError:
        typer.echo(f"Database not ready after {timeout} seconds.", err=True)
        raise typer.Exit(1) from None

    typer.echo(f"Synchronised {len(registry.models)} model(s) with {registry.config.url}.")


async def _sync(registry: SchemaRegistry, timeout: float | None) -> None:
    try:
        await asyncio.wait_for(registry.connect_and_sync(), timeout)
    finally:
        await registry.dispose()
