"""show command - Print the registered models and their associations."""

from pathlib import Path
from typing import Annotated

import typer

from orm_schemas.cli.commands._registry import build_registry, load_config
from orm_schemas.registry import SchemaRegistry


def show_schemas(
    schemas_dir: Annotated[
        Path | None,
        typer.Argument(help="Directory of schema-definition files (default: config or ./schemas)"),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="YAML registry configuration"),
    ] = None,
) -> None:
    """Show the models built from a schemas directory.

    Examples:
      orm-schemas show ./schemas
      orm-schemas show --config registry.yaml
    """
    registry = build_registry(load_config(config_path, schemas_dir))
    print_registry(registry)


def print_registry(registry: SchemaRegistry) -> None:
    """Print every model with its columns and association edges."""
    if not registry.models:
        typer.echo("No schema found.")
        return

    for name, model in registry.models.items():
        typer.echo(f"\n{name} (table: {model.__tablename__})")
        typer.echo("-" * 60)
        for column in model.__table__.columns:
            flags = []
            if column.primary_key:
                flags.append("primary key")
            for foreign_key in column.foreign_keys:
                flags.append(f"-> {foreign_key.target_fullname}")
            suffix = f"  [{', '.join(flags)}]" if flags else ""
            typer.echo(f"  {column.name}: {column.type}{suffix}")
        for edge in model.__edges__.values():
            through = f" through {edge.through_name}" if edge.through_name else ""
            typer.echo(f"  .{edge.accessor}: {edge.kind.value} {edge.target.__name__}{through}")
