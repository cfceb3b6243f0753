"""Typer-based CLI application for orm-schemas."""

import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from typing import Annotated

import typer

from orm_schemas.cli.commands.show import show_schemas
from orm_schemas.cli.commands.sync import sync_database

# Configure logging for CLI output
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        try:
            typer.echo(f"orm-schemas {get_version('orm-schemas')}")
        except PackageNotFoundError:
            typer.echo("orm-schemas (not installed)")
        raise typer.Exit()


app = typer.Typer(
    name="orm-schemas",
    help="orm-schemas CLI - inspect and synchronise schema definitions.",
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """orm-schemas CLI - inspect and synchronise schema definitions."""


app.command(name="show")(show_schemas)
app.command(name="sync")(sync_database)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
