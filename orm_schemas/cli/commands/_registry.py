"""Registry construction shared by the CLI commands."""

from pathlib import Path

import typer

from orm_schemas.config import RegistryConfig
from orm_schemas.exceptions import SchemaLoadError, WiringError
from orm_schemas.registry import SchemaRegistry


def load_config(config_path: Path | None, schemas_dir: Path | None) -> RegistryConfig:
    """Configuration from a YAML file, or from ``ORM_SCHEMAS_*`` environment variables."""
    config = RegistryConfig.from_yaml(config_path) if config_path is not None else RegistryConfig.from_env()
    if schemas_dir is not None:
        config.schemas_dir = schemas_dir
    return config


def build_registry(config: RegistryConfig) -> SchemaRegistry:
    """Build the registry or exit with status 1 and the reason on stderr."""
    try:
        return SchemaRegistry.from_config(config)
    except (FileNotFoundError, NotADirectoryError):
        typer.echo(f"Schemas directory not found: {config.schemas_dir}", err=True)
        raise typer.Exit(1) from None
    except (SchemaLoadError, WiringError) as e:
        typer.echo(f"Invalid schemas: {e}", err=True)
        raise typer.Exit(1) from None
