"""Discovery and loading of schema-definition files.

A schema directory holds one Python module per model, named after the model
(``Order.py`` defines ``Order``). Each module exposes module-level
``attributes`` and optionally ``options``, ``hooks``, ``methods``, ``statics``
and ``associations``.
"""

import importlib.util
import logging
from pathlib import Path

from orm_schemas.exceptions import SchemaLoadError
from orm_schemas.schema.definition import ModelDefinition

logger = logging.getLogger("orm-schemas")

SCHEMA_SUFFIX = ".py"
SCHEMA_FIELDS = ("attributes", "options", "hooks", "methods", "statics", "associations")


def discover_schemas(directory: Path | str) -> list[str]:
    """List the schema names found in a directory.

    Only regular ``.py`` files directly inside ``directory`` are considered,
    private modules (``_helpers.py``, ``__init__.py``) are skipped.

    Args:
        directory: Directory to scan, not recursively.

    Returns:
        Sorted schema names, i.e. the file names without extension.

    Raises:
        FileNotFoundError: If the directory does not exist.
        NotADirectoryError: If the path is not a directory.
    """
    directory = Path(directory)
    names = [
        entry.stem
        for entry in directory.iterdir()
        if entry.is_file() and entry.suffix == SCHEMA_SUFFIX and not entry.name.startswith("_")
    ]
    logger.debug(f"Discovered {len(names)} schema file(s) in {directory}")
    return sorted(names)


def load_schema_definition(path: Path | str) -> ModelDefinition:
    """Import one schema file and build its definition.

    Args:
        path: Path to the schema file. The file stem is the schema name.

    Returns:
        The validated model definition.

    Raises:
        SchemaLoadError: If the file cannot be imported or has no ``attributes``.
    """
    path = Path(path).resolve()
    module_name = f"orm_schemas_definitions.{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise SchemaLoadError(path, "not an importable Python file")

    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except FileNotFoundError:
        raise
    except Exception as e:
        raise SchemaLoadError(path, f"{type(e).__name__}: {e}") from e

    if not hasattr(module, "attributes"):
        raise SchemaLoadError(path, "module has no 'attributes'")

    contents = {name: getattr(module, name) for name in SCHEMA_FIELDS if getattr(module, name, None) is not None}
    return ModelDefinition.from_mapping(path.stem, contents, source=path)


def load_schema_directory(directory: Path | str) -> list[ModelDefinition]:
    """Discover and load every schema file of a directory, in discovery order."""
    directory = Path(directory)
    return [load_schema_definition(directory / f"{name}{SCHEMA_SUFFIX}") for name in discover_schemas(directory)]
