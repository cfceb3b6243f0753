import json
from pathlib import Path
from typing import Any

_UNSET = object()


class OrmSchemasError(Exception):
    """Base class for every error raised by orm-schemas."""


class SchemaLoadError(OrmSchemasError):
    """Raised when a schema-definition file cannot be loaded."""

    def __init__(self, path: str | Path, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Cannot load schema definition '{path}': {reason}")


class WiringError(OrmSchemasError):
    """Raised while wiring an association between two registered models.

    The registry annotates the error with the declaring schema before re-raising it.
    """

    def __init__(self, message: str):
        self.base_message = message
        self.schema_name: str | None = None
        self.source: Path | None = None
        self.association_spec: Any = None
        super().__init__(message)

    def annotate(self, schema_name: str, source: Path | None, association_spec: Any = _UNSET) -> "WiringError":
        self.schema_name = schema_name
        self.source = source
        message = f"{self.base_message}\n    at {source if source is not None else f'<schema {schema_name}>'}"
        if association_spec is not _UNSET:
            self.association_spec = association_spec
            message += f"\n        associations with {_dump_spec(association_spec)}"
        self.args = (message,)
        return self


class ConfigurationError(WiringError):
    """Raised when a schema or association declaration is inconsistent."""


class UnknownAssociationKindError(ConfigurationError):
    """Raised when an association kind is not one of one_to_one, one_to_many or many_to_many."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"{kind} associations are not available.")


class ThroughTableConflictError(ConfigurationError):
    """Raised when both sides of a many-to-many association name different through-tables."""

    def __init__(self, forward: Any, reverse: Any):
        self.forward = forward
        self.reverse = reverse
        super().__init__(
            f"Forward through '{_through_name(forward)}' and reverse through '{_through_name(reverse)}' must be the same."
        )


class AssociationSpecError(WiringError, TypeError):
    """Raised when an association spec is not a table name, a tuple or a mapping."""

    def __init__(self, spec: Any):
        super().__init__(f"Association spec must be either str, tuple/list or mapping, {type(spec).__name__} found.")


class TableNotFoundError(WiringError, LookupError):
    """Raised when an association targets a table that is not registered."""

    def __init__(self, table: Any, known_tables: list[str]):
        self.table = table
        self.known_tables = known_tables
        names = "\n\t".join(known_tables)
        super().__init__(f"There is no table named {table}, allowed names are:\n\t{names}")


class NoSessionError(OrmSchemasError):
    """Raised when a unit of work is used outside its ``async with`` block."""

    def __init__(self):
        super().__init__("No active database session found.")


class UnknownFieldError(OrmSchemasError, ValueError):
    """Raised by a strict fill when a key is neither an attribute nor an association."""

    def __init__(self, model_name: str, key: str):
        self.model_name = model_name
        self.key = key
        super().__init__(f"'{key}' is neither an attribute nor an association of {model_name}.")


class PersistenceError(OrmSchemasError):
    """Raised when a persistence primitive fails during a deep save.

    ``deep_path`` is the instance whose primitive failed, ``path`` lists every
    instance the error travelled through on its way up to the root call.
    """

    def __init__(self, operation: str, deep_path: str):
        self.operation = operation
        self.deep_path = deep_path
        self.path: list[str] = [deep_path]
        super().__init__(operation, deep_path)

    def add_hop(self, deep_path: str) -> None:
        if self.path[-1] != deep_path:
            self.path.append(deep_path)

    def __str__(self) -> str:
        message = f"{self.operation} failed at {self.deep_path}"
        if self.__cause__ is not None:
            message += f": {self.__cause__}"
        if len(self.path) > 1:
            message += f" (via {' <- '.join(self.path)})"
        return message


def _through_name(through: Any) -> str:
    return getattr(through, "__name__", None) or getattr(through, "name", None) or str(through)


def _dump_spec(spec: Any) -> str:
    try:
        return json.dumps(spec, default=_through_name)
    except (TypeError, ValueError):
        return repr(spec)
