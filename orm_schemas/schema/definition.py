"""Schema definitions: the declarative input of the registry.

A schema definition describes one model:

    attributes = {
        "id": {"type": "integer", "primary_key": True, "auto_increment": True},
        "email": {"type": "string", "allow_null": False, "unique": True, "trim": True, "lowercase": True},
        "total": "decimal",
    }
    options = {"timestamps": False}
    hooks = {"before_insert": stamp_reference}
    methods = {"display_name": display_name}
    statics = {"by_email": by_email}
    associations = {"one_to_many": ["Customer"], "many_to_many": [("Tag", {"through": "OrderTag"})]}

Definitions are usually loaded from files by :mod:`orm_schemas.schema.loader`,
but can be built directly with :meth:`ModelDefinition.from_mapping`.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    Integer,
    LargeBinary,
    Numeric,
    String,
    Text,
    Time,
    Uuid,
)
from sqlalchemy.orm import mapped_column
from sqlalchemy.types import TypeEngine

from orm_schemas.exceptions import SchemaLoadError

TYPE_ALIASES: dict[str, Callable[[], TypeEngine]] = {
    "string": lambda: String(255),
    "text": Text,
    "integer": Integer,
    "bigint": BigInteger,
    "float": Float,
    "decimal": Numeric,
    "boolean": Boolean,
    "date": Date,
    "time": Time,
    "datetime": lambda: DateTime(timezone=True),
    "json": JSON,
    "uuid": Uuid,
    "binary": LargeBinary,
}

TRANSFORM_FLAGS = ("trim", "lowercase", "uppercase")


def resolve_type(declared: Any) -> TypeEngine:
    """Turn a type alias, a SQLAlchemy type class or a type instance into a type instance."""
    if isinstance(declared, str):
        factory = TYPE_ALIASES.get(declared.lower())
        if factory is None:
            raise ValueError(f"Unknown attribute type '{declared}', known types: {', '.join(TYPE_ALIASES)}")  # noqa: TRY003
        return factory()
    if isinstance(declared, TypeEngine):
        return declared
    if isinstance(declared, type) and issubclass(declared, TypeEngine):
        return declared()
    raise ValueError(f"Unsupported attribute type {declared!r}")  # noqa: TRY003


class AttributeSpec(BaseModel):
    """Declaration of one column."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid", frozen=True)

    type: Any
    primary_key: bool = False
    auto_increment: bool | None = None
    allow_null: bool = True
    unique: bool = False
    index: bool = False
    default: Any = None
    comment: str | None = None
    trim: bool = False
    lowercase: bool = False
    uppercase: bool = False

    @field_validator("type")
    @classmethod
    def _check_type(cls, value: Any) -> TypeEngine:
        return resolve_type(value)

    @classmethod
    def parse(cls, declaration: Any) -> "AttributeSpec":
        """Accept either a full mapping or a bare type."""
        if isinstance(declaration, Mapping):
            return cls(**declaration)
        return cls(type=declaration)

    @property
    def transforms(self) -> list[str]:
        return [flag for flag in TRANSFORM_FLAGS if getattr(self, flag)]

    def to_column(self):
        """Build the ``mapped_column`` for this attribute."""
        kwargs: dict[str, Any] = {
            "primary_key": self.primary_key,
            "nullable": False if self.primary_key else self.allow_null,
            "unique": self.unique or None,
            "index": self.index or None,
            "comment": self.comment,
        }
        if self.auto_increment is not None:
            kwargs["autoincrement"] = self.auto_increment
        if self.default is not None:
            kwargs["default"] = self.default
        return mapped_column(self.type, **kwargs)


class _SchemaModule(BaseModel):
    """Shape of a schema-definition file."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="ignore")

    attributes: dict[str, Any]
    options: dict[str, Any] = {}
    hooks: dict[str, Any] = {}
    methods: dict[str, Callable] = {}
    statics: dict[str, Callable] = {}
    associations: dict[str, list[Any]] = {}

    @field_validator("associations", mode="before")
    @classmethod
    def _wrap_single_spec(cls, value: Any) -> Any:
        # ``{"one_to_many": "User"}`` is shorthand for ``{"one_to_many": ["User"]}``.
        if isinstance(value, Mapping):
            return {kind: [specs] if isinstance(specs, (str, Mapping)) else specs for kind, specs in value.items()}
        return value


@dataclass(frozen=True)
class ModelDefinition:
    """A named, immutable model schema."""

    name: str
    attributes: Mapping[str, AttributeSpec]
    options: Mapping[str, Any] = field(default_factory=dict)
    hooks: Mapping[str, Any] = field(default_factory=dict)
    methods: Mapping[str, Callable] = field(default_factory=dict)
    statics: Mapping[str, Callable] = field(default_factory=dict)
    associations: Mapping[str, tuple[Any, ...]] = field(default_factory=dict)
    source: Path | None = None

    @property
    def table_name(self) -> str:
        return self.name.lower()

    @property
    def primary_keys(self) -> list[str]:
        return [name for name, spec in self.attributes.items() if spec.primary_key]

    @classmethod
    def from_mapping(cls, name: str, module: Mapping[str, Any], source: Path | None = None) -> "ModelDefinition":
        """Validate a schema mapping and freeze it into a definition.

        Args:
            name: The schema name, used as model name.
            module: Mapping with ``attributes`` and the optional ``options``, ``hooks``,
                ``methods``, ``statics`` and ``associations`` keys.
            source: File the schema was loaded from, kept for error messages.

        Returns:
            The definition.

        Raises:
            SchemaLoadError: If the mapping does not follow the schema contract.
        """
        try:
            parsed = _SchemaModule(**module)
            attributes = {key: AttributeSpec.parse(value) for key, value in parsed.attributes.items()}
        except (ValidationError, ValueError, TypeError) as e:
            raise SchemaLoadError(source or name, str(e)) from e

        return cls(
            name=name,
            attributes=MappingProxyType(attributes),
            options=MappingProxyType(dict(parsed.options)),
            hooks=MappingProxyType(dict(parsed.hooks)),
            methods=MappingProxyType(dict(parsed.methods)),
            statics=MappingProxyType(dict(parsed.statics)),
            associations=MappingProxyType({kind: tuple(specs) for kind, specs in parsed.associations.items()}),
            source=source,
        )
