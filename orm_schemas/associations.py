"""Association specs, association edges and their wiring onto mapped models.

An association spec is what a schema declares under ``associations``. Three
shapes are accepted:

- ``"User"``: the target schema name alone.
- ``("User", forward_options, reverse_options)``: both option mappings optional.
- ``{"table": "User", "options": {...}, "reverse_options": {...}}``.

Wiring turns a spec into one or two :class:`AssociationEdge` records and adds the
matching foreign-key columns and ``relationship()`` properties to the models.
Every check runs before the first mutation, so a failing spec leaves the
models untouched.
"""

import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import Column, ForeignKey, MetaData, Table
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import relationship

from orm_schemas.exceptions import (
    AssociationSpecError,
    ConfigurationError,
    TableNotFoundError,
    ThroughTableConflictError,
    UnknownAssociationKindError,
)
from orm_schemas.util import foreign_key_name, pluralize, snake_case

logger = logging.getLogger("orm-schemas")

# Option keys consumed by the wiring, everything else goes to relationship().
EDGE_OPTIONS = ("as", "foreign_key", "other_key", "through", "on_delete", "allow_null")

# camelCase spellings accepted for the edge options.
EDGE_OPTION_ALIASES = {
    "foreignKey": "foreign_key",
    "otherKey": "other_key",
    "onDelete": "on_delete",
    "allowNull": "allow_null",
}

# relationship() arguments set by the wiring itself.
_WIRED_ARGUMENTS = {
    "argument",
    "secondary",
    "primaryjoin",
    "secondaryjoin",
    "foreign_keys",
    "back_populates",
    "backref",
    "uselist",
}

RELATIONSHIP_OPTIONS = frozenset(
    name
    for name, parameter in inspect.signature(relationship).parameters.items()
    if parameter.kind is not parameter.VAR_KEYWORD and name not in _WIRED_ARGUMENTS
)


class AssociationKind(str, Enum):
    """Direction-aware kind of one association edge."""

    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    BELONGS_TO_MANY = "belongs_to_many"

    @property
    def is_collection(self) -> bool:
        return self in (AssociationKind.HAS_MANY, AssociationKind.BELONGS_TO_MANY)


class DeclaredKind(str, Enum):
    """Association kinds a schema can declare."""

    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"
    MANY_TO_MANY = "many_to_many"

    @classmethod
    def parse(cls, kind: "str | DeclaredKind") -> "DeclaredKind":
        if isinstance(kind, DeclaredKind):
            return kind
        try:
            return cls(snake_case(kind))
        except ValueError as e:
            raise UnknownAssociationKindError(kind) from e


@dataclass(frozen=True)
class AssociationEdge:
    """A directed association from ``source`` to ``target``.

    Attributes:
        kind: How ``source`` relates to ``target``.
        source: The model owning the ``accessor`` relationship.
        target: The related model.
        accessor: Name of the relationship attribute on ``source``.
        foreign_key: FK column on ``source`` (belongs-to), on ``target`` (has-one/has-many)
            or, for belongs-to-many, the through column pointing at ``source``.
        other_key: Belongs-to-many only, the through column pointing at ``target``.
        through: Belongs-to-many only, the join table.
        through_model: Belongs-to-many only, the registered model mapping ``through``.
        reverse: Accessor of the inverse edge on ``target``, if installed.
    """

    kind: AssociationKind
    source: type
    target: type
    accessor: str
    foreign_key: str
    other_key: str | None = None
    through: Table | None = None
    through_model: type | None = None
    reverse: str | None = None

    @property
    def through_name(self) -> str | None:
        if self.through_model is not None:
            return self.through_model.__name__
        if self.through is not None:
            return self.through.name
        return None

    def __repr__(self) -> str:
        return f"<{self.source.__name__}.{self.accessor} {self.kind.value} {self.target.__name__}>"


@dataclass(frozen=True)
class NormalizedSpec:
    table: Any
    options: dict[str, Any]
    reverse_options: dict[str, Any] | None


class _AssociationRecord(BaseModel):
    """Mapping form of an association spec."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid", populate_by_name=True)

    table: Any
    options: dict[str, Any] | None = None
    reverse_options: dict[str, Any] | bool | None = Field(default_factory=dict, alias="reverseOptions")


def parse_association_spec(spec: Any) -> NormalizedSpec:
    """Normalise an association spec into ``(table, options, reverse_options)``.

    ``reverse_options`` is ``None`` when the inverse edge is disabled, which is
    the case when the spec gives ``None`` or ``False`` for it explicitly. Option
    keys go through :func:`edge_options`.

    Raises:
        AssociationSpecError: If the spec has none of the accepted shapes.
        ConfigurationError: If an option key is unknown.
    """
    if isinstance(spec, str):
        return NormalizedSpec(spec, {}, {})

    if isinstance(spec, (tuple, list)):
        if not 1 <= len(spec) <= 3:
            raise AssociationSpecError(spec)
        table, options, reverse_options = (*spec, {}, {})[:3]
        if options is None:
            options = {}
        if not isinstance(options, Mapping) or not isinstance(reverse_options, (Mapping, bool, type(None))):
            raise AssociationSpecError(spec)
        return NormalizedSpec(table, edge_options(options), _reverse(reverse_options))

    if isinstance(spec, Mapping):
        try:
            record = _AssociationRecord(**spec)
        except (ValidationError, TypeError) as e:
            raise AssociationSpecError(spec) from e
        return NormalizedSpec(record.table, edge_options(record.options or {}), _reverse(record.reverse_options))

    raise AssociationSpecError(spec)


def _reverse(reverse_options: Any) -> dict[str, Any] | None:
    if reverse_options is None or reverse_options is False:
        return None
    if reverse_options is True:
        return {}
    return edge_options(reverse_options)


def edge_options(options: Mapping[str, Any]) -> dict[str, Any]:
    """Resolve camelCase aliases and reject keys neither the wiring nor ``relationship()`` accepts.

    Raises:
        ConfigurationError: On an unknown option key.
    """
    resolved = {EDGE_OPTION_ALIASES.get(key, key): value for key, value in options.items()}
    unknown = sorted(key for key in resolved if key not in EDGE_OPTIONS and key not in RELATIONSHIP_OPTIONS)
    if unknown:
        raise ConfigurationError(f"Unknown association option(s): {', '.join(unknown)}.")
    return resolved


def _relationship_kwargs(options: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in options.items() if key not in EDGE_OPTIONS}


def _relationship(target: type, **kwargs: Any) -> Any:
    try:
        return relationship(target, **kwargs)
    except (ArgumentError, TypeError) as e:
        raise ConfigurationError(f"Invalid relationship to {target.__name__}: {e}") from e


def _single_primary_key(model: type) -> Column:
    columns = list(model.__table__.primary_key.columns)
    if len(columns) != 1:
        raise ConfigurationError(
            f"{model.__name__} must have exactly one primary key column to be associated, found {len(columns)}."
        )
    return columns[0]


def _underscored(model: type) -> bool:
    return bool(model.__define_options__.get("underscored", True))


class AssociationWiring:
    """Adds association edges between the models of one registry.

    Args:
        models: Registered models by schema name.
        metadata: The metadata holding the registered tables, used for plain join tables.
    """

    def __init__(self, models: Mapping[str, type], metadata: MetaData):
        self.models = models
        self.metadata = metadata

    def resolve_model(self, table: Any) -> type:
        if isinstance(table, str) and table in self.models:
            return self.models[table]
        if isinstance(table, type) and table in self.models.values():
            return table
        raise TableNotFoundError(table, list(self.models))

    def wire(self, source_name: str, kind: "str | DeclaredKind", spec: Any) -> list[AssociationEdge]:
        """Wire one declared association of ``source_name``.

        Returns:
            The installed edges, forward edge first.
        """
        declared = DeclaredKind.parse(kind)
        parsed = parse_association_spec(spec)
        source = self.resolve_model(source_name)
        target = self.resolve_model(parsed.table)

        if declared is DeclaredKind.MANY_TO_MANY:
            edges = self._wire_many_to_many(source, target, parsed)
        else:
            reverse_kind = AssociationKind.HAS_ONE if declared is DeclaredKind.ONE_TO_ONE else AssociationKind.HAS_MANY
            edges = self._wire_belongs_to(source, target, parsed, reverse_kind)

        for edge in edges:
            edge.source.__edges__[edge.accessor] = edge
            logger.debug(f"Wired {edge!r}")
        return edges

    def _already_wired(self, source: type, accessor: str, kind: AssociationKind, target: type) -> bool:
        """Whether the same edge was installed before, e.g. by the other side of a many-to-many."""
        edge = source.__edges__.get(accessor)
        return edge is not None and edge.kind is kind and edge.target is target

    def _check_accessor(self, model: type, accessor: str) -> None:
        if accessor in model.__edges__ or model.__mapper__.has_property(accessor):
            raise ConfigurationError(f"{model.__name__} already has an attribute or association named '{accessor}'.")

    def _wire_belongs_to(
        self, source: type, target: type, spec: NormalizedSpec, reverse_kind: AssociationKind
    ) -> list[AssociationEdge]:
        forward, reverse = spec.options, spec.reverse_options
        target_pk = _single_primary_key(target)
        accessor = forward.get("as") or snake_case(target.__name__)
        fk_name = (
            forward.get("foreign_key")
            or (reverse or {}).get("foreign_key")
            or foreign_key_name(accessor, target_pk.key, _underscored(source))
        )
        reverse_accessor = None
        if reverse is not None:
            default_reverse = snake_case(source.__name__)
            if reverse_kind is AssociationKind.HAS_MANY:
                default_reverse = pluralize(default_reverse)
            reverse_accessor = reverse.get("as") or default_reverse

        self._check_accessor(source, accessor)
        if reverse_accessor is not None:
            self._check_accessor(target, reverse_accessor)
            if source is target and reverse_accessor == accessor:
                raise ConfigurationError(f"{source.__name__} association accessors must differ, both are '{accessor}'.")

        fk_column = source.__table__.c.get(fk_name)
        fk_target = f"{target.__table__.name}.{target_pk.name}"
        new_column = None
        if fk_column is None:
            fk_column = new_column = Column(
                fk_name,
                target_pk.type,
                ForeignKey(fk_target, ondelete=forward.get("on_delete", "SET NULL")),
                nullable=forward.get("allow_null", True),
            )

        forward_kwargs = _relationship_kwargs(forward)
        if source is target:
            forward_kwargs.setdefault("remote_side", [target_pk])
        forward_property = _relationship(
            target, foreign_keys=[fk_column], back_populates=reverse_accessor, **forward_kwargs
        )
        reverse_property = None
        if reverse_accessor is not None:
            reverse_property = _relationship(
                source,
                foreign_keys=[fk_column],
                back_populates=accessor,
                uselist=reverse_kind is AssociationKind.HAS_MANY,
                **_relationship_kwargs(reverse),
            )

        # Validation is over, mutate from here on.
        if new_column is not None:
            # Declarative appends the column to the existing Table.
            setattr(source, fk_name, new_column)
        elif not fk_column.foreign_keys:
            fk_column.append_foreign_key(ForeignKey(fk_target, ondelete=forward.get("on_delete", "SET NULL")))

        setattr(source, accessor, forward_property)
        edges = [
            AssociationEdge(
                kind=AssociationKind.BELONGS_TO,
                source=source,
                target=target,
                accessor=accessor,
                foreign_key=fk_name,
                reverse=reverse_accessor,
            )
        ]
        if reverse_accessor is not None:
            setattr(target, reverse_accessor, reverse_property)
            edges.append(
                AssociationEdge(
                    kind=reverse_kind,
                    source=target,
                    target=source,
                    accessor=reverse_accessor,
                    foreign_key=fk_name,
                    reverse=accessor,
                )
            )
        return edges

    def _resolve_through(self, through: Any) -> Any:
        if isinstance(through, str) and through in self.models:
            return self.models[through]
        return through

    def _wire_many_to_many(self, source: type, target: type, spec: NormalizedSpec) -> list[AssociationEdge]:
        forward, reverse = spec.options, spec.reverse_options
        forward_through = self._resolve_through(forward.get("through"))
        reverse_through = self._resolve_through((reverse or {}).get("through"))
        if forward_through is not None and reverse_through is not None and forward_through is not reverse_through:
            if not (isinstance(forward_through, str) and forward_through == reverse_through):
                raise ThroughTableConflictError(forward_through, reverse_through)
        through = forward_through if forward_through is not None else reverse_through
        if through is None:
            raise ConfigurationError(
                f"Many-to-many association {source.__name__} <-> {target.__name__} needs a 'through' table."
            )

        source_pk = _single_primary_key(source)
        target_pk = _single_primary_key(target)
        underscored = _underscored(source)
        source_key = forward.get("foreign_key") or foreign_key_name(source.__name__, source_pk.key, underscored)
        target_key = (
            forward.get("other_key")
            or (reverse or {}).get("foreign_key")
            or foreign_key_name(target.__name__, target_pk.key, underscored)
        )
        if source_key == target_key:
            raise ConfigurationError(
                f"Through keys of {source.__name__} <-> {target.__name__} must differ, "
                f"set 'foreign_key' and 'other_key' (both are '{source_key}')."
            )

        through_model = through if isinstance(through, type) else None
        if through_model is not None:
            table = through_model.__table__
        elif isinstance(through, Table):
            table = through
        elif isinstance(through, str):
            table = self.metadata.tables.get(through)
        else:
            raise ConfigurationError(f"Unsupported through table {through!r}.")
        if isinstance(through, Table):
            missing = [key for key in (source_key, target_key) if key not in table.c]
            if missing:
                raise ConfigurationError(f"Through table {table.name} has no column(s) {', '.join(missing)}.")

        accessor = forward.get("as") or pluralize(snake_case(target.__name__))
        if self._already_wired(source, accessor, AssociationKind.BELONGS_TO_MANY, target):
            existing = source.__edges__[accessor]
            if existing.through is not table:
                raise ThroughTableConflictError(existing.through, table)
            logger.debug(f"{existing!r} is already wired, skipping")
            return []
        reverse_accessor = None
        if reverse is not None:
            reverse_accessor = reverse.get("as") or pluralize(snake_case(source.__name__))
        self._check_accessor(source, accessor)
        if reverse_accessor is not None:
            self._check_accessor(target, reverse_accessor)
            if source is target and reverse_accessor == accessor:
                raise ConfigurationError(f"{source.__name__} association accessors must differ, both are '{accessor}'.")

        # The join table may not exist yet, the joins are resolved at mapper configuration.
        forward_property = _relationship(
            target,
            secondary=lambda: table,
            primaryjoin=lambda: source_pk == table.c[source_key],
            secondaryjoin=lambda: target_pk == table.c[target_key],
            back_populates=reverse_accessor,
            **_relationship_kwargs(forward),
        )
        reverse_property = None
        if reverse_accessor is not None:
            reverse_property = _relationship(
                source,
                secondary=lambda: table,
                primaryjoin=lambda: target_pk == table.c[target_key],
                secondaryjoin=lambda: source_pk == table.c[source_key],
                back_populates=accessor,
                **_relationship_kwargs(reverse),
            )

        # Validation is over, mutate from here on.
        if table is None:
            table = Table(
                through,
                self.metadata,
                Column(source_key, source_pk.type, ForeignKey(_ref(source, source_pk), ondelete="CASCADE"), primary_key=True),
                Column(target_key, target_pk.type, ForeignKey(_ref(target, target_pk), ondelete="CASCADE"), primary_key=True),
            )
            logger.debug(f"Created join table {through} for {source.__name__} <-> {target.__name__}")
        elif through_model is not None:
            for key, model, pk in ((source_key, source, source_pk), (target_key, target, target_pk)):
                if key not in table.c:
                    setattr(through_model, key, Column(key, pk.type, ForeignKey(_ref(model, pk), ondelete="CASCADE")))

        setattr(source, accessor, forward_property)
        edges = [
            AssociationEdge(
                kind=AssociationKind.BELONGS_TO_MANY,
                source=source,
                target=target,
                accessor=accessor,
                foreign_key=source_key,
                other_key=target_key,
                through=table,
                through_model=through_model,
                reverse=reverse_accessor,
            )
        ]
        if reverse_accessor is not None:
            setattr(target, reverse_accessor, reverse_property)
            edges.append(
                AssociationEdge(
                    kind=AssociationKind.BELONGS_TO_MANY,
                    source=target,
                    target=source,
                    accessor=reverse_accessor,
                    foreign_key=target_key,
                    other_key=source_key,
                    through=table,
                    through_model=through_model,
                    reverse=accessor,
                )
            )
        return edges


def _ref(model: type, pk: Column) -> str:
    return f"{model.__table__.name}.{pk.name}"
