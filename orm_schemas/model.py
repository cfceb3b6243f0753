"""Graph hydration and deep save for registered models.

Every model built by :class:`~orm_schemas.registry.SchemaRegistry` mixes in
:class:`GraphModel`. ``fill`` maps a nested plain-data graph onto the model and
its associations; ``deep_save`` persists the whole graph, creating the owner of
an association before its dependents:

    order = registry["Order"]()
    await order.fill_and_save(session, {"total": 100, "items": [{"sku": "X"}, {"sku": "Y"}]})

Nested records collected by ``fill`` wait in ``pending_associations`` until
``deep_save`` consumes them.
"""

import logging
from collections.abc import Mapping
from typing import Any, ClassVar, Protocol, runtime_checkable

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import reconstructor

from orm_schemas import persistence
from orm_schemas.associations import AssociationEdge
from orm_schemas.config import FillMode
from orm_schemas.exceptions import ConfigurationError, PersistenceError, UnknownFieldError
from orm_schemas.util import gather_or_cancel

logger = logging.getLogger("orm-schemas")


@runtime_checkable
class Persistable(Protocol):
    """What a registered model offers on top of the ORM."""

    deep_path: str
    is_new_record: bool | None

    async def fill(self, values: Any) -> "Persistable": ...

    async def deep_save(
        self, session: AsyncSession, association: AssociationEdge | None = None, parent: Any = None
    ) -> "Persistable": ...

    async def fill_and_save(self, session: AsyncSession, values: Any) -> "Persistable": ...

    def get_is_new_record(self) -> bool | None: ...


class GraphModel:
    """Mixin giving a mapped class the fill / deep save capability.

    Attributes:
        deep_path: Dotted accessor path from the hydration root, e.g. ``Order.items[1].tags[0]``.
            Diagnostic only.
        is_new_record: ``True`` when a primary key attribute is unset, ``None`` when the model
            has no primary key.
        pending_associations: ``(edge, record or list of records)`` pairs waiting for ``deep_save``.
        passthrough: Values accepted by a permissive ``fill`` for unknown keys, e.g. the
            join-row payload of a many-to-many association.
    """

    __edges__: ClassVar[dict[str, AssociationEdge]] = {}
    __define_options__: ClassVar[dict[str, Any]] = {}
    __fill_mode__: ClassVar[FillMode] = FillMode.PERMISSIVE

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        self._init_graph_state()

    @reconstructor
    def _init_graph_state(self) -> None:
        self.deep_path = type(self).__name__
        self.pending_associations: list[tuple[AssociationEdge, Any]] = []
        self.passthrough: dict[str, Any] = {}
        self.is_new_record = self.get_is_new_record()

    @classmethod
    def primary_key_attributes(cls) -> list[str]:
        mapper = cls.__mapper__
        return [mapper.get_property_by_column(column).key for column in mapper.primary_key]

    @classmethod
    def column_attributes(cls) -> list[str]:
        return [prop.key for prop in cls.__mapper__.column_attrs]

    def get_is_new_record(self) -> bool | None:
        """``True`` if any primary key attribute is unset, ``None`` without primary key."""
        keys = self.primary_key_attributes()
        if not keys:
            return None
        # Read the state dict directly, an expired attribute must not trigger a load.
        values = inspect(self).dict
        return any(values.get(key) is None for key in keys)

    def column_values(self) -> dict[str, Any]:
        """Column values currently set on the instance, unset primary keys excluded."""
        values = inspect(self).dict
        pk = set(self.primary_key_attributes())
        return {
            key: values[key]
            for key in self.column_attributes()
            if key in values and not (key in pk and values[key] is None)
        }

    def relabel(self, deep_path: str) -> None:
        """Move the instance, and its pending records, under a new deep-path."""
        self.deep_path = deep_path
        for edge, value in self.pending_associations:
            if isinstance(value, list):
                for index, item in enumerate(value):
                    item.relabel(f"{deep_path}.{edge.accessor}[{index}]")
            elif value is not None:
                value.relabel(f"{deep_path}.{edge.accessor}")

    def adopt(self, other: "GraphModel") -> None:
        """Take over the hydration state of ``other``, e.g. after a merge returned a copy."""
        self.deep_path = other.deep_path
        self.passthrough = {**other.passthrough, **self.passthrough}
        self.pending_associations = [*self.pending_associations, *other.pending_associations]
        other.pending_associations = []

    async def fill(self, values: "Mapping[str, Any] | GraphModel") -> "GraphModel":
        """Hydrate the instance and its associations from ``values``.

        Keys naming an association become nested records, queued in
        ``pending_associations``. Keys naming a column are written through the
        attribute (input transforms apply); a primary key that is already set is
        never overwritten. Other keys follow the model's fill mode.

        ``values`` may also be another instance of a registered model: its column
        values and pass-through values are copied, its pending records are reused.

        Returns:
            The instance itself.
        """
        source = values if isinstance(values, GraphModel) else None
        if source is not None:
            values = {**source.column_values(), **source.passthrough}

        edges = type(self).__edges__
        columns = set(self.column_attributes())
        primary_keys = set(self.primary_key_attributes())

        async def fill_entry(key: str, value: Any) -> None:
            edge = edges.get(key)
            if edge is not None:
                self.pending_associations.append((edge, await self._hydrate(edge, value)))
                return
            if key in columns:
                if key in primary_keys and inspect(self).dict.get(key) is not None:
                    logger.debug(f"{self.deep_path}.{key} is already set, keeping it")
                    return
                setattr(self, key, value)
                return
            self._fill_unknown(key, value)

        await gather_or_cancel(*(fill_entry(key, value) for key, value in values.items()))

        if source is not None and source is not self:
            for edge, value in source.pending_associations:
                self.pending_associations.append((edge, value))
        self.is_new_record = self.get_is_new_record()
        return self

    def _fill_unknown(self, key: str, value: Any) -> None:
        mode = type(self).__fill_mode__
        if mode is FillMode.STRICT:
            raise UnknownFieldError(type(self).__name__, key)
        if mode is FillMode.WARN:
            logger.warning(f"Ignoring unknown key '{key}' on {self.deep_path}")
            return
        self.passthrough[key] = value

    async def _hydrate(self, edge: AssociationEdge, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, (list, tuple)):
            nested = await gather_or_cancel(
                *(
                    self._nested(edge, item, f"{self.deep_path}.{edge.accessor}[{index}]")
                    for index, item in enumerate(value)
                )
            )
            return list(nested)
        return await self._nested(edge, value, f"{self.deep_path}.{edge.accessor}")

    @staticmethod
    async def _nested(edge: AssociationEdge, data: Any, deep_path: str) -> "GraphModel":
        if isinstance(data, edge.target):
            data.relabel(deep_path)
            return data
        instance = edge.target()
        instance.deep_path = deep_path
        return await instance.fill(data)

    def _through_values(self, edge: AssociationEdge) -> dict[str, Any] | None:
        if edge.through is None:
            return None
        for key in (edge.through_name, edge.through.name):
            if key in self.passthrough:
                return dict(self.passthrough[key])
        return None

    async def deep_save(
        self,
        session: AsyncSession,
        association: AssociationEdge | None = None,
        parent: "GraphModel | None" = None,
    ) -> "GraphModel":
        """Persist the instance, then every pending record, recursively.

        Called on a root record, the record is saved directly. Called for a new
        record with an ``association``/``parent`` context, the record is created
        through the parent's association instead, then hydrated again from this
        instance so its own pending records are not lost.

        For every pending association, the nested records are deep-saved
        concurrently, and only then linked to this record.

        Args:
            session: The session to persist with. Wrap the call in a transaction to
                get all-or-nothing semantics for the graph.
            association: Edge from ``parent`` to this record.
            parent: Persisted owner of this record.

        Returns:
            The persisted record, which is not always ``self``.

        Raises:
            PersistenceError: If any save, create or link fails; ``path`` lists the
                records between the failing one and the root call.
        """
        try:
            if self.is_new_record and parent is not None:
                return await self._create_through_parent(session, association, parent)

            persisted = await persistence.save(session, self)
            if persisted is not self:
                persisted.adopt(self)
            persisted.is_new_record = persisted.get_is_new_record()

            pending, persisted.pending_associations = persisted.pending_associations, []
            await gather_or_cancel(*(persisted._save_association(session, edge, value) for edge, value in pending))
            return persisted
        except PersistenceError as e:
            e.add_hop(self.deep_path)
            raise

    async def _create_through_parent(
        self, session: AsyncSession, association: AssociationEdge, parent: "GraphModel"
    ) -> "GraphModel":
        if parent.is_new_record is None:
            raise ConfigurationError(
                f"{type(parent).__name__} has no primary key and cannot own {self.deep_path} through {association!r}."
            )
        created = await persistence.create_related(
            session,
            parent,
            association,
            self.column_values(),
            self._through_values(association),
            self.deep_path,
        )
        created.deep_path = self.deep_path
        await created.fill(self)
        self.pending_associations = []
        return await created.deep_save(session, association=association, parent=parent)

    async def _save_association(self, session: AsyncSession, edge: AssociationEdge, value: Any) -> None:
        items = value if isinstance(value, list) else [value]
        saved = await gather_or_cancel(
            *(item.deep_save(session, association=edge, parent=self) for item in items if item is not None)
        )
        if isinstance(value, list):
            linked: Any = list(saved)
        else:
            linked = saved[0] if saved else None
        await persistence.set_association(session, self, edge, linked)

    async def fill_and_save(self, session: AsyncSession, values: "Mapping[str, Any] | GraphModel") -> "GraphModel":
        """``fill`` then ``deep_save``."""
        await self.fill(values)
        return await self.deep_save(session)

    def _edge(self, name: str) -> AssociationEdge:
        edge = type(self).__edges__.get(name)
        if edge is None:
            raise UnknownFieldError(type(self).__name__, name)
        return edge

    async def create_related(
        self, session: AsyncSession, name: str, values: Mapping[str, Any], through: Mapping[str, Any] | None = None
    ) -> "GraphModel":
        """Create a record linked to this one through association ``name``."""
        return await persistence.create_related(
            session, self, self._edge(name), dict(values), dict(through) if through else None
        )

    async def set_association(self, session: AsyncSession, name: str, value: Any) -> None:
        """Replace the records linked through association ``name``."""
        await persistence.set_association(session, self, self._edge(name), value)

    async def get_association(self, session: AsyncSession, name: str) -> Any:
        """Load the records linked through association ``name``."""
        return await persistence.get_association(session, self, self._edge(name))

    def __repr__(self) -> str:
        values = ", ".join(f"{key}={value!r}" for key, value in self.column_values().items())
        return f"<{self.deep_path} {values}>"
