"""The schema registry: registers models, wires associations, syncs the database.

    registry = SchemaRegistry.from_config(RegistryConfig.from_options({"schemas_dir": "schemas"}))
    await registry.connect_and_sync()

    async with registry.unit_of_work() as uow:
        await registry["Order"]().fill_and_save(uow.session, {"total": 100, "items": [{"sku": "X"}]})
        await uow.commit()

Each registry owns its own declarative base and metadata, so several registries
can live in one process.
"""

import asyncio
import logging
from collections.abc import Iterable, Iterator
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, Integer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncAttrs, AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, mapped_column

from orm_schemas.associations import AssociationEdge, AssociationWiring, DeclaredKind
from orm_schemas.config import FillMode, RegistryConfig
from orm_schemas.exceptions import ConfigurationError, TableNotFoundError, WiringError
from orm_schemas.model import GraphModel
from orm_schemas.schema.definition import ModelDefinition
from orm_schemas.schema.hooks import install_hooks
from orm_schemas.schema.loader import load_schema_directory
from orm_schemas.schema.transforms import install_transforms
from orm_schemas.uow import UnitOfWork
from orm_schemas.util import attribute_name

logger = logging.getLogger("orm-schemas")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_base() -> type[DeclarativeBase]:
    """A fresh declarative base, with its own metadata."""

    class Base(AsyncAttrs, DeclarativeBase):
        pass

    return Base


class SchemaRegistry:
    """Registry of the models built from schema definitions.

    Args:
        config: Registry configuration, defaults to :class:`RegistryConfig` defaults.
        definitions: Definitions to register and wire right away.

    Raises:
        WiringError: If a declared association cannot be wired. Construction is aborted.
    """

    def __init__(self, config: RegistryConfig | None = None, definitions: Iterable[ModelDefinition] | None = None):
        self.config = config or RegistryConfig()
        self.base = create_base()
        self.metadata = self.base.metadata
        self.models: dict[str, type[GraphModel]] = {}
        self.definitions: dict[str, ModelDefinition] = {}
        self.edges: list[AssociationEdge] = []
        self._wiring = AssociationWiring(self.models, self.metadata)
        self._engine: AsyncEngine | None = None
        self._ready = asyncio.Event()
        self._connect_task: asyncio.Task | None = None

        if definitions is not None:
            for definition in definitions:
                self.register_model(definition)
            self.wire_all_associations()

    @classmethod
    def from_config(cls, config: RegistryConfig | None = None) -> "SchemaRegistry":
        """Load every schema of ``config.schemas_dir``, register and wire them."""
        config = config or RegistryConfig()
        logger.debug(f"Loading schemas from {config.schemas_dir}")
        return cls(config, load_schema_directory(config.schemas_dir))

    def __getitem__(self, name: str) -> type[GraphModel]:
        try:
            return self.models[name]
        except KeyError:
            raise TableNotFoundError(name, self.table_names) from None

    def __contains__(self, name: object) -> bool:
        return name in self.models

    def __iter__(self) -> Iterator[str]:
        return iter(self.models)

    @property
    def table_names(self) -> list[str]:
        return list(self.models)

    def register_model(self, definition: ModelDefinition) -> type[GraphModel]:
        """Build the mapped class of ``definition`` and register it under its name.

        Process-wide define options are merged under the schema's own options.
        A model without declared primary key gets an auto-increment ``id``.
        Registering a name again replaces the previous model.

        Returns:
            The new model class.
        """
        name = definition.name
        options = {**self.config.define, **definition.options}
        underscored = bool(options.get("underscored", True))

        if name in self.models:
            logger.warning(f"Schema {name} is registered again, replacing the previous model")
            self.metadata.remove(self.models[name].__table__)

        table_args: dict[str, Any] = {}
        if options.get("charset"):
            table_args["mysql_charset"] = options["charset"]
        if options.get("collate"):
            table_args["mysql_collate"] = options["collate"]
        if options.get("comment"):
            table_args["comment"] = options["comment"]

        namespace: dict[str, Any] = {
            "__module__": __name__,
            "__tablename__": options.get("table_name", definition.table_name),
            "__table_args__": table_args,
            "__edges__": {},
            "__define_options__": options,
            "__fill_mode__": FillMode(options.get("fill_mode", self.config.fill_mode)),
            "__definition__": definition,
        }
        if not definition.primary_keys:
            namespace["id"] = mapped_column(Integer, primary_key=True, autoincrement=True)
        for attribute, spec in definition.attributes.items():
            namespace[attribute] = spec.to_column()
        if options.get("timestamps", True):
            created_at = attribute_name("created_at", underscored)
            updated_at = attribute_name("updated_at", underscored)
            namespace.setdefault(created_at, mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False))
            namespace.setdefault(
                updated_at, mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
            )

        try:
            for extension in (*definition.statics, *definition.methods):
                if extension in namespace:
                    raise ConfigurationError(f"{name}.{extension} clashes with an attribute.")
            model_cls = type(name, (GraphModel, self.base), namespace)
            for static_name, function in definition.statics.items():
                setattr(model_cls, static_name, classmethod(function))
            for method_name, function in definition.methods.items():
                setattr(model_cls, method_name, function)
            install_hooks(model_cls, dict(definition.hooks))
            transforms = {attribute: spec.transforms for attribute, spec in definition.attributes.items()}
            for attribute, names in options.get("transforms", {}).items():
                transforms[attribute] = [*transforms.get(attribute, []), *names]
            install_transforms(model_cls, transforms)
        except WiringError as e:
            raise e.annotate(name, definition.source) from None
        except ValueError as e:
            raise ConfigurationError(str(e)).annotate(name, definition.source) from e

        self.models[name] = model_cls
        self.definitions[name] = definition
        logger.debug(f"Registered model {name} as table {model_cls.__tablename__}")
        return model_cls

    def wire_association(self, source: str, kind: "str | DeclaredKind", spec: Any) -> list[AssociationEdge]:
        """Wire one association declared by ``source``.

        Args:
            source: Name of the declaring schema.
            kind: ``one_to_one``, ``one_to_many`` or ``many_to_many`` (camelCase accepted).
            spec: Target table name, ``(table, options, reverse_options)`` tuple or mapping.

        Returns:
            The installed edges.

        Raises:
            WiringError: Annotated with the declaring schema and ``spec``. No edge of the
                failing spec is installed.
        """
        definition = self.definitions.get(source)
        try:
            edges = self._wiring.wire(source, kind, spec)
        except WiringError as e:
            raise e.annotate(source, definition.source if definition else None, spec) from None
        self.edges.extend(edges)
        return edges

    def wire_all_associations(self) -> list[AssociationEdge]:
        """Wire the associations of every model, in registration then declaration order."""
        edges: list[AssociationEdge] = []
        for name, definition in self.definitions.items():
            for kind, specs in definition.associations.items():
                for spec in specs:
                    edges.extend(self.wire_association(name, kind, spec))
        logger.info(f"Wired {len(edges)} association edge(s) between {len(self.models)} model(s)")
        return edges

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self.config.url, **self.config.engine_options)
        return self._engine

    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Session factory bound to the registry's engine."""
        return async_sessionmaker(self.engine, expire_on_commit=False)

    def unit_of_work(self) -> UnitOfWork:
        return UnitOfWork(self.session_factory())

    async def sync(self) -> None:
        """Create the registered tables in one transaction, dropping them first with ``sync.force``."""
        async with self.engine.begin() as conn:
            if self.config.sync.get("force", False):
                await conn.run_sync(self.metadata.drop_all)
            await conn.run_sync(self.metadata.create_all)

    async def connect_and_sync(self) -> "SchemaRegistry":
        """Sync the schema, retrying every ``retry_timeout_ms`` until the database answers.

        There is no retry limit: the registry waits for the database.

        Returns:
            The registry, once ready.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                await self.sync()
            except (SQLAlchemyError, OSError) as e:
                logger.error(f"Unable to connect to the database (attempt {attempt}): {e}")
                await asyncio.sleep(self.config.retry_timeout_ms / 1000)
                continue
            break

        logger.info(f"Database synchronised, {len(self.metadata.tables)} table(s) ready")
        self._ready.set()
        return self

    def start(self) -> "asyncio.Task[SchemaRegistry]":
        """Run :meth:`connect_and_sync` in the background, see :meth:`wait_ready`."""
        if self._connect_task is None:
            self._connect_task = asyncio.create_task(self.connect_and_sync())
        return self._connect_task

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    async def wait_ready(self) -> "SchemaRegistry":
        """Wait until the database is connected and synchronised."""
        await self._ready.wait()
        return self

    async def dispose(self) -> None:
        """Close the engine's connections."""
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
