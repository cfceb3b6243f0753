from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.pool import StaticPool

from orm_schemas.config import RegistryConfig
from orm_schemas.registry import SchemaRegistry
from orm_schemas.schema.definition import ModelDefinition


def slugify_name(mapper, connection, target) -> None:
    target.slug = target.name.lower().replace(" ", "-")


SHOP_SCHEMAS: dict[str, dict[str, Any]] = {
    "Customer": {
        "attributes": {
            "name": {"type": "string", "allow_null": False, "trim": True},
            "slug": "string",
        },
        "hooks": {"before_save": slugify_name},
        "methods": {"greeting": lambda self: f"Hello {self.name}"},
        "statics": {"table": lambda cls: cls.__tablename__},
    },
    "Order": {
        "attributes": {"total": "integer"},
        "associations": {"one_to_many": ["Customer"]},
    },
    "Item": {
        "attributes": {"sku": {"type": "string", "allow_null": False, "trim": True, "uppercase": True}},
        "associations": {"one_to_many": ["Order"]},
    },
    "Tag": {
        "attributes": {"label": {"type": "string", "unique": True}},
        "associations": {"many_to_many": [("Item", {"through": "ItemTag"})]},
    },
    "ItemTag": {
        "attributes": {"weight": "integer"},
    },
}


def memory_config(**options: Any) -> RegistryConfig:
    """In-memory SQLite configuration, one shared connection for the whole registry."""
    return RegistryConfig(orm={"url": "sqlite+aiosqlite://", "poolclass": StaticPool}, **options)


@pytest.fixture
def make_registry() -> Callable[..., SchemaRegistry]:
    """Build a registry from ``{name: schema mapping}``, registering in the given order."""

    def factory(schemas: dict[str, dict[str, Any]], **options: Any) -> SchemaRegistry:
        definitions = [ModelDefinition.from_mapping(name, schema) for name, schema in schemas.items()]
        return SchemaRegistry(memory_config(**options), definitions)

    return factory


@pytest.fixture
def shop_registry(make_registry) -> SchemaRegistry:
    """Customer <- Order <- Item <-> Tag (through ItemTag)."""
    return make_registry(SHOP_SCHEMAS)


@pytest_asyncio.fixture
async def db_session(shop_registry: SchemaRegistry) -> AsyncGenerator[AsyncSession, None]:
    """A session on a freshly synchronised in-memory database.

    The session is rolled back and the engine disposed after each test.
    """
    await shop_registry.sync()
    session = shop_registry.session_factory()()

    yield session

    await session.rollback()
    await session.close()
    await shop_registry.dispose()
