"""
orm-schemas registers schema-definition files as SQLAlchemy models, wires their
associations and lets every model hydrate and persist a nested graph of records
in one call with ``fill_and_save``.
"""

from orm_schemas.associations import AssociationEdge, AssociationKind, DeclaredKind, parse_association_spec
from orm_schemas.config import FillMode, RegistryConfig
from orm_schemas.exceptions import (
    AssociationSpecError,
    ConfigurationError,
    NoSessionError,
    OrmSchemasError,
    PersistenceError,
    SchemaLoadError,
    TableNotFoundError,
    ThroughTableConflictError,
    UnknownAssociationKindError,
    UnknownFieldError,
    WiringError,
)
from orm_schemas.model import GraphModel, Persistable
from orm_schemas.registry import SchemaRegistry
from orm_schemas.schema import ModelDefinition, discover_schemas, load_schema_definition
from orm_schemas.uow import UnitOfWork

__all__ = [
    "AssociationEdge",
    "AssociationKind",
    "AssociationSpecError",
    "ConfigurationError",
    "DeclaredKind",
    "FillMode",
    "GraphModel",
    "ModelDefinition",
    "NoSessionError",
    "OrmSchemasError",
    "Persistable",
    "PersistenceError",
    "RegistryConfig",
    "SchemaLoadError",
    "SchemaRegistry",
    "TableNotFoundError",
    "ThroughTableConflictError",
    "UnitOfWork",
    "UnknownAssociationKindError",
    "UnknownFieldError",
    "WiringError",
    "discover_schemas",
    "load_schema_definition",
    "parse_association_spec",
]
