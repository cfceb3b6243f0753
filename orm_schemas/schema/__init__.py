from orm_schemas.schema.definition import AttributeSpec, ModelDefinition
from orm_schemas.schema.loader import discover_schemas, load_schema_definition, load_schema_directory

__all__ = [
    "AttributeSpec",
    "ModelDefinition",
    "discover_schemas",
    "load_schema_definition",
    "load_schema_directory",
]
