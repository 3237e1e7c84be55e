"""entity-rpc data models."""

from entity_rpc.models.config import SessionConfig
from entity_rpc.models.operations import (
    ENTITY_TYPE_KEY,
    CreateOperation,
    DeleteOperation,
    GetUploadMetadataOperation,
    Operation,
    QueryOperation,
    QuerySchemasOperation,
    QueryServerInformationOperation,
    UpdateOperation,
)
from entity_rpc.models.results import (
    CreateResult,
    DeleteResult,
    GetUploadMetadataResult,
    QueryResult,
    QuerySchemasResult,
    QueryServerInformationResult,
    UpdateResult,
)
from entity_rpc.models.schema import SchemaIndex

__all__ = [
    "ENTITY_TYPE_KEY",
    "CreateOperation",
    "CreateResult",
    "DeleteOperation",
    "DeleteResult",
    "GetUploadMetadataOperation",
    "GetUploadMetadataResult",
    "Operation",
    "QueryOperation",
    "QueryResult",
    "QuerySchemasOperation",
    "QuerySchemasResult",
    "QueryServerInformationOperation",
    "QueryServerInformationResult",
    "SchemaIndex",
    "SessionConfig",
    "UpdateOperation",
    "UpdateResult",
]
