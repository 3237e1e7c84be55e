"""
Session — one authenticated connection to an entity-graph server.

Bootstraps the server information and schemas in a single batch, then
exposes batched calls plus shorthands for the common operations.

Behavioral Contract:
- The SchemaIndex is built once during construction and never mutated
- Every call gets its own identity map unless the caller passes one
- Failures surface immediately as exceptions; nothing is retried
"""

import logging
from concurrent.futures import Future
from typing import Any, Dict, List, Optional, Sequence, Union
from urllib.parse import urlencode
from uuid import UUID

from pydantic import BaseModel

from entity_rpc.dispatch.async_call import AsyncCaller
from entity_rpc.dispatch.dispatcher import BatchDispatcher
from entity_rpc.errors import DecodeError
from entity_rpc.identity.merger import IdentityMap, get_entity_type
from entity_rpc.models.config import SessionConfig
from entity_rpc.models.operations import (
    TIMEZONE_SUPPORT_FIELD,
    CreateOperation,
    DeleteOperation,
    KeyValue,
    Operation,
    QueryOperation,
    QuerySchemasOperation,
    QueryServerInformationOperation,
    UpdateOperation,
)
from entity_rpc.models.results import (
    CreateResult,
    DeleteResult,
    QueryResult,
    QueryServerInformationResult,
    UpdateResult,
)
from entity_rpc.models.schema import SchemaIndex
from entity_rpc.registry.operations import OperationRegistry
from entity_rpc.transport.http import HttpTransport, Transport

logger = logging.getLogger(__name__)

DEFAULT_SERVER_INFORMATION_VALUES = ["version"]


def _quote(value: Any) -> str:
    """Escape a value for use inside a double-quoted expression literal."""
    return str(value).replace("\\", "\\\\").replace('"', '\\"')


class Session:
    """Client session bound to one server and API user."""

    def __init__(
        self,
        config: SessionConfig,
        transport: Optional[Transport] = None,
        registry: Optional[OperationRegistry] = None,
        server_information_values: Optional[List[str]] = None,
    ):
        self.config = config
        self._owns_transport = transport is None
        self.transport = transport or HttpTransport(config)
        self.dispatcher = BatchDispatcher(self.transport, registry=registry)
        self._async_caller: Optional[AsyncCaller] = None

        self.server_information = QueryServerInformationResult({})
        self.initialized = False
        self._bootstrap(
            server_information_values
            if server_information_values is not None
            else DEFAULT_SERVER_INFORMATION_VALUES
        )

    def _bootstrap(self, values: Optional[List[str]]) -> None:
        information, schemas = self.dispatcher.call(
            QueryServerInformationOperation(values=values),
            QuerySchemasOperation(),
        )
        try:
            index = SchemaIndex.from_schemas(
                list(schemas),
                timezone_support=bool(information.get(TIMEZONE_SUPPORT_FIELD, False)),
            )
        except ValueError as e:
            raise DecodeError(f"failed to index schemas: {e}", schemas.root)

        self.server_information = information
        self.dispatcher.schema_index = index
        self.initialized = True
        logger.info(
            "Session ready for %s: server version %s, %d entity types",
            self.config.server_url,
            self.server_version,
            len(index.schemas),
        )

    # --- Introspection ---

    @property
    def schema_index(self) -> SchemaIndex:
        return self.dispatcher.schema_index

    @property
    def server_version(self) -> Optional[str]:
        return self.server_information.get("version")

    @property
    def schemas(self) -> List[Dict[str, Any]]:
        return list(self.schema_index.schemas.values())

    def get_schema(self, entity_type: str) -> Optional[Dict[str, Any]]:
        return self.schema_index.schema_of(entity_type)

    def primary_keys_of(self, entity_type: str) -> Optional[List[str]]:
        return self.schema_index.primary_keys_of(entity_type)

    def identity_key(self, entity: Dict[str, Any]) -> Optional[str]:
        return self.dispatcher.merger.identity_key(entity)

    # --- Calls ---

    def call(
        self,
        *operations: Operation,
        identity_map: Optional[IdentityMap] = None,
    ) -> List[BaseModel]:
        """Send operations as one batch. See BatchDispatcher.call."""
        return self.dispatcher.call(*operations, identity_map=identity_map)

    def async_call(
        self,
        *operations: Operation,
        identity_map: Optional[IdentityMap] = None,
    ) -> "Future[List[BaseModel]]":
        """Send operations as one batch in the background."""
        return self.async_caller.submit(*operations, identity_map=identity_map)

    def async_query(self, expression: str) -> "Future[QueryResult]":
        return self.async_caller.submit_query(expression)

    @property
    def async_caller(self) -> AsyncCaller:
        if self._async_caller is None:
            self._async_caller = AsyncCaller(self.dispatcher)
        return self._async_caller

    def query(
        self, expression: str, identity_map: Optional[IdentityMap] = None
    ) -> QueryResult:
        (result,) = self.call(
            QueryOperation(expression=expression), identity_map=identity_map
        )
        return result

    def create(
        self, entity_type: str, data: Optional[Dict[str, Any]] = None
    ) -> CreateResult:
        (result,) = self.call(
            CreateOperation(entity_type=entity_type, entity_data=data or {})
        )
        return result

    def update(
        self,
        entity_type: str,
        entity_key: Sequence[KeyValue],
        data: Dict[str, Any],
    ) -> UpdateResult:
        (result,) = self.call(UpdateOperation(
            entity_type=entity_type,
            entity_key=list(entity_key),
            entity_data=data,
        ))
        return result

    def delete(
        self, entity_type: str, entity_key: Sequence[KeyValue]
    ) -> DeleteResult:
        (result,) = self.call(
            DeleteOperation(entity_type=entity_type, entity_key=list(entity_key))
        )
        return result

    def ensure_populated(
        self, entity: Dict[str, Any], keys: Sequence[str]
    ) -> Dict[str, Any]:
        """
        Fetch `keys` for an entity and merge them into the same dict.

        Raises LookupError when the entity cannot be keyed, or when the
        server returns no row or more than one row for it.
        """
        entity_type = get_entity_type(entity)
        if entity_type is None:
            raise LookupError(f"not an entity: {entity!r}")
        primary_keys = self.primary_keys_of(entity_type)
        if primary_keys is None:
            raise LookupError(
                f"could not determine primary keys for entity type {entity_type}"
            )
        key = self.identity_key(entity)
        if key is None:
            raise LookupError(f"entity {entity_type} is missing primary key values")

        criteria = " and ".join(
            f'{name} is "{_quote(entity[name])}"' for name in primary_keys
        )
        expression = f"select {', '.join(keys)} from {entity_type} where {criteria}"

        identity_map = IdentityMap()
        identity_map.claim(key, entity)
        result = self.query(expression, identity_map=identity_map)
        if not result.data:
            raise LookupError(f"no entity found for {key}")
        if len(result.data) > 1:
            raise LookupError(f"multiple entities found for {key}")
        if result.data[0] is not entity:
            raise LookupError(
                f"server returned {self.identity_key(result.data[0])} for {key}"
            )
        return entity

    # --- Component URLs ---

    def get_component_url(self, component_id: Union[UUID, str]) -> str:
        query = urlencode({
            "id": str(component_id),
            "username": self.config.api_user,
            "apiKey": self.config.api_key,
        })
        return f"{self.config.server_url}/component/get?{query}"

    def get_thumbnail_url(self, component_id: Union[UUID, str], size: int = 300) -> str:
        query = urlencode({
            "id": str(component_id),
            "size": size,
            "username": self.config.api_user,
            "apiKey": self.config.api_key,
        })
        return f"{self.config.server_url}/component/thumbnail?{query}"

    # --- Lifecycle ---

    def close(self) -> None:
        if self._async_caller is not None:
            self._async_caller.shutdown()
            self._async_caller = None
        if self._owns_transport and isinstance(self.transport, HttpTransport):
            self.transport.close()

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
