"""
Operation Registry — maps each action tag to its request and result shapes.

Behavioral Contract:
- Every operation kind pairs an operation model with a result model and a
  decorator that applies identity-map merging to the result
- The dispatcher resolves kinds only through this registry; a new kind
  plugs in with `register()` and no dispatcher change
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Type

from pydantic import BaseModel, ValidationError

from entity_rpc.errors import DecodeError, EncodeError
from entity_rpc.identity.merger import EntityMerger, IdentityMap
from entity_rpc.models.operations import (
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

Decorator = Callable[[BaseModel, EntityMerger, IdentityMap], BaseModel]


def no_decoration(
    result: BaseModel, merger: EntityMerger, identity_map: IdentityMap
) -> BaseModel:
    """Decorator for results that carry no entity content."""
    return result


def decode_data(
    result: BaseModel, merger: EntityMerger, identity_map: IdentityMap
) -> BaseModel:
    """Merge the entities held in `result.data` into the identity map."""
    result.data = merger.decode(result.data, identity_map)
    return result


@dataclass(frozen=True)
class OperationKind:
    """One registered operation kind."""

    action: str
    operation_model: Type[Operation]
    result_model: Type[BaseModel]
    decorate: Decorator = no_decoration

    def result_factory(self, operation: Operation) -> Type[BaseModel]:
        return self.result_model

    def decode_result(self, operation: Operation, raw: Any) -> BaseModel:
        """Validate the raw response element answering `operation`."""
        result_model = self.result_factory(operation)
        try:
            return result_model.model_validate(raw)
        except ValidationError as e:
            raise DecodeError(
                f"element does not match {result_model.__name__}: "
                f"{e.error_count()} validation error(s)",
                raw,
            )


class OperationRegistry:
    """Registry of operation kinds keyed by action tag."""

    def __init__(self):
        self._kinds: Dict[str, OperationKind] = {}

    def register(self, kind: OperationKind, replace: bool = False) -> None:
        if kind.action in self._kinds and not replace:
            raise ValueError(f"Operation kind already registered: {kind.action}")
        self._kinds[kind.action] = kind

    def kind_for(self, operation: Operation) -> OperationKind:
        kind = self._kinds.get(operation.action)
        if kind is None:
            raise EncodeError(
                f"no operation kind registered for action {operation.action!r}",
                operation,
            )
        return kind

    def get(self, action: str) -> OperationKind:
        return self._kinds[action]

    def parse_operation(self, payload: Dict[str, Any]) -> Operation:
        """
        Validate a wire operation object into its registered model.

        Raises DecodeError for unknown actions or mismatched fields.
        """
        action = payload.get("action") if isinstance(payload, dict) else None
        kind = self._kinds.get(action) if isinstance(action, str) else None
        if kind is None:
            raise DecodeError(f"unknown operation action {action!r}", payload)
        try:
            return kind.operation_model.model_validate(payload)
        except ValidationError as e:
            raise DecodeError(
                f"invalid {action} operation: {e.error_count()} validation error(s)",
                payload,
            )

    @property
    def actions(self) -> List[str]:
        return list(self._kinds)

    def __contains__(self, action: object) -> bool:
        return action in self._kinds


def default_registry() -> OperationRegistry:
    """A registry holding the built-in operation kinds."""
    registry = OperationRegistry()
    registry.register(OperationKind("query", QueryOperation, QueryResult, decode_data))
    registry.register(OperationKind("create", CreateOperation, CreateResult, decode_data))
    registry.register(OperationKind("update", UpdateOperation, UpdateResult, decode_data))
    registry.register(OperationKind("delete", DeleteOperation, DeleteResult))
    registry.register(OperationKind(
        "query_server_information",
        QueryServerInformationOperation,
        QueryServerInformationResult,
    ))
    registry.register(OperationKind(
        "query_schemas", QuerySchemasOperation, QuerySchemasResult
    ))
    registry.register(OperationKind(
        "get_upload_metadata", GetUploadMetadataOperation, GetUploadMetadataResult
    ))
    return registry
