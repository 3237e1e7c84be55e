"""Operations — the request units bundled into one batched call."""

from typing import Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

ENTITY_TYPE_KEY = "__entity_type__"
TIMEZONE_SUPPORT_FIELD = "is_timezone_support_enabled"

# Primary key values are usually string ids, but numeric keys exist.
KeyValue = Union[str, int]


class Operation(BaseModel):
    """Base for every operation kind. `action` selects the kind."""

    model_config = ConfigDict(frozen=True)

    action: str


def _fill_entity_type(data: Dict[str, Any], info: ValidationInfo) -> Dict[str, Any]:
    filled = dict(data)
    entity_type = info.data.get("entity_type")
    if entity_type is not None and ENTITY_TYPE_KEY not in filled:
        filled[ENTITY_TYPE_KEY] = entity_type
    return filled


class QueryOperation(Operation):
    action: Literal["query"] = "query"
    expression: str


class CreateOperation(Operation):
    action: Literal["create"] = "create"
    entity_type: str
    entity_data: Dict[str, Any] = Field(default_factory=dict, validate_default=True)

    @field_validator("entity_data")
    @classmethod
    def _default_entity_type(cls, v: Dict[str, Any], info: ValidationInfo):
        return _fill_entity_type(v, info)


class UpdateOperation(Operation):
    action: Literal["update"] = "update"
    entity_type: str
    entity_key: List[KeyValue]
    entity_data: Dict[str, Any] = Field(default_factory=dict, validate_default=True)

    @field_validator("entity_data")
    @classmethod
    def _default_entity_type(cls, v: Dict[str, Any], info: ValidationInfo):
        return _fill_entity_type(v, info)


class DeleteOperation(Operation):
    action: Literal["delete"] = "delete"
    entity_type: str
    entity_key: List[KeyValue]


class QueryServerInformationOperation(Operation):
    """
    Server metadata lookup. The timezone support flag is always requested
    because date decoding depends on it.
    """

    action: Literal["query_server_information"] = "query_server_information"
    values: Optional[List[str]] = Field(default=None, validate_default=True)

    @field_validator("values", mode="after")
    @classmethod
    def _request_timezone_flag(cls, v: Optional[List[str]]) -> List[str]:
        if v is None:
            return [TIMEZONE_SUPPORT_FIELD]
        if TIMEZONE_SUPPORT_FIELD not in v:
            return [*v, TIMEZONE_SUPPORT_FIELD]
        return list(v)


class QuerySchemasOperation(Operation):
    action: Literal["query_schemas"] = "query_schemas"


class GetUploadMetadataOperation(Operation):
    action: Literal["get_upload_metadata"] = "get_upload_metadata"
    file_name: str
    file_size: int
    component_id: UUID
