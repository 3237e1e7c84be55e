"""
Wire Codec — converts operations to the batch payload and back.

Behavioral Contract:
- A batch is a JSON array with one object per operation, in call order
- Datetimes travel as {"__type__": "datetime", "value": "<YYYY-MM-DDTHH:MM:SS>"}
- Anything without a wire form raises EncodeError before a byte is sent
- A response is either a JSON array or a single error object; anything
  else raises MalformedResponseError carrying the raw body
"""

import json
import logging
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from pydantic import BaseModel, ValidationError

from entity_rpc.errors import (
    DecodeError,
    EncodeError,
    MalformedResponseError,
    ServerError,
    ServerPermissionDeniedError,
    ServerValidationError,
)
from entity_rpc.models.operations import Operation

logger = logging.getLogger(__name__)

DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"
DATETIME_TYPE = "datetime"
TYPE_KEY = "__type__"

VALIDATION_EXCEPTIONS = frozenset({"ValidationError"})
PERMISSION_EXCEPTIONS = frozenset({"FTAuthenticationError", "PermissionError"})


class ErrorResponse(BaseModel):
    """Error object the server answers with instead of a result array."""

    content: str = ""
    exception: str
    error_code: Optional[int] = None


# --- Dates ---

def is_date(value: Any) -> bool:
    return isinstance(value, dict) and value.get(TYPE_KEY) == DATETIME_TYPE


def encode_datetime(value: datetime, timezone_support: bool) -> Dict[str, str]:
    """Tag a datetime for the wire. Aware values are normalized first."""
    if value.tzinfo is not None:
        if timezone_support:
            value = value.astimezone(timezone.utc)
        else:
            value = value.astimezone()
        value = value.replace(tzinfo=None)
    return {TYPE_KEY: DATETIME_TYPE, "value": value.strftime(DATETIME_FORMAT)}


def decode_datetime(data: Dict[str, Any], timezone_support: bool) -> datetime:
    """
    Parse a tagged datetime. With timezone support the server speaks UTC
    and the result is UTC-aware; otherwise it is naive server-local time.
    """
    raw = data.get("value")
    if not isinstance(raw, str):
        raise DecodeError("datetime value is not a string", data)
    try:
        parsed = datetime.strptime(raw, DATETIME_FORMAT)
    except ValueError:
        raise DecodeError(f"datetime value does not match {DATETIME_FORMAT}", data)
    if timezone_support:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


# --- Encoding ---

def encode_value(value: Any, timezone_support: bool = False) -> Any:
    """Recursively convert a value to its JSON-ready wire form."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, datetime):
        return encode_datetime(value, timezone_support)
    if isinstance(value, date):
        return encode_datetime(datetime.combine(value, time()), timezone_support)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, dict):
        encoded = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise EncodeError(f"mapping key {key!r} is not a string", value)
            encoded[key] = encode_value(item, timezone_support)
        return encoded
    if isinstance(value, (list, tuple)):
        return [encode_value(item, timezone_support) for item in value]
    raise EncodeError(f"unsupported type {type(value).__name__}", value)


def encode_operations(
    operations: Sequence[Operation], timezone_support: bool = False
) -> bytes:
    """Serialize operations into one batch payload."""
    batch = [
        encode_value(dict(op), timezone_support) for op in operations
    ]
    try:
        return json.dumps(batch, allow_nan=False).encode("utf-8")
    except ValueError as e:
        raise EncodeError(str(e), batch)


# --- Responses ---

def error_from_response(response: ErrorResponse) -> ServerError:
    """Pick the ServerError variant matching the reported exception name."""
    if response.exception in VALIDATION_EXCEPTIONS:
        error_cls = ServerValidationError
    elif response.exception in PERMISSION_EXCEPTIONS:
        error_cls = ServerPermissionDeniedError
    else:
        error_cls = ServerError
    return error_cls(
        response.content,
        exception=response.exception,
        error_code=response.error_code,
    )


def parse_response(body: bytes) -> List[Any]:
    """
    Parse a response body into its raw per-operation elements.

    Raises a ServerError variant when the body is an error object and
    MalformedResponseError when it is neither shape.
    """
    try:
        parsed = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise MalformedResponseError(body)

    if isinstance(parsed, list):
        return parsed

    if isinstance(parsed, dict):
        try:
            error = ErrorResponse.model_validate(parsed)
        except ValidationError:
            raise MalformedResponseError(body)
        logger.warning(
            "Server rejected batch: %s (%s)", error.exception, error.content
        )
        raise error_from_response(error)

    raise MalformedResponseError(body)
