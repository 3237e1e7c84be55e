"""
Error taxonomy for batched calls.

Every error is terminal for the call that raised it. Nothing is retried and
no partial batch results are returned; the caller decides what to resend.
Transport failures are not wrapped and reach the caller unchanged.
"""

from typing import Any, Optional


class EntityRpcError(Exception):
    """Base class for errors raised by the protocol layer."""
    pass


class EncodeError(EntityRpcError):
    """An operation field could not be converted to its wire form."""

    def __init__(self, message: str, data: Any = None):
        self.message = message
        self.data = data
        super().__init__(f"encode error: {message} on data: {data!r}")


class DecodeError(EntityRpcError):
    """A response element did not match the shape its operation expects."""

    def __init__(self, message: str, data: Any = None):
        self.message = message
        self.data = data
        super().__init__(f"decode error: {message} on data: {data!r}")


class ServerError(EntityRpcError):
    """The server rejected the batch and reported why."""

    label = "ServerError"

    def __init__(
        self,
        message: str,
        exception: str = "",
        error_code: Optional[int] = None,
    ):
        self.message = message
        self.exception = exception
        self.error_code = error_code
        super().__init__(
            f"{self.label}: {exception} - {message} code: {error_code}"
        )


class ServerValidationError(ServerError):
    label = "ServerValidationError"


class ServerPermissionDeniedError(ServerError):
    label = "ServerPermissionDeniedError"


class MalformedResponseError(EntityRpcError):
    """Response was neither a result array nor an error object."""

    def __init__(self, content: bytes):
        self.content = content
        super().__init__(f"MalformedResponseError: content: {content!r}")
