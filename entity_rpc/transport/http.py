"""
Transport — moves an encoded batch to the server and returns the raw reply.

The dispatcher only needs `exchange(payload) -> bytes`. Errors the server
reports in-body are left for the dispatcher to parse; network failures
raise httpx errors, which reach the caller unwrapped.
"""

import logging
from typing import Dict, Optional, Protocol

import httpx

from entity_rpc.models.config import SessionConfig

logger = logging.getLogger(__name__)


class Transport(Protocol):
    def exchange(self, payload: bytes) -> bytes:
        ...


class HttpTransport:
    """Posts batches to the server's API endpoint with the auth headers set."""

    def __init__(self, config: SessionConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=config.timeout_seconds)

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "ftrack-api-key": self.config.api_key,
            "ftrack-user": self.config.api_user,
            "ftrack-clienttoken": self.config.client_token,
        }

    def exchange(self, payload: bytes) -> bytes:
        response = self._client.post(
            self.config.api_url,
            content=payload,
            headers=self.headers,
            timeout=self.config.timeout_seconds,
        )
        if response.is_error:
            logger.debug(
                "Server answered HTTP %d for %s",
                response.status_code,
                self.config.api_url,
            )
        return response.content

    def close(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
