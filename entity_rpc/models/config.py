"""Session configuration."""

import os
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

DEFAULT_API_ENDPOINT = "/api"


def _client_token() -> str:
    return f"entity-rpc-python--{uuid4()}"


class SessionConfig(BaseModel):
    """Connection settings for one server and one API user."""

    server_url: str = Field(min_length=1)       # e.g. "https://example.host"
    api_user: str = Field(min_length=1)
    api_key: str = Field(min_length=1)
    api_endpoint: str = DEFAULT_API_ENDPOINT
    client_token: str = Field(default_factory=_client_token)
    timeout_seconds: float = Field(gt=0, default=10.0)

    @property
    def api_url(self) -> str:
        return f"{self.server_url.rstrip('/')}{self.api_endpoint}"

    @classmethod
    def from_env(
        cls, prefix: str = "ENTITY_RPC_", environ: Optional[dict] = None
    ) -> "SessionConfig":
        """Read settings from `<prefix>SERVER_URL`, `API_USER`, `API_KEY`, ..."""
        env = os.environ if environ is None else environ
        values = {
            "server_url": env.get(f"{prefix}SERVER_URL", ""),
            "api_user": env.get(f"{prefix}API_USER", ""),
            "api_key": env.get(f"{prefix}API_KEY", ""),
        }
        if f"{prefix}API_ENDPOINT" in env:
            values["api_endpoint"] = env[f"{prefix}API_ENDPOINT"]
        if f"{prefix}TIMEOUT" in env:
            values["timeout_seconds"] = env[f"{prefix}TIMEOUT"]
        return cls(**values)
