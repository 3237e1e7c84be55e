"""Shared fixtures: a scripted transport and a reference-server session."""

import json

import pytest
from fastapi.testclient import TestClient

from entity_rpc.api.app import create_app
from entity_rpc.models.config import SessionConfig
from entity_rpc.models.schema import SchemaIndex
from entity_rpc.session.session import Session
from entity_rpc.transport.http import HttpTransport


class ScriptedTransport:
    """Replays canned responses and records the payloads it was sent."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.payloads = []

    def exchange(self, payload: bytes) -> bytes:
        self.payloads.append(json.loads(payload))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, bytes):
            return response
        return json.dumps(response).encode()


@pytest.fixture
def scripted():
    return ScriptedTransport


@pytest.fixture
def schema_index():
    return SchemaIndex(
        primary_keys={"Task": ["id"], "Status": ["id"]},
        timezone_support=True,
    )


@pytest.fixture
def config():
    return SessionConfig(
        server_url="http://testserver",
        api_user="tester",
        api_key="secret-key",
    )


@pytest.fixture
def app():
    return create_app(api_key="secret-key")


@pytest.fixture
def session(app, config):
    """A session bootstrapped against a fresh reference server."""
    with TestClient(app) as client:
        with Session(config, transport=HttpTransport(config, client=client)) as s:
            yield s
