"""
Reference Server — FastAPI app speaking the batched entity protocol.

Serves `POST /api` from an in-memory EntityStore, for development and
end-to-end tests of the client:
- The body is a JSON array of operations, parsed through the registry
- The reply is a JSON array with one result per operation, in order
- Any failure answers a single error object instead, and the batch
  stops at the failing operation
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from entity_rpc.api.store import EntityStore, StoreError
from entity_rpc.errors import DecodeError
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
from entity_rpc.registry.operations import OperationRegistry, default_registry

logger = logging.getLogger(__name__)

DEFAULT_SERVER_INFORMATION: Dict[str, Any] = {
    "version": "4.13.0",
    "is_timezone_support_enabled": True,
    "storage_scenario": {"scenario": "reference"},
}


class BatchFailure(Exception):
    """Aborts a batch with an error object for the client."""

    def __init__(self, exception: str, content: str, error_code: int = 400):
        self.exception = exception
        self.content = content
        self.error_code = error_code
        super().__init__(content)

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.error_code,
            content={
                "content": self.content,
                "exception": self.exception,
                "error_code": self.error_code,
            },
        )


class BatchExecutor:
    """Applies parsed operations to a store, one handler per action."""

    def __init__(
        self,
        store: EntityStore,
        server_information: Dict[str, Any],
        base_url: str = "http://testserver",
    ):
        self.store = store
        self.server_information = server_information
        self.base_url = base_url
        self._handlers: Dict[str, Callable[[Any], Any]] = {}
        self._register_default_handlers()

    def _register_default_handlers(self) -> None:
        self._handlers["query"] = self._query
        self._handlers["create"] = self._create
        self._handlers["update"] = self._update
        self._handlers["delete"] = self._delete
        self._handlers["query_server_information"] = self._query_server_information
        self._handlers["query_schemas"] = self._query_schemas
        self._handlers["get_upload_metadata"] = self._get_upload_metadata

    def register_handler(self, action: str, handler: Callable[[Any], Any]) -> None:
        """Register a handler for a custom operation kind."""
        self._handlers[action] = handler

    def execute(self, operation: Operation) -> Any:
        handler = self._handlers.get(operation.action)
        if handler is None:
            raise BatchFailure(
                "ValidationError", f"Unsupported action: {operation.action}"
            )
        try:
            return handler(operation)
        except StoreError as e:
            raise BatchFailure("ValidationError", str(e))

    # --- Handlers ---

    def _query(self, op: QueryOperation) -> dict:
        return {
            "action": "query",
            "data": self.store.query(op.expression),
            "metadata": {"next": {"offset": None}},
        }

    def _create(self, op: CreateOperation) -> dict:
        return {
            "action": "create",
            "data": self.store.create(op.entity_type, op.entity_data),
            "metadata": {},
        }

    def _update(self, op: UpdateOperation) -> dict:
        return {
            "action": "update",
            "data": self.store.update(op.entity_type, op.entity_key, op.entity_data),
            "metadata": {},
        }

    def _delete(self, op: DeleteOperation) -> dict:
        return {
            "action": "delete",
            "data": self.store.delete(op.entity_type, op.entity_key),
        }

    def _query_server_information(self, op: QueryServerInformationOperation) -> dict:
        return {
            name: self.server_information.get(name) for name in op.values
        }

    def _query_schemas(self, op: QuerySchemasOperation) -> list:
        return self.store.schemas

    def _get_upload_metadata(self, op: GetUploadMetadataOperation) -> dict:
        return {
            "url": f"{self.base_url}/upload/{op.component_id}",
            "headers": {
                "Content-Type": "application/octet-stream",
                "Content-Disposition": f'attachment; filename="{op.file_name}"',
            },
        }


# --- Application Factory ---

def create_app(
    store: Optional[EntityStore] = None,
    server_information: Optional[Dict[str, Any]] = None,
    api_key: Optional[str] = None,
    registry: Optional[OperationRegistry] = None,
) -> FastAPI:
    """Create the reference server. `api_key`, when set, is enforced."""

    app = FastAPI(
        title="Entity RPC Reference Server",
        description="In-memory server for the batched entity protocol",
        version="0.1.0",
    )

    es = store or EntityStore()
    info = dict(DEFAULT_SERVER_INFORMATION)
    info.update(server_information or {})
    reg = registry or default_registry()
    executor = BatchExecutor(es, info)

    app.state.store = es
    app.state.executor = executor
    app.state.registry = reg

    def _authenticate(request: Request) -> None:
        if api_key is None:
            return
        if request.headers.get("ftrack-api-key") != api_key:
            raise BatchFailure(
                "FTAuthenticationError",
                "The supplied API key is not valid.",
                error_code=401,
            )

    def _parse_batch(body: bytes) -> List[Operation]:
        try:
            payload = json.loads(body)
        except ValueError:
            raise BatchFailure("ValidationError", "Request body is not valid JSON.")
        if not isinstance(payload, list):
            raise BatchFailure("ValidationError", "Request body must be a JSON array.")
        try:
            return [reg.parse_operation(item) for item in payload]
        except DecodeError as e:
            raise BatchFailure("ValidationError", e.message)

    # === BATCH ENDPOINT ===

    @app.post("/api")
    async def call(request: Request):
        """Execute a batch of operations."""
        body = await request.body()
        try:
            _authenticate(request)
            operations = _parse_batch(body)
            results = [executor.execute(op) for op in operations]
        except BatchFailure as failure:
            logger.info("Batch failed: %s %s", failure.exception, failure.content)
            return failure.to_response()
        return JSONResponse(content=results)

    # === INSPECTION ===

    @app.get("/health")
    def health():
        return {"status": "ok", "version": info.get("version")}

    return app
