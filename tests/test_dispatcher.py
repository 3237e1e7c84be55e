"""Tests for the Batch Call Dispatcher."""

from datetime import datetime, timezone

import httpx
import pytest

from entity_rpc.dispatch.dispatcher import BatchDispatcher
from entity_rpc.errors import (
    DecodeError,
    EncodeError,
    MalformedResponseError,
    ServerPermissionDeniedError,
    ServerValidationError,
)
from entity_rpc.identity.merger import IdentityMap
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


def _task(task_id, **fields) -> dict:
    return {"__entity_type__": "Task", "id": task_id, **fields}


class TestOrdering:
    def test_mixed_batch_results_in_order(self, scripted, schema_index):
        transport = scripted([
            {"action": "query", "data": [_task("1", name="a")], "metadata": {}},
            {"is_timezone_support_enabled": True},
            {"action": "delete", "data": True},
            [{"id": "Task", "primary_key": ["id"]}],
            {"url": "https://upload.test/x", "headers": {"A": "b"}},
            {"action": "create", "data": _task("2"), "metadata": {}},
            {"action": "update", "data": _task("2", name="b"), "metadata": {}},
        ])
        dispatcher = BatchDispatcher(transport, schema_index)
        results = dispatcher.call(
            QueryOperation(expression="Task"),
            QueryServerInformationOperation(),
            DeleteOperation(entity_type="Task", entity_key=["9"]),
            QuerySchemasOperation(),
            GetUploadMetadataOperation(
                file_name="a.mov",
                file_size=1,
                component_id="12345678-1234-5678-1234-567812345678",
            ),
            CreateOperation(entity_type="Task"),
            UpdateOperation(entity_type="Task", entity_key=["2"], entity_data={"name": "b"}),
        )
        assert [type(r) for r in results] == [
            QueryResult,
            QueryServerInformationResult,
            DeleteResult,
            QuerySchemasResult,
            GetUploadMetadataResult,
            CreateResult,
            UpdateResult,
        ]
        assert [p["action"] for p in transport.payloads[0]] == [
            "query",
            "query_server_information",
            "delete",
            "query_schemas",
            "get_upload_metadata",
            "create",
            "update",
        ]

    def test_single_operation(self, scripted, schema_index):
        transport = scripted([{"action": "delete", "data": True}])
        (result,) = BatchDispatcher(transport, schema_index).call(
            DeleteOperation(entity_type="Task", entity_key=["1"])
        )
        assert result.data is True

    def test_empty_call_rejected(self, scripted, schema_index):
        with pytest.raises(ValueError):
            BatchDispatcher(scripted(), schema_index).call()


class TestBatchSize:
    @pytest.mark.parametrize("elements", [
        [],
        [{"action": "delete", "data": True}],
        [{"action": "delete", "data": True}] * 3,
    ])
    def test_size_mismatch_raises(self, scripted, schema_index, elements):
        transport = scripted(elements)
        with pytest.raises(DecodeError):
            BatchDispatcher(transport, schema_index).call(
                DeleteOperation(entity_type="Task", entity_key=["1"]),
                DeleteOperation(entity_type="Task", entity_key=["2"]),
            )


class TestIdentityMapThreading:
    def test_entities_shared_across_batch(self, scripted, schema_index):
        transport = scripted([
            {"action": "query", "data": [_task("1", name="a")], "metadata": {}},
            {"action": "update", "data": _task("1", status="done"), "metadata": {}},
        ])
        query, update = BatchDispatcher(transport, schema_index).call(
            QueryOperation(expression="select name from Task"),
            UpdateOperation(entity_type="Task", entity_key=["1"], entity_data={"status": "done"}),
        )
        assert query.data[0] is update.data
        assert update.data["name"] == "a"
        assert update.data["status"] == "done"

    def test_calls_isolated_by_default(self, scripted, schema_index):
        transport = scripted(
            [{"action": "query", "data": [_task("1", name="a")], "metadata": {}}],
            [{"action": "query", "data": [_task("1", status="x")], "metadata": {}}],
        )
        dispatcher = BatchDispatcher(transport, schema_index)
        (first,) = dispatcher.call(QueryOperation(expression="Task"))
        (second,) = dispatcher.call(QueryOperation(expression="Task"))
        assert first.data[0] is not second.data[0]
        assert "status" not in first.data[0]

    def test_caller_map_shares_across_calls(self, scripted, schema_index):
        transport = scripted(
            [{"action": "query", "data": [_task("1", name="a")], "metadata": {}}],
            [{"action": "query", "data": [_task("1", status="x")], "metadata": {}}],
        )
        dispatcher = BatchDispatcher(transport, schema_index)
        identity_map = IdentityMap()
        (first,) = dispatcher.call(QueryOperation(expression="Task"), identity_map=identity_map)
        (second,) = dispatcher.call(QueryOperation(expression="Task"), identity_map=identity_map)
        assert first.data[0] is second.data[0]
        assert first.data[0] == _task("1", name="a", status="x")

    def test_dates_decoded_in_results(self, scripted, schema_index):
        transport = scripted([{
            "action": "create",
            "data": _task("1", start_date={"__type__": "datetime", "value": "2024-04-01T09:00:00"}),
            "metadata": {},
        }])
        (result,) = BatchDispatcher(transport, schema_index).call(
            CreateOperation(entity_type="Task")
        )
        assert result.data["start_date"] == datetime(2024, 4, 1, 9, tzinfo=timezone.utc)


class TestFailures:
    def test_encode_error_sends_nothing(self, scripted, schema_index):
        transport = scripted()
        with pytest.raises(EncodeError):
            BatchDispatcher(transport, schema_index).call(
                CreateOperation(entity_type="Task", entity_data={"x": object()})
            )
        assert transport.payloads == []

    def test_unregistered_action_is_encode_error(self, scripted, schema_index):
        class ArchiveOperation(Operation):
            action: str = "archive"

        transport = scripted()
        with pytest.raises(EncodeError):
            BatchDispatcher(transport, schema_index).call(ArchiveOperation())
        assert transport.payloads == []

    def test_transport_error_propagates(self, scripted, schema_index):
        error = httpx.ConnectError("refused")
        transport = scripted(error)
        with pytest.raises(httpx.ConnectError) as exc_info:
            BatchDispatcher(transport, schema_index).call(QueryOperation(expression="Task"))
        assert exc_info.value is error

    def test_server_validation_error(self, scripted, schema_index):
        transport = scripted({"content": "bad", "exception": "ValidationError", "error_code": 400})
        with pytest.raises(ServerValidationError):
            BatchDispatcher(transport, schema_index).call(QueryOperation(expression="Task"))

    def test_server_permission_error(self, scripted, schema_index):
        transport = scripted({"content": "no", "exception": "FTAuthenticationError"})
        with pytest.raises(ServerPermissionDeniedError):
            BatchDispatcher(transport, schema_index).call(QueryOperation(expression="Task"))

    def test_malformed_response(self, scripted, schema_index):
        transport = scripted(b"<html>502</html>")
        with pytest.raises(MalformedResponseError) as exc_info:
            BatchDispatcher(transport, schema_index).call(QueryOperation(expression="Task"))
        assert exc_info.value.content == b"<html>502</html>"

    def test_element_shape_mismatch_fails_whole_call(self, scripted, schema_index):
        transport = scripted([
            {"action": "delete", "data": True},
            {"action": "query", "data": "not a list"},
        ])
        with pytest.raises(DecodeError):
            BatchDispatcher(transport, schema_index).call(
                DeleteOperation(entity_type="Task", entity_key=["1"]),
                QueryOperation(expression="Task"),
            )

    def test_failed_call_leaves_caller_map_untouched(self, scripted, schema_index):
        transport = scripted(
            [{"action": "query", "data": [_task("1", name="A")], "metadata": {}}],
            [
                {"action": "query", "data": [_task("1", name="B"), _task("2")], "metadata": {}},
                {"action": "query", "data": [
                    _task("3", start_date={"__type__": "datetime", "value": "bad"}),
                ], "metadata": {}},
            ],
        )
        dispatcher = BatchDispatcher(transport, schema_index)
        identity_map = IdentityMap()
        (first,) = dispatcher.call(QueryOperation(expression="Task"), identity_map=identity_map)

        with pytest.raises(DecodeError):
            dispatcher.call(
                QueryOperation(expression="Task"),
                QueryOperation(expression="Task"),
                identity_map=identity_map,
            )

        assert first.data[0] == _task("1", name="A")
        assert identity_map.keys() == ["Task,1"]

    def test_invalid_later_element_leaves_caller_map_untouched(self, scripted, schema_index):
        transport = scripted([
            {"action": "update", "data": _task("1", name="B"), "metadata": {}},
            {"action": "delete", "data": [1, 2]},
        ])
        identity_map = IdentityMap()
        canonical = identity_map.claim("Task,1", _task("1", name="A"))

        with pytest.raises(DecodeError):
            BatchDispatcher(transport, schema_index).call(
                UpdateOperation(entity_type="Task", entity_key=["1"], entity_data={"name": "B"}),
                DeleteOperation(entity_type="Task", entity_key=["1"]),
                identity_map=identity_map,
            )

        assert canonical["name"] == "A"
