"""
End-to-end scenario: one client session working a small task graph
against the reference server, every call going over the wire.
"""

from datetime import datetime, timezone

from entity_rpc.identity.merger import IdentityMap
from entity_rpc.models.operations import (
    CreateOperation,
    DeleteOperation,
    QueryOperation,
    UpdateOperation,
)
from entity_rpc.models.results import CreateResult, DeleteResult, UpdateResult


def test_create_update_delete_in_one_batch(session, app):
    create, update, delete = session.call(
        CreateOperation(entity_type="Task", entity_data={"id": "t1", "name": "X"}),
        UpdateOperation(entity_type="Task", entity_key=["t1"], entity_data={"name": "Y"}),
        DeleteOperation(entity_type="Task", entity_key=["t1"]),
    )

    assert isinstance(create, CreateResult)
    assert isinstance(update, UpdateResult)
    assert isinstance(delete, DeleteResult)
    assert delete.data is True
    # Both results describe the same entity, merged to its latest state.
    assert create.data is update.data
    assert update.data["name"] == "Y"
    assert app.state.store.count("Task") == 0


def test_task_graph_walkthrough(session):
    start = datetime(2024, 4, 1, 9, tzinfo=timezone.utc)
    session.call(
        CreateOperation(entity_type="Status", entity_data={"id": "wip", "name": "In Progress"}),
        CreateOperation(entity_type="Task", entity_data={"id": "seq", "name": "Sequence 010"}),
        CreateOperation(entity_type="Task", entity_data={
            "id": "shot",
            "name": "Shot 010",
            "parent_id": "seq",
            "status_id": "wip",
            "start_date": start,
        }),
    )

    identity_map = IdentityMap()
    (children,) = session.call(
        QueryOperation(expression='select name, parent.name, status.name from Task where parent.id is "seq"'),
        identity_map=identity_map,
    )
    (shot,) = children.data
    assert shot["parent"]["name"] == "Sequence 010"
    assert shot["status"]["name"] == "In Progress"
    assert "start_date" not in shot

    session.ensure_populated(shot, ["start_date"])
    assert shot["start_date"] == start

    # A later query in the same map completes the parent already held by the shot.
    (parents,) = session.call(
        QueryOperation(expression='select parent_id from Task where id is "seq"'),
        identity_map=identity_map,
    )
    assert parents.data[0] is shot["parent"]
    assert shot["parent"]["parent_id"] is None
    assert shot["parent"]["name"] == "Sequence 010"
