"""ChangeEmitter unit tests with a mocked manager and publisher."""

import logging
from unittest.mock import AsyncMock

import pytest

from reelsync.application.emitter import ChangeEmitter
from reelsync.domain.events import ChangeEvent, ChangeKind


@pytest.fixture
def manager() -> AsyncMock:
    mock = AsyncMock()
    mock.broadcast = AsyncMock(return_value=2)
    return mock


async def test_publish_broadcasts_wire_frame(manager: AsyncMock) -> None:
    emitter = ChangeEmitter(manager)

    await emitter.publish(ChangeKind.COMMENT_CREATED, {"id": "c1", "projectId": "p1"})

    manager.broadcast.assert_awaited_once_with(
        {"event": "comment:created", "data": {"id": "c1", "projectId": "p1"}}
    )


async def test_publish_accepts_wire_name(manager: AsyncMock) -> None:
    await ChangeEmitter(manager).publish("note:deleted", {"id": "n1"})
    manager.broadcast.assert_awaited_once_with({"event": "note:deleted", "data": {"id": "n1"}})


async def test_publish_goes_through_redis_when_available(manager: AsyncMock) -> None:
    publisher = AsyncMock()
    publisher.publish = AsyncMock(return_value=True)
    emitter = ChangeEmitter(manager, publisher=publisher)

    await emitter.publish(ChangeKind.PROJECT_UPDATED, {"id": "p1"})

    event = publisher.publish.await_args.args[0]
    assert isinstance(event, ChangeEvent)
    assert event.kind is ChangeKind.PROJECT_UPDATED
    manager.broadcast.assert_not_awaited()


async def test_publish_falls_back_to_local_broadcast(manager: AsyncMock) -> None:
    publisher = AsyncMock()
    publisher.publish = AsyncMock(return_value=False)

    await ChangeEmitter(manager, publisher=publisher).publish(ChangeKind.PROJECT_UPDATED, {"id": "p1"})

    manager.broadcast.assert_awaited_once()


async def test_delivery_failure_is_logged_not_raised(manager: AsyncMock, caplog: pytest.LogCaptureFixture) -> None:
    manager.broadcast.side_effect = RuntimeError("socket layer down")

    with caplog.at_level(logging.ERROR, logger="reelsync.application.emitter"):
        await ChangeEmitter(manager).publish(ChangeKind.NOTE_CREATED, {"id": "n1"})

    assert "Failed to emit note:created" in caplog.text


@pytest.mark.parametrize(
    ("kind", "payload"),
    [
        ("project:archived", {"id": "p1"}),
        ("comment:created", {"id": "c1"}),
        ("note:updated", {}),
    ],
)
async def test_malformed_event_is_dropped_and_logged(
    manager: AsyncMock, kind: str, payload: dict, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.WARNING, logger="reelsync.application.emitter"):
        await ChangeEmitter(manager).publish(kind, payload)

    manager.broadcast.assert_not_awaited()
    assert "Dropping change event" in caplog.text


async def test_emits_publishes_after_mutation_returns(manager: AsyncMock) -> None:
    emitter = ChangeEmitter(manager)

    @emitter.emits(ChangeKind.PROJECT_UPDATED, lambda project: {"id": project["id"], "project": project})
    async def update_project(project_id: str, status: str) -> dict:
        return {"id": project_id, "status": status}

    result = await update_project("p1", "Aprovado")

    assert result == {"id": "p1", "status": "Aprovado"}
    frame = manager.broadcast.await_args.args[0]
    assert frame["event"] == "project:updated"
    assert frame["data"]["project"]["status"] == "Aprovado"


async def test_emits_publishes_nothing_when_mutation_fails(manager: AsyncMock) -> None:
    emitter = ChangeEmitter(manager)

    @emitter.emits(ChangeKind.PROJECT_DELETED, lambda result: {"id": result})
    async def delete_project(project_id: str) -> str:
        raise PermissionError("not allowed")

    with pytest.raises(PermissionError):
        await delete_project("p1")
    manager.broadcast.assert_not_awaited()


async def test_emits_returns_committed_result_when_payload_is_malformed(
    manager: AsyncMock, caplog: pytest.LogCaptureFixture
) -> None:
    emitter = ChangeEmitter(manager)
    committed: list[bool] = []

    @emitter.emits("comment:created", lambda comment: {"id": comment["id"]})
    async def create_comment(body: str) -> dict:
        committed.append(True)
        return {"id": "c1", "body": body}

    with caplog.at_level(logging.WARNING, logger="reelsync.application.emitter"):
        result = await create_comment("looks good")

    assert result == {"id": "c1", "body": "looks good"}
    assert committed == [True]
    manager.broadcast.assert_not_awaited()
    assert "missing field 'projectId'" in caplog.text


async def test_emits_returns_result_when_payload_builder_fails(manager: AsyncMock) -> None:
    emitter = ChangeEmitter(manager)

    @emitter.emits(ChangeKind.NOTE_CREATED, lambda note: {"id": note["missing"]})
    async def create_note() -> dict:
        return {"id": "n1"}

    assert await create_note() == {"id": "n1"}
    manager.broadcast.assert_not_awaited()
