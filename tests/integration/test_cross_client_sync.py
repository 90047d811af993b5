"""Two clients, one server: changes made by one show up in the other.

The CRUD layer is a small FastAPI app served through httpx.ASGITransport.
Its PATCH handler publishes through a ChangeEmitter whose manager is the
in-memory hub both clients are connected to.
"""

import copy
from collections.abc import AsyncIterator

import pytest
from fastapi import FastAPI, HTTPException
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel

from reelsync.application.emitter import ChangeEmitter
from reelsync.client.context import AuthSession, SyncContext
from reelsync.domain.enums import ConnectionStatus, EntryState
from reelsync.domain.events import ChangeKind

PROJECTS = ("/api/projects",)


class StatusChange(BaseModel):
    status: str


def build_crud_app(emitter: ChangeEmitter, store: dict[str, dict]) -> FastAPI:
    crud = FastAPI()

    @crud.get("/api/projects")
    async def list_projects() -> list[dict]:
        return [copy.deepcopy(p) for p in store.values()]

    @crud.get("/api/projects/{project_id}")
    async def get_project(project_id: str) -> dict:
        if project_id not in store:
            raise HTTPException(status_code=404, detail="Project not found")
        return copy.deepcopy(store[project_id])

    @crud.patch("/api/projects/{project_id}")
    async def update_project(project_id: str, body: StatusChange) -> dict:
        if body.status == "Aprovado":
            raise HTTPException(status_code=403, detail="Only the client can approve")
        store[project_id]["status"] = body.status
        project = copy.deepcopy(store[project_id])
        await emitter.publish(ChangeKind.PROJECT_UPDATED, {"id": project_id, "project": project})
        return project

    return crud


@pytest.fixture
def store() -> dict[str, dict]:
    return {
        "p1": {"id": "p1", "title": "Spot verão", "status": "Roteiro"},
        "p2": {"id": "p2", "title": "Institucional", "status": "Captação"},
    }


@pytest.fixture
async def clients(fast_settings, hub, store) -> AsyncIterator[tuple[SyncContext, SyncContext]]:
    crud = build_crud_app(ChangeEmitter(manager=hub), store)
    async with AsyncClient(transport=ASGITransport(app=crud), base_url="http://crud") as http_client:
        alice = SyncContext(fast_settings, http_client=http_client, connector=hub)
        bob = SyncContext(fast_settings, http_client=http_client, connector=hub)
        await alice.activate(AuthSession(user_id="alice", token="tok-alice"))
        await alice.transport.wait_for_status(ConnectionStatus.CONNECTED, timeout=1.0)
        await bob.activate(AuthSession(user_id="bob", token="tok-bob"))
        await bob.transport.wait_for_status(ConnectionStatus.CONNECTED, timeout=1.0)
        try:
            yield alice, bob
        finally:
            await alice.deactivate()
            await bob.deactivate()


def status_of(context: SyncContext, project_id: str) -> str | None:
    result = context.query(PROJECTS)
    if result is None or not result.has_value:
        return None
    return next(p["status"] for p in result.value if p["id"] == project_id)


async def watch_projects(*contexts: SyncContext) -> None:
    for context in contexts:
        context.cache.subscribe(PROJECTS, lambda result: None)
        await context.cache.settle()


async def test_change_by_one_client_reaches_the_other(clients, wait_until) -> None:
    alice, bob = clients
    await watch_projects(alice, bob)
    assert status_of(bob, "p1") == "Roteiro"

    result = await alice.mutator.update_project_status("p1", "Edição")

    assert result.ok
    assert status_of(alice, "p1") == "Edição"
    await wait_until(lambda: status_of(bob, "p1") == "Edição")
    await bob.cache.settle()
    assert bob.query(PROJECTS).state is EntryState.FRESH
    assert status_of(bob, "p2") == "Captação"


async def test_rejected_mutation_rolls_back_and_publishes_nothing(clients, hub, store) -> None:
    alice, bob = clients
    await watch_projects(alice, bob)
    before = alice.cache.peek(PROJECTS)

    result = await alice.mutator.update_project_status("p1", "Aprovado")

    assert not result.ok
    assert result.error.status_code == 403
    assert "Only the client can approve" in result.error.message
    assert alice.cache.peek(PROJECTS) is before
    assert status_of(bob, "p1") == "Roteiro"
    assert store["p1"]["status"] == "Roteiro"
    assert bob.router.processed == 0


async def test_change_missed_while_disconnected_is_reconciled(clients, hub, store, wait_until) -> None:
    alice, bob = clients
    await watch_projects(alice, bob)
    bob_connection = hub.connections[1]

    hub.refuse = True
    bob_connection.drop()
    await wait_until(lambda: bob.status is ConnectionStatus.RECONNECTING)

    result = await alice.mutator.update_project_status("p1", "Entrega")
    assert result.ok
    await alice.cache.settle()
    assert status_of(alice, "p1") == "Entrega"
    assert status_of(bob, "p1") == "Roteiro"

    hub.refuse = False
    await bob.transport.wait_for_status(ConnectionStatus.CONNECTED, timeout=2.0)
    await wait_until(lambda: status_of(bob, "p1") == "Entrega")
    assert bob.reconciler.runs == 1
