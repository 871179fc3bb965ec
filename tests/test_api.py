"""Tests for the REST surface the frontend uses."""

from __future__ import annotations

import asyncio

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.routes import init_routes, router
from fakes import FakeRelay
from relay.connection import RelayConnectionManager
from transfer.manager import TransferManager


@pytest.fixture
def manager(tmp_path):
    connection = RelayConnectionManager(
        "ws://relay.test:8000/ws", transport_factory=FakeRelay().open
    )
    m = TransferManager(connection=connection)
    m.save_dir = str(tmp_path / "downloads")
    return m


@pytest.fixture
def client(manager):
    app = FastAPI()
    init_routes(manager)
    app.include_router(router)
    return TestClient(app)


def complete_transfer(manager: TransferManager, name: str, data: bytes) -> None:
    async def run():
        await manager.session.on_file_info(name, len(data))
        await manager.session.on_chunk(data)

    asyncio.run(run())
    manager.session.finalize()


def test_status_before_connecting(client):
    response = client.get("/api/receive/status")
    assert response.status_code == 200
    body = response.json()
    assert body["connection_state"] == "idle"
    assert body["transfer_state"] == "empty"
    assert body["progress_percent"] == 0
    assert body["error_message"] is None
    assert body["artifact_ready"] is False


def test_connect_requires_transfer_id(client):
    response = client.post("/api/receive/connect", json={"transfer_id": "   "})
    assert response.status_code == 400


def test_download_before_completion_is_404(client):
    assert client.get("/api/receive/download").status_code == 404


def test_save_before_completion_is_404(client):
    assert client.post("/api/receive/save").status_code == 404


def test_download_completed_file(client, manager):
    complete_transfer(manager, "report final.pdf", b"%PDF-1.7 body")

    response = client.get("/api/receive/download")

    assert response.status_code == 200
    assert response.content == b"%PDF-1.7 body"
    assert response.headers["content-type"] == "application/octet-stream"
    assert response.headers["content-disposition"] == (
        "attachment; filename*=UTF-8''report%20final.pdf"
    )
    status = client.get("/api/receive/status").json()
    assert status["transfer_state"] == "complete"
    assert status["progress_percent"] == 100
    assert status["file_metadata"] == {"name": "report final.pdf", "size": 13}


def test_save_completed_file(client, manager, tmp_path):
    complete_transfer(manager, "notes.txt", b"hello")

    response = client.post("/api/receive/save")

    assert response.status_code == 200
    path = response.json()["path"]
    assert path == str(tmp_path / "downloads" / "notes.txt")
    with open(path, "rb") as f:
        assert f.read() == b"hello"


def test_settings_round_trip(client, tmp_path):
    new_dir = tmp_path / "elsewhere"
    response = client.put("/api/settings", json={"save_dir": str(new_dir)})
    assert response.status_code == 200
    assert new_dir.is_dir()
    assert client.get("/api/settings").json() == {"save_dir": str(new_dir)}
