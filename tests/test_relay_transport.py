"""Tests against a real aiohttp websocket standing in for the relay."""

from __future__ import annotations

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer as RelayTestServer

from fakes import wait_until
from relay.connection import RelayConnectionManager
from relay.protocol import FrameKind
from relay.transport import RelayTransport
from transfer.manager import TransferManager
from transfer.models import TransferState
from transfer.session import TransferSession

RECEIVED = web.AppKey("received", list)


async def relay_handler(request: web.Request) -> web.WebSocketResponse:
    """Plays the sender's side of a tiny transfer once the receiver is ready."""
    ws = web.WebSocketResponse()
    await ws.prepare(request)

    received = request.app[RECEIVED]
    received.append(await ws.receive_json())  # register
    received.append(await ws.receive_json())  # receive_ready

    await ws.send_json({"type": "file_info", "name": "hello.txt", "size": 11})
    await ws.send_bytes(b"hello ")
    await ws.send_bytes(b"")
    await ws.send_bytes(b"world")
    await ws.send_json({"type": "file_end", "totalBytes": 11})
    await ws.close()
    return ws


@pytest.fixture
async def relay_server():
    app = web.Application()
    app[RECEIVED] = []
    app.router.add_get("/ws", relay_handler)
    server = RelayTestServer(app)
    await server.start_server()
    yield server
    await server.close()


@pytest.mark.asyncio
async def test_transport_yields_text_and_binary_frames(relay_server):
    transport = await RelayTransport.open(str(relay_server.make_url("/ws")))
    await transport.send_json({"type": "register", "connectionId": "abc"})
    await transport.send_json({"target_id": "s1", "type": "receive_ready", "senderId": "abc"})

    frames = [frame async for frame in transport.frames()]
    await transport.close()

    assert [f.kind for f in frames] == [
        FrameKind.TEXT,
        FrameKind.BINARY,
        FrameKind.BINARY,
        FrameKind.BINARY,
        FrameKind.TEXT,
    ]
    assert frames[1].data == b"hello "
    assert frames[2].data == b""
    assert transport.closed
    assert relay_server.app[RECEIVED][0] == {"type": "register", "connectionId": "abc"}


@pytest.mark.asyncio
async def test_receiver_downloads_file_from_relay(relay_server):
    connection = RelayConnectionManager(
        str(relay_server.make_url("/ws")), reconnect_delay=30
    )
    manager = TransferManager(connection=connection, session=TransferSession(settle_delay=0.01))

    await manager.connect("sender-xyz")
    await wait_until(lambda: manager.artifact is not None)

    assert manager.session.state == TransferState.COMPLETE
    assert manager.artifact.data == b"hello world"
    assert manager.artifact.metadata.name == "hello.txt"

    register, ready = relay_server.app[RECEIVED]
    assert register["type"] == "register"
    assert ready == {
        "target_id": "sender-xyz",
        "type": "receive_ready",
        "senderId": register["connectionId"],
    }

    await manager.close()
    assert not connection.reconnect_pending


@pytest.mark.asyncio
async def test_transport_accepts_frames_larger_than_aiohttp_default():
    payload = b"\x07" * (5 * 1024 * 1024)

    async def big_chunk_handler(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        await ws.send_bytes(payload)
        await ws.close()
        return ws

    app = web.Application()
    app.router.add_get("/ws", big_chunk_handler)
    server = RelayTestServer(app)
    await server.start_server()
    try:
        transport = await RelayTransport.open(str(server.make_url("/ws")))
        frames = [frame async for frame in transport.frames()]
        await transport.close()
    finally:
        await server.close()

    assert [f.kind for f in frames] == [FrameKind.BINARY]
    assert frames[0].data == payload
