"""WebSocket handler pushing receiver events to the frontend."""

import asyncio
import json
import logging

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks frontend WebSocket clients and broadcasts receiver events."""

    def __init__(self) -> None:
        self._connections: list[WebSocket] = []
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, snapshot: dict | None = None) -> None:
        """Accept a client and, if given, send it the current receiver state."""
        await websocket.accept()
        if snapshot is not None:
            await websocket.send_text(json.dumps({"event": "receiver_state", "data": snapshot}))
        async with self._lock:
            self._connections.append(websocket)
        logger.info(f"Frontend client connected. Total: {len(self._connections)}")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self._connections:
                self._connections.remove(websocket)
        logger.info(f"Frontend client disconnected. Total: {len(self._connections)}")

    async def broadcast(self, event: str, data: dict) -> None:
        """Send an event to every connected client, dropping dead ones."""
        message = json.dumps({"event": event, "data": data})
        async with self._lock:
            dead: list[WebSocket] = []
            for ws in self._connections:
                try:
                    await ws.send_text(message)
                except Exception as e:
                    logger.debug(f"Dropping frontend client: {e}")
                    dead.append(ws)
            for ws in dead:
                self._connections.remove(ws)

    async def handle_event(self, event_type: str, data: dict) -> None:
        """Event handler compatible with TransferManager.on_event()."""
        await self.broadcast(event_type, data)
