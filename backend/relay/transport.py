"""aiohttp websocket client for the relay server."""

import json
import logging
from typing import AsyncIterator

import aiohttp

from relay.protocol import InboundFrame

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10.0  # seconds
MAX_MESSAGE_SIZE = 0  # no cap on a single chunk frame


class RelayTransport:
    """One open websocket to the relay."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        websocket: aiohttp.ClientWebSocketResponse,
    ) -> None:
        self._session = session
        self._websocket = websocket

    @classmethod
    async def open(cls, url: str) -> "RelayTransport":
        """Connect to `url`. Raises if the relay can't be reached."""
        session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=None, connect=CONNECT_TIMEOUT),
        )
        try:
            websocket = await session.ws_connect(url, max_msg_size=MAX_MESSAGE_SIZE)
        except BaseException:
            await session.close()
            raise
        logger.info(f"Connected to relay at {url}")
        return cls(session, websocket)

    @property
    def closed(self) -> bool:
        return self._websocket.closed

    async def send_json(self, payload: dict) -> None:
        await self._websocket.send_str(json.dumps(payload))

    async def frames(self) -> AsyncIterator[InboundFrame]:
        """Yield inbound frames until the websocket closes."""
        async for msg in self._websocket:
            if msg.type == aiohttp.WSMsgType.TEXT:
                yield InboundFrame.text_frame(msg.data)
            elif msg.type == aiohttp.WSMsgType.BINARY:
                yield InboundFrame.binary_frame(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                # The close that follows decides what happens next.
                logger.error(f"WebSocket error: {self._websocket.exception()}")

        logger.info(f"Relay websocket closed (code={self._websocket.close_code})")

    async def close(self) -> None:
        try:
            if not self._websocket.closed:
                await self._websocket.close()
        finally:
            await self._session.close()
