"""
Relay Connection Manager — owns the websocket to the relay server.

Connects, registers, tells the sender we are ready, routes inbound frames,
and reconnects a bounded number of times after unexpected closes.
"""

import asyncio
import contextlib
import logging

from config import MAX_RECONNECT_ATTEMPTS, RECONNECT_DELAY, RELAY_URL
from relay.protocol import (
    FrameKind,
    InboundFrame,
    ReceiveReadyMessage,
    RegisterMessage,
    generate_connection_id,
    parse_control_message,
)
from relay.transport import RelayTransport
from transfer.models import ConnectionState

logger = logging.getLogger(__name__)


class RelayConnectionManager:
    """Single persistent connection to the relay with bounded reconnection."""

    def __init__(
        self,
        url: str = RELAY_URL,
        *,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
        reconnect_delay: float = RECONNECT_DELAY,
        transport_factory=None,
    ) -> None:
        self._url = url
        self._max_attempts = max_attempts
        self._reconnect_delay = reconnect_delay
        self._open_transport = transport_factory or RelayTransport.open

        self._state = ConnectionState.IDLE
        self._identifier: str | None = None
        self._connection_id: str | None = None
        self._reconnect_attempts = 0
        self._retries_exhausted = False

        self._transport = None
        self._run_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        # Bumped on every connect/disconnect so stale tasks can tell they're stale
        self._generation = 0
        self._closing = False

        # async callbacks
        self._control_callbacks: list = []  # fn(message)
        self._chunk_callbacks: list = []  # fn(data: bytes)
        self._reset_callbacks: list = []  # fn()
        self._state_callbacks: list = []  # fn(state)

    # --- Observable state ---

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def identifier(self) -> str | None:
        return self._identifier

    @property
    def connection_id(self) -> str | None:
        return self._connection_id

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def retries_exhausted(self) -> bool:
        return self._retries_exhausted

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # --- Callback registration ---

    def on_control(self, callback) -> None:
        """Register callback: async fn(message) for parsed control messages."""
        self._control_callbacks.append(callback)

    def on_chunk(self, callback) -> None:
        """Register callback: async fn(data: bytes) for non-empty chunks."""
        self._chunk_callbacks.append(callback)

    def on_reset(self, callback) -> None:
        """Register callback: async fn() fired when a fresh attempt starts."""
        self._reset_callbacks.append(callback)

    def on_state_change(self, callback) -> None:
        """Register callback: async fn(state: ConnectionState)."""
        self._state_callbacks.append(callback)

    async def _notify(self, callbacks: list, *args) -> None:
        for cb in callbacks:
            try:
                await cb(*args)
            except Exception as e:
                logger.error(f"Connection callback error: {e}", exc_info=True)

    async def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        await self._notify(self._state_callbacks, state)

    # --- Lifecycle ---

    async def connect(self, identifier: str | None) -> None:
        """Open a fresh connection for `identifier`. No-op if it's empty."""
        if not identifier:
            return

        self._closing = False
        self._retries_exhausted = False
        self._cancel_reconnect()
        self._generation += 1
        generation = self._generation
        await self._stop_run()

        self._identifier = identifier
        self._connection_id = None
        await self._set_state(ConnectionState.CONNECTING)
        await self._notify(self._reset_callbacks)

        if generation != self._generation:
            # A newer connect or disconnect ran while the callbacks were awaited
            return
        self._run_task = asyncio.create_task(self._run(generation, identifier))

    async def disconnect(self) -> None:
        """Close the connection on purpose. Never schedules a reconnect."""
        self._closing = True
        self._generation += 1
        self._cancel_reconnect()

        transport, self._transport = self._transport, None
        if transport is not None:
            try:
                await transport.close()
            except Exception as e:
                logger.warning(f"Error closing relay connection: {e}")

        await self._stop_run()
        if self._state != ConnectionState.IDLE:
            await self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Disconnected from relay")

    async def _stop_run(self) -> None:
        task, self._run_task = self._run_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _run(self, generation: int, identifier: str) -> None:
        """Connection task: open, register, pump frames, then handle the close."""
        try:
            transport = await self._open_transport(self._url)
        except Exception as e:
            logger.warning(f"Could not connect to relay at {self._url}: {e}")
        else:
            if generation != self._generation:
                await transport.close()
                return
            self._transport = transport
            try:
                await self._on_open(transport, identifier)
                async for frame in transport.frames():
                    await self._dispatch(frame)
            except Exception as e:
                logger.error(f"Relay connection error: {e}")
            finally:
                if self._transport is transport:
                    self._transport = None
                await transport.close()

        if generation == self._generation and not self._closing:
            await self._handle_close(identifier)

    async def _on_open(self, transport, identifier: str) -> None:
        connection_id = generate_connection_id()
        self._connection_id = connection_id

        await transport.send_json(
            RegisterMessage(connectionId=connection_id).model_dump()
        )
        await transport.send_json(
            ReceiveReadyMessage(target_id=identifier, senderId=connection_id).model_dump()
        )

        self._reconnect_attempts = 0
        await self._set_state(ConnectionState.CONNECTED)
        logger.info(f"Registered as {connection_id}, waiting for sender {identifier}")

    async def _dispatch(self, frame: InboundFrame) -> None:
        """Single entry point for every inbound frame."""
        if frame.kind is FrameKind.TEXT:
            message = parse_control_message(frame.text)
            if message is not None:
                await self._notify(self._control_callbacks, message)
            return

        # Awaited here so the next frame isn't pulled until this one is in
        # hand; blob reads therefore complete in arrival order.
        data = await frame.materialize()
        if not data:
            return
        await self._notify(self._chunk_callbacks, data)

    async def _handle_close(self, identifier: str) -> None:
        await self._set_state(ConnectionState.DISCONNECTED)

        if self._reconnect_attempts < self._max_attempts:
            self._reconnect_attempts += 1
            logger.info(
                f"Relay connection lost, reconnecting in {self._reconnect_delay}s "
                f"(attempt {self._reconnect_attempts}/{self._max_attempts})"
            )
            self._reconnect_task = asyncio.create_task(
                self._reconnect_later(self._generation, identifier)
            )
        else:
            self._retries_exhausted = True
            logger.warning(
                f"Relay connection lost, giving up after {self._max_attempts} attempts"
            )
            await self._notify(self._state_callbacks, self._state)

    async def _reconnect_later(self, generation: int, identifier: str) -> None:
        await asyncio.sleep(self._reconnect_delay)
        if self._closing or generation != self._generation:
            return
        self._reconnect_task = None
        await self.connect(identifier)
