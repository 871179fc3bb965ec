"""
Transfer Manager — orchestrates one relayed receive.

Owns the relay connection and the transfer session, routes control
messages and chunks between them, and coordinates both with the
WebSocket event system.
"""

import asyncio
import logging
import os

from config import DEFAULT_SAVE_DIR
from relay.connection import RelayConnectionManager
from relay.protocol import FileEndMessage, FileInfoMessage
from transfer.models import ConnectionState, ReceiverStatus, TransferState
from transfer.session import TransferSession

logger = logging.getLogger(__name__)

RETRIES_EXHAUSTED_MESSAGE = "Connection lost - retries exhausted"


class TransferManager:
    """Connects to the relay on behalf of the frontend and tracks the incoming file."""

    def __init__(
        self,
        connection: RelayConnectionManager | None = None,
        session: TransferSession | None = None,
    ) -> None:
        self._connection = connection or RelayConnectionManager()
        self._session = session or TransferSession()
        self._event_callbacks: list = []  # async fn(event_type, data)
        self._save_dir = DEFAULT_SAVE_DIR
        self._connection_error: str | None = None

        self._connection.on_reset(self._on_reset)
        self._connection.on_control(self._on_control)
        self._connection.on_chunk(self._session.on_chunk)
        self._connection.on_state_change(self._on_connection_state)
        self._session.on_event(self._on_session_event)

    @property
    def connection(self) -> RelayConnectionManager:
        return self._connection

    @property
    def session(self) -> TransferSession:
        return self._session

    @property
    def save_dir(self) -> str:
        return self._save_dir

    @save_dir.setter
    def save_dir(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)
        self._save_dir = path

    @property
    def artifact(self):
        return self._session.artifact

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event_type: str, data: dict) -> None:
        """Emit an event to all registered callbacks."""
        for cb in self._event_callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    def get_status(self) -> ReceiverStatus:
        """Snapshot of everything the frontend renders."""
        session = self._session
        return ReceiverStatus(
            transfer_id=self._connection.identifier,
            connection_state=self._connection.state,
            reconnect_attempts=self._connection.reconnect_attempts,
            retries_exhausted=self._connection.retries_exhausted,
            transfer_state=session.state,
            file_metadata=session.metadata,
            received_bytes=session.received_bytes,
            progress_percent=session.progress_percent,
            error_message=session.error_message or self._connection_error,
            artifact_ready=session.artifact is not None,
        )

    # --- Frontend actions ---

    async def connect(self, transfer_id: str | None) -> None:
        """Pair with the sender identified by `transfer_id`."""
        if not transfer_id:
            return
        self._connection_error = None
        await self._connection.connect(transfer_id)

    async def disconnect(self) -> None:
        await self._connection.disconnect()

    async def close(self) -> None:
        """Tear down on shutdown; nothing scheduled may act after this."""
        self._session.close()
        await self._connection.disconnect()
        logger.info("Transfer manager stopped")

    async def save_artifact(self, directory: str | None = None) -> str:
        """Write the completed file to disk and return its path."""
        artifact = self._session.artifact
        if artifact is None:
            raise LookupError("No completed transfer to save")

        target_dir = directory or self._save_dir
        os.makedirs(target_dir, exist_ok=True)
        file_path = os.path.join(target_dir, artifact.metadata.safe_name)

        def _write() -> None:
            with open(file_path, "wb") as f:
                f.write(artifact.data)

        await asyncio.to_thread(_write)
        logger.info(f"Saved {artifact.size} bytes to {file_path}")
        return file_path

    # --- Wiring ---

    async def _on_reset(self) -> None:
        self._session.reset()

    async def _on_control(self, message) -> None:
        if isinstance(message, FileInfoMessage):
            await self._session.on_file_info(message.name, message.size)
        elif isinstance(message, FileEndMessage):
            await self._session.on_file_end(message.totalBytes)

    async def _on_connection_state(self, state: ConnectionState) -> None:
        notification = None
        if state == ConnectionState.DISCONNECTED and self._connection.retries_exhausted:
            self._connection_error = RETRIES_EXHAUSTED_MESSAGE
            notification = {
                "type": "warning",
                "message": "Lost connection to the relay server. Reconnect to try again.",
            }

        await self._emit("receiver_state", self.get_status().model_dump(mode="json"))
        if notification:
            await self._emit("notification", notification)

    async def _on_session_event(self, event_type: str, data: dict) -> None:
        await self._emit(event_type, data)
        if event_type != "transfer_state":
            return

        # Generate user-facing notifications
        metadata = self._session.metadata
        file_name = metadata.name if metadata else "file"
        notification = None
        if self._session.state == TransferState.COMPLETE:
            notification = {
                "type": "success",
                "message": f"'{file_name}' received successfully!",
            }
        elif self._session.state == TransferState.FAILED:
            notification = {
                "type": "error",
                "message": f"Transfer of '{file_name}' failed: {self._session.error_message}",
            }

        if notification:
            await self._emit("notification", notification)
