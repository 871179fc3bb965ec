"""Pydantic models for receiving a relayed file transfer."""

import os
from enum import Enum

from pydantic import BaseModel, Field


class ConnectionState(str, Enum):
    """Lifecycle of the relay websocket."""
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class TransferState(str, Enum):
    """All possible states for the incoming transfer."""
    EMPTY = "empty"
    RECEIVING = "receiving"
    COMPLETING = "completing"
    COMPLETE = "complete"
    FAILED = "failed"


class FileMetadata(BaseModel):
    """Announced by the sender before file data."""
    name: str
    size: int = Field(default=0, ge=0)

    @property
    def safe_name(self) -> str:
        """Base name only; the sender picks the name but never the directory."""
        return os.path.basename(self.name.replace("\\", "/")) or "download"


class Artifact(BaseModel):
    """A fully reassembled file, ready to hand off."""
    metadata: FileMetadata
    data: bytes
    media_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.data)


class ReceiverStatus(BaseModel):
    """Full receiver state, exposed to the frontend."""
    transfer_id: str | None = None
    connection_state: ConnectionState = ConnectionState.IDLE
    reconnect_attempts: int = 0
    retries_exhausted: bool = False
    transfer_state: TransferState = TransferState.EMPTY
    file_metadata: FileMetadata | None = None
    received_bytes: int = 0
    progress_percent: int = 0
    error_message: str | None = None
    artifact_ready: bool = False
