"""
Relay wire protocol.

Control messages travel as JSON text frames, file data as binary frames.
Inbound frames are modelled as a tagged union so the connection manager
has a single place where it decides what a frame is.
"""

import json
import logging
import random
import string
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Literal

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


# --- Control messages ---

class MessageType:
    REGISTER = "register"
    RECEIVE_READY = "receive_ready"
    FILE_INFO = "file_info"
    FILE_END = "file_end"


class RegisterMessage(BaseModel):
    """Announces our connection id to the relay."""
    type: Literal["register"] = MessageType.REGISTER
    connectionId: str


class ReceiveReadyMessage(BaseModel):
    """Tells the sender behind `target_id` that we are ready for the file."""
    target_id: str
    type: Literal["receive_ready"] = MessageType.RECEIVE_READY
    senderId: str


class FileInfoMessage(BaseModel):
    """Sent by the sender before the first chunk."""
    type: Literal["file_info"] = MessageType.FILE_INFO
    name: str
    size: int = Field(ge=0)


class FileEndMessage(BaseModel):
    """End of the chunk stream. `totalBytes` is optional and untrusted."""
    type: Literal["file_end"] = MessageType.FILE_END
    totalBytes: int | None = Field(default=None, ge=0)


ControlMessage = FileInfoMessage | FileEndMessage

_CONTROL_MODELS: dict[str, type[BaseModel]] = {
    MessageType.FILE_INFO: FileInfoMessage,
    MessageType.FILE_END: FileEndMessage,
}


def parse_control_message(text: str) -> ControlMessage | None:
    """
    Parse a text frame into a control message.

    Returns None for anything we can't or don't need to act on; malformed
    frames are logged and otherwise ignored.
    """
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        logger.error(f"Error processing message: {e}")
        return None

    if not isinstance(payload, dict):
        logger.error(f"Error processing message: expected an object, got {type(payload).__name__}")
        return None

    message_type = payload.get("type")
    model = _CONTROL_MODELS.get(message_type) if isinstance(message_type, str) else None
    if model is None:
        logger.debug(f"Ignoring control message of type {message_type!r}")
        return None

    try:
        return model.model_validate(payload)
    except ValidationError as e:
        logger.error(f"Error processing {payload['type']} message: {e}")
        return None


def generate_connection_id() -> str:
    """Random id used to register with the relay."""
    try:
        return str(uuid.uuid4())
    except NotImplementedError:
        # No OS entropy source; never block registration on it.
        alphabet = string.ascii_lowercase + string.digits
        return "fallback" + "".join(random.choices(alphabet, k=13))


# --- Inbound frames ---

class FrameKind(str, Enum):
    TEXT = "text"
    BINARY = "binary"
    BLOB = "blob"


@dataclass(frozen=True, slots=True)
class InboundFrame:
    """
    One frame received from the relay.

    BLOB frames carry a coroutine function that materializes the payload;
    transports use them when binary data arrives as an opaque handle
    rather than a ready buffer.
    """
    kind: FrameKind
    text: str = ""
    data: bytes = b""
    reader: Callable[[], Awaitable[bytes]] | None = None

    @classmethod
    def text_frame(cls, text: str) -> "InboundFrame":
        return cls(kind=FrameKind.TEXT, text=text)

    @classmethod
    def binary_frame(cls, data: bytes | bytearray | memoryview) -> "InboundFrame":
        return cls(kind=FrameKind.BINARY, data=bytes(data))

    @classmethod
    def blob_frame(cls, reader: Callable[[], Awaitable[bytes]]) -> "InboundFrame":
        return cls(kind=FrameKind.BLOB, reader=reader)

    async def materialize(self) -> bytes:
        """Return the binary payload, reading it first for BLOB frames."""
        if self.kind is FrameKind.BLOB:
            return bytes(await self.reader())
        return self.data
