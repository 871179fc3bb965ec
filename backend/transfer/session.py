"""
Transfer Session — state of one incoming file.

Buffers chunks in arrival order, tracks progress against the announced
size, decides when an untrusted `file_end` really means the file is here,
and reassembles the buffer into a single artifact.
"""

import asyncio
import logging
from fractions import Fraction

from config import COMPLETION_THRESHOLD, SETTLE_DELAY
from transfer.errors import EmptyArtifactError, EmptyTransferError, TransferError
from transfer.models import Artifact, FileMetadata, TransferState

logger = logging.getLogger(__name__)


class ChunkBuffer:
    """Append-only list of received segments, kept in arrival order."""

    def __init__(self) -> None:
        self._segments: list[bytes] = []
        self._size = 0

    def __len__(self) -> int:
        return len(self._segments)

    @property
    def size(self) -> int:
        return self._size

    def append(self, data: bytes) -> None:
        self._segments.append(bytes(data))
        self._size += len(data)

    def clear(self) -> None:
        self._segments = []
        self._size = 0

    def assemble(self) -> bytes:
        """Concatenate every segment in the order it arrived."""
        if not self._segments:
            raise EmptyTransferError()
        data = b"".join(self._segments)
        if not data:
            raise EmptyArtifactError()
        return data


class TransferSession:
    """Receiver-side state for the file currently being transferred."""

    def __init__(
        self,
        *,
        settle_delay: float = SETTLE_DELAY,
        completion_threshold: float = COMPLETION_THRESHOLD,
    ) -> None:
        self._settle_delay = settle_delay
        self._threshold = Fraction(str(completion_threshold))

        self._buffer = ChunkBuffer()
        self._metadata: FileMetadata | None = None
        self._received_bytes = 0
        self._progress_percent = 0
        self._state = TransferState.EMPTY
        self._error_message: str | None = None
        self._artifact: Artifact | None = None

        # A completion check only applies to the transfer it was scheduled for
        self._generation = 0
        self._completion_tasks: set[asyncio.Task] = set()
        self._pending_checks = 0
        self._closed = False
        self._event_callbacks: list = []  # async fn(event_type, data)

    # --- Observable state ---

    @property
    def state(self) -> TransferState:
        return self._state

    @property
    def metadata(self) -> FileMetadata | None:
        return self._metadata

    @property
    def received_bytes(self) -> int:
        return self._received_bytes

    @property
    def progress(self) -> float:
        """Fraction of the announced size received so far, in [0, 1]."""
        if not self._metadata or self._metadata.size <= 0:
            return 0.0
        return min(1.0, self._received_bytes / self._metadata.size)

    @property
    def progress_percent(self) -> int:
        return self._progress_percent

    @property
    def error_message(self) -> str | None:
        return self._error_message

    @property
    def artifact(self) -> Artifact | None:
        return self._artifact

    @property
    def buffered_chunks(self) -> int:
        return len(self._buffer)

    def info(self) -> dict:
        return {
            "state": self._state.value,
            "file_metadata": self._metadata.model_dump() if self._metadata else None,
            "received_bytes": self._received_bytes,
            "progress_percent": self._progress_percent,
            "error_message": self._error_message,
            "artifact_ready": self._artifact is not None,
        }

    # --- Events ---

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event_type: str) -> None:
        data = self.info()
        for cb in self._event_callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    async def _set_state(self, state: TransferState) -> None:
        if state == self._state:
            return
        self._state = state
        await self._emit("transfer_state")

    # --- Lifecycle ---

    def reset(self) -> None:
        """
        Prepare for a fresh connection attempt.

        Drops the buffer and counters. A completed artifact survives so a
        reconnect after delivery doesn't lose a file nobody has saved yet.
        """
        self._generation += 1
        self._cancel_completion_checks()
        self._buffer.clear()
        self._received_bytes = 0
        self._progress_percent = 0
        if self._state == TransferState.COMPLETE:
            return
        self._error_message = None
        self._metadata = None
        self._artifact = None
        self._state = TransferState.EMPTY

    def close(self) -> None:
        """Tear down: pending completion checks must not touch state after this."""
        self._closed = True
        self._generation += 1
        self._cancel_completion_checks()

    def _cancel_completion_checks(self) -> None:
        for task in self._completion_tasks:
            if task is not asyncio.current_task():
                task.cancel()
        self._completion_tasks.clear()
        self._pending_checks = 0

    # --- Control / data handlers ---

    async def on_file_info(self, name: str, total_size: int) -> None:
        """A new file is announced; whatever came before is discarded."""
        self._generation += 1
        self._cancel_completion_checks()
        self._metadata = FileMetadata(name=name, size=total_size)
        self._buffer.clear()
        self._received_bytes = 0
        self._progress_percent = 0
        self._error_message = None
        self._artifact = None
        logger.info(f"Incoming file: {name} ({total_size} bytes)")

        self._state = TransferState.EMPTY
        await self._set_state(TransferState.RECEIVING)

    async def on_chunk(self, data: bytes) -> None:
        if not data:
            return
        if self._state in (TransferState.COMPLETE, TransferState.FAILED):
            logger.warning(
                f"Dropping {len(data)} byte chunk received after the transfer "
                f"was {self._state.value}"
            )
            return

        self._buffer.append(data)
        self._received_bytes += len(data)

        if self._state == TransferState.EMPTY:
            await self._set_state(TransferState.RECEIVING)

        total = self._metadata.size if self._metadata else 0
        if total > 0:
            percent = min(100, self._received_bytes * 100 // total)
            if percent != self._progress_percent:
                self._progress_percent = percent
                await self._emit("transfer_progress")

    def expected_size(self, declared_total_bytes: int | None) -> int:
        """`totalBytes` from file_end if given, else the announced size."""
        if declared_total_bytes:
            return declared_total_bytes
        if self._metadata:
            return self._metadata.size
        return 0

    def meets_threshold(self, expected_size: int) -> bool:
        return self._received_bytes >= self._threshold * expected_size

    async def on_file_end(self, declared_total_bytes: int | None = None) -> None:
        """
        The sender says it's done. Not trusted outright: after a short settle
        delay the file is accepted only if enough bytes actually arrived.
        """
        if self._state in (TransferState.COMPLETE, TransferState.FAILED):
            logger.debug(f"Ignoring file_end for a transfer that is already {self._state.value}")
            return

        expected = self.expected_size(declared_total_bytes)
        await self._set_state(TransferState.COMPLETING)

        self._pending_checks += 1
        task = asyncio.create_task(self._settle_and_complete(self._generation, expected))
        self._completion_tasks.add(task)
        task.add_done_callback(self._completion_tasks.discard)

    async def _settle_and_complete(self, generation: int, expected: int) -> None:
        await asyncio.sleep(self._settle_delay)
        self._pending_checks -= 1

        if self._closed or generation != self._generation:
            return
        # Every file_end gets its own check, even if an earlier one already
        # sent the transfer back to RECEIVING.
        if self._state not in (TransferState.COMPLETING, TransferState.RECEIVING):
            return

        if not self.meets_threshold(expected):
            # No retry: the transfer stays open until more data or a new file_info.
            logger.warning(
                f"file_end received but only {self._received_bytes}/{expected} bytes "
                f"arrived; still waiting"
            )
            if self._pending_checks == 0:
                await self._set_state(TransferState.RECEIVING)
            return

        try:
            self.finalize()
        except TransferError:
            # Already recorded as FAILED with its error_message.
            pass
        await self._emit("transfer_state")

    def finalize(self) -> Artifact:
        """
        Reassemble the buffered chunks into the final artifact.

        Raises EmptyTransferError / EmptyArtifactError and marks the transfer
        failed if there is nothing to hand off.
        """
        try:
            data = self._buffer.assemble()
        except TransferError as e:
            logger.error(f"Error completing transfer: {e}")
            self._state = TransferState.FAILED
            self._error_message = str(e)
            raise

        metadata = self._metadata or FileMetadata(name="download", size=len(data))
        self._artifact = Artifact(metadata=metadata, data=data)
        self._buffer.clear()
        self._state = TransferState.COMPLETE
        self._error_message = None
        logger.info(f"Transfer complete: {metadata.name} ({len(data)} bytes)")
        return self._artifact
