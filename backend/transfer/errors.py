"""Errors raised while reassembling a received file."""


class TransferError(Exception):
    """Base class for transfer failures shown to the user."""

    message = "Transfer failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


class EmptyTransferError(TransferError):
    """No chunk was buffered before completion."""

    message = "No data received - transfer failed"


class EmptyArtifactError(TransferError):
    """Chunks were buffered but they add up to zero bytes."""

    message = "Received empty file"
