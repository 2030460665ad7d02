"""
ESC SDK Error Hierarchy
=======================

This module defines the exception hierarchy for the whole ESC SDK.
All exceptions inherit from EscError, allowing callers to catch all
SDK-related errors with a single except clause if desired.

Exception Hierarchy
-------------------
EscError (base)
├── SettingsError - a settings record or memory image is invalid
└── CommsError (serial communication)
    ├── TransportError - the byte stream itself failed (fatal to the session)
    ├── TransferCancelledError - caller asked to stop between chunks
    └── ProtocolError - the device answered wrongly, or not at all
        ├── TimeoutError - no (or not enough) response within the deadline
        ├── NackError - device explicitly rejected the command
        ├── ChecksumMismatchError - response checksum does not match
        └── IncompleteTransferError - fewer bytes than the declared region

Progress Information
--------------------
Protocol errors raised during a chunked transfer carry the partial
progress made before the failure (``chunk_index``, ``bytes_transferred``,
``chunks_completed``). Nothing is recovered silently inside the engine:
the caller receives the error together with what was completed and
decides what to do next.
"""

from typing import Optional


# =============================================================================
# Base Exception Class
# =============================================================================

class EscError(Exception):
    """
    Base exception for all ESC SDK errors.

    All exceptions in the SDK inherit from this class, allowing callers
    to catch all SDK-related errors with a single except clause:

        try:
            session.read_all()
        except EscError as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Settings Exceptions
# =============================================================================

class SettingsError(EscError):
    """
    Invalid settings record or memory image.

    Raised when:
    - A memory image has the wrong length for the configured region
    - A numeric setting does not fit in its backing byte (0-255)
    """
    pass


# =============================================================================
# Communication Exceptions
# =============================================================================

class CommsError(EscError):
    """Base exception for serial communication errors."""
    pass


class TransportError(CommsError):
    """
    The underlying byte stream failed.

    Raised when a write or read on the transport raises an I/O error
    (port unplugged, permission denied, device closed). This is fatal
    to the session and is surfaced immediately, never retried.
    """
    pass


class TransferCancelledError(CommsError):
    """
    A transfer was cancelled by the caller.

    Cancellation is cooperative and only checked between chunks, so the
    chunk that was in flight has either completed or timed out before
    this is raised.

    Attributes:
        bytes_transferred: Bytes completed before the cancellation
        chunks_completed: Chunks completed before the cancellation
    """

    def __init__(
        self,
        message: str = "Transfer cancelled",
        bytes_transferred: int = 0,
        chunks_completed: int = 0,
    ):
        self.bytes_transferred = bytes_transferred
        self.chunks_completed = chunks_completed
        super().__init__(message)


class ProtocolError(CommsError):
    """
    Bootloader protocol error.

    Raised when the device sends a malformed or unexpected response.
    Subclasses describe the specific failure. When raised from inside a
    chunked transfer, the progress attributes describe how far the
    transfer got.

    Attributes:
        chunk_index: Index of the chunk being transferred (None outside a transfer)
        bytes_transferred: Bytes completed before the failure
        chunks_completed: Chunks completed before the failure
    """

    def __init__(
        self,
        message: str,
        chunk_index: Optional[int] = None,
        bytes_transferred: int = 0,
        chunks_completed: int = 0,
    ):
        self.message = message
        self.chunk_index = chunk_index
        self.bytes_transferred = bytes_transferred
        self.chunks_completed = chunks_completed
        super().__init__(message)

    def annotate(
        self,
        chunk_index: int,
        bytes_transferred: int,
        chunks_completed: int,
    ) -> "ProtocolError":
        """
        Attach transfer progress to this error and return it.

        Used by the transfer orchestrator so the original exception type
        survives while the caller still learns where the transfer stopped.
        """
        self.chunk_index = chunk_index
        self.bytes_transferred = bytes_transferred
        self.chunks_completed = chunks_completed
        return self

    def __str__(self) -> str:
        if self.chunk_index is None:
            return self.message
        return (
            f"{self.message} (chunk {self.chunk_index}, "
            f"{self.bytes_transferred} bytes transferred)"
        )


class TimeoutError(ProtocolError):
    """
    Communication timeout error.

    Raised when the wait budget for a response elapses before the
    expected number of bytes arrives. This could indicate:
    - Device not in bootloader mode
    - Cable disconnected
    - Incorrect baud rate or protocol variant

    Note:
        This is an SDK-specific TimeoutError, distinct from the Python
        builtin TimeoutError. It inherits from ProtocolError so callers
        can decide whether to retry; the engine never does.

    Attributes:
        received: The bytes that did arrive before the deadline
    """

    def __init__(self, message: str, received: bytes = b"", **kwargs):
        self.received = received
        super().__init__(message, **kwargs)


class NackError(ProtocolError):
    """
    The device rejected a command with a negative acknowledgement.

    Fatal to the current transfer. The offending chunk index is reported
    through the inherited progress attributes.

    Attributes:
        code: The NACK byte value the device sent
    """

    def __init__(self, code: int, message: str = "", **kwargs):
        self.code = code
        if not message:
            message = f"Device rejected command (NACK 0x{code:02X})"
        super().__init__(message, **kwargs)


class ChecksumMismatchError(ProtocolError):
    """
    Checksum verification failed.

    Raised when the checksum at the end of a response doesn't match
    the checksum recomputed over its payload. This indicates data
    corruption and is never treated as an echo artifact.

    Attributes:
        expected: Checksum recomputed locally over the payload
        actual: Checksum transmitted by the device
    """

    def __init__(self, expected: int, actual: int, message: str = "", **kwargs):
        self.expected = expected
        self.actual = actual
        if not message:
            message = f"Checksum mismatch: expected {expected:04X}, got {actual:04X}"
        super().__init__(message, **kwargs)


class IncompleteTransferError(ProtocolError):
    """
    A read-all finished with fewer bytes than the declared region.

    The partial data is never handed out as an image. When the shortfall
    was caused by another protocol error, that error is chained as
    ``__cause__``.

    Attributes:
        bytes_received: Bytes that were read successfully
        expected_length: Declared region length
    """

    def __init__(
        self,
        bytes_received: int,
        expected_length: int,
        message: str = "",
        **kwargs,
    ):
        self.bytes_received = bytes_received
        self.expected_length = expected_length
        if not message:
            message = (
                f"Incomplete transfer: received {bytes_received} of "
                f"{expected_length} bytes"
            )
        kwargs.setdefault("bytes_transferred", bytes_received)
        super().__init__(message, **kwargs)
