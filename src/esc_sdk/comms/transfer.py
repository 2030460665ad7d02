"""
Chunked Configuration Transfer
==============================

This module moves the whole ESC configuration region (176 bytes on the
observed device) in fixed-size chunks, because a single bootloader
packet cannot carry all of it reliably.

Transfer Flow
-------------
For each chunk the orchestrator sets the chunk's absolute address, then
reads or writes that chunk:

    IDLE ──▶ ADDRESS_SET ──▶ TRANSFER_CHUNK ──┬──▶ ADDRESS_SET (next chunk)
                                              └──▶ DONE
      any state except DONE ──▶ ABORTED

Chunk sizes are exact: a region that is not a multiple of the chunk
size ends with one shorter chunk (176 / 32 → five of 32, one of 16).

Failure Semantics
-----------------
A NACK, checksum mismatch or timeout on any chunk aborts the whole
transfer. The error is re-raised with the failing chunk index and the
progress made so far attached. Nothing is retried and no substitute
data is produced; recovery is the caller's decision.

Cancellation is cooperative and checked between chunks only.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Final, Optional, Union

from esc_sdk.comms.config import ProtocolConfig
from esc_sdk.comms.link import Link
from esc_sdk.errors import (
    CommsError,
    IncompleteTransferError,
    ProtocolError,
    SettingsError,
    TransferCancelledError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Callback Types
# =============================================================================

# Type alias for progress callback: (bytes_done, total_bytes) -> None
ProgressCallback = Callable[[int, int], None]

# Cancellation source: an Event, or a callable returning True to stop
CancelCheck = Union[threading.Event, Callable[[], bool]]


# =============================================================================
# Chunk Planning
# =============================================================================

@dataclass(frozen=True)
class Chunk:
    """
    One contiguous piece of the configuration region.

    Attributes:
        index: Position of the chunk in the plan (0-based)
        address: Absolute device address of the first byte
        offset: Offset of the first byte within the region
        length: Number of bytes in the chunk
    """

    index: int
    address: int
    offset: int
    length: int

    @property
    def end(self) -> int:
        """Offset one past the last byte of the chunk."""
        return self.offset + self.length


def plan_chunks(base: int, length: int, chunk_size: int) -> list[Chunk]:
    """
    Split a region into chunks of at most ``chunk_size`` bytes.

    Args:
        base: Absolute address of the region.
        length: Region length in bytes.
        chunk_size: Largest chunk allowed.

    Returns:
        Chunks in address order. Only the last may be shorter.

    Raises:
        ValueError: If length is negative or chunk_size is not positive.

    Example:
        >>> [c.length for c in plan_chunks(0x2000, 176, 32)]
        [32, 32, 32, 32, 32, 16]
    """
    if chunk_size <= 0:
        raise ValueError(f"Chunk size must be positive, got {chunk_size}")
    if length < 0:
        raise ValueError(f"Region length cannot be negative, got {length}")

    chunks = []
    for index, offset in enumerate(range(0, length, chunk_size)):
        chunks.append(Chunk(
            index=index,
            address=base + offset,
            offset=offset,
            length=min(chunk_size, length - offset),
        ))
    return chunks


# =============================================================================
# Transfer State
# =============================================================================

class TransferState(Enum):
    """Lifecycle of one chunked transfer."""

    IDLE = "idle"
    ADDRESS_SET = "address_set"
    TRANSFER_CHUNK = "transfer_chunk"
    DONE = "done"
    ABORTED = "aborted"


_TRANSITIONS: Final[dict[TransferState, frozenset[TransferState]]] = {
    TransferState.IDLE: frozenset({
        TransferState.ADDRESS_SET, TransferState.DONE, TransferState.ABORTED,
    }),
    TransferState.ADDRESS_SET: frozenset({
        TransferState.TRANSFER_CHUNK, TransferState.ABORTED,
    }),
    TransferState.TRANSFER_CHUNK: frozenset({
        TransferState.ADDRESS_SET, TransferState.DONE, TransferState.ABORTED,
    }),
    TransferState.DONE: frozenset(),
    TransferState.ABORTED: frozenset(),
}


@dataclass
class TransferSession:
    """
    Bookkeeping for a single read or write of the region.

    Attributes:
        direction: "read" or "write"
        chunks: The chunk plan
        state: Current lifecycle state
        current_chunk: Index of the chunk in progress (None before the first)
        bytes_transferred: Bytes completed so far
        chunks_completed: Chunks completed so far
        data: Bytes read so far (read transfers only)
    """

    direction: str
    chunks: list[Chunk]
    state: TransferState = TransferState.IDLE
    current_chunk: Optional[int] = None
    bytes_transferred: int = 0
    chunks_completed: int = 0
    data: bytearray = field(default_factory=bytearray)

    @property
    def total_bytes(self) -> int:
        return sum(c.length for c in self.chunks)

    @property
    def finished(self) -> bool:
        return self.state in (TransferState.DONE, TransferState.ABORTED)

    def advance(self, state: TransferState) -> None:
        """
        Move to a new state.

        Raises:
            RuntimeError: If the transition is not allowed.
        """
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid transfer transition {self.state.name} -> {state.name}"
            )
        logger.debug("Transfer %s: %s -> %s", self.direction, self.state.name, state.name)
        self.state = state

    def complete_chunk(self, chunk: Chunk, data: bytes = b"") -> None:
        """Record a successfully transferred chunk."""
        if data:
            self.data.extend(data)
        self.bytes_transferred += chunk.length
        self.chunks_completed += 1

    def abort(self) -> None:
        """Mark the transfer aborted unless it already finished."""
        if not self.finished:
            self.advance(TransferState.ABORTED)


# =============================================================================
# Chunked Transfer Orchestrator
# =============================================================================

class ChunkedTransfer:
    """
    Reads and writes the configuration region chunk by chunk.

    This class is NOT thread-safe. The Session serialises access to it.

    Attributes:
        link: Link used for every exchange
        config: Protocol dialect (region, chunk size, pacing)
        last_session: Bookkeeping of the most recent transfer

    Example:
        transfer = ChunkedTransfer(link)
        image = transfer.read_image(progress=lambda done, total: ...)
    """

    def __init__(self, link: Link, config: Optional[ProtocolConfig] = None):
        self.link = link
        self.config = config if config is not None else link.config
        self.last_session: Optional[TransferSession] = None

    def plan(self) -> list[Chunk]:
        """Chunk plan for the configured region."""
        config = self.config
        return plan_chunks(config.base_address, config.region_length, config.chunk_size)

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    def read_image(
        self,
        cancel: Optional[CancelCheck] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> bytes:
        """
        Read the whole configuration region.

        Args:
            cancel: Checked before each chunk; stops the transfer when set.
            progress: Called with (bytes_done, total) after each chunk.

        Returns:
            Exactly region_length bytes.

        Raises:
            ProtocolError: Any chunk failed; the error carries chunk_index,
                           bytes_transferred and chunks_completed.
            IncompleteTransferError: Fewer bytes than declared were read.
            TransferCancelledError: The caller cancelled between chunks.
            TransportError: The transport failed.
        """
        session = self._start("read")
        logger.info(
            "Reading %d bytes from 0x%04X in %d chunks",
            session.total_bytes, self.config.base_address, len(session.chunks),
        )

        for chunk in session.chunks:
            self._check_cancel(cancel, session)
            data = self._run_chunk(
                session, chunk, lambda c=chunk: self.link.read_block(c.length)
            )
            if len(data) != chunk.length:
                session.abort()
                raise IncompleteTransferError(
                    session.bytes_transferred + len(data),
                    session.total_bytes,
                    chunk_index=chunk.index,
                    chunks_completed=session.chunks_completed,
                )
            session.complete_chunk(chunk, data)
            self._report(progress, session)

        if len(session.data) != session.total_bytes:
            session.abort()
            raise IncompleteTransferError(len(session.data), session.total_bytes)

        session.advance(TransferState.DONE)
        logger.info("Read complete: %d bytes", len(session.data))
        return bytes(session.data)

    # -------------------------------------------------------------------------
    # Write
    # -------------------------------------------------------------------------

    def write_image(
        self,
        image: bytes,
        cancel: Optional[CancelCheck] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> bytes:
        """
        Write a complete configuration image.

        Args:
            image: Exactly region_length bytes.
            cancel: Checked before each chunk; stops the transfer when set.
            progress: Called with (bytes_done, total) after each chunk.

        Returns:
            The image that was written, as bytes.

        Raises:
            SettingsError: If the image has the wrong length.
            ProtocolError: Any chunk failed; the error carries chunk_index,
                           bytes_transferred and chunks_completed.
            TransferCancelledError: The caller cancelled between chunks.
            TransportError: The transport failed.
        """
        image = bytes(image)
        if len(image) != self.config.region_length:
            raise SettingsError(
                f"Image is {len(image)} bytes, region is "
                f"{self.config.region_length} bytes"
            )

        session = self._start("write")
        logger.info(
            "Writing %d bytes to 0x%04X in %d chunks",
            session.total_bytes, self.config.base_address, len(session.chunks),
        )

        for chunk in session.chunks:
            self._check_cancel(cancel, session)
            block = image[chunk.offset:chunk.end]
            self._run_chunk(
                session, chunk, lambda b=block: self.link.write_block(b)
            )
            session.complete_chunk(chunk)
            self._report(progress, session)

        session.advance(TransferState.DONE)
        logger.info("Write complete: %d bytes", session.bytes_transferred)
        return image

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _start(self, direction: str) -> TransferSession:
        session = TransferSession(direction=direction, chunks=self.plan())
        self.last_session = session
        return session

    def _run_chunk(self, session: TransferSession, chunk: Chunk, operation):
        """
        Set the chunk address, then run the read or write for it.

        Any failure aborts the session. Protocol errors are annotated
        with the chunk index and progress before being re-raised.
        """
        session.current_chunk = chunk.index
        logger.debug(
            "Chunk %d/%d: %d bytes at 0x%04X",
            chunk.index + 1, len(session.chunks), chunk.length, chunk.address,
        )
        try:
            self.link.set_address(chunk.address)
            session.advance(TransferState.ADDRESS_SET)
            session.advance(TransferState.TRANSFER_CHUNK)
            return operation()
        except ProtocolError as e:
            session.abort()
            logger.warning("Transfer aborted at chunk %d: %s", chunk.index, e.message)
            raise e.annotate(
                chunk.index, session.bytes_transferred, session.chunks_completed
            )
        except CommsError:
            session.abort()
            raise

    def _check_cancel(
        self, cancel: Optional[CancelCheck], session: TransferSession
    ) -> None:
        if cancel is None:
            return
        cancelled = cancel.is_set() if isinstance(cancel, threading.Event) else cancel()
        if cancelled:
            session.abort()
            logger.info(
                "Transfer cancelled after %d of %d chunks",
                session.chunks_completed, len(session.chunks),
            )
            raise TransferCancelledError(
                bytes_transferred=session.bytes_transferred,
                chunks_completed=session.chunks_completed,
            )

    @staticmethod
    def _report(progress: Optional[ProgressCallback], session: TransferSession) -> None:
        if progress:
            progress(session.bytes_transferred, session.total_bytes)
