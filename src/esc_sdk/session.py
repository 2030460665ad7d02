"""
ESC Configuration Session
=========================

The Session is the API a caller (the esclink CLI, a GUI, a script) uses
to load and save ESC settings. It ties together the link, the chunked
transfer and the settings codec, and keeps the last image read from or
written to the device so that a save only touches the bytes the codec
manages.

Usage
-----
    port = open_serial_port("/dev/ttyUSB0")
    session = Session(SerialTransport(port))

    session.init()
    settings = session.read_all()
    session.write_all(settings.replace(timing=15, beep=40))

Policies such as "fall back to defaults if the read fails" are left to
the caller. The session reports every failure as an exception and never
substitutes data on its own.

Concurrency
-----------
Only one operation may run at a time. A second call made while one is in
progress (from another thread) fails immediately with CommsError rather
than interleaving packets on the wire. cancel() may be called from any
thread; it stops a running transfer before its next chunk.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from esc_sdk.comms.config import BOOTLOADER, ProtocolConfig
from esc_sdk.comms.link import Link
from esc_sdk.comms.serial import Transport
from esc_sdk.comms.transfer import ChunkedTransfer, ProgressCallback
from esc_sdk.errors import CommsError, IncompleteTransferError, ProtocolError
from esc_sdk.settings import (
    SettingsRecord,
    changed_offsets,
    decode_settings,
    default_image,
    encode_settings,
)

logger = logging.getLogger(__name__)


class Session:
    """
    One caller's connection to one ESC bootloader.

    Attributes:
        config: Protocol dialect in use
        link: Request/response link over the caller's transport
        transfer: Chunked transfer orchestrator
    """

    def __init__(
        self,
        transport: Transport,
        config: ProtocolConfig = BOOTLOADER,
        link: Optional[Link] = None,
    ):
        self.config = config
        self.link = link if link is not None else Link(transport, config)
        self.transfer = ChunkedTransfer(self.link, config)
        self._last_image: Optional[bytes] = None
        self._lock = threading.Lock()
        self._cancel = threading.Event()

    @property
    def last_image(self) -> Optional[bytes]:
        """Last image successfully read or written, or None."""
        return self._last_image

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def cancel(self) -> None:
        """Ask a running transfer to stop before its next chunk."""
        logger.info("Cancellation requested")
        self._cancel.set()

    @contextmanager
    def _operation(self, name: str) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise CommsError(f"Session busy: cannot start {name}")
        self._cancel.clear()
        try:
            yield
        finally:
            self._lock.release()

    # -------------------------------------------------------------------------
    # Bootloader control
    # -------------------------------------------------------------------------

    def init(self) -> None:
        """Handshake with the bootloader."""
        with self._operation("init"):
            self.link.init()

    def run_application(self) -> None:
        """Leave the bootloader and start the motor firmware."""
        with self._operation("run"):
            self.link.exit()

    # -------------------------------------------------------------------------
    # Raw images
    # -------------------------------------------------------------------------

    def read_image(self, progress: Optional[ProgressCallback] = None) -> bytes:
        """
        Read the raw configuration image and remember it.

        Raises:
            ProtocolError: If any chunk fails, annotated with progress.
            TransferCancelledError: If cancel() was called.
            TransportError: If the transport fails.
        """
        with self._operation("read"):
            image = self.transfer.read_image(cancel=self._cancel, progress=progress)
            self._last_image = image
            return image

    def write_image(
        self, image: bytes, progress: Optional[ProgressCallback] = None
    ) -> None:
        """
        Write a raw configuration image (restore a backup).

        Raises:
            SettingsError: If the image has the wrong length.
            ProtocolError: If any chunk fails, annotated with progress.
            TransferCancelledError: If cancel() was called.
            TransportError: If the transport fails.
        """
        with self._operation("write"):
            self._write_image(image, progress)

    def _write_image(
        self, image: bytes, progress: Optional[ProgressCallback]
    ) -> None:
        # Caller holds the operation lock
        self._last_image = self.transfer.write_image(
            image, cancel=self._cancel, progress=progress
        )

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def read_all(self, progress: Optional[ProgressCallback] = None) -> SettingsRecord:
        """
        Read and decode the device settings.

        Returns:
            Decoded settings. The image they came from becomes last_image.

        Raises:
            IncompleteTransferError: If the read stopped short for any
                protocol reason; the original error is its __cause__.
            TransferCancelledError: If cancel() was called.
            TransportError: If the transport fails.
        """
        try:
            image = self.read_image(progress=progress)
        except IncompleteTransferError:
            raise
        except ProtocolError as e:
            raise IncompleteTransferError(
                e.bytes_transferred,
                self.config.region_length,
                chunk_index=e.chunk_index,
                chunks_completed=e.chunks_completed,
            ) from e
        return decode_settings(image, self.config.region_length)

    def write_all(
        self,
        record: SettingsRecord,
        progress: Optional[ProgressCallback] = None,
    ) -> bytes:
        """
        Encode settings into the last known image and write it back.

        Bytes the codec does not manage keep the values last read from
        the device. Without a prior read, they come from default_image().

        Returns:
            The image that was written.

        Raises:
            SettingsError: If a value does not fit its byte.
            ProtocolError: If any chunk fails, annotated with progress.
            TransferCancelledError: If cancel() was called.
            TransportError: If the transport fails.
        """
        with self._operation("write"):
            base = self._last_image
            if base is None:
                logger.warning("No image read from device; writing onto default image")
                base = default_image(self.config.region_length)

            image = encode_settings(base, record, self.config.region_length)
            changed = changed_offsets(base, image)
            logger.info(
                "Writing settings (%d byte(s) changed: %s)",
                len(changed), ", ".join(f"0x{o:02X}" for o in changed) or "none",
            )

            self._write_image(image, progress)
        return image
