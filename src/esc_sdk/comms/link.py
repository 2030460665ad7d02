"""
Bootloader Link
===============

This module runs single request/response exchanges with an ESC
bootloader over a Transport. Each exchange:

1. Encodes the command with the configured PacketCodec
2. Writes it to the transport
3. Polls the transport in short slices, feeding everything received so
   far to the codec, until a complete response decodes or the deadline
   passes
4. Sleeps the pacing delay the device needs before its next command

Nothing is retried here. A NACK, a checksum mismatch or a timeout is
raised to the caller, which decides whether the transfer survives.

Command Sequence
----------------
A typical configuration read looks like this on the wire:

    PC                              ESC
    ── init [00] ────────────────▶
                    ◀───────────── ACK
    ── set address [20 00] ──────▶
                    ◀───────────── ACK
    ── read [20] ────────────────▶
                    ◀───────────── ACK + 32 bytes + CRC
    ...

Debug Tracing
-------------
Every byte sent and received is logged at DEBUG level as hex, so
running with ``-v`` (or ``logging.DEBUG``) gives a full wire trace.
"""

import logging
import time
from typing import Callable, Final, Optional

from esc_sdk.comms.config import BOOTLOADER, ProtocolConfig, ResponseShape
from esc_sdk.comms.packet import (
    ByteSource,
    PacketCodec,
    Response,
    expected_response_length,
)
from esc_sdk.comms.serial import Transport
from esc_sdk.errors import TimeoutError

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Longest single transport read while waiting for a response
POLL_INTERVAL: Final[float] = 0.05

# Silence after the last received byte that marks a partial frame as all
# the device will send
QUIET_WINDOW: Final[float] = 0.1

# Parameter byte sent with the init command
INIT_PARAM: Final[bytes] = bytes([0x00])


# =============================================================================
# Link
# =============================================================================

class Link:
    """
    Request/response exchanges with one bootloader.

    The link owns no port: it borrows a Transport from the caller and
    never opens, closes or reconfigures it.

    Attributes:
        transport: Byte stream to the device
        config: Protocol dialect in use
        codec: Packet codec built from the config

    Example:
        link = Link(SerialTransport(port), BOOTLOADER)
        link.init()
        link.set_address(0x2000)
        data = link.read_block(32)
    """

    def __init__(
        self,
        transport: Transport,
        config: ProtocolConfig = BOOTLOADER,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Create a link.

        Args:
            transport: Byte stream to the device.
            config: Protocol dialect.
            clock: Monotonic time source, in seconds.
            sleep: Function used for pacing delays.
        """
        self.transport = transport
        self.config = config
        self.codec = PacketCodec(config)
        self._clock = clock
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Exchanges
    # -------------------------------------------------------------------------

    def transact(
        self,
        command: int,
        params: ByteSource = b"",
        *,
        address: Optional[int] = None,
        shape: Optional[ResponseShape] = None,
        payload_length: int = 0,
        timeout: Optional[float] = None,
        delay: Optional[float] = None,
    ) -> bytes:
        """
        Send one command and wait for its response.

        Args:
            command: Command code.
            params: Parameter bytes.
            address: Optional address field for the packet header.
            shape: Expected response shape. Defaults to the config's
                   response_shape when a payload is expected, otherwise
                   its ack_response_shape.
            payload_length: Number of payload bytes expected back.
            timeout: Response budget in seconds (default: config.timeout).
            delay: Pause after a successful exchange
                   (default: config.command_delay).

        Returns:
            The response payload (empty for acknowledgement-only replies).

        Raises:
            TransportError: If the transport fails.
            TimeoutError: If no complete response arrives in time.
            NackError: If the device rejects the command.
            ChecksumMismatchError: If the response checksum is wrong.
            ProtocolError: If the response is malformed.
        """
        config = self.config
        if shape is None:
            shape = (
                config.response_shape if payload_length
                else config.ack_response_shape
            )
        if timeout is None:
            timeout = config.timeout
        if delay is None:
            delay = config.command_delay

        wire = self.codec.encode(command, params, address)
        echo_length = len(wire) if config.echoes_request else 0

        logger.debug("TX [%d] %s", len(wire), wire.hex(" "))
        self.transport.write(wire)

        response = self._receive(wire, shape, echo_length, payload_length, timeout)

        if delay > 0:
            self._sleep(delay)
        return response.payload

    def _receive(
        self,
        request: bytes,
        shape: ResponseShape,
        echo_length: int,
        payload_length: int,
        timeout: float,
    ) -> Response:
        """
        Poll the transport until a response decodes or time runs out.

        Each read waits at most POLL_INTERVAL, so a NACK is reported as
        soon as it arrives rather than when the deadline passes. Once
        bytes have arrived and the line has been quiet for QUIET_WINDOW,
        the buffer is decoded as final so a lone trailing NACK is
        recognised.
        """
        buffer = bytearray()
        deadline = self._clock() + timeout
        last_rx = None

        def decode(final: bool) -> Optional[Response]:
            return self.codec.decode(
                buffer,
                echo_length=echo_length,
                payload_length=payload_length,
                shape=shape,
                request=request,
                final=final,
            )

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                break

            chunk = self.transport.read(min(remaining, POLL_INTERVAL))
            if not chunk:
                if last_rx is not None and self._clock() - last_rx >= QUIET_WINDOW:
                    decode(final=True)
                continue

            buffer.extend(chunk)
            last_rx = self._clock()
            logger.debug("RX [%d] %s", len(chunk), chunk.hex(" "))

            response = decode(final=False)
            if response is not None:
                if response.length < len(buffer):
                    logger.debug(
                        "Ignoring %d bytes after response",
                        len(buffer) - response.length,
                    )
                return response

        if buffer:
            decode(final=True)

        expected = expected_response_length(shape, echo_length, payload_length)
        command = request[0 if self.config.preamble is None else 1]
        raise TimeoutError(
            f"No complete response to command 0x{command:02X} within "
            f"{timeout}s (received {len(buffer)} of {expected} bytes)",
            received=bytes(buffer),
        )

    # -------------------------------------------------------------------------
    # Bootloader Commands
    # -------------------------------------------------------------------------

    def init(self) -> None:
        """Confirm the device is in bootloader mode (handshake)."""
        logger.info("Initialising bootloader")
        self.transact(self.config.commands.init, INIT_PARAM)

    def exit(self) -> None:
        """Leave the bootloader and start the ESC application."""
        logger.info("Leaving bootloader")
        self.transact(self.config.commands.exit)

    def set_address(self, address: int) -> None:
        """
        Set the address used by the next read or write.

        The address is sent as two parameter bytes, high byte first.
        """
        if not 0 <= address <= 0xFFFF:
            raise ValueError(f"Address must be 0-0xFFFF, got {address}")
        self.transact(self.config.commands.set_address, address.to_bytes(2, "big"))

    def read_block(self, count: int, timeout: Optional[float] = None) -> bytes:
        """
        Read ``count`` bytes from the current address.

        The count is sent as a single byte, with 256 encoded as 0.
        """
        if not 1 <= count <= 256:
            raise ValueError(f"Read count must be 1-256, got {count}")
        return self.transact(
            self.config.commands.read,
            bytes([count & 0xFF]),
            payload_length=count,
            timeout=timeout,
        )

    def write_block(self, data: bytes, timeout: Optional[float] = None) -> None:
        """
        Write ``data`` at the current address.

        The device needs write_delay on top of the usual command_delay
        to commit a chunk before it accepts the next command.
        """
        if not data:
            raise ValueError("Nothing to write")
        self.transact(
            self.config.commands.write,
            data,
            timeout=timeout,
            delay=self.config.command_delay + self.config.write_delay,
        )
