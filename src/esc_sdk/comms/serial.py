"""
Serial Transport for ESC Communication
======================================

The protocol engine only ever sees a Transport: something it can write
a packet to and poll for reply bytes. This module defines that contract
and the one implementation esclink uses, SerialTransport over pyserial.

Port ownership stays with the caller. open_serial_port() configures a
port for a protocol dialect and close_serial_port() releases it; the
engine never does either.

Line Settings
-------------
Bit rate comes from ProtocolConfig.baud_rate (19200 for the bootloader,
115200 for the alternate mode). Framing is always 8N1 without hardware
or software flow control: the ESC signal lead carries no handshake lines.
"""

import logging
from typing import Final, Optional, Protocol

import serial

from esc_sdk.comms.config import BOOTLOADER, ProtocolConfig
from esc_sdk.errors import TransportError

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Bit rates the supported dialects run at
VALID_BAUD_RATES: Final[tuple[int, ...]] = (19200, 115200)

# Longest blocking read on the port; the link polls in slices this long
READ_SLICE: Final[float] = 0.05

# Upper bound on bytes drained from the driver per read() call
READ_SIZE: Final[int] = 512


# =============================================================================
# Transport Contract
# =============================================================================

class Transport(Protocol):
    """
    Byte stream the link talks through.

    write() sends a whole packet or raises TransportError.

    read(timeout) returns what has arrived within ``timeout`` seconds,
    possibly nothing. The link calls it repeatedly until its own
    deadline, so it must return promptly.
    """

    def write(self, data: bytes) -> None:
        ...

    def read(self, timeout: float) -> bytes:
        ...


class SerialTransport:
    """
    Transport over a pyserial port the caller has already opened.

    Driver failures surface as TransportError with the original
    exception chained.
    """

    def __init__(self, port: "serial.Serial"):
        self.port = port

    def write(self, data: bytes) -> None:
        try:
            self.port.write(data)
            self.port.flush()
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Serial write failed: {e}") from e

    def read(self, timeout: float) -> bytes:
        """
        Return bytes received within ``timeout`` (capped at READ_SLICE).

        Blocks for the first byte only; anything queued behind it is
        taken in the same call.
        """
        try:
            self.port.timeout = max(0.0, min(timeout, READ_SLICE))
            waiting = self.port.in_waiting
            data = self.port.read(waiting if waiting else 1)
            if waiting == 0 and data:
                more = self.port.in_waiting
                if more:
                    data += self.port.read(min(more, READ_SIZE))
            return bytes(data)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Serial read failed: {e}") from e


# =============================================================================
# Port Lifecycle (caller side)
# =============================================================================

def open_serial_port(
    device: str,
    config: ProtocolConfig = BOOTLOADER,
    baud_rate: Optional[int] = None,
) -> serial.Serial:
    """
    Open ``device`` with the line settings a dialect expects.

    Args:
        device: Port path, e.g. '/dev/ttyUSB0' or 'COM3'.
        config: Dialect whose baud_rate is used.
        baud_rate: Override for config.baud_rate.

    Raises:
        ValueError: If the bit rate is not one the ESC supports.
        TransportError: If the port cannot be opened.
    """
    baud = baud_rate or config.baud_rate
    if baud not in VALID_BAUD_RATES:
        raise ValueError(
            f"Unsupported baud rate {baud} (ESC bootloaders use "
            f"{' or '.join(str(b) for b in VALID_BAUD_RATES)})"
        )

    logger.info("Opening %s at %d baud for %s", device, baud, config.name)
    try:
        port = serial.Serial(
            port=device,
            baudrate=baud,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=READ_SLICE,
            xonxoff=False,
            rtscts=False,
        )
    except serial.SerialException as e:
        hint = ""
        if "Permission denied" in str(e):
            hint = " (is your user in the 'dialout' group?)"
        raise TransportError(f"Cannot open {device}: {e}{hint}") from e

    # Whatever the ESC sent before we were listening is not a reply
    port.reset_input_buffer()
    return port


def close_serial_port(port: Optional["serial.Serial"]) -> None:
    """Close a port on teardown, logging instead of raising on failure."""
    if port is None or not port.is_open:
        return
    try:
        port.close()
        logger.debug("Closed %s", port.port)
    except (serial.SerialException, OSError) as e:
        logger.warning("Error closing serial port: %s", e)
