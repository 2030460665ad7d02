"""
ESC Bootloader Communication Module
===================================

This module provides the protocol engine used to read and write the
configuration block of a brushless ESC through its serial bootloader.

Module Structure
----------------
- **crc**: The two 16-bit checksum variants and their byte orders
- **config**: ProtocolConfig, the per-dialect description, and presets
- **packet**: Command encoding and response framing (pure, no I/O)
- **serial**: The Transport contract and the pyserial adapter
- **link**: One request/response exchange with a bounded deadline
- **transfer**: Chunked read/write of the whole configuration region

Quick Start
-----------
    from esc_sdk.comms import (
        BOOTLOADER,
        ChunkedTransfer,
        Link,
        SerialTransport,
        open_serial_port,
    )

    port = open_serial_port('/dev/ttyUSB0', BOOTLOADER)
    try:
        link = Link(SerialTransport(port), BOOTLOADER)
        link.init()
        image = ChunkedTransfer(link).read_image()
    finally:
        port.close()

Serial Settings
---------------
The caller opens the port at the bit rate the dialect expects
(ProtocolConfig.baud_rate): 19200 for the bootloader, 115200 for the
alternate mode. 8 data bits, no parity, 1 stop bit, no flow control.

Error Handling
--------------
All communication errors inherit from `CommsError`:

- `TransportError`: The serial port itself failed
- `ProtocolError`: The device answered wrongly or not at all
  (`TimeoutError`, `NackError`, `ChecksumMismatchError`,
  `IncompleteTransferError`)
- `TransferCancelledError`: The caller stopped a transfer

These exceptions are defined in `esc_sdk.errors`.

Thread Safety
-------------
Link and ChunkedTransfer are NOT thread-safe. Use them from a single
thread, or go through esc_sdk.session.Session, which serialises access.
"""

# =============================================================================
# Public API Exports
# =============================================================================

# Checksums
from esc_sdk.comms.crc import (
    CRC_INITIAL,
    REFERENCE_CHECK_VALUES,
    ByteOrder,
    CrcVariant,
    checksum,
    crc16_arc,
    crc16_xmodem,
    crc_from_bytes,
    crc_to_bytes,
    verify_crc,
)

# Protocol configuration
from esc_sdk.comms.config import (
    BOOTLOADER,
    BOOTLOADER_ECHO,
    PRESETS,
    CommandSet,
    ProtocolConfig,
    ResponseShape,
    get_preset,
)

# Packet codec
from esc_sdk.comms.packet import (
    Packet,
    PacketCodec,
    Response,
    expected_response_length,
)

# Transport and serial port lifecycle
from esc_sdk.comms.serial import (
    VALID_BAUD_RATES,
    SerialTransport,
    Transport,
    close_serial_port,
    open_serial_port,
)

# Link
from esc_sdk.comms.link import Link

# Chunked transfer
from esc_sdk.comms.transfer import (
    Chunk,
    ChunkedTransfer,
    ProgressCallback,
    TransferSession,
    TransferState,
    plan_chunks,
)

__all__ = [
    # Checksums
    "CRC_INITIAL",
    "REFERENCE_CHECK_VALUES",
    "ByteOrder",
    "CrcVariant",
    "checksum",
    "crc16_arc",
    "crc16_xmodem",
    "crc_from_bytes",
    "crc_to_bytes",
    "verify_crc",
    # Configuration
    "BOOTLOADER",
    "BOOTLOADER_ECHO",
    "PRESETS",
    "CommandSet",
    "ProtocolConfig",
    "ResponseShape",
    "get_preset",
    # Packet codec
    "Packet",
    "PacketCodec",
    "Response",
    "expected_response_length",
    # Transport
    "VALID_BAUD_RATES",
    "SerialTransport",
    "Transport",
    "close_serial_port",
    "open_serial_port",
    # Link
    "Link",
    # Transfer
    "Chunk",
    "ChunkedTransfer",
    "ProgressCallback",
    "TransferSession",
    "TransferState",
    "plan_chunks",
]
