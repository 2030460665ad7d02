"""
ESC SDK - Configuration Link for Brushless ESC Bootloaders
==========================================================

This package reads and writes the EEPROM configuration block of a
brushless electronic speed controller (ESC) through its serial
bootloader, and maps the raw block to named settings.

Main Components
---------------
- **comms**: Protocol engine
    Checksums, packet codec, request/response link and chunked transfer

- **settings**: Settings codec
    Offset map, KV scaling and the SettingsRecord type

- **session**: Consumer API
    read_all() / write_all() with last-known-image tracking

- **cli**: Command-line tool (esclink)

Quick Start
-----------
    >>> from esc_sdk import Session, SerialTransport, open_serial_port
    >>> port = open_serial_port("/dev/ttyUSB0")
    >>> session = Session(SerialTransport(port))
    >>> session.init()
    >>> settings = session.read_all()
    >>> session.write_all(settings.replace(beep=40))

Or use the command-line tool:
    $ esclink read
    $ esclink set timing=15 beep=40
    $ esclink read --save backup.bin
    $ esclink restore backup.bin

Version History
---------------
1.0.0 - Initial release with bootloader protocol engine and esclink
"""

__version__ = "1.0.0"

# =============================================================================
# Public API Exports
# =============================================================================

from esc_sdk.errors import (
    EscError,
    SettingsError,
    CommsError,
    TransportError,
    TransferCancelledError,
    ProtocolError,
    TimeoutError as EscTimeoutError,  # Avoid collision with builtin
    NackError,
    ChecksumMismatchError,
    IncompleteTransferError,
)

from esc_sdk.comms import (
    BOOTLOADER,
    BOOTLOADER_ECHO,
    ChunkedTransfer,
    Link,
    PacketCodec,
    ProtocolConfig,
    SerialTransport,
    Transport,
    get_preset,
    open_serial_port,
    close_serial_port,
)

from esc_sdk.settings import (
    OFFSETS,
    EXTENDED_OFFSETS,
    SettingsRecord,
    decode_settings,
    encode_settings,
    default_image,
)

from esc_sdk.session import Session

__all__ = [
    # Version info
    "__version__",
    # Exception hierarchy
    "EscError",
    "SettingsError",
    "CommsError",
    "TransportError",
    "TransferCancelledError",
    "ProtocolError",
    "EscTimeoutError",
    "NackError",
    "ChecksumMismatchError",
    "IncompleteTransferError",
    # Protocol engine
    "BOOTLOADER",
    "BOOTLOADER_ECHO",
    "ChunkedTransfer",
    "Link",
    "PacketCodec",
    "ProtocolConfig",
    "SerialTransport",
    "Transport",
    "get_preset",
    "open_serial_port",
    "close_serial_port",
    # Settings
    "OFFSETS",
    "EXTENDED_OFFSETS",
    "SettingsRecord",
    "decode_settings",
    "encode_settings",
    "default_image",
    # Session
    "Session",
]
