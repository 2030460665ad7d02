"""
Protocol Configuration
======================

ESC bootloaders in the field speak several closely related dialects:
the checksum algorithm, the checksum byte order, the framing and the
response shape all vary between firmware generations. Instead of one
engine per dialect, a single engine is driven by a ProtocolConfig that
names the variant explicitly.

Recognised options
------------------
    crc_variant         CrcVariant.A | CrcVariant.B
    crc_byte_order      ByteOrder.LSB_FIRST | ByteOrder.MSB_FIRST
    response_shape      shape of responses to data-returning commands
    ack_response_shape  shape of responses to commands that return no data
    chunk_size          bytes per read/write chunk
    base_address        absolute address of the configuration region
    region_length       size of the configuration region in bytes
    nack_bytes          status values meaning "rejected"
    ack_byte            status value meaning "accepted"
    preamble            optional start byte sent before each command
    param_count_field   whether a 1-byte parameter count precedes params
    crc_covers_preamble whether the preamble is included in the checksum
    commands            command codes for this dialect
    timeout             per-packet response budget (seconds)
    command_delay       pause after every command (seconds)
    write_delay         pause after every write chunk (seconds)
    baud_rate           bit rate the caller must open the port at

Configuration sources
---------------------
- Named presets (BOOTLOADER, BOOTLOADER_ECHO)
- Environment variables, through ProtocolConfig.from_env()
- Explicit overrides, through ProtocolConfig.replace()
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Final, Optional

from esc_sdk.comms.crc import ByteOrder, CrcVariant

logger = logging.getLogger(__name__)


# =============================================================================
# Enumerations
# =============================================================================

class ResponseShape(Enum):
    """
    Layout of a device response.

    The caller always declares the expected shape up front; it is never
    guessed from the bytes received.

    ACK_ONLY:          [status]
    ACK_PLUS_PAYLOAD:  [status] [payload] [crc:2]
    ECHO_PLUS_PAYLOAD: [echo of request] [payload] [crc:2] [status]
    """

    ACK_ONLY = "ack"
    ACK_PLUS_PAYLOAD = "ack+payload"
    ECHO_PLUS_PAYLOAD = "echo+payload"


# =============================================================================
# Command Codes
# =============================================================================

@dataclass(frozen=True)
class CommandSet:
    """
    Command codes understood by a bootloader dialect.

    Attributes:
        init: Enter/confirm bootloader mode (handshake)
        exit: Leave the bootloader and run the application
        set_address: Set the address for the next read or write
        read: Read N bytes from the current address
        write: Write the given bytes at the current address
    """

    init: int = 0x30
    exit: int = 0x35
    set_address: int = 0xFF
    read: int = 0x04
    write: int = 0x05


# =============================================================================
# Constants
# =============================================================================

# Status byte the bootloader returns on success
DEFAULT_ACK_BYTE: Final[int] = 0x30

# Status bytes the bootloader returns on failure
# 0xC1 verify error, 0xC2 unknown command, 0xC3 CRC error, 0xC5 program error
DEFAULT_NACK_BYTES: Final[frozenset[int]] = frozenset({0xC1, 0xC2, 0xC3, 0xC5})

# Configuration region of the observed device
DEFAULT_BASE_ADDRESS: Final[int] = 0x2000
DEFAULT_REGION_LENGTH: Final[int] = 176
DEFAULT_CHUNK_SIZE: Final[int] = 32

# Largest parameter block a single packet can carry
MAX_PARAMS: Final[int] = 256


# =============================================================================
# Protocol Configuration
# =============================================================================

@dataclass(frozen=True)
class ProtocolConfig:
    """
    Complete description of one bootloader dialect.

    Instances are immutable; use replace() to derive a variant. Values
    are validated on construction.

    Example:
        config = BOOTLOADER.replace(chunk_size=16, timeout=1.0)
    """

    name: str = "bootloader"
    crc_variant: CrcVariant = CrcVariant.A
    crc_byte_order: ByteOrder = ByteOrder.LSB_FIRST
    response_shape: ResponseShape = ResponseShape.ACK_PLUS_PAYLOAD
    ack_response_shape: ResponseShape = ResponseShape.ACK_ONLY
    chunk_size: int = DEFAULT_CHUNK_SIZE
    base_address: int = DEFAULT_BASE_ADDRESS
    region_length: int = DEFAULT_REGION_LENGTH
    nack_bytes: frozenset[int] = DEFAULT_NACK_BYTES
    ack_byte: int = DEFAULT_ACK_BYTE
    preamble: Optional[int] = None
    param_count_field: bool = False
    crc_covers_preamble: bool = False
    commands: CommandSet = field(default_factory=CommandSet)
    timeout: float = 0.8
    command_delay: float = 0.02
    write_delay: float = 0.05
    baud_rate: int = 19200

    def __post_init__(self) -> None:
        """Validate field values after initialization."""
        # Accept any iterable of ints for nack_bytes
        if not isinstance(self.nack_bytes, frozenset):
            object.__setattr__(self, "nack_bytes", frozenset(self.nack_bytes))

        if not 1 <= self.chunk_size <= MAX_PARAMS:
            raise ValueError(
                f"Chunk size must be 1-{MAX_PARAMS}, got {self.chunk_size}"
            )
        if self.region_length <= 0:
            raise ValueError(
                f"Region length must be positive, got {self.region_length}"
            )
        if not 0 <= self.base_address <= 0xFFFF:
            raise ValueError(
                f"Base address must fit in 16 bits, got 0x{self.base_address:X}"
            )
        if self.base_address + self.region_length > 0x10000:
            raise ValueError("Configuration region extends past address 0xFFFF")
        if not 0 <= self.ack_byte <= 0xFF:
            raise ValueError(f"ACK byte out of range: {self.ack_byte}")
        if self.ack_byte in self.nack_bytes:
            raise ValueError(
                f"ACK byte 0x{self.ack_byte:02X} is also listed as a NACK byte"
            )
        if any(not 0 <= b <= 0xFF for b in self.nack_bytes):
            raise ValueError("NACK bytes must be in range 0-255")
        if self.preamble is not None and not 0 <= self.preamble <= 0xFF:
            raise ValueError(f"Preamble out of range: {self.preamble}")
        if self.timeout <= 0:
            raise ValueError(f"Timeout must be positive, got {self.timeout}")
        if self.command_delay < 0 or self.write_delay < 0:
            raise ValueError("Delays cannot be negative")

    @property
    def echoes_request(self) -> bool:
        """True when the line reads back every request before the answer."""
        return self.response_shape is ResponseShape.ECHO_PLUS_PAYLOAD

    def replace(self, **changes) -> "ProtocolConfig":
        """Return a copy with the given fields changed (validated)."""
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_env(cls, base: Optional["ProtocolConfig"] = None) -> "ProtocolConfig":
        """
        Create a ProtocolConfig from environment variables.

        Environment variables (all optional):
            ESC_PROTOCOL: Preset name, used only when no base is given
            ESC_TIMEOUT: Per-packet timeout in seconds (float)
            ESC_CHUNK_SIZE: Chunk size in bytes (integer)
            ESC_COMMAND_DELAY: Delay after each command in seconds (float)
            ESC_WRITE_DELAY: Delay after each write chunk in seconds (float)

        Invalid numeric values are logged and ignored.

        Args:
            base: Configuration to start from. When None, the preset
                  named by ESC_PROTOCOL is used, or BOOTLOADER.

        Returns:
            ProtocolConfig with values from environment variables.

        Raises:
            KeyError: If ESC_PROTOCOL names an unknown preset.
        """
        if base is not None:
            config = base
        elif preset := os.environ.get("ESC_PROTOCOL"):
            config = get_preset(preset)
        else:
            config = BOOTLOADER

        changes = {}
        for env_name, attr, convert in (
            ("ESC_TIMEOUT", "timeout", float),
            ("ESC_CHUNK_SIZE", "chunk_size", int),
            ("ESC_COMMAND_DELAY", "command_delay", float),
            ("ESC_WRITE_DELAY", "write_delay", float),
        ):
            if raw := os.environ.get(env_name):
                try:
                    changes[attr] = convert(raw)
                except ValueError:
                    logger.warning("Ignoring invalid %s=%r", env_name, raw)

        if changes:
            config = config.replace(**changes)
        return config


# =============================================================================
# Presets
# =============================================================================

# Serial bootloader, 19200 baud, separate TX/RX lines.
# Packets: [cmd] [params] [crc lo] [crc hi]; responses: [ACK] [data] [crc]
BOOTLOADER: Final[ProtocolConfig] = ProtocolConfig()

# Same bootloader over a one-wire (half duplex) signal lead. Every byte
# sent is read back before the device answers, so every response starts
# with an echo of the request. Data responses end with the status byte.
BOOTLOADER_ECHO: Final[ProtocolConfig] = ProtocolConfig(
    name="bootloader-echo",
    response_shape=ResponseShape.ECHO_PLUS_PAYLOAD,
    timeout=1.0,
)

PRESETS: Final[dict[str, ProtocolConfig]] = {
    BOOTLOADER.name: BOOTLOADER,
    BOOTLOADER_ECHO.name: BOOTLOADER_ECHO,
}


def get_preset(name: str) -> ProtocolConfig:
    """
    Look up a preset configuration by name (case-insensitive).

    Raises:
        KeyError: If no preset has that name.
    """
    key = name.strip().lower().replace("_", "-")
    if key not in PRESETS:
        valid = ", ".join(sorted(PRESETS))
        raise KeyError(f"Unknown protocol preset '{name}'. Valid presets: {valid}")
    return PRESETS[key]
