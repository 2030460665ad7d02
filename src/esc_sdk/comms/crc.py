"""
CRC-16 Implementations for ESC Bootloader Protocols
===================================================

This module implements the two 16-bit checksums seen across ESC
bootloader protocol generations. Both are exposed behind one interface,
and the protocol configuration selects which one a device speaks.

Variant A - CRC-16/ARC style (bootloader)
-----------------------------------------
- Reflected polynomial: 0xA001 (x^16 + x^15 + x^2 + 1, LSB first)
- Initial value: 0x0000
- Each byte is consumed bit by bit, least significant bit first

Variant B - CRC-16/XMODEM (4-way interface)
-------------------------------------------
- Polynomial: 0x1021 (x^16 + x^12 + x^5 + 1, MSB first)
- Initial value: 0x0000
- Each byte is XORed into the high byte, then shifted out MSB first

Byte Order
----------
The order in which the two checksum bytes go on the wire differs between
dialects too, so it is always passed explicitly to crc_to_bytes() and
crc_from_bytes() rather than assumed.

Usage
-----
    from esc_sdk.comms.crc import CrcVariant, ByteOrder, checksum, crc_to_bytes

    crc = checksum(CrcVariant.A, bytes([0x30, 0x00]))   # 0x0014
    wire = crc_to_bytes(crc, ByteOrder.LSB_FIRST)       # b'\\x14\\x00'
"""

from enum import Enum
from typing import Callable, Final

# =============================================================================
# CRC Constants
# =============================================================================

# Default initial CRC value for both variants
CRC_INITIAL: Final[int] = 0x0000

# Mask for 16-bit values
CRC_MASK: Final[int] = 0xFFFF

# Reflected polynomial used by Variant A
ARC_POLYNOMIAL: Final[int] = 0xA001

# Polynomial used by Variant B
XMODEM_POLYNOMIAL: Final[int] = 0x1021


# =============================================================================
# Enumerations
# =============================================================================

class CrcVariant(Enum):
    """Checksum algorithm spoken by a device."""

    A = "arc"       # LSB-first, 0xA001
    B = "xmodem"    # MSB-first, 0x1021


class ByteOrder(Enum):
    """Order of the two checksum bytes on the wire."""

    LSB_FIRST = "lsb"
    MSB_FIRST = "msb"


# =============================================================================
# Variant A
# =============================================================================

def crc16_arc(data: bytes, initial: int = CRC_INITIAL) -> int:
    """
    Calculate the Variant A checksum (CRC-16/ARC style, LSB first).

    For each bit of each byte (least significant first), if the data bit
    differs from bit 0 of the running checksum, the checksum is shifted
    right and XORed with 0xA001; otherwise it is only shifted right.

    Args:
        data: Input bytes.
        initial: Initial CRC value, for incremental calculation.

    Returns:
        16-bit CRC value.

    Example:
        >>> hex(crc16_arc(bytes([0x30, 0x00])))
        '0x14'
        >>> hex(crc16_arc(b"123456789"))
        '0xbb3d'
    """
    crc = initial & CRC_MASK

    for byte in data:
        xb = byte
        for _ in range(8):
            if (xb & 0x01) ^ (crc & 0x0001):
                crc = (crc >> 1) ^ ARC_POLYNOMIAL
            else:
                crc >>= 1
            xb >>= 1

    return crc & CRC_MASK


# =============================================================================
# Variant B
# =============================================================================

def crc16_xmodem(data: bytes, initial: int = CRC_INITIAL) -> int:
    """
    Calculate the Variant B checksum (CRC-16/XMODEM, MSB first).

    Each byte is XORed into the high byte of the checksum, which is then
    shifted left eight times, XORing in 0x1021 whenever the top bit
    falls off.

    Args:
        data: Input bytes.
        initial: Initial CRC value, for incremental calculation.

    Returns:
        16-bit CRC value.

    Example:
        >>> hex(crc16_xmodem(bytes([0x01])))
        '0x1021'
        >>> hex(crc16_xmodem(b"123456789"))
        '0x31c3'
    """
    crc = initial & CRC_MASK

    for byte in data:
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ XMODEM_POLYNOMIAL) & CRC_MASK
            else:
                crc = (crc << 1) & CRC_MASK

    return crc


# =============================================================================
# Variant Dispatch
# =============================================================================

_ALGORITHMS: Final[dict[CrcVariant, Callable[[bytes, int], int]]] = {
    CrcVariant.A: crc16_arc,
    CrcVariant.B: crc16_xmodem,
}


def checksum(variant: CrcVariant, data: bytes, initial: int = CRC_INITIAL) -> int:
    """
    Calculate a checksum with the algorithm selected by ``variant``.

    Args:
        variant: Which checksum the device speaks.
        data: Input bytes.
        initial: Initial CRC value.

    Returns:
        16-bit CRC value.
    """
    return _ALGORITHMS[variant](data, initial)


# =============================================================================
# Utility Functions
# =============================================================================

def crc_to_bytes(crc: int, order: ByteOrder) -> bytes:
    """
    Convert a CRC value to the two bytes sent on the wire.

    Args:
        crc: 16-bit CRC value to convert.
        order: Which byte goes first.

    Returns:
        Two bytes in the requested order.

    Example:
        >>> crc_to_bytes(0x1234, ByteOrder.LSB_FIRST)
        b'4\\x12'
        >>> crc_to_bytes(0x1234, ByteOrder.MSB_FIRST)
        b'\\x124'
    """
    low = crc & 0xFF
    high = (crc >> 8) & 0xFF
    if order is ByteOrder.LSB_FIRST:
        return bytes([low, high])
    return bytes([high, low])


def crc_from_bytes(data: bytes, order: ByteOrder) -> int:
    """
    Convert two wire bytes back to a CRC value.

    This is the inverse of crc_to_bytes(), used when receiving responses
    to extract the transmitted CRC for verification.

    Args:
        data: At least two bytes. Only the first 2 are used.
        order: Which byte came first on the wire.

    Returns:
        16-bit CRC value.

    Raises:
        ValueError: If data is less than 2 bytes.
    """
    if len(data) < 2:
        raise ValueError(f"CRC requires 2 bytes, got {len(data)}")
    if order is ByteOrder.LSB_FIRST:
        return data[0] | (data[1] << 8)
    return (data[0] << 8) | data[1]


def verify_crc(data: bytes, expected_crc: int, variant: CrcVariant) -> bool:
    """
    Verify that data matches an expected CRC value.

    Args:
        data: Data bytes to verify (without CRC bytes).
        expected_crc: Expected CRC value.
        variant: Checksum algorithm to use.

    Returns:
        True if calculated CRC matches expected, False otherwise.
    """
    return checksum(variant, data) == expected_crc


# =============================================================================
# Reference Values for Testing
# =============================================================================

# Standard catalogue check values: CRC of the ASCII string "123456789"
REFERENCE_CHECK_VALUES: Final[dict[CrcVariant, int]] = {
    CrcVariant.A: 0xBB3D,
    CrcVariant.B: 0x31C3,
}
