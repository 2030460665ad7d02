"""
ESC Settings Codec
==================

This module maps the flat configuration image read from the ESC to a
typed SettingsRecord and back.

Image Layout
------------
Each managed setting lives in one byte at a fixed offset:

    Offset  Field               Encoding
    ------  ------------------  ------------------------------------
    0x11    reverse             boolean (1 = on)
    0x14    comp_pwm            boolean
    0x15    var_pwm             boolean
    0x16    anti_stuck          boolean
    0x17    timing              raw 0-255
    0x19    power               raw 0-255 (startup power)
    0x1A    kv                  scaled: kv = raw * 40 + 20
    0x1B    poles               raw 0-255
    0x1C    brake_on_stop       boolean
    0x1D    stall_protection    boolean
    0x1E    beep                raw 0-255 (beep volume)
    0x28    range               raw 0-255 (sine range)
    0x29    stop_power          raw 0-255 (brake strength)

Booleans decode as True only when the byte is exactly 1. KV is lossy:
2000 encodes to (2000 - 20) // 40 = 49, which decodes back as 1980.

Every byte not listed above is preserved untouched on encode, so a
write never disturbs device state this codec does not understand.

Ramp
----
The device has no known byte for the throttle ramp. ``ramp`` is carried
in the record for callers that display it, but it is never encoded,
never decoded, and does not take part in record equality.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Final, Mapping, Optional

from esc_sdk.comms.config import DEFAULT_REGION_LENGTH
from esc_sdk.errors import SettingsError

logger = logging.getLogger(__name__)


# =============================================================================
# Offset Maps
# =============================================================================

OFFSETS: Final[Mapping[str, int]] = MappingProxyType({
    "reverse": 0x11,
    "comp_pwm": 0x14,
    "var_pwm": 0x15,
    "anti_stuck": 0x16,
    "timing": 0x17,
    "power": 0x19,
    "kv": 0x1A,
    "poles": 0x1B,
    "brake_on_stop": 0x1C,
    "stall_protection": 0x1D,
    "beep": 0x1E,
    "range": 0x28,
    "stop_power": 0x29,
})

# Shortest image that holds every managed offset
MIN_IMAGE_LENGTH: Final[int] = max(OFFSETS.values()) + 1

# Known EEPROM bytes that are reported but never written
EXTENDED_OFFSETS: Final[Mapping[str, int]] = MappingProxyType({
    "bidirectional": 0x12,
    "sine_mode": 0x13,
    "pwm_frequency": 0x18,
    "low_voltage_cutoff": 0x24,
})

NUMERIC_FIELDS: Final[tuple[str, ...]] = (
    "power", "range", "stop_power", "timing", "beep", "kv", "poles",
)

BOOLEAN_FIELDS: Final[tuple[str, ...]] = (
    "brake_on_stop", "reverse", "comp_pwm", "var_pwm",
    "stall_protection", "anti_stuck",
)

# Flags forced on in a synthesised image
SAFETY_FIELDS: Final[tuple[str, ...]] = ("comp_pwm", "stall_protection", "anti_stuck")

# KV scaling: kv = raw * KV_STEP + KV_OFFSET
KV_STEP: Final[int] = 40
KV_OFFSET: Final[int] = 20

_TRUE_WORDS: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


# =============================================================================
# Settings Record
# =============================================================================

@dataclass(frozen=True)
class SettingsRecord:
    """
    Typed view of the ESC configuration.

    The defaults describe the synthesised default image, so
    ``SettingsRecord() == decode_settings(default_image())``.
    """

    power: int = 0
    range: int = 0
    stop_power: int = 0
    timing: int = 0
    beep: int = 0
    kv: int = KV_OFFSET
    poles: int = 0
    brake_on_stop: bool = False
    reverse: bool = False
    comp_pwm: bool = True
    var_pwm: bool = False
    stall_protection: bool = True
    anti_stuck: bool = True
    ramp: float = field(default=0.0, compare=False)

    def replace(self, **changes: Any) -> "SettingsRecord":
        """
        Return a copy with the given fields changed.

        Raises:
            SettingsError: If a field name is unknown.
        """
        unknown = set(changes) - set(field_names())
        if unknown:
            raise SettingsError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SettingsRecord":
        """
        Build a record from a mapping, e.g. one loaded from JSON.

        Missing fields take their defaults; string values are parsed
        with parse_field().

        Raises:
            SettingsError: On unknown fields or unparseable values.
        """
        values = {}
        for name, value in data.items():
            values[name] = parse_field(name, value) if isinstance(value, str) else value
        return cls().replace(**values)


def field_names() -> tuple[str, ...]:
    """Names of all SettingsRecord fields, in declaration order."""
    return tuple(f.name for f in dataclasses.fields(SettingsRecord))


def parse_field(name: str, text: str) -> Any:
    """
    Convert user text to the type a field holds.

    Booleans accept 1/0, true/false, yes/no and on/off.

    Raises:
        SettingsError: If the field is unknown or the text does not parse.
    """
    text = text.strip()
    if name in BOOLEAN_FIELDS:
        word = text.lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
        raise SettingsError(f"Invalid value for {name}: {text!r} (expected on/off)")
    if name in NUMERIC_FIELDS:
        try:
            return int(text, 0)
        except ValueError:
            raise SettingsError(f"Invalid value for {name}: {text!r} (expected integer)")
    if name == "ramp":
        try:
            return float(text)
        except ValueError:
            raise SettingsError(f"Invalid value for ramp: {text!r} (expected number)")
    raise SettingsError(f"Unknown setting: {name}")


# =============================================================================
# Value Encoding
# =============================================================================

def kv_to_raw(kv: float) -> int:
    """
    Encode a KV rating as its stored byte.

    Values below 20 clamp to 0 and values above 10220 clamp to 255;
    everything in between truncates towards zero.

    Example:
        >>> kv_to_raw(2000)
        49
    """
    raw = int(max(0, (kv - KV_OFFSET) / KV_STEP))
    return min(raw, 0xFF)


def raw_to_kv(raw: int) -> int:
    """
    Decode a stored byte to a KV rating.

    Example:
        >>> raw_to_kv(49)
        1980
    """
    return raw * KV_STEP + KV_OFFSET


def _numeric_byte(name: str, value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise SettingsError(f"{name} must be an integer, got {value!r}")
    if not 0 <= number <= 0xFF:
        raise SettingsError(f"{name} must be 0-255, got {number}")
    return number


def _check_image(image: bytes, expected_length: Optional[int]) -> bytes:
    image = bytes(image)
    if expected_length is not None and len(image) != expected_length:
        raise SettingsError(
            f"Image must be {expected_length} bytes, got {len(image)}"
        )
    if len(image) < MIN_IMAGE_LENGTH:
        raise SettingsError(
            f"Image too short: {len(image)} bytes, need {MIN_IMAGE_LENGTH}"
        )
    return image


# =============================================================================
# Codec
# =============================================================================

def decode_settings(
    image: bytes,
    expected_length: Optional[int] = DEFAULT_REGION_LENGTH,
) -> SettingsRecord:
    """
    Decode a configuration image.

    Args:
        image: Complete configuration image.
        expected_length: Required image length (None to skip the check).

    Returns:
        SettingsRecord with ramp left at its default.

    Raises:
        SettingsError: If the image has the wrong length.
    """
    image = _check_image(image, expected_length)

    values: dict[str, Any] = {}
    for name in NUMERIC_FIELDS:
        values[name] = image[OFFSETS[name]]
    for name in BOOLEAN_FIELDS:
        values[name] = image[OFFSETS[name]] == 1
    values["kv"] = raw_to_kv(image[OFFSETS["kv"]])

    return SettingsRecord(**values)


def encode_settings(
    image: bytes,
    record: SettingsRecord,
    expected_length: Optional[int] = DEFAULT_REGION_LENGTH,
) -> bytes:
    """
    Merge a record into a copy of an image.

    Only the bytes in OFFSETS are overwritten; every other byte of
    ``image`` is copied unchanged. The input is never modified.

    Args:
        image: Last known configuration image.
        record: Settings to store.
        expected_length: Required image length (None to skip the check).

    Returns:
        New image.

    Raises:
        SettingsError: If the image has the wrong length or a numeric
                       value does not fit in a byte.
    """
    out = bytearray(_check_image(image, expected_length))

    for name in NUMERIC_FIELDS:
        if name == "kv":
            out[OFFSETS[name]] = kv_to_raw(record.kv)
        else:
            out[OFFSETS[name]] = _numeric_byte(name, getattr(record, name))
    for name in BOOLEAN_FIELDS:
        out[OFFSETS[name]] = 1 if getattr(record, name) else 0

    return bytes(out)


def default_image(length: int = DEFAULT_REGION_LENGTH) -> bytes:
    """
    Synthesise a safe image for when no device image is known.

    All bytes are zero except the safety flags (comp_pwm,
    stall_protection, anti_stuck), which are set to 1.

    Raises:
        SettingsError: If length cannot hold every managed offset.
    """
    if length < MIN_IMAGE_LENGTH:
        raise SettingsError(
            f"Default image of {length} bytes is too short, need {MIN_IMAGE_LENGTH}"
        )
    image = bytearray(length)
    for name in SAFETY_FIELDS:
        image[OFFSETS[name]] = 1
    return bytes(image)


# =============================================================================
# Diagnostics
# =============================================================================

def read_extended(image: bytes) -> dict[str, int]:
    """Raw values of the known bytes the codec does not manage."""
    return {
        name: image[offset]
        for name, offset in EXTENDED_OFFSETS.items()
        if offset < len(image)
    }


def changed_offsets(old: bytes, new: bytes) -> list[int]:
    """
    Offsets at which two images differ.

    Raises:
        SettingsError: If the images differ in length.
    """
    if len(old) != len(new):
        raise SettingsError(
            f"Cannot compare images of {len(old)} and {len(new)} bytes"
        )
    return [i for i, (a, b) in enumerate(zip(old, new)) if a != b]


def offset_name(offset: int) -> Optional[str]:
    """Field name stored at an offset, if it is a known one."""
    for mapping in (OFFSETS, EXTENDED_OFFSETS):
        for name, value in mapping.items():
            if value == offset:
                return name
    return None
