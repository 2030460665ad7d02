"""
Tests for the Settings Codec
============================

Covers offset decoding, KV scaling, encode/decode round trips that must
leave unmanaged bytes untouched, the default image and the record
helpers.
"""

import pytest

from esc_sdk.errors import SettingsError
from esc_sdk.settings import (
    BOOLEAN_FIELDS,
    EXTENDED_OFFSETS,
    NUMERIC_FIELDS,
    OFFSETS,
    SettingsRecord,
    changed_offsets,
    decode_settings,
    default_image,
    encode_settings,
    field_names,
    kv_to_raw,
    offset_name,
    parse_field,
    raw_to_kv,
    read_extended,
)


# =============================================================================
# Offset Map
# =============================================================================

class TestOffsetMap:
    """Tests for the offset tables."""

    def test_offsets(self):
        assert OFFSETS["reverse"] == 0x11
        assert OFFSETS["kv"] == 0x1A
        assert OFFSETS["range"] == 0x28
        assert OFFSETS["stop_power"] == 0x29

    def test_offsets_unique(self):
        offsets = list(OFFSETS.values()) + list(EXTENDED_OFFSETS.values())
        assert len(offsets) == len(set(offsets))

    def test_offsets_immutable(self):
        with pytest.raises(TypeError):
            OFFSETS["ramp"] = 0x30

    def test_every_managed_field_has_an_offset(self):
        assert set(NUMERIC_FIELDS) | set(BOOLEAN_FIELDS) == set(OFFSETS)

    def test_ramp_has_no_offset(self):
        assert "ramp" not in OFFSETS


# =============================================================================
# KV Scaling
# =============================================================================

class TestKvScaling:
    """Tests for the scaled KV byte."""

    def test_2000_encodes_to_49(self):
        assert kv_to_raw(2000) == 49

    def test_49_decodes_to_1980(self):
        """The round trip is lossy by design of the stored format."""
        assert raw_to_kv(49) == 1980

    def test_below_offset_clamps_to_zero(self):
        assert kv_to_raw(0) == 0
        assert kv_to_raw(19) == 0

    def test_truncates(self):
        assert kv_to_raw(59) == 0
        assert kv_to_raw(60) == 1

    def test_caps_at_255(self):
        assert kv_to_raw(20000) == 255

    def test_exact_values_round_trip(self):
        for raw in (0, 1, 49, 100, 255):
            assert kv_to_raw(raw_to_kv(raw)) == raw


# =============================================================================
# Decoding
# =============================================================================

class TestDecode:
    """Tests for decode_settings()."""

    def test_decode_sample(self, sample_image):
        record = decode_settings(sample_image)
        assert record.power == 5
        assert record.range == 25
        assert record.stop_power == 2
        assert record.timing == 15
        assert record.beep == 40
        assert record.kv == 1980
        assert record.poles == 14
        assert record.reverse is True
        assert record.comp_pwm is True
        assert record.var_pwm is False
        assert record.brake_on_stop is False

    def test_boolean_only_true_for_one(self):
        image = bytearray(176)
        image[OFFSETS["reverse"]] = 2
        image[OFFSETS["comp_pwm"]] = 0xFF
        image[OFFSETS["var_pwm"]] = 1
        record = decode_settings(bytes(image))
        assert record.reverse is False
        assert record.comp_pwm is False
        assert record.var_pwm is True

    def test_wrong_length(self):
        with pytest.raises(SettingsError, match="176"):
            decode_settings(bytes(100))

    def test_length_check_optional(self):
        record = decode_settings(bytes(0x30), expected_length=None)
        assert record.kv == 20

    def test_too_short_for_offsets(self):
        with pytest.raises(SettingsError, match="too short"):
            decode_settings(bytes(0x20), expected_length=None)


# =============================================================================
# Encoding
# =============================================================================

class TestEncode:
    """Tests for encode_settings()."""

    def test_round_trip_reproduces_image(self, sample_image):
        """encode(image, decode(image)) reproduces every byte."""
        assert encode_settings(sample_image, decode_settings(sample_image)) == sample_image

    def test_decode_of_encode_is_record(self, sample_image):
        record = SettingsRecord(
            power=10, range=30, stop_power=3, timing=22, beep=80, kv=4020,
            poles=12, brake_on_stop=True, reverse=False, comp_pwm=False,
            var_pwm=True, stall_protection=False, anti_stuck=True,
        )
        assert decode_settings(encode_settings(sample_image, record)) == record

    def test_unmanaged_bytes_untouched(self, sample_image):
        record = decode_settings(sample_image).replace(timing=30, beep=1, reverse=False)
        image = encode_settings(sample_image, record)
        managed = set(OFFSETS.values())
        for offset in range(len(sample_image)):
            if offset not in managed:
                assert image[offset] == sample_image[offset], f"offset 0x{offset:02X}"

    def test_only_changed_bytes_differ(self, sample_image):
        record = decode_settings(sample_image).replace(timing=30)
        image = encode_settings(sample_image, record)
        assert changed_offsets(sample_image, image) == [OFFSETS["timing"]]

    def test_kv_encoded(self, sample_image):
        image = encode_settings(sample_image, SettingsRecord(kv=2000))
        assert image[OFFSETS["kv"]] == 49

    def test_booleans_encode_as_zero_or_one(self):
        image = bytearray(176)
        image[OFFSETS["reverse"]] = 7
        out = encode_settings(bytes(image), decode_settings(bytes(image)))
        assert out[OFFSETS["reverse"]] == 0
        out = encode_settings(bytes(image), SettingsRecord(reverse=True))
        assert out[OFFSETS["reverse"]] == 1

    def test_out_of_range_value(self, sample_image):
        with pytest.raises(SettingsError, match="timing must be 0-255"):
            encode_settings(sample_image, SettingsRecord(timing=256))
        with pytest.raises(SettingsError):
            encode_settings(sample_image, SettingsRecord(power=-1))

    def test_non_integer_value(self, sample_image):
        with pytest.raises(SettingsError, match="integer"):
            encode_settings(sample_image, SettingsRecord(beep="loud"))

    def test_input_not_mutated(self, sample_image):
        image = bytearray(sample_image)
        encode_settings(image, SettingsRecord(timing=1))
        assert bytes(image) == sample_image

    def test_ramp_not_persisted(self, sample_image):
        a = encode_settings(sample_image, SettingsRecord(ramp=1.1))
        b = encode_settings(sample_image, SettingsRecord(ramp=9.9))
        assert a == b


# =============================================================================
# Default Image
# =============================================================================

class TestDefaultImage:
    """Tests for default_image()."""

    def test_safety_flags_set(self):
        image = default_image()
        assert len(image) == 176
        for name in ("comp_pwm", "stall_protection", "anti_stuck"):
            assert image[OFFSETS[name]] == 1

    def test_everything_else_zero(self):
        image = default_image()
        safety = {OFFSETS[n] for n in ("comp_pwm", "stall_protection", "anti_stuck")}
        assert all(b == 0 for i, b in enumerate(image) if i not in safety)

    def test_matches_default_record(self):
        assert decode_settings(default_image()) == SettingsRecord()

    def test_shortest_length(self):
        assert len(default_image(0x2A)) == 0x2A

    @pytest.mark.parametrize("length", [0, 16, 0x29])
    def test_too_short(self, length):
        with pytest.raises(SettingsError, match="too short"):
            default_image(length)


# =============================================================================
# Record Helpers
# =============================================================================

class TestSettingsRecord:
    """Tests for SettingsRecord helpers."""

    def test_ramp_excluded_from_equality(self):
        assert SettingsRecord(ramp=1.1) == SettingsRecord(ramp=2.5)

    def test_replace(self):
        record = SettingsRecord().replace(timing=15)
        assert record.timing == 15

    def test_replace_unknown_field(self):
        with pytest.raises(SettingsError, match="Unknown"):
            SettingsRecord().replace(throttle=1)

    def test_frozen(self):
        with pytest.raises(AttributeError):
            SettingsRecord().timing = 1

    def test_dict_round_trip(self):
        record = SettingsRecord(power=5, kv=1980, reverse=True, ramp=1.1)
        restored = SettingsRecord.from_dict(record.to_dict())
        assert restored == record
        assert restored.ramp == 1.1

    def test_from_dict_parses_strings(self):
        record = SettingsRecord.from_dict({"timing": "15", "reverse": "on"})
        assert record.timing == 15
        assert record.reverse is True

    def test_field_names(self):
        assert field_names()[0] == "power"
        assert "ramp" in field_names()


class TestParseField:
    """Tests for parse_field()."""

    @pytest.mark.parametrize("text", ["1", "true", "Yes", "ON"])
    def test_true_words(self, text):
        assert parse_field("reverse", text) is True

    @pytest.mark.parametrize("text", ["0", "false", "no", "off"])
    def test_false_words(self, text):
        assert parse_field("reverse", text) is False

    def test_integer(self):
        assert parse_field("timing", " 15 ") == 15
        assert parse_field("beep", "0x28") == 40

    def test_ramp_float(self):
        assert parse_field("ramp", "1.1") == pytest.approx(1.1)

    def test_invalid(self):
        with pytest.raises(SettingsError):
            parse_field("reverse", "maybe")
        with pytest.raises(SettingsError):
            parse_field("timing", "fast")
        with pytest.raises(SettingsError, match="Unknown"):
            parse_field("throttle", "1")


# =============================================================================
# Diagnostics
# =============================================================================

class TestDiagnostics:
    """Tests for read_extended(), changed_offsets() and offset_name()."""

    def test_read_extended(self, sample_image):
        values = read_extended(sample_image)
        assert values == {
            "bidirectional": 0x12,
            "sine_mode": 0x13,
            "pwm_frequency": 0x18,
            "low_voltage_cutoff": 0x24,
        }

    def test_changed_offsets_length_mismatch(self):
        with pytest.raises(SettingsError):
            changed_offsets(bytes(2), bytes(3))

    def test_offset_name(self):
        assert offset_name(0x17) == "timing"
        assert offset_name(0x24) == "low_voltage_cutoff"
        assert offset_name(0x00) is None
