"""
Tests for the Error Hierarchy and CLI Error Handling
====================================================
"""

import builtins

import click
import pytest

from esc_sdk.cli.errors import ExitCode, handle_cli_exception
from esc_sdk.errors import (
    ChecksumMismatchError,
    CommsError,
    EscError,
    IncompleteTransferError,
    NackError,
    ProtocolError,
    SettingsError,
    TimeoutError,
    TransferCancelledError,
    TransportError,
)


class TestHierarchy:
    """Tests for exception inheritance."""

    @pytest.mark.parametrize("cls", [
        TimeoutError, NackError, ChecksumMismatchError, IncompleteTransferError,
    ])
    def test_protocol_errors(self, cls):
        assert issubclass(cls, ProtocolError)
        assert issubclass(cls, CommsError)

    def test_transport_is_not_protocol(self):
        assert not issubclass(TransportError, ProtocolError)
        assert issubclass(TransferCancelledError, CommsError)

    def test_all_sdk_errors(self):
        for cls in (SettingsError, CommsError, ProtocolError):
            assert issubclass(cls, EscError)

    def test_distinct_from_builtin_timeout(self):
        assert not issubclass(TimeoutError, builtins.TimeoutError)


class TestProgressAnnotation:
    """Tests for ProtocolError.annotate()."""

    def test_message_without_chunk(self):
        assert str(NackError(0xC1)) == "Device rejected command (NACK 0xC1)"

    def test_annotate_returns_same_error(self):
        error = ChecksumMismatchError(0x1234, 0x4321)
        assert error.annotate(3, 96, 3) is error
        assert error.chunk_index == 3
        assert str(error) == (
            "Checksum mismatch: expected 1234, got 4321 (chunk 3, 96 bytes transferred)"
        )

    def test_incomplete_defaults_bytes_transferred(self):
        error = IncompleteTransferError(64, 176)
        assert error.bytes_transferred == 64
        assert str(error) == "Incomplete transfer: received 64 of 176 bytes"


class TestHandleCliException:
    """Tests for exit code mapping."""

    @pytest.mark.parametrize("error,code", [
        (SettingsError("bad"), ExitCode.DEVICE_ERROR),
        (NackError(0xC2), ExitCode.DEVICE_ERROR),
        (TransportError("unplugged"), ExitCode.DEVICE_ERROR),
        (click.BadParameter("nope"), ExitCode.INVALID_ARGS),
        (ValueError("Invalid baud rate"), ExitCode.INVALID_ARGS),
        (KeyError("Unknown protocol preset"), ExitCode.INVALID_ARGS),
        (FileNotFoundError("missing"), ExitCode.INVALID_ARGS),
        (RuntimeError("boom"), ExitCode.INTERNAL_ERROR),
    ])
    def test_exit_codes(self, error, code):
        with pytest.raises(SystemExit) as exc_info:
            handle_cli_exception(error)
        assert exc_info.value.code == code

    def test_prints_cause(self, capsys):
        error = IncompleteTransferError(32, 176)
        error.__cause__ = TimeoutError("No complete response")
        with pytest.raises(SystemExit):
            handle_cli_exception(error, error_type="Read")
        err = capsys.readouterr().err
        assert "Read error: Incomplete transfer" in err
        assert "caused by: No complete response" in err
