"""
Bootloader Packet Codec
=======================

This module builds outbound command packets and frames inbound
responses for the ESC bootloader protocol. It is pure: no I/O, no
timing. The Link feeds it the bytes received so far and asks whether
a complete response is present.

Command Packet
--------------
    ┌──────────┬─────────┬───────────┬──────────┬──────────┬─────────┐
    │ Preamble │ Command │  Address  │  Count   │  Params  │   CRC   │
    │ (opt.)   │ 1 byte  │ 2 B (opt.)│ 1 B opt. │ 0-256 B  │ 2 bytes │
    └──────────┴─────────┴───────────┴──────────┴──────────┴─────────┘

- Address is big-endian and only present when the caller passes one.
- The parameter count is present when the dialect uses it (256 → 0).
- The CRC covers every byte before it except the preamble, unless the
  dialect says otherwise. Its byte order is set by the configuration.

Responses
---------
The caller declares the response shape before decoding; it is never
inferred from the bytes:

    ACK_ONLY:          [echo?] [status]
    ACK_PLUS_PAYLOAD:  [echo?] [status] [payload] [crc:2]
    ECHO_PLUS_PAYLOAD: [echo]  [payload] [crc:2] [status]

The response CRC covers the payload only and is always verified.

NACK Detection
--------------
A device that rejects a command sends a NACK status byte in place of
its normal answer. Where the status leads the frame, a NACK there fails
the decode immediately, without waiting for the rest of the frame to
time out. Payload bytes that happen to equal a NACK value are never
mistaken for one once the status byte has been read.

In the echo dialect the status trails the payload, so the first byte
after the echo is ambiguous: a rejection or the start of a payload.
It is only taken as a NACK when it arrived alone and the line then
went quiet, which the caller signals by decoding with final=True.
"""

import logging
from dataclasses import dataclass
from typing import Final, Optional, Union

from esc_sdk.comms.config import MAX_PARAMS, ProtocolConfig, ResponseShape
from esc_sdk.comms.crc import checksum, crc_from_bytes, crc_to_bytes
from esc_sdk.errors import ChecksumMismatchError, NackError, ProtocolError

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Size of the checksum field in bytes
CRC_SIZE: Final[int] = 2

# Size of the status (ACK/NACK) field in bytes
STATUS_SIZE: Final[int] = 1

ByteSource = Union[bytes, bytearray, list[int], tuple[int, ...]]


# =============================================================================
# Packet and Response Classes
# =============================================================================

@dataclass(frozen=True)
class Packet:
    """
    A single outbound bootloader command.

    Attributes:
        command: Command code (0-255)
        params: Parameter bytes (0-256)
        address: Optional 16-bit target address

    Example:
        packet = Packet(0x04, bytes([32]))
        wire = PacketCodec(BOOTLOADER).encode_packet(packet)
    """

    command: int
    params: bytes = b""
    address: Optional[int] = None

    def __post_init__(self) -> None:
        """Validate packet fields after initialization."""
        if not 0 <= self.command <= 0xFF:
            raise ValueError(f"Command must be 0-255, got {self.command}")

        if not isinstance(self.params, bytes):
            object.__setattr__(self, "params", bytes(self.params))

        if len(self.params) > MAX_PARAMS:
            raise ValueError(
                f"Too many parameters: {len(self.params)} bytes, max {MAX_PARAMS}"
            )

        if self.address is not None and not 0 <= self.address <= 0xFFFF:
            raise ValueError(f"Address must be 0-0xFFFF, got {self.address}")

    def __repr__(self) -> str:
        """Return detailed string representation for debugging."""
        params_repr = (
            self.params[:16].hex() + "..."
            if len(self.params) > 16
            else self.params.hex()
        )
        address = f" addr=0x{self.address:04X}" if self.address is not None else ""
        return (
            f"Packet(cmd=0x{self.command:02X}{address}, "
            f"params[{len(self.params)}]={params_repr})"
        )


@dataclass(frozen=True)
class Response:
    """
    A decoded device response.

    Attributes:
        payload: Data returned by the device (empty for plain ACKs)
        status: The ACK byte that confirmed the command
        length: Number of raw bytes the response occupied, echo included
    """

    payload: bytes
    status: int
    length: int


# =============================================================================
# Helpers
# =============================================================================

def expected_response_length(
    shape: ResponseShape,
    echo_length: int,
    payload_length: int,
) -> int:
    """
    Total number of bytes a complete response of the given shape occupies.

    For ACK_ONLY this is the minimum, since noise before the status byte
    is skipped.
    """
    if shape is ResponseShape.ACK_ONLY:
        return echo_length + STATUS_SIZE
    return echo_length + STATUS_SIZE + payload_length + CRC_SIZE


# =============================================================================
# Packet Codec
# =============================================================================

class PacketCodec:
    """
    Encodes commands and decodes responses for one protocol dialect.

    The codec is stateless apart from its configuration, so one instance
    can be shared by everything talking to the same device.
    """

    def __init__(self, config: ProtocolConfig):
        self.config = config

    # -------------------------------------------------------------------------
    # Encoding
    # -------------------------------------------------------------------------

    def encode(
        self,
        command: int,
        params: ByteSource = b"",
        address: Optional[int] = None,
    ) -> bytes:
        """
        Build the wire bytes for a command.

        Args:
            command: Command code.
            params: Parameter bytes.
            address: Optional 16-bit address, sent big-endian after the
                     command byte.

        Returns:
            Complete packet, checksum included.

        Raises:
            ValueError: If a field is out of range.

        Example:
            >>> PacketCodec(BOOTLOADER).encode(0x30, [0x00]).hex()
            '30001400'
        """
        return self.encode_packet(Packet(command, bytes(params), address))

    def encode_packet(self, packet: Packet) -> bytes:
        """Serialize a Packet for transmission."""
        config = self.config

        body = bytearray([packet.command])
        if packet.address is not None:
            body.extend(packet.address.to_bytes(2, "big"))
        if config.param_count_field:
            body.append(len(packet.params) & 0xFF)
        body.extend(packet.params)

        prefix = bytes([config.preamble]) if config.preamble is not None else b""
        crc_input = prefix + body if config.crc_covers_preamble else bytes(body)
        crc = checksum(config.crc_variant, crc_input)

        wire = prefix + bytes(body) + crc_to_bytes(crc, config.crc_byte_order)

        logger.debug(
            "Encoded %r: wire_len=%d crc=%04X", packet, len(wire), crc
        )
        return wire

    # -------------------------------------------------------------------------
    # Decoding
    # -------------------------------------------------------------------------

    def decode(
        self,
        raw: ByteSource,
        echo_length: int = 0,
        payload_length: int = 0,
        shape: Optional[ResponseShape] = None,
        request: Optional[bytes] = None,
        final: bool = False,
    ) -> Optional[Response]:
        """
        Try to decode a response from the bytes received so far.

        Args:
            raw: All bytes received since the request was sent.
            echo_length: Number of leading echo bytes to strip. For
                         ECHO_PLUS_PAYLOAD this is len(request).
            payload_length: Expected number of payload bytes.
            shape: Expected response shape (default: config.response_shape).
            request: The request that was sent. When given, the echo is
                     compared against it.
            final: True once the line has gone quiet. Only then is a
                   lone NACK value after the echo taken as a rejection;
                   mid-stream it may be the first payload byte.

        Returns:
            Decoded Response, or None if more bytes are needed.

        Raises:
            NackError: If the device rejected the command.
            ChecksumMismatchError: If the payload checksum is wrong.
            ProtocolError: If the echo or status byte is malformed.
        """
        if shape is None:
            shape = self.config.response_shape
        raw = bytes(raw)

        self._check_echo(raw, echo_length, request)
        if len(raw) < echo_length:
            return None

        body = raw[echo_length:]

        if shape is ResponseShape.ACK_ONLY:
            return self._decode_ack_only(body, echo_length)
        if shape is ResponseShape.ACK_PLUS_PAYLOAD:
            return self._decode_ack_plus_payload(body, echo_length, payload_length)
        return self._decode_echo_plus_payload(body, echo_length, payload_length, final)

    def _check_echo(
        self, raw: bytes, echo_length: int, request: Optional[bytes]
    ) -> None:
        """Compare the echo received so far with the request."""
        if request is None or echo_length == 0:
            return
        n = min(len(raw), echo_length, len(request))
        if raw[:n] != request[:n]:
            raise ProtocolError(
                f"Echo mismatch: sent {request[:n].hex()}, read back {raw[:n].hex()}"
            )

    def _decode_ack_only(self, body: bytes, echo_length: int) -> Optional[Response]:
        config = self.config
        for i, byte in enumerate(body):
            if byte == config.ack_byte:
                if i:
                    logger.debug("Skipped %d noise bytes before ACK", i)
                return Response(b"", byte, echo_length + i + 1)
            if byte in config.nack_bytes:
                raise NackError(byte)
        return None

    def _decode_ack_plus_payload(
        self, body: bytes, echo_length: int, payload_length: int
    ) -> Optional[Response]:
        if not body:
            return None

        status = body[0]
        self._check_status(status)

        total = STATUS_SIZE + payload_length + CRC_SIZE
        if len(body) < total:
            return None

        payload = body[STATUS_SIZE:STATUS_SIZE + payload_length]
        crc_bytes = body[STATUS_SIZE + payload_length:total]
        self._verify_payload(payload, crc_bytes)
        return Response(payload, status, echo_length + total)

    def _decode_echo_plus_payload(
        self, body: bytes, echo_length: int, payload_length: int, final: bool
    ) -> Optional[Response]:
        total = payload_length + CRC_SIZE + STATUS_SIZE

        if len(body) < total:
            # Rejection replaces the whole answer with a single status byte
            if final and len(body) == 1 and body[0] in self.config.nack_bytes:
                raise NackError(body[0])
            return None

        payload = body[:payload_length]
        crc_bytes = body[payload_length:payload_length + CRC_SIZE]
        status = body[payload_length + CRC_SIZE]
        self._check_status(status)
        self._verify_payload(payload, crc_bytes)
        return Response(payload, status, echo_length + total)

    def _check_status(self, status: int) -> None:
        """Raise unless the status byte is the configured ACK."""
        if status in self.config.nack_bytes:
            raise NackError(status)
        if status != self.config.ack_byte:
            raise ProtocolError(
                f"Unexpected status byte 0x{status:02X}, "
                f"expected ACK 0x{self.config.ack_byte:02X}"
            )

    def _verify_payload(self, payload: bytes, crc_bytes: bytes) -> None:
        """Verify the transmitted checksum against one recomputed locally."""
        received = crc_from_bytes(crc_bytes, self.config.crc_byte_order)
        calculated = checksum(self.config.crc_variant, payload)
        if received != calculated:
            raise ChecksumMismatchError(expected=calculated, actual=received)
