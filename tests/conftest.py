"""
ESC SDK - Test Configuration
============================

pytest fixtures shared by the test suite.

It provides:
- ScriptedTransport: replays canned responses, one per packet written
- SimulatedEsc: an in-memory bootloader that decodes real packets,
  keeps a configuration block, and can inject timeouts, NACKs and
  corrupt checksums on chosen commands
- A zero-delay protocol configuration so tests run quickly
"""

import time
from collections import deque
from typing import Optional

import pytest

from esc_sdk.comms.config import BOOTLOADER, ProtocolConfig, ResponseShape
from esc_sdk.comms.crc import checksum, crc_from_bytes, crc_to_bytes


# ═══════════════════════════════════════════════════════════════════════════════
# SCRIPTED TRANSPORT
# ═══════════════════════════════════════════════════════════════════════════════


class ScriptedTransport:
    """
    Transport that answers each write with the next scripted response.

    A response may be a list of byte strings, delivered one per read()
    to simulate fragmentation. None means "stay silent".
    """

    def __init__(self, responses=()):
        self.responses = deque(responses)
        self.written: list[bytes] = []
        self.pending: deque = deque()
        self.reads = 0

    def write(self, data: bytes) -> None:
        self.written.append(bytes(data))
        if self.responses:
            response = self.responses.popleft()
            if response is None:
                return
            if isinstance(response, (bytes, bytearray)):
                response = [response]
            self.pending.extend(bytes(piece) for piece in response)

    def read(self, timeout: float) -> bytes:
        self.reads += 1
        if self.pending:
            return self.pending.popleft()
        time.sleep(min(timeout, 0.002))
        return b""


# ═══════════════════════════════════════════════════════════════════════════════
# SIMULATED ESC BOOTLOADER
# ═══════════════════════════════════════════════════════════════════════════════


class SimulatedEsc:
    """
    In-memory ESC bootloader speaking the configured dialect.

    Attributes:
        memory: 64 KiB address space; the configuration block lives at
                config.base_address
        address: Address set by the last set-address command
        log: (command, params) of every packet received
        running: True once the exit command has been received
    """

    def __init__(self, config: ProtocolConfig, image: Optional[bytes] = None):
        self.config = config
        self.memory = bytearray(0x10000)
        self.address = 0
        self.log: list[tuple[int, bytes]] = []
        self.running = False
        self.fragment = 0
        self._faults: dict[tuple[int, int], str] = {}
        self._counts: dict[int, int] = {}
        self._pending = bytearray()
        if image is not None:
            self.load(image)

    # -- test helpers ----------------------------------------------------------

    def load(self, image: bytes) -> None:
        base = self.config.base_address
        self.memory[base:base + len(image)] = image

    @property
    def image(self) -> bytes:
        base = self.config.base_address
        return bytes(self.memory[base:base + self.config.region_length])

    def inject(self, command: int, occurrence: int, fault: str) -> None:
        """
        Misbehave on the n-th (0-based) occurrence of a command.

        fault is one of "timeout", "nack", "corrupt" or "partial".
        """
        self._faults[(command, occurrence)] = fault

    def commands(self, command: int) -> list[bytes]:
        """Parameters of every received packet with this command code."""
        return [params for cmd, params in self.log if cmd == command]

    # -- transport -------------------------------------------------------------

    def write(self, data: bytes) -> None:
        data = bytes(data)
        config = self.config

        body = data
        if config.preamble is not None:
            assert body[0] == config.preamble
            body = body[1:]
        crc_input = data[:-2] if config.crc_covers_preamble else body[:-2]
        received = crc_from_bytes(data[-2:], config.crc_byte_order)
        assert received == checksum(config.crc_variant, crc_input), "bad request CRC"

        command = body[0]
        params = body[1:-2]
        if config.param_count_field:
            params = params[1:]
        self.log.append((command, params))

        occurrence = self._counts.get(command, 0)
        self._counts[command] = occurrence + 1
        fault = self._faults.get((command, occurrence))

        payload, data_command = self._execute(command, params, fault)
        if fault == "timeout":
            return

        shape = config.response_shape if data_command else config.ack_response_shape
        answer = self._frame(payload, shape, fault)
        echo = data if config.echoes_request else b""
        self._pending.extend(echo + answer)

    def read(self, timeout: float) -> bytes:
        if not self._pending:
            time.sleep(min(timeout, 0.002))
            return b""
        size = self.fragment or len(self._pending)
        out = bytes(self._pending[:size])
        del self._pending[:size]
        return out

    # -- bootloader ------------------------------------------------------------

    def _execute(self, command: int, params: bytes, fault: Optional[str]):
        commands = self.config.commands
        if fault in ("nack", "timeout"):
            return b"", command == commands.read
        if command == commands.set_address:
            self.address = int.from_bytes(params[:2], "big")
        elif command == commands.read:
            count = params[0] or 256
            return bytes(self.memory[self.address:self.address + count]), True
        elif command == commands.write:
            self.memory[self.address:self.address + len(params)] = params
        elif command == commands.exit:
            self.running = True
        return b"", False

    def _frame(self, payload: bytes, shape: ResponseShape, fault: Optional[str]) -> bytes:
        config = self.config
        ack = bytes([config.ack_byte])
        if fault == "nack":
            return bytes([0xC1])
        if shape is ResponseShape.ACK_ONLY:
            return ack

        crc = crc_to_bytes(checksum(config.crc_variant, payload), config.crc_byte_order)
        if fault == "corrupt":
            crc = bytes([crc[0] ^ 0xFF, crc[1]])

        if shape is ResponseShape.ACK_PLUS_PAYLOAD:
            frame = ack + payload + crc
        else:
            frame = payload + crc + ack

        if fault == "partial":
            return frame[:len(frame) // 2]
        return frame


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def fast_config() -> ProtocolConfig:
    """Bootloader dialect with no pacing delays and a short timeout."""
    return BOOTLOADER.replace(timeout=0.2, command_delay=0.0, write_delay=0.0)


@pytest.fixture
def sample_image() -> bytes:
    """
    A 176-byte image where every byte is distinct from its neighbours.

    Bytes outside the managed offsets hold their own index, so any
    accidental write to them is easy to spot.
    """
    image = bytearray(i & 0xFF for i in range(176))
    image[0x11] = 1     # reverse
    image[0x14] = 1     # comp_pwm
    image[0x15] = 0     # var_pwm
    image[0x16] = 1     # anti_stuck
    image[0x17] = 15    # timing
    image[0x19] = 5     # power
    image[0x1A] = 49    # kv -> 1980
    image[0x1B] = 14    # poles
    image[0x1C] = 0     # brake_on_stop
    image[0x1D] = 1     # stall_protection
    image[0x1E] = 40    # beep
    image[0x28] = 25    # range
    image[0x29] = 2     # stop_power
    return bytes(image)


@pytest.fixture
def esc(fast_config: ProtocolConfig, sample_image: bytes) -> SimulatedEsc:
    """Simulated bootloader holding sample_image."""
    return SimulatedEsc(fast_config, sample_image)


@pytest.fixture
def make_esc(sample_image: bytes):
    """Factory for simulated bootloaders with a given configuration."""
    def factory(config: ProtocolConfig, image: Optional[bytes] = None) -> SimulatedEsc:
        return SimulatedEsc(config, sample_image if image is None else image)
    return factory


@pytest.fixture
def scripted():
    """Factory for scripted transports."""
    return ScriptedTransport
