"""Tests for the SAM-BA command codec."""

import pytest

from arduino_uploader.core.errors import AckTimeoutError
from arduino_uploader.protocol.bossa_protocol import (
    BossaProtocol,
    BossaProtocolError,
    crc16,
    encode_command,
    transmit_time,
)

from conftest import FakeBossaBoard


def _connected(clock, **kwargs):
    board = FakeBossaBoard(clock, **kwargs)
    board.open(230400)
    return board, BossaProtocol(board, clock, 230400)


def test_encode_command_formats_lowercase_hex_fields():
    assert encode_command("N") == b"N#"
    assert encode_command("X", 0x2000) == b"X00002000#"
    assert encode_command("Y", 0x34, 0) == b"Y00000034,00000000#"
    assert encode_command("S", 0x20001000, 0x1000) == b"S20001000,00001000#"
    assert encode_command("W", 0xABCDEF, 0x400) == b"W00abcdef,00000400#"


def test_crc16_xmodem_check_value():
    assert crc16(b"123456789") == 0x31C3
    assert crc16(b"") == 0


def test_transmit_time_rounds_up_to_milliseconds():
    assert transmit_time(4096, 230400) == pytest.approx(0.178)
    assert transmit_time(1, 115200) == pytest.approx(0.001)


class TestAcks:
    """Acknowledgement handling."""

    def test_ack_matches_anywhere_in_reply(self):
        assert BossaProtocol.ack_matches("Y", b"Y\n\r")
        assert BossaProtocol.ack_matches("Y", b"\rY")
        assert not BossaProtocol.ack_matches("Y", b"X\n\r")
        assert not BossaProtocol.ack_matches("K", b"")

    def test_erase_waits_for_ack(self, clock):
        board, bossa = _connected(clock)
        bossa.chip_erase(0x2000)
        assert board.commands == ["X00002000#"]

    def test_missing_erase_ack_raises_with_context(self, clock):
        _, bossa = _connected(clock, erase_ack=False)

        with pytest.raises(AckTimeoutError) as exc_info:
            bossa.chip_erase(0, timeout=10.0)

        assert exc_info.value.last_command == "X00000000#"
        assert exc_info.value.elapsed == pytest.approx(10.0)

    def test_write_buffer_sends_source_then_commit(self, clock):
        board, bossa = _connected(clock)
        bossa.write_binary(0x34, b"\xaa" * 600)
        bossa.write_buffer(0x34, 0x1000, 600)

        assert board.commands == [
            "S00000034,00000258#",
            "Y00000034,00000000#",
            "Y00001000,00000258#",
        ]
        assert board.flash[0x1000] == b"\xaa" * 600

    def test_payload_streamed_in_sub_chunks(self, clock):
        board, bossa = _connected(clock)
        bossa.write_binary(0, bytes(1300))

        payload_writes = [len(w) for w in board.writes[1:]]
        assert payload_writes == [512, 512, 276]

    def test_reset_without_ack_returns_false(self, clock):
        board, bossa = _connected(clock, reset_ack=False)
        assert bossa.reset() is False
        assert board.commands == ["K#"]

    def test_reset_with_ack(self, clock):
        _, bossa = _connected(clock)
        assert bossa.reset() is True

    def test_go_sends_jump_without_waiting(self, clock):
        board, bossa = _connected(clock)
        bossa.go(0x4000)
        assert board.commands == ["G00004000#"]


class TestHandshake:
    """N# / V# / I# handshake."""

    def test_hello_returns_version(self, clock):
        board, bossa = _connected(clock, info=b"nRF52840-QIAA\n\r")

        version = bossa.hello()

        assert version.startswith("Arduino Bootloader")
        assert board.commands == ["N#", "V#", "I#"]

    def test_hello_retries_after_missing_version(self, clock):
        board, bossa = _connected(clock, version_failures=1)

        version = bossa.hello()

        assert version.startswith("Arduino Bootloader")
        assert board.commands.count("V#") == 2

    def test_hello_gives_up_after_three_attempts(self, clock):
        board, bossa = _connected(clock, version_failures=5)

        with pytest.raises(BossaProtocolError):
            bossa.hello()

        assert board.commands.count("V#") == 3

    def test_read_info_is_optional(self, clock):
        _, bossa = _connected(clock)
        assert bossa.read_info() is None


def test_verify_compares_device_crc(clock):
    board, bossa = _connected(clock)
    data = bytes(range(256)) * 16
    bossa.write_binary(0x34, data)
    bossa.write_buffer(0x34, 0, len(data))

    assert bossa.checksum(0, len(data)) == crc16(data)
    assert bossa.verify(0, data)
    assert not bossa.verify(0, b"\xff" + data[1:])
