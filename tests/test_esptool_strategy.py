"""Tests for the ESP ROM loader protocol and upload strategy."""

import struct

import pytest

from arduino_uploader.core.errors import AckTimeoutError, SyncFailureError, UploadError
from arduino_uploader.core.firmware import FirmwareImage
from arduino_uploader.models import resolve_board
from arduino_uploader.protocol.esptool_protocol import (
    OP_FLASH_BEGIN,
    OP_FLASH_DATA,
    OP_FLASH_END,
    OP_SYNC,
    EspProtocolError,
    build_command,
    checksum,
    erase_timeout,
    flash_end_payload,
    pad_block,
    parse_response,
)
from arduino_uploader.strategies.base import FlashOptions
from arduino_uploader.strategies.esptool import EspToolStrategy

from conftest import FakeEspBoard

ESP32 = resolve_board("esp32:esp32:esp32")
ESP8266 = resolve_board("esp8266:esp8266:nodemcuv2")

IMAGE = FirmwareImage(bytes(range(200)) * 12, name="sketch.bin")  # 2400 bytes, 3 blocks


class TestCodec:
    """Packet building and parsing."""

    def test_checksum_seeded_xor(self):
        assert checksum(b"") == 0xEF
        assert checksum(b"\xef") == 0x00
        assert checksum(b"\x01\x02") == 0xEF ^ 0x01 ^ 0x02

    def test_build_command_header(self):
        packet = build_command(OP_SYNC, b"\x01\x02", chk=7)
        assert packet == struct.pack("<BBHI", 0, 0x08, 2, 7) + b"\x01\x02"

    def test_parse_response_status(self):
        ok = struct.pack("<BBHI", 1, OP_FLASH_DATA, 4, 0x1234) + bytes(4)
        failed = struct.pack("<BBHI", 1, OP_FLASH_DATA, 4, 0) + b"\x01\x06\x00\x00"

        response = parse_response(ok)
        assert response.opcode == OP_FLASH_DATA
        assert response.value == 0x1234
        assert not response.failed
        assert parse_response(failed).failed
        assert parse_response(failed).error == 0x06

    def test_parse_response_esp8266_status_length(self):
        packet = struct.pack("<BBHI", 1, OP_SYNC, 2, 0) + b"\x00\x00"
        assert not parse_response(packet, status_bytes=2).failed

    def test_requests_are_not_responses(self):
        assert parse_response(build_command(OP_SYNC)) is None

    def test_short_packet_rejected(self):
        with pytest.raises(EspProtocolError):
            parse_response(b"\x01\x08")

    def test_erase_timeout_scales_with_size(self):
        assert erase_timeout(1000) == 3.0
        assert erase_timeout(4_000_000) == pytest.approx(120.0)

    def test_flash_end_payload_reboot_flag(self):
        assert flash_end_payload(reboot=True) == b"\x00\x00\x00\x00"
        assert flash_end_payload(reboot=False) == b"\x01\x00\x00\x00"

    def test_pad_block_fills_with_erased_bytes(self):
        assert pad_block(b"\x01\x02", 4) == b"\x01\x02\xff\xff"
        assert pad_block(b"\x01\x02\x03\x04", 4) == b"\x01\x02\x03\x04"


class TestBootloaderEntry:
    """DTR/RTS reset sequence."""

    def test_prepare_runs_three_step_sequence(self, esp_board, clock):
        EspToolStrategy(clock).prepare(esp_board, ESP32)

        assert esp_board.signals == [(False, True), (True, False), (False, False)]
        assert esp_board.opened_bauds == [115200]
        assert not esp_board.is_open
        for delay in (0.1, 1.2):
            assert delay in clock.sleeps


class TestFlash:
    """Full ESP flash sequence."""

    def test_command_sequence(self, esp_board, clock):
        outcome = EspToolStrategy(clock).flash(esp_board, IMAGE, None, ESP32)

        ops = esp_board.opcodes()
        assert ops == [OP_SYNC, OP_FLASH_BEGIN, OP_FLASH_DATA, OP_FLASH_DATA, OP_FLASH_DATA, OP_FLASH_END]
        assert outcome.chunks == 3
        assert outcome.bytes_written == 3 * 0x400
        assert outcome.warnings == []
        assert not esp_board.is_open

    def test_flash_begin_parameters(self, esp_board, clock):
        EspToolStrategy(clock).flash(esp_board, IMAGE, None, ESP32)

        _, payload, _ = esp_board.requests[1]
        assert struct.unpack("<IIII", payload) == (2400, 3, 0x400, 0x10000)

    def test_data_blocks_padded_and_checksummed(self, esp_board, clock):
        EspToolStrategy(clock).flash(esp_board, IMAGE, None, ESP32)

        blocks = [r for r in esp_board.requests if r[0] == OP_FLASH_DATA]
        for sequence, (_, payload, chk) in enumerate(blocks):
            size, seq, _, _ = struct.unpack_from("<IIII", payload)
            data = payload[16:]
            assert seq == sequence
            assert size == len(data) == 0x400
            assert chk == checksum(data)
        assert blocks[-1][1][16:].endswith(b"\xff" * (3 * 0x400 - 2400))

    def test_esp8266_uses_offset_zero_and_short_status(self, clock):
        board = FakeEspBoard(clock, status_bytes=2)

        EspToolStrategy(clock).flash(board, IMAGE, None, ESP8266)

        _, payload, _ = board.requests[1]
        assert struct.unpack("<IIII", payload)[3] == 0

    def test_offset_override(self, esp_board, clock):
        EspToolStrategy(clock).flash(esp_board, IMAGE, None, ESP32, FlashOptions(flash_offset=0x20000))

        _, payload, _ = esp_board.requests[1]
        assert struct.unpack("<IIII", payload)[3] == 0x20000

    def test_progress_reaches_100(self, esp_board, clock):
        seen = []
        EspToolStrategy(clock).flash(esp_board, IMAGE, lambda p, m: seen.append(p), ESP32)
        assert seen == sorted(seen)
        assert seen[-1] == 100


class TestFailures:
    """Sync and command failures."""

    def test_sync_failure_after_ten_attempts(self, clock):
        board = FakeEspBoard(clock, sync_ok=False)

        with pytest.raises(SyncFailureError):
            EspToolStrategy(clock).flash(board, IMAGE, None, ESP32)

        assert board.opcodes() == [OP_SYNC] * 10
        assert not board.is_open

    def test_silent_data_block_is_ack_timeout(self, clock):
        board = FakeEspBoard(clock, silent_ops=(OP_FLASH_DATA,))

        with pytest.raises(AckTimeoutError):
            EspToolStrategy(clock).flash(board, IMAGE, None, ESP32)

        assert not board.is_open

    def test_failure_status_raises_upload_error(self, clock):
        board = FakeEspBoard(clock, failing_ops=(OP_FLASH_BEGIN,))

        with pytest.raises(UploadError) as exc_info:
            EspToolStrategy(clock).flash(board, IMAGE, None, ESP32)

        assert not isinstance(exc_info.value, AckTimeoutError)
        assert OP_FLASH_DATA not in board.opcodes()

    def test_missing_flash_end_reply_is_a_warning(self, clock):
        board = FakeEspBoard(clock, silent_ops=(OP_FLASH_END,))

        outcome = EspToolStrategy(clock).flash(board, IMAGE, None, ESP32)

        assert len(outcome.warnings) == 1
        assert "FLASH_END" in outcome.warnings[0]


def test_probe_syncs_without_writing(esp_board, clock):
    result = EspToolStrategy(clock).probe(esp_board, ESP32)

    assert result.baudrate == 115200
    assert esp_board.opcodes() == [OP_SYNC]
    assert not esp_board.is_open
