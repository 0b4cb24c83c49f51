"""Tests for the BOSSA upload strategy against a simulated bootloader."""

import pytest

from arduino_uploader.core.errors import (
    AckTimeoutError,
    ManualInterventionRequired,
    NoResponseError,
    UserCancelledError,
)
from arduino_uploader.core.firmware import FirmwareImage
from arduino_uploader.models import RENESAS_FLASH_APPLET, resolve_board
from arduino_uploader.strategies.base import CallbackPrompt, FlashOptions
from arduino_uploader.strategies.bossa import BossaStrategy

from conftest import FakeBossaBoard

SAMD = resolve_board("arduino:samd:mkrwifi1010")
RENESAS = resolve_board("arduino:renesas_uno:unor4wifi")

# 63 KiB, so the last 4 KiB chunk is partial before padding
IMAGE = FirmwareImage(bytes(range(256)) * 252, name="sketch.bin")


class TestPrepare:
    """1200 baud touch and bootloader PID short-circuit."""

    def test_touch_sequence(self, bossa_board, clock):
        BossaStrategy(clock).prepare(bossa_board, SAMD)

        assert bossa_board.opened_bauds == [1200, 1200]
        assert bossa_board.signals == [(True, True), (False, True)]
        assert not bossa_board.is_open
        assert 0.5 in clock.sleeps

    def test_bootloader_pid_skips_touch(self, clock):
        board = FakeBossaBoard(clock, product_id=0x006D)

        BossaStrategy(clock).prepare(board, RENESAS)

        assert board.events == []


class TestFlash:
    """Full flash sequence."""

    def test_command_counts_and_order(self, bossa_board, clock):
        outcome = BossaStrategy(clock).flash(bossa_board, IMAGE, None, SAMD)

        chunks = 16
        letters = bossa_board.letters()
        assert letters.count("X") == 1
        assert letters.count("S") == chunks
        assert letters.count("Y") == 2 * chunks
        assert letters.count("K") == 1
        assert letters.index("X") < letters.index("S")
        assert letters.rstrip("K").endswith("SYY" + "N")
        assert letters.endswith("K")
        assert "SYY" * chunks in letters
        assert outcome.chunks == chunks
        assert outcome.bytes_written == 16 * 4096

    def test_chunks_written_to_contiguous_offsets(self, bossa_board, clock):
        BossaStrategy(clock).flash(bossa_board, IMAGE, None, SAMD)

        commits = [c for c in bossa_board.commands if c.startswith("Y") and not c.endswith(",00000000#")]
        assert commits[0] == "Y00002000,00001000#"
        assert commits[-1] == "Y00011000,00001000#"
        assert sorted(bossa_board.flash) == [0x2000 + i * 4096 for i in range(16)]

    def test_last_chunk_padded_with_erased_bytes(self, bossa_board, clock):
        BossaStrategy(clock).flash(bossa_board, IMAGE, None, SAMD)

        last = bossa_board.flash[0x11000]
        assert last[:3072] == IMAGE.data[15 * 4096:]
        assert last[3072:] == b"\xff" * 1024

    def test_outcome_reports_detected_rate_and_version(self, bossa_board, clock):
        outcome = BossaStrategy(clock).flash(bossa_board, IMAGE, None, SAMD)

        assert outcome.baudrate == 230400
        assert outcome.version.startswith("Arduino Bootloader")
        assert outcome.warnings == []
        assert outcome.verified is None

    def test_session_takes_the_fallback_rate(self, clock):
        board = FakeBossaBoard(clock, device_baud=115200)

        outcome = BossaStrategy(clock).flash(board, IMAGE, None, SAMD)

        assert outcome.baudrate == 115200
        assert outcome.version.endswith("[Arduino:IKXYZ]")
        assert board.baudrate == 115200

    def test_transport_closed_after_flash(self, bossa_board, clock):
        BossaStrategy(clock).flash(bossa_board, IMAGE, None, SAMD)
        assert not bossa_board.is_open

    def test_progress_is_monotonic_and_completes(self, bossa_board, clock):
        seen = []
        BossaStrategy(clock).flash(bossa_board, IMAGE, lambda p, m: seen.append(p), SAMD)

        assert seen == sorted(seen)
        assert seen[-1] == 100
        assert all(0 <= p <= 100 for p in seen)

    def test_commit_settle_override(self, bossa_board, clock):
        BossaStrategy(clock).flash(
            bossa_board, IMAGE, None, SAMD, FlashOptions(commit_settle=2.5)
        )
        assert 2.5 in clock.sleeps
        assert 10.0 not in clock.sleeps

    def test_verify_matches_device_crc(self, bossa_board, clock):
        outcome = BossaStrategy(clock).flash(
            bossa_board, IMAGE, None, SAMD, FlashOptions(verify=True)
        )
        assert outcome.verified is True
        assert any(c.startswith("Z00002000,00010000#") for c in bossa_board.commands)


class TestRenesas:
    """UNO R4 layout: applet and buffer-relative addressing."""

    def test_applet_staged_before_erase(self, bossa_board, clock):
        BossaStrategy(clock).flash(bossa_board, IMAGE, None, RENESAS)

        commands = bossa_board.commands
        applet = commands.index("S00000000,00000034#")
        assert commands[applet + 1] == "W00000030,00000400#"
        assert commands[applet + 2] == "W00000020,00000000#"
        assert commands[applet + 3] == "X00000000#"
        assert bossa_board.sram[0] == RENESAS_FLASH_APPLET

    def test_chunks_staged_at_buffer_offset(self, bossa_board, clock):
        BossaStrategy(clock).flash(bossa_board, IMAGE, None, RENESAS)

        stages = [c for c in bossa_board.commands if c.startswith("S")][1:]
        assert set(stages) == {"S00000034,00001000#"}
        assert sorted(bossa_board.flash) == [i * 4096 for i in range(16)]

    def test_samd_sends_no_applet(self, bossa_board, clock):
        BossaStrategy(clock).flash(bossa_board, IMAGE, None, SAMD)
        assert "W" not in bossa_board.letters()


class TestFailures:
    """Fatal errors and warnings."""

    def test_no_response_without_prompt(self, clock):
        board = FakeBossaBoard(clock, responsive=False)

        with pytest.raises(NoResponseError):
            BossaStrategy(clock).flash(board, IMAGE, None, SAMD)

        assert "X" not in board.letters()
        assert not board.is_open

    def test_declined_prompt_cancels(self, clock):
        board = FakeBossaBoard(clock, responsive=False)
        prompt = CallbackPrompt(lambda message: False)

        with pytest.raises(UserCancelledError):
            BossaStrategy(clock, prompt=prompt).flash(board, IMAGE, None, SAMD)

        assert "X" not in board.letters()

    def test_manual_reset_recovers(self, clock):
        board = FakeBossaBoard(clock, responsive=False)

        def double_tap(message):
            assert "RESET" in message
            board.responsive = True
            return True

        outcome = BossaStrategy(clock, prompt=CallbackPrompt(double_tap)).flash(board, IMAGE, None, SAMD)

        assert outcome.baudrate == 230400
        assert board.letters().count("X") == 1

    def test_manual_reset_still_silent(self, clock):
        board = FakeBossaBoard(clock, responsive=False)
        prompt = CallbackPrompt(lambda message: True)

        with pytest.raises(ManualInterventionRequired):
            BossaStrategy(clock, prompt=prompt).flash(board, IMAGE, None, SAMD)

        assert not board.is_open

    def test_erase_timeout_is_fatal(self, clock):
        board = FakeBossaBoard(clock, erase_ack=False)

        with pytest.raises(AckTimeoutError) as exc_info:
            BossaStrategy(clock).flash(board, IMAGE, None, SAMD)

        assert exc_info.value.last_command == "X00002000#"
        assert "S" not in board.letters()
        assert not board.is_open

    def test_missing_commit_ack_stops_the_write(self, clock):
        """A lost Y ack mid-image is fatal; no later chunk and no reset."""
        board = FakeBossaBoard(clock, commit_ack_limit=2)

        with pytest.raises(AckTimeoutError) as exc_info:
            BossaStrategy(clock).flash(board, IMAGE, None, SAMD)

        letters = board.letters()
        assert exc_info.value.last_command == "Y00004000,00001000#"
        assert letters.endswith("X" + "SYY" * 3)
        assert letters.count("S") == 3
        assert "K" not in letters
        assert not board.is_open

    def test_unresponsive_after_write_is_a_warning(self, clock):
        board = FakeBossaBoard(clock, silent_after_commit=True)

        outcome = BossaStrategy(clock).flash(board, IMAGE, None, SAMD, FlashOptions(verify=True))

        assert any("unresponsive" in w for w in outcome.warnings)
        assert outcome.verified is None
        assert board.letters().endswith("K")

    def test_unacknowledged_reset_is_a_warning(self, clock):
        board = FakeBossaBoard(clock, reset_ack=False)

        outcome = BossaStrategy(clock).flash(board, IMAGE, None, SAMD)

        assert outcome.warnings == ["Reset command was not acknowledged"]


def test_probe_leaves_port_closed(bossa_board, clock):
    result = BossaStrategy(clock).probe(bossa_board, SAMD)

    assert result.baudrate == 230400
    assert "X" not in bossa_board.letters()
    assert not bossa_board.is_open
