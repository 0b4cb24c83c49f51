"""Tests for baud rate probing and reply classification."""

import pytest

from arduino_uploader.core.errors import NoResponseError, WrongBaudError
from arduino_uploader.protocol.probe import (
    BaudDetector,
    ProbeKind,
    classify_sample,
    early_decision,
    printable_ratio,
    printable_text,
)

from conftest import GARBAGE, FakeBossaBoard

FALLBACKS = (115200, 921600, 460800, 57600, 38400, 19200, 9600)


class TestClassifySample:
    """Classification of a complete probe sample."""

    def test_empty_sample_is_timeout(self):
        assert classify_sample(b"") is ProbeKind.TIMEOUT

    def test_line_ending_reply_is_ascii(self):
        """The bare N# reply is CR/LF, which counts as printable."""
        assert classify_sample(b"\n\r") is ProbeKind.ASCII

    def test_seventy_percent_threshold(self):
        assert classify_sample(b"ABCDEFG\xff\xfe\xfd") is ProbeKind.ASCII
        assert classify_sample(b"ABCDEF\xff\xfe\xfd\xfc") is ProbeKind.GARBAGE

    def test_binary_is_garbage(self):
        assert classify_sample(GARBAGE) is ProbeKind.GARBAGE

    def test_printable_ratio(self):
        assert printable_ratio(b"") == 0.0
        assert printable_ratio(b"AB\x00\x01") == 0.5


class TestEarlyDecision:
    """Early exits before the probe deadline."""

    def test_single_byte_is_undecided(self):
        assert early_decision(b"A") is None
        assert early_decision(b"\xff") is None

    def test_two_printable_bytes_decide_ascii(self):
        assert early_decision(b"OK") is ProbeKind.ASCII

    def test_garbage_needs_four_bytes(self):
        assert early_decision(b"\xff\xfe\xfd") is None
        assert early_decision(b"\xff\xfe\xfd\xfc") is ProbeKind.GARBAGE

    def test_mixed_pair_keeps_reading(self):
        assert early_decision(b"\xffA") is None


def test_printable_text_strips_line_endings_and_prompt():
    assert printable_text(b"v1.1 [Arduino:XYZ]\n\r>") == "v1.1 [Arduino:XYZ]"
    assert printable_text(b"\x00\xff") == ""


def _detector(board, clock):
    return BaudDetector(board, clock, 230400, FALLBACKS)


class TestBaudDetector:
    """End-to-end detection against a simulated bootloader."""

    def test_primary_rate_found(self, bossa_board, clock):
        result = _detector(bossa_board, clock).detect()

        assert result.baudrate == 230400
        assert result.version.startswith("Arduino Bootloader")
        assert bossa_board.is_open
        assert bossa_board.baudrate == 230400

    def test_primary_probe_reopens_port(self, bossa_board, clock):
        """The primary probe opens twice to force a second SET_LINE_CODING."""
        _detector(bossa_board, clock).detect()

        assert bossa_board.opened_bauds[:2] == [230400, 230400]
        assert 0.11 in clock.sleeps

    def test_silence_at_primary_raises_without_scanning(self, clock):
        board = FakeBossaBoard(clock, responsive=False)

        with pytest.raises(NoResponseError) as exc_info:
            _detector(board, clock).detect()

        assert set(board.opened_bauds) == {230400}
        assert exc_info.value.last_command == "N#"
        assert not board.is_open

    def test_fallback_rates_scanned_in_order(self, clock):
        board = FakeBossaBoard(clock, device_baud=57600)

        result = _detector(board, clock).detect()

        assert result.baudrate == 57600
        assert board.opened_bauds == [230400, 230400, 115200, 921600, 460800, 57600]
        assert [a.kind for a in result.attempts] == [
            ProbeKind.GARBAGE,
            ProbeKind.GARBAGE,
            ProbeKind.GARBAGE,
            ProbeKind.GARBAGE,
            ProbeKind.ASCII,
        ]

    def test_exhausted_scan_raises_wrong_baud(self, clock):
        board = FakeBossaBoard(clock, device_baud=14400)

        with pytest.raises(WrongBaudError) as exc_info:
            _detector(board, clock).detect()

        assert board.opened_bauds[2:] == list(FALLBACKS)
        assert GARBAGE in exc_info.value.received
        assert not board.is_open

    def test_garbage_decided_before_deadline(self, clock):
        board = FakeBossaBoard(clock, device_baud=9600)
        detector = _detector(board, clock)

        result = detector.probe(115200, timeout=0.5)

        assert result.kind is ProbeKind.GARBAGE
        assert result.elapsed < 0.5
        assert not board.is_open

    def test_primary_rate_is_not_rescanned(self, clock):
        detector = BaudDetector(FakeBossaBoard(clock), clock, 115200, FALLBACKS)
        assert 115200 not in detector.fallback_bauds

    def test_missing_version_is_not_fatal(self, clock):
        board = FakeBossaBoard(clock, version=b"")

        result = _detector(board, clock).detect()

        assert result.baudrate == 230400
        assert result.version is None

    def test_version_split_across_packets(self, clock):
        """The tail of V# arriving in a later packet is still part of the version."""
        board = FakeBossaBoard(clock, version_gap=0.08)

        result = _detector(board, clock).detect()

        assert result.version == "Arduino Bootloader (SAM-BA extended) 2.0 [Arduino:IKXYZ]"
        assert board.pending == []
        assert not board.rx
