"""Tests for worker protocol records and progress formatting."""
import math

import pytest

from restoreflow.exceptions import ProtocolParseError
from restoreflow.models.progress import (
    CompletionResult,
    LogLevel,
    LogMessage,
    ProgressInfo,
    WorkerError,
    format_eta,
    parse_worker_line,
)


class TestProgressInfo:
    """Test derived progress values."""

    def test_fraction_and_percent(self):
        info = ProgressInfo(frame=250, total_frames=1000, fps=24.0, eta=31.0)
        assert info.progress == 0.25
        assert info.percent_complete == 25

    def test_unknown_total(self):
        info = ProgressInfo(frame=250, total_frames=0)
        assert info.progress == 0.0
        assert info.percent_complete == 0

    def test_fps_formatting(self):
        assert ProgressInfo(fps=23.976).fps_formatted == "24.0 fps"
        assert ProgressInfo(fps=0).fps_formatted == "-- fps"
        assert ProgressInfo(fps=math.inf).fps_formatted == "-- fps"

    def test_to_dict(self):
        info = ProgressInfo(frame=1, total_frames=2, fps=3.0, eta=4.0)
        assert info.to_dict() == {"frame": 1, "totalFrames": 2, "fps": 3.0, "eta": 4.0}


class TestFormatEta:
    """ETA strings."""

    @pytest.mark.parametrize("seconds,expected", [
        (45, "45s"),
        (45.9, "45s"),
        (125, "2m 05s"),
        (3725, "1h 02m 05s"),
        (3600, "1h 00m 00s"),
        (0, "--"),
        (-3, "--"),
        (math.inf, "--"),
        (math.nan, "--"),
    ])
    def test_format(self, seconds, expected):
        assert format_eta(seconds) == expected

    def test_progress_info_eta(self):
        assert ProgressInfo(eta=125).eta_formatted == "2m 05s"


class TestParseWorkerLine:
    """One stdout line becomes one typed record."""

    def test_progress(self):
        record = parse_worker_line('{"type":"progress","frame":250,"totalFrames":1000,"fps":24.1,"eta":31.1}\n')
        assert record == ProgressInfo(frame=250, total_frames=1000, fps=24.1, eta=31.1)

    def test_progress_optional_fields(self):
        record = parse_worker_line('{"type":"progress","frame":5,"totalFrames":10}')
        assert record.fps == 0.0
        assert record.eta == 0.0

    def test_progress_missing_frame(self):
        with pytest.raises(ProtocolParseError):
            parse_worker_line('{"type":"progress","totalFrames":10}')

    def test_progress_non_numeric(self):
        with pytest.raises(ProtocolParseError):
            parse_worker_line('{"type":"progress","frame":"5","totalFrames":10}')

    @pytest.mark.parametrize("line", [
        '{"type":"progress","frame":NaN,"totalFrames":10}',
        '{"type":"progress","frame":5,"totalFrames":Infinity}',
        '{"type":"progress","frame":5,"totalFrames":10,"fps":-Infinity}',
    ])
    def test_progress_non_finite(self, line):
        with pytest.raises(ProtocolParseError) as exc_info:
            parse_worker_line(line)
        assert "not finite" in exc_info.value.message

    def test_log(self):
        record = parse_worker_line('{"type":"log","level":"warning","message":"Low memory"}')
        assert isinstance(record, LogMessage)
        assert record.level is LogLevel.WARNING
        assert record.message == "Low memory"
        assert record.source == "stdout"

    def test_log_unknown_level_is_info(self):
        record = parse_worker_line('{"type":"log","level":"trace","message":"x"}')
        assert record.level is LogLevel.INFO

    def test_error(self):
        assert parse_worker_line('{"type":"error","message":"Plugin not found"}') == WorkerError(
            "Plugin not found"
        )

    def test_complete_success(self):
        record = parse_worker_line('{"type":"complete","success":true,"outputPath":"/out/video.mkv"}')
        assert record == CompletionResult(success=True, output_path="/out/video.mkv")

    def test_complete_failure_message(self):
        record = parse_worker_line('{"type":"complete","success":false,"message":"Encoder crashed"}')
        assert record.success is False
        assert record.error_message == "Encoder crashed"

    def test_complete_requires_flag(self):
        with pytest.raises(ProtocolParseError):
            parse_worker_line('{"type":"complete","outputPath":"x"}')

    def test_unknown_type(self):
        with pytest.raises(ProtocolParseError) as exc_info:
            parse_worker_line('{"type":"heartbeat"}')
        assert "heartbeat" in exc_info.value.reason

    @pytest.mark.parametrize("line", [
        "Script evaluation done",
        "[1, 2, 3]",
        "{broken json",
    ])
    def test_plain_text_becomes_debug_log(self, line):
        record = parse_worker_line(line)
        assert isinstance(record, LogMessage)
        assert record.level is LogLevel.DEBUG
        assert record.message == line

    @pytest.mark.parametrize("line", ["", "   ", "\n", "\r\n"])
    def test_blank_lines(self, line):
        assert parse_worker_line(line) is None


class TestCompletionResult:
    """Test describe() output."""

    def test_success(self):
        assert CompletionResult(True, output_path="/o.mkv").describe() == "Completed: /o.mkv"

    def test_cancelled(self):
        assert CompletionResult(False, cancelled=True).describe() == "Cancelled"

    def test_failure_includes_tail(self):
        result = CompletionResult(False, error_message="Worker exited with code 137", log_tail=("a", "b"))
        assert result.describe() == "Worker exited with code 137\na\nb"

    def test_to_dict(self):
        data = CompletionResult(False, error_message="x", exit_code=1, log_tail=("l",)).to_dict()
        assert data["exitCode"] == 1
        assert data["logTail"] == ["l"]
