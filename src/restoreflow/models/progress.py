"""Progress, log and completion records reported by the worker.

The worker prints one JSON object per line on stdout, discriminated by
its ``type`` key::

    {"type": "progress", "frame": 250, "totalFrames": 1000, "fps": 24.1, "eta": 31.1}
    {"type": "log", "level": "info", "message": "Loading plugins"}
    {"type": "error", "message": "Plugin not found"}
    {"type": "complete", "success": true, "outputPath": "/out/video.mkv"}

``parse_worker_line`` turns one such line into a typed record.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from restoreflow.exceptions import ProtocolParseError


class LogLevel(Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @classmethod
    def from_string(cls, value: Any) -> "LogLevel":
        """Lenient lookup; unknown names map to INFO."""
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.INFO

    @property
    def logging_level(self) -> int:
        return {
            LogLevel.DEBUG: logging.DEBUG,
            LogLevel.INFO: logging.INFO,
            LogLevel.WARNING: logging.WARNING,
            LogLevel.ERROR: logging.ERROR,
        }[self]


def format_eta(seconds: float) -> str:
    """Format remaining seconds as "45s", "2m 05s" or "1h 02m 05s".

    Non-positive or non-finite values give "--".
    """
    if not math.isfinite(seconds) or seconds <= 0:
        return "--"
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes > 0:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


@dataclass(frozen=True)
class ProgressInfo:
    """Snapshot of batch progress.

    Attributes:
        frame: Frames processed so far
        total_frames: Frames in the job (0 when unknown)
        fps: Current processing speed
        eta: Estimated seconds remaining
    """

    frame: int = 0
    total_frames: int = 0
    fps: float = 0.0
    eta: float = 0.0

    @property
    def progress(self) -> float:
        """Completion fraction in [0, 1]; 0 when the total is unknown."""
        if self.total_frames <= 0:
            return 0.0
        return self.frame / self.total_frames

    @property
    def percent_complete(self) -> int:
        return int(self.progress * 100)

    @property
    def eta_formatted(self) -> str:
        return format_eta(self.eta)

    @property
    def fps_formatted(self) -> str:
        if not math.isfinite(self.fps) or self.fps <= 0:
            return "-- fps"
        return f"{self.fps:.1f} fps"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frame": self.frame,
            "totalFrames": self.total_frames,
            "fps": self.fps,
            "eta": self.eta,
        }


@dataclass(frozen=True)
class LogMessage:
    """One log line from the worker or a tool.

    Attributes:
        level: Severity
        message: Text without trailing newline
        source: "stdout", "stderr" or "supervisor"
        timestamp: Arrival time
    """

    level: LogLevel
    message: str
    source: str = "stdout"
    timestamp: datetime = field(default_factory=datetime.now)

    def __str__(self) -> str:
        return f"[{self.level.value}] {self.message}"


@dataclass(frozen=True)
class WorkerError:
    """An ``error`` record; reported as a log line and kept for failure reports."""

    message: str


@dataclass(frozen=True)
class CompletionResult:
    """Final outcome of a job.

    Attributes:
        success: Whether the output file was produced
        output_path: Output path reported by the worker
        error_message: Reason for failure
        cancelled: Whether the user cancelled the job
        exit_code: Process exit status when known
        log_tail: Last log lines seen before completion
    """

    success: bool
    output_path: Optional[str] = None
    error_message: Optional[str] = None
    cancelled: bool = False
    exit_code: Optional[int] = None
    log_tail: Tuple[str, ...] = ()

    def describe(self) -> str:
        if self.success:
            return f"Completed: {self.output_path}" if self.output_path else "Completed"
        if self.cancelled:
            return "Cancelled"
        text = self.error_message or "Failed"
        if self.log_tail:
            text += "\n" + "\n".join(self.log_tail)
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "outputPath": self.output_path,
            "errorMessage": self.error_message,
            "cancelled": self.cancelled,
            "exitCode": self.exit_code,
            "logTail": list(self.log_tail),
        }


WorkerRecord = Union[ProgressInfo, LogMessage, WorkerError, CompletionResult]


def _number(record: Dict[str, Any], key: str, line: str, required: bool = False) -> float:
    value = record.get(key)
    if value is None:
        if required:
            raise ProtocolParseError(line, f"missing '{key}'")
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolParseError(line, f"'{key}' is not a number")
    if not math.isfinite(value):
        raise ProtocolParseError(line, f"'{key}' is not finite")
    return value


def parse_worker_line(line: str) -> Optional[WorkerRecord]:
    """Parse one stdout line from the worker.

    Text that is not a JSON object is returned as a debug LogMessage so
    stray library output never interrupts the protocol.

    Args:
        line: Raw line, with or without trailing newline

    Returns:
        Typed record, or None for blank lines

    Raises:
        ProtocolParseError: If a JSON record has an unknown type or lacks
            required fields
    """
    text = line.strip()
    if not text:
        return None
    try:
        record = json.loads(text)
    except ValueError:
        return LogMessage(LogLevel.DEBUG, text)
    if not isinstance(record, dict):
        return LogMessage(LogLevel.DEBUG, text)

    kind = record.get("type")
    if kind == "progress":
        return ProgressInfo(
            frame=int(_number(record, "frame", text, required=True)),
            total_frames=int(_number(record, "totalFrames", text, required=True)),
            fps=float(_number(record, "fps", text)),
            eta=float(_number(record, "eta", text)),
        )
    if kind == "log":
        message = record.get("message")
        if not isinstance(message, str):
            raise ProtocolParseError(text, "log record without message")
        return LogMessage(LogLevel.from_string(record.get("level", "info")), message)
    if kind == "error":
        message = record.get("message")
        if not isinstance(message, str):
            raise ProtocolParseError(text, "error record without message")
        return WorkerError(message)
    if kind == "complete":
        success = record.get("success")
        if not isinstance(success, bool):
            raise ProtocolParseError(text, "complete record without success flag")
        return CompletionResult(
            success=success,
            output_path=record.get("outputPath"),
            error_message=record.get("message") if not success else None,
        )
    raise ProtocolParseError(text, f"unknown record type {kind!r}")
