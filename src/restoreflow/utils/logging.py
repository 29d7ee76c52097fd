"""Structured logging for restoreflow.

All loggers live under the ``restoreflow`` namespace. Modules use the
plain ``logging.getLogger(__name__)`` idiom; ``configure_logging``
attaches handlers once at startup, and ``get_logger`` hands out an
adapter that accepts structured keyword fields.

Example usage:
    >>> from restoreflow.utils.logging import LogConfig, configure_logging, get_logger
    >>> configure_logging(LogConfig(log_level="DEBUG", log_format="json"))
    >>> log = get_logger("supervisor")
    >>> log.info("Worker started", pid=4242, job="a1b2")
"""

import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Literal, Optional

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["text", "json"]

ROOT_LOGGER = "restoreflow"
_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class LogConfig:
    """Logging configuration.

    Attributes:
        log_level: Default level for every component
        log_format: 'text' for humans, 'json' for machines
        log_file: Optional rotating log file
        component_levels: Per-component overrides, e.g. {"engine.supervisor": "DEBUG"}
        max_file_size_mb: Rotation threshold for the log file
        backup_count: Rotated files to keep
        include_timestamp: Prefix text lines with a timestamp
    """

    log_level: LogLevel = "INFO"
    log_format: LogFormat = "text"
    log_file: Optional[str] = None
    component_levels: Dict[str, LogLevel] = field(default_factory=dict)
    max_file_size_mb: int = 10
    backup_count: int = 5
    include_timestamp: bool = True

    def __post_init__(self) -> None:
        if self.log_level.upper() not in _VALID_LEVELS:
            raise ValueError(
                f"Invalid log_level '{self.log_level}'. Must be one of: {sorted(_VALID_LEVELS)}"
            )
        if self.log_format not in ("text", "json"):
            raise ValueError(f"Invalid log_format '{self.log_format}'. Must be 'text' or 'json'")
        for component, level in self.component_levels.items():
            if level.upper() not in _VALID_LEVELS:
                raise ValueError(f"Invalid log level '{level}' for component '{component}'")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogConfig":
        return cls(
            log_level=data.get("log_level", "INFO"),
            log_format=data.get("log_format", "text"),
            log_file=data.get("log_file"),
            component_levels=dict(data.get("component_levels") or {}),
            max_file_size_mb=data.get("max_file_size_mb", 10),
            backup_count=data.get("backup_count", 5),
            include_timestamp=data.get("include_timestamp", True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "log_level": self.log_level,
            "log_format": self.log_format,
            "log_file": self.log_file,
            "component_levels": dict(self.component_levels),
            "max_file_size_mb": self.max_file_size_mb,
            "backup_count": self.backup_count,
            "include_timestamp": self.include_timestamp,
        }


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    {"timestamp": "2025-01-04T10:30:45.123Z", "level": "INFO",
     "component": "supervisor", "message": "Worker started", "pid": 4242}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "component": record.name.split(".")[-1],
            "message": record.getMessage(),
        }
        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            entry.update(extra_fields)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """2025-01-04 10:30:45 | INFO     | restoreflow.engine.supervisor | Worker started [pid=4242]"""

    def __init__(self, include_timestamp: bool = True) -> None:
        if include_timestamp:
            fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        else:
            fmt = "%(levelname)-8s | %(name)s | %(message)s"
        super().__init__(fmt=fmt, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            text += " [" + ", ".join(f"{k}={v}" for k, v in extra_fields.items()) + "]"
        return text


class RestoreflowLogger(logging.LoggerAdapter):
    """Logger adapter turning keyword arguments into structured fields."""

    def __init__(
        self,
        logger: logging.Logger,
        component: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(logger, extra or {})
        self.component = component

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra_fields = {}
        for key in list(kwargs.keys()):
            if key not in ("exc_info", "stack_info", "stacklevel", "extra"):
                extra_fields[key] = kwargs.pop(key)
        if self.extra:
            extra_fields.update(self.extra)
        kwargs.setdefault("extra", {})
        kwargs["extra"]["extra_fields"] = extra_fields
        return msg, kwargs

    def bind(self, **fields: Any) -> "RestoreflowLogger":
        """New adapter that adds ``fields`` to every record."""
        merged = dict(self.extra or {})
        merged.update(fields)
        return RestoreflowLogger(self.logger, self.component, merged)

    def job_progress(
        self,
        frame: int,
        total_frames: int,
        fps: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        """Debug record for a worker progress update."""
        pct = (frame / total_frames * 100) if total_frames > 0 else 0
        extra: Dict[str, Any] = {"frame": frame, "total": total_frames, "progress_pct": round(pct, 1)}
        if fps is not None:
            extra["fps"] = round(fps, 2)
        extra.update(kwargs)
        self.debug(f"Progress {frame}/{total_frames}", **extra)


_log_config: Optional[LogConfig] = None
_adapters: Dict[str, RestoreflowLogger] = {}


def _level(name: str) -> int:
    return getattr(logging, name.upper())


def configure_logging(config: Optional[LogConfig] = None) -> None:
    """Install handlers on the ``restoreflow`` root logger.

    Safe to call again; previous handlers are replaced.
    """
    global _log_config

    config = config or LogConfig()
    _log_config = config

    root_logger = logging.getLogger(ROOT_LOGGER)
    root_logger.setLevel(_level(config.log_level))
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    if config.log_format == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = TextFormatter(include_timestamp=config.include_timestamp)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for component, level in config.component_levels.items():
        logging.getLogger(f"{ROOT_LOGGER}.{component}").setLevel(_level(level))

    root_logger.propagate = False


def get_logger(component: str) -> RestoreflowLogger:
    """Get the structured logger for a component (e.g. 'cli', 'engine.supervisor')."""
    if component in _adapters:
        return _adapters[component]
    adapter = RestoreflowLogger(logging.getLogger(f"{ROOT_LOGGER}.{component}"), component)
    _adapters[component] = adapter
    return adapter


def get_config() -> Optional[LogConfig]:
    return _log_config


def set_level(level: LogLevel, component: Optional[str] = None) -> None:
    name = f"{ROOT_LOGGER}.{component}" if component else ROOT_LOGGER
    logging.getLogger(name).setLevel(_level(level))


def configure_from_cli(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None,
    base: Optional[LogConfig] = None,
) -> LogConfig:
    """Configure logging from command-line options layered over ``base``."""
    base = base or LogConfig()
    config = LogConfig(
        log_level=(log_level or base.log_level).upper(),  # type: ignore[arg-type]
        log_format=log_format or base.log_format,  # type: ignore[arg-type]
        log_file=log_file or base.log_file,
        component_levels=dict(base.component_levels),
        max_file_size_mb=base.max_file_size_mb,
        backup_count=base.backup_count,
        include_timestamp=base.include_timestamp,
    )
    configure_logging(config)
    return config
