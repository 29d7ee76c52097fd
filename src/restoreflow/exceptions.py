"""Standardized exception hierarchy for restoreflow.

Every error raised by the orchestration layer derives from
RestoreflowError so callers can catch broadly when they need to, while
still being able to tell a missing tool apart from a corrupt download.

Exception Hierarchy:
    RestoreflowError (base)
    +-- ConfigurationError
    +-- SchemaMismatch
    +-- ExecutableNotFound
    +-- AlreadyRunning
    +-- ProtocolParseError
    +-- WorkerExitFailure
    +-- PreviewError
    |   +-- PreviewCancelled
    +-- ProbeError
    +-- DependencyError
        +-- IntegrityError
        +-- NetworkError
        +-- UnsupportedPlatform
"""

from typing import Any, Dict, List, Optional, Sequence


class RestoreflowError(Exception):
    """Base exception for all restoreflow errors.

    Attributes:
        message: Human-readable error description
        details: Optional dictionary with additional context
        cause: Original exception that caused this error (if any)
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} [{detail_str}]"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization.

        Returns:
            Dictionary with error type, message, and details
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(RestoreflowError):
    """Invalid configuration value or combination.

    Examples:
        - Codec not supported by the chosen container
        - Unreadable settings file
        - Unparseable job description
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        valid_values: Optional[list] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if config_key:
            details["config_key"] = config_key
        if config_value is not None:
            details["config_value"] = config_value
        if valid_values:
            details["valid_values"] = valid_values
        super().__init__(message, details=details, cause=cause)


class SchemaMismatch(RestoreflowError):
    """Dynamic parameters do not fit the typed record of a pass.

    Raised for unknown parameter names and for values whose kind does not
    match the declared parameter type. Values are never coerced silently.
    """

    def __init__(
        self,
        filter_id: str,
        parameter: Optional[str] = None,
        reason: str = "unknown parameter",
    ) -> None:
        self.filter_id = filter_id
        self.parameter = parameter
        self.reason = reason
        target = f"{filter_id}.{parameter}" if parameter else filter_id
        details: Dict[str, Any] = {"filter": filter_id}
        if parameter:
            details["parameter"] = parameter
        super().__init__(f"Schema mismatch for {target}: {reason}", details=details)


class ExecutableNotFound(RestoreflowError):
    """A worker or bundled tool is missing from every searched location."""

    def __init__(self, name: str, searched: Sequence[Any] = ()) -> None:
        self.name = name
        self.searched = [str(p) for p in searched]
        message = f"Could not find executable '{name}'"
        if self.searched:
            message += " (searched: " + ", ".join(self.searched) + ")"
        super().__init__(message, details={"executable": name})


class AlreadyRunning(RestoreflowError):
    """A job was started on a supervisor that is not idle."""

    def __init__(self, state: str) -> None:
        self.state = state
        super().__init__(
            "A job is already in flight on this supervisor",
            details={"state": state},
        )


class ProtocolParseError(RestoreflowError):
    """A worker output record could not be interpreted.

    The supervisor builds these only to log them; they never abort a job.
    """

    def __init__(self, line: str, reason: str) -> None:
        self.line = line
        self.reason = reason
        super().__init__(f"Malformed worker record: {reason}", details={"line": line[:200]})


class WorkerExitFailure(RestoreflowError):
    """The worker exited non-zero without reporting completion."""

    def __init__(self, exit_code: int, last_lines: Optional[List[str]] = None) -> None:
        self.exit_code = exit_code
        self.last_lines = list(last_lines or [])
        super().__init__(
            f"Worker exited with code {exit_code}",
            details={"exit_code": exit_code},
        )

    def __str__(self) -> str:
        base = super().__str__()
        if self.last_lines:
            return base + "\n" + "\n".join(self.last_lines)
        return base


class PreviewError(RestoreflowError):
    """A preview frame could not be produced."""

    def __init__(self, message: str, last_lines: Optional[List[str]] = None) -> None:
        self.last_lines = list(last_lines or [])
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.last_lines:
            return base + "\n" + "\n".join(self.last_lines)
        return base


class PreviewCancelled(PreviewError):
    """The preview request was superseded or cancelled."""

    def __init__(self) -> None:
        super().__init__("Preview request cancelled")


class ProbeError(RestoreflowError):
    """Reading stream information from a video file failed."""


class DependencyError(RestoreflowError):
    """Base class for dependency bundle problems."""


class IntegrityError(DependencyError):
    """Downloaded archive checksum does not match the expected value."""

    def __init__(self, path: Any, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            "Checksum mismatch for downloaded archive",
            details={"path": str(path), "expected": expected, "actual": actual},
        )


class NetworkError(DependencyError):
    """Downloading the dependency archive failed."""

    def __init__(self, url: str, cause: Optional[Exception] = None) -> None:
        self.url = url
        reason = f": {cause}" if cause else ""
        super().__init__(f"Download failed{reason}", details={"url": url}, cause=cause)


class UnsupportedPlatform(DependencyError):
    """No dependency bundle exists for the running platform."""

    def __init__(self, platform_id: str) -> None:
        self.platform_id = platform_id
        super().__init__(
            f"Unsupported platform: {platform_id}",
            details={"platform": platform_id},
        )
