"""restoreflow - orchestration layer for a VapourSynth video restoration worker."""
__version__ = "0.4.0"

from .exceptions import (
    AlreadyRunning,
    ConfigurationError,
    ExecutableNotFound,
    IntegrityError,
    NetworkError,
    PreviewCancelled,
    PreviewError,
    ProtocolParseError,
    RestoreflowError,
    SchemaMismatch,
    WorkerExitFailure,
)

__all__ = [
    "__version__",
    "AlreadyRunning",
    "ConfigurationError",
    "ExecutableNotFound",
    "IntegrityError",
    "NetworkError",
    "PreviewCancelled",
    "PreviewError",
    "ProtocolParseError",
    "RestoreflowError",
    "SchemaMismatch",
    "WorkerExitFailure",
]
