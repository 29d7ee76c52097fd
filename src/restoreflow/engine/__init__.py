"""Worker discovery and process supervision."""

from restoreflow.engine.locator import ToolPaths, WorkerLocator, build_environment
from restoreflow.engine.supervisor import ProcessSupervisor, SupervisorState, terminate_process

__all__ = [
    "ProcessSupervisor",
    "SupervisorState",
    "ToolPaths",
    "WorkerLocator",
    "build_environment",
    "terminate_process",
]
