"""Dependency bundle check and install."""

from restoreflow.deps.installer import (
    DependencyInstaller,
    DependencyStatus,
    DepsVersionInfo,
    DownloadProgress,
    InstalledDepsInfo,
    PlatformDepsInfo,
)

__all__ = [
    "DependencyInstaller",
    "DependencyStatus",
    "DepsVersionInfo",
    "DownloadProgress",
    "InstalledDepsInfo",
    "PlatformDepsInfo",
]
