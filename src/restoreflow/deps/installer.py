"""Dependency bundle management.

The worker and the preview tools need VapourSynth, its plugins and
FFmpeg. These ship as one zip archive per platform, published as a
GitHub release. The expected version is described by the bundled
``data/deps-version.json``; an install is recorded by ``version.json``
in the bundle directory.

Install protocol:
1. Download the archive to a private temp directory, hashing as it
   streams in
2. Verify the SHA-256 (and size); on mismatch delete the file and stop,
   leaving the current install untouched
3. Remove and recreate the bundle directory, extract the archive
4. Mark executables runnable
5. Write ``version.json`` last

A crash before step 5 leaves no marker, so the next check reports the
bundle as missing rather than installed.

Example usage:

    >>> installer = DependencyInstaller(Path("~/.restoreflow/deps").expanduser())
    >>> if installer.check_dependencies() is not DependencyStatus.INSTALLED:
    ...     await installer.download_and_install()
"""

import asyncio
import hashlib
import http.client
import json
import logging
import shutil
import socket
import stat
import subprocess
import tempfile
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from tqdm import tqdm

from restoreflow import __version__
from restoreflow.core.events import EventChannel
from restoreflow.exceptions import (
    ConfigurationError,
    DependencyError,
    IntegrityError,
    NetworkError,
    UnsupportedPlatform,
)
from restoreflow.utils.platform import bundle_layout, is_windows, platform_id

logger = logging.getLogger(__name__)

METADATA_PATH = Path(__file__).parent / "data" / "deps-version.json"
MARKER_NAME = "version.json"
DEFAULT_GITHUB_REPO = "restoreflow/restoreflow"


class DependencyStatus(Enum):
    UNKNOWN = "unknown"
    CHECKING = "checking"
    INSTALLED = "installed"
    MISSING = "missing"
    OUTDATED = "outdated"
    CORRUPTED = "corrupted"

    @property
    def needs_install(self) -> bool:
        return self in (DependencyStatus.MISSING, DependencyStatus.OUTDATED, DependencyStatus.CORRUPTED)


@dataclass
class DownloadProgress:
    """Progress of a dependency install.

    Attributes:
        bytes_received: Bytes downloaded so far
        total_bytes: Expected archive size (0 when unknown)
        status: Current phase, e.g. "Downloading..."
        current_file: Archive member being extracted
    """

    bytes_received: int
    total_bytes: int
    status: str
    current_file: Optional[str] = None

    @property
    def progress(self) -> float:
        return self.bytes_received / self.total_bytes if self.total_bytes > 0 else 0.0

    @property
    def progress_percent(self) -> str:
        return f"{self.progress * 100:.1f}%"


ProgressCallback = Callable[[DownloadProgress], None]


@dataclass(frozen=True)
class PlatformDepsInfo:
    filename: str
    sha256: Optional[str] = None
    size: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlatformDepsInfo":
        return cls(
            filename=data["filename"],
            sha256=(data.get("sha256") or None),
            size=data.get("size"),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"filename": self.filename}
        if self.sha256 is not None:
            result["sha256"] = self.sha256
        if self.size is not None:
            result["size"] = self.size
        return result


@dataclass(frozen=True)
class DepsVersionInfo:
    """Expected dependency bundle version.

    Attributes:
        version: Bundle version string
        release_tag: GitHub release tag, default ``deps-v{version}``
        github_repo: "owner/name" of the publishing repository
        platforms: Archive description per platform identifier
        release_date: Publication date, informational
    """

    version: str
    release_tag: str
    github_repo: str = DEFAULT_GITHUB_REPO
    platforms: Dict[str, PlatformDepsInfo] = field(default_factory=dict)
    release_date: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DepsVersionInfo":
        try:
            version = str(data["version"])
            platforms = {
                name: PlatformDepsInfo.from_dict(entry)
                for name, entry in (data.get("platforms") or {}).items()
            }
        except (KeyError, TypeError) as e:
            raise ConfigurationError(f"Invalid dependency metadata: missing {e}", cause=e) from e
        return cls(
            version=version,
            release_tag=data.get("releaseTag") or f"deps-v{version}",
            github_repo=data.get("githubRepo") or DEFAULT_GITHUB_REPO,
            platforms=platforms,
            release_date=data.get("releaseDate"),
        )

    @classmethod
    def load(cls, path: Union[str, Path] = METADATA_PATH) -> "DepsVersionInfo":
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read dependency metadata {path}: {e}", cause=e) from e
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "version": self.version,
            "releaseTag": self.release_tag,
            "githubRepo": self.github_repo,
            "platforms": {name: info.to_dict() for name, info in self.platforms.items()},
        }
        if self.release_date is not None:
            result["releaseDate"] = self.release_date
        return result

    def platform_info(self, platform: str) -> PlatformDepsInfo:
        info = self.platforms.get(platform)
        if info is None:
            raise UnsupportedPlatform(platform)
        return info

    def get_download_url(self, platform: str) -> str:
        info = self.platform_info(platform)
        return f"https://github.com/{self.github_repo}/releases/download/{self.release_tag}/{info.filename}"


@dataclass(frozen=True)
class InstalledDepsInfo:
    """Contents of the ``version.json`` install marker."""

    version: str
    installed_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InstalledDepsInfo":
        installed_at = None
        if data.get("installedAt"):
            try:
                installed_at = datetime.fromisoformat(str(data["installedAt"]))
            except ValueError:
                installed_at = None
        return cls(version=str(data["version"]), installed_at=installed_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "installedAt": self.installed_at.isoformat() if self.installed_at else None,
        }


def is_executable_name(name: str) -> bool:
    """Whether an archive member should be marked executable."""
    base = Path(name).name.lower()
    return base in ("ffmpeg", "ffprobe", "vspipe") or base.endswith(".sh") or "." not in base


class DependencyInstaller:
    """Checks and installs the dependency bundle in ``deps_dir``.

    Status changes are published on ``status_events`` and download
    progress on ``progress``. One installer owns its directory; no
    locking is done between instances.

    Args:
        deps_dir: Bundle directory
        metadata: Expected version (default: read from ``metadata_path``)
        metadata_path: Metadata file (default: the bundled one)
        platform: Platform identifier (default: host)
        timeout: Socket timeout for the download in seconds
        show_progress: Draw a tqdm progress bar while downloading
    """

    CHUNK_SIZE = 8192

    def __init__(
        self,
        deps_dir: Union[str, Path],
        metadata: Optional[DepsVersionInfo] = None,
        metadata_path: Optional[Union[str, Path]] = None,
        platform: Optional[str] = None,
        timeout: float = 30.0,
        show_progress: bool = False,
    ) -> None:
        self.deps_dir = Path(deps_dir).expanduser()
        self.platform = platform or platform_id()
        self.timeout = timeout
        self.show_progress = show_progress
        self.metadata_path = Path(metadata_path) if metadata_path else METADATA_PATH
        self._metadata = metadata
        self._expected = metadata
        self._status = DependencyStatus.UNKNOWN

        self.status_events: EventChannel[DependencyStatus] = EventChannel("dependency-status")
        self.progress: EventChannel[DownloadProgress] = EventChannel("dependency-progress")

    @classmethod
    def from_settings(cls, settings, **kwargs: Any) -> "DependencyInstaller":
        return cls(settings.deps_dir, timeout=settings.download_timeout, **kwargs)

    @property
    def status(self) -> DependencyStatus:
        return self._status

    @property
    def expected_version(self) -> DepsVersionInfo:
        if self._expected is None:
            self._expected = DepsVersionInfo.load(self.metadata_path)
        return self._expected

    @property
    def marker_path(self) -> Path:
        return self.deps_dir / MARKER_NAME

    def get_download_url(self) -> str:
        """Release download URL for this platform's archive.

        Raises:
            UnsupportedPlatform: If no archive is published for it
        """
        return self.expected_version.get_download_url(self.platform)

    def critical_files(self) -> List[str]:
        return list(bundle_layout(self.platform).critical_files)

    def get_installed_version(self) -> Optional[InstalledDepsInfo]:
        """Read the install marker; None if absent or unreadable."""
        if not self.marker_path.is_file():
            return None
        try:
            with open(self.marker_path, "r", encoding="utf-8") as f:
                return InstalledDepsInfo.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to read installed version: {e}")
            return None

    def _set_status(self, status: DependencyStatus) -> DependencyStatus:
        self._status = status
        self.status_events.emit(status)
        return status

    def check_dependencies(self) -> DependencyStatus:
        """Compare the install against the expected version.

        Returns:
            MISSING if the directory or marker is absent, OUTDATED if the
            marker names another version, CORRUPTED if a critical file is
            missing, INSTALLED otherwise
        """
        self._set_status(DependencyStatus.CHECKING)
        expected = self.expected_version

        if not self.deps_dir.is_dir():
            logger.info(f"Dependency directory missing: {self.deps_dir}")
            return self._set_status(DependencyStatus.MISSING)

        installed = self.get_installed_version()
        if installed is None:
            logger.info("Dependency version marker missing")
            return self._set_status(DependencyStatus.MISSING)

        if installed.version != expected.version:
            logger.info(
                f"Dependency version mismatch - installed: {installed.version}, "
                f"expected: {expected.version}"
            )
            return self._set_status(DependencyStatus.OUTDATED)

        for relative in self.critical_files():
            if not (self.deps_dir / relative).exists():
                logger.warning(f"Missing critical dependency file: {relative}")
                return self._set_status(DependencyStatus.CORRUPTED)

        logger.info(f"Dependencies OK (v{installed.version})")
        return self._set_status(DependencyStatus.INSTALLED)

    def install(self, progress_callback: Optional[ProgressCallback] = None) -> DependencyStatus:
        """Download, verify and install the bundle (blocking).

        Raises:
            UnsupportedPlatform: If no archive is published for this platform
            NetworkError: If the download fails
            IntegrityError: If the checksum or size does not match
            DependencyError: If the archive cannot be extracted
        """

        def report(progress: DownloadProgress) -> None:
            self.progress.emit(progress)
            if progress_callback is not None:
                progress_callback(progress)

        self._install(report)
        return self._set_status(DependencyStatus.INSTALLED)

    async def download_and_install(
        self,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> DependencyStatus:
        """Async ``install``; the blocking work runs in the default executor.

        Progress events are delivered on the event loop thread.
        """
        loop = asyncio.get_running_loop()

        def deliver(progress: DownloadProgress) -> None:
            self.progress.emit(progress)
            if progress_callback is not None:
                progress_callback(progress)

        def report(progress: DownloadProgress) -> None:
            loop.call_soon_threadsafe(deliver, progress)

        await loop.run_in_executor(None, self._install, report)
        return self._set_status(DependencyStatus.INSTALLED)

    def _install(self, report: ProgressCallback) -> None:
        expected = self.expected_version
        info = expected.platform_info(self.platform)
        url = expected.get_download_url(self.platform)
        total = info.size or 0

        logger.info(f"Downloading dependencies v{expected.version} from {url}")
        report(DownloadProgress(0, total, "Connecting..."))

        work_dir = Path(tempfile.mkdtemp(prefix="restoreflow_deps_"))
        archive = work_dir / info.filename
        try:
            self._download(url, archive, info, report)

            report(DownloadProgress(total, total, "Extracting..."))
            self._extract(archive, report)

            self._write_marker(expected.version)
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        report(DownloadProgress(total, total, "Complete"))
        logger.info(f"Dependencies v{expected.version} installed to {self.deps_dir}")

    def _download(
        self,
        url: str,
        dest_path: Path,
        info: PlatformDepsInfo,
        report: ProgressCallback,
    ) -> None:
        req = Request(url)
        req.add_header("User-Agent", f"restoreflow-deps/{__version__}")

        hasher = hashlib.sha256()
        downloaded = 0
        pbar = None
        try:
            response = urlopen(req, timeout=self.timeout)
            try:
                content_length = response.headers.get("Content-Length")
                total = int(content_length) if content_length else (info.size or 0)

                if self.show_progress:
                    pbar = tqdm(total=total or None, unit="B", unit_scale=True, desc=info.filename)

                with open(dest_path, "wb") as f:
                    while True:
                        chunk = response.read(self.CHUNK_SIZE)
                        if not chunk:
                            break
                        f.write(chunk)
                        hasher.update(chunk)
                        downloaded += len(chunk)
                        if pbar is not None:
                            pbar.update(len(chunk))
                        report(DownloadProgress(downloaded, total, "Downloading..."))
            finally:
                response.close()
        except (HTTPError, URLError, socket.timeout, ConnectionError, http.client.HTTPException) as e:
            self._discard(dest_path)
            raise NetworkError(url, cause=e) from e
        finally:
            if pbar is not None:
                pbar.close()

        actual = hasher.hexdigest()
        if info.sha256 is not None:
            if actual.lower() != info.sha256.lower():
                self._discard(dest_path)
                raise IntegrityError(dest_path, info.sha256, actual)
            logger.info(f"Verified {info.filename} (sha256 {actual[:12]}...)")
        else:
            logger.warning(f"No checksum published for {info.filename}; verifying size only")

        if info.size is not None and downloaded != info.size:
            self._discard(dest_path)
            raise IntegrityError(dest_path, f"{info.size} bytes", f"{downloaded} bytes")

    def _extract(self, archive: Path, report: ProgressCallback) -> None:
        target = self.deps_dir
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists():
            shutil.rmtree(target)
        target.mkdir(parents=True)
        root = target.resolve()

        try:
            with zipfile.ZipFile(archive) as zf:
                members = zf.infolist()
                for n, member in enumerate(members, start=1):
                    destination = (target / member.filename).resolve()
                    if root != destination and root not in destination.parents:
                        raise DependencyError(
                            f"Archive member escapes the install directory: {member.filename}"
                        )
                    zf.extract(member, target)
                    if not member.is_dir() and not is_windows(self.platform) and is_executable_name(member.filename):
                        self._make_executable(destination)
                    report(DownloadProgress(n, len(members), "Extracting...", current_file=member.filename))
        except zipfile.BadZipFile as e:
            raise DependencyError(f"Dependency archive is not a valid zip file: {e}", cause=e) from e

        if self.platform.startswith("macos"):
            self._remove_quarantine(target)

    def _make_executable(self, path: Path) -> None:
        mode = path.stat().st_mode
        path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    def _remove_quarantine(self, directory: Path) -> None:
        try:
            result = subprocess.run(
                ["xattr", "-cr", str(directory)],
                capture_output=True,
                text=True,
                timeout=60,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Could not remove quarantine attribute: {e}")
            return
        if result.returncode != 0:
            logger.warning(f"xattr warning: {result.stderr.strip()}")

    def _write_marker(self, version: str) -> None:
        marker = InstalledDepsInfo(version=version, installed_at=datetime.now())
        with open(self.marker_path, "w", encoding="utf-8") as f:
            json.dump(marker.to_dict(), f, indent=2)

    def _discard(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not delete partial download {path}: {e}")

    def uninstall(self) -> bool:
        """Delete the bundle directory. Returns False if nothing was installed."""
        if not self.deps_dir.exists():
            return False
        shutil.rmtree(self.deps_dir)
        logger.info(f"Removed dependencies from {self.deps_dir}")
        self._set_status(DependencyStatus.MISSING)
        return True

    def reset(self) -> None:
        """Forget the cached metadata and status; the next check starts fresh."""
        self._expected = self._metadata
        self._status = DependencyStatus.UNKNOWN

    def close(self) -> None:
        self.status_events.close()
        self.progress.close()
