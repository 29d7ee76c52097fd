"""Locating the worker and the bundled tools, and building their environment."""

import logging
import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from restoreflow.exceptions import ExecutableNotFound
from restoreflow.utils.platform import (
    bundle_layout,
    executable_name,
    path_separator,
    platform_id,
)

logger = logging.getLogger(__name__)

WORKER_NAME = "restoreflow-worker"


@dataclass(frozen=True)
class ToolPaths:
    """Resolves tool executables inside an installed dependency bundle.

    Tools missing from the bundle fall back to the system PATH, which
    keeps development setups with a system-wide FFmpeg working.

    Attributes:
        deps_dir: Root of the installed bundle
        platform: Platform identifier the bundle was built for
    """

    deps_dir: Path
    platform: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "deps_dir", Path(self.deps_dir))
        if not self.platform:
            object.__setattr__(self, "platform", platform_id())

    @property
    def bundled_vspipe(self) -> Path:
        return self.deps_dir / bundle_layout(self.platform).vspipe

    @property
    def bundled_ffmpeg(self) -> Path:
        return self.deps_dir / bundle_layout(self.platform).ffmpeg

    @property
    def bundled_ffprobe(self) -> Path:
        return self.deps_dir / bundle_layout(self.platform).ffprobe

    @property
    def plugin_dir(self) -> Path:
        return self.deps_dir / bundle_layout(self.platform).plugin_dir

    def resolve(self, tool: str) -> Path:
        """Path of ``tool`` ("vspipe", "ffmpeg" or "ffprobe").

        Raises:
            ExecutableNotFound: If neither the bundle nor PATH has it
        """
        bundled = {
            "vspipe": self.bundled_vspipe,
            "ffmpeg": self.bundled_ffmpeg,
            "ffprobe": self.bundled_ffprobe,
        }.get(tool)
        searched: List[str] = []
        if bundled is not None:
            if bundled.is_file():
                return bundled
            searched.append(str(bundled))

        found = shutil.which(executable_name(tool, self.platform))
        if found:
            return Path(found)
        searched.append("PATH")
        raise ExecutableNotFound(tool, searched)

    @property
    def vspipe(self) -> Path:
        return self.resolve("vspipe")

    @property
    def ffmpeg(self) -> Path:
        return self.resolve("ffmpeg")

    @property
    def ffprobe(self) -> Path:
        return self.resolve("ffprobe")


class WorkerLocator:
    """Finds the worker executable.

    Candidates are checked in a fixed order and the first existing file
    wins:

    1. ``explicit`` (settings ``worker_path`` or ``RESTOREFLOW_WORKER``)
    2. The bundled location, next to the running interpreter's scripts
    3. Each entry of ``search_paths``; directories are searched for the
       worker by name
    4. The system PATH
    """

    def __init__(
        self,
        explicit: Optional[Path] = None,
        search_paths: Sequence[Path] = (),
        bundled_dir: Optional[Path] = None,
        platform: Optional[str] = None,
        use_path: bool = True,
    ) -> None:
        self.explicit = Path(explicit) if explicit else None
        self.search_paths = [Path(p) for p in search_paths]
        self.bundled_dir = Path(bundled_dir) if bundled_dir else Path(sys.executable).parent
        self.platform = platform or platform_id()
        self.use_path = use_path

    @classmethod
    def from_settings(cls, settings) -> "WorkerLocator":
        return cls(explicit=settings.worker_path, search_paths=settings.worker_search_paths)

    @property
    def executable_name(self) -> str:
        return executable_name(WORKER_NAME, self.platform)

    def candidates(self) -> List[Path]:
        """Every location that will be checked, in order."""
        paths: List[Path] = []
        if self.explicit is not None:
            paths.append(self.explicit)
        paths.append(self.bundled_dir / self.executable_name)
        for entry in self.search_paths:
            entry = entry.expanduser()
            if entry.is_dir():
                paths.append(entry / self.executable_name)
            else:
                paths.append(entry)
        return paths

    def locate(self) -> Path:
        """Return the first existing worker.

        Raises:
            ExecutableNotFound: With every location that was searched
        """
        candidates = self.candidates()
        for candidate in candidates:
            if candidate.is_file():
                logger.debug(f"Using worker at {candidate}")
                return candidate.absolute()

        searched = [str(c) for c in candidates]
        if self.use_path:
            found = shutil.which(self.executable_name)
            if found:
                logger.debug(f"Using worker from PATH: {found}")
                return Path(found)
            searched.append("PATH")

        raise ExecutableNotFound(WORKER_NAME, searched)


def build_environment(
    deps_dir: Optional[Path],
    platform: Optional[str] = None,
    base: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Environment for the worker and tools, pointed at the bundle.

    The bundled runtime home, module path, plugin path and library path
    are set and the bundle's tool directories are prepended to PATH, so
    nothing installed system-wide is picked up. When no bundle is
    installed the base environment is returned unchanged.

    Args:
        deps_dir: Root of the installed dependency bundle
        platform: Bundle platform identifier (default: host)
        base: Environment to extend (default: ``os.environ``)

    Returns:
        New environment mapping
    """
    env = dict(os.environ if base is None else base)
    if deps_dir is None or not Path(deps_dir).is_dir():
        return env

    deps_dir = Path(deps_dir)
    platform = platform or platform_id()
    layout = bundle_layout(platform)
    sep = path_separator(platform)

    python_home = deps_dir / layout.python_home
    bin_dirs = [str(deps_dir / d) for d in layout.bin_dirs]

    if python_home.is_dir():
        env["PYTHONHOME"] = str(python_home)
        if layout.library_var is not None:
            bin_dirs.insert(0, str(python_home / "bin"))
    env["PYTHONPATH"] = str(deps_dir / layout.python_path)
    env["PYTHONNOUSERSITE"] = "1"
    env["VAPOURSYNTH_PLUGIN_PATH"] = str(deps_dir / layout.plugin_dir)

    existing_path = env.get("PATH", "")
    env["PATH"] = sep.join(bin_dirs + ([existing_path] if existing_path else []))

    if layout.library_var is not None:
        lib_dirs = [str(deps_dir / "vapoursynth")]
        if python_home.is_dir():
            lib_dirs.append(str(python_home / "lib"))
        existing = env.get(layout.library_var, "")
        env[layout.library_var] = sep.join(lib_dirs + ([existing] if existing else []))

    return env
