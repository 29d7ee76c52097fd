"""Platform identification and dependency bundle layout.

The dependency bundle unpacks to one directory per host platform. Both
the installer (to verify an install) and the engine (to point the
worker at the bundled runtime) need to agree on where things live, so
the layout is described once here.
"""

import platform as _platform
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

WINDOWS_X64 = "windows-x64"
MACOS_ARM64 = "macos-arm64"
MACOS_X64 = "macos-x64"
LINUX_X64 = "linux-x64"

SUPPORTED_PLATFORMS = (WINDOWS_X64, MACOS_ARM64, MACOS_X64, LINUX_X64)


def platform_id(system: Optional[str] = None, machine: Optional[str] = None) -> str:
    """Identifier of the host platform, e.g. "macos-arm64".

    Unknown combinations are returned as "<system>-<machine>" so callers
    can report them; they are not in SUPPORTED_PLATFORMS.
    """
    system = (system or _platform.system()).lower()
    machine = (machine or _platform.machine()).lower()

    if machine in ("x86_64", "amd64", "x64"):
        arch = "x64"
    elif machine in ("arm64", "aarch64"):
        arch = "arm64"
    else:
        arch = machine

    if system == "windows":
        return f"windows-{arch}"
    if system == "darwin":
        return f"macos-{arch}"
    return f"{system}-{arch}"


def is_windows(platform: str) -> bool:
    return platform.startswith("windows")


def executable_name(name: str, platform: Optional[str] = None) -> str:
    """Append ``.exe`` on Windows."""
    platform = platform or platform_id()
    return f"{name}.exe" if is_windows(platform) else name


@dataclass(frozen=True)
class BundleLayout:
    """Relative locations inside an installed dependency bundle.

    Attributes:
        vspipe: Renderer executable
        plugin_dir: VapourSynth plugin directory
        ffmpeg: Encoder executable
        ffprobe: Stream probe executable
        python_home: Embedded Python runtime (may be absent on macOS/Linux)
        python_path: Extra module search path for the runtime
        library_var: Dynamic loader variable for bundled libraries, if any
    """

    vspipe: str
    plugin_dir: str
    ffmpeg: str
    ffprobe: str
    python_home: str
    python_path: str
    library_var: Optional[str] = None

    @property
    def critical_files(self) -> Tuple[str, ...]:
        """Paths whose absence means the install is corrupted."""
        return (self.vspipe, self.plugin_dir, self.ffmpeg)

    @property
    def bin_dirs(self) -> Tuple[str, ...]:
        return (str(Path(self.vspipe).parent), str(Path(self.ffmpeg).parent))


_WINDOWS_LAYOUT = BundleLayout(
    vspipe="vapoursynth/VSPipe.exe",
    plugin_dir="vapoursynth/vs-plugins",
    ffmpeg="ffmpeg/ffmpeg.exe",
    ffprobe="ffmpeg/ffprobe.exe",
    python_home="vapoursynth",
    python_path="vapoursynth/Lib/site-packages",
)

_MACOS_LAYOUT = BundleLayout(
    vspipe="vapoursynth/vspipe",
    plugin_dir="vapoursynth/plugins",
    ffmpeg="ffmpeg/ffmpeg",
    ffprobe="ffmpeg/ffprobe",
    python_home="python",
    python_path="python-packages",
    library_var="DYLD_LIBRARY_PATH",
)

_LINUX_LAYOUT = BundleLayout(
    vspipe="vapoursynth/vspipe",
    plugin_dir="vapoursynth/plugins",
    ffmpeg="ffmpeg/ffmpeg",
    ffprobe="ffmpeg/ffprobe",
    python_home="python",
    python_path="python-packages",
    library_var="LD_LIBRARY_PATH",
)


def bundle_layout(platform: Optional[str] = None) -> BundleLayout:
    """Layout of the dependency bundle for ``platform`` (default: host)."""
    platform = platform or platform_id()
    if is_windows(platform):
        return _WINDOWS_LAYOUT
    if platform.startswith("macos"):
        return _MACOS_LAYOUT
    return _LINUX_LAYOUT


def path_separator(platform: Optional[str] = None) -> str:
    platform = platform or platform_id()
    return ";" if is_windows(platform) else ":"
