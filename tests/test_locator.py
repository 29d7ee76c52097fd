"""Tests for worker/tool discovery and the worker environment."""
import sys
from pathlib import Path

import pytest

from restoreflow.engine.locator import (
    WORKER_NAME,
    ToolPaths,
    WorkerLocator,
    build_environment,
)
from restoreflow.exceptions import ExecutableNotFound
from restoreflow.utils.platform import (
    LINUX_X64,
    MACOS_ARM64,
    SUPPORTED_PLATFORMS,
    WINDOWS_X64,
    bundle_layout,
    executable_name,
    platform_id,
)


class TestPlatform:
    """Platform identifiers and bundle layouts."""

    @pytest.mark.parametrize("system,machine,expected", [
        ("Windows", "AMD64", WINDOWS_X64),
        ("Darwin", "arm64", MACOS_ARM64),
        ("Darwin", "x86_64", "macos-x64"),
        ("Linux", "x86_64", LINUX_X64),
        ("Linux", "aarch64", "linux-arm64"),
    ])
    def test_platform_id(self, system, machine, expected):
        assert platform_id(system, machine) == expected

    def test_unknown_platform_not_supported(self):
        assert platform_id("SunOS", "sparc") not in SUPPORTED_PLATFORMS

    def test_executable_name(self):
        assert executable_name("ffmpeg", WINDOWS_X64) == "ffmpeg.exe"
        assert executable_name("ffmpeg", LINUX_X64) == "ffmpeg"

    def test_layouts(self):
        assert bundle_layout(WINDOWS_X64).vspipe == "vapoursynth/VSPipe.exe"
        assert bundle_layout(MACOS_ARM64).library_var == "DYLD_LIBRARY_PATH"
        assert bundle_layout(LINUX_X64).critical_files == (
            "vapoursynth/vspipe", "vapoursynth/plugins", "ffmpeg/ffmpeg",
        )


def touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("")
    return path


class TestWorkerLocator:
    """Candidate order and failure reporting."""

    def test_explicit_wins(self, tmp_path):
        explicit = touch(tmp_path / "custom" / "my-worker")
        touch(tmp_path / "bundled" / WORKER_NAME)
        locator = WorkerLocator(explicit=explicit, bundled_dir=tmp_path / "bundled", platform=LINUX_X64)
        assert locator.locate() == explicit

    def test_bundled_before_search_paths(self, tmp_path):
        bundled = touch(tmp_path / "bundled" / WORKER_NAME)
        touch(tmp_path / "dev" / WORKER_NAME)
        locator = WorkerLocator(
            search_paths=[tmp_path / "dev"],
            bundled_dir=tmp_path / "bundled",
            platform=LINUX_X64,
        )
        assert locator.locate() == bundled

    def test_search_path_directory_and_file(self, tmp_path):
        worker = touch(tmp_path / "dev" / "build" / WORKER_NAME)
        locator = WorkerLocator(
            explicit=tmp_path / "missing",
            search_paths=[tmp_path / "dev", tmp_path / "dev" / "build"],
            bundled_dir=tmp_path / "bundled",
            platform=LINUX_X64,
        )
        assert locator.candidates() == [
            tmp_path / "missing",
            tmp_path / "bundled" / WORKER_NAME,
            tmp_path / "dev" / WORKER_NAME,
            tmp_path / "dev" / "build" / WORKER_NAME,
        ]
        assert locator.locate() == worker

    def test_windows_name(self, tmp_path):
        locator = WorkerLocator(bundled_dir=tmp_path, platform=WINDOWS_X64)
        assert locator.candidates() == [tmp_path / "restoreflow-worker.exe"]

    def test_not_found_lists_searched(self, tmp_path, no_path_tools):
        locator = WorkerLocator(
            explicit=tmp_path / "missing",
            bundled_dir=tmp_path / "bundled",
            platform=LINUX_X64,
        )
        with pytest.raises(ExecutableNotFound) as exc_info:
            locator.locate()
        assert exc_info.value.searched == [
            str(tmp_path / "missing"),
            str(tmp_path / "bundled" / WORKER_NAME),
            "PATH",
        ]

    @pytest.mark.skipif(sys.platform == "win32", reason="PATH lookup of a shebang script")
    def test_path_fallback(self, tmp_path, monkeypatch, make_script):
        worker = make_script(WORKER_NAME, "print('hi')\n")
        monkeypatch.setenv("PATH", str(worker.parent))
        locator = WorkerLocator(bundled_dir=tmp_path / "bundled")
        assert locator.locate() == worker

    def test_from_settings(self, settings, tmp_path):
        settings.worker_path = tmp_path / "w"
        settings.worker_search_paths = [tmp_path / "dev"]
        locator = WorkerLocator.from_settings(settings)
        assert locator.explicit == tmp_path / "w"
        assert locator.search_paths == [tmp_path / "dev"]


class TestToolPaths:
    """Bundled tools with PATH fallback."""

    def test_bundled(self, deps_dir):
        ffmpeg = touch(deps_dir / bundle_layout(LINUX_X64).ffmpeg)
        tools = ToolPaths(deps_dir, platform=LINUX_X64)
        assert tools.ffmpeg == ffmpeg
        assert tools.plugin_dir == deps_dir / "vapoursynth" / "plugins"

    def test_missing(self, deps_dir, no_path_tools):
        tools = ToolPaths(deps_dir, platform=LINUX_X64)
        with pytest.raises(ExecutableNotFound) as exc_info:
            tools.resolve("vspipe")
        assert exc_info.value.searched == [str(deps_dir / "vapoursynth" / "vspipe"), "PATH"]

    @pytest.mark.skipif(sys.platform == "win32", reason="PATH lookup of a shebang script")
    def test_path_fallback(self, deps_dir, monkeypatch, make_script):
        ffprobe = make_script("ffprobe", "print('{}')\n")
        monkeypatch.setenv("PATH", str(ffprobe.parent))
        assert ToolPaths(deps_dir).ffprobe == ffprobe

    def test_platform_defaults_to_host(self, deps_dir):
        assert ToolPaths(deps_dir).platform == platform_id()


class TestBuildEnvironment:
    """Environment pointed at the bundle."""

    def test_no_bundle_returns_base(self, tmp_path):
        base = {"PATH": "/usr/bin", "HOME": "/home/user"}
        assert build_environment(tmp_path / "missing", platform=LINUX_X64, base=base) == base
        assert build_environment(None, base=base) == base

    def test_base_not_modified(self, deps_dir):
        base = {"PATH": "/usr/bin"}
        build_environment(deps_dir, platform=LINUX_X64, base=base)
        assert base == {"PATH": "/usr/bin"}

    def test_linux_bundle(self, deps_dir):
        env = build_environment(deps_dir, platform=LINUX_X64, base={"PATH": "/usr/bin"})

        assert env["PYTHONPATH"] == str(deps_dir / "python-packages")
        assert env["PYTHONNOUSERSITE"] == "1"
        assert env["VAPOURSYNTH_PLUGIN_PATH"] == str(deps_dir / "vapoursynth" / "plugins")
        assert env["PATH"].split(":") == [
            str(deps_dir / "vapoursynth"),
            str(deps_dir / "ffmpeg"),
            "/usr/bin",
        ]
        assert env["LD_LIBRARY_PATH"] == str(deps_dir / "vapoursynth")
        assert "PYTHONHOME" not in env

    def test_embedded_python(self, deps_dir):
        (deps_dir / "python").mkdir()
        env = build_environment(deps_dir, platform=MACOS_ARM64, base={"DYLD_LIBRARY_PATH": "/opt/lib"})

        assert env["PYTHONHOME"] == str(deps_dir / "python")
        assert env["PATH"].split(":")[0] == str(deps_dir / "python" / "bin")
        assert env["DYLD_LIBRARY_PATH"].split(":") == [
            str(deps_dir / "vapoursynth"),
            str(deps_dir / "python" / "lib"),
            "/opt/lib",
        ]

    def test_windows_bundle(self, deps_dir):
        (deps_dir / "vapoursynth").mkdir()
        env = build_environment(deps_dir, platform=WINDOWS_X64, base={"PATH": r"C:\Windows"})

        assert env["PYTHONHOME"] == str(deps_dir / "vapoursynth")
        assert env["PATH"].split(";") == [
            str(deps_dir / "vapoursynth"),
            str(deps_dir / "ffmpeg"),
            r"C:\Windows",
        ]
        assert "LD_LIBRARY_PATH" not in env

    def test_defaults_to_os_environ(self, deps_dir, monkeypatch):
        monkeypatch.setenv("RESTOREFLOW_MARKER", "1")
        assert build_environment(deps_dir)["RESTOREFLOW_MARKER"] == "1"
