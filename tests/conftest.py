"""Shared pytest fixtures for restoreflow tests."""
import json
import logging
import os
import stat
import sys
import textwrap
from pathlib import Path
from typing import Callable

import pytest

from restoreflow.config import Settings
from restoreflow.models.job import VideoJob
from restoreflow.models.pipeline import RestorationPipeline
from restoreflow.utils.platform import bundle_layout, platform_id


posix_only = pytest.mark.skipif(
    sys.platform == "win32",
    reason="fake tools are executable Python scripts with a shebang",
)


# ============================================================================
# Fake executables
# ============================================================================

def write_script(path: Path, body: str) -> Path:
    """Write an executable Python script that runs under this interpreter."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body), encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def make_script(tmp_path) -> Callable[[str, str], Path]:
    """Factory for fake worker/tool scripts inside tmp_path/bin."""
    def factory(name: str, body: str) -> Path:
        return write_script(tmp_path / "bin" / name, body)
    return factory


@pytest.fixture
def deps_dir(tmp_path) -> Path:
    """Empty dependency bundle directory for the host platform."""
    path = tmp_path / "deps"
    path.mkdir()
    return path


@pytest.fixture
def installed_deps(deps_dir) -> Path:
    """``deps_dir`` holding a bundle the installer reports as installed."""
    from restoreflow.deps.installer import MARKER_NAME, DepsVersionInfo

    layout = bundle_layout(platform_id())
    for relative in layout.critical_files:
        path = deps_dir / relative
        if relative == layout.plugin_dir:
            path.mkdir(parents=True, exist_ok=True)
        elif not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b"")
    marker = {"version": DepsVersionInfo.load().version}
    (deps_dir / MARKER_NAME).write_text(json.dumps(marker), encoding="utf-8")
    return deps_dir


@pytest.fixture
def install_tool(deps_dir) -> Callable[[str, str], Path]:
    """Place a fake tool at its bundled location inside ``deps_dir``."""
    layout = bundle_layout(platform_id())

    def factory(tool: str, body: str) -> Path:
        relative = {"ffmpeg": layout.ffmpeg, "ffprobe": layout.ffprobe, "vspipe": layout.vspipe}[tool]
        return write_script(deps_dir / relative, body)
    return factory


# Writes a tiny file at the last argument, like ffmpeg writing an image.
FAKE_FFMPEG = """
import sys
from pathlib import Path
Path(sys.argv[-1]).write_bytes(b"JPEG")
"""


# ============================================================================
# Model fixtures
# ============================================================================

@pytest.fixture
def pipeline() -> RestorationPipeline:
    return RestorationPipeline()


@pytest.fixture
def sample_job(tmp_path) -> VideoJob:
    """A job for a 1000-frame capture."""
    return VideoJob(
        input_path=str(tmp_path / "capture.avi"),
        output_path=str(tmp_path / "restored.mkv"),
        total_frames=1000,
        id="job-1",
    )


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings confined to tmp_path."""
    return Settings(
        deps_dir=tmp_path / "deps",
        temp_dir=tmp_path / "tmp",
        filter_dir=tmp_path / "filters",
        preview_debounce_ms=20,
        cancel_grace_ms=200,
    )


# ============================================================================
# Environment isolation
# ============================================================================

@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep tests away from the user's config files and environment."""
    monkeypatch.delenv("RESTOREFLOW_WORKER", raising=False)
    monkeypatch.delenv("RESTOREFLOW_DEPS_DIR", raising=False)
    monkeypatch.setattr("restoreflow.config.APP_DIR", tmp_path / "home")
    monkeypatch.chdir(tmp_path)
    yield


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo handler changes made by configure_logging."""
    yield
    root = logging.getLogger("restoreflow")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = True
    root.setLevel(logging.NOTSET)


@pytest.fixture
def no_path_tools(monkeypatch):
    """Hide tools installed on the system PATH."""
    monkeypatch.setenv("PATH", os.devnull)
