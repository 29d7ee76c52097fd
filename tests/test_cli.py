"""Tests for the command-line interface."""
import json
import sys

import pytest

from restoreflow.cli import EXIT_FAILURE, EXIT_OK, create_parser, main
from restoreflow.models.job import VideoJob

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="fake tools are shebang scripts")

WORKER = """
import json, sys
from pathlib import Path

job = json.loads(Path(sys.argv[2]).read_text())
print(json.dumps({"type": "progress", "frame": 50, "totalFrames": 100, "fps": 30.0, "eta": 1.6}), flush=True)
print(json.dumps({"type": "log", "level": "warning", "message": "Dropped frame 17"}), flush=True)
if job["outputPath"].endswith("fail.mkv"):
    print(json.dumps({"type": "error", "message": "Encoder crashed"}), flush=True)
    sys.exit(1)
print(json.dumps({"type": "complete", "success": True, "outputPath": job["outputPath"]}), flush=True)
"""

FFPROBE = """
import json
print(json.dumps({
    "streams": [{"codec_type": "video", "codec_name": "dvvideo", "width": 720, "height": 576,
                 "r_frame_rate": "25/1", "pix_fmt": "yuv420p"}],
    "format": {"duration": "8.0"},
}))
"""

FFMPEG = """
import sys
from pathlib import Path
Path(sys.argv[-1]).write_bytes(b"JPEG")
"""


class TestArgumentParsing:
    """Test CLI argument parsing."""

    def test_run(self):
        args = create_parser().parse_args(["run", "job.json", "-v"])
        assert args.job == "job.json"
        assert args.verbose is True

    def test_global_options(self):
        args = create_parser().parse_args(
            ["--deps-dir", "/opt/deps", "--log-level", "DEBUG", "deps", "install", "--force"]
        )
        assert args.deps_dir == "/opt/deps"
        assert args.log_level == "DEBUG"
        assert args.force is True

    def test_preview(self):
        args = create_parser().parse_args([
            "preview", "capture.avi", "--time", "12.5", "--output", "frame.png",
            "--processed", "--field-order", "bff",
        ])
        assert args.time == 12.5
        assert args.processed is True
        assert args.field_order == "bff"
        assert args.fps is None

    def test_preview_requires_time(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["preview", "capture.avi", "--output", "frame.png"])

    def test_invalid_field_order(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(
                ["preview", "in.avi", "--time", "1", "--output", "o.png", "--field-order", "auto"]
            )

    def test_no_command_prints_help(self, capsys):
        assert main([]) == EXIT_OK
        assert "usage: restoreflow" in capsys.readouterr().out


class TestConfigCommands:
    """config init / show."""

    def test_init_and_show(self, tmp_path, capsys):
        config = tmp_path / "restoreflow.yaml"

        assert main(["--config", str(config), "config", "init"]) == EXIT_OK
        assert config.exists()

        assert main(["--config", str(config), "config", "show"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "cancel_grace_ms: 500" in out

    def test_init_refuses_overwrite(self, tmp_path):
        config = tmp_path / "restoreflow.yaml"
        config.write_text("cancel_grace_ms: 100\n")

        assert main(["--config", str(config), "config", "init"]) == EXIT_FAILURE
        assert config.read_text() == "cancel_grace_ms: 100\n"

    def test_init_project(self, tmp_path):
        assert main(["config", "init", "--project"]) == EXIT_OK
        assert (tmp_path / ".restoreflow.yaml").exists()

    def test_invalid_config_value(self, tmp_path, capsys):
        (tmp_path / ".restoreflow.yaml").write_text("thumbnail_width: 0\n")
        assert main(["config", "show"]) == EXIT_FAILURE
        assert "thumbnail_width" in capsys.readouterr().err


class TestDepsCommands:
    """deps check / uninstall."""

    def test_check_missing(self, tmp_path, capsys):
        assert main(["--deps-dir", str(tmp_path / "empty"), "deps", "check"]) == EXIT_FAILURE
        assert "missing" in capsys.readouterr().out

    def test_check_installed(self, installed_deps):
        assert main(["--deps-dir", str(installed_deps), "deps", "check"]) == EXIT_OK

    def test_check_custom_metadata(self, tmp_path, deps_dir):
        metadata = tmp_path / "deps-version.json"
        metadata.write_text(json.dumps({"version": "9.9.9", "platforms": {}}))
        (deps_dir / "version.json").write_text(json.dumps({"version": "1.0.0"}))

        code = main(["--deps-dir", str(deps_dir), "deps", "check", "--metadata", str(metadata)])

        assert code == EXIT_FAILURE

    def test_uninstall(self, deps_dir, capsys):
        assert main(["--deps-dir", str(deps_dir), "deps", "uninstall"]) == EXIT_OK
        assert not deps_dir.exists()
        assert main(["--deps-dir", str(deps_dir), "deps", "uninstall"]) == EXIT_OK
        assert "Nothing to remove" in capsys.readouterr().out


@posix_only
class TestRunCommand:
    """run with a fake worker."""

    def write_job(self, tmp_path, output_name="restored.mkv"):
        job = VideoJob(
            input_path=str(tmp_path / "capture.avi"),
            output_path=str(tmp_path / output_name),
            total_frames=100,
        )
        return job.write(tmp_path / "job.json")

    def test_success(self, tmp_path, installed_deps, make_script, capsys):
        worker = make_script("restoreflow-worker", WORKER)
        job_file = self.write_job(tmp_path)

        code = main(["--worker", str(worker), "--deps-dir", str(tmp_path / "deps"), "run", str(job_file)])

        assert code == EXIT_OK
        out = capsys.readouterr().out
        assert "Completed" in out
        assert "Dropped frame 17" in out

    def test_failure(self, tmp_path, installed_deps, make_script, capsys):
        worker = make_script("restoreflow-worker", WORKER)
        job_file = self.write_job(tmp_path, "fail.mkv")

        code = main(["--worker", str(worker), "--deps-dir", str(tmp_path / "deps"), "run", str(job_file)])

        assert code == EXIT_FAILURE
        assert "Encoder crashed" in capsys.readouterr().err

    def test_missing_worker(self, tmp_path, installed_deps, no_path_tools, capsys):
        job_file = self.write_job(tmp_path)
        code = main(["--worker", str(tmp_path / "nope"), "--deps-dir", str(installed_deps), "run", str(job_file)])
        assert code == EXIT_FAILURE
        assert "Could not find executable" in capsys.readouterr().err

    def test_missing_job_file(self, tmp_path, capsys):
        assert main(["run", str(tmp_path / "missing.json")]) == EXIT_FAILURE
        assert "Cannot read job file" in capsys.readouterr().err

    def test_missing_dependencies_block_worker(self, tmp_path, make_script, capsys):
        spawned = tmp_path / "spawned"
        worker = make_script("restoreflow-worker", f"open({str(spawned)!r}, 'w').close()\n")
        job_file = self.write_job(tmp_path)

        code = main(["--worker", str(worker), "--deps-dir", str(tmp_path / "empty"), "run", str(job_file)])

        assert code == EXIT_FAILURE
        assert not spawned.exists()
        err = capsys.readouterr().err
        assert "missing" in err
        assert "restoreflow deps install" in err


@posix_only
class TestProbeAndPreview:
    """probe and raw preview with fake ffprobe/ffmpeg."""

    def test_probe_missing_file(self, capsys):
        assert main(["probe", "missing.avi"]) == EXIT_FAILURE
        assert "File not found" in capsys.readouterr().err

    def test_probe_json(self, tmp_path, installed_deps, install_tool, capsys):
        install_tool("ffprobe", FFPROBE)
        source = tmp_path / "capture.avi"
        source.write_bytes(b"")

        assert main(["--deps-dir", str(installed_deps), "probe", str(source), "--json"]) == EXIT_OK

        info = json.loads(capsys.readouterr().out)
        assert info["field_order"] == "tff"
        assert info["frame_count"] == 200

    def test_probe_table(self, tmp_path, installed_deps, install_tool, capsys):
        install_tool("ffprobe", FFPROBE)
        source = tmp_path / "capture.avi"
        source.write_bytes(b"")

        assert main(["--deps-dir", str(installed_deps), "probe", str(source)]) == EXIT_OK
        assert "720x576" in capsys.readouterr().out

    def test_raw_preview(self, tmp_path, installed_deps, install_tool):
        install_tool("ffmpeg", FFMPEG)
        source = tmp_path / "capture.avi"
        source.write_bytes(b"")
        output = tmp_path / "frame.jpg"

        code = main([
            "--deps-dir", str(installed_deps),
            "preview", str(source), "--time", "2.0", "--fps", "25", "--output", str(output),
        ])

        assert code == EXIT_OK
        assert output.read_bytes() == b"JPEG"

    def test_preview_requires_dependencies(self, tmp_path, deps_dir, install_tool, capsys):
        install_tool("ffmpeg", FFMPEG)
        source = tmp_path / "capture.avi"
        source.write_bytes(b"")
        output = tmp_path / "frame.jpg"

        code = main([
            "--deps-dir", str(deps_dir),
            "preview", str(source), "--time", "2.0", "--fps", "25", "--output", str(output),
        ])

        assert code == EXIT_FAILURE
        assert not output.exists()
        assert "restoreflow deps install" in capsys.readouterr().err

    def test_media_info_requires_dependencies(self, tmp_path, deps_dir, install_tool, capsys):
        install_tool("ffprobe", FFPROBE)
        source = tmp_path / "capture.avi"
        source.write_bytes(b"")

        assert main(["--deps-dir", str(deps_dir), "probe", str(source), "--json"]) == EXIT_FAILURE
        assert capsys.readouterr().out == ""
