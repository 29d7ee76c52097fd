"""Tests for PreviewGenerator with fake ffmpeg, ffprobe, vspipe and worker."""
import asyncio
import sys

import pytest

from restoreflow.engine.locator import ToolPaths, WorkerLocator
from restoreflow.exceptions import (
    ConfigurationError,
    ExecutableNotFound,
    PreviewCancelled,
    PreviewError,
)
from restoreflow.models.job import ContainerFormat, EncodingSettings, FieldOrder, VideoCodec
from restoreflow.preview.cancel import CancelToken
from restoreflow.preview.debounce import Debouncer
from restoreflow.preview.generator import PreviewGenerator
from restoreflow.utils.platform import bundle_layout

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="fake tools are shebang scripts")


# Writes an image at the last argument and records each call.
FFMPEG = """
import sys, time
from pathlib import Path

calls = Path(__file__).with_name("ffmpeg_calls.log")
with open(calls, "a") as f:
    f.write(" ".join(sys.argv[1:]) + "\\n")

if any(arg.endswith("slow.avi") for arg in sys.argv):
    time.sleep(60)

output = Path(sys.argv[-1])
if output.name == "thumb_3.jpg":
    sys.stderr.write("Invalid data found when processing input\\n")
    sys.exit(1)
data = sys.stdin.buffer.read() if "pipe:0" in sys.argv else b"JPEG"
output.write_bytes(b"IMG:" + data)
"""

FFPROBE = """
import json
print(json.dumps({
    "streams": [
        {"codec_type": "video", "codec_name": "dvvideo", "width": 720, "height": 480,
         "r_frame_rate": "30000/1001", "pix_fmt": "yuv411p", "field_order": "bb", "nb_frames": "300"},
        {"codec_type": "audio", "codec_name": "pcm_s16le"},
    ],
    "format": {"duration": "10.010"},
}))
"""

VSPIPE = """
import sys
sys.stdout.buffer.write(b"YUV4MPEG2 frame " + sys.argv[sys.argv.index("--start") + 1].encode())
"""

# Frame 0 hangs so it can be superseded; other frames render at once.
WORKER = """
import json, sys, time
from pathlib import Path

args = sys.argv[1:]
job = json.loads(Path(args[args.index("--config") + 1]).read_text())
frame = args[args.index("--frame") + 1]
assert "--preview" in args

sys.stderr.write("tff=%s\\n" % json.dumps(job["qtgmcParameters"].get("tff")))
sys.stderr.flush()
if frame == "0":
    time.sleep(60)
if frame == "13":
    sys.stderr.write("Python exception: havsfunc missing\\n")
    sys.exit(3)
if frame == "14":
    sys.exit(0)
sys.stdout.buffer.write(b"PNG" + frame.encode())
"""


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "capture.avi"
    path.write_bytes(b"")
    return path


@pytest.fixture
def generator(tmp_path, deps_dir, install_tool, make_script):
    install_tool("ffmpeg", FFMPEG)
    install_tool("ffprobe", FFPROBE)
    install_tool("vspipe", VSPIPE)
    worker = make_script("restoreflow-worker", WORKER)
    gen = PreviewGenerator(
        tools=ToolPaths(deps_dir),
        locator=WorkerLocator(explicit=worker, bundled_dir=tmp_path / "nowhere", use_path=False),
        deps_dir=deps_dir,
        temp_root=tmp_path / "preview",
        debounce=0.05,
    )
    return gen


@pytest.fixture
def ffmpeg_calls(deps_dir):
    """Log of the fake ffmpeg's command lines."""
    return (deps_dir / bundle_layout().ffmpeg).with_name("ffmpeg_calls.log")


def call_count(path) -> int:
    if not path.exists():
        return 0
    return len(path.read_text().splitlines())


async def wait_until(predicate, timeout: float = 10.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout=timeout)


def track_spawns(gen):
    """Record the number of live processes at every spawn."""
    seen = []
    original = gen._spawn

    async def spawn(cmd, **kwargs):
        seen.append(gen.live_process_count)
        return await original(cmd, **kwargs)

    gen._spawn = spawn
    return seen


class TestOpen:
    """Selecting and probing the source."""

    async def test_probe_sets_frame_rate_and_field_order(self, generator, source):
        info = await generator.open(source)

        assert info.width == 720
        assert info.field_order is FieldOrder.BOTTOM_FIELD_FIRST
        assert info.frame_count == 300
        assert info.has_audio is True
        assert generator.frame_rate == pytest.approx(29.97, abs=0.01)
        await generator.dispose()

    async def test_explicit_frame_rate_wins(self, generator, source):
        await generator.open(source, frame_rate=25.0)
        assert generator.frame_rate == 25.0
        await generator.dispose()

    async def test_frame_index(self, generator, source):
        await generator.open(source, frame_rate=25.0, probe=False)
        assert generator.frame_index(1.0) == 25
        assert generator.frame_index(1.01) == 25
        assert generator.frame_index(-2.0) == 0
        await generator.dispose()

    async def test_default_frame_rate_before_probe(self, generator):
        assert generator.frame_rate == 29.97

    async def test_requires_open(self, generator):
        with pytest.raises(PreviewError):
            await generator.get_raw_frame(1.0)


class TestRawFrames:
    """Raw frame extraction and caching."""

    async def test_cached_by_frame_index(self, generator, source, ffmpeg_calls):
        await generator.open(source, frame_rate=25.0, probe=False)

        first = await generator.get_raw_frame(1.0)
        second = await generator.get_raw_frame(1.01)

        assert first == second
        assert first.name == "frame_1_000025.jpg"
        assert first.read_bytes() == b"IMG:JPEG"
        assert call_count(ffmpeg_calls) == 1
        assert generator.cache_hits == 1
        assert generator.cached_frames == [25]
        await generator.dispose()

    async def test_concurrent_requests_share_extraction(self, generator, source, ffmpeg_calls):
        await generator.open(source, frame_rate=25.0, probe=False)

        a, b = await asyncio.gather(generator.get_raw_frame(2.0), generator.get_raw_frame(2.0))

        assert a == b
        assert call_count(ffmpeg_calls) == 1
        await generator.dispose()

    async def test_seek_position_uses_frame_time(self, generator, source, ffmpeg_calls):
        await generator.open(source, frame_rate=25.0, probe=False)
        await generator.get_raw_frame(1.01)
        assert "-ss 1.000" in ffmpeg_calls.read_text()
        await generator.dispose()

    async def test_reopen_clears_cache(self, generator, source):
        await generator.open(source, frame_rate=25.0, probe=False)
        frame = await generator.get_raw_frame(1.0)

        await generator.open(source, frame_rate=25.0, probe=False)

        assert generator.cached_frames == []
        assert not frame.exists()
        await generator.dispose()

    async def test_reopen_abandons_running_extraction(self, generator, tmp_path, source, ffmpeg_calls):
        slow = tmp_path / "slow.avi"
        slow.write_bytes(b"")
        await generator.open(slow, frame_rate=25.0, probe=False)
        stale = asyncio.ensure_future(generator.get_raw_frame(1.0))
        await wait_until(lambda: call_count(ffmpeg_calls) == 1)

        await generator.open(source, frame_rate=25.0, probe=False)
        frame = await generator.get_raw_frame(1.0)

        with pytest.raises(PreviewCancelled):
            await stale
        assert frame.name == "frame_2_000025.jpg"
        assert str(source) in ffmpeg_calls.read_text().splitlines()[-1]
        assert call_count(ffmpeg_calls) == 2
        assert generator.cached_frames == [25]
        assert await generator.get_raw_frame(1.0) == frame
        await wait_until(lambda: generator.live_process_count == 0)
        await generator.dispose()

    async def test_missing_ffmpeg(self, tmp_path, source, no_path_tools):
        gen = PreviewGenerator(tools=ToolPaths(tmp_path / "empty"), temp_root=tmp_path / "preview")
        await gen.open(source, frame_rate=25.0, probe=False)
        with pytest.raises(ExecutableNotFound):
            await gen.get_raw_frame(1.0)
        await gen.dispose()


class TestThumbnails:
    """Concurrent thumbnail extraction."""

    async def test_failures_are_omitted(self, generator, source):
        await generator.open(source, frame_rate=25.0, probe=False)

        thumbnails = await generator.extract_thumbnails(count=5, duration=10.0)

        assert [t.index for t in thumbnails] == [0, 1, 2, 4]
        assert [t.time for t in thumbnails] == [0.0, 2.0, 4.0, 8.0]
        assert all(t.read_bytes() == b"IMG:JPEG" for t in thumbnails)
        await generator.dispose()

    async def test_duration_from_probe(self, generator, source):
        await generator.open(source)
        thumbnails = await generator.extract_thumbnails(count=2)
        assert [t.time for t in thumbnails] == [0.0, pytest.approx(5.005)]
        await generator.dispose()

    async def test_unknown_duration(self, generator, source):
        await generator.open(source, frame_rate=25.0, probe=False)
        with pytest.raises(PreviewError):
            await generator.extract_thumbnails(count=5)
        assert await generator.extract_thumbnails(count=0) == []
        await generator.dispose()


class TestProcessedPreview:
    """Worker-rendered previews."""

    async def test_renders_frame(self, generator, source, pipeline):
        await generator.open(source, frame_rate=25.0, probe=False)
        image = await generator.generate_preview(1.0, pipeline)
        assert image == b"PNG25"
        assert not generator.is_busy
        assert generator.live_process_count == 0
        await generator.dispose()

    async def test_field_order_reaches_worker(self, generator, source, pipeline):
        await generator.open(source)
        messages = []
        generator.log.subscribe(lambda m: messages.append(m.message))

        await generator.generate_preview(1.0, pipeline)
        await generator.generate_preview(1.0, pipeline, field_order=FieldOrder.TOP_FIELD_FIRST)

        assert messages == ["tff=false", "tff=true"]
        await generator.dispose()

    async def test_invalid_encoding_leaves_running_preview(self, generator, source, pipeline):
        await generator.open(source, frame_rate=25.0, probe=False)
        running = asyncio.create_task(generator.generate_preview(0.0, pipeline))
        await wait_until(lambda: generator.live_process_count == 1)
        prores_in_mkv = EncodingSettings(codec=VideoCodec.PRORES_HQ, container=ContainerFormat.MKV)

        with pytest.raises(ConfigurationError):
            await generator.generate_preview(1.0, pipeline, encoding=prores_in_mkv)

        assert generator.is_busy
        assert generator.superseded_count == 0
        generator.cancel_preview()
        with pytest.raises(PreviewCancelled):
            await asyncio.wait_for(running, timeout=10)
        assert not generator.is_busy

        with pytest.raises(ConfigurationError):
            await generator.generate_preview(1.0, pipeline, encoding=prores_in_mkv)
        assert not generator.is_busy
        await generator.dispose()

    async def test_worker_failure(self, generator, source, pipeline):
        await generator.open(source, frame_rate=1.0, probe=False)
        with pytest.raises(PreviewError) as exc_info:
            await generator.generate_preview(13.0, pipeline)
        assert "exited with code 3" in str(exc_info.value)
        assert "Python exception: havsfunc missing" in exc_info.value.last_lines
        await generator.dispose()

    async def test_empty_output(self, generator, source, pipeline):
        await generator.open(source, frame_rate=1.0, probe=False)
        with pytest.raises(PreviewError):
            await generator.generate_preview(14.0, pipeline)
        await generator.dispose()

    async def test_job_files_removed(self, generator, source, pipeline):
        await generator.open(source, frame_rate=25.0, probe=False)
        await generator.generate_preview(1.0, pipeline)
        assert list(generator.temp_dir.glob("preview_job_*.json")) == []
        await generator.dispose()


class TestSupersession:
    """A new request cancels the one in flight."""

    async def test_newer_request_wins(self, generator, source, pipeline):
        await generator.open(source, frame_rate=25.0, probe=False)
        live_at_spawn = track_spawns(generator)

        first = asyncio.create_task(generator.generate_preview(0.0, pipeline))
        await wait_until(lambda: generator.live_process_count == 1)

        image = await generator.generate_preview(1.0, pipeline)

        assert image == b"PNG25"
        with pytest.raises(PreviewCancelled):
            await first
        # the superseded worker was gone before the new one started
        assert live_at_spawn == [0, 0]
        assert generator.superseded_count == 1
        assert generator.live_process_count == 0
        await generator.dispose()

    async def test_cancel_preview(self, generator, source, pipeline):
        await generator.open(source, frame_rate=25.0, probe=False)
        task = asyncio.create_task(generator.generate_preview(0.0, pipeline))
        await wait_until(lambda: generator.live_process_count == 1)

        generator.cancel_preview()

        with pytest.raises(PreviewCancelled):
            await asyncio.wait_for(task, timeout=10)
        assert generator.live_process_count == 0
        await generator.dispose()

    async def test_task_cancellation_kills_worker(self, generator, source, pipeline):
        await generator.open(source, frame_rate=25.0, probe=False)
        task = asyncio.create_task(generator.generate_preview(0.0, pipeline))
        await wait_until(lambda: generator.live_process_count == 1)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await wait_until(lambda: generator.live_process_count == 0)
        await generator.dispose()


class TestDebouncedRequests:
    """request_preview coalesces bursts."""

    async def test_only_last_request_runs(self, generator, source, pipeline):
        await generator.open(source, frame_rate=25.0, probe=False)
        live_at_spawn = track_spawns(generator)

        futures = [generator.request_preview(t, pipeline) for t in (1.0, 1.1, 1.2)]

        assert await asyncio.wait_for(futures[-1], timeout=10) == b"PNG30"
        assert futures[0].cancelled()
        assert futures[1].cancelled()
        assert len(live_at_spawn) == 1
        await generator.dispose()


class TestScriptFrames:
    """vspipe | ffmpeg rendering."""

    async def test_render_script_frame(self, generator, tmp_path):
        script = tmp_path / "restore.vpy"
        script.write_text("clip.set_output()")

        output = await generator.render_script_frame(script, 42, tmp_path / "frame.png")

        assert output.read_bytes() == b"IMG:YUV4MPEG2 frame 42"
        assert generator.live_process_count == 0
        await generator.dispose()


class TestDispose:
    """Releasing processes and files."""

    async def test_removes_temp_dir(self, generator, source):
        await generator.open(source, frame_rate=25.0, probe=False)
        await generator.get_raw_frame(1.0)
        temp_dir = generator.temp_dir
        assert temp_dir.exists()

        await generator.dispose()
        await generator.dispose()

        assert not temp_dir.exists()
        assert generator.log.closed

    async def test_kills_preview_in_flight(self, generator, source, pipeline):
        await generator.open(source, frame_rate=25.0, probe=False)
        task = asyncio.create_task(generator.generate_preview(0.0, pipeline))
        await wait_until(lambda: generator.live_process_count == 1)

        await generator.dispose()

        with pytest.raises(PreviewCancelled):
            await asyncio.wait_for(task, timeout=10)
        assert generator.live_process_count == 0

    async def test_unusable_after_dispose(self, generator, source):
        await generator.dispose()
        with pytest.raises(PreviewError):
            await generator.open(source, probe=False)

    async def test_context_manager(self, generator, source):
        async with generator as gen:
            await gen.open(source, frame_rate=25.0, probe=False)
            await gen.get_raw_frame(0.0)
            temp_dir = gen.temp_dir
        assert not temp_dir.exists()


class TestCancelToken:
    """Per-request cancellation."""

    def test_tokens_are_independent(self):
        first, second = CancelToken(), CancelToken()
        first.cancel()
        assert first.cancelled
        assert not second.cancelled
        assert second.request_id != first.request_id

    def test_callbacks_run_once(self):
        token = CancelToken()
        calls = []
        token.on_cancel(lambda: calls.append("a"))
        token.cancel()
        token.cancel()
        token.on_cancel(lambda: calls.append("late"))
        assert calls == ["a", "late"]

    def test_raise_if_cancelled(self):
        token = CancelToken()
        token.raise_if_cancelled()
        token.cancel()
        with pytest.raises(PreviewCancelled):
            token.raise_if_cancelled()


class TestDebouncer:
    """Quiet-period coalescing."""

    async def test_last_call_wins(self):
        debouncer = Debouncer(0.02)
        calls = []

        def record(value):
            calls.append(value)
            return value * 2

        futures = [debouncer.schedule(record, v) for v in (1, 2, 3)]

        assert await futures[-1] == 6
        assert calls == [3]
        assert futures[0].cancelled() and futures[1].cancelled()
        assert debouncer.superseded == 2
        assert debouncer.fired == 1

    async def test_coroutine_callback(self):
        debouncer = Debouncer(0.01)

        async def render(value):
            await asyncio.sleep(0)
            return f"frame {value}"

        assert await debouncer.schedule(render, 7) == "frame 7"

    async def test_exception_propagates(self):
        debouncer = Debouncer(0.01)

        async def fail():
            raise PreviewError("worker failed")

        with pytest.raises(PreviewError):
            await debouncer.schedule(fail)

    async def test_cancel_drops_pending(self):
        debouncer = Debouncer(0.01)
        calls = []
        future = debouncer.schedule(calls.append, 1)
        assert debouncer.pending

        debouncer.cancel()
        await asyncio.sleep(0.05)

        assert future.cancelled()
        assert calls == []
        assert not debouncer.pending
