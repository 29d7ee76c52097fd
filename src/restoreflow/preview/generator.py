"""On-demand single-frame previews.

The PreviewGenerator serves the interactive side of the application:

* raw source frames for scrubbing, cached by frame index
* processed previews rendered by the worker in single-frame mode
* scrubber thumbnails extracted concurrently
* single frames rendered from a VapourSynth script

At most one processed-preview process is alive per generator. Starting
a new request cancels the previous one and waits for its process to be
gone before spawning. Each request owns its token and its processes, so
a request only ever kills what it started or what the request it
replaces started.

Example usage:

    >>> generator = PreviewGenerator.from_settings(settings)
    >>> await generator.open("tape01.avi")
    >>> still = await generator.get_raw_frame(12.5)
    >>> png = await generator.generate_preview(12.5, pipeline)
    >>> await generator.dispose()
"""

import asyncio
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

from restoreflow.core.events import EventChannel
from restoreflow.engine.locator import ToolPaths, WorkerLocator, build_environment
from restoreflow.exceptions import ExecutableNotFound, PreviewCancelled, PreviewError
from restoreflow.models.job import EncodingSettings, FieldOrder
from restoreflow.models.pipeline import RestorationPipeline
from restoreflow.models.progress import LogLevel, LogMessage
from restoreflow.preview.cancel import CancelToken
from restoreflow.preview.debounce import Debouncer
from restoreflow.preview.probe import VideoInfo, probe_video

logger = logging.getLogger(__name__)

DEFAULT_FRAME_RATE = 29.97
DEFAULT_THUMBNAIL_COUNT = 20
ERROR_TAIL_LINES = 20


@dataclass(frozen=True)
class Thumbnail:
    """One scrubber thumbnail."""

    index: int
    time: float
    path: Path

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


def _lines(stderr: bytes) -> List[str]:
    return [line for line in stderr.decode("utf-8", errors="replace").splitlines() if line.strip()]


def _tail(stderr: bytes, count: int = ERROR_TAIL_LINES) -> List[str]:
    return _lines(stderr)[-count:]


class _PreviewRequest:
    """A preview request with its own token and the processes it spawned."""

    def __init__(self) -> None:
        self.token = CancelToken()
        self.processes: List[asyncio.subprocess.Process] = []

    def attach(self, process: asyncio.subprocess.Process) -> None:
        self.processes.append(process)

    def cancel(self) -> None:
        """Mark cancelled and kill this request's processes."""
        self.token.cancel()
        for process in self.processes:
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass

    async def reap(self) -> None:
        for process in self.processes:
            await process.wait()


class PreviewGenerator:
    """Single-frame rendering with cancellation and request coalescing.

    Args:
        tools: Resolves ffmpeg, ffprobe and vspipe
        locator: Finds the worker for processed previews
        deps_dir: Installed dependency bundle used for the environment
        temp_root: Parent of this generator's private temp directory
        default_frame_rate: Frame rate used until the source is probed
        thumbnail_width: Scrubber thumbnail width in pixels
        debounce: Quiet period for ``request_preview`` in seconds
        max_concurrent_extractions: Parallel ffmpeg runs for thumbnails
        environment: Base environment (default: ``os.environ``)
    """

    def __init__(
        self,
        tools: Optional[ToolPaths] = None,
        locator: Optional[WorkerLocator] = None,
        deps_dir: Optional[Path] = None,
        temp_root: Optional[Path] = None,
        default_frame_rate: float = DEFAULT_FRAME_RATE,
        thumbnail_width: int = 160,
        debounce: float = 0.3,
        max_concurrent_extractions: int = 8,
        environment: Optional[Dict[str, str]] = None,
    ) -> None:
        self.deps_dir = Path(deps_dir) if deps_dir else None
        self.tools = tools or ToolPaths(self.deps_dir or Path.home() / ".restoreflow" / "deps")
        self.locator = locator or WorkerLocator()
        self.temp_root = Path(temp_root) if temp_root else None
        self.default_frame_rate = default_frame_rate
        self.thumbnail_width = thumbnail_width
        self.max_concurrent_extractions = max_concurrent_extractions
        self.environment = environment

        self.log: EventChannel[LogMessage] = EventChannel("preview-log")

        self._input_path: Optional[str] = None
        self._frame_rate: Optional[float] = None
        self._video_info: Optional[VideoInfo] = None
        self._temp_dir: Optional[Path] = None
        self._frame_cache: Dict[int, Path] = {}
        self._frame_tasks: Dict[Tuple[int, int], asyncio.Future] = {}
        self._generation = 0
        self._active: Optional[_PreviewRequest] = None
        self._spawn_lock = asyncio.Lock()
        self._live: Set[asyncio.subprocess.Process] = set()
        self._debouncer = Debouncer(debounce)
        self._disposed = False

        self.cache_hits = 0
        self.superseded_count = 0

    @classmethod
    def from_settings(cls, settings) -> "PreviewGenerator":
        return cls(
            tools=ToolPaths(settings.deps_dir),
            locator=WorkerLocator.from_settings(settings),
            deps_dir=settings.deps_dir,
            temp_root=settings.temp_dir,
            default_frame_rate=settings.default_frame_rate,
            thumbnail_width=settings.thumbnail_width,
            debounce=settings.preview_debounce_ms / 1000.0,
        )

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def input_path(self) -> Optional[str]:
        return self._input_path

    @property
    def frame_rate(self) -> float:
        return self._frame_rate or self.default_frame_rate

    @property
    def video_info(self) -> Optional[VideoInfo]:
        return self._video_info

    @property
    def temp_dir(self) -> Path:
        """Private working directory, created on first use."""
        if self._temp_dir is None:
            if self.temp_root is not None:
                self.temp_root.mkdir(parents=True, exist_ok=True)
            self._temp_dir = Path(
                tempfile.mkdtemp(
                    prefix="restoreflow_preview_",
                    dir=str(self.temp_root) if self.temp_root else None,
                )
            )
        return self._temp_dir

    @property
    def is_busy(self) -> bool:
        """Whether a processed preview is in flight."""
        return self._active is not None

    @property
    def live_process_count(self) -> int:
        self._prune()
        return len(self._live)

    @property
    def cached_frames(self) -> List[int]:
        return sorted(self._frame_cache)

    def frame_index(self, time: float) -> int:
        """Nearest frame index for a timestamp in seconds."""
        return max(0, round(time * self.frame_rate))

    # -------------------------------------------------------------------------
    # Source
    # -------------------------------------------------------------------------

    async def open(
        self,
        input_path: Union[str, Path],
        frame_rate: Optional[float] = None,
        probe: bool = True,
    ) -> Optional[VideoInfo]:
        """Select the source video.

        Clears the frame cache and abandons raw frame extractions still
        running for the previous source. With ``probe`` the source is inspected
        with ffprobe to learn its frame rate, duration and field order;
        an explicit ``frame_rate`` takes precedence over the probed one.

        Raises:
            ProbeError: If probing fails
        """
        self._check_alive()
        self.cancel_preview()
        self._generation += 1
        for task in list(self._frame_tasks.values()):
            task.cancel()
        self._frame_tasks.clear()
        self.clear_cache()
        self._input_path = str(input_path)
        self._video_info = None
        self._frame_rate = frame_rate

        if probe:
            info = await probe_video(
                input_path,
                ffprobe=self.tools.ffprobe,
                env=self._environment(),
            )
            self._video_info = info
            if frame_rate is None and info.frame_rate > 0:
                self._frame_rate = info.frame_rate
        logger.info(f"Preview source {input_path} at {self.frame_rate:.3f} fps")
        return self._video_info

    def clear_cache(self) -> None:
        for path in self._frame_cache.values():
            try:
                path.unlink()
            except OSError:
                pass
        self._frame_cache.clear()

    # -------------------------------------------------------------------------
    # Raw frames
    # -------------------------------------------------------------------------

    async def get_raw_frame(self, time: float) -> Path:
        """Source frame nearest to ``time`` as a JPEG file.

        Frames are cached by index, so nearby timestamps that round to
        the same frame reuse one extraction.

        Raises:
            PreviewError: If extraction fails
            PreviewCancelled: If another source was opened meanwhile
        """
        self._check_open()
        index = self.frame_index(time)

        cached = self._frame_cache.get(index)
        if cached is not None and cached.exists():
            self.cache_hits += 1
            return cached

        key = (self._generation, index)
        task = self._frame_tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(
                self._extract_raw_frame(index, self._generation, str(self._input_path), self.frame_rate)
            )
            self._frame_tasks[key] = task
            task.add_done_callback(lambda _t, k=key: self._frame_tasks.pop(k, None))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise PreviewCancelled() from None
            raise

    async def _extract_raw_frame(
        self, index: int, generation: int, input_path: str, frame_rate: float
    ) -> Path:
        output = self.temp_dir / f"frame_{generation}_{index:06d}.jpg"
        await self._run_tool([
            str(self.tools.ffmpeg),
            "-y",
            "-ss", f"{index / frame_rate:.3f}",
            "-i", input_path,
            "-vframes", "1",
            "-q:v", "2",
            str(output),
        ])
        if not output.exists():
            raise PreviewError(f"ffmpeg produced no image for frame {index}")
        if generation == self._generation:
            self._frame_cache[index] = output
        return output

    # -------------------------------------------------------------------------
    # Thumbnails
    # -------------------------------------------------------------------------

    async def extract_thumbnails(
        self,
        count: int = DEFAULT_THUMBNAIL_COUNT,
        duration: Optional[float] = None,
    ) -> List[Thumbnail]:
        """Evenly spaced thumbnails for the scrubber strip.

        Extractions run concurrently; failed ones are left out, so the
        result may be shorter than ``count``. Order is by time.

        Raises:
            PreviewError: If the source duration is unknown
        """
        self._check_open()
        if duration is None:
            duration = self._video_info.duration if self._video_info else 0.0
        if count <= 0:
            return []
        if not duration or duration <= 0:
            raise PreviewError("Source duration is unknown; probe the source or pass a duration")

        ffmpeg = self.tools.ffmpeg
        interval = duration / count
        semaphore = asyncio.Semaphore(self.max_concurrent_extractions)

        async def extract_with_limit(i: int) -> Thumbnail:
            async with semaphore:
                return await self._extract_thumbnail(ffmpeg, i, i * interval)

        results = await asyncio.gather(
            *(extract_with_limit(i) for i in range(count)),
            return_exceptions=True,
        )

        thumbnails: List[Thumbnail] = []
        for i, result in enumerate(results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.debug(f"Thumbnail {i} failed: {result}")
                continue
            thumbnails.append(result)
        logger.debug(f"Extracted {len(thumbnails)}/{count} thumbnails")
        return thumbnails

    async def _extract_thumbnail(self, ffmpeg: Path, index: int, time: float) -> Thumbnail:
        output = self.temp_dir / f"thumb_{index}.jpg"
        await self._run_tool([
            str(ffmpeg),
            "-y",
            "-ss", f"{time:.3f}",
            "-i", str(self._input_path),
            "-vframes", "1",
            "-vf", f"scale={self.thumbnail_width}:-1",
            "-q:v", "5",
            str(output),
        ])
        if not output.exists():
            raise PreviewError(f"ffmpeg produced no thumbnail at {time:.3f}s")
        return Thumbnail(index=index, time=time, path=output)

    # -------------------------------------------------------------------------
    # Processed previews
    # -------------------------------------------------------------------------

    async def generate_preview(
        self,
        time: float,
        pipeline: RestorationPipeline,
        encoding: Optional[EncodingSettings] = None,
        field_order: Optional[FieldOrder] = None,
    ) -> bytes:
        """Render the frame at ``time`` through ``pipeline`` in the worker.

        Any preview still in flight is cancelled first. The pipeline and
        field order are read now, at request time.

        Args:
            time: Timestamp in seconds
            pipeline: Current restoration pipeline
            encoding: Encoding settings to embed in the job
            field_order: User override of the detected field order

        Returns:
            Encoded image bytes written by the worker

        Raises:
            PreviewCancelled: If a newer request superseded this one
            PreviewError: If the worker fails or writes no image
            ExecutableNotFound: If the worker cannot be located
            ConfigurationError: If the encoding settings are inconsistent;
                the preview in flight is left running
        """
        self._check_open()
        request = _PreviewRequest()
        token = request.token

        index = self.frame_index(time)
        job = pipeline.to_job(
            str(self._input_path),
            str(self.temp_dir / f"preview_{token.request_id}.png"),
            encoding=encoding,
            detected_field_order=self._video_info.field_order if self._video_info else None,
            field_order_override=field_order,
            input_frame_rate=self.frame_rate,
            total_frames=self._video_info.frame_count if self._video_info else None,
        )
        previous = self._supersede()
        self._active = request
        job_file = self.temp_dir / f"preview_job_{token.request_id}.json"

        try:
            async with self._spawn_lock:
                if previous is not None:
                    await previous.reap()
                token.raise_if_cancelled()
                worker = self.locator.locate()
                job.write(job_file)
                process = await self._spawn(
                    [str(worker), "--config", str(job_file), "--preview", "--frame", str(index)],
                    stdout=asyncio.subprocess.PIPE,
                )
                request.attach(process)
                if token.cancelled:
                    request.cancel()
                    await request.reap()
                    raise PreviewCancelled()

            if token.cancelled:
                await request.reap()
                raise PreviewCancelled()

            stdout, stderr = await process.communicate()
            token.raise_if_cancelled()

            lines = _lines(stderr)
            for line in lines:
                self.log.emit(LogMessage(LogLevel.INFO, line, source="stderr"))
            if process.returncode != 0:
                raise PreviewError(
                    f"Preview worker exited with code {process.returncode}",
                    last_lines=lines[-ERROR_TAIL_LINES:],
                )
            if not stdout:
                raise PreviewError("Preview worker produced no image", last_lines=lines[-ERROR_TAIL_LINES:])
            return stdout
        except asyncio.CancelledError:
            request.cancel()
            raise
        finally:
            if self._active is request:
                self._active = None
            self._remove(job_file)

    def request_preview(
        self,
        time: float,
        pipeline: RestorationPipeline,
        encoding: Optional[EncodingSettings] = None,
        field_order: Optional[FieldOrder] = None,
    ) -> asyncio.Future:
        """Debounced ``generate_preview`` for continuous UI input.

        Only the last request of a burst runs once the quiet period has
        passed; futures of replaced requests are cancelled.
        """
        self._check_open()
        return self._debouncer.schedule(self.generate_preview, time, pipeline, encoding, field_order)

    async def render_script_frame(
        self,
        script_path: Union[str, Path],
        frame: int,
        output_path: Optional[Union[str, Path]] = None,
    ) -> Path:
        """Render one frame of a VapourSynth script to an image.

        vspipe writes the frame as y4m into an OS pipe that ffmpeg reads
        and encodes. Shares the processed-preview cancellation: this
        request replaces any preview in flight.

        Returns:
            Path of the written image

        Raises:
            PreviewCancelled: If a newer request superseded this one
            PreviewError: If either tool fails
        """
        self._check_alive()
        output = Path(output_path) if output_path else self.temp_dir / f"script_{frame:06d}.png"
        previous = self._supersede()
        request = _PreviewRequest()
        self._active = request
        token = request.token

        try:
            async with self._spawn_lock:
                if previous is not None:
                    await previous.reap()
                token.raise_if_cancelled()
                vspipe_path = self.tools.vspipe
                ffmpeg_path = self.tools.ffmpeg

                read_fd, write_fd = os.pipe()
                try:
                    renderer = await self._spawn(
                        [
                            str(vspipe_path),
                            "--start", str(frame),
                            "--end", str(frame),
                            "--outputindex", "0",
                            "-c", "y4m",
                            str(script_path),
                            "-",
                        ],
                        stdout=write_fd,
                    )
                    request.attach(renderer)
                    encoder = await self._spawn(
                        [
                            str(ffmpeg_path),
                            "-y",
                            "-f", "yuv4mpegpipe",
                            "-i", "pipe:0",
                            "-vframes", "1",
                            "-f", "image2",
                            str(output),
                        ],
                        stdin=read_fd,
                    )
                    request.attach(encoder)
                except BaseException:
                    request.cancel()
                    await request.reap()
                    raise
                finally:
                    os.close(read_fd)
                    os.close(write_fd)

                if token.cancelled:
                    request.cancel()
                    await request.reap()
                    raise PreviewCancelled()

            (_, renderer_err), (_, encoder_err) = await asyncio.gather(
                renderer.communicate(),
                encoder.communicate(),
            )
            token.raise_if_cancelled()

            if encoder.returncode != 0:
                raise PreviewError(
                    f"ffmpeg exited with code {encoder.returncode}",
                    last_lines=_tail(encoder_err),
                )
            if renderer.returncode != 0:
                raise PreviewError(
                    f"vspipe exited with code {renderer.returncode}",
                    last_lines=_tail(renderer_err),
                )
            if not output.exists():
                raise PreviewError("ffmpeg produced no image", last_lines=_tail(encoder_err))
            return output
        except asyncio.CancelledError:
            request.cancel()
            raise
        finally:
            if self._active is request:
                self._active = None

    def cancel_preview(self) -> None:
        """Cancel the pending debounced request and the preview in flight."""
        self._debouncer.cancel()
        self._supersede()

    # -------------------------------------------------------------------------
    # Disposal
    # -------------------------------------------------------------------------

    async def dispose(self) -> None:
        """Kill every process this generator started and delete its files.

        Cleanup problems are logged, never raised. Calling it twice is
        harmless.
        """
        if self._disposed:
            return
        self._disposed = True
        self.cancel_preview()

        for task in list(self._frame_tasks.values()):
            task.cancel()

        live = [p for p in self._live if p.returncode is None]
        for process in live:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        if live:
            await asyncio.gather(*(p.wait() for p in live), return_exceptions=True)
        self._live.clear()
        self._frame_cache.clear()

        if self._temp_dir is not None:
            shutil.rmtree(self._temp_dir, ignore_errors=True)
            self._temp_dir = None
        self.log.close()
        logger.debug("Preview generator disposed")

    async def __aenter__(self) -> "PreviewGenerator":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.dispose()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _supersede(self) -> Optional[_PreviewRequest]:
        previous = self._active
        self._active = None
        if previous is not None:
            previous.cancel()
            self.superseded_count += 1
            logger.debug(f"Superseded preview request {previous.token.request_id}")
        return previous

    def _environment(self) -> Dict[str, str]:
        return build_environment(self.deps_dir, base=self.environment)

    def _prune(self) -> None:
        self._live = {p for p in self._live if p.returncode is None}

    async def _spawn(
        self,
        cmd: Sequence[str],
        stdout: Any = asyncio.subprocess.DEVNULL,
        stdin: Any = asyncio.subprocess.DEVNULL,
    ) -> asyncio.subprocess.Process:
        self._check_alive()
        self._prune()
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=stdin,
                stdout=stdout,
                stderr=asyncio.subprocess.PIPE,
                env=self._environment(),
            )
        except OSError as e:
            raise ExecutableNotFound(cmd[0], [cmd[0]]) from e
        self._live.add(process)
        return process

    async def _run_tool(self, cmd: Sequence[str]) -> None:
        process = await self._spawn(cmd)
        try:
            _, stderr = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            raise
        if process.returncode != 0:
            raise PreviewError(
                f"{Path(cmd[0]).name} exited with code {process.returncode}",
                last_lines=_tail(stderr),
            )

    def _check_alive(self) -> None:
        if self._disposed:
            raise PreviewError("Preview generator has been disposed")

    def _check_open(self) -> None:
        self._check_alive()
        if self._input_path is None:
            raise PreviewError("No source video; call open() first")

    def _remove(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.debug(f"Could not remove {path}: {e}")
