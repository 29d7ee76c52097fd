"""Worker process supervision.

The ProcessSupervisor runs one batch job at a time in the external
worker, turns its line-delimited JSON output into typed events, and
stops it on request.

Lifecycle::

    IDLE -> STARTING -> RUNNING -> COMPLETED | FAILED
                          |
                          +-> CANCELLING -> CANCELLED

Example usage:

    >>> supervisor = ProcessSupervisor(WorkerLocator(), deps_dir=settings.deps_dir)
    >>> supervisor.progress.subscribe(lambda p: print(p.percent_complete))
    >>> result = await supervisor.run(job)
    >>> print(result.describe())
"""

import asyncio
import logging
import tempfile
from collections import deque
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Deque, Dict, Optional

import psutil

from restoreflow.core.events import EventChannel
from restoreflow.engine.locator import WorkerLocator, build_environment
from restoreflow.exceptions import (
    AlreadyRunning,
    ConfigurationError,
    ExecutableNotFound,
    ProtocolParseError,
    WorkerExitFailure,
)
from restoreflow.models.job import VideoJob
from restoreflow.models.progress import (
    CompletionResult,
    LogLevel,
    LogMessage,
    ProgressInfo,
    WorkerError,
    parse_worker_line,
)
from restoreflow.utils.logging import get_logger

logger = logging.getLogger(__name__)
structured = get_logger("engine.supervisor")

LOG_TAIL_LINES = 20
STREAM_LIMIT = 1024 * 1024
CANCELLED_MESSAGE = "Job cancelled by user"


class SupervisorState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in (
            SupervisorState.STARTING,
            SupervisorState.RUNNING,
            SupervisorState.CANCELLING,
        )

    @property
    def is_terminal(self) -> bool:
        return self in (
            SupervisorState.COMPLETED,
            SupervisorState.FAILED,
            SupervisorState.CANCELLED,
        )


async def terminate_process(
    process: asyncio.subprocess.Process,
    grace_period: float,
) -> Optional[int]:
    """Stop a process: terminate, wait ``grace_period``, then kill.

    Child processes the worker spawned (renderer, encoder) are killed
    along with it. Does nothing if the process has already exited.

    Returns:
        Exit status, or None if it could not be collected
    """
    if process.returncode is not None:
        return process.returncode

    try:
        children = psutil.Process(process.pid).children(recursive=True)
    except psutil.Error:
        children = []

    try:
        process.terminate()
    except ProcessLookupError:
        return await process.wait()

    try:
        return await asyncio.wait_for(process.wait(), timeout=grace_period)
    except asyncio.TimeoutError:
        logger.warning(f"Process {process.pid} ignored termination, killing it")

    for child in children:
        try:
            child.kill()
        except psutil.Error:
            pass
    try:
        process.kill()
    except ProcessLookupError:
        pass
    return await process.wait()


class ProcessSupervisor:
    """Owns the worker subprocess for one job at a time.

    Events are published on three channels:

    * ``progress``: ProgressInfo
    * ``log``: LogMessage (worker log records, stray stdout text at
      debug level, every stderr line at warning level)
    * ``completion``: exactly one CompletionResult per started job

    A job that exits non-zero without a ``complete`` record produces a
    failed CompletionResult carrying the exit code and the last log
    lines.

    Args:
        locator: Finds the worker executable
        deps_dir: Installed dependency bundle used for the environment
        temp_dir: Directory for job files (default: system temp)
        cancel_grace: Seconds between terminate and kill
        environment: Base environment (default: ``os.environ``)
    """

    def __init__(
        self,
        locator: Optional[WorkerLocator] = None,
        deps_dir: Optional[Path] = None,
        temp_dir: Optional[Path] = None,
        cancel_grace: float = 0.5,
        environment: Optional[Dict[str, str]] = None,
    ) -> None:
        self.locator = locator or WorkerLocator()
        self.deps_dir = Path(deps_dir) if deps_dir else None
        self.temp_dir = Path(temp_dir) if temp_dir else Path(tempfile.gettempdir())
        self.cancel_grace = cancel_grace
        self.environment = environment

        self.progress: EventChannel[ProgressInfo] = EventChannel("progress")
        self.log: EventChannel[LogMessage] = EventChannel("log")
        self.completion: EventChannel[CompletionResult] = EventChannel("completion")

        self._state = SupervisorState.IDLE
        self._job: Optional[VideoJob] = None
        self._process: Optional[asyncio.subprocess.Process] = None
        self._monitor: Optional[asyncio.Task] = None
        self._job_file: Optional[Path] = None
        self._tail: Deque[str] = deque(maxlen=LOG_TAIL_LINES)
        self._complete_record: Optional[CompletionResult] = None
        self._last_error: Optional[str] = None
        self._cancel_requested = False
        self._result: Optional[CompletionResult] = None
        self._last_progress: Optional[ProgressInfo] = None
        self._events = structured

    @classmethod
    def from_settings(cls, settings) -> "ProcessSupervisor":
        return cls(
            locator=WorkerLocator.from_settings(settings),
            deps_dir=settings.deps_dir,
            temp_dir=settings.temp_dir,
            cancel_grace=settings.cancel_grace_ms / 1000.0,
        )

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state.is_active

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def result(self) -> Optional[CompletionResult]:
        return self._result

    @property
    def last_progress(self) -> Optional[ProgressInfo]:
        return self._last_progress

    def job_file_path(self, job: VideoJob) -> Path:
        return self.temp_dir / f"restoreflow_job_{job.id}.json"

    async def start(self, job: VideoJob) -> None:
        """Spawn the worker for ``job``.

        A supervisor whose previous job has finished may be reused.

        Raises:
            AlreadyRunning: If a job is still in flight
            ExecutableNotFound: If the worker cannot be located or started
            ConfigurationError: If the job file cannot be written to ``temp_dir``
        """
        if self._state.is_active:
            raise AlreadyRunning(self._state.value)

        self._reset()
        self._job = job
        self._events = structured.bind(job=job.id)
        self._state = SupervisorState.STARTING

        try:
            worker = self.locator.locate()
        except ExecutableNotFound:
            self._state = SupervisorState.IDLE
            raise

        job_file = self.job_file_path(job)
        try:
            job_file.parent.mkdir(parents=True, exist_ok=True)
            self._job_file = job_file
            job.write(job_file)
        except OSError as e:
            self._remove_job_file()
            self._state = SupervisorState.IDLE
            raise ConfigurationError(
                f"Cannot write job file {job_file}: {e}",
                config_key="temp_dir",
                config_value=str(self.temp_dir),
                cause=e,
            ) from e

        env = build_environment(self.deps_dir, base=self.environment)
        try:
            process = await asyncio.create_subprocess_exec(
                str(worker),
                "--config",
                str(job_file),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=str(worker.parent),
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            self._remove_job_file()
            self._state = SupervisorState.IDLE
            raise ExecutableNotFound(str(worker), [str(worker)]) from e

        self._process = process
        self._events.info("Worker started", pid=process.pid)

        if self._cancel_requested:
            self._state = SupervisorState.CANCELLING
        else:
            self._state = SupervisorState.RUNNING
        self._monitor = asyncio.create_task(self._supervise(process))

        if self._cancel_requested:
            await terminate_process(process, self.cancel_grace)

    async def run(self, job: VideoJob) -> CompletionResult:
        """Start ``job`` and wait for its completion."""
        await self.start(job)
        result = await self.wait()
        assert result is not None
        return result

    async def wait(self) -> Optional[CompletionResult]:
        """Wait for the current job to finish; None if nothing was started."""
        if self._monitor is not None:
            await asyncio.shield(self._monitor)
        return self._result

    async def cancel(self) -> None:
        """Stop the running job.

        Safe to call in any state; only a starting or running job is
        affected. Once the worker has been spawned, the cancelled
        CompletionResult has been emitted by the time this returns.
        """
        if self._state not in (SupervisorState.STARTING, SupervisorState.RUNNING):
            return

        self._cancel_requested = True
        process = self._process
        if process is None:
            # Still spawning; start() stops the process once it exists.
            return

        self._state = SupervisorState.CANCELLING
        logger.info(f"Cancelling worker {process.pid}")
        await terminate_process(process, self.cancel_grace)
        await self.wait()

    async def dispose(self) -> None:
        """Cancel any running job and close all event channels."""
        await self.cancel()
        if self._monitor is not None and not self._monitor.done():
            await self.wait()
        self.progress.close()
        self.log.close()
        self.completion.close()

    async def __aenter__(self) -> "ProcessSupervisor":
        return self

    async def __aexit__(self, *args) -> None:
        await self.dispose()

    def _reset(self) -> None:
        self._process = None
        self._monitor = None
        self._job_file = None
        self._tail.clear()
        self._complete_record = None
        self._last_error = None
        self._cancel_requested = False
        self._result = None
        self._last_progress = None

    async def _supervise(self, process: asyncio.subprocess.Process) -> None:
        try:
            await asyncio.gather(
                self._read_stdout(process.stdout),
                self._read_stderr(process.stderr),
            )
            exit_code = await process.wait()
        finally:
            self._remove_job_file()
        self._finish(exit_code)

    async def _read_lines(self, stream: Optional[asyncio.StreamReader], handler) -> None:
        if stream is None:
            return
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                logger.warning("Discarding worker output line longer than %d bytes", STREAM_LIMIT)
                continue
            if not raw:
                break
            handler(raw.decode("utf-8", errors="replace").rstrip("\r\n"))

    async def _read_stdout(self, stream: Optional[asyncio.StreamReader]) -> None:
        await self._read_lines(stream, self._handle_stdout_line)

    async def _read_stderr(self, stream: Optional[asyncio.StreamReader]) -> None:
        await self._read_lines(stream, self._handle_stderr_line)

    def _handle_stdout_line(self, line: str) -> None:
        try:
            record = parse_worker_line(line)
        except ProtocolParseError as e:
            logger.warning(str(e))
            return
        except (ValueError, OverflowError) as e:
            logger.warning(f"Dropping malformed worker record: {e}")
            return
        if record is None:
            return

        if isinstance(record, ProgressInfo):
            self._last_progress = record
            self._events.job_progress(record.frame, record.total_frames, record.fps)
            self.progress.emit(record)
        elif isinstance(record, LogMessage):
            self._emit_log(record)
        elif isinstance(record, WorkerError):
            self._last_error = record.message
            self._emit_log(LogMessage(LogLevel.ERROR, record.message))
        elif isinstance(record, CompletionResult):
            self._complete_record = record

    def _handle_stderr_line(self, line: str) -> None:
        if not line.strip():
            return
        self._emit_log(LogMessage(LogLevel.WARNING, line, source="stderr"))

    def _emit_log(self, message: LogMessage) -> None:
        self._tail.append(message.message)
        logger.log(message.level.logging_level, "[worker] %s", message.message)
        self.log.emit(message)

    def _finish(self, exit_code: int) -> None:
        tail = tuple(self._tail)
        job_output = self._job.output_path if self._job else None

        if self._cancel_requested:
            result = CompletionResult(
                success=False,
                error_message=CANCELLED_MESSAGE,
                cancelled=True,
                exit_code=exit_code,
                log_tail=tail,
            )
            self._state = SupervisorState.CANCELLED
        elif self._complete_record is not None:
            record = self._complete_record
            result = replace(
                record,
                output_path=record.output_path or job_output,
                error_message=record.error_message or (None if record.success else self._last_error),
                exit_code=exit_code,
                log_tail=() if record.success else tail,
            )
            self._state = SupervisorState.COMPLETED if record.success else SupervisorState.FAILED
        elif exit_code == 0:
            result = CompletionResult(success=True, output_path=job_output, exit_code=0)
            self._state = SupervisorState.COMPLETED
        else:
            failure = WorkerExitFailure(exit_code, list(tail))
            message = failure.message
            if self._last_error:
                message = f"{message}: {self._last_error}"
            result = CompletionResult(
                success=False,
                error_message=message,
                exit_code=exit_code,
                log_tail=tail,
            )
            self._state = SupervisorState.FAILED

        self._result = result
        self._process = None
        self._events.info("Worker finished", state=self._state.value, exit_code=exit_code)
        self.completion.emit(result)

    def _remove_job_file(self) -> None:
        if self._job_file is None:
            return
        try:
            self._job_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove job file {self._job_file}: {e}")
        self._job_file = None
