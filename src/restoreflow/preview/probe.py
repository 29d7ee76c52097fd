"""Stream information via ffprobe, including field-order detection."""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from restoreflow.exceptions import ProbeError
from restoreflow.models.job import FieldOrder

logger = logging.getLogger(__name__)

# PAL DV is 25 fps and top field first; NTSC DV is bottom field first.
DV_TFF_MAX_FPS = 26.0


@dataclass(frozen=True)
class VideoInfo:
    """Summary of a source file's first video stream.

    Attributes:
        width: Frame width in pixels
        height: Frame height in pixels
        frame_rate: Frames per second from ``r_frame_rate``
        duration: Container duration in seconds
        frame_count: ``nb_frames`` if reported, else duration * frame_rate
        codec: Video codec name
        pixel_format: Pixel format name
        field_order: Detected scan order
        has_audio: Whether an audio stream is present
        audio_codec: Codec of the first audio stream
    """

    width: int = 0
    height: int = 0
    frame_rate: float = 0.0
    duration: float = 0.0
    frame_count: int = 0
    codec: str = "unknown"
    pixel_format: str = "unknown"
    field_order: FieldOrder = FieldOrder.UNKNOWN
    has_audio: bool = False
    audio_codec: Optional[str] = None

    @property
    def is_interlaced(self) -> bool:
        return self.field_order.tff_value is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "frame_rate": self.frame_rate,
            "duration": self.duration,
            "frame_count": self.frame_count,
            "codec": self.codec,
            "pixel_format": self.pixel_format,
            "field_order": self.field_order.value,
            "has_audio": self.has_audio,
            "audio_codec": self.audio_codec,
        }


def parse_frame_rate(value: Any) -> Optional[float]:
    """Parse "30000/1001" or "25" into a float; None when unusable."""
    if value is None:
        return None
    text = str(value)
    try:
        if "/" in text:
            num, den = text.split("/", 1)
            if float(den) == 0:
                return None
            return float(num) / float(den)
        return float(text)
    except ValueError:
        return None


def _float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def detect_field_order(stream: Mapping[str, Any]) -> FieldOrder:
    """Field order of a video stream from ffprobe's description.

    The ``field_order`` tag wins when present ("tt"/"tb" are top field
    first, "bb"/"bt" bottom field first). Untagged DV is top field
    first below 26 fps and bottom field first otherwise; untagged
    MPEG-2 is assumed top field first.
    """
    tag = str(stream.get("field_order") or "").lower()
    if tag in ("tt", "tb"):
        return FieldOrder.TOP_FIELD_FIRST
    if tag in ("bb", "bt"):
        return FieldOrder.BOTTOM_FIELD_FIRST
    if tag == "progressive":
        return FieldOrder.PROGRESSIVE

    codec_tag = str(stream.get("codec_tag_string") or "").lower()
    codec_name = str(stream.get("codec_name") or "").lower()
    if "dv" in codec_tag or codec_name == "dvvideo":
        fps = parse_frame_rate(stream.get("r_frame_rate"))
        if fps is not None and fps < DV_TFF_MAX_FPS:
            return FieldOrder.TOP_FIELD_FIRST
        return FieldOrder.BOTTOM_FIELD_FIRST

    if codec_name == "mpeg2video":
        return FieldOrder.TOP_FIELD_FIRST

    return FieldOrder.UNKNOWN


def parse_probe_output(data: Mapping[str, Any]) -> VideoInfo:
    """Build VideoInfo from ffprobe's JSON document.

    Raises:
        ProbeError: If there is no video stream
    """
    video_stream = None
    audio_stream = None
    for stream in data.get("streams") or []:
        codec_type = stream.get("codec_type")
        if codec_type == "video" and video_stream is None:
            video_stream = stream
        elif codec_type == "audio" and audio_stream is None:
            audio_stream = stream

    if video_stream is None:
        raise ProbeError("No video stream found")

    frame_rate = parse_frame_rate(video_stream.get("r_frame_rate")) or 0.0
    duration = _float((data.get("format") or {}).get("duration"))
    if duration is None:
        duration = _float(video_stream.get("duration")) or 0.0
    frame_count = _int(video_stream.get("nb_frames"))
    if frame_count is None:
        frame_count = round(duration * frame_rate)

    return VideoInfo(
        width=_int(video_stream.get("width")) or 0,
        height=_int(video_stream.get("height")) or 0,
        frame_rate=frame_rate,
        duration=duration,
        frame_count=frame_count,
        codec=video_stream.get("codec_name") or "unknown",
        pixel_format=video_stream.get("pix_fmt") or "unknown",
        field_order=detect_field_order(video_stream),
        has_audio=audio_stream is not None,
        audio_codec=audio_stream.get("codec_name") if audio_stream else None,
    )


async def probe_video(
    video_path: Union[str, Path],
    ffprobe: Union[str, Path] = "ffprobe",
    env: Optional[Dict[str, str]] = None,
    timeout: float = 30.0,
) -> VideoInfo:
    """Run ffprobe on ``video_path``.

    Args:
        video_path: Source file
        ffprobe: ffprobe executable
        env: Subprocess environment
        timeout: Seconds before the probe is abandoned

    Returns:
        VideoInfo for the first video stream

    Raises:
        ProbeError: If ffprobe fails, times out or reports no video stream
    """
    cmd = [
        str(ffprobe),
        "-v", "quiet",
        "-print_format", "json",
        "-show_streams",
        "-show_format",
        str(video_path),
    ]
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
    except OSError as e:
        raise ProbeError(f"Could not run ffprobe: {e}", cause=e) from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise ProbeError(f"ffprobe timed out after {timeout}s", details={"path": str(video_path)})

    if process.returncode != 0:
        raise ProbeError(
            f"ffprobe failed with code {process.returncode}",
            details={"path": str(video_path), "stderr": stderr.decode(errors="replace").strip()[-500:]},
        )

    try:
        data = json.loads(stdout.decode("utf-8", errors="replace"))
    except json.JSONDecodeError as e:
        raise ProbeError(f"Failed to parse ffprobe output: {e}", cause=e) from e

    info = parse_probe_output(data)
    logger.debug(
        f"Probed {video_path}: {info.width}x{info.height} @ {info.frame_rate:.3f} fps, "
        f"{info.frame_count} frames, {info.field_order.value}"
    )
    return info
