"""Job description handed to the worker.

A VideoJob is a frozen snapshot of the pipeline and encoding settings
taken when the user hits "run" or asks for a preview. It is written to a
JSON transport file in the worker's camelCase layout.
"""

import dataclasses
import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from restoreflow.exceptions import ConfigurationError
from restoreflow.models.pipeline import RestorationPipeline


class FieldOrder(Enum):
    """Scan order of interlaced material."""

    TOP_FIELD_FIRST = "tff"
    BOTTOM_FIELD_FIRST = "bff"
    PROGRESSIVE = "progressive"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        return {
            FieldOrder.TOP_FIELD_FIRST: "Top Field First (TFF)",
            FieldOrder.BOTTOM_FIELD_FIRST: "Bottom Field First (BFF)",
            FieldOrder.PROGRESSIVE: "Progressive",
            FieldOrder.UNKNOWN: "Unknown",
        }[self]

    @property
    def tff_value(self) -> Optional[bool]:
        """QTGMC ``tff`` value, None when the order is not interlaced."""
        if self is FieldOrder.TOP_FIELD_FIRST:
            return True
        if self is FieldOrder.BOTTOM_FIELD_FIRST:
            return False
        return None


class VideoCodec(Enum):
    """Output video codecs, valued by their worker identifiers."""

    H264 = "libx264"
    H265 = "libx265"
    FFV1 = "ffv1"
    PRORES_PROXY = "prores_ks -profile:v 0"
    PRORES_LT = "prores_ks -profile:v 1"
    PRORES_422 = "prores_ks -profile:v 2"
    PRORES_HQ = "prores_ks -profile:v 3"

    @property
    def ffmpeg_codec(self) -> str:
        return self.value.split(" ", 1)[0]

    @property
    def prores_profile(self) -> Optional[int]:
        if not self.is_prores:
            return None
        return int(self.value.rsplit(" ", 1)[1])

    @property
    def is_prores(self) -> bool:
        return self.value.startswith("prores_ks")

    @property
    def preferred_container(self) -> "ContainerFormat":
        if self.is_prores:
            return ContainerFormat.MOV
        if self is VideoCodec.FFV1:
            return ContainerFormat.AVI
        return ContainerFormat.MP4

    @property
    def display_name(self) -> str:
        return _CODEC_NAMES[self]


_CODEC_NAMES = {
    VideoCodec.H264: "H.264",
    VideoCodec.H265: "H.265 (HEVC)",
    VideoCodec.FFV1: "FFV1 (Lossless)",
    VideoCodec.PRORES_PROXY: "ProRes Proxy",
    VideoCodec.PRORES_LT: "ProRes LT",
    VideoCodec.PRORES_422: "ProRes 422",
    VideoCodec.PRORES_HQ: "ProRes 422 HQ",
}


class ContainerFormat(Enum):
    MP4 = "mp4"
    MOV = "mov"
    MKV = "mkv"
    AVI = "avi"

    @property
    def extension(self) -> str:
        return self.value

    def supports(self, codec: VideoCodec) -> bool:
        if codec.is_prores:
            return self is ContainerFormat.MOV
        return self in _CODEC_CONTAINERS[codec]

    def supports_audio(self, audio_codec: str) -> bool:
        """Whether an audio stream in ``audio_codec`` can be muxed as is."""
        return audio_codec.lower() in _CONTAINER_AUDIO[self]

    @property
    def fallback_audio_codec(self) -> str:
        """Codec to re-encode to when the source audio cannot be copied."""
        return "mp3" if self is ContainerFormat.AVI else "aac"


_CODEC_CONTAINERS = {
    VideoCodec.H264: {ContainerFormat.MP4, ContainerFormat.MOV, ContainerFormat.MKV, ContainerFormat.AVI},
    VideoCodec.H265: {ContainerFormat.MP4, ContainerFormat.MOV, ContainerFormat.MKV},
    VideoCodec.FFV1: {ContainerFormat.MKV, ContainerFormat.AVI},
}

# Audio codecs (ffprobe codec names) each container can carry unchanged.
_CONTAINER_AUDIO = {
    ContainerFormat.MP4: frozenset({"aac", "mp3", "ac3", "eac3", "alac", "opus", "flac"}),
    ContainerFormat.MKV: frozenset({
        "aac", "mp3", "ac3", "eac3", "dts", "truehd", "flac", "opus", "vorbis",
        "pcm_s16le", "pcm_s24le", "pcm_s32le", "pcm_f32le", "alac", "wavpack",
    }),
    ContainerFormat.MOV: frozenset({
        "aac", "mp3", "ac3", "eac3", "alac", "pcm_s16le", "pcm_s24le", "pcm_s16be", "pcm_s24be",
    }),
    ContainerFormat.AVI: frozenset({"mp3", "ac3", "pcm_s16le", "pcm_u8"}),
}


@dataclass(frozen=True)
class EncodingSettings:
    """Encoder configuration for the output file.

    Attributes:
        codec: Output video codec
        encoder_preset: x264/x265 speed preset
        quality: CRF value (lower is better)
        audio_copy: Copy the source audio stream untouched
        audio_codec: Audio codec used when not copying
        audio_bitrate: Audio bitrate in kbit/s when not copying
        custom_ffmpeg_args: Extra arguments appended to the encoder command
        container: Output container
    """

    codec: VideoCodec = VideoCodec.H264
    encoder_preset: str = "medium"
    quality: int = 18
    audio_copy: bool = True
    audio_codec: str = "aac"
    audio_bitrate: int = 192
    custom_ffmpeg_args: str = ""
    container: ContainerFormat = ContainerFormat.MKV

    def validate(self) -> None:
        """Reject impossible combinations.

        Raises:
            ConfigurationError: If the codec cannot be stored in the
                container or the quality is out of range
        """
        if not self.container.supports(self.codec):
            valid = [c.value for c in ContainerFormat if c.supports(self.codec)]
            raise ConfigurationError(
                f"{self.codec.display_name} cannot be stored in {self.container.value.upper()}",
                config_key="container",
                config_value=self.container.value,
                valid_values=valid,
            )
        if not 0 <= self.quality <= 51:
            raise ConfigurationError(
                "Quality must be between 0 and 51",
                config_key="quality",
                config_value=self.quality,
            )

    def check_audio(self, source_audio_codec: Optional[str]) -> None:
        """Reject copying a source audio stream the container cannot hold.

        Nothing is checked when the source has no audio or the audio is
        re-encoded.

        Raises:
            ConfigurationError: If ``audio_copy`` is set and the container
                does not accept ``source_audio_codec``
        """
        if not self.audio_copy or not source_audio_codec:
            return
        if self.container.supports_audio(source_audio_codec):
            return
        raise ConfigurationError(
            f"{source_audio_codec.upper()} audio cannot be copied into "
            f"{self.container.value.upper()}; re-encode it "
            f"(e.g. to {self.container.fallback_audio_codec}) or choose another container",
            config_key="audio_copy",
            config_value=source_audio_codec,
            valid_values=[c.value for c in audio_containers(source_audio_codec)],
        )

    def with_audio_fallback(self) -> "EncodingSettings":
        """Settings that re-encode audio to the container's fallback codec."""
        return dataclasses.replace(
            self, audio_copy=False, audio_codec=self.container.fallback_audio_codec
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "codec": self.codec.value,
            "encoderPreset": self.encoder_preset,
            "quality": self.quality,
            "audioCopy": self.audio_copy,
            "audioCodec": self.audio_codec,
            "audioBitrate": self.audio_bitrate,
            "customFfmpegArgs": self.custom_ffmpeg_args,
            "container": self.container.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncodingSettings":
        defaults = cls()
        try:
            return cls(
                codec=VideoCodec(data.get("codec", defaults.codec.value)),
                encoder_preset=data.get("encoderPreset", defaults.encoder_preset),
                quality=int(data.get("quality", defaults.quality)),
                audio_copy=bool(data.get("audioCopy", defaults.audio_copy)),
                audio_codec=data.get("audioCodec", defaults.audio_codec),
                audio_bitrate=int(data.get("audioBitrate", defaults.audio_bitrate)),
                custom_ffmpeg_args=data.get("customFfmpegArgs", defaults.custom_ffmpeg_args),
                container=ContainerFormat(data.get("container", defaults.container.value)),
            )
        except ValueError as e:
            raise ConfigurationError("Invalid encoding settings", cause=e) from e


@dataclass(frozen=True)
class VideoJob:
    """Immutable snapshot of one processing request.

    Attributes:
        input_path: Source video
        output_path: Destination file
        pipeline: Full restoration pipeline at submission time
        encoding: Encoder configuration
        id: Opaque job identifier
        total_frames: Frame count hint for progress reporting
        start_frame: First frame to process (trim)
        end_frame: Last frame to process (trim)
        detected_field_order: Field order found by probing the input
        input_frame_rate: Source frame rate
    """

    input_path: str
    output_path: str
    pipeline: RestorationPipeline = field(default_factory=RestorationPipeline)
    encoding: EncodingSettings = field(default_factory=EncodingSettings)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    total_frames: Optional[int] = None
    start_frame: Optional[int] = None
    end_frame: Optional[int] = None
    detected_field_order: Optional[FieldOrder] = None
    input_frame_rate: Optional[float] = None

    def __post_init__(self) -> None:
        if self.start_frame is not None and self.start_frame < 0:
            raise ConfigurationError("start_frame must not be negative",
                                     config_key="start_frame", config_value=self.start_frame)
        if (
            self.start_frame is not None
            and self.end_frame is not None
            and self.end_frame < self.start_frame
        ):
            raise ConfigurationError(
                "end_frame must not precede start_frame",
                config_key="end_frame",
                config_value=self.end_frame,
            )

    @property
    def frame_count(self) -> Optional[int]:
        """Frames this job will produce, taking the trim range into account."""
        if self.start_frame is not None and self.end_frame is not None:
            return self.end_frame - self.start_frame + 1
        if self.total_frames is None:
            return None
        if self.start_frame is not None:
            return max(0, self.total_frames - self.start_frame)
        if self.end_frame is not None:
            return min(self.total_frames, self.end_frame + 1)
        return self.total_frames

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "inputPath": self.input_path,
            "outputPath": self.output_path,
            "qtgmcParameters": self.pipeline.deinterlace.to_dict(),
            "restorationPipeline": self.pipeline.to_dict(),
            "encodingSettings": self.encoding.to_dict(),
        }
        optional = {
            "totalFrames": self.total_frames,
            "startFrame": self.start_frame,
            "endFrame": self.end_frame,
            "detectedFieldOrder": (
                self.detected_field_order.value if self.detected_field_order else None
            ),
            "inputFrameRate": self.input_frame_rate,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def write(self, path: Union[str, Path]) -> Path:
        """Write the job file and return its path."""
        path = Path(path)
        path.write_text(self.to_json(), encoding="utf-8")
        return path

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VideoJob":
        """Parse a job description.

        Older job files carrying only ``qtgmcParameters`` get a pipeline
        with just the deinterlace pass configured.

        Raises:
            ConfigurationError: If required keys are missing or malformed
        """
        try:
            if data.get("restorationPipeline") is not None:
                pipeline = RestorationPipeline.from_dict(data["restorationPipeline"])
            else:
                pipeline = RestorationPipeline.from_legacy(data.get("qtgmcParameters") or {})
            field_order = data.get("detectedFieldOrder")
            return cls(
                id=str(data.get("id") or uuid.uuid4()),
                input_path=data["inputPath"],
                output_path=data["outputPath"],
                pipeline=pipeline,
                encoding=EncodingSettings.from_dict(data.get("encodingSettings") or {}),
                total_frames=data.get("totalFrames"),
                start_frame=data.get("startFrame"),
                end_frame=data.get("endFrame"),
                detected_field_order=FieldOrder(field_order) if field_order else None,
                input_frame_rate=data.get("inputFrameRate"),
            )
        except KeyError as e:
            raise ConfigurationError(f"Job description is missing {e}", cause=e) from e
        except ValueError as e:
            raise ConfigurationError(f"Job description is invalid: {e}", cause=e) from e

    @classmethod
    def load(cls, path: Union[str, Path]) -> "VideoJob":
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Job file {path} is not valid JSON", cause=e) from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read job file {path}: {e.strerror or e}", cause=e) from e
        return cls.from_dict(data)


def output_extension_for(settings: EncodingSettings) -> str:
    return "." + settings.container.extension


def supported_containers(codec: VideoCodec) -> List[ContainerFormat]:
    return [c for c in ContainerFormat if c.supports(codec)]


def audio_containers(audio_codec: str) -> List[ContainerFormat]:
    """Containers that can carry ``audio_codec`` without re-encoding."""
    return [c for c in ContainerFormat if c.supports_audio(audio_codec)]
