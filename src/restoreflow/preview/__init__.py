"""Interactive single-frame previews."""

from restoreflow.preview.cancel import CancelToken
from restoreflow.preview.debounce import Debouncer
from restoreflow.preview.generator import PreviewGenerator, Thumbnail
from restoreflow.preview.probe import VideoInfo, detect_field_order, parse_frame_rate, probe_video

__all__ = [
    "CancelToken",
    "Debouncer",
    "PreviewGenerator",
    "Thumbnail",
    "VideoInfo",
    "detect_field_order",
    "parse_frame_rate",
    "probe_video",
]
