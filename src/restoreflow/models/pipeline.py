"""Restoration pipeline: the ordered set of passes and their settings.

The pipeline is a value object. Every edit returns a new pipeline, so a
VideoJob holding one can never change underneath a running worker.
Disabling a pass only flips its ``enabled`` flag; the rest of its
settings stay as they were and come back when it is re-enabled.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from restoreflow.models.base import PassParameters
from restoreflow.models.converter import from_dynamic, to_dynamic
from restoreflow.models.passes import (
    ChromaFixParameters,
    ColorCorrectionParameters,
    CropResizeParameters,
    DebandParameters,
    DeblockParameters,
    DehaloParameters,
    NoiseReductionParameters,
    PassType,
    SharpenParameters,
    pass_record_class,
)
from restoreflow.models.qtgmc import QTGMCParameters
from restoreflow.models.schema import DynamicParameters

if TYPE_CHECKING:
    from restoreflow.models.job import EncodingSettings, FieldOrder, VideoJob

logger = logging.getLogger(__name__)

# PassType -> attribute holding its record
_SLOTS = {
    PassType.DEINTERLACE: "deinterlace",
    PassType.NOISE_REDUCTION: "noise_reduction",
    PassType.DEHALO: "dehalo",
    PassType.DEBLOCK: "deblock",
    PassType.DEBAND: "deband",
    PassType.SHARPEN: "sharpen",
    PassType.COLOR_CORRECTION: "color_correction",
    PassType.CHROMA_FIXES: "chroma_fixes",
    PassType.CROP_RESIZE: "crop_resize",
}


@dataclass(frozen=True)
class RestorationPipeline:
    """One parameter record per pass, in processing order."""

    deinterlace: QTGMCParameters = field(default_factory=QTGMCParameters)
    noise_reduction: NoiseReductionParameters = field(default_factory=NoiseReductionParameters)
    dehalo: DehaloParameters = field(default_factory=DehaloParameters)
    deblock: DeblockParameters = field(default_factory=DeblockParameters)
    deband: DebandParameters = field(default_factory=DebandParameters)
    sharpen: SharpenParameters = field(default_factory=SharpenParameters)
    color_correction: ColorCorrectionParameters = field(default_factory=ColorCorrectionParameters)
    chroma_fixes: ChromaFixParameters = field(default_factory=ChromaFixParameters)
    crop_resize: CropResizeParameters = field(default_factory=CropResizeParameters)

    @classmethod
    def from_legacy(cls, qtgmc: Any) -> "RestorationPipeline":
        """Pipeline with only the deinterlacer configured.

        Args:
            qtgmc: QTGMCParameters or its JSON mapping
        """
        if not isinstance(qtgmc, QTGMCParameters):
            qtgmc = QTGMCParameters.from_dict(qtgmc)
        return cls(deinterlace=qtgmc)

    # -------------------------------------------------------------------------
    # Pass access
    # -------------------------------------------------------------------------

    def get_pass(self, pass_type: PassType) -> PassParameters:
        return getattr(self, _SLOTS[pass_type])

    def is_pass_enabled(self, pass_type: PassType) -> bool:
        return bool(getattr(self.get_pass(pass_type), "enabled"))

    def enabled_passes(self) -> List[PassType]:
        return [p for p in PassType if self.is_pass_enabled(p)]

    @property
    def enabled_pass_count(self) -> int:
        return len(self.enabled_passes())

    def set_pass_enabled(self, pass_type: PassType, enabled: bool) -> "RestorationPipeline":
        """Return a pipeline with the pass toggled; its settings are kept."""
        record = self.get_pass(pass_type)
        if getattr(record, "enabled") == enabled:
            return self
        return self.set_pass_parameters(pass_type, record.replace(enabled=enabled))

    def set_pass_parameters(
        self,
        pass_type: PassType,
        params: PassParameters,
    ) -> "RestorationPipeline":
        """Return a pipeline with the record of one pass replaced.

        Raises:
            TypeError: If ``params`` is not the record type of the pass
        """
        record_class = pass_record_class(pass_type)
        if not isinstance(params, record_class):
            raise TypeError(
                f"{pass_type.value} expects {record_class.__name__}, got {type(params).__name__}"
            )
        return dataclasses.replace(self, **{_SLOTS[pass_type]: params})

    # -------------------------------------------------------------------------
    # Dynamic parameters
    # -------------------------------------------------------------------------

    def to_dynamic_parameters(self, pass_type: PassType) -> DynamicParameters:
        return to_dynamic(pass_type, self.get_pass(pass_type))

    def from_dynamic_parameters(
        self,
        pass_type: PassType,
        params: DynamicParameters,
    ) -> "RestorationPipeline":
        """Return a pipeline with one pass rebuilt from generic values.

        Raises:
            SchemaMismatch: If the values do not fit the pass record
        """
        return self.set_pass_parameters(pass_type, from_dynamic(pass_type, params))

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------

    def with_field_order(self, field_order: Optional["FieldOrder"]) -> "RestorationPipeline":
        """Return a pipeline whose deinterlacer ``tff`` matches ``field_order``.

        Progressive or unknown material leaves ``tff`` unset so the
        deinterlacer falls back to the source's own flags.
        """
        tff = field_order.tff_value if field_order is not None else None
        if self.deinterlace.tff == tff:
            return self
        return dataclasses.replace(self, deinterlace=self.deinterlace.replace(tff=tff))

    def to_job(
        self,
        input_path: str,
        output_path: str,
        encoding: Optional["EncodingSettings"] = None,
        detected_field_order: Optional["FieldOrder"] = None,
        field_order_override: Optional["FieldOrder"] = None,
        source_audio_codec: Optional[str] = None,
        **overrides: Any,
    ) -> "VideoJob":
        """Snapshot this pipeline into a job description.

        The effective field order is the user's override when given,
        otherwise the detected order; it is written into the
        deinterlacer's ``tff`` setting of the snapshot.

        Args:
            input_path: Source video
            output_path: Destination file
            encoding: Encoder settings (defaults when None)
            detected_field_order: Field order found by probing
            field_order_override: Field order forced by the user
            source_audio_codec: Codec of the source audio stream, checked
                against the container when audio is copied
            **overrides: Any other VideoJob field (total_frames,
                start_frame, end_frame, input_frame_rate, id)

        Returns:
            VideoJob ready to be handed to a worker

        Raises:
            ConfigurationError: If the encoding settings are inconsistent
                or the source audio cannot be copied into the container
        """
        from restoreflow.models.job import EncodingSettings, VideoJob

        encoding = encoding or EncodingSettings()
        encoding.validate()
        encoding.check_audio(source_audio_codec)

        effective = field_order_override or detected_field_order
        pipeline = self.with_field_order(effective)
        logger.debug(
            "Building job for %s with %d enabled passes (field order %s)",
            input_path,
            pipeline.enabled_pass_count,
            effective.value if effective else "unset",
        )
        return VideoJob(
            input_path=str(input_path),
            output_path=str(output_path),
            pipeline=pipeline,
            encoding=encoding,
            detected_field_order=detected_field_order,
            **overrides,
        )

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def summary(self) -> str:
        """Short description of the enabled chain, e.g. "QTGMC Slower > CAS"."""
        parts = [self.get_pass(p).summary() for p in self.enabled_passes()]  # type: ignore[attr-defined]
        return " > ".join(parts) if parts else "No passes enabled"

    def to_dict(self) -> Dict[str, Any]:
        return {p.value: self.get_pass(p).to_dict() for p in PassType}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RestorationPipeline":
        records = {}
        for pass_type in PassType:
            raw = data.get(pass_type.value)
            if raw is not None:
                records[_SLOTS[pass_type]] = pass_record_class(pass_type).from_dict(raw)
        return cls(**records)
