"""Pipeline model: pass records, schemas, jobs and worker records."""

from restoreflow.models.base import FieldSpec, PassParameters
from restoreflow.models.converter import from_dynamic, to_dynamic
from restoreflow.models.job import (
    ContainerFormat,
    EncodingSettings,
    FieldOrder,
    VideoCodec,
    VideoJob,
)
from restoreflow.models.passes import (
    ChromaFixParameters,
    ChromaFixPreset,
    ColorCorrectionParameters,
    ColorCorrectionPreset,
    CropResizeParameters,
    CropResizePreset,
    DebandParameters,
    DeblockMethod,
    DeblockParameters,
    DehaloMethod,
    DehaloParameters,
    NoiseReductionMethod,
    NoiseReductionParameters,
    NoiseReductionPreset,
    PassType,
    ResizeKernel,
    SharpenMethod,
    SharpenParameters,
    UpscaleMethod,
    pass_record_class,
)
from restoreflow.models.pipeline import RestorationPipeline
from restoreflow.models.progress import (
    CompletionResult,
    LogLevel,
    LogMessage,
    ProgressInfo,
    WorkerError,
    format_eta,
    parse_worker_line,
)
from restoreflow.models.qtgmc import QTGMCParameters, QTGMCPreset
from restoreflow.models.registry import FilterRegistry, build_schema
from restoreflow.models.schema import (
    DynamicParameters,
    FilterSchema,
    MethodDefinition,
    ParameterDefinition,
    ParameterType,
    evaluate_visibility,
)

__all__ = [
    "ChromaFixParameters",
    "ChromaFixPreset",
    "ColorCorrectionParameters",
    "ColorCorrectionPreset",
    "CompletionResult",
    "ContainerFormat",
    "CropResizeParameters",
    "CropResizePreset",
    "DebandParameters",
    "DeblockMethod",
    "DeblockParameters",
    "DehaloMethod",
    "DehaloParameters",
    "DynamicParameters",
    "EncodingSettings",
    "FieldOrder",
    "FieldSpec",
    "FilterRegistry",
    "FilterSchema",
    "LogLevel",
    "LogMessage",
    "MethodDefinition",
    "NoiseReductionMethod",
    "NoiseReductionParameters",
    "NoiseReductionPreset",
    "ParameterDefinition",
    "ParameterType",
    "PassParameters",
    "PassType",
    "ProgressInfo",
    "QTGMCParameters",
    "QTGMCPreset",
    "ResizeKernel",
    "RestorationPipeline",
    "SharpenMethod",
    "SharpenParameters",
    "UpscaleMethod",
    "VideoCodec",
    "VideoJob",
    "WorkerError",
    "build_schema",
    "evaluate_visibility",
    "format_eta",
    "from_dynamic",
    "parse_worker_line",
    "pass_record_class",
    "to_dynamic",
]
