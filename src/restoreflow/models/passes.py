"""Restoration pass types and their parameter records.

Passes run in PassType order. Every pass has a dedicated dataclass
holding its settings; the deinterlace record lives in ``qtgmc``.
Records are treated as values: edits go through ``replace`` and
produce a new record.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Type

from restoreflow.models.base import B, I, N, S, PassParameters, spec
from restoreflow.models.qtgmc import QTGMCParameters


class PassType(Enum):
    """Processing passes in pipeline order."""

    DEINTERLACE = "deinterlace"
    NOISE_REDUCTION = "noiseReduction"
    DEHALO = "dehalo"
    DEBLOCK = "deblock"
    DEBAND = "deband"
    SHARPEN = "sharpen"
    COLOR_CORRECTION = "colorCorrection"
    CHROMA_FIXES = "chromaFixes"
    CROP_RESIZE = "cropResize"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    @property
    def filter_id(self) -> str:
        return pass_record_class(self).FILTER_ID


_DISPLAY_NAMES = {
    PassType.DEINTERLACE: "Deinterlace",
    PassType.NOISE_REDUCTION: "Noise Reduction",
    PassType.DEHALO: "Dehalo",
    PassType.DEBLOCK: "Deblock",
    PassType.DEBAND: "Deband",
    PassType.SHARPEN: "Sharpen",
    PassType.COLOR_CORRECTION: "Color Correction",
    PassType.CHROMA_FIXES: "Chroma Fixes",
    PassType.CROP_RESIZE: "Crop/Resize",
}

_DESCRIPTIONS = {
    PassType.DEINTERLACE: "QTGMC motion-compensated deinterlacing",
    PassType.NOISE_REDUCTION: "Temporal denoising (SMDegrain, MCTemporalDenoise)",
    PassType.DEHALO: "Remove halo artifacts around edges",
    PassType.DEBLOCK: "Remove compression block artifacts",
    PassType.DEBAND: "Remove color banding in gradients",
    PassType.SHARPEN: "Edge-aware sharpening (LSFmod, CAS)",
    PassType.COLOR_CORRECTION: "Brightness, contrast, saturation and levels",
    PassType.CHROMA_FIXES: "Chroma bleeding, dot crawl and rainbow removal",
    PassType.CROP_RESIZE: "Crop borders and resize or upscale",
}


# =============================================================================
# Noise reduction
# =============================================================================


class NoiseReductionPreset(Enum):
    OFF = "off"
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"
    CUSTOM = "custom"


class NoiseReductionMethod(Enum):
    SM_DEGRAIN = "smDegrain"
    MC_TEMPORAL_DENOISE = "mcTemporalDenoise"
    QTGMC_BUILTIN = "qtgmcBuiltin"


@dataclass
class NoiseReductionParameters(PassParameters):
    """Parameters for the temporal noise reduction pass."""

    FILTER_ID = "noise_reduction"
    METHOD_ENUM = NoiseReductionMethod
    METHOD_IDS = {
        NoiseReductionMethod.SM_DEGRAIN: "smdegrain",
        NoiseReductionMethod.MC_TEMPORAL_DENOISE: "mc_temporal_denoise",
        NoiseReductionMethod.QTGMC_BUILTIN: "qtgmc_builtin",
    }

    enabled: bool = False
    preset: NoiseReductionPreset = NoiseReductionPreset.OFF
    method: NoiseReductionMethod = NoiseReductionMethod.SM_DEGRAIN

    sm_degrain_tr: int = 2
    sm_degrain_th_sad: int = 300
    sm_degrain_th_sadc: int = 150
    sm_degrain_refine: bool = True
    sm_degrain_prefilter: int = 2

    mc_temporal_sigma: float = 4.0
    mc_temporal_radius: int = 2
    mc_temporal_profile: str = "fast"

    qtgmc_ez_denoise: float = 0.0
    qtgmc_ez_keep_grain: float = 0.0

    FIELDS = (
        spec("preset", I, enum=NoiseReductionPreset),
        spec("smDegrainTr", I, minimum=1, maximum=6, label="Temporal radius"),
        spec("smDegrainThSAD", I, attr="sm_degrain_th_sad", minimum=0, maximum=1000),
        spec("smDegrainThSADC", I, attr="sm_degrain_th_sadc", minimum=0, maximum=1000),
        spec("smDegrainRefine", B),
        spec("smDegrainPrefilter", I, minimum=0, maximum=4),
        spec("mcTemporalSigma", N, minimum=0.0, maximum=20.0, step=0.5),
        spec("mcTemporalRadius", I, minimum=1, maximum=6),
        spec("mcTemporalProfile", S),
        spec("qtgmcEzDenoise", N, minimum=0.0, maximum=10.0, step=0.1),
        spec("qtgmcEzKeepGrain", N, minimum=0.0, maximum=10.0, step=0.1),
    )

    @classmethod
    def from_preset(cls, preset: NoiseReductionPreset) -> "NoiseReductionParameters":
        if preset is NoiseReductionPreset.OFF:
            return cls(enabled=False, preset=preset)
        if preset is NoiseReductionPreset.LIGHT:
            return cls(enabled=True, preset=preset, sm_degrain_tr=1,
                       sm_degrain_th_sad=200, sm_degrain_th_sadc=100)
        if preset is NoiseReductionPreset.MODERATE:
            return cls(enabled=True, preset=preset, sm_degrain_tr=2,
                       sm_degrain_th_sad=300, sm_degrain_th_sadc=150)
        if preset is NoiseReductionPreset.HEAVY:
            return cls(enabled=True, preset=preset, sm_degrain_tr=3,
                       sm_degrain_th_sad=500, sm_degrain_th_sadc=250)
        return cls(enabled=True, preset=preset)

    def summary(self) -> str:
        if not self.enabled:
            return "Off"
        if self.method is NoiseReductionMethod.SM_DEGRAIN:
            return f"SMDegrain tr={self.sm_degrain_tr}"
        if self.method is NoiseReductionMethod.MC_TEMPORAL_DENOISE:
            return f"MCTemporalDenoise sigma={self.mc_temporal_sigma}"
        return "QTGMC built-in"


# =============================================================================
# Dehalo
# =============================================================================


class DehaloMethod(Enum):
    DEHALO_ALPHA = "DeHalo_alpha"
    FINE_DEHALO = "FineDehalo"
    YAHR = "YAHR"


@dataclass
class DehaloParameters(PassParameters):
    FILTER_ID = "dehalo"
    METHOD_ENUM = DehaloMethod
    METHOD_IDS = {
        DehaloMethod.DEHALO_ALPHA: "dehalo_alpha",
        DehaloMethod.FINE_DEHALO: "fine_dehalo",
        DehaloMethod.YAHR: "yahr",
    }

    enabled: bool = False
    method: DehaloMethod = DehaloMethod.DEHALO_ALPHA
    rx: float = 2.0
    ry: float = 2.0
    dark_str: float = 1.0
    bright_str: float = 1.0
    low_threshold: int = 50
    high_threshold: int = 100
    yahr_blur: int = 2
    yahr_depth: int = 32

    FIELDS = (
        spec("rx", N, minimum=1.0, maximum=3.0, step=0.1, label="Horizontal radius"),
        spec("ry", N, minimum=1.0, maximum=3.0, step=0.1, label="Vertical radius"),
        spec("darkStr", N, minimum=0.0, maximum=2.0, step=0.1),
        spec("brightStr", N, minimum=0.0, maximum=2.0, step=0.1),
        spec("lowThreshold", I, minimum=0, maximum=255),
        spec("highThreshold", I, minimum=0, maximum=255),
        spec("yahrBlur", I, minimum=1, maximum=5),
        spec("yahrDepth", I, minimum=1, maximum=64),
    )

    def summary(self) -> str:
        return self.method.value if self.enabled else "Off"


# =============================================================================
# Deblock
# =============================================================================


class DeblockMethod(Enum):
    DEBLOCK_QED = "Deblock_QED"
    DEBLOCK = "Deblock"


@dataclass
class DeblockParameters(PassParameters):
    FILTER_ID = "deblock"
    METHOD_ENUM = DeblockMethod
    METHOD_IDS = {
        DeblockMethod.DEBLOCK_QED: "deblock_qed",
        DeblockMethod.DEBLOCK: "deblock",
    }

    enabled: bool = False
    method: DeblockMethod = DeblockMethod.DEBLOCK_QED
    quant1: int = 24
    quant2: int = 26
    a_offset1: int = 1
    a_offset2: int = 1
    block_size: int = 8
    overlap: int = 4

    FIELDS = (
        spec("quant1", I, minimum=0, maximum=60),
        spec("quant2", I, minimum=0, maximum=60),
        spec("aOffset1", I, minimum=-10, maximum=10),
        spec("aOffset2", I, minimum=-10, maximum=10),
        spec("blockSize", I, minimum=4, maximum=32),
        spec("overlap", I, minimum=0, maximum=16),
    )

    def summary(self) -> str:
        return self.method.value if self.enabled else "Off"


# =============================================================================
# Deband
# =============================================================================


@dataclass
class DebandParameters(PassParameters):
    FILTER_ID = "deband"
    FIXED_METHOD = "f3kdb"

    enabled: bool = False
    range: int = 15
    y: int = 32
    cb: int = 32
    cr: int = 32
    grain_y: int = 24
    grain_c: int = 24
    dynamic_grain: bool = True
    output_depth: int = 16

    FIELDS = (
        spec("range", I, minimum=1, maximum=31),
        spec("y", I, minimum=0, maximum=80),
        spec("cb", I, minimum=0, maximum=80),
        spec("cr", I, minimum=0, maximum=80),
        spec("grainY", I, minimum=0, maximum=80),
        spec("grainC", I, minimum=0, maximum=80),
        spec("dynamicGrain", B),
        spec("outputDepth", I, minimum=8, maximum=16),
    )

    def summary(self) -> str:
        return f"f3kdb range={self.range}" if self.enabled else "Off"


# =============================================================================
# Sharpen
# =============================================================================


class SharpenMethod(Enum):
    LSFMOD = "LSFmod"
    CAS = "CAS"


@dataclass
class SharpenParameters(PassParameters):
    FILTER_ID = "sharpen"
    METHOD_ENUM = SharpenMethod
    METHOD_IDS = {SharpenMethod.LSFMOD: "lsfmod", SharpenMethod.CAS: "cas"}

    enabled: bool = False
    method: SharpenMethod = SharpenMethod.LSFMOD
    strength: int = 100
    overshoot: int = 1
    undershoot: int = 1
    soft_edge: int = 0
    cas_sharpness: float = 0.5

    FIELDS = (
        spec("strength", I, minimum=0, maximum=300, visible_when={"method": "lsfmod"}),
        spec("overshoot", I, minimum=0, maximum=10, visible_when={"method": "lsfmod"}),
        spec("undershoot", I, minimum=0, maximum=10, visible_when={"method": "lsfmod"}),
        spec("softEdge", I, minimum=0, maximum=100, visible_when={"method": "lsfmod"}),
        spec("casSharpness", N, minimum=0.0, maximum=1.0, step=0.05,
             visible_when={"method": "cas"}),
    )

    def summary(self) -> str:
        return self.method.value if self.enabled else "Off"


# =============================================================================
# Color correction
# =============================================================================


class ColorCorrectionPreset(Enum):
    OFF = "off"
    BROADCAST_SAFE = "broadcastSafe"
    ENHANCE_COLORS = "enhanceColors"
    DESATURATE = "desaturate"
    CUSTOM = "custom"


_LEVELS_ON = {"applyLevels": True}


@dataclass
class ColorCorrectionParameters(PassParameters):
    FILTER_ID = "color_correction"
    FIXED_METHOD = "tweak"

    enabled: bool = False
    preset: ColorCorrectionPreset = ColorCorrectionPreset.OFF
    brightness: float = 0.0
    contrast: float = 1.0
    hue: float = 0.0
    saturation: float = 1.0
    coring: bool = False
    apply_levels: bool = False
    input_low: int = 0
    input_high: int = 255
    output_low: int = 0
    output_high: int = 255
    gamma: float = 1.0

    FIELDS = (
        spec("preset", I, enum=ColorCorrectionPreset),
        spec("brightness", N, minimum=-100.0, maximum=100.0, step=1.0),
        spec("contrast", N, minimum=0.0, maximum=2.0, step=0.05),
        spec("hue", N, minimum=-180.0, maximum=180.0, step=1.0),
        spec("saturation", N, minimum=0.0, maximum=2.0, step=0.05),
        spec("coring", B),
        spec("applyLevels", B),
        spec("inputLow", I, minimum=0, maximum=255, visible_when=_LEVELS_ON),
        spec("inputHigh", I, minimum=0, maximum=255, visible_when=_LEVELS_ON),
        spec("outputLow", I, minimum=0, maximum=255, visible_when=_LEVELS_ON),
        spec("outputHigh", I, minimum=0, maximum=255, visible_when=_LEVELS_ON),
        spec("gamma", N, minimum=0.1, maximum=3.0, step=0.05, visible_when=_LEVELS_ON),
    )

    @classmethod
    def from_preset(cls, preset: ColorCorrectionPreset) -> "ColorCorrectionParameters":
        if preset is ColorCorrectionPreset.OFF:
            return cls(enabled=False, preset=preset)
        if preset is ColorCorrectionPreset.BROADCAST_SAFE:
            return cls(enabled=True, preset=preset, coring=True, apply_levels=True,
                       input_low=16, input_high=235, output_low=16, output_high=235)
        if preset is ColorCorrectionPreset.ENHANCE_COLORS:
            return cls(enabled=True, preset=preset, contrast=1.1, saturation=1.15,
                       apply_levels=True, input_low=8, input_high=247, gamma=0.95)
        if preset is ColorCorrectionPreset.DESATURATE:
            return cls(enabled=True, preset=preset, saturation=0.0)
        return cls(enabled=True, preset=preset)

    def summary(self) -> str:
        if not self.enabled:
            return "Off"
        return self.preset.value


# =============================================================================
# Chroma fixes
# =============================================================================


class ChromaFixPreset(Enum):
    OFF = "off"
    VHS_CLEANUP = "vhsCleanup"
    BROADCAST_FIX = "broadcastFix"
    ANALOG_REPAIR = "analogRepair"
    CUSTOM = "custom"


@dataclass
class ChromaFixParameters(PassParameters):
    FILTER_ID = "chroma_fixes"
    FIXED_METHOD = "chroma_fix"

    enabled: bool = False
    preset: ChromaFixPreset = ChromaFixPreset.OFF

    apply_chroma_bleeding_fix: bool = False
    chroma_bleed_cx: int = 4
    chroma_bleed_cy: int = 4
    chroma_bleed_c_blur: float = 0.7
    chroma_bleed_strength: float = 1.0

    apply_de_crawl: bool = False
    de_crawl_y_thresh: int = 10
    de_crawl_c_thresh: int = 10
    de_crawl_max_diff: int = 50

    apply_vinverse: bool = False
    vinverse_sstr: float = 2.7
    vinverse_amnt: int = 255
    vinverse_scl: int = 12

    FIELDS = (
        spec("preset", I, enum=ChromaFixPreset),
        spec("applyChromaBleedingFix", B),
        spec("chromaBleedCx", I, minimum=0, maximum=16,
             visible_when={"applyChromaBleedingFix": True}),
        spec("chromaBleedCy", I, minimum=0, maximum=16,
             visible_when={"applyChromaBleedingFix": True}),
        spec("chromaBleedCBlur", N, attr="chroma_bleed_c_blur", minimum=0.0, maximum=2.0,
             step=0.1, visible_when={"applyChromaBleedingFix": True}),
        spec("chromaBleedStrength", N, minimum=0.0, maximum=2.0, step=0.1,
             visible_when={"applyChromaBleedingFix": True}),
        spec("applyDeCrawl", B, attr="apply_de_crawl"),
        spec("deCrawlYThresh", I, attr="de_crawl_y_thresh", minimum=0, maximum=255,
             visible_when={"applyDeCrawl": True}),
        spec("deCrawlCThresh", I, attr="de_crawl_c_thresh", minimum=0, maximum=255,
             visible_when={"applyDeCrawl": True}),
        spec("deCrawlMaxDiff", I, attr="de_crawl_max_diff", minimum=0, maximum=255,
             visible_when={"applyDeCrawl": True}),
        spec("applyVinverse", B),
        spec("vinverseSstr", N, minimum=0.0, maximum=10.0, step=0.1,
             visible_when={"applyVinverse": True}),
        spec("vinverseAmnt", I, minimum=0, maximum=255, visible_when={"applyVinverse": True}),
        spec("vinverseScl", I, minimum=0, maximum=64, visible_when={"applyVinverse": True}),
    )

    @classmethod
    def from_preset(cls, preset: ChromaFixPreset) -> "ChromaFixParameters":
        if preset is ChromaFixPreset.OFF:
            return cls(enabled=False, preset=preset)
        if preset is ChromaFixPreset.VHS_CLEANUP:
            return cls(enabled=True, preset=preset, apply_chroma_bleeding_fix=True,
                       chroma_bleed_c_blur=0.8, chroma_bleed_strength=0.8,
                       apply_vinverse=True, vinverse_sstr=2.7)
        if preset is ChromaFixPreset.BROADCAST_FIX:
            return cls(enabled=True, preset=preset, apply_de_crawl=True,
                       de_crawl_y_thresh=12, de_crawl_c_thresh=12)
        if preset is ChromaFixPreset.ANALOG_REPAIR:
            return cls(enabled=True, preset=preset, apply_chroma_bleeding_fix=True,
                       chroma_bleed_c_blur=1.0, chroma_bleed_strength=1.0,
                       apply_de_crawl=True, apply_vinverse=True)
        return cls(enabled=True, preset=preset)

    def summary(self) -> str:
        if not self.enabled:
            return "Off"
        fixes = []
        if self.apply_chroma_bleeding_fix:
            fixes.append("Bleed")
        if self.apply_de_crawl:
            fixes.append("DeCrawl")
        if self.apply_vinverse:
            fixes.append("Vinverse")
        return "+".join(fixes) if fixes else "Custom"


# =============================================================================
# Crop / resize
# =============================================================================


class CropResizePreset(Enum):
    OFF = "off"
    REMOVE_OVERSCAN = "removeOverscan"
    RESIZE_720P = "resize720p"
    RESIZE_1080P = "resize1080p"
    RESIZE_4K = "resize4k"
    CUSTOM = "custom"


class ResizeKernel(Enum):
    SPLINE36 = "spline36"
    LANCZOS = "lanczos"
    BICUBIC = "bicubic"
    BILINEAR = "bilinear"
    NNEDI3 = "nnedi3"
    EEDI3 = "eedi3"


class UpscaleMethod(Enum):
    NNEDI3_RPOW2 = "nnedi3Rpow2"
    EEDI3_RPOW2 = "eedi3Rpow2"
    SPLINE36 = "spline36"


_CROP_ON = {"cropEnabled": True}
_RESIZE_ON = {"resizeEnabled": True}


@dataclass
class CropResizeParameters(PassParameters):
    FILTER_ID = "crop_resize"
    FIXED_METHOD = "crop_resize"

    enabled: bool = False
    preset: CropResizePreset = CropResizePreset.OFF

    crop_enabled: bool = False
    crop_left: int = 0
    crop_right: int = 0
    crop_top: int = 0
    crop_bottom: int = 0

    resize_enabled: bool = False
    target_width: Optional[int] = None
    target_height: Optional[int] = None
    kernel: ResizeKernel = ResizeKernel.SPLINE36
    maintain_aspect: bool = True

    use_integer_upscale: bool = False
    upscale_method: UpscaleMethod = UpscaleMethod.NNEDI3_RPOW2
    upscale_factor: int = 2

    FIELDS = (
        spec("preset", I, enum=CropResizePreset),
        spec("cropEnabled", B),
        spec("cropLeft", I, minimum=0, visible_when=_CROP_ON),
        spec("cropRight", I, minimum=0, visible_when=_CROP_ON),
        spec("cropTop", I, minimum=0, visible_when=_CROP_ON),
        spec("cropBottom", I, minimum=0, visible_when=_CROP_ON),
        spec("resizeEnabled", B),
        spec("targetWidth", I, optional=True, minimum=16, maximum=7680, visible_when=_RESIZE_ON),
        spec("targetHeight", I, optional=True, minimum=16, maximum=4320, visible_when=_RESIZE_ON),
        spec("kernel", I, enum=ResizeKernel, visible_when=_RESIZE_ON),
        spec("maintainAspect", B, visible_when=_RESIZE_ON),
        spec("useIntegerUpscale", B),
        spec("upscaleMethod", I, enum=UpscaleMethod, visible_when={"useIntegerUpscale": True}),
        spec("upscaleFactor", I, minimum=2, maximum=4, visible_when={"useIntegerUpscale": True}),
    )

    @classmethod
    def from_preset(cls, preset: CropResizePreset) -> "CropResizeParameters":
        if preset is CropResizePreset.OFF:
            return cls(enabled=False, preset=preset)
        if preset is CropResizePreset.REMOVE_OVERSCAN:
            return cls(enabled=True, preset=preset, crop_enabled=True,
                       crop_left=8, crop_right=8, crop_top=8, crop_bottom=8)
        if preset is CropResizePreset.RESIZE_720P:
            return cls(enabled=True, preset=preset, resize_enabled=True,
                       target_width=1280, target_height=720, maintain_aspect=True)
        if preset is CropResizePreset.RESIZE_1080P:
            return cls(enabled=True, preset=preset, resize_enabled=True,
                       target_width=1920, target_height=1080, maintain_aspect=True)
        if preset is CropResizePreset.RESIZE_4K:
            return cls(enabled=True, preset=preset, use_integer_upscale=True,
                       upscale_method=UpscaleMethod.NNEDI3_RPOW2, upscale_factor=2)
        return cls(enabled=True, preset=preset)

    def summary(self) -> str:
        if not self.enabled:
            return "Off"
        parts = []
        if self.crop_enabled:
            parts.append("Crop")
        if self.resize_enabled and self.target_width and self.target_height:
            parts.append(f"{self.target_width}x{self.target_height}")
        if self.use_integer_upscale:
            parts.append(f"{self.upscale_factor}x")
        return " + ".join(parts) if parts else "Custom"


_RECORD_CLASSES: Dict[PassType, Type[PassParameters]] = {
    PassType.DEINTERLACE: QTGMCParameters,
    PassType.NOISE_REDUCTION: NoiseReductionParameters,
    PassType.DEHALO: DehaloParameters,
    PassType.DEBLOCK: DeblockParameters,
    PassType.DEBAND: DebandParameters,
    PassType.SHARPEN: SharpenParameters,
    PassType.COLOR_CORRECTION: ColorCorrectionParameters,
    PassType.CHROMA_FIXES: ChromaFixParameters,
    PassType.CROP_RESIZE: CropResizeParameters,
}


def pass_record_class(pass_type: PassType) -> Type[PassParameters]:
    """Return the parameter record class for a pass."""
    return _RECORD_CLASSES[pass_type]


def pass_for_filter_id(filter_id: str) -> Optional[PassType]:
    for pass_type, record_class in _RECORD_CLASSES.items():
        if record_class.FILTER_ID == filter_id:
            return pass_type
    return None


def all_passes() -> List[PassType]:
    return list(PassType)
