"""QTGMC deinterlacer settings.

QTGMC exposes a very large set of knobs. Most of them are optional: when
unset the preset chooses a value, so the record keeps them as None and
they are left out of the job file entirely.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from restoreflow.models.base import B, I, N, S, PassParameters, spec


class QTGMCPreset(Enum):
    """Speed/quality presets, slowest first."""

    PLACEBO = "Placebo"
    VERY_SLOW = "Very Slow"
    SLOWER = "Slower"
    SLOW = "Slow"
    MEDIUM = "Medium"
    FAST = "Fast"
    FASTER = "Faster"
    VERY_FAST = "Very Fast"
    SUPER_FAST = "Super Fast"
    ULTRA_FAST = "Ultra Fast"
    DRAFT = "Draft"


_NOISE_ACTIVE = {"noiseProcess": [1, 2]}
_MATCH_ACTIVE = {"sourceMatch": [1, 2, 3]}
_REFINED_MATCH = {"sourceMatch": [2, 3]}


@dataclass
class QTGMCParameters(PassParameters):
    """Parameters for the QTGMC deinterlace pass.

    ``tff`` is not edited directly by users; it is derived from the
    detected or overridden field order when a job is built.
    """

    FILTER_ID = "deinterlace"
    FIXED_METHOD = "qtgmc"

    enabled: bool = True
    preset: QTGMCPreset = QTGMCPreset.SLOWER

    # Input/output
    input_type: int = 0
    tff: Optional[bool] = None
    fps_divisor: int = 1

    # Temporal radius and repair
    tr0: Optional[int] = None
    tr1: Optional[int] = None
    tr2: Optional[int] = None
    rep0: Optional[int] = None
    rep1: int = 0
    rep2: Optional[int] = None
    rep_chroma: bool = True

    # Interpolation
    edi_mode: Optional[str] = None
    nn_size: Optional[int] = None
    nn_neurons: Optional[int] = None
    edi_qual: int = 1
    edi_max_d: Optional[int] = None
    chroma_edi: str = ""

    # Motion analysis
    block_size: Optional[int] = None
    overlap: Optional[int] = None
    search: Optional[int] = None
    search_param: Optional[int] = None
    pel_search: Optional[int] = None
    chroma_motion: Optional[bool] = None
    true_motion: bool = False
    lambda_: Optional[int] = None
    lsad: Optional[int] = None
    p_new: Optional[int] = None
    p_level: Optional[int] = None
    global_motion: bool = True
    dct: int = 0
    sub_pel: Optional[int] = None
    sub_pel_interp: int = 2

    # Motion thresholds
    th_sad1: int = 640
    th_sad2: int = 256
    th_scd1: int = 180
    th_scd2: int = 98

    # Sharpening
    sharpness: Optional[float] = None
    s_mode: Optional[int] = None
    sl_mode: Optional[int] = None
    sl_rad: Optional[int] = None
    s_ovs: int = 0
    sv_thin: float = 0.0
    sbb: Optional[int] = None
    srch_clip_pp: Optional[int] = None

    # Noise processing
    noise_process: Optional[int] = None
    ez_denoise: Optional[float] = None
    ez_keep_grain: Optional[float] = None
    noise_preset: str = "Fast"
    denoiser: Optional[str] = None
    fft_threads: int = 1
    denoise_mc: Optional[bool] = None
    noise_tr: Optional[int] = None
    sigma: Optional[float] = None
    chroma_noise: bool = False
    show_noise: float = 0.0
    grain_restore: Optional[float] = None
    noise_restore: Optional[float] = None
    noise_deint: Optional[str] = None
    stabilize_noise: Optional[bool] = None

    # Source matching
    source_match: int = 0
    match_preset: Optional[str] = None
    match_edi: Optional[str] = None
    match_preset2: Optional[str] = None
    match_edi2: Optional[str] = None
    match_tr2: int = 1
    match_enhance: float = 0.5
    lossless: int = 0

    # Advanced
    border: bool = False
    precise: Optional[bool] = None
    force_tr: int = 0
    str_: float = 2.0
    amp: float = 0.0625
    fast_ma: bool = False
    e_search_p: bool = False
    refine_motion: bool = False

    # GPU
    opencl: bool = False
    device: Optional[int] = None

    def summary(self) -> str:
        if not self.enabled:
            return "Off"
        return f"QTGMC {self.preset.value}"


QTGMCParameters.FIELDS = (
    spec("preset", I, enum=QTGMCPreset, label="Preset"),
    spec("inputType", I, minimum=0, maximum=3, label="Input type"),
    spec("tff", B, optional=True, label="Top field first"),
    spec("fpsDivisor", I, minimum=1, maximum=2, label="FPS divisor"),
    spec("tr0", I, optional=True, minimum=0, maximum=2),
    spec("tr1", I, optional=True, minimum=0, maximum=2),
    spec("tr2", I, optional=True, minimum=0, maximum=3),
    spec("rep0", I, optional=True, minimum=0, maximum=5),
    spec("rep1", I, minimum=0, maximum=5),
    spec("rep2", I, optional=True, minimum=0, maximum=5),
    spec("repChroma", B),
    spec("ediMode", S, optional=True, label="Interpolation mode"),
    spec("nnSize", I, optional=True, minimum=0, maximum=6),
    spec("nnNeurons", I, optional=True, minimum=0, maximum=4),
    spec("ediQual", I, minimum=1, maximum=2),
    spec("ediMaxD", I, optional=True),
    spec("chromaEdi", S),
    spec("blockSize", I, optional=True),
    spec("overlap", I, optional=True),
    spec("search", I, optional=True, minimum=0, maximum=5),
    spec("searchParam", I, optional=True),
    spec("pelSearch", I, optional=True),
    spec("chromaMotion", B, optional=True),
    spec("trueMotion", B),
    spec("lambda", I, attr="lambda_", optional=True),
    spec("lsad", I, optional=True),
    spec("pNew", I, optional=True),
    spec("pLevel", I, optional=True),
    spec("globalMotion", B),
    spec("dct", I, minimum=0, maximum=10),
    spec("subPel", I, optional=True),
    spec("subPelInterp", I, minimum=0, maximum=2),
    spec("thSad1", I, minimum=0),
    spec("thSad2", I, minimum=0),
    spec("thScd1", I, minimum=0),
    spec("thScd2", I, minimum=0, maximum=255),
    spec("sharpness", N, optional=True, minimum=0.0, step=0.1),
    spec("sMode", I, optional=True, minimum=0, maximum=2),
    spec("slMode", I, optional=True, minimum=0, maximum=4),
    spec("slRad", I, optional=True),
    spec("sOvs", I, minimum=0, maximum=255),
    spec("svThin", N, minimum=0.0, step=0.1),
    spec("sbb", I, optional=True, minimum=0, maximum=3),
    spec("srchClipPp", I, optional=True, minimum=0, maximum=3),
    spec("noiseProcess", I, optional=True, minimum=0, maximum=2),
    spec("ezDenoise", N, optional=True, minimum=0.0),
    spec("ezKeepGrain", N, optional=True, minimum=0.0),
    spec("noisePreset", S),
    spec("denoiser", S, optional=True, visible_when=_NOISE_ACTIVE),
    spec("fftThreads", I, minimum=1),
    spec("denoiseMc", B, optional=True, visible_when=_NOISE_ACTIVE),
    spec("noiseTr", I, optional=True, minimum=0, maximum=2, visible_when=_NOISE_ACTIVE),
    spec("sigma", N, optional=True, minimum=0.0, visible_when=_NOISE_ACTIVE),
    spec("chromaNoise", B),
    spec("showNoise", N),
    spec("grainRestore", N, optional=True, visible_when=_NOISE_ACTIVE),
    spec("noiseRestore", N, optional=True, visible_when=_NOISE_ACTIVE),
    spec("noiseDeint", S, optional=True, visible_when=_NOISE_ACTIVE),
    spec("stabilizeNoise", B, optional=True, visible_when=_NOISE_ACTIVE),
    spec("sourceMatch", I, minimum=0, maximum=3),
    spec("matchPreset", S, optional=True, visible_when=_MATCH_ACTIVE),
    spec("matchEdi", S, optional=True, visible_when=_MATCH_ACTIVE),
    spec("matchPreset2", S, optional=True, visible_when=_REFINED_MATCH),
    spec("matchEdi2", S, optional=True, visible_when=_REFINED_MATCH),
    spec("matchTr2", I, minimum=0, maximum=2, visible_when=_REFINED_MATCH),
    spec("matchEnhance", N, minimum=0.0, step=0.05, visible_when=_REFINED_MATCH),
    spec("lossless", I, minimum=0, maximum=2),
    spec("border", B),
    spec("precise", B, optional=True),
    spec("forceTr", I, minimum=0, maximum=3),
    spec("str", N, attr="str_", minimum=0.0),
    spec("amp", N, minimum=0.0),
    spec("fastMa", B),
    spec("eSearchP", B),
    spec("refineMotion", B),
    spec("opencl", B, label="Use OpenCL"),
    spec("device", I, optional=True, visible_when={"opencl": True}),
)
