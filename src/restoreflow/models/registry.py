"""Filter schema registry.

Built-in schemas are generated from the pass records so they can never
drift from what the records hold. A user schema directory may add new
filters or replace built-in ones; each ``*.json``, ``*.yaml`` or
``*.yml`` file holds one schema.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from restoreflow.models.base import PassParameters
from restoreflow.models.passes import PassType, pass_record_class
from restoreflow.models.schema import FilterSchema, MethodDefinition, ParameterDefinition

logger = logging.getLogger(__name__)

SCHEMA_SUFFIXES = (".json", ".yaml", ".yml")

# method id -> (display name, filter function)
METHOD_INFO = {
    "qtgmc": ("QTGMC", "havsfunc.QTGMC"),
    "smdegrain": ("SMDegrain", "havsfunc.SMDegrain"),
    "mc_temporal_denoise": ("MCTemporalDenoise", "havsfunc.MCTemporalDenoise"),
    "qtgmc_builtin": ("QTGMC built-in", "havsfunc.QTGMC"),
    "dehalo_alpha": ("DeHalo_alpha", "havsfunc.DeHalo_alpha"),
    "fine_dehalo": ("FineDehalo", "havsfunc.FineDehalo"),
    "yahr": ("YAHR", "havsfunc.YAHR"),
    "deblock_qed": ("Deblock_QED", "havsfunc.Deblock_QED"),
    "deblock": ("Deblock", "core.deblock.Deblock"),
    "f3kdb": ("f3kdb", "core.neo_f3kdb.Deband"),
    "lsfmod": ("LSFmod", "havsfunc.LSFmod"),
    "cas": ("CAS", "core.cas.CAS"),
    "tweak": ("Tweak", "adjust.Tweak"),
    "chroma_fix": ("Chroma fixes", "chroma_fix"),
    "crop_resize": ("Crop/Resize", "core.resize"),
}

# Parameters consumed by each method of multi-method passes. Single-method
# passes use every parameter they declare.
METHOD_PARAMETERS: Dict[str, List[str]] = {
    "smdegrain": ["preset", "smDegrainTr", "smDegrainThSAD", "smDegrainThSADC",
                  "smDegrainRefine", "smDegrainPrefilter"],
    "mc_temporal_denoise": ["preset", "mcTemporalSigma", "mcTemporalRadius",
                            "mcTemporalProfile"],
    "qtgmc_builtin": ["preset", "qtgmcEzDenoise", "qtgmcEzKeepGrain"],
    "dehalo_alpha": ["rx", "ry", "darkStr", "brightStr"],
    "fine_dehalo": ["rx", "ry", "darkStr", "brightStr", "lowThreshold", "highThreshold"],
    "yahr": ["yahrBlur", "yahrDepth"],
    "deblock_qed": ["quant1", "quant2", "aOffset1", "aOffset2"],
    "deblock": ["quant1", "aOffset1", "blockSize", "overlap"],
    "lsfmod": ["strength", "overshoot", "undershoot", "softEdge"],
    "cas": ["casSharpness"],
}


def build_schema(pass_type: PassType) -> FilterSchema:
    """Generate the built-in schema for a pass from its record class."""
    record_class = pass_record_class(pass_type)
    defaults: PassParameters = record_class()

    parameters: Dict[str, ParameterDefinition] = {}
    for field_spec in record_class.FIELDS:
        default = field_spec.dump(getattr(defaults, field_spec.attr))
        parameters[field_spec.key] = ParameterDefinition(
            name=field_spec.key,
            type=field_spec.type,
            default=default,
            optional=field_spec.optional,
            minimum=field_spec.minimum,
            maximum=field_spec.maximum,
            step=field_spec.step,
            options=list(field_spec.options),
            label=field_spec.label,
            visible_when=field_spec.visible_when,
        )

    all_names = list(parameters)
    methods = []
    for method_id in record_class.method_ids():
        name, function = METHOD_INFO[method_id]
        methods.append(
            MethodDefinition(
                id=method_id,
                name=name,
                function=function,
                parameters=list(METHOD_PARAMETERS.get(method_id, all_names)),
            )
        )

    return FilterSchema(
        id=record_class.FILTER_ID,
        name=pass_type.display_name,
        description=pass_type.description,
        methods=methods,
        parameters=parameters,
        order=list(PassType).index(pass_type),
    )


def load_schema_file(path: Union[str, Path]) -> FilterSchema:
    """Load one schema file.

    Raises:
        ValueError: If the file is not a valid schema
        OSError: If the file cannot be read
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        if path.suffix == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: schema must be a mapping")
    try:
        return FilterSchema.from_dict(data, source=str(path))
    except KeyError as e:
        raise ValueError(f"{path}: missing key {e}") from e


class FilterRegistry:
    """All known filter schemas, built-in and user supplied.

    Example:
        >>> registry = FilterRegistry(user_dir=Path("~/.restoreflow/filters").expanduser())
        >>> registry.get("dehalo").default_method.id
        'dehalo_alpha'
    """

    def __init__(self, user_dir: Optional[Path] = None) -> None:
        self._schemas: Dict[str, FilterSchema] = {}
        self.load_errors: List[str] = []
        for pass_type in PassType:
            schema = build_schema(pass_type)
            self._schemas[schema.id] = schema
        if user_dir is not None:
            self.load_directory(user_dir)

    def load_directory(self, directory: Path) -> int:
        """Load every schema file in ``directory``.

        Broken files are logged, recorded in ``load_errors`` and skipped.

        Returns:
            Number of schemas loaded
        """
        directory = Path(directory)
        if not directory.is_dir():
            logger.debug("Schema directory %s does not exist", directory)
            return 0

        loaded = 0
        for path in sorted(directory.iterdir()):
            if path.suffix not in SCHEMA_SUFFIXES:
                continue
            try:
                schema = load_schema_file(path)
            except (OSError, ValueError, yaml.YAMLError) as e:
                logger.warning("Skipping filter schema %s: %s", path, e)
                self.load_errors.append(f"{path}: {e}")
                continue
            if schema.id in self._schemas:
                logger.info("Filter schema %s overrides %s", path, schema.id)
            self._schemas[schema.id] = schema
            loaded += 1
        return loaded

    def get(self, filter_id: str) -> Optional[FilterSchema]:
        return self._schemas.get(filter_id)

    def for_pass(self, pass_type: PassType) -> FilterSchema:
        return self._schemas[pass_record_class(pass_type).FILTER_ID]

    def all(self) -> List[FilterSchema]:
        return sorted(self._schemas.values(), key=lambda s: (s.order, s.id))

    def __contains__(self, filter_id: str) -> bool:
        return filter_id in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)
