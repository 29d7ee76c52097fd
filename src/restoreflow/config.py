"""Settings and configuration file management for restoreflow.

Settings are read from, in increasing precedence:
1. Built-in defaults
2. User config: ~/.restoreflow/config.yaml
3. Project config: .restoreflow.yaml (in the current directory)
4. Environment: RESTOREFLOW_WORKER, RESTOREFLOW_DEPS_DIR
5. Command-line arguments (applied by the caller)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from restoreflow.exceptions import ConfigurationError
from restoreflow.utils.logging import LogConfig

logger = logging.getLogger(__name__)

APP_DIR = Path.home() / ".restoreflow"

ENV_WORKER = "RESTOREFLOW_WORKER"
ENV_DEPS_DIR = "RESTOREFLOW_DEPS_DIR"

DEFAULT_CONFIG_TEMPLATE = """\
# restoreflow configuration
# Location: ~/.restoreflow/config.yaml or .restoreflow.yaml (project-local)
#
# Project-local values override the user file; command-line options
# override both.

# Where the downloaded tool bundle (VapourSynth, FFmpeg) is installed
deps_dir: ~/.restoreflow/deps

# Explicit worker executable; takes precedence over everything else
# worker_path: /opt/restoreflow/bin/restoreflow-worker

# Extra places to look for the worker, checked in order after the
# bundled location. Useful for development builds.
worker_search_paths: []
#  - ~/src/restoreflow-worker/target/release/restoreflow-worker

# Directory with additional filter schema files (*.json, *.yaml)
filter_dir: ~/.restoreflow/filters

# Preview behaviour
preview_debounce_ms: 300
default_frame_rate: 29.97
thumbnail_width: 160

# Milliseconds between the graceful and the forced stop of a worker
cancel_grace_ms: 500

# Network timeout for dependency downloads, in seconds
download_timeout: 30

log:
  log_level: INFO
  log_format: text
  # log_file: ~/.restoreflow/logs/restoreflow.log
"""


def _path(value: Any) -> Optional[Path]:
    if value in (None, ""):
        return None
    return Path(str(value)).expanduser()


@dataclass
class Settings:
    """Application settings.

    Attributes:
        deps_dir: Install location of the dependency bundle
        worker_path: Explicit worker executable, checked first
        worker_search_paths: Additional worker candidates, checked in order
        filter_dir: Directory of user filter schemas
        temp_dir: Parent directory for temporary job and preview files
        preview_debounce_ms: Quiet period before a preview request is issued
        cancel_grace_ms: Wait between graceful and forced worker stop
        default_frame_rate: Frame rate assumed before the source is probed
        thumbnail_width: Width of scrubber thumbnails in pixels
        download_timeout: Socket timeout for downloads in seconds
        log: Logging configuration
    """

    deps_dir: Path = field(default_factory=lambda: APP_DIR / "deps")
    worker_path: Optional[Path] = None
    worker_search_paths: List[Path] = field(default_factory=list)
    filter_dir: Optional[Path] = field(default_factory=lambda: APP_DIR / "filters")
    temp_dir: Optional[Path] = None
    preview_debounce_ms: int = 300
    cancel_grace_ms: int = 500
    default_frame_rate: float = 29.97
    thumbnail_width: int = 160
    download_timeout: float = 30.0
    log: LogConfig = field(default_factory=LogConfig)

    def __post_init__(self) -> None:
        self.deps_dir = Path(self.deps_dir).expanduser()
        if self.worker_path is not None:
            self.worker_path = Path(self.worker_path).expanduser()
        self.worker_search_paths = [Path(p).expanduser() for p in self.worker_search_paths]

        if self.preview_debounce_ms < 0:
            raise ConfigurationError(
                "preview_debounce_ms must not be negative",
                config_key="preview_debounce_ms",
                config_value=self.preview_debounce_ms,
            )
        if self.cancel_grace_ms < 0:
            raise ConfigurationError(
                "cancel_grace_ms must not be negative",
                config_key="cancel_grace_ms",
                config_value=self.cancel_grace_ms,
            )
        if self.default_frame_rate <= 0:
            raise ConfigurationError(
                "default_frame_rate must be positive",
                config_key="default_frame_rate",
                config_value=self.default_frame_rate,
            )
        if self.thumbnail_width <= 0:
            raise ConfigurationError(
                "thumbnail_width must be positive",
                config_key="thumbnail_width",
                config_value=self.thumbnail_width,
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        defaults = cls()
        try:
            log_data = data.get("log") or {}
            return cls(
                deps_dir=_path(data.get("deps_dir")) or defaults.deps_dir,
                worker_path=_path(data.get("worker_path")),
                worker_search_paths=[Path(str(p)) for p in data.get("worker_search_paths") or []],
                filter_dir=_path(data.get("filter_dir", defaults.filter_dir)),
                temp_dir=_path(data.get("temp_dir")),
                preview_debounce_ms=int(data.get("preview_debounce_ms", defaults.preview_debounce_ms)),
                cancel_grace_ms=int(data.get("cancel_grace_ms", defaults.cancel_grace_ms)),
                default_frame_rate=float(data.get("default_frame_rate", defaults.default_frame_rate)),
                thumbnail_width=int(data.get("thumbnail_width", defaults.thumbnail_width)),
                download_timeout=float(data.get("download_timeout", defaults.download_timeout)),
                log=LogConfig.from_dict(log_data),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid settings: {e}", cause=e) from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deps_dir": str(self.deps_dir),
            "worker_path": str(self.worker_path) if self.worker_path else None,
            "worker_search_paths": [str(p) for p in self.worker_search_paths],
            "filter_dir": str(self.filter_dir) if self.filter_dir else None,
            "temp_dir": str(self.temp_dir) if self.temp_dir else None,
            "preview_debounce_ms": self.preview_debounce_ms,
            "cancel_grace_ms": self.cancel_grace_ms,
            "default_frame_rate": self.default_frame_rate,
            "thumbnail_width": self.thumbnail_width,
            "download_timeout": self.download_timeout,
            "log": self.log.to_dict(),
        }


@dataclass
class ValidationError:
    """A problem found while reading a config file."""
    path: str
    message: str
    value: Any = None


@dataclass
class ConfigFileManager:
    """Loads, merges and writes YAML configuration files.

    Attributes:
        user_config_path: Path to the user-level config file
        project_config_path: Path to the project-local config file
        loaded_config: The merged configuration mapping
    """

    user_config_path: Path = field(default_factory=lambda: APP_DIR / "config.yaml")
    project_config_path: Path = field(default_factory=lambda: Path.cwd() / ".restoreflow.yaml")
    loaded_config: Dict[str, Any] = field(default_factory=dict)
    _validation_errors: List[ValidationError] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.user_config_path = Path(self.user_config_path)
        self.project_config_path = Path(self.project_config_path)

    def load(self) -> Dict[str, Any]:
        """Read and merge both config files.

        Unreadable or malformed files are recorded as validation errors
        and otherwise ignored.

        Returns:
            Merged configuration mapping
        """
        self._validation_errors = []
        config: Dict[str, Any] = Settings().to_dict()

        for path in (self.user_config_path, self.project_config_path):
            if path.exists():
                overlay = self._load_yaml_file(path)
                if overlay:
                    config = self._deep_merge(config, overlay)

        worker = os.environ.get(ENV_WORKER)
        if worker:
            config["worker_path"] = worker
        deps_dir = os.environ.get(ENV_DEPS_DIR)
        if deps_dir:
            config["deps_dir"] = deps_dir

        self.loaded_config = config
        return config

    def load_settings(self) -> Settings:
        """Load files and build Settings from the merged mapping.

        Raises:
            ConfigurationError: If a merged value is invalid
        """
        return Settings.from_dict(self.load())

    def _load_yaml_file(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            self._validation_errors.append(
                ValidationError(path=str(path), message=f"YAML parsing error: {e}")
            )
            logger.warning("Ignoring config file %s: %s", path, e)
            return None
        except OSError as e:
            self._validation_errors.append(
                ValidationError(path=str(path), message=f"Failed to read file: {e}")
            )
            logger.warning("Ignoring config file %s: %s", path, e)
            return None
        if not isinstance(data, dict):
            self._validation_errors.append(
                ValidationError(path=str(path), message="Top level must be a mapping", value=data)
            )
            return None
        return data

    def _deep_merge(self, base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
        result = base.copy()
        for key, value in overlay.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def get_validation_errors(self) -> List[ValidationError]:
        return self._validation_errors

    def get(self, key_path: str, default: Any = None) -> Any:
        """Look up a value by dot-separated path, e.g. "log.log_level"."""
        value: Any = self.loaded_config
        for key in key_path.split("."):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def init_config(self, target: str = "user", overwrite: bool = False) -> Path:
        """Write the commented default template.

        Args:
            target: "user" or "project"
            overwrite: Replace an existing file

        Returns:
            Path of the written file

        Raises:
            ConfigurationError: If the file exists and overwrite is False
        """
        config_path = self.user_config_path if target == "user" else self.project_config_path
        if config_path.exists() and not overwrite:
            raise ConfigurationError(f"{config_path} already exists", config_key="target")
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(DEFAULT_CONFIG_TEMPLATE)
        return config_path

    def show_config(self) -> str:
        return yaml.safe_dump(self.loaded_config, default_flow_style=False, sort_keys=False)


def load_settings(config_path: Optional[Union[str, Path]] = None) -> Settings:
    """Convenience loader; ``config_path`` replaces the user config file."""
    manager = ConfigFileManager()
    if config_path is not None:
        manager.user_config_path = Path(config_path).expanduser()
    return manager.load_settings()
