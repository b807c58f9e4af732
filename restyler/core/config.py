"""
Configuration System
====================

Centralized, validated configuration management with typed dataclasses.
"""

import os
import re
import logging
import tempfile
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Dict, Any, Union
import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass
class SamplingConfig:
    """Frame sampling defaults."""

    interval_frames: int = 30
    max_frames: int = 10
    frame_height: int = 720

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Validate configuration values."""
        if self.interval_frames < 1:
            raise ConfigurationError(
                f"interval_frames must be >= 1, got {self.interval_frames}",
                config_key="sampling.interval_frames",
            )
        if self.max_frames < 1:
            raise ConfigurationError(
                f"max_frames must be >= 1, got {self.max_frames}",
                config_key="sampling.max_frames",
            )
        if not 64 <= self.frame_height <= 4320:
            raise ConfigurationError(
                f"frame_height must be 64-4320, got {self.frame_height}",
                config_key="sampling.frame_height",
            )


@dataclass
class EditConfig:
    """Image-edit service settings."""

    provider: str = "fal"
    endpoint: str = "fal-ai/gemini-25-flash-image/edit"
    output_format: str = "png"
    prompt_ceiling: int = 2000
    max_concurrent_edits: int = 8
    max_retries: int = 2
    timeout: int = 300
    max_image_mb: int = 20

    VALID_FORMATS = {"png", "jpeg"}

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Validate configuration values."""
        if self.output_format not in self.VALID_FORMATS:
            raise ConfigurationError(
                f"Invalid edit output format: {self.output_format}",
                config_key="edit.output_format",
            )
        if self.prompt_ceiling < 1:
            raise ConfigurationError(
                f"prompt_ceiling must be positive, got {self.prompt_ceiling}",
                config_key="edit.prompt_ceiling",
            )
        if self.max_concurrent_edits < 0:
            raise ConfigurationError(
                f"max_concurrent_edits must be >= 0, got {self.max_concurrent_edits}",
                config_key="edit.max_concurrent_edits",
            )
        if not 0 <= self.max_retries <= 10:
            raise ConfigurationError(
                f"max_retries must be 0-10, got {self.max_retries}",
                config_key="edit.max_retries",
            )


@dataclass
class AnalysisConfig:
    """Consistency analyzer settings."""

    enabled: bool = True
    model: str = "gemini-2.5-pro"
    spec_ceiling: int = 5000
    timeout: int = 120

    def __post_init__(self):
        if self.spec_ceiling < 4:
            raise ConfigurationError(
                f"spec_ceiling too small: {self.spec_ceiling}",
                config_key="analysis.spec_ceiling",
            )


@dataclass
class ReassemblyConfig:
    """Encoder and retry settings."""

    fps: int = 30
    output_format: str = "mp4"
    max_attempts: int = 2
    retry_delay: float = 2.0
    prevalidate_sample: int = 3
    preset: str = "fast"

    VALID_FORMATS = {"mp4", "webm"}

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Validate configuration values."""
        if self.output_format not in self.VALID_FORMATS:
            raise ConfigurationError(
                f"Invalid output format: {self.output_format}",
                config_key="reassembly.output_format",
            )
        if not 1 <= self.fps <= 240:
            raise ConfigurationError(
                f"fps must be 1-240, got {self.fps}",
                config_key="reassembly.fps",
            )
        if not 1 <= self.max_attempts <= 10:
            raise ConfigurationError(
                f"max_attempts must be 1-10, got {self.max_attempts}",
                config_key="reassembly.max_attempts",
            )
        if self.retry_delay < 0:
            raise ConfigurationError(
                f"retry_delay must be >= 0, got {self.retry_delay}",
                config_key="reassembly.retry_delay",
            )


@dataclass
class PipelineConfig:
    """Orchestration settings."""

    strategy: str = "broadcast"

    VALID_STRATEGIES = {"broadcast", "chain"}

    def __post_init__(self):
        if self.strategy not in self.VALID_STRATEGIES:
            raise ConfigurationError(
                f"Invalid strategy: {self.strategy}",
                config_key="pipeline.strategy",
            )


@dataclass
class StorageConfig:
    """Temporary and output storage settings."""

    temp_root: str = field(default_factory=tempfile.gettempdir)
    output_path: str = "./output"


# =============================================================================
# Main Configuration Class
# =============================================================================


@dataclass
class Config:
    """
    Main configuration container with validation and loading.

    Provides a unified interface to all configuration settings with:
    - Type-safe access to configuration values
    - Validation on load and modification
    - Environment variable interpolation
    - Sensible defaults for all values
    """

    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    edit: EditConfig = field(default_factory=EditConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    reassembly: ReassemblyConfig = field(default_factory=ReassemblyConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    # Raw config for provider-specific extensions
    _raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    SECTIONS = ("sampling", "edit", "analysis", "reassembly", "pipeline", "storage")

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "Config":
        """
        Load configuration from file with environment variable interpolation.

        Args:
            path: Path to a YAML config file (searched before the defaults)

        Returns:
            Validated Config instance
        """
        search_paths = [
            Path("./config/defaults.yaml"),
            Path("./defaults.yaml"),
            Path.home() / ".restyler" / "config.yaml",
        ]

        if path:
            if not Path(path).exists():
                raise ConfigurationError(f"Config file not found: {path}", config_key=str(path))
            search_paths.insert(0, Path(path))

        config_data = {}

        for search_path in search_paths:
            if search_path.exists():
                logger.info(f"Loading config from: {search_path}")
                try:
                    with open(search_path, "r") as f:
                        config_data = yaml.safe_load(f) or {}
                    break
                except yaml.YAMLError as e:
                    raise ConfigurationError(
                        f"Invalid YAML in config file: {e}",
                        config_key=str(search_path),
                    )
        else:
            logger.info("No config file found, using defaults")

        config_data = cls._interpolate_env_vars(config_data)

        return cls.from_dict(config_data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary with validation."""
        try:
            return cls(
                sampling=SamplingConfig(**data.get("sampling", {})),
                edit=EditConfig(**data.get("edit", {})),
                analysis=AnalysisConfig(**data.get("analysis", {})),
                reassembly=ReassemblyConfig(**data.get("reassembly", {})),
                pipeline=PipelineConfig(**data.get("pipeline", {})),
                storage=StorageConfig(**data.get("storage", {})),
                _raw=data,
            )
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @staticmethod
    def _interpolate_env_vars(data: Any) -> Any:
        """Recursively interpolate ${VAR} patterns with environment variables."""
        if isinstance(data, str):
            # Handle ${VAR} and ${VAR:-default} patterns
            pattern = r"\$\{([^}:]+)(?::-([^}]*))?\}"

            def replace(match):
                var_name = match.group(1)
                default = match.group(2) or ""
                return os.environ.get(var_name, default)

            return re.sub(pattern, replace, data)
        elif isinstance(data, dict):
            return {k: Config._interpolate_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [Config._interpolate_env_vars(item) for item in data]
        return data

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {section: asdict(getattr(self, section)) for section in self.SECTIONS}


# =============================================================================
# Convenience Functions
# =============================================================================


_global_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance (lazily loaded)."""
    global _global_config
    if _global_config is None:
        _global_config = Config.load()
    return _global_config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _global_config
    _global_config = config


def reset_config() -> None:
    """Reset global configuration to None (forces reload on next access)."""
    global _global_config
    _global_config = None
