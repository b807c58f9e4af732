"""
Core Module
===========

Core utilities, configuration, and exceptions for the video restyler.
"""

from .config import (
    Config,
    SamplingConfig,
    EditConfig,
    AnalysisConfig,
    ReassemblyConfig,
    PipelineConfig,
    StorageConfig,
    get_config,
    set_config,
    reset_config,
)
from .exceptions import (
    VideoEditorError,
    ValidationError,
    ConfigurationError,
    ExternalServiceError,
    RateLimitError,
    OperationTimeoutError,
    ExtractionError,
    EncodeError,
    ReferenceExpiredError,
    PartialBatchError,
)
from .security import sanitize_prompt, redact_api_key, session_dir

__all__ = [
    # Configuration
    "Config",
    "SamplingConfig",
    "EditConfig",
    "AnalysisConfig",
    "ReassemblyConfig",
    "PipelineConfig",
    "StorageConfig",
    "get_config",
    "set_config",
    "reset_config",
    # Exceptions
    "VideoEditorError",
    "ValidationError",
    "ConfigurationError",
    "ExternalServiceError",
    "RateLimitError",
    "OperationTimeoutError",
    "ExtractionError",
    "EncodeError",
    "ReferenceExpiredError",
    "PartialBatchError",
    # Security
    "sanitize_prompt",
    "redact_api_key",
    "session_dir",
]
