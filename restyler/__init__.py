"""
AI Video Restyler
=================

Apply a natural-language edit to a whole video with a generative image
editor, while keeping the edited frames visually consistent.

Features:
- Frame sampling and reassembly with ffmpeg
- Reference-frame editing through fal.ai (Gemini image edit)
- Two propagation strategies: broadcast diff specification or sequential chaining
- Consistency analysis with Google Gemini
- Partial-failure recovery: batch retry, manual assembly, manual reassembly
- Optional temporal smoothing

Quick Start:
    from restyler import FramePipeline, SamplingPolicy, Strategy

    pipeline = FramePipeline.from_config()
    session = await pipeline.edit_and_assemble(
        video="clip.mp4",
        prompt="make it look cyberpunk",
        policy=SamplingPolicy(interval_frames=30, max_frames=10),
        strategy=Strategy.BROADCAST,
    )
    if session.output_video:
        ...
"""

__version__ = "0.1.0"

# Core Utilities
from .core.config import Config, get_config, set_config
from .core.exceptions import (
    VideoEditorError,
    ValidationError,
    ConfigurationError,
    ExternalServiceError,
    ReferenceExpiredError,
    PartialBatchError,
)

# Media
from .media import (
    AssemblyResult,
    FrameAssembler,
    FrameExtractor,
    SamplingPolicy,
    smooth_video,
)

# Pipeline
from .workflow import (
    ConsistencyAnalyzer,
    EditSession,
    FramePipeline,
    PipelineState,
    Progress,
    RecoveryOption,
    Strategy,
)

__all__ = [
    "__version__",

    # Core
    "Config",
    "get_config",
    "set_config",

    # Exceptions
    "VideoEditorError",
    "ValidationError",
    "ConfigurationError",
    "ExternalServiceError",
    "ReferenceExpiredError",
    "PartialBatchError",

    # Media
    "AssemblyResult",
    "FrameAssembler",
    "FrameExtractor",
    "SamplingPolicy",
    "smooth_video",

    # Pipeline
    "ConsistencyAnalyzer",
    "EditSession",
    "FramePipeline",
    "PipelineState",
    "Progress",
    "RecoveryOption",
    "Strategy",
]
