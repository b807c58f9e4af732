"""
Media Layer
===========

ffmpeg-backed frame extraction, reassembly and smoothing.
"""

from .assembler import FrameAssembler
from .extractor import FrameExtractor
from .smoothing import SMOOTHING_FILTERS, smooth_video
from .types import (
    AssemblyResult,
    AssemblyStatus,
    ExtractionResult,
    FrameRef,
    SamplingPolicy,
    SourceFrame,
    VideoMetadata,
)

__all__ = [
    "FrameAssembler",
    "FrameExtractor",
    "SMOOTHING_FILTERS",
    "smooth_video",
    "AssemblyResult",
    "AssemblyStatus",
    "ExtractionResult",
    "FrameRef",
    "SamplingPolicy",
    "SourceFrame",
    "VideoMetadata",
]
