"""
Media Types
===========

Data structures exchanged with the decoder and encoder adapters.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any

from ..core.exceptions import ValidationError, VideoEditorError


@dataclass(frozen=True)
class SamplingPolicy:
    """Which frames to pull out of the source video."""

    interval_frames: int = 30
    max_frames: int = 10

    def __post_init__(self):
        if self.interval_frames < 1:
            raise ValidationError(
                f"interval_frames must be >= 1, got {self.interval_frames}",
                field="interval_frames",
                constraint=">= 1",
            )
        if self.max_frames < 1:
            raise ValidationError(
                f"max_frames must be >= 1, got {self.max_frames}",
                field="max_frames",
                constraint=">= 1",
            )


@dataclass(frozen=True)
class VideoMetadata:
    """Properties of the probed source video."""

    duration_seconds: float
    fps: float
    width: int
    height: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duration_seconds": self.duration_seconds,
            "fps": self.fps,
            "width": self.width,
            "height": self.height,
        }


@dataclass(frozen=True)
class SourceFrame:
    """One sampled frame of the source video. Index 0 is the reference frame."""

    index: int
    timestamp: float
    image: str


@dataclass
class ExtractionResult:
    """Ordered frames plus the video's metadata."""

    frames: List[SourceFrame]
    metadata: VideoMetadata


@dataclass(frozen=True)
class FrameRef:
    """A frame position and the image to encode there."""

    index: int
    image: str


class AssemblyStatus(Enum):
    """Outcome of a reassembly run."""

    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class AssemblyResult:
    """Result of encoding a frame sequence into a video."""

    status: AssemblyStatus
    video_bytes: Optional[bytes] = None
    size: int = 0
    frame_count: int = 0
    attempts: int = 0
    fps: int = 30
    output_format: str = "mp4"
    error: Optional[VideoEditorError] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == AssemblyStatus.COMPLETED and self.video_bytes is not None

    @property
    def recoverable(self) -> bool:
        """Failed runs keep their inputs valid; the caller may retry manually."""
        return not self.succeeded and (self.error is None or self.error.recoverable)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization (without the video bytes)."""
        return {
            "status": self.status.value,
            "size": self.size,
            "frame_count": self.frame_count,
            "attempts": self.attempts,
            "fps": self.fps,
            "output_format": self.output_format,
            "error": self.error.to_dict() if self.error else None,
            "warnings": self.warnings,
        }
