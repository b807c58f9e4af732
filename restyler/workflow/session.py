"""
Edit Session
============

State carried by one restyling session: the sampled frames, the edits
made so far, the pipeline phase, and any recovery affordances.

A session is a plain value owned by the caller. Nothing in the package
keeps a "current session", so any number of them can run side by side.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any, Set, TYPE_CHECKING

from ..core.exceptions import ValidationError, VideoEditorError
from ..media.types import (
    AssemblyResult,
    FrameRef,
    SamplingPolicy,
    SourceFrame,
    VideoMetadata,
)

if TYPE_CHECKING:
    from .progress import ProgressChannel
    from .strategies import Strategy


class PipelineState(Enum):
    """Phases of the restyling pipeline."""

    IDLE = "idle"
    EXTRACTING_FRAMES = "extracting_frames"
    EDITING_REFERENCE = "editing_reference"
    ANALYZING_CONSISTENCY = "analyzing_consistency"
    EDITING_REMAINING = "editing_remaining"
    REASSEMBLING = "reassembling"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.COMPLETE, PipelineState.FAILED)


class RecoveryOption(Enum):
    """Actions a caller may take after a non-fatal failure."""

    RETRY_BATCH = "retry_batch"
    MANUAL_ASSEMBLY = "manual_assembly"
    MANUAL_REASSEMBLY = "manual_reassembly"


class SpecKind(Enum):
    """How a consistency specification was derived."""

    DIFF = "diff"
    MERGE = "merge"


@dataclass(frozen=True)
class ConsistencySpec:
    """Text describing how to carry the reference edit onto other frames."""

    kind: SpecKind
    text: str


@dataclass
class EditedFrame:
    """A frame after editing."""

    index: int
    original_image: str
    edited_image: str
    prompt: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "original_image": self.original_image if not self.original_image.startswith("data:") else "<inline>",
            "edited_image": self.edited_image,
            "prompt": self.prompt,
        }


@dataclass
class FrameFailure:
    """A frame whose edit failed."""

    index: int
    error: VideoEditorError

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, **self.error.to_dict()}


class EditedFrameSet:
    """
    Edited frames of one session, at most one per index.

    Recording an index that already has a frame replaces it, which is what
    a retried edit wants.
    """

    def __init__(self, frame_count: int):
        if frame_count < 0:
            raise ValidationError("frame_count must be >= 0", field="frame_count")
        self.frame_count = frame_count
        self._frames: Dict[int, EditedFrame] = {}

    def record(self, frame: EditedFrame) -> None:
        if not 0 <= frame.index < self.frame_count:
            raise ValidationError(
                f"Frame index {frame.index} out of range",
                field="index",
                value=frame.index,
                constraint=f"0..{self.frame_count - 1}",
            )
        self._frames[frame.index] = frame

    def get(self, index: int) -> Optional[EditedFrame]:
        return self._frames.get(index)

    def ordered(self) -> List[EditedFrame]:
        return [self._frames[i] for i in sorted(self._frames)]

    def missing(self) -> List[int]:
        return [i for i in range(self.frame_count) if i not in self._frames]

    @property
    def is_complete(self) -> bool:
        return self.frame_count > 0 and len(self._frames) == self.frame_count

    def frame_refs(self) -> List[FrameRef]:
        """Edited images in index order, for the assembler."""
        return [FrameRef(index=f.index, image=f.edited_image) for f in self.ordered()]

    def __contains__(self, index: int) -> bool:
        return index in self._frames

    def __len__(self) -> int:
        return len(self._frames)


@dataclass
class Progress:
    """One progress notification."""

    completed: int
    total: int
    state: PipelineState
    message: str = ""
    active_frame_index: Optional[int] = None
    is_error: bool = False

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 0.0


@dataclass
class EditSession:
    """Everything one restyling run knows about itself."""

    prompt: str
    strategy: "Strategy"
    policy: SamplingPolicy
    video: Any
    progress: "ProgressChannel"
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: PipelineState = PipelineState.IDLE
    metadata: Optional[VideoMetadata] = None
    source_frames: List[SourceFrame] = field(default_factory=list)
    edited: EditedFrameSet = field(default_factory=lambda: EditedFrameSet(0))
    failures: Dict[int, FrameFailure] = field(default_factory=dict)
    diff_spec: Optional[ConsistencySpec] = None
    error: Optional[VideoEditorError] = None
    recovery_options: Set[RecoveryOption] = field(default_factory=set)
    assembly: Optional[AssemblyResult] = None

    @property
    def frame_count(self) -> int:
        return len(self.source_frames)

    @property
    def reference(self) -> Optional[EditedFrame]:
        return self.edited.get(0)

    @property
    def output_video(self) -> Optional[bytes]:
        return self.assembly.video_bytes if self.assembly and self.assembly.succeeded else None

    def to_dict(self) -> Dict[str, Any]:
        """Serializable summary, used for the recovery manifest."""
        return {
            "session_id": self.session_id,
            "prompt": self.prompt,
            "strategy": self.strategy.value,
            "state": self.state.value,
            "frame_count": self.frame_count,
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "edited_frames": [f.to_dict() for f in self.edited.ordered()],
            "failures": [f.to_dict() for f in sorted(self.failures.values(), key=lambda f: f.index)],
            "error": self.error.to_dict() if self.error else None,
            "recovery_options": sorted(o.value for o in self.recovery_options),
            "assembly": self.assembly.to_dict() if self.assembly else None,
        }
