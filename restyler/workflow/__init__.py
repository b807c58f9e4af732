"""
Workflow Orchestration
======================

The frame-consistency pipeline.

Components:
- FramePipeline: Drives a session from extraction to reassembly
- BroadcastDiff / SequentialChain: Propagation strategies
- ConsistencyAnalyzer: Diff specifications and merge instructions
- ProgressChannel: Non-blocking per-session progress fan-out
"""

from .analyzer import ConsistencyAnalyzer
from .orchestrator import FramePipeline
from .progress import ProgressChannel
from .prompts import (
    bound_instruction,
    compose_edit_prompt,
    continuity_fallback_prompt,
    reference_prompt,
)
from .session import (
    ConsistencySpec,
    EditedFrame,
    EditedFrameSet,
    EditSession,
    FrameFailure,
    PipelineState,
    Progress,
    RecoveryOption,
    SpecKind,
)
from .strategies import (
    BatchOutcome,
    BroadcastDiff,
    SequentialChain,
    Strategy,
    resolve_strategy,
)

__all__ = [
    "ConsistencyAnalyzer",
    "FramePipeline",
    "ProgressChannel",
    "bound_instruction",
    "compose_edit_prompt",
    "continuity_fallback_prompt",
    "reference_prompt",
    "ConsistencySpec",
    "EditedFrame",
    "EditedFrameSet",
    "EditSession",
    "FrameFailure",
    "PipelineState",
    "Progress",
    "RecoveryOption",
    "SpecKind",
    "BatchOutcome",
    "BroadcastDiff",
    "SequentialChain",
    "Strategy",
    "resolve_strategy",
]
