"""
Propagation Strategies
======================

Carry the reference edit (frame 0) onto the remaining frames.

- BROADCAST: derive one diff specification from frame 0, then edit every
  remaining frame concurrently against the edited reference.
- CHAIN: edit frames in order, each one guided by the most recent
  successfully edited frame and a per-frame merge instruction.

A failed frame never aborts a batch: it is reported and collected, and
the remaining frames are still edited.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Callable, Dict, Union

from ..api.base import BaseImageEditor, ImageEditRequest
from ..core.exceptions import ExternalServiceError, ValidationError, VideoEditorError
from ..media.types import SourceFrame
from .analyzer import ConsistencyAnalyzer
from .prompts import (
    DEFAULT_PROMPT_CEILING,
    bound_instruction,
    compose_edit_prompt,
    continuity_fallback_prompt,
)
from .session import EditedFrame, EditSession, FrameFailure

logger = logging.getLogger(__name__)


class Strategy(Enum):
    """How the reference edit is propagated."""

    BROADCAST = "broadcast"
    CHAIN = "chain"

    @classmethod
    def parse(cls, value: Union[str, "Strategy"]) -> "Strategy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValidationError(
                f"Unknown strategy: {value}",
                field="strategy",
                value=value,
                constraint=", ".join(s.value for s in cls),
            )


FrameOutcome = Union[EditedFrame, FrameFailure]
Reporter = Callable[[FrameOutcome], None]


@dataclass
class BatchOutcome:
    """Result of one propagation batch."""

    edited: List[EditedFrame] = field(default_factory=list)
    failures: List[FrameFailure] = field(default_factory=list)
    dispatched: int = 0

    @property
    def failed_indices(self) -> List[int]:
        return sorted(f.index for f in self.failures)


def resolve_strategy(
    requested: Union[str, Strategy],
    analyzer: Optional[ConsistencyAnalyzer],
) -> Strategy:
    """
    Settle the strategy for a session.

    BROADCAST needs a diff specification; without an analyzer it degrades
    to CHAIN, which can fall back to a static continuity prompt.
    """
    strategy = Strategy.parse(requested)
    if strategy == Strategy.BROADCAST and analyzer is None:
        logger.warning("No consistency analyzer configured; falling back from broadcast to chain")
        return Strategy.CHAIN
    return strategy


# =============================================================================
# Base Strategy
# =============================================================================


class PropagationStrategy(ABC):
    """Common frame-editing plumbing for both strategies."""

    kind: Strategy

    def __init__(
        self,
        editor: BaseImageEditor,
        analyzer: Optional[ConsistencyAnalyzer] = None,
        output_format: str = "png",
        prompt_ceiling: int = DEFAULT_PROMPT_CEILING,
    ):
        self.editor = editor
        self.analyzer = analyzer
        self.output_format = output_format
        self.prompt_ceiling = prompt_ceiling

    @property
    def needs_analysis(self) -> bool:
        """Whether ``prepare`` must run before ``propagate``."""
        return False

    async def prepare(self, session: EditSession) -> None:
        """Per-batch setup ahead of the fan-out."""

    @abstractmethod
    async def propagate(
        self,
        session: EditSession,
        frames: List[SourceFrame],
        report: Optional[Reporter] = None,
    ) -> BatchOutcome:
        """
        Edit ``frames`` (never frame 0) against the session's reference.

        Args:
            session: Session holding the edited reference frame
            frames: Frames to edit
            report: Called once per frame as it settles

        Returns:
            BatchOutcome with every dispatched frame either edited or failed
        """

    async def edit_frame(self, frame: SourceFrame, prompt: str, images: List[str]) -> FrameOutcome:
        """Edit a single frame, converting any failure into a FrameFailure."""
        started = time.monotonic()
        try:
            result = await self.editor.edit(ImageEditRequest(
                prompt=prompt,
                images=images,
                output_format=self.output_format,
            ))
        except VideoEditorError as e:
            logger.error(f"Frame {frame.index + 1} edit failed: {e}")
            return FrameFailure(index=frame.index, error=e)
        except Exception as e:
            logger.exception(f"Unexpected error editing frame {frame.index + 1}")
            return FrameFailure(
                index=frame.index,
                error=ExternalServiceError(
                    f"Unexpected error editing frame {frame.index + 1}: {e}",
                    service=self.editor.provider_name,
                    recoverable=True,
                ),
            )

        logger.info(f"Frame {frame.index + 1} edited in {time.monotonic() - started:.2f}s")
        return EditedFrame(
            index=frame.index,
            original_image=frame.image,
            edited_image=result.image,
            prompt=prompt,
        )

    @staticmethod
    def _collect(outcome: BatchOutcome, item: FrameOutcome, report: Optional[Reporter]) -> None:
        if isinstance(item, EditedFrame):
            outcome.edited.append(item)
        else:
            outcome.failures.append(item)
        if report:
            report(item)

    @staticmethod
    def _require_reference(session: EditSession) -> EditedFrame:
        reference = session.reference
        if reference is None:
            raise ValidationError(
                "Reference frame must be edited before propagation",
                field="frames",
                constraint="frame 0 edited",
            )
        return reference


# =============================================================================
# Broadcast
# =============================================================================


class BroadcastDiff(PropagationStrategy):
    """
    One diff specification, applied to every frame in parallel.

    Completions are handled in the order they finish. ``max_concurrent``
    bounds in-flight edits; 0 means unbounded.
    """

    kind = Strategy.BROADCAST

    def __init__(self, *args, max_concurrent: int = 0, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_concurrent = max_concurrent

    @property
    def needs_analysis(self) -> bool:
        return True

    async def prepare(self, session: EditSession) -> None:
        """Derive a fresh diff specification from the edited reference."""
        if self.analyzer is None:
            raise ValidationError("Broadcast propagation requires a consistency analyzer", field="strategy")

        reference = self._require_reference(session)
        session.diff_spec = await self.analyzer.analyze_diff(
            session.prompt,
            reference.original_image,
            reference.edited_image,
        )

    async def propagate(
        self,
        session: EditSession,
        frames: List[SourceFrame],
        report: Optional[Reporter] = None,
    ) -> BatchOutcome:
        reference = self._require_reference(session)
        spec_text = session.diff_spec.text if session.diff_spec else ""
        prompt = compose_edit_prompt(session.prompt, spec_text, self.prompt_ceiling)
        semaphore = asyncio.Semaphore(self.max_concurrent) if self.max_concurrent > 0 else None

        async def run(frame: SourceFrame) -> FrameOutcome:
            images = [frame.image, reference.edited_image]
            if semaphore is None:
                return await self.edit_frame(frame, prompt, images)
            async with semaphore:
                return await self.edit_frame(frame, prompt, images)

        outcome = BatchOutcome(dispatched=len(frames))
        logger.info(f"Broadcasting edit to {len(frames)} frames")

        tasks = [asyncio.ensure_future(run(frame)) for frame in frames]
        try:
            for next_done in asyncio.as_completed(tasks):
                self._collect(outcome, await next_done, report)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        return outcome


# =============================================================================
# Sequential Chain
# =============================================================================


class SequentialChain(PropagationStrategy):
    """
    Frame-by-frame propagation guided by the previous edited frame.

    Sequential by construction: each edit depends on the one before it.
    """

    kind = Strategy.CHAIN

    async def propagate(
        self,
        session: EditSession,
        frames: List[SourceFrame],
        report: Optional[Reporter] = None,
    ) -> BatchOutcome:
        self._require_reference(session)
        outcome = BatchOutcome(dispatched=len(frames))
        edited_here: Dict[int, EditedFrame] = {}

        logger.info(f"Chaining edit through {len(frames)} frames")

        for frame in sorted(frames, key=lambda f: f.index):
            previous = self._previous_edited(session, edited_here, frame.index)
            prompt = await self._frame_prompt(session, frame, previous)

            item = await self.edit_frame(frame, prompt, [frame.image, previous.edited_image])
            if isinstance(item, EditedFrame):
                edited_here[item.index] = item
            self._collect(outcome, item, report)

        return outcome

    @staticmethod
    def _previous_edited(
        session: EditSession,
        edited_here: Dict[int, EditedFrame],
        index: int,
    ) -> EditedFrame:
        """Most recent successfully edited frame before ``index``."""
        candidates = {f.index: f for f in session.edited.ordered() if f.index < index}
        candidates.update({i: f for i, f in edited_here.items() if i < index})
        return candidates[max(candidates)]

    async def _frame_prompt(
        self,
        session: EditSession,
        frame: SourceFrame,
        previous: EditedFrame,
    ) -> str:
        fallback = continuity_fallback_prompt(
            session.prompt, frame.index + 1, session.frame_count, self.prompt_ceiling
        )
        if self.analyzer is None:
            return fallback

        try:
            merge = await self.analyzer.merge_instruction(
                session.prompt, frame.image, previous.edited_image
            )
        except VideoEditorError as e:
            logger.warning(f"Merge instruction for frame {frame.index + 1} failed, using continuity prompt: {e}")
            return fallback

        if not merge.text:
            return fallback
        return bound_instruction(merge.text, self.prompt_ceiling)


def build_strategy(
    strategy: Strategy,
    editor: BaseImageEditor,
    analyzer: Optional[ConsistencyAnalyzer] = None,
    output_format: str = "png",
    prompt_ceiling: int = DEFAULT_PROMPT_CEILING,
    max_concurrent: int = 0,
) -> PropagationStrategy:
    """Instantiate the implementation for ``strategy``."""
    if strategy == Strategy.BROADCAST:
        return BroadcastDiff(
            editor,
            analyzer,
            output_format=output_format,
            prompt_ceiling=prompt_ceiling,
            max_concurrent=max_concurrent,
        )
    return SequentialChain(
        editor,
        analyzer,
        output_format=output_format,
        prompt_ceiling=prompt_ceiling,
    )
