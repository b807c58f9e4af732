"""
Frame Pipeline
==============

Drives one restyling session through its phases:

    IDLE -> EXTRACTING_FRAMES -> EDITING_REFERENCE
         -> [ANALYZING_CONSISTENCY] -> EDITING_REMAINING
         -> REASSEMBLING -> COMPLETE

Failures before any frame is propagated end the session in FAILED.
Later failures keep every edited frame and leave the session in
EDITING_REMAINING with recovery options for the caller:

- some frames failed to edit: RETRY_BATCH or MANUAL_ASSEMBLY
- the encoder kept failing: MANUAL_REASSEMBLY
"""

import logging
import time
from pathlib import Path
from typing import Optional, List, Set, Union

from ..api.base import BaseImageEditor
from ..api.factory import get_editor
from ..api.google import GeminiClient
from ..core.config import Config, get_config
from ..core.exceptions import PartialBatchError, ValidationError, VideoEditorError
from ..core.security import redact_api_key, sanitize_prompt
from ..media.assembler import FrameAssembler
from ..media.extractor import FrameExtractor
from ..media.types import FrameRef, SamplingPolicy, SourceFrame
from .analyzer import ConsistencyAnalyzer
from .progress import ProgressChannel
from .prompts import reference_prompt, validate_prompt_length
from .session import (
    EditedFrame,
    EditedFrameSet,
    EditSession,
    FrameFailure,
    PipelineState,
    Progress,
    RecoveryOption,
)
from .strategies import (
    PropagationStrategy,
    Strategy,
    build_strategy,
    resolve_strategy,
)

logger = logging.getLogger(__name__)


class FramePipeline:
    """
    Orchestrates extraction, editing, propagation and reassembly.

    The pipeline holds collaborators and configuration only; all per-run
    state lives in the EditSession returned by ``start``.
    """

    def __init__(
        self,
        editor: BaseImageEditor,
        extractor: FrameExtractor,
        assembler: FrameAssembler,
        analyzer: Optional[ConsistencyAnalyzer] = None,
        config: Optional[Config] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            editor: Image-edit service adapter
            extractor: Frame extraction adapter
            assembler: Reassembly adapter
            analyzer: Consistency analyzer; without one, broadcast degrades to chain
            config: Settings (defaults if omitted)
        """
        self.editor = editor
        self.extractor = extractor
        self.assembler = assembler
        self.analyzer = analyzer
        self.config = config or Config()

    @classmethod
    def from_config(
        cls,
        config: Optional[Config] = None,
        editor: Optional[BaseImageEditor] = None,
        analyzer: Optional[ConsistencyAnalyzer] = None,
    ) -> "FramePipeline":
        """
        Build a pipeline with the default service adapters.

        The analyzer is only created when analysis is enabled and a Google
        API key is available.
        """
        config = config or get_config()

        if editor is None:
            editor = get_editor(
                config.edit.provider,
                endpoint=config.edit.endpoint,
                prompt_ceiling=config.edit.prompt_ceiling,
                max_image_mb=config.edit.max_image_mb,
                max_wait=float(config.edit.timeout),
                timeout=float(config.edit.timeout),
                max_retries=config.edit.max_retries,
            )

        if analyzer is None and config.analysis.enabled:
            client = GeminiClient(model=config.analysis.model, timeout=float(config.analysis.timeout))
            if client.api_key:
                analyzer = ConsistencyAnalyzer(client, spec_ceiling=config.analysis.spec_ceiling)
            else:
                logger.warning("Consistency analysis disabled: no Google API key")

        return cls(
            editor=editor,
            extractor=FrameExtractor(
                temp_root=config.storage.temp_root,
                frame_height=config.sampling.frame_height,
            ),
            assembler=FrameAssembler(
                temp_root=config.storage.temp_root,
                max_attempts=config.reassembly.max_attempts,
                retry_delay=config.reassembly.retry_delay,
                prevalidate_sample=config.reassembly.prevalidate_sample,
                preset=config.reassembly.preset,
            ),
            analyzer=analyzer,
            config=config,
        )

    async def close(self) -> None:
        """Close the editor and analyzer connections."""
        try:
            await self.editor.close()
        finally:
            if self.analyzer is not None:
                await self.analyzer.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # -------------------------------------------------------------------------
    # Session Lifecycle
    # -------------------------------------------------------------------------

    def start(
        self,
        video: Union[bytes, str, Path],
        prompt: str,
        policy: SamplingPolicy,
        strategy: Union[Strategy, str],
    ) -> EditSession:
        """
        Create a new session in IDLE.

        Args:
            video: Raw video bytes or a path
            prompt: The edit to apply
            policy: Frame sampling policy
            strategy: Propagation strategy; always chosen by the caller

        Raises:
            ValidationError: Empty or over-long prompt, unknown strategy
        """
        prompt = validate_prompt_length(sanitize_prompt(prompt), self.config.edit.prompt_ceiling)
        resolved = resolve_strategy(strategy, self.analyzer)

        session = EditSession(
            prompt=prompt,
            strategy=resolved,
            policy=policy,
            video=video,
            progress=ProgressChannel(),
        )
        logger.info(f"Session {session.session_id} created ({resolved.value}): {prompt[:100]}")
        return session

    async def run(self, session: EditSession) -> EditSession:
        """
        Drive a fresh session as far as it can go.

        Returns:
            The same session, in COMPLETE, FAILED, or EDITING_REMAINING with
            recovery options set
        """
        if session.state != PipelineState.IDLE:
            raise ValidationError(
                f"Session {session.session_id} already started ({session.state.value})",
                field="state",
            )

        started = time.monotonic()

        # Extraction
        self._transition(session, PipelineState.EXTRACTING_FRAMES, "Extracting frames")
        try:
            extraction = await self.extractor.extract(session.video, session.policy, session.session_id)
        except VideoEditorError as e:
            return self._fail(session, e)

        session.video = None
        session.source_frames = extraction.frames
        session.metadata = extraction.metadata
        session.edited = EditedFrameSet(len(extraction.frames))

        # Reference frame
        self._transition(session, PipelineState.EDITING_REFERENCE, "Editing reference frame")
        reference = await self._edit_reference(session)
        if isinstance(reference, FrameFailure):
            return self._fail(session, reference.error)
        self._on_frame(session, reference)

        await self._propagate(session, session.source_frames[1:])

        logger.info(
            f"Session {session.session_id} finished in {time.monotonic() - started:.2f}s "
            f"({session.state.value})"
        )
        return session

    async def edit_and_assemble(
        self,
        video: Union[bytes, str, Path],
        prompt: str,
        policy: SamplingPolicy,
        strategy: Union[Strategy, str],
    ) -> EditSession:
        """Create a session and run it."""
        return await self.run(self.start(video, prompt, policy, strategy))

    # -------------------------------------------------------------------------
    # Recovery
    # -------------------------------------------------------------------------

    async def retry_batch(self, session: EditSession, only_failed: bool = True) -> EditSession:
        """
        Re-run propagation after a partial batch failure.

        Args:
            session: Session offering RETRY_BATCH
            only_failed: Retry just the failed frames, or every frame but the reference

        Returns:
            The session; reassembled if the batch now completes
        """
        self._require_option(session, RecoveryOption.RETRY_BATCH)

        if only_failed:
            indices = set(session.edited.missing())
        else:
            indices = set(range(1, session.frame_count))
        frames = [f for f in session.source_frames if f.index in indices and f.index != 0]

        logger.info(f"Retrying {len(frames)} frames for session {session.session_id}")
        session.error = None
        session.recovery_options = set()

        await self._propagate(session, frames, retrying=True)
        return session

    async def reassemble(self, session: EditSession) -> EditSession:
        """
        Manually reassemble from the session's edited frames.

        Raises:
            ValidationError: If any frame is missing
        """
        self._require_option(session, RecoveryOption.MANUAL_REASSEMBLY, RecoveryOption.MANUAL_ASSEMBLY)

        missing = session.edited.missing()
        if missing:
            raise ValidationError(
                f"Cannot reassemble: frames {[i + 1 for i in missing]} have no edit",
                field="frames",
                constraint="gapless from 0",
            )

        return await self._reassemble(session, session.edited.frame_refs())

    async def assemble_available(self, session: EditSession, compact: bool = False) -> EditSession:
        """
        Assemble whatever frames were edited successfully.

        Missing frames are never filled in. With ``compact=True`` the
        surviving frames are renumbered into a contiguous sequence (the
        video gets shorter); without it a gap is an error.

        Raises:
            ValidationError: No edited frames, or gaps without ``compact``
        """
        self._require_option(session, RecoveryOption.MANUAL_ASSEMBLY, RecoveryOption.MANUAL_REASSEMBLY)

        frames = session.edited.ordered()
        if not frames:
            raise ValidationError("No edited frames to assemble", field="frames")

        missing = session.edited.missing()
        if missing and not compact:
            raise ValidationError(
                f"Frames {[i + 1 for i in missing]} are missing; pass compact=True to assemble without them",
                field="frames",
                constraint="gapless from 0",
            )

        if missing:
            logger.warning(f"Assembling {len(frames)} of {session.frame_count} frames (skipping {missing})")
        refs = [FrameRef(index=position, image=f.edited_image) for position, f in enumerate(frames)]
        return await self._reassemble(session, refs)

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    def _strategy(self, session: EditSession) -> PropagationStrategy:
        return build_strategy(
            session.strategy,
            self.editor,
            self.analyzer,
            output_format=self.config.edit.output_format,
            prompt_ceiling=self.config.edit.prompt_ceiling,
            max_concurrent=self.config.edit.max_concurrent_edits,
        )

    async def _edit_reference(self, session: EditSession) -> Union[EditedFrame, FrameFailure]:
        frame = session.source_frames[0]
        prompt = reference_prompt(session.prompt, session.frame_count, self.config.edit.prompt_ceiling)
        return await self._strategy(session).edit_frame(frame, prompt, [frame.image])

    async def _propagate(self, session: EditSession, frames: List[SourceFrame], retrying: bool = False) -> None:
        """
        Edit ``frames`` with the session's strategy, then reassemble if nothing is missing.

        On a retry the reference and earlier edits already exist, so a failed
        analysis reuses the previous diff specification, or parks the session
        with its recovery options when there is none.
        """
        if frames:
            strategy = self._strategy(session)

            if strategy.needs_analysis:
                self._transition(session, PipelineState.ANALYZING_CONSISTENCY, "Analyzing reference edit")
                try:
                    await strategy.prepare(session)
                except VideoEditorError as e:
                    if not retrying:
                        self._fail(session, e)
                        return
                    if session.diff_spec is None:
                        self._suspend(session, e, self._recovery_options(session))
                        return
                    logger.warning(
                        f"[{session.session_id}] Reusing previous diff specification: "
                        f"{redact_api_key(e.message)}"
                    )

            self._transition(session, PipelineState.EDITING_REMAINING, f"Editing {len(frames)} frames")
            outcome = await strategy.propagate(
                session,
                frames,
                report=lambda item: self._on_frame(session, item),
            )
            logger.info(
                f"Batch settled: {len(outcome.edited)}/{outcome.dispatched} edited, "
                f"{len(outcome.failures)} failed"
            )

        missing = session.edited.missing()
        if missing:
            error = PartialBatchError(
                f"{len(missing)} of {session.frame_count} frames failed to edit",
                failed_indices=missing,
                succeeded=len(session.edited),
            )
            self._suspend(session, error, self._recovery_options(session))
            return

        await self._reassemble(session, session.edited.frame_refs())

    async def _reassemble(self, session: EditSession, frames: List[FrameRef]) -> EditSession:
        session.error = None
        session.recovery_options = set()
        self._transition(session, PipelineState.REASSEMBLING, f"Reassembling {len(frames)} frames")

        try:
            result = await self.assembler.reassemble(
                frames,
                fps=self.config.reassembly.fps,
                output_format=self.config.reassembly.output_format,
                session_id=session.session_id,
            )
        except ValidationError as e:
            return self._suspend(session, e, self._recovery_options(session))

        session.assembly = result
        if result.succeeded:
            self._transition(session, PipelineState.COMPLETE, "Video ready")
            session.progress.close()
            return session

        return self._suspend(
            session,
            result.error or VideoEditorError("Reassembly failed", recoverable=True),
            self._recovery_options(session),
        )

    # -------------------------------------------------------------------------
    # State and Progress
    # -------------------------------------------------------------------------

    def _transition(self, session: EditSession, state: PipelineState, message: str) -> None:
        session.state = state
        logger.info(f"[{session.session_id}] {state.value}: {message}")
        self._publish(session, message)

    def _publish(
        self,
        session: EditSession,
        message: str,
        active_frame_index: Optional[int] = None,
        is_error: bool = False,
    ) -> None:
        total = session.frame_count or session.policy.max_frames
        session.progress.publish(Progress(
            completed=len(session.edited),
            total=total,
            state=session.state,
            message=message,
            active_frame_index=active_frame_index,
            is_error=is_error,
        ))

    def _on_frame(self, session: EditSession, item: Union[EditedFrame, FrameFailure]) -> None:
        """Record a settled frame and publish progress for it."""
        if isinstance(item, EditedFrame):
            session.edited.record(item)
            session.failures.pop(item.index, None)
            self._publish(
                session,
                f"Frame {item.index + 1}/{session.frame_count} edited",
                active_frame_index=item.index,
            )
        else:
            session.failures[item.index] = item
            self._publish(
                session,
                f"Frame {item.index + 1} failed: {redact_api_key(item.error.message)}",
                active_frame_index=item.index,
                is_error=True,
            )

    def _fail(self, session: EditSession, error: VideoEditorError) -> EditSession:
        session.state = PipelineState.FAILED
        session.error = error
        session.recovery_options = set()
        message = redact_api_key(error.message)
        logger.error(f"[{session.session_id}] failed: {message}")
        self._publish(session, message, is_error=True)
        session.progress.close()
        return session

    def _suspend(self, session: EditSession, error: VideoEditorError, options: Set[RecoveryOption]) -> EditSession:
        """Park the session in EDITING_REMAINING with recovery options."""
        session.state = PipelineState.EDITING_REMAINING
        session.error = error
        session.recovery_options = set(options)
        message = redact_api_key(error.message)
        logger.warning(
            f"[{session.session_id}] {message}; options: "
            f"{', '.join(sorted(o.value for o in options))}"
        )
        self._publish(session, message, is_error=True)
        return session

    @staticmethod
    def _recovery_options(session: EditSession) -> Set[RecoveryOption]:
        """Options that still lead somewhere given which frames have edits."""
        if session.edited.missing():
            return {RecoveryOption.RETRY_BATCH, RecoveryOption.MANUAL_ASSEMBLY}
        return {RecoveryOption.MANUAL_REASSEMBLY}

    @staticmethod
    def _require_option(session: EditSession, *options: RecoveryOption) -> None:
        if not session.recovery_options.intersection(options):
            raise ValidationError(
                f"Session {session.session_id} does not offer "
                f"{' or '.join(o.value for o in options)} (state {session.state.value})",
                field="recovery_options",
            )
