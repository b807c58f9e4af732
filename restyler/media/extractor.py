"""
Frame Extractor
===============

Samples frames from a source video with ffmpeg and returns them as
timestamped, index-ordered image references.
"""

import asyncio
import logging
import math
import tempfile
import time
import uuid
from fractions import Fraction
from pathlib import Path
from typing import Optional, List, Dict, Any, Tuple, Union

from ..core.exceptions import ExtractionError, ValidationError
from ..core.security import session_dir
from ..utils.image_utils import to_data_uri
from ..utils.storage import read_bytes, remove_tree, write_bytes
from .ffmpeg import FFMPEG, probe, run_command
from .types import ExtractionResult, SamplingPolicy, SourceFrame, VideoMetadata

logger = logging.getLogger(__name__)


class FrameExtractor:
    """
    Pulls a bounded, evenly spaced set of frames out of a video.

    Every temp file lives under a directory named after the session, and
    the directory is removed whether extraction succeeds or fails.
    """

    def __init__(
        self,
        temp_root: Optional[Union[str, Path]] = None,
        frame_height: int = 720,
    ):
        """
        Initialize the extractor.

        Args:
            temp_root: Parent directory for session temp dirs
            frame_height: Height frames are scaled to (aspect preserved)
        """
        self.temp_root = Path(temp_root or tempfile.gettempdir())
        self.frame_height = frame_height

    async def extract(
        self,
        video: Union[bytes, str, Path],
        policy: SamplingPolicy,
        session_id: Optional[str] = None,
    ) -> ExtractionResult:
        """
        Extract frames according to a sampling policy.

        Args:
            video: Raw video bytes or a path to a video file
            policy: Frame interval and cap
            session_id: Scopes the temp directory (random if omitted)

        Returns:
            ExtractionResult with frames ordered by index

        Raises:
            ValidationError: Empty input or no video stream in the file
            ExtractionError: The file or one of its frames could not be decoded
        """
        session_id = session_id or uuid.uuid4().hex
        work_dir = session_dir(self.temp_root, session_id, "extract")
        started = time.monotonic()

        try:
            work_dir.mkdir(parents=True, exist_ok=True)
            video_path = await self._stage_video(video, work_dir)

            info = await probe(video_path)
            metadata = self._read_metadata(info)
            logger.info(
                f"Video metadata: {metadata.duration_seconds:.2f}s, {metadata.fps:.2f} fps, "
                f"{metadata.width}x{metadata.height}"
            )

            plan = self.plan_frames(metadata.duration_seconds, metadata.fps, policy)
            logger.info(f"Extracting {len(plan)} frames (every {policy.interval_frames} frames, cap {policy.max_frames})")

            frames = await asyncio.gather(*[
                self._extract_frame(video_path, work_dir, session_id, index, timestamp)
                for index, timestamp in plan
            ])

            logger.info(f"Extracted {len(frames)} frames in {time.monotonic() - started:.2f}s")
            return ExtractionResult(frames=list(frames), metadata=metadata)

        finally:
            remove_tree(work_dir)

    # -------------------------------------------------------------------------
    # Planning
    # -------------------------------------------------------------------------

    @staticmethod
    def plan_frames(
        duration: float,
        fps: float,
        policy: SamplingPolicy,
    ) -> List[Tuple[int, float]]:
        """
        Choose which frames to sample.

        Frame numbers ``0, interval, 2*interval, ...`` strictly below the
        video's frame count, capped at ``max_frames``. Frame 0 is always
        sampled, so a very short clip still yields its reference frame.

        Returns:
            List of (index, timestamp_seconds), timestamps strictly increasing
        """
        total_frames = int(math.floor(max(duration, 0.0) * fps))
        available = max(1, math.ceil(total_frames / policy.interval_frames))
        count = min(available, policy.max_frames)

        return [
            (i, (i * policy.interval_frames) / fps)
            for i in range(count)
        ]

    @staticmethod
    def parse_frame_rate(value: Optional[str]) -> float:
        """Parse an ffprobe rate such as ``"30000/1001"``; 0.0 if unusable."""
        if not value:
            return 0.0
        try:
            rate = Fraction(value)
        except (ValueError, ZeroDivisionError):
            return 0.0
        return float(rate) if rate > 0 else 0.0

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _stage_video(self, video: Union[bytes, str, Path], work_dir: Path) -> Path:
        """Make the video available as a file inside the session directory."""
        if isinstance(video, (bytes, bytearray)):
            if not video:
                raise ValidationError("No video data provided", field="video")
            path = work_dir / "source_video"
            await write_bytes(path, bytes(video))
            logger.debug(f"Video written to {path} ({len(video)} bytes)")
            return path

        path = Path(video)
        if not path.is_file():
            raise ValidationError(f"Video file not found: {path}", field="video")
        return path

    def _read_metadata(self, info: Dict[str, Any]) -> VideoMetadata:
        """Find the video stream and read duration, rate and size."""
        streams = info.get("streams") or []
        video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)

        if video_stream is None:
            raise ValidationError(
                "No video stream found",
                field="video",
                constraint="at least one decodable video stream",
            )

        fps = self.parse_frame_rate(video_stream.get("r_frame_rate"))
        if not fps:
            fps = self.parse_frame_rate(video_stream.get("avg_frame_rate"))
        if not fps:
            raise ExtractionError("Could not determine the video frame rate")

        duration_raw = video_stream.get("duration") or info.get("format", {}).get("duration")
        try:
            duration = float(duration_raw)
        except (TypeError, ValueError):
            raise ExtractionError("Could not determine the video duration")

        return VideoMetadata(
            duration_seconds=duration,
            fps=fps,
            width=int(video_stream.get("width") or 0),
            height=int(video_stream.get("height") or 0),
        )

    async def _extract_frame(
        self,
        video_path: Path,
        work_dir: Path,
        session_id: str,
        index: int,
        timestamp: float,
    ) -> SourceFrame:
        """Decode a single frame at a timestamp into a PNG data URI."""
        output_path = work_dir / f"frame_{session_id}_{index}.png"

        result = await run_command([
            FFMPEG, "-y",
            "-ss", f"{timestamp:.6f}",
            "-i", str(video_path),
            "-frames:v", "1",
            "-vf", f"scale=-2:{self.frame_height}",
            "-q:v", "8",
            "-f", "image2",
            str(output_path),
        ])

        if not result.ok or not output_path.exists():
            logger.error(f"Failed to extract frame {index + 1} at {timestamp:.2f}s")
            raise ExtractionError(
                f"Frame {index + 1} extraction failed",
                stderr=result.stderr_tail,
                details={"timestamp": timestamp},
            )

        data = await read_bytes(output_path)
        logger.debug(f"Frame {index + 1} extracted at {timestamp:.2f}s ({len(data)} bytes)")

        return SourceFrame(index=index, timestamp=timestamp, image=to_data_uri(data, "image/png"))
