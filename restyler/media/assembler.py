"""
Frame Assembler
===============

Encodes an index-ordered set of edited frames back into a video with
ffmpeg, with bounded retry.

Edited frames usually arrive as time-limited URLs issued by the image-edit
service, so the dominant late failure is an expired reference rather than
bad data. A failed run therefore reports a recoverable result instead of
raising, and the caller keeps its frames for a manual retry.
"""

import asyncio
import logging
import tempfile
import time
import uuid
from pathlib import Path
from typing import Optional, List, Sequence, Tuple, Union

import httpx

from ..core.exceptions import (
    EncodeError,
    ExternalServiceError,
    ReferenceExpiredError,
    ValidationError,
    VideoEditorError,
)
from ..core.security import session_dir
from ..utils.image_utils import decode_data_uri, inspect_image, is_data_uri, is_url, to_png
from ..utils.storage import format_file_size, read_bytes, remove_tree, write_bytes
from .ffmpeg import FFMPEG, run_command
from .types import AssemblyResult, AssemblyStatus, FrameRef

logger = logging.getLogger(__name__)


EXPIRED_STATUS_CODES = (403, 404, 410)

VIDEO_CODECS = {
    "mp4": ["-c:v", "libx264", "-pix_fmt", "yuv420p"],
    "webm": ["-c:v", "libvpx-vp9", "-pix_fmt", "yuv420p", "-b:v", "0", "-crf", "32"],
}


class FrameAssembler:
    """
    Reassembles edited frames into a video.

    Each attempt stages its frames in its own directory under the session's
    temp dir, and that directory is removed before the next attempt starts.
    """

    def __init__(
        self,
        temp_root: Optional[Union[str, Path]] = None,
        max_attempts: int = 2,
        retry_delay: float = 2.0,
        prevalidate_sample: int = 3,
        preset: str = "fast",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the assembler.

        Args:
            temp_root: Parent directory for session temp dirs
            max_attempts: Encode attempts before giving up
            retry_delay: Fixed wait between attempts, in seconds
            prevalidate_sample: How many leading URL frames to probe first
            preset: x264 speed preset
            timeout: HTTP timeout for frame downloads
            transport: Optional httpx transport (used to stub the network)
        """
        self.temp_root = Path(temp_root or tempfile.gettempdir())
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.prevalidate_sample = prevalidate_sample
        self.preset = preset
        self.timeout = timeout
        self._transport = transport

    async def reassemble(
        self,
        frames: Sequence[FrameRef],
        fps: int = 30,
        output_format: str = "mp4",
        session_id: Optional[str] = None,
    ) -> AssemblyResult:
        """
        Encode frames into a video.

        Args:
            frames: One FrameRef per index, gapless from 0
            fps: Output frame rate
            output_format: "mp4" or "webm"
            session_id: Scopes the temp directory (random if omitted)

        Returns:
            AssemblyResult; on exhausted attempts ``status`` is FAILED and the
            error is attached rather than raised

        Raises:
            ValidationError: Empty, gapped or duplicated frame indices, or an
                unsupported output format
        """
        ordered = self.validate_sequence(frames)
        if output_format not in VIDEO_CODECS:
            raise ValidationError(
                f"Unsupported output format: {output_format}",
                field="output_format",
                constraint=", ".join(sorted(VIDEO_CODECS)),
            )

        session_id = session_id or uuid.uuid4().hex
        base_dir = session_dir(self.temp_root, session_id, "reassemble")
        result = AssemblyResult(
            status=AssemblyStatus.FAILED,
            frame_count=len(ordered),
            fps=fps,
            output_format=output_format,
        )

        logger.info(f"Reassembling {len(ordered)} frames at {fps} fps as {output_format}")

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            result.warnings.extend(await self.prevalidate(ordered, client))

            try:
                for attempt in range(1, self.max_attempts + 1):
                    if attempt > 1:
                        logger.info(f"Retrying reassembly in {self.retry_delay:.1f}s (attempt {attempt}/{self.max_attempts})")
                        await asyncio.sleep(self.retry_delay)

                    result.attempts = attempt
                    attempt_dir = base_dir / f"attempt_{attempt}"
                    started = time.monotonic()

                    try:
                        video, staged = await self._encode_attempt(ordered, fps, output_format, attempt_dir, client)

                    except ValidationError as e:
                        # Bad frame data will not improve on retry
                        logger.error(f"Reassembly input rejected: {e}")
                        result.error = e
                        return result

                    except (ExternalServiceError, ReferenceExpiredError) as e:
                        logger.warning(f"Reassembly attempt {attempt}/{self.max_attempts} failed: {e}")
                        result.error = e
                        continue

                    finally:
                        remove_tree(attempt_dir)

                    result.status = AssemblyStatus.COMPLETED
                    result.video_bytes = video
                    result.frame_count = staged
                    result.size = len(video)
                    result.error = None
                    logger.info(
                        f"Reassembly completed in {time.monotonic() - started:.2f}s "
                        f"({format_file_size(len(video))})"
                    )
                    return result

            finally:
                remove_tree(base_dir)

        logger.error(f"Reassembly failed after {result.attempts} attempts: {result.error}")
        return result

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    @staticmethod
    def validate_sequence(frames: Sequence[FrameRef]) -> List[FrameRef]:
        """
        Sort frames by index and require exactly ``0..n-1``.

        Raises:
            ValidationError: If the set is empty or has gaps or duplicates
        """
        if not frames:
            raise ValidationError("No frames provided", field="frames")

        ordered = sorted(frames, key=lambda f: f.index)
        indices = [f.index for f in ordered]

        if len(set(indices)) != len(indices):
            raise ValidationError(
                "Duplicate frame indices",
                field="frames",
                constraint="one frame per index",
            )

        missing = sorted(set(range(len(ordered))) - set(indices))
        if missing or indices[-1] != len(ordered) - 1:
            raise ValidationError(
                f"Frame sequence has gaps (missing indices: {missing or 'n/a'})",
                field="frames",
                value=indices,
                constraint="gapless from 0",
            )

        for frame in ordered:
            if not frame.image:
                raise ValidationError(f"Missing image reference for frame {frame.index}", field="frames")

        return ordered

    async def prevalidate(
        self,
        frames: Sequence[FrameRef],
        client: httpx.AsyncClient,
    ) -> List[str]:
        """
        Probe the first few URL references before the expensive encode.

        A failed probe is only a warning: existence checks produce false
        negatives, and the encode is still attempted.

        Returns:
            Warning messages, empty if every probe passed
        """
        sample = [f for f in frames if is_url(f.image)][:self.prevalidate_sample]
        if not sample:
            return []

        async def probe(frame: FrameRef) -> Optional[str]:
            try:
                response = await client.head(frame.image)
            except httpx.HTTPError as e:
                return f"Frame {frame.index}: existence check failed ({e.__class__.__name__})"
            if response.status_code >= 400:
                return f"Frame {frame.index}: existence check returned {response.status_code}"
            return None

        warnings = [w for w in await asyncio.gather(*[probe(f) for f in sample]) if w]
        for warning in warnings:
            logger.warning(f"{warning}; attempting reassembly anyway")
        return warnings

    # -------------------------------------------------------------------------
    # Encoding
    # -------------------------------------------------------------------------

    async def _encode_attempt(
        self,
        frames: List[FrameRef],
        fps: int,
        output_format: str,
        attempt_dir: Path,
        client: httpx.AsyncClient,
    ) -> Tuple[bytes, int]:
        """Stage every frame, run the encoder, and return the video with its frame count."""
        attempt_dir.mkdir(parents=True, exist_ok=True)

        staged = await asyncio.gather(
            *[self._stage_frame(frame, attempt_dir, client) for frame in frames],
            return_exceptions=True,
        )
        errors = [s for s in staged if isinstance(s, BaseException)]
        if errors:
            for error in errors:
                if not isinstance(error, VideoEditorError):
                    raise error
            # Expired references first: they tell the caller what to do next
            expired = [e for e in errors if isinstance(e, ReferenceExpiredError)]
            raise (expired or errors)[0]

        width, height = staged[0][1]
        output_path = attempt_dir / f"output.{output_format}"
        cmd = self.build_command(attempt_dir, output_path, fps, output_format, width, height)

        result = await run_command(cmd)
        if not result.ok or not output_path.exists():
            raise EncodeError("Encoder failed to create video", stderr=result.stderr_tail)

        return await read_bytes(output_path), len(staged)

    async def _stage_frame(
        self,
        frame: FrameRef,
        attempt_dir: Path,
        client: httpx.AsyncClient,
    ) -> Tuple[Path, Tuple[int, int]]:
        """Write one frame to ``frame_%04d.png`` and return its size."""
        if is_data_uri(frame.image):
            data, _ = decode_data_uri(frame.image)
        elif is_url(frame.image):
            data = await self._download(frame, client)
        else:
            path = Path(frame.image)
            if not path.is_file():
                raise ValidationError(f"Frame {frame.index} image not found", field="frames")
            data = await read_bytes(path)

        fmt, width, height = inspect_image(data)
        if fmt != "PNG":
            data = to_png(data)
        target = attempt_dir / f"frame_{frame.index:04d}.png"
        await write_bytes(target, data)
        return target, (width, height)

    async def _download(self, frame: FrameRef, client: httpx.AsyncClient) -> bytes:
        """Fetch a URL frame, classifying lapsed references."""
        try:
            response = await client.get(frame.image)
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                f"Failed to fetch frame {frame.index}: {e.__class__.__name__}",
                service="frame download",
                recoverable=True,
            )

        if response.status_code in EXPIRED_STATUS_CODES:
            raise ReferenceExpiredError(
                f"Frame {frame.index} image reference has expired ({response.status_code})",
                reference=frame.image,
                status_code=response.status_code,
            )
        if response.status_code != 200:
            raise ExternalServiceError(
                f"Failed to fetch frame {frame.index}: {response.status_code}",
                service="frame download",
                status_code=response.status_code,
                recoverable=True,
            )
        return response.content

    def build_command(
        self,
        frames_dir: Path,
        output_path: Path,
        fps: int,
        output_format: str,
        width: int,
        height: int,
    ) -> List[str]:
        """
        Build the image-sequence encode command.

        Every frame is scaled to the first frame's size (rounded down to even
        dimensions for yuv420p), since edited frames may come back at
        slightly different resolutions.
        """
        even_width = max(2, width - width % 2)
        even_height = max(2, height - height % 2)

        cmd = [
            FFMPEG, "-y",
            "-framerate", str(fps),
            "-start_number", "0",
            "-i", str(frames_dir / "frame_%04d.png"),
            "-vf", f"scale={even_width}:{even_height}",
            *VIDEO_CODECS[output_format],
        ]
        if output_format == "mp4":
            cmd.extend(["-preset", self.preset, "-movflags", "+faststart"])
        cmd.append(str(output_path))
        return cmd
