"""
Temporal Smoothing
==================

Optional de-flicker pass over a finished video. Frame-by-frame edits
drift slightly in brightness and texture, which shows up as flicker at
playback speed; these filter chains trade some sharpness for stability.
"""

import logging
import tempfile
import uuid
from pathlib import Path
from typing import Optional, Union

from ..core.exceptions import EncodeError, ValidationError
from ..core.security import session_dir
from ..utils.storage import read_bytes, remove_tree, write_bytes
from .ffmpeg import FFMPEG, run_command

logger = logging.getLogger(__name__)


SMOOTHING_FILTERS = {
    "light": "deflicker=mode=pm:size=3",
    "medium": (
        "deflicker=mode=pm:size=5,"
        "hqdn3d=0:0:8:6,"
        "tmix=frames=3:weights='1 3 1':scale=5"
    ),
    "heavy": (
        "deflicker=mode=pm:size=7,"
        "hqdn3d=1:1:10:8,"
        "tmix=frames=3:weights='1 8 1':scale=10,"
        "unsharp=3:3:0.8"
    ),
}

DEFAULT_LEVEL = "medium"


async def smooth_video(
    video_bytes: bytes,
    level: str = DEFAULT_LEVEL,
    session_id: Optional[str] = None,
    temp_root: Optional[Union[str, Path]] = None,
) -> bytes:
    """
    Apply a temporal smoothing filter chain to an mp4.

    Args:
        video_bytes: Encoded input video
        level: "light", "medium" or "heavy"
        session_id: Scopes the temp directory (random if omitted)
        temp_root: Parent directory for session temp dirs

    Returns:
        The smoothed video as mp4 bytes

    Raises:
        ValidationError: Unknown level or empty input
        EncodeError: ffmpeg failed
    """
    if level not in SMOOTHING_FILTERS:
        raise ValidationError(
            f"Unknown smoothing level: {level}",
            field="level",
            value=level,
            constraint=", ".join(SMOOTHING_FILTERS),
        )
    if not video_bytes:
        raise ValidationError("No video data provided", field="video")

    session_id = session_id or uuid.uuid4().hex
    work_dir = session_dir(Path(temp_root or tempfile.gettempdir()), session_id, "smooth")

    try:
        work_dir.mkdir(parents=True, exist_ok=True)
        input_path = work_dir / "input.mp4"
        output_path = work_dir / "smoothed.mp4"
        await write_bytes(input_path, video_bytes)

        logger.info(f"Applying {level} smoothing")
        result = await run_command([
            FFMPEG, "-y",
            "-i", str(input_path),
            "-vf", SMOOTHING_FILTERS[level],
            "-c:v", "libx264",
            "-pix_fmt", "yuv420p",
            "-preset", "medium",
            "-crf", "18",
            "-an",
            str(output_path),
        ])

        if not result.ok or not output_path.exists():
            raise EncodeError("Smoothing filter failed", stderr=result.stderr_tail)

        smoothed = await read_bytes(output_path)
        logger.info(f"Smoothing complete ({len(video_bytes)} -> {len(smoothed)} bytes)")
        return smoothed

    finally:
        remove_tree(work_dir)
