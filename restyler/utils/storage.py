"""
Storage Utilities
=================

Helper functions for file staging, cleanup, and manifest storage.
"""

import json
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Union

import aiofiles

logger = logging.getLogger(__name__)


async def write_bytes(path: Union[str, Path], data: bytes) -> Path:
    """Write raw bytes to a file, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(path, "wb") as f:
        await f.write(data)
    return path


async def read_bytes(path: Union[str, Path]) -> bytes:
    """Read a whole file into memory."""
    async with aiofiles.open(path, "rb") as f:
        return await f.read()


def save_video(
    video_data: bytes,
    output_path: Union[str, Path],
) -> str:
    """
    Save video data to a file.

    Args:
        video_data: Raw video bytes
        output_path: Path to save the video

    Returns:
        Path to saved video
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "wb") as f:
        f.write(video_data)

    logger.info(f"Video saved to {output_path} ({format_file_size(len(video_data))})")
    return str(output_path)


def save_metadata(
    metadata: Dict[str, Any],
    output_path: Union[str, Path],
) -> str:
    """
    Save a JSON manifest to a file.

    Args:
        metadata: Metadata dictionary
        output_path: Path to save the metadata

    Returns:
        Path to saved metadata
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    payload = dict(metadata)
    payload["saved_at"] = datetime.now().isoformat()

    with open(output_path, "w") as f:
        json.dump(payload, f, indent=2, default=str)

    logger.debug(f"Metadata saved to {output_path}")
    return str(output_path)


def remove_tree(path: Union[str, Path]) -> None:
    """
    Remove a directory tree, best-effort.

    Never raises: entries that are already gone are fine, anything else is
    logged and left behind.
    """
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove temp directory {path}: {e}")


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted string (e.g., "1.5 MB")
    """
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"
