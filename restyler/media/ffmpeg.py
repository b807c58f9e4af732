"""
FFmpeg Process Runner
=====================

Thin async wrapper around the ``ffmpeg`` and ``ffprobe`` executables.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List, Dict, Any, Union

from ..core.exceptions import ExternalServiceError, ExtractionError, OperationTimeoutError

logger = logging.getLogger(__name__)

FFMPEG = "ffmpeg"
FFPROBE = "ffprobe"

# Subprocess timeout in seconds
SUBPROCESS_TIMEOUT = 600


@dataclass
class CommandResult:
    """Exit status and captured output of one process run."""

    returncode: int
    stdout: bytes
    stderr: bytes

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def stderr_tail(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")[-500:]


async def run_command(
    cmd: List[str],
    timeout: Optional[float] = SUBPROCESS_TIMEOUT,
) -> CommandResult:
    """
    Run an external command and capture its output.

    Raises:
        ExternalServiceError: If the executable is not installed
        OperationTimeoutError: If the process exceeds ``timeout``
    """
    logger.debug(f"Running: {' '.join(cmd)}")

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        raise ExternalServiceError(
            f"{cmd[0]} not found. Please install ffmpeg.",
            service=cmd[0],
        )

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise OperationTimeoutError(
            f"{cmd[0]} timed out after {timeout} seconds",
            operation=cmd[0],
            timeout_seconds=timeout,
            service=cmd[0],
        )

    return CommandResult(returncode=process.returncode, stdout=stdout, stderr=stderr)


async def probe(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read container and stream information with ffprobe.

    Raises:
        ExtractionError: If the file cannot be decoded
    """
    result = await run_command([
        FFPROBE, "-v", "quiet",
        "-print_format", "json",
        "-show_format", "-show_streams",
        str(path),
    ])

    if not result.ok:
        raise ExtractionError("Could not decode video", stderr=result.stderr_tail)

    try:
        return json.loads(result.stdout.decode("utf-8") or "{}")
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ExtractionError(f"Unreadable probe output: {e}")
