"""Shared fakes for pipeline tests."""

import asyncio
import io
from typing import Dict, List, Optional, Set

import pytest
from PIL import Image

from restyler.api.base import ImageEditResult
from restyler.core.config import Config
from restyler.core.exceptions import ExternalServiceError, ValidationError
from restyler.media.types import (
    AssemblyResult,
    AssemblyStatus,
    ExtractionResult,
    SourceFrame,
    VideoMetadata,
)
from restyler.utils.image_utils import to_data_uri
from restyler.workflow.session import ConsistencySpec, SpecKind


def png_bytes(width: int = 4, height: int = 4, color=(200, 30, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def png_data_uri(width: int = 4, height: int = 4) -> str:
    return to_data_uri(png_bytes(width, height), "image/png")


def source_image(index: int) -> str:
    return f"source-{index}.png"


def edited_image(index: int, attempt: int = 1) -> str:
    return f"https://cdn.example.com/edited-{index}-{attempt}.png"


class FakeEditor:
    """Edits by returning a URL derived from the source frame."""

    provider_name = "fake"

    def __init__(
        self,
        fail: Optional[Set[int]] = None,
        fail_times: int = 1_000_000,
        delays: Optional[Dict[int, float]] = None,
    ):
        self.fail = set(fail or ())
        self.fail_times = fail_times
        self.delays = delays or {}
        self.requests = []
        self.attempts: Dict[int, int] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def edit(self, request):
        index = int(request.images[0].split("-")[1].split(".")[0])
        self.requests.append(request)
        self.attempts[index] = self.attempts.get(index, 0) + 1

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(index, 0))
        finally:
            self.in_flight -= 1

        if index in self.fail and self.attempts[index] <= self.fail_times:
            raise ExternalServiceError(f"edit of frame {index} failed", service="fake", status_code=503)
        return ImageEditResult(image=edited_image(index, self.attempts[index]), provider="fake")

    async def close(self):
        self.closed = True


class FakeExtractor:
    def __init__(self, frame_count: int = 10, error: Optional[Exception] = None):
        self.frame_count = frame_count
        self.error = error
        self.calls = 0

    async def extract(self, video, policy, session_id=None):
        self.calls += 1
        if self.error:
            raise self.error
        frames = [
            SourceFrame(index=i, timestamp=i * policy.interval_frames / 30.0, image=source_image(i))
            for i in range(min(self.frame_count, policy.max_frames))
        ]
        return ExtractionResult(
            frames=frames,
            metadata=VideoMetadata(duration_seconds=10.0, fps=30.0, width=1280, height=720),
        )


class FakeAnalyzer:
    def __init__(self, diff_text: str = "gold sunglasses, 2mm frame", merge_error: Optional[Exception] = None,
                 diff_error: Optional[Exception] = None):
        self.diff_text = diff_text
        self.merge_error = merge_error
        self.diff_error = diff_error
        self.diff_calls = []
        self.merge_calls = []
        self.closed = False

    async def analyze_diff(self, prompt, original_image, edited_image):
        self.diff_calls.append((prompt, original_image, edited_image))
        if self.diff_error:
            raise self.diff_error
        return ConsistencySpec(kind=SpecKind.DIFF, text=self.diff_text)

    async def merge_instruction(self, prompt, current_image, previous_edited_image):
        self.merge_calls.append((prompt, current_image, previous_edited_image))
        if self.merge_error:
            raise self.merge_error
        return ConsistencySpec(kind=SpecKind.MERGE, text=f"merge {previous_edited_image} onto {current_image}")

    async def close(self):
        self.closed = True


class FakeAssembler:
    """Returns queued results; succeeds by default."""

    def __init__(self, results: Optional[List[AssemblyResult]] = None):
        self.results = list(results or [])
        self.calls = []

    async def reassemble(self, frames, fps=30, output_format="mp4", session_id=None):
        self.calls.append(list(frames))
        indices = [f.index for f in frames]
        if sorted(indices) != list(range(len(frames))):
            raise ValidationError("Frame sequence has gaps", field="frames")
        if self.results:
            return self.results.pop(0)
        return AssemblyResult(
            status=AssemblyStatus.COMPLETED,
            video_bytes=b"video",
            size=5,
            frame_count=len(frames),
            attempts=1,
            fps=fps,
            output_format=output_format,
        )


@pytest.fixture
def config(tmp_path):
    return Config.from_dict({"storage": {"temp_root": str(tmp_path)}})
