"""Tests for reassembly with retry."""

import asyncio
import io
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest
from PIL import Image

from restyler.core.exceptions import EncodeError, ReferenceExpiredError, ValidationError
from restyler.media.assembler import FrameAssembler
from restyler.media.ffmpeg import CommandResult
from restyler.media.types import AssemblyStatus, FrameRef
from restyler.utils.image_utils import to_data_uri

from conftest import png_bytes, png_data_uri

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def fake_encoder(failures=0):
    """run_command stand-in that writes the output file after ``failures`` failed runs."""
    calls = []

    async def run(cmd, timeout=None):
        calls.append(cmd)
        frames_dir = Path(cmd[cmd.index("-i") + 1]).parent
        calls_dirs.append(sorted(p.name for p in frames_dir.iterdir()))
        headers.append([p.read_bytes()[:8] for p in sorted(frames_dir.glob("frame_*.png"))])
        if len(calls) <= failures:
            return CommandResult(returncode=1, stdout=b"", stderr=b"Error while opening encoder")
        Path(cmd[-1]).write_bytes(b"encoded-video")
        return CommandResult(returncode=0, stdout=b"", stderr=b"")

    calls_dirs = []
    headers = []
    run.calls = calls
    run.staged = calls_dirs
    run.headers = headers
    return run


def data_frames(count, width=4, height=4):
    uri = png_data_uri(width, height)
    return [FrameRef(index=i, image=uri) for i in range(count)]


def jpeg_data_uri(width=4, height=4):
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), (30, 120, 200)).save(buffer, format="JPEG")
    return to_data_uri(buffer.getvalue(), "image/jpeg")


class TestSequenceValidation:

    def test_empty_rejected(self, tmp_path):
        with pytest.raises(ValidationError):
            asyncio.run(FrameAssembler(tmp_path).reassemble([]))

    def test_gap_rejected(self, tmp_path):
        frames = [FrameRef(0, "a.png"), FrameRef(1, "b.png"), FrameRef(3, "d.png")]
        with pytest.raises(ValidationError) as exc:
            asyncio.run(FrameAssembler(tmp_path).reassemble(frames))
        assert exc.value.details["constraint"] == "gapless from 0"

    def test_duplicate_rejected(self, tmp_path):
        frames = [FrameRef(0, "a.png"), FrameRef(0, "b.png")]
        with pytest.raises(ValidationError):
            FrameAssembler.validate_sequence(frames)

    def test_out_of_order_input_is_sorted(self):
        frames = [FrameRef(2, "c.png"), FrameRef(0, "a.png"), FrameRef(1, "b.png")]
        assert [f.index for f in FrameAssembler.validate_sequence(frames)] == [0, 1, 2]

    def test_unsupported_format_rejected(self, tmp_path):
        with pytest.raises(ValidationError):
            asyncio.run(FrameAssembler(tmp_path).reassemble(data_frames(2), output_format="gif"))


class TestReassembly:

    def test_success_stages_every_frame(self, tmp_path):
        encoder = fake_encoder()
        assembler = FrameAssembler(tmp_path, retry_delay=0)

        with patch("restyler.media.assembler.run_command", encoder):
            result = asyncio.run(assembler.reassemble(data_frames(3), fps=24, session_id="s1"))

        assert result.status == AssemblyStatus.COMPLETED
        assert result.succeeded
        assert result.video_bytes == b"encoded-video"
        assert result.frame_count == 3
        assert result.attempts == 1
        assert encoder.staged[0] == ["frame_0000.png", "frame_0001.png", "frame_0002.png"]
        cmd = encoder.calls[0]
        assert cmd[cmd.index("-framerate") + 1] == "24"
        assert "libx264" in cmd

    def test_repeated_calls_give_same_sequence(self, tmp_path):
        frames = data_frames(4)
        encoder = fake_encoder()
        assembler = FrameAssembler(tmp_path, retry_delay=0)

        with patch("restyler.media.assembler.run_command", encoder):
            first = asyncio.run(assembler.reassemble(frames, fps=12, session_id="s1"))
            second = asyncio.run(assembler.reassemble(frames, fps=12, session_id="s1"))

        assert first.succeeded and second.succeeded
        assert first.frame_count == second.frame_count == 4
        assert encoder.staged[0] == encoder.staged[1]
        assert encoder.headers[0] == encoder.headers[1]

    def test_jpeg_frames_staged_as_png(self, tmp_path):
        frames = [FrameRef(index=i, image=jpeg_data_uri()) for i in range(3)]
        encoder = fake_encoder()

        with patch("restyler.media.assembler.run_command", encoder):
            result = asyncio.run(FrameAssembler(tmp_path).reassemble(frames))

        assert result.succeeded
        assert result.frame_count == 3
        assert encoder.headers[0] == [PNG_SIGNATURE] * 3

    def test_temp_dirs_removed(self, tmp_path):
        with patch("restyler.media.assembler.run_command", fake_encoder(failures=1)):
            asyncio.run(FrameAssembler(tmp_path, retry_delay=0).reassemble(data_frames(2), session_id="s1"))

        assert not (tmp_path / "restyler_s1" / "reassemble").exists()

    def test_retry_after_encode_failure(self, tmp_path):
        encoder = fake_encoder(failures=1)

        with patch("restyler.media.assembler.run_command", encoder):
            result = asyncio.run(FrameAssembler(tmp_path, retry_delay=0).reassemble(data_frames(2)))

        assert result.succeeded
        assert result.attempts == 2
        assert result.error is None

    def test_exhausted_attempts_return_recoverable_failure(self, tmp_path):
        encoder = fake_encoder(failures=5)

        with patch("restyler.media.assembler.run_command", encoder):
            result = asyncio.run(FrameAssembler(tmp_path, max_attempts=2, retry_delay=0).reassemble(data_frames(2)))

        assert result.status == AssemblyStatus.FAILED
        assert result.attempts == 2
        assert len(encoder.calls) == 2
        assert isinstance(result.error, EncodeError)
        assert result.recoverable
        assert result.video_bytes is None

    def test_waits_between_attempts(self, tmp_path):
        sleeps = []

        async def fake_sleep(delay):
            sleeps.append(delay)

        with patch("restyler.media.assembler.run_command", fake_encoder(failures=5)), \
                patch("restyler.media.assembler.asyncio.sleep", fake_sleep):
            asyncio.run(FrameAssembler(tmp_path, max_attempts=3, retry_delay=2.0).reassemble(data_frames(1)))

        assert sleeps == [2.0, 2.0]

    def test_odd_dimensions_scaled_even(self, tmp_path):
        encoder = fake_encoder()

        with patch("restyler.media.assembler.run_command", encoder):
            asyncio.run(FrameAssembler(tmp_path).reassemble(data_frames(1, width=5, height=7)))

        cmd = encoder.calls[0]
        assert cmd[cmd.index("-vf") + 1] == "scale=4:6"

    def test_webm_uses_vp9(self, tmp_path):
        encoder = fake_encoder()

        with patch("restyler.media.assembler.run_command", encoder):
            result = asyncio.run(FrameAssembler(tmp_path).reassemble(data_frames(1), output_format="webm"))

        assert "libvpx-vp9" in encoder.calls[0]
        assert encoder.calls[0][-1].endswith("output.webm")
        assert result.output_format == "webm"


class TestUrlFrames:

    def url_frames(self, count):
        return [FrameRef(i, f"https://cdn.example.com/edited-{i}.png") for i in range(count)]

    def test_downloads_url_frames(self, tmp_path):
        image = png_bytes()

        def handler(request):
            return httpx.Response(200, content=image, headers={"content-type": "image/png"})

        assembler = FrameAssembler(tmp_path, transport=httpx.MockTransport(handler))
        encoder = fake_encoder()

        with patch("restyler.media.assembler.run_command", encoder):
            result = asyncio.run(assembler.reassemble(self.url_frames(4)))

        assert result.succeeded
        assert result.warnings == []
        assert len(encoder.staged[0]) == 4

    def test_prevalidation_failure_only_warns(self, tmp_path):
        image = png_bytes()
        heads = []

        def handler(request):
            if request.method == "HEAD":
                heads.append(str(request.url))
                return httpx.Response(405)
            return httpx.Response(200, content=image)

        assembler = FrameAssembler(tmp_path, prevalidate_sample=3, transport=httpx.MockTransport(handler))

        with patch("restyler.media.assembler.run_command", fake_encoder()):
            result = asyncio.run(assembler.reassemble(self.url_frames(5)))

        assert result.succeeded
        assert len(heads) == 3
        assert len(result.warnings) == 3

    def test_expired_reference_is_classified(self, tmp_path):
        image = png_bytes()

        def handler(request):
            if str(request.url).endswith("edited-2.png"):
                return httpx.Response(403)
            return httpx.Response(200, content=image)

        assembler = FrameAssembler(tmp_path, retry_delay=0, transport=httpx.MockTransport(handler))
        encoder = fake_encoder()

        with patch("restyler.media.assembler.run_command", encoder):
            result = asyncio.run(assembler.reassemble(self.url_frames(4), session_id="s2"))

        assert result.status == AssemblyStatus.FAILED
        assert isinstance(result.error, ReferenceExpiredError)
        assert result.error.details["status_code"] == 403
        assert result.recoverable
        assert result.attempts == 2
        assert encoder.calls == []
        assert not (tmp_path / "restyler_s2").joinpath("reassemble").exists()

    def test_undecodable_frame_is_not_retried(self, tmp_path):
        def handler(request):
            return httpx.Response(200, content=b"not an image")

        assembler = FrameAssembler(tmp_path, retry_delay=0, transport=httpx.MockTransport(handler))

        with patch("restyler.media.assembler.run_command", fake_encoder()):
            result = asyncio.run(assembler.reassemble(self.url_frames(2)))

        assert result.status == AssemblyStatus.FAILED
        assert result.attempts == 1
        assert isinstance(result.error, ValidationError)
        assert not result.recoverable
