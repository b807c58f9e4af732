"""Tests for the fal.ai image-edit adapter."""

import asyncio
import json

import httpx
import pytest

from restyler.api import get_editor, list_providers
from restyler.api.base import ImageEditRequest
from restyler.api.fal import FalImageEditor
from restyler.core.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    RateLimitError,
    ValidationError,
)

from conftest import png_data_uri

RESULT_URL = "https://v3.fal.media/files/edited.png"


def make_editor(handler, **kwargs):
    kwargs.setdefault("retry_delay", 0)
    kwargs.setdefault("poll_interval", 0)
    return FalImageEditor(api_key="fal-test", transport=httpx.MockTransport(handler), **kwargs)


def run_edit(editor, request):
    async def run():
        async with editor:
            return await editor.edit(request)
    return asyncio.run(run())


def request(**kwargs):
    kwargs.setdefault("prompt", "add sunglasses")
    kwargs.setdefault("images", [png_data_uri()])
    return ImageEditRequest(**kwargs)


class TestEdit:

    def test_direct_response(self):
        seen = {}

        def handler(req):
            seen["url"] = str(req.url)
            seen["auth"] = req.headers.get("authorization")
            seen["body"] = json.loads(req.content)
            return httpx.Response(200, json={"images": [{"url": RESULT_URL}], "description": "done"})

        result = run_edit(make_editor(handler), request(images=[png_data_uri(), "https://cdn/ref.png"]))

        assert result.image == RESULT_URL
        assert result.description == "done"
        assert seen["url"] == "https://queue.fal.run/fal-ai/gemini-25-flash-image/edit"
        assert seen["auth"] == "Key fal-test"
        assert seen["body"]["num_images"] == 1
        assert seen["body"]["output_format"] == "png"
        assert seen["body"]["image_urls"][1] == "https://cdn/ref.png"

    def test_queued_job_is_polled(self):
        polls = []

        def handler(req):
            url = str(req.url)
            if req.method == "POST":
                return httpx.Response(200, json={
                    "request_id": "r1",
                    "status_url": "https://queue.fal.run/jobs/r1/status",
                    "response_url": "https://queue.fal.run/jobs/r1",
                })
            if url.endswith("/status"):
                polls.append(url)
                status = "IN_PROGRESS" if len(polls) < 2 else "COMPLETED"
                return httpx.Response(200, json={"status": status})
            return httpx.Response(200, json={"images": [{"url": RESULT_URL}]})

        result = run_edit(make_editor(handler), request())

        assert result.image == RESULT_URL
        assert result.job_id == "r1"
        assert len(polls) == 2

    def test_failed_job(self):
        def handler(req):
            if req.method == "POST":
                return httpx.Response(200, json={"request_id": "r1"})
            return httpx.Response(200, json={"status": "FAILED", "error": "safety filter"})

        with pytest.raises(ExternalServiceError, match="safety filter"):
            run_edit(make_editor(handler), request())

    def test_no_image_in_response(self):
        with pytest.raises(ExternalServiceError, match="No image"):
            run_edit(make_editor(lambda req: httpx.Response(200, json={"images": []})), request())

    def test_server_errors_are_retried(self):
        calls = []

        def handler(req):
            calls.append(req)
            if len(calls) < 3:
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, json={"images": [{"url": RESULT_URL}]})

        result = run_edit(make_editor(handler, max_retries=2), request())

        assert result.image == RESULT_URL
        assert len(calls) == 3

    def test_rate_limit_exhausts_retries(self):
        calls = []

        def handler(req):
            calls.append(req)
            return httpx.Response(429, headers={"retry-after": "1"})

        with pytest.raises(RateLimitError):
            run_edit(make_editor(handler, max_retries=1), request())
        assert len(calls) == 2

    def test_invalid_input_not_retried(self):
        calls = []

        def handler(req):
            calls.append(req)
            return httpx.Response(422, json={"detail": "bad image"})

        with pytest.raises(ValidationError):
            run_edit(make_editor(handler), request())
        assert len(calls) == 1


class TestValidation:

    def never_called(self, req):
        raise AssertionError("no request expected")

    def test_prompt_over_ceiling(self):
        with pytest.raises(ValidationError):
            run_edit(make_editor(self.never_called), request(prompt="x" * 2001))

    def test_too_many_images(self):
        with pytest.raises(ValidationError):
            run_edit(make_editor(self.never_called), request(images=[png_data_uri()] * 3))

    def test_no_images(self):
        with pytest.raises(ValidationError):
            run_edit(make_editor(self.never_called), request(images=[]))

    def test_unsupported_output_format(self):
        with pytest.raises(ValidationError):
            run_edit(make_editor(self.never_called), request(output_format="webp"))

    def test_not_an_image(self):
        with pytest.raises(ValidationError):
            run_edit(make_editor(self.never_called), request(images=["data:image/png;base64,bm90IGFuIGltYWdl"]))


class TestFactory:

    def test_fal_registered(self):
        assert "fal" in list_providers()
        assert isinstance(get_editor("fal", api_key="k"), FalImageEditor)

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError):
            get_editor("nope")
