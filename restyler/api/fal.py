"""
fal.ai Provider
===============

Image editing through fal.ai's hosted Gemini image-edit model.

The service accepts a prompt plus one or more reference images and returns
generated images by URL. Requests are submitted to the queue API and polled
until they settle.
"""

import asyncio
import logging
import time
from typing import Optional, List, Dict, Any, Tuple

from ..core.exceptions import ExternalServiceError, OperationTimeoutError, ValidationError
from ..utils.image_utils import decode_data_uri, inspect_image, is_data_uri, is_url, to_data_uri
from .base import BaseImageEditor, ImageEditRequest, ImageEditResult, JobStatus
from .factory import register_provider

logger = logging.getLogger(__name__)


@register_provider("fal")
class FalImageEditor(BaseImageEditor):
    """
    fal.ai image-edit provider.

    Endpoints:
    - fal-ai/gemini-25-flash-image/edit (default)
    - fal-ai/nano-banana/edit
    """

    DEFAULT_ENDPOINT = "fal-ai/gemini-25-flash-image/edit"
    QUEUE_URL = "https://queue.fal.run"
    VALID_FORMATS = {"png", "jpeg"}
    PROMPT_CEILING = 2000

    def __init__(
        self,
        api_key: Optional[str] = None,
        endpoint: str = DEFAULT_ENDPOINT,
        prompt_ceiling: int = PROMPT_CEILING,
        max_image_mb: float = 20,
        poll_interval: float = 1.0,
        max_wait: float = 300.0,
        **kwargs,
    ):
        self.endpoint = endpoint
        self.prompt_ceiling = prompt_ceiling
        self.max_image_mb = max_image_mb
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        super().__init__(api_key=api_key, **kwargs)

    @property
    def provider_name(self) -> str:
        return "fal.ai"

    @property
    def env_key_names(self) -> Tuple[str, ...]:
        return ("FAL_KEY", "FAL_API_KEY")

    def _get_default_base_url(self) -> str:
        return self.QUEUE_URL

    def _get_headers(self) -> Dict[str, str]:
        """fal.ai authenticates with a ``Key`` scheme."""
        return {
            "Authorization": f"Key {self.api_key}",
            "Content-Type": "application/json",
        }

    async def edit(self, request: ImageEditRequest) -> ImageEditResult:
        """
        Edit an image with fal.ai.

        Args:
            request: Prompt, 1-2 reference images, output format

        Returns:
            ImageEditResult with exactly one image reference
        """
        self._validate_request(request)
        payload = self._build_payload(request)

        logger.debug(f"Edit payload: prompt={len(request.prompt)} chars, images={len(request.images)}")

        started = time.monotonic()
        data = await self._with_retries(
            f"edit via {self.endpoint}",
            lambda: self._submit_and_wait(payload),
        )

        result = self._parse_response(data)
        result.duration_seconds = time.monotonic() - started
        return result

    # -------------------------------------------------------------------------
    # Request Building
    # -------------------------------------------------------------------------

    def _validate_request(self, request: ImageEditRequest) -> None:
        """Reject inputs the service would refuse, before any network call."""
        if not request.prompt or not request.prompt.strip():
            raise ValidationError("Edit prompt is empty", field="prompt")
        if len(request.prompt) > self.prompt_ceiling:
            raise ValidationError(
                f"Edit prompt is {len(request.prompt)} characters",
                field="prompt",
                constraint=f"<= {self.prompt_ceiling} characters",
            )
        if not 1 <= len(request.images) <= self.MAX_REFERENCE_IMAGES:
            raise ValidationError(
                f"Expected 1-{self.MAX_REFERENCE_IMAGES} reference images, got {len(request.images)}",
                field="images",
            )
        if request.output_format not in self.VALID_FORMATS:
            raise ValidationError(
                f"Unsupported output format: {request.output_format}",
                field="output_format",
                constraint=", ".join(sorted(self.VALID_FORMATS)),
            )

    def _prepare_image(self, ref: str) -> str:
        """URLs pass through; inline data is checked; local files are inlined."""
        if is_url(ref):
            return ref
        data_uri = ref if is_data_uri(ref) else to_data_uri(ref)
        raw, _ = decode_data_uri(data_uri)
        inspect_image(raw, max_size_mb=self.max_image_mb)
        return data_uri

    def _build_payload(self, request: ImageEditRequest) -> Dict[str, Any]:
        """Build the API request payload."""
        payload = {
            "prompt": request.prompt,
            "image_urls": [self._prepare_image(ref) for ref in request.images],
            "num_images": 1,
            "output_format": request.output_format,
            # URLs rather than inline data URIs in the response
            "sync_mode": False,
        }

        if request.extra_params:
            payload.update(request.extra_params)

        return payload

    # -------------------------------------------------------------------------
    # Queue Handling
    # -------------------------------------------------------------------------

    async def _submit_and_wait(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Submit to the queue and poll until the job settles."""
        response = await self._request("POST", f"{self.base_url}/{self.endpoint}", json=payload)
        self._raise_for_status(response)
        data = response.json()

        request_id = data.get("request_id")
        if not request_id:
            # Synchronous deployments answer with the result directly
            return data

        logger.debug(f"fal.ai job queued: {request_id}")
        status_url = data.get("status_url") or f"{self.base_url}/{self.endpoint}/requests/{request_id}/status"
        response_url = data.get("response_url") or f"{self.base_url}/{self.endpoint}/requests/{request_id}"

        deadline = time.monotonic() + self.max_wait
        while True:
            status_response = await self._request("GET", status_url)
            self._raise_for_status(status_response)
            status_data = status_response.json()
            status = JobStatus.from_provider_status(status_data.get("status", ""))

            if status == JobStatus.COMPLETED:
                break
            if status in (JobStatus.FAILED, JobStatus.CANCELLED):
                raise ExternalServiceError(
                    f"fal.ai job {request_id} {status.value}: {status_data.get('error', 'unknown error')}",
                    service=self.provider_name,
                )
            if time.monotonic() >= deadline:
                raise OperationTimeoutError(
                    f"fal.ai job {request_id} timed out after {self.max_wait} seconds",
                    operation="edit",
                    timeout_seconds=self.max_wait,
                    service=self.provider_name,
                )

            await asyncio.sleep(self.poll_interval)

        result_response = await self._request("GET", response_url)
        self._raise_for_status(result_response)
        result = result_response.json()
        result.setdefault("request_id", request_id)
        return result

    def _parse_response(self, data: Dict[str, Any]) -> ImageEditResult:
        """Extract exactly one image reference from a completed job."""
        images: List[Any] = data.get("images") or []
        image_ref = None

        if images:
            first = images[0]
            if isinstance(first, dict):
                image_ref = first.get("url") or first.get("data")
            else:
                image_ref = first
        elif "image" in data:
            image = data["image"]
            image_ref = image.get("url") if isinstance(image, dict) else image

        if not image_ref:
            raise ExternalServiceError(
                "No image in edit response",
                service=self.provider_name,
                recoverable=True,
            )

        return ImageEditResult(
            image=image_ref,
            provider=self.provider_name,
            model=self.endpoint,
            job_id=data.get("request_id"),
            description=data.get("description"),
        )
