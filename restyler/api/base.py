"""
Base Service Client
===================

Shared plumbing for the external generative services: HTTP client
management, status-code classification, retry with exponential backoff,
and image reference resolution.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple, Callable, Awaitable, TypeVar
from urllib.parse import urlparse

import httpx

from ..core.exceptions import (
    ExternalServiceError,
    OperationTimeoutError,
    RateLimitError,
    ReferenceExpiredError,
    ValidationError,
)
from ..core.security import redact_api_key
from ..utils.image_utils import decode_data_uri, encode_image, get_mime_type, is_data_uri, is_url

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Constants
# =============================================================================


DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_DELAY = 2.0
DEFAULT_RETRY_MULTIPLIER = 2.0
DEFAULT_TIMEOUT = 300

# Status codes a signed, time-limited URL answers with once it has lapsed
EXPIRED_STATUS_CODES = (403, 404, 410)


# =============================================================================
# Data Classes
# =============================================================================


class JobStatus(Enum):
    """Status of a queued service job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def from_provider_status(cls, status: str) -> "JobStatus":
        """Normalize provider-specific status strings to JobStatus."""
        status_lower = (status or "").lower().strip()

        if status_lower in ("completed", "succeeded", "done", "success", "finished", "ok"):
            return cls.COMPLETED

        if status_lower in ("failed", "error", "failure", "errored"):
            return cls.FAILED

        if status_lower in ("cancelled", "canceled", "aborted", "stopped"):
            return cls.CANCELLED

        if status_lower in ("pending", "queued", "in_queue", "waiting", "scheduled"):
            return cls.PENDING

        return cls.PROCESSING


@dataclass
class ImageEditRequest:
    """Request parameters for a single image edit."""

    prompt: str
    images: List[str] = field(default_factory=list)
    output_format: str = "png"

    # Provider-specific
    extra_params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ImageEditResult:
    """Exactly one generated image returned by an edit call."""

    image: str
    provider: Optional[str] = None
    model: Optional[str] = None
    job_id: Optional[str] = None
    description: Optional[str] = None
    duration_seconds: Optional[float] = None


# =============================================================================
# Base Client Class
# =============================================================================


class BaseServiceClient(ABC):
    """
    Abstract base class for external service clients.

    Features:
    - Lazily created, lock-protected ``httpx.AsyncClient``
    - Status-code classification into the error taxonomy
    - Automatic retry with exponential backoff for recoverable errors
    - Resolution of URL, data-URI and file image references
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: API key (or read from environment)
            base_url: Base URL for the API
            timeout: Request timeout in seconds
            max_retries: Retries after the first attempt on recoverable errors
            retry_delay: Initial backoff delay in seconds
            transport: Optional httpx transport (used to stub the network)
        """
        self.api_key = api_key or self._get_api_key_from_env()
        self.base_url = (base_url or self._get_default_base_url()).rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None
        self._asset_client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

        self._validate_config()

    # -------------------------------------------------------------------------
    # Abstract Members
    # -------------------------------------------------------------------------

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @property
    @abstractmethod
    def env_key_names(self) -> Tuple[str, ...]:
        """Environment variables searched, in order, for the API key."""
        pass

    @abstractmethod
    def _get_default_base_url(self) -> str:
        """Return the default base URL for this provider."""
        pass

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def _get_api_key_from_env(self) -> Optional[str]:
        """Get API key from the first environment variable that is set."""
        for name in self.env_key_names:
            value = os.getenv(name)
            if value:
                return value
        return None

    def _validate_config(self) -> None:
        """Validate the client configuration."""
        if not self.api_key:
            logger.warning(
                f"No API key found for {self.provider_name}. "
                f"Set {' or '.join(self.env_key_names)} or pass api_key parameter."
            )

    def _get_headers(self) -> Dict[str, str]:
        """Get default headers for requests."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.timeout),
                    headers=self._get_headers(),
                    transport=self._transport,
                    follow_redirects=True,
                )
            return self._client

    async def _get_asset_client(self) -> httpx.AsyncClient:
        """Get or create the credential-free client used for image downloads."""
        async with self._client_lock:
            if self._asset_client is None:
                self._asset_client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.timeout),
                    transport=self._transport,
                    follow_redirects=True,
                )
            return self._asset_client

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request, mapping transport failures onto the error taxonomy."""
        client = await self._get_client()
        try:
            return await client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            raise OperationTimeoutError(
                f"{self.provider_name} request timed out",
                operation=f"{method} {url.split('?', 1)[0]}",
                timeout_seconds=self.timeout,
                service=self.provider_name,
            )
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                f"{self.provider_name} is unavailable: {redact_api_key(str(e))}",
                service=self.provider_name,
                recoverable=True,
            )

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Classify a non-success response."""
        if response.status_code < 400:
            return

        body = redact_api_key(response.text)

        if response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            raise RateLimitError(
                f"{self.provider_name} rate limit exceeded",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                service=self.provider_name,
                response_body=body,
            )

        if response.status_code in (400, 413, 415, 422):
            raise ValidationError(
                f"{self.provider_name} rejected the input: {body[:200]}",
                field="request",
                details={"status_code": response.status_code},
            )

        raise ExternalServiceError(
            f"{self.provider_name} API error: {response.status_code}",
            service=self.provider_name,
            status_code=response.status_code,
            response_body=body,
        )

    async def _with_retries(
        self,
        operation: str,
        call: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Run ``call`` with exponential backoff on recoverable errors.

        Validation errors and other non-recoverable failures propagate
        immediately.
        """
        last_error: Optional[ExternalServiceError] = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = self.retry_delay * (DEFAULT_RETRY_MULTIPLIER ** (attempt - 1))
                logger.info(f"{operation}: retry {attempt}/{self.max_retries} after {delay:.1f}s delay")
                await asyncio.sleep(delay)

            try:
                return await call()

            except RateLimitError as e:
                last_error = e
                logger.warning(f"{operation}: rate limited by {self.provider_name}")
                continue

            except ExternalServiceError as e:
                if not e.recoverable:
                    raise
                last_error = e
                logger.warning(f"{operation}: recoverable {self.provider_name} error: {e}")
                continue

        assert last_error is not None
        raise last_error

    # -------------------------------------------------------------------------
    # Image References
    # -------------------------------------------------------------------------

    async def fetch_image(self, ref: str) -> Tuple[bytes, str]:
        """
        Resolve an image reference into raw bytes.

        Args:
            ref: URL, data URI, or local file path

        Returns:
            Tuple of (raw_bytes, mime_type)

        Raises:
            ReferenceExpiredError: If a URL no longer resolves
            ValidationError: If a data URI or path is malformed or missing
        """
        if is_data_uri(ref):
            return decode_data_uri(ref)

        if not is_url(ref):
            data, mime_type = encode_image(ref)
            return decode_data_uri(f"data:{mime_type};base64,{data}")

        client = await self._get_asset_client()
        try:
            response = await client.get(ref)
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                f"Failed to download image: {e}",
                service=self.provider_name,
                recoverable=True,
            )

        if response.status_code in EXPIRED_STATUS_CODES:
            raise ReferenceExpiredError(
                f"Image reference has expired ({response.status_code})",
                reference=ref,
                status_code=response.status_code,
            )
        if response.status_code != 200:
            raise ExternalServiceError(
                f"Failed to download image: {response.status_code}",
                service=self.provider_name,
                status_code=response.status_code,
            )

        mime_type = response.headers.get("content-type", "").split(";")[0].strip()
        if not mime_type.startswith("image/"):
            mime_type = get_mime_type(urlparse(ref).path)
        return response.content, mime_type

    # -------------------------------------------------------------------------
    # Context Manager Protocol
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close the HTTP clients."""
        async with self._client_lock:
            if self._client:
                await self._client.aclose()
                self._client = None
            if self._asset_client:
                await self._asset_client.aclose()
                self._asset_client = None

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()


class BaseImageEditor(BaseServiceClient):
    """Interface for image-edit services: one prompt plus references in, one image out."""

    MAX_REFERENCE_IMAGES = 2

    @abstractmethod
    async def edit(self, request: ImageEditRequest) -> ImageEditResult:
        """
        Produce exactly one edited image.

        Raises:
            ValidationError: Invalid input (never retried)
            ExternalServiceError: The service failed or returned no image
        """
        pass
