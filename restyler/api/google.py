"""
Google Gemini Provider
======================

Direct integration with the Gemini ``generateContent`` REST API for
multimodal reasoning: text instructions interleaved with inline images in,
text out.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Tuple, Union

from ..core.exceptions import ExternalServiceError
from .base import BaseServiceClient

logger = logging.getLogger(__name__)


@dataclass
class InlineImage:
    """An image part for a multimodal request."""

    data: bytes
    mime_type: str = "image/png"


Part = Union[str, InlineImage]


class GeminiClient(BaseServiceClient):
    """
    Google Gemini text/vision client.

    Uses the Gemini API with an API key header. Images are sent inline as
    base64, so callers resolve URL references before building the request.
    """

    DEFAULT_MODEL = "gemini-2.5-pro"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        **kwargs,
    ):
        self.model = model
        super().__init__(api_key=api_key, **kwargs)

    @property
    def provider_name(self) -> str:
        return "Google Gemini"

    @property
    def env_key_names(self) -> Tuple[str, ...]:
        return ("GOOGLE_GENERATIVE_AI_API_KEY", "GOOGLE_API_KEY")

    def _get_default_base_url(self) -> str:
        return "https://generativelanguage.googleapis.com/v1beta"

    def _get_headers(self) -> Dict[str, str]:
        """Google API uses an API key header, not a bearer token."""
        return {
            "x-goog-api-key": self.api_key or "",
            "Content-Type": "application/json",
        }

    async def generate(self, parts: List[Part]) -> str:
        """
        Run one multimodal generation.

        Args:
            parts: Text and InlineImage parts, in prompt order

        Returns:
            The concatenated text of the first candidate
        """
        payload = self._build_payload(parts)
        endpoint = f"{self.base_url}/models/{self.model}:generateContent"

        logger.debug(f"Calling {self.model} with {len(parts)} parts")

        async def call() -> Dict[str, Any]:
            response = await self._request("POST", endpoint, json=payload)
            self._raise_for_status(response)
            return response.json()

        data = await self._with_retries(f"{self.model} generateContent", call)
        return self._parse_response(data)

    def _build_payload(self, parts: List[Part]) -> Dict[str, Any]:
        """Build the generateContent payload."""
        content_parts = []
        for part in parts:
            if isinstance(part, InlineImage):
                content_parts.append({
                    "inline_data": {
                        "mime_type": part.mime_type,
                        "data": base64.b64encode(part.data).decode("utf-8"),
                    }
                })
            else:
                content_parts.append({"text": part})

        return {"contents": [{"role": "user", "parts": content_parts}]}

    def _parse_response(self, data: Dict[str, Any]) -> str:
        """Pull the text out of the first candidate."""
        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback", {}).get("blockReason")
            raise ExternalServiceError(
                f"No candidates in Gemini response{f' (blocked: {feedback})' if feedback else ''}",
                service=self.provider_name,
            )

        parts = candidates[0].get("content", {}).get("parts", [])
        text = "".join(part.get("text", "") for part in parts).strip()

        if not text:
            raise ExternalServiceError(
                "Empty text in Gemini response",
                service=self.provider_name,
                details={"finish_reason": candidates[0].get("finishReason")},
            )

        return text
