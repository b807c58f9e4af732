"""
API Integration Layer
=====================

Clients for the external generative services.

Supported Providers:
- fal.ai (Gemini image edit) for frame editing
- Google Gemini (generateContent) for consistency analysis

Usage:
    from restyler.api import get_editor, ImageEditRequest

    editor = get_editor("fal")
    result = await editor.edit(ImageEditRequest(
        prompt="make it look cyberpunk",
        images=["frame.png"],
    ))
"""

from .base import (
    BaseServiceClient,
    BaseImageEditor,
    ImageEditRequest,
    ImageEditResult,
    JobStatus,
)
from .factory import get_editor, list_providers, register_provider
from .google import GeminiClient, InlineImage

__all__ = [
    "BaseServiceClient",
    "BaseImageEditor",
    "ImageEditRequest",
    "ImageEditResult",
    "JobStatus",
    "GeminiClient",
    "InlineImage",
    "get_editor",
    "list_providers",
    "register_provider",
]
