"""
Image Utilities
===============

Helpers for the three kinds of image reference the pipeline passes around:
``http(s)://`` URLs, ``data:`` URIs, and local file paths.
"""

import base64
import binascii
import io
import logging
import re
from pathlib import Path
from typing import Optional, Tuple, Union

from PIL import Image, UnidentifiedImageError

from ..core.exceptions import ValidationError

logger = logging.getLogger(__name__)


MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
}

SUPPORTED_FORMATS = {"PNG", "JPEG", "WEBP"}

_DATA_URI = re.compile(r"^data:(?P<mime>[a-z]+/[a-z0-9.+\-]+);base64,(?P<data>.*)$", re.IGNORECASE | re.DOTALL)


def is_url(ref: str) -> bool:
    """Whether the reference is a remote URL."""
    return ref.startswith(("http://", "https://"))


def is_data_uri(ref: str) -> bool:
    """Whether the reference carries inline base64 data."""
    return ref.startswith("data:")


def get_mime_type(image_path: Union[str, Path]) -> str:
    """Get MIME type from file extension."""
    return MIME_TYPES.get(Path(image_path).suffix.lower(), "image/jpeg")


def encode_image(image_path: Union[str, Path]) -> Tuple[str, str]:
    """
    Encode an image to base64.

    Args:
        image_path: Path to the image file

    Returns:
        Tuple of (base64_data, mime_type)
    """
    path = Path(image_path)

    if not path.exists():
        raise ValidationError(
            f"Image not found: {image_path}",
            field="image",
            value=str(image_path),
        )

    with open(path, "rb") as f:
        data = base64.b64encode(f.read()).decode("utf-8")

    return data, get_mime_type(path)


def to_data_uri(image: Union[str, Path, bytes], mime_type: str = "image/png") -> str:
    """
    Convert an image file or raw bytes to a data URI.

    Returns:
        Data URI string (data:image/png;base64,...)
    """
    if isinstance(image, bytes):
        return f"data:{mime_type};base64,{base64.b64encode(image).decode('utf-8')}"
    data, mime_type = encode_image(image)
    return f"data:{mime_type};base64,{data}"


def decode_data_uri(ref: str) -> Tuple[bytes, str]:
    """
    Decode a data URI into raw bytes.

    Returns:
        Tuple of (raw_bytes, mime_type)

    Raises:
        ValidationError: If the URI is malformed
    """
    match = _DATA_URI.match(ref)
    if not match:
        raise ValidationError(
            "Malformed data URI",
            field="image",
            value=ref[:40],
            constraint="data:<mime>;base64,<data>",
        )
    try:
        raw = base64.b64decode(match.group("data"), validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Invalid base64 image data: {e}", field="image")
    return raw, match.group("mime").lower()


def inspect_image(data: bytes, max_size_mb: Optional[float] = None) -> Tuple[str, int, int]:
    """
    Check that raw bytes are a supported, reasonably sized image.

    Args:
        data: Raw image bytes
        max_size_mb: Optional size ceiling in megabytes

    Returns:
        Tuple of (format, width, height)

    Raises:
        ValidationError: If the bytes are oversize, unreadable, or an unsupported format
    """
    if max_size_mb is not None and len(data) > max_size_mb * 1024 * 1024:
        raise ValidationError(
            f"Image is too large ({len(data) / (1024 * 1024):.2f} MB)",
            field="image",
            constraint=f"<= {max_size_mb} MB",
        )

    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = (img.format or "").upper()
            width, height = img.size
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationError(f"Unreadable image data: {e}", field="image")

    if fmt not in SUPPORTED_FORMATS:
        raise ValidationError(
            f"Unsupported image format: {fmt or 'unknown'}",
            field="image",
            constraint=", ".join(sorted(SUPPORTED_FORMATS)),
        )

    return fmt, width, height


def to_png(data: bytes) -> bytes:
    """
    Re-encode image bytes as PNG.

    The encoder reads staged frames by their ``.png`` extension, so JPEG or
    WEBP edits have to be converted before they are written.

    Raises:
        ValidationError: If the bytes cannot be decoded
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            if img.mode not in ("RGB", "RGBA"):
                img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
            buffer = io.BytesIO()
            img.save(buffer, format="PNG")
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationError(f"Unreadable image data: {e}", field="image")
    return buffer.getvalue()
