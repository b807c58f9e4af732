"""
Security Utilities
==================

Prompt sanitization, secret redaction and session-scoped path helpers.
"""

import re
import logging
from pathlib import Path
from typing import Union

from .exceptions import ValidationError

logger = logging.getLogger(__name__)


_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-]{1,64}$")


def sanitize_prompt(prompt: str) -> str:
    """
    Strip control characters from a user prompt.

    Unlike a general-purpose sanitizer this never truncates: the user's
    intent is preserved verbatim and length limits are enforced separately.

    Args:
        prompt: User-provided prompt

    Returns:
        Sanitized prompt string

    Raises:
        ValidationError: If the prompt is empty after sanitization
    """
    sanitized = "".join(char for char in (prompt or "") if char.isprintable() or char in "\n\t")
    sanitized = sanitized.strip()

    if not sanitized:
        raise ValidationError(
            "Please enter a prompt",
            field="prompt",
            constraint="non-empty",
        )

    return sanitized


def redact_api_key(text: str) -> str:
    """
    Redact API keys and sensitive tokens from text.

    Args:
        text: Text that might contain API keys

    Returns:
        Text with API keys redacted
    """
    if not text:
        return text

    patterns = [
        # Generic Bearer / Key tokens
        (r"(Bearer|Key)\s+[A-Za-z0-9_\-\.:]+", r"\1 ***REDACTED***"),
        # Google API keys
        (r"AIza[A-Za-z0-9_\-]{35}", "AIza***REDACTED***"),
        # Query-string keys
        (r"([?&]key=)[^&\s]+", r"\1***REDACTED***"),
        # Environment variable patterns
        (
            r"(FAL_KEY|FAL_API_KEY|GOOGLE_API_KEY|GOOGLE_GENERATIVE_AI_API_KEY)=[^\s]+",
            r"\1=***REDACTED***",
        ),
    ]

    result = text
    for pattern, replacement in patterns:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE)

    return result


def session_dir(temp_root: Union[str, Path], session_id: str, *parts: str) -> Path:
    """
    Build a temp directory path scoped to one session.

    Concurrent sessions never share a directory because the session id is
    part of the path.

    Raises:
        ValidationError: If the session id could escape the temp root
    """
    if not _SESSION_ID_PATTERN.match(session_id or ""):
        raise ValidationError(
            "Invalid session id",
            field="session_id",
            value=session_id,
            constraint="[A-Za-z0-9_-]{1,64}",
        )
    return Path(temp_root).joinpath(f"restyler_{session_id}", *parts)
