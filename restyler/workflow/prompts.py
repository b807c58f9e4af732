"""
Prompt Composition
==================

Builds the text sent to the image-edit service for each frame.

The edit service rejects prompts above a fixed character ceiling. The
user's own prompt is never shortened; generated text (diff specifications,
merge instructions, annotations) gives way instead.
"""

from ..core.exceptions import ValidationError

DEFAULT_PROMPT_CEILING = 2000

SPEC_SEPARATOR = "\n\nApply these exact changes consistently:\n"
ELLIPSIS = "..."


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to at most ``limit`` characters, marking the cut with an ellipsis."""
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    if limit <= len(ELLIPSIS):
        return text[:limit]
    return text[:limit - len(ELLIPSIS)] + ELLIPSIS


def validate_prompt_length(prompt: str, ceiling: int = DEFAULT_PROMPT_CEILING) -> str:
    """
    Reject a user prompt that could never fit the edit service.

    Raises:
        ValidationError: If ``prompt`` exceeds ``ceiling``
    """
    if len(prompt) > ceiling:
        raise ValidationError(
            f"Prompt is {len(prompt)} characters; the limit is {ceiling}",
            field="prompt",
            constraint=f"<= {ceiling} characters",
        )
    return prompt


def reference_prompt(prompt: str, frame_count: int, ceiling: int = DEFAULT_PROMPT_CEILING) -> str:
    """Prompt for frame 0, which establishes the look every other frame follows."""
    annotated = (
        f"Edit this video frame (frame 1 of {frame_count}):\n\n"
        f"\"{prompt}\"\n\n"
        "This is the first frame - establish the change distinctly so it can be "
        "reproduced consistently across the rest of the video."
    )
    return annotated if len(annotated) <= ceiling else prompt


def compose_edit_prompt(
    prompt: str,
    specification: str,
    ceiling: int = DEFAULT_PROMPT_CEILING,
) -> str:
    """
    Combine the user prompt with a consistency specification.

    Room for the whole prompt is reserved first; the specification is cut
    to whatever remains. When nothing remains the prompt goes alone.
    """
    specification = (specification or "").strip()
    if not specification:
        return prompt

    room = ceiling - len(prompt) - len(SPEC_SEPARATOR)
    if room <= len(ELLIPSIS):
        return prompt

    return prompt + SPEC_SEPARATOR + truncate(specification, room)


def bound_instruction(text: str, ceiling: int = DEFAULT_PROMPT_CEILING) -> str:
    """Fit a generated merge instruction under the ceiling."""
    return truncate(text.strip(), ceiling)


def continuity_fallback_prompt(
    prompt: str,
    frame_number: int,
    frame_count: int,
    ceiling: int = DEFAULT_PROMPT_CEILING,
) -> str:
    """Static continuity prompt, used when no merge instruction is available."""
    text = (
        f"Edit this video frame (frame {frame_number} of {frame_count}):\n\n"
        f"\"{prompt}\"\n\n"
        "CONSISTENCY REQUIREMENTS:\n"
        "- This frame belongs to a video sequence; match the previous edited frame\n"
        "- Keep the same editing style, color grading and effects as the first frame\n"
        "- Keep lighting, contrast and saturation identical\n"
        "- Preserve smooth visual continuity between frames\n\n"
        "Apply the requested edit while matching the established look exactly."
    )
    return text if len(text) <= ceiling else prompt
