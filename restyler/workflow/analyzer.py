"""
Consistency Analyzer
====================

Uses a multimodal reasoning model to describe an edit precisely enough
that the image-edit service can reproduce it on other frames.

Two modes:
- Diff specification: compare frame 0 before and after editing, once per
  session, and describe only the changes the prompt asked for.
- Merge instruction: per frame, describe how to transplant the change
  visible in the previous edited frame onto the current frame.
"""

import logging
import time

from ..api.google import GeminiClient, InlineImage
from .prompts import truncate
from .session import ConsistencySpec, SpecKind

logger = logging.getLogger(__name__)

DEFAULT_SPEC_CEILING = 5000


DIFF_META_PROMPT = """Compare the two images below and write a precise, reproducible specification for applying the edit "{prompt}".

RULES:
- Describe ONLY changes that relate to "{prompt}". Ignore every other difference.
- Stay under {ceiling} characters.

For each relevant change, state:
- Physical attributes: size, shape, proportions
- Colors: concrete RGB or hex values
- Position: exact placement and alignment
- Lighting: shadows, highlights, reflections
- Materials: transparency, texture, finish

Another image model must be able to apply identical changes to a different frame of the same video using only your specification.

Example for "add sunglasses":
"Add aviator sunglasses: thin gold wire frame, dark gray lenses (RGB 45,45,45 at 80% opacity), centered on the nose bridge just above the nostrils, casting a soft gray shadow on both cheeks; eyes faintly visible through the tint."

Specification for "{prompt}":"""


MERGE_META_PROMPT = """You write MERGE instructions for an image editor that combines elements of two images.

The user asked for this edit: "{prompt}"

You receive two frames of the same video:
- the CURRENT frame, which has the new pose, position and scene but not the edit
- the PREVIOUS EDITED frame, which already shows the edit

1. Identify exactly what "{prompt}" changed in the previous edited frame (style, lighting, objects, colors, effects).
2. Identify what in the current frame must be preserved (pose, framing, scene layout).
3. Write one instruction in this form:

"You have two images to merge: one shows [the change], and one shows [the current scene]. Take [the specific visual elements] from the first image and apply them to the [target scene] of the second image. The result combines [the change] with [the current positioning]."

Be explicit about what comes from which image, and describe a combination of the two rather than an edit guided by a reference.

Merge instruction:"""


class ConsistencyAnalyzer:
    """
    Produces consistency specifications with a Gemini model.

    Image references may be URLs, data URIs or paths; URLs are downloaded
    first, so an expired edited-frame URL surfaces as ReferenceExpiredError.
    """

    def __init__(
        self,
        client: GeminiClient,
        spec_ceiling: int = DEFAULT_SPEC_CEILING,
    ):
        """
        Initialize the analyzer.

        Args:
            client: Gemini client used for generation
            spec_ceiling: Maximum length of a diff specification
        """
        self.client = client
        self.spec_ceiling = spec_ceiling

    async def analyze_diff(
        self,
        prompt: str,
        original_image: str,
        edited_image: str,
    ) -> ConsistencySpec:
        """
        Describe how the reference frame changed under ``prompt``.

        Args:
            prompt: The user's edit prompt
            original_image: Frame 0 before editing
            edited_image: Frame 0 after editing

        Returns:
            ConsistencySpec of kind DIFF, at most ``spec_ceiling`` characters
        """
        started = time.monotonic()
        before = await self._load(original_image)
        after = await self._load(edited_image)

        text = await self.client.generate([
            DIFF_META_PROMPT.format(prompt=prompt, ceiling=self.spec_ceiling),
            "ORIGINAL IMAGE (BEFORE):",
            before,
            "EDITED IMAGE (AFTER):",
            after,
        ])

        if len(text) > self.spec_ceiling:
            logger.warning(f"Diff specification too long ({len(text)} chars), truncating to {self.spec_ceiling}")
            text = truncate(text, self.spec_ceiling)

        logger.info(f"Diff specification generated in {time.monotonic() - started:.2f}s ({len(text)} chars)")
        logger.debug(f"Diff specification: {text[:300]}")
        return ConsistencySpec(kind=SpecKind.DIFF, text=text)

    async def merge_instruction(
        self,
        prompt: str,
        current_image: str,
        previous_edited_image: str,
    ) -> ConsistencySpec:
        """
        Describe how to carry the previous frame's edit onto the current frame.

        Returns:
            ConsistencySpec of kind MERGE (unbounded; the caller fits it to
            the edit prompt ceiling)
        """
        started = time.monotonic()
        current = await self._load(current_image)
        previous = await self._load(previous_edited_image)

        text = await self.client.generate([
            MERGE_META_PROMPT.format(prompt=prompt),
            current,
            previous,
        ])

        logger.debug(f"Merge instruction generated in {time.monotonic() - started:.2f}s ({len(text)} chars)")
        return ConsistencySpec(kind=SpecKind.MERGE, text=text.strip())

    async def _load(self, ref: str) -> InlineImage:
        data, mime_type = await self.client.fetch_image(ref)
        return InlineImage(data=data, mime_type=mime_type)

    async def close(self) -> None:
        await self.client.close()
