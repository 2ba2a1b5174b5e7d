"""Story and book-cover illustration."""
import logging
from typing import Optional, Protocol

from openai import AsyncOpenAI

from family_stories.services.generation.prompts import (
    get_cover_image_prompt,
    get_story_image_prompt,
)
from family_stories.services.stories.models import Category

logger = logging.getLogger(__name__)


class ImageStore(Protocol):
    async def store_remote_image(self, source_url: str, content_type: str = "image/png") -> str:
        ...


class ImageGenerator:
    """Generates images with OpenAI and re-hosts them in blob storage.

    Failures are logged and reported as ``None``: a missing image never blocks
    the text that goes with it.
    """

    def __init__(self, client: AsyncOpenAI, image_store: ImageStore, model: str = "dall-e-3"):
        self.client = client
        self.image_store = image_store
        self.model = model

    async def _generate(self, prompt: str, **options) -> Optional[str]:
        try:
            response = await self.client.images.generate(
                model=self.model,
                prompt=prompt,
                n=1,
                size="1024x1024",
                **options,
            )
            if not response.data or not response.data[0].url:
                raise ValueError("No image URL returned from OpenAI")
            return await self.image_store.store_remote_image(response.data[0].url)
        except Exception as e:
            logger.error(f"[IMAGE] Error generating image: {type(e).__name__}: {e}", exc_info=True)
            return None

    async def generate_story_image(
        self, story_summary: Optional[str], category: Category
    ) -> Optional[str]:
        return await self._generate(
            get_story_image_prompt(story_summary, category), quality="hd", style="vivid"
        )

    async def generate_cover_image(self, cover_description: str) -> Optional[str]:
        return await self._generate(get_cover_image_prompt(cover_description))
