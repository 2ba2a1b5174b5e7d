"""Narrative text generation."""
import json
import logging
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI
from pydantic import BaseModel

from family_stories.core.errors import GenerationError
from family_stories.services.generation.prompts import (
    get_book_chapter_prompt,
    get_book_index_prompt,
    get_story_update_prompt,
    get_upcoming_questions_prompt,
)
from family_stories.services.stories.models import Category, Story, StoryPreferences

logger = logging.getLogger(__name__)


class StoryUpdate(BaseModel):
    """Structured result of summarizing a transcript into a story."""

    story_summary: str
    story_text: str
    title: Optional[str] = None
    description: Optional[str] = None


class BookChapterPlan(BaseModel):
    number: int
    title: str
    story_index: int


class BookIndex(BaseModel):
    title: str
    cover_description: str = ""
    chapters: List[BookChapterPlan] = []


class NarrativeGenerator:
    """Service for LLM-powered story writing."""

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-4o"):
        self.client = client
        self.model = model

    async def _complete(self, prompt: str, json_mode: bool) -> str:
        kwargs: Dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "system", "content": prompt}],
                **kwargs,
            )
        except Exception as e:
            logger.error(f"[NARRATIVE] Completion failed: {type(e).__name__}: {e}")
            raise GenerationError(f"Text generation failed: {e}") from e
        return response.choices[0].message.content or ""

    async def _complete_json(self, prompt: str) -> Dict[str, Any]:
        content = await self._complete(prompt, json_mode=True)
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"[NARRATIVE] Invalid JSON from model: {content[:200]}")
            raise GenerationError("Model returned invalid JSON") from e

    async def summarize_story(
        self,
        story: Story,
        category: Category,
        preferences: StoryPreferences,
        transcript: str,
        onboarding_summary: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> StoryUpdate:
        """Merge a new transcript into the story's running summary and narrative."""
        prompt = get_story_update_prompt(
            story, category, preferences, transcript, onboarding_summary, user_name
        )
        logger.info(
            f"[NARRATIVE] Summarizing story {story.id} - transcript length: {len(transcript)}"
        )
        result = await self._complete_json(prompt)
        if not result.get("storySummary") or not result.get("storyText"):
            raise GenerationError("Model response is missing storySummary or storyText")
        return StoryUpdate(
            story_summary=result["storySummary"],
            story_text=result["storyText"],
            title=result.get("title"),
            description=result.get("description"),
        )

    async def generate_book_index(self, stories: List[Story]) -> BookIndex:
        result = await self._complete_json(get_book_index_prompt(stories))
        chapters = [
            BookChapterPlan(
                number=chapter.get("number", position + 1),
                title=chapter.get("title", ""),
                story_index=int(chapter.get("storyIndex", position)),
            )
            for position, chapter in enumerate(result.get("chapters", []))
        ]
        return BookIndex(
            title=result.get("title", "Untitled"),
            cover_description=result.get("coverDescription", ""),
            chapters=chapters,
        )

    async def generate_book_chapter(
        self,
        story: Story,
        chapter_title: str,
        chapters_so_far: str,
        preferences: StoryPreferences,
    ) -> str:
        prompt = get_book_chapter_prompt(story, chapter_title, chapters_so_far, preferences)
        return await self._complete(prompt, json_mode=False)

    async def generate_upcoming_questions(self, summaries: List[str], count: int = 5) -> List[str]:
        result = await self._complete_json(get_upcoming_questions_prompt(summaries, count))
        questions = result.get("questions", [])
        return [q for q in questions if isinstance(q, str) and q.strip()][:count]
