"""Book assembly from a user's stories."""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import BaseModel

from family_stories.core.errors import NoStoriesError
from family_stories.db.base import DocumentStore, books_collection
from family_stories.services.generation.images import ImageGenerator
from family_stories.services.generation.narrative import NarrativeGenerator
from family_stories.services.stories.directory import Directory
from family_stories.services.stories.models import utc_now
from family_stories.services.stories.repository import StoryRepository

logger = logging.getLogger(__name__)


class BookChapter(BaseModel):
    order: int
    title: str
    story_id: str
    story: str
    image_url: Optional[str] = None

    def to_document(self) -> dict:
        return {
            "order": self.order,
            "title": self.title,
            "storyId": self.story_id,
            "story": self.story,
            "imageUrl": self.image_url,
        }


class BookResult(BaseModel):
    book_id: str
    title: str
    chapters: List[BookChapter]
    image_url: Optional[str] = None


class BookService:
    """Builds a book: an index first, then one chapter per indexed story."""

    def __init__(
        self,
        store: DocumentStore,
        repository: StoryRepository,
        directory: Directory,
        narrative: NarrativeGenerator,
        images: ImageGenerator,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.repository = repository
        self.directory = directory
        self.narrative = narrative
        self.images = images
        self.clock = clock

    async def create_book(self, user_id: str) -> BookResult:
        """Assemble a book for a user.

        The book document is created up front with status ``in-progress`` and
        ends as ``completed`` or ``error``.

        Raises:
            NoStoriesError: the user has no stories to put in a book.
        """
        preferences = await self.directory.get_preferences(user_id)
        collection = books_collection(user_id)
        book_id = self.store.new_id(collection)
        await self.store.set(collection, book_id, {"status": "in-progress", "createdAt": self.clock()})
        logger.info(f"[BOOK] Started book {book_id} for user {user_id}")

        try:
            stories = await self.repository.list_book_stories(user_id)
            if not stories:
                raise NoStoriesError("No stories found for this user")

            index = await self.narrative.generate_book_index(stories)
            cover_url = await self.images.generate_cover_image(index.cover_description)

            chapters: List[BookChapter] = []
            chapters_so_far = ""
            for plan in index.chapters:
                if not 0 <= plan.story_index < len(stories):
                    logger.warning(
                        f"[BOOK] Index references story {plan.story_index} of {len(stories)}, skipping"
                    )
                    continue
                story = stories[plan.story_index]
                content = await self.narrative.generate_book_chapter(
                    story, plan.title, chapters_so_far, preferences
                )
                chapters.append(
                    BookChapter(
                        order=len(chapters) + 1,
                        title=plan.title,
                        story_id=story.id,
                        story=content,
                        image_url=story.image_url,
                    )
                )
                summary = story.story_summary or "(No summary available)"
                chapters_so_far += f"\n\nTitle: {plan.title}\nSummary: {summary}"
                logger.info(f"[BOOK] Wrote chapter {len(chapters)} '{plan.title}' of book {book_id}")

            await self.store.update(
                collection,
                book_id,
                {
                    "status": "completed",
                    "title": index.title,
                    "imageUrl": cover_url,
                    "chapters": [chapter.to_document() for chapter in chapters],
                    "updatedAt": self.clock(),
                },
            )
        except Exception as e:
            logger.error(f"[BOOK] Error creating book {book_id}: {type(e).__name__}: {e}")
            await self.store.update(
                collection, book_id, {"status": "error", "error": str(e), "updatedAt": self.clock()}
            )
            raise

        return BookResult(book_id=book_id, title=index.title, chapters=chapters, image_url=cover_url)
