"""Story record repository."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from family_stories.core.errors import StoryNotFoundError
from family_stories.db.base import CALL_INDEX, STORIES, DocumentStore, StoredDocument, WriteOp
from family_stories.services.stories.models import (
    SCHEDULE_FAILED,
    Story,
    StorySession,
    new_session_document,
    new_session_id,
)

logger = logging.getLogger(__name__)


def session_path(session_id: str, field: str) -> str:
    return f"sessions.{session_id}.{field}"


def _parse_stories(documents: List[StoredDocument]) -> List[Story]:
    """Parse story documents one by one, skipping any that do not validate."""
    stories = []
    for doc in documents:
        try:
            stories.append(Story.from_document(doc.id, doc.data))
        except ValidationError as e:
            logger.warning(
                f"[STORY REPO] Skipping malformed story {doc.id}: {e.error_count()} validation error(s)"
            )
    return stories


class SessionMatch(BaseModel):
    """A story together with the session that owns a call id."""

    story: Story
    session_id: str
    session: StorySession


class StoryRepository:
    """Reads and writes story documents and their nested sessions.

    Writes are expressed as field-path updates that touch only one session's
    leaves, so concurrent writers to sibling sessions never clobber each other.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_story(self, story_id: str) -> Optional[Story]:
        data = await self.store.get(STORIES, story_id)
        if data is None:
            return None
        return Story.from_document(story_id, data)

    async def list_stories(self) -> List[Story]:
        """Every story that parses. Malformed documents are logged and skipped."""
        documents = await self.store.list_documents(STORIES)
        return _parse_stories(documents)

    async def list_book_stories(self, user_id: str) -> List[Story]:
        """Stories of a user that are not the onboarding story."""
        # Filtered here: documents written before the flag existed lack the field
        documents = await self.store.query(STORIES, [("userId", "==", user_id)])
        stories = _parse_stories(documents)
        return [story for story in stories if not story.is_onboarding_story]

    async def create_story(
        self, user_id: str, category_id: str, question: str, now: datetime
    ) -> str:
        """Create an empty story awaiting its first session."""
        story_id = await self.store.add(
            STORIES,
            {
                "userId": user_id,
                "categoryId": category_id,
                "title": None,
                "description": None,
                "storyText": None,
                "storySummary": None,
                "imageUrl": None,
                "initialQuestion": question,
                "isOnboardingStory": False,
                "creationTime": now,
                "lastUpdationTime": now,
                "nextSchedule": None,
                "sessions": {},
            },
        )
        logger.info(f"[STORY REPO] Created story {story_id} for user {user_id}")
        return story_id

    async def add_session(
        self,
        story_id: str,
        call_id: str,
        now: datetime,
        *,
        clear_schedule: bool = False,
        video_complete: bool = False,
    ) -> str:
        """Record a newly placed call as a session and index it by call id.

        The session and its index entry are written in one atomic batch.
        """
        session_id = new_session_id(now)
        story_updates: Dict[str, Any] = {
            f"sessions.{session_id}": new_session_document(call_id, now, video_complete),
            "lastUpdationTime": now,
        }
        if clear_schedule:
            story_updates["nextSchedule"] = None

        await self.store.commit(
            [
                WriteOp(kind="update", collection=STORIES, doc_id=story_id, data=story_updates),
                WriteOp(
                    kind="set",
                    collection=CALL_INDEX,
                    doc_id=call_id,
                    data={"storyId": story_id, "sessionId": session_id, "creationTime": now},
                ),
            ]
        )
        logger.info(
            f"[STORY REPO] Added session {session_id} (call {call_id}) to story {story_id}"
        )
        return session_id

    async def find_session_by_call_id(self, call_id: str) -> Optional[SessionMatch]:
        """Locate the story and session that own a call id.

        Uses the call index first; falls back to scanning every story when the
        index has no (or a stale) entry.
        """
        entry = await self.store.get(CALL_INDEX, call_id)
        if entry:
            story = await self.get_story(entry.get("storyId", ""))
            session_id = entry.get("sessionId")
            if story and session_id in story.sessions and story.sessions[session_id].call_id == call_id:
                return SessionMatch(story=story, session_id=session_id, session=story.sessions[session_id])
            logger.warning(f"[STORY REPO] Stale call index entry for call {call_id}, scanning")

        for story in await self.list_stories():
            for session_id, session in story.sessions.items():
                if session.call_id == call_id:
                    return SessionMatch(story=story, session_id=session_id, session=session)
        return None

    async def get_session(self, story_id: str, session_id: str) -> Optional[StorySession]:
        story = await self.get_story(story_id)
        if story is None:
            raise StoryNotFoundError(f"Story {story_id} not found")
        return story.sessions.get(session_id)

    async def refresh_session(
        self, story_id: str, session_id: str, session_fields: Dict[str, Any], now: datetime
    ) -> None:
        """Overwrite the given session leaves without touching generative state."""
        updates = {session_path(session_id, key): value for key, value in session_fields.items()}
        updates[session_path(session_id, "lastUpdatedAt")] = now
        await self.store.update(STORIES, story_id, updates)

    async def apply_generative_update(
        self,
        story_id: str,
        session_id: str,
        session_fields: Dict[str, Any],
        story_fields: Dict[str, Any],
        now: datetime,
    ) -> bool:
        """Persist session data, narrative fields and ``updated = true`` in one write.

        The write only happens while the session is still not updated in the store.

        Returns:
            False if another writer already marked the session updated.
        """
        updates = {session_path(session_id, key): value for key, value in session_fields.items()}
        updates[session_path(session_id, "lastUpdatedAt")] = now
        updates[session_path(session_id, "updated")] = True
        updates.update(story_fields)
        updates["lastUpdationTime"] = now

        def _still_pending(data: Dict[str, Any]) -> bool:
            session = (data.get("sessions") or {}).get(session_id) or {}
            return not session.get("updated", False)

        return await self.store.update_if(STORIES, story_id, _still_pending, updates)

    async def mark_schedule_failed(self, story_id: str, error: str, now: datetime) -> None:
        await self.store.update(
            STORIES,
            story_id,
            {
                "nextSchedule.status": SCHEDULE_FAILED,
                "nextSchedule.error": error,
                "lastUpdationTime": now,
            },
        )
