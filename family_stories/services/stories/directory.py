"""Lookups for users, categories and calling agents."""
import logging
from typing import Optional

from family_stories.core.errors import AgentNotFoundError, CategoryNotFoundError
from family_stories.db.base import AGENTS, CATEGORIES, STORIES, USERS, DocumentStore
from family_stories.services.stories.models import Category, StoryPreferences, UserProfile

logger = logging.getLogger(__name__)


class Directory:
    """Read-only access to the ``users``, ``categories`` and ``agents`` collections."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        data = await self.store.get(USERS, user_id)
        if data is None:
            return None
        return UserProfile.model_validate({**data, "id": user_id})

    async def get_preferences(self, user_id: str) -> StoryPreferences:
        """User's narrative preferences, or the baseline when none are stored."""
        user = await self.get_user(user_id)
        return user.preferences() if user else StoryPreferences()

    async def get_onboarding_summary(self, user: Optional[UserProfile]) -> Optional[str]:
        if user is None or not user.onboarding_story_id:
            return None
        data = await self.store.get(STORIES, user.onboarding_story_id)
        return (data or {}).get("storySummary")

    async def get_category(self, category_id: Optional[str]) -> Category:
        data = await self.store.get(CATEGORIES, category_id) if category_id else None
        if data is None:
            raise CategoryNotFoundError(f"Category {category_id} not found")
        return Category.model_validate({**data, "id": category_id})

    async def get_agent_id(self, user_id: str, category_id: Optional[str]) -> str:
        """Resolve the calling agent configured for a user and category."""
        matches = await self.store.query(
            AGENTS, [("userId", "==", user_id), ("categoryId", "==", category_id)]
        )
        for doc in matches:
            agent_id = doc.data.get("agentId")
            if agent_id:
                return agent_id
        logger.warning(
            f"[DIRECTORY] No agent found - user: {user_id}, category: {category_id}"
        )
        raise AgentNotFoundError("No agent found for this user and category")
