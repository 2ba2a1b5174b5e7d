"""Immediate web call initiation."""
import logging
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel

from family_stories.core.errors import CallPlatformError
from family_stories.services.calls.platform import CallPlatformClient
from family_stories.services.stories.directory import Directory
from family_stories.services.stories.models import NO_PREVIOUS_CONTEXT, utc_now
from family_stories.services.stories.repository import StoryRepository

logger = logging.getLogger(__name__)


class WebCallResult(BaseModel):
    access_token: str
    call_id: str
    story_id: str
    session_id: str


class WebCallService:
    """Starts a browser voice call and records it as a story session."""

    def __init__(
        self,
        repository: StoryRepository,
        directory: Directory,
        platform: CallPlatformClient,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.directory = directory
        self.platform = platform
        self.clock = clock

    async def create_web_call(
        self,
        user_id: str,
        category_id: str,
        question: str,
        existing_story_id: Optional[str] = None,
    ) -> WebCallResult:
        agent_id = await self.directory.get_agent_id(user_id, category_id)

        summary = NO_PREVIOUS_CONTEXT
        existing_story = None
        if existing_story_id:
            existing_story = await self.repository.get_story(existing_story_id)
            if existing_story is not None:
                summary = existing_story.context_summary()
            else:
                logger.warning(
                    f"[WEB CALL] Story {existing_story_id} not found, a new story will be created"
                )

        response = await self.platform.create_web_call(
            agent_id=agent_id,
            dynamic_variables={"initial_question": question, "summary": summary},
        )
        access_token = (response or {}).get("access_token")
        call_id = (response or {}).get("call_id")
        if not access_token or not call_id:
            raise CallPlatformError("Failed to get access token or call ID")

        now = self.clock()
        if existing_story is not None:
            story_id = existing_story.id
        else:
            story_id = await self.repository.create_story(user_id, category_id, question, now)

        session_id = await self.repository.add_session(story_id, call_id, now)
        logger.info(
            f"[WEB CALL] Created web call {call_id} - story: {story_id}, session: {session_id}"
        )
        return WebCallResult(
            access_token=access_token,
            call_id=call_id,
            story_id=story_id,
            session_id=session_id,
        )
