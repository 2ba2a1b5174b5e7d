"""Side effects run after a call has been reconciled.

Hooks run in the background after the webhook has answered. They never affect
the reconciliation result; a failing hook is logged and dropped.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, List

from family_stories.db.base import UPCOMING_QUESTIONS, DocumentStore, call_history_collection
from family_stories.services.calls.reconciler import ReconciliationOutcome, ReconciliationStatus
from family_stories.services.generation.narrative import NarrativeGenerator
from family_stories.services.stories.models import utc_now
from family_stories.services.stories.repository import StoryRepository

logger = logging.getLogger(__name__)


class PostCallHook(ABC):
    """Abstract base class for post-reconciliation hooks."""

    name = "hook"

    @abstractmethod
    async def run(self, outcome: ReconciliationOutcome, call_id: str) -> None:
        pass


class VideoCompletionWatcher(PostCallHook):
    """Waits for the external renderer to finish the session video, then logs the call.

    The renderer sets ``videoComplete``/``videoUrl`` on the session. Once they
    appear (or attempts run out) an entry is written to the user's call history.
    """

    name = "video_completion"

    def __init__(
        self,
        repository: StoryRepository,
        store: DocumentStore,
        attempts: int = 30,
        interval_seconds: float = 10.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.store = store
        self.attempts = attempts
        self.interval_seconds = interval_seconds
        self.clock = clock

    async def run(self, outcome: ReconciliationOutcome, call_id: str) -> None:
        session = None
        for attempt in range(self.attempts):
            session = await self.repository.get_session(outcome.story_id, outcome.session_id)
            if session is not None and session.video_complete and session.video_url:
                break
            if attempt < self.attempts - 1:
                await asyncio.sleep(self.interval_seconds)
        else:
            logger.warning(
                f"[HOOK] Video for session {outcome.session_id} not ready after "
                f"{self.attempts} attempts, logging call without it"
            )

        await self.store.set(
            call_history_collection(outcome.user_id),
            call_id,
            {
                "callId": call_id,
                "storyId": outcome.story_id,
                "sessionId": outcome.session_id,
                "videoUrl": session.video_url if session else None,
                "recordingUrl": session.recording_url if session else None,
                "createdAt": self.clock(),
            },
        )
        logger.info(f"[HOOK] Logged call {call_id} in history of user {outcome.user_id}")


class UpcomingQuestionsGenerator(PostCallHook):
    """Regenerates the questions the interviewer should ask a user next."""

    name = "upcoming_questions"

    def __init__(
        self,
        repository: StoryRepository,
        store: DocumentStore,
        narrative: NarrativeGenerator,
        count: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.store = store
        self.narrative = narrative
        self.count = count
        self.clock = clock

    async def run(self, outcome: ReconciliationOutcome, call_id: str) -> None:
        stories = await self.repository.list_book_stories(outcome.user_id)
        summaries = [story.story_summary for story in stories if story.story_summary]
        questions = await self.narrative.generate_upcoming_questions(summaries, self.count)
        await self.store.set(
            UPCOMING_QUESTIONS,
            outcome.user_id,
            {"userId": outcome.user_id, "questions": questions, "updatedAt": self.clock()},
        )
        logger.info(f"[HOOK] Stored {len(questions)} upcoming questions for user {outcome.user_id}")


async def run_post_call_hooks(
    hooks: List[PostCallHook], outcome: ReconciliationOutcome, call_id: str
) -> None:
    """Run hooks concurrently, isolating failures."""
    if outcome.status != ReconciliationStatus.PROCESSED:
        return

    async def _run(hook: PostCallHook) -> None:
        try:
            await hook.run(outcome, call_id)
        except Exception as e:
            logger.error(
                f"[HOOK] {hook.name} failed for call {call_id}: {type(e).__name__}: {e}",
                exc_info=True,
            )

    await asyncio.gather(*(_run(hook) for hook in hooks))
