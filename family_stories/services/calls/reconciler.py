"""Call-completion reconciliation.

Matches a ``call_ended`` event to the story session that placed the call, runs
the (expensive, non-idempotent) generative update at most once per session and
merges the call data into the story document.

Idempotency has two layers:

* the in-process :class:`DedupCache` rejects deliveries of a call id that is
  already in flight or was recently processed;
* the persisted ``sessions.<id>.updated`` flag, checked again inside the
  conditional write, guarantees that a session is enriched only once even when
  the cache was lost (restart) or bypassed.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from family_stories.core.errors import (
    CategoryNotFoundError,
    FamilyStoriesError,
    ReconciliationError,
)
from family_stories.services.calls.dedup import DedupCache
from family_stories.services.generation.images import ImageGenerator
from family_stories.services.generation.narrative import NarrativeGenerator
from family_stories.services.stories.directory import Directory
from family_stories.services.stories.models import (
    ONBOARDING_CATEGORY,
    Story,
    StoryPreferences,
    utc_now,
)
from family_stories.services.stories.repository import SessionMatch, StoryRepository

logger = logging.getLogger(__name__)


class ReconciliationStatus(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"


class CallCompletionEvent(BaseModel):
    """The parts of a ``call_ended`` event this service uses."""

    call_id: str
    transcript: Optional[str] = None
    transcript_object: List[Dict[str, Any]] = []
    recording_url: Optional[str] = None


class ReconciliationOutcome(BaseModel):
    status: ReconciliationStatus
    story_id: Optional[str] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    generated: bool = False


def sanitize_transcript_turns(turns: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Project upstream transcript turns onto the stored shape.

    Only role, content, word timings and the response id are kept, so new
    fields in the call platform's payload never leak into stored documents.
    """
    cleaned = []
    for turn in turns or []:
        entry: Dict[str, Any] = {
            "role": turn.get("role"),
            "content": turn.get("content"),
            "words": [
                {"word": word.get("word"), "start": word.get("start"), "end": word.get("end")}
                for word in turn.get("words") or []
            ],
        }
        metadata = turn.get("metadata")
        if isinstance(metadata, dict) and "response_id" in metadata:
            entry["metadata"] = {"response_id": metadata["response_id"]}
        cleaned.append(entry)
    return cleaned


class CallReconciler:
    """Reconciles call-completion events with story sessions."""

    def __init__(
        self,
        repository: StoryRepository,
        directory: Directory,
        narrative: NarrativeGenerator,
        images: ImageGenerator,
        dedup: DedupCache,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.directory = directory
        self.narrative = narrative
        self.images = images
        self.dedup = dedup
        self.clock = clock

    async def handle_call_completion(self, event: CallCompletionEvent) -> ReconciliationOutcome:
        """Process one ``call_ended`` event.

        Raises:
            ReconciliationError (or a FamilyStoriesError subclass): processing
                failed; the dedup marker has been released so a redelivery can retry.
        """
        call_id = event.call_id
        if not self.dedup.try_acquire(call_id):
            logger.info(
                f"[RECONCILE] Call {call_id} is already being processed or has finished "
                f"processing. Skipping."
            )
            return ReconciliationOutcome(status=ReconciliationStatus.DUPLICATE)

        try:
            match = await self.repository.find_session_by_call_id(call_id)
            if match is None:
                logger.warning(f"[RECONCILE] No story session found for call {call_id}")
                # Nothing was started; let a later delivery try again
                self.dedup.release(call_id)
                return ReconciliationOutcome(status=ReconciliationStatus.NOT_FOUND)

            generated = await self._merge(match, event)
        except Exception as e:
            self.dedup.release(call_id)
            logger.error(
                f"[RECONCILE] Error processing call {call_id}: {type(e).__name__}: {e}",
                exc_info=True,
            )
            if isinstance(e, FamilyStoriesError):
                raise
            raise ReconciliationError(f"Failed to process call {call_id}: {e}") from e

        self.dedup.finish(call_id)
        logger.info(
            f"[RECONCILE] Processed call {call_id} - story: {match.story.id}, "
            f"session: {match.session_id}, generated: {generated}"
        )
        return ReconciliationOutcome(
            status=ReconciliationStatus.PROCESSED,
            story_id=match.story.id,
            session_id=match.session_id,
            user_id=match.story.user_id,
            generated=generated,
        )

    async def _merge(self, match: SessionMatch, event: CallCompletionEvent) -> bool:
        """Write the event into the session. Returns True if generative work ran."""
        session_fields = {
            "transcript": event.transcript,
            "transcript_object": sanitize_transcript_turns(event.transcript_object),
            "recording_url": event.recording_url,
        }

        if match.session.updated:
            logger.info(
                f"[RECONCILE] Session {match.session_id} already updated, refreshing call data only"
            )
            await self.repository.refresh_session(
                match.story.id, match.session_id, session_fields, self.clock()
            )
            return False

        story_fields = await self._generate_story_fields(match.story, event.transcript or "")
        applied = await self.repository.apply_generative_update(
            match.story.id, match.session_id, session_fields, story_fields, self.clock()
        )
        if not applied:
            logger.warning(
                f"[RECONCILE] Session {match.session_id} was updated concurrently, "
                f"discarding generated narrative"
            )
            await self.repository.refresh_session(
                match.story.id, match.session_id, session_fields, self.clock()
            )
        return applied

    async def _generate_story_fields(self, story: Story, transcript: str) -> Dict[str, Any]:
        try:
            category = await self.directory.get_category(story.category_id)
        except CategoryNotFoundError:
            if not story.is_onboarding_story:
                raise
            category = ONBOARDING_CATEGORY

        user = await self.directory.get_user(story.user_id)
        preferences = user.preferences() if user else StoryPreferences()
        onboarding_summary = await self.directory.get_onboarding_summary(user)

        update = await self.narrative.summarize_story(
            story,
            category,
            preferences,
            transcript,
            onboarding_summary=onboarding_summary,
            user_name=user.name if user else None,
        )

        fields: Dict[str, Any] = {
            "storySummary": update.story_summary,
            "storyText": update.story_text,
        }
        # Never overwrite fields the user may have curated
        if story.title is None and update.title:
            fields["title"] = update.title
        if story.description is None and update.description:
            fields["description"] = update.description

        if not story.image_url:
            image_url = await self.images.generate_story_image(update.story_summary, category)
            if image_url:
                fields["imageUrl"] = image_url
            else:
                logger.info(f"[RECONCILE] No image generated for story {story.id}")
        return fields
