"""Story, session and directory document models."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

NO_PREVIOUS_CONTEXT = "This is the first conversation and there is no previous context."

SCHEDULE_SCHEDULED = "scheduled"
SCHEDULE_FAILED = "failed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so stored and computed times compare."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_session_id(now: datetime) -> str:
    """Session ids are time-ordered: ``session_<epoch milliseconds>``."""
    return f"session_{int(now.timestamp() * 1000)}"


class DocumentModel(BaseModel):
    """Base for models mapped onto camelCase Firestore documents."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class StorySession(DocumentModel):
    """One recorded conversation, nested under a story."""

    call_id: Optional[str] = Field(default=None, alias="callId")
    transcript: Optional[str] = None
    transcript_object: Optional[List[Dict[str, Any]]] = None
    recording_url: Optional[str] = None
    video_url: Optional[str] = Field(default=None, alias="videoUrl")
    video_complete: bool = Field(default=False, alias="videoComplete")
    updated: bool = False
    creation_time: Optional[datetime] = Field(default=None, alias="creationTime")


class NextSchedule(DocumentModel):
    """A pending outbound call for a story."""

    date_time: Optional[datetime] = Field(default=None, alias="dateTime")
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    status: str = SCHEDULE_SCHEDULED
    error: Optional[str] = None

    def is_due(self, now: datetime, window_seconds: int) -> bool:
        """Scheduled and falling in ``(now, now + window]``."""
        if self.status != SCHEDULE_SCHEDULED or self.date_time is None:
            return False
        scheduled = as_utc(self.date_time)
        now = as_utc(now)
        return now < scheduled and (scheduled - now).total_seconds() <= window_seconds


class Story(DocumentModel):
    """A user's evolving narrative record."""

    id: str
    user_id: str = Field(alias="userId")
    category_id: Optional[str] = Field(default=None, alias="categoryId")
    title: Optional[str] = None
    description: Optional[str] = None
    story_text: Optional[str] = Field(default=None, alias="storyText")
    story_summary: Optional[str] = Field(default=None, alias="storySummary")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    initial_question: Optional[str] = Field(default=None, alias="initialQuestion")
    is_onboarding_story: bool = Field(default=False, alias="isOnboardingStory")
    creation_time: Optional[datetime] = Field(default=None, alias="creationTime")
    last_updation_time: Optional[datetime] = Field(default=None, alias="lastUpdationTime")
    next_schedule: Optional[NextSchedule] = Field(default=None, alias="nextSchedule")
    sessions: Dict[str, StorySession] = {}

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "Story":
        payload = dict(data)
        payload["id"] = doc_id
        # Firestore allows explicit nulls where we expect containers/flags
        if payload.get("sessions") is None:
            payload["sessions"] = {}
        if payload.get("isOnboardingStory") is None:
            payload["isOnboardingStory"] = False
        return cls.model_validate(payload)

    def context_summary(self) -> str:
        return self.story_summary or NO_PREVIOUS_CONTEXT


class StoryPreferences(DocumentModel):
    """Narrative preferences stored on the user document."""

    narrative_style: str = Field(default="first-person", alias="narrativeStyle")
    length_preference: str = Field(default="balanced", alias="lengthPreference")
    detail_richness: str = Field(default="balanced", alias="detailRichness")


class UserProfile(DocumentModel):
    id: str
    name: Optional[str] = None
    onboarding_story_id: Optional[str] = Field(default=None, alias="onboardingStoryId")
    story_preferences: Optional[StoryPreferences] = Field(default=None, alias="storyPreferences")

    def preferences(self) -> StoryPreferences:
        return self.story_preferences or StoryPreferences()


class Category(DocumentModel):
    id: str
    title: str = ""
    description: str = ""


ONBOARDING_CATEGORY = Category(
    id="onboarding",
    title="Onboarding Call",
    description="Get to know the user and extract ALL DETAILS from conversation",
)


def new_session_document(call_id: str, now: datetime, video_complete: bool = False) -> Dict[str, Any]:
    """Placeholder session written when a call is placed."""
    return {
        "callId": call_id,
        "transcript": None,
        "transcript_object": None,
        "creationTime": now,
        "recording_url": None,
        "videoUrl": None,
        "videoComplete": video_complete,
        "updated": False,
    }
