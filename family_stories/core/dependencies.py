"""FastAPI dependencies."""
from typing import List, Optional

from fastapi import Depends
from openai import AsyncOpenAI

from family_stories.core.config import settings
from family_stories.db.base import DocumentStore
from family_stories.db.firestore import FirestoreDocumentStore
from family_stories.services.books.service import BookService
from family_stories.services.calls.dedup import DedupCache
from family_stories.services.calls.dispatcher import ScheduledCallDispatcher
from family_stories.services.calls.hooks import (
    PostCallHook,
    UpcomingQuestionsGenerator,
    VideoCompletionWatcher,
)
from family_stories.services.calls.platform import CallPlatformClient
from family_stories.services.calls.reconciler import CallReconciler
from family_stories.services.calls.web_calls import WebCallService
from family_stories.services.generation.images import ImageGenerator
from family_stories.services.generation.narrative import NarrativeGenerator
from family_stories.services.storage.blob import FirebaseBlobStorage
from family_stories.services.stories.directory import Directory
from family_stories.services.stories.repository import StoryRepository

# Process-wide clients, created on first use
_document_store: Optional[FirestoreDocumentStore] = None
_openai_client: Optional[AsyncOpenAI] = None
_call_platform: Optional[CallPlatformClient] = None
_blob_storage: Optional[FirebaseBlobStorage] = None

# Shared by every webhook request; the gate only works if there is one
_dedup_cache = DedupCache(
    ttl_seconds=settings.dedup_ttl_seconds,
    max_entries=settings.dedup_max_entries,
)


def get_document_store() -> DocumentStore:
    """Get the Firestore document store."""
    global _document_store
    if _document_store is None:
        _document_store = FirestoreDocumentStore(settings)
    return _document_store


def get_openai_client() -> AsyncOpenAI:
    global _openai_client
    if _openai_client is None:
        _openai_client = AsyncOpenAI(
            api_key=settings.openai_api_key, timeout=settings.openai_timeout_seconds
        )
    return _openai_client


def get_call_platform() -> CallPlatformClient:
    global _call_platform
    if _call_platform is None:
        _call_platform = CallPlatformClient(
            api_key=settings.retell_api_key,
            base_url=settings.retell_base_url,
            timeout=settings.retell_timeout_seconds,
        )
    return _call_platform


def get_blob_storage() -> FirebaseBlobStorage:
    global _blob_storage
    if _blob_storage is None:
        _blob_storage = FirebaseBlobStorage(settings)
    return _blob_storage


def get_dedup_cache() -> DedupCache:
    return _dedup_cache


def get_story_repository(store: DocumentStore = Depends(get_document_store)) -> StoryRepository:
    return StoryRepository(store)


def get_directory(store: DocumentStore = Depends(get_document_store)) -> Directory:
    return Directory(store)


def get_narrative_generator(client: AsyncOpenAI = Depends(get_openai_client)) -> NarrativeGenerator:
    return NarrativeGenerator(client, model=settings.openai_text_model)


def get_image_generator(
    client: AsyncOpenAI = Depends(get_openai_client),
    blob_storage: FirebaseBlobStorage = Depends(get_blob_storage),
) -> ImageGenerator:
    return ImageGenerator(client, blob_storage, model=settings.openai_image_model)


def get_call_reconciler(
    repository: StoryRepository = Depends(get_story_repository),
    directory: Directory = Depends(get_directory),
    narrative: NarrativeGenerator = Depends(get_narrative_generator),
    images: ImageGenerator = Depends(get_image_generator),
    dedup: DedupCache = Depends(get_dedup_cache),
) -> CallReconciler:
    return CallReconciler(repository, directory, narrative, images, dedup)


def get_post_call_hooks(
    store: DocumentStore = Depends(get_document_store),
    repository: StoryRepository = Depends(get_story_repository),
    narrative: NarrativeGenerator = Depends(get_narrative_generator),
) -> List[PostCallHook]:
    hooks: List[PostCallHook] = []
    if settings.video_hook_enabled:
        hooks.append(
            VideoCompletionWatcher(
                repository,
                store,
                attempts=settings.video_poll_attempts,
                interval_seconds=settings.video_poll_interval_seconds,
            )
        )
    if settings.upcoming_questions_enabled:
        hooks.append(UpcomingQuestionsGenerator(repository, store, narrative))
    return hooks


def get_web_call_service(
    repository: StoryRepository = Depends(get_story_repository),
    directory: Directory = Depends(get_directory),
    platform: CallPlatformClient = Depends(get_call_platform),
) -> WebCallService:
    return WebCallService(repository, directory, platform)


def get_book_service(
    store: DocumentStore = Depends(get_document_store),
    repository: StoryRepository = Depends(get_story_repository),
    directory: Directory = Depends(get_directory),
    narrative: NarrativeGenerator = Depends(get_narrative_generator),
    images: ImageGenerator = Depends(get_image_generator),
) -> BookService:
    return BookService(store, repository, directory, narrative, images)


def build_dispatcher() -> ScheduledCallDispatcher:
    """Dispatcher wired to the process-wide clients, for the background loop."""
    store = get_document_store()
    return ScheduledCallDispatcher(
        StoryRepository(store),
        Directory(store),
        get_call_platform(),
        from_number=settings.retell_from_number,
        window_seconds=settings.dispatch_window_seconds,
    )


async def close_clients() -> None:
    """Release process-wide clients at shutdown."""
    if _call_platform is not None:
        await _call_platform.aclose()
    if _openai_client is not None:
        await _openai_client.close()
    if _blob_storage is not None:
        _blob_storage.shutdown()
    if _document_store is not None:
        _document_store.shutdown()
