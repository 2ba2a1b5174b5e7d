"""Unit tests for call-completion reconciliation."""
import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from family_stories.core.errors import (
    CategoryNotFoundError,
    GenerationError,
    ReconciliationError,
)
from family_stories.db.base import STORIES
from family_stories.services.calls.dedup import DedupCache
from family_stories.services.calls.reconciler import (
    CallCompletionEvent,
    CallReconciler,
    ReconciliationStatus,
)

STORED_IMAGE_URL = "https://storage.example/images/generated.png"


def make_event(call_id="call_123", transcript="Agent: Hello\nUser: We lived on Harehills Lane."):
    return CallCompletionEvent(
        call_id=call_id,
        transcript=transcript,
        transcript_object=[
            {
                "role": "user",
                "content": "We lived on Harehills Lane.",
                "words": [{"word": "We", "start": 0.1, "end": 0.3, "confidence": 0.98}],
                "metadata": {"response_id": 4, "extra": "dropped"},
                "unexpected": True,
            }
        ],
        recording_url="https://recordings.example/call.wav",
    )


class TestCallReconciler:
    """Test reconciliation of call_ended events with story sessions."""

    @pytest.mark.asyncio
    async def test_first_delivery_generates_story(self, reconciler, store, story_update_response):
        outcome = await reconciler.handle_call_completion(make_event())

        assert outcome.status == ReconciliationStatus.PROCESSED
        assert outcome.story_id == "story_1"
        assert outcome.session_id == "session_1700000000000"
        assert outcome.user_id == "user_1"
        assert outcome.generated is True

        story = store.snapshot(STORIES, "story_1")
        assert story["storySummary"] == story_update_response["storySummary"]
        assert story["storyText"] == story_update_response["storyText"]
        assert story["title"] == story_update_response["title"]
        assert story["description"] == story_update_response["description"]
        assert story["imageUrl"] == STORED_IMAGE_URL

        session = story["sessions"]["session_1700000000000"]
        assert session["updated"] is True
        assert session["transcript"].startswith("Agent: Hello")
        assert session["recording_url"] == "https://recordings.example/call.wav"
        assert session["transcript_object"] == [
            {
                "role": "user",
                "content": "We lived on Harehills Lane.",
                "words": [{"word": "We", "start": 0.1, "end": 0.3}],
                "metadata": {"response_id": 4},
            }
        ]

    @pytest.mark.asyncio
    async def test_prompt_carries_story_context(self, reconciler, mock_openai):
        await reconciler.handle_call_completion(make_event())

        kwargs = mock_openai.chat.completions.create.call_args.kwargs
        prompt = kwargs["messages"][0]["content"]
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "Childhood" in prompt
        assert "What was your first home like?" in prompt
        assert "Margaret grew up in Leeds with two brothers." in prompt
        assert "third-person" in prompt
        assert "We lived on Harehills Lane." in prompt

    @pytest.mark.asyncio
    async def test_existing_fields_are_preserved(self, reconciler, store, mock_openai, story_update_response):
        outcome = await reconciler.handle_call_completion(make_event(call_id="call_456"))

        assert outcome.status == ReconciliationStatus.PROCESSED
        story = store.snapshot(STORIES, "story_2")
        assert story["title"] == "Summer at the lake"
        assert story["description"] == "Curated description"
        assert story["imageUrl"] == "https://storage.example/existing.png"
        assert story["storySummary"] == story_update_response["storySummary"]
        mock_openai.images.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_sequential_redelivery_is_duplicate(self, reconciler, mock_openai):
        first = await reconciler.handle_call_completion(make_event())
        second = await reconciler.handle_call_completion(make_event())

        assert first.status == ReconciliationStatus.PROCESSED
        assert second.status == ReconciliationStatus.DUPLICATE
        assert mock_openai.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_generate_once(self, reconciler, mock_openai, store):
        outcomes = await asyncio.gather(
            reconciler.handle_call_completion(make_event()),
            reconciler.handle_call_completion(make_event()),
            reconciler.handle_call_completion(make_event()),
        )

        statuses = sorted(outcome.status.value for outcome in outcomes)
        assert statuses == ["duplicate", "duplicate", "processed"]
        assert mock_openai.chat.completions.create.await_count == 1
        assert mock_openai.images.generate.await_count == 1
        assert store.snapshot(STORIES, "story_1")["sessions"]["session_1700000000000"]["updated"] is True

    @pytest.mark.asyncio
    async def test_redelivery_after_cache_loss_refreshes_only(
        self, repository, directory, narrative, images, mock_openai, store
    ):
        first = CallReconciler(repository, directory, narrative, images, DedupCache())
        await first.handle_call_completion(make_event())
        summary = store.snapshot(STORIES, "story_1")["storySummary"]

        # A restarted process has an empty cache
        second = CallReconciler(repository, directory, narrative, images, DedupCache())
        outcome = await second.handle_call_completion(make_event(transcript="Corrected transcript"))

        assert outcome.status == ReconciliationStatus.PROCESSED
        assert outcome.generated is False
        assert mock_openai.chat.completions.create.await_count == 1
        story = store.snapshot(STORIES, "story_1")
        assert story["storySummary"] == summary
        session = story["sessions"]["session_1700000000000"]
        assert session["updated"] is True
        assert session["transcript"] == "Corrected transcript"

    @pytest.mark.asyncio
    async def test_already_updated_session_is_not_regenerated(self, reconciler, store, mock_openai):
        outcome = await reconciler.handle_call_completion(
            make_event(call_id="call_done", transcript="late copy")
        )

        assert outcome.status == ReconciliationStatus.PROCESSED
        assert outcome.generated is False
        mock_openai.chat.completions.create.assert_not_called()
        story = store.snapshot(STORIES, "story_2")
        assert story["storySummary"] == "Existing summary"
        assert story["sessions"]["session_1600000000000"]["transcript"] == "late copy"
        assert story["sessions"]["session_1600000000000"]["updated"] is True

    @pytest.mark.asyncio
    async def test_unknown_call_releases_marker(self, reconciler, dedup_cache):
        outcome = await reconciler.handle_call_completion(make_event(call_id="call_unknown"))

        assert outcome.status == ReconciliationStatus.NOT_FOUND
        assert not dedup_cache.contains("call_unknown")

    @pytest.mark.asyncio
    async def test_generation_failure_releases_marker(self, reconciler, dedup_cache, mock_openai, store):
        mock_openai.chat.completions.create.side_effect = RuntimeError("openai down")

        with pytest.raises(GenerationError):
            await reconciler.handle_call_completion(make_event())

        assert not dedup_cache.contains("call_123")
        session = store.snapshot(STORIES, "story_1")["sessions"]["session_1700000000000"]
        assert session["updated"] is False

        # The retry succeeds once the upstream recovers
        mock_openai.chat.completions.create.side_effect = None
        outcome = await reconciler.handle_call_completion(make_event())
        assert outcome.status == ReconciliationStatus.PROCESSED

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_wrapped(self, reconciler, repository, dedup_cache):
        repository.apply_generative_update = AsyncMock(side_effect=RuntimeError("store down"))

        with pytest.raises(ReconciliationError):
            await reconciler.handle_call_completion(make_event())

        assert not dedup_cache.contains("call_123")

    @pytest.mark.asyncio
    async def test_image_failure_is_not_fatal(self, reconciler, store, mock_openai):
        mock_openai.images.generate.side_effect = RuntimeError("image api down")

        outcome = await reconciler.handle_call_completion(make_event())

        assert outcome.status == ReconciliationStatus.PROCESSED
        story = store.snapshot(STORIES, "story_1")
        assert story["imageUrl"] is None
        assert story["sessions"]["session_1700000000000"]["updated"] is True

    @pytest.mark.asyncio
    async def test_onboarding_story_uses_default_category(self, reconciler, mock_openai):
        outcome = await reconciler.handle_call_completion(make_event(call_id="call_onboarding"))

        assert outcome.status == ReconciliationStatus.PROCESSED
        prompt = mock_openai.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert "Onboarding Call" in prompt

    @pytest.mark.asyncio
    async def test_missing_category_fails_regular_story(self, reconciler, dedup_cache):
        with pytest.raises(CategoryNotFoundError):
            await reconciler.handle_call_completion(make_event(call_id="call_789"))

        assert not dedup_cache.contains("call_789")

    @pytest.mark.asyncio
    async def test_incomplete_model_response_fails(self, reconciler, mock_openai, make_completion, store):
        mock_openai.chat.completions.create.return_value = make_completion('{"storySummary": "only"}')

        with pytest.raises(GenerationError):
            await reconciler.handle_call_completion(make_event())

        assert store.snapshot(STORIES, "story_1")["storySummary"] is None

    @pytest.mark.asyncio
    async def test_malformed_story_does_not_block_scan_lookup(self, reconciler, store):
        await store.set(STORIES, "story_broken", {"categoryId": "cat_childhood", "sessions": {}})

        outcome = await reconciler.handle_call_completion(make_event())

        assert outcome.status == ReconciliationStatus.PROCESSED
        assert outcome.story_id == "story_1"

    @pytest.mark.asyncio
    async def test_processed_call_is_finished_but_remembered(self, reconciler, dedup_cache):
        outcome = await reconciler.handle_call_completion(make_event())

        assert outcome.status == ReconciliationStatus.PROCESSED
        assert dedup_cache.contains("call_123")
        assert not dedup_cache.in_flight("call_123")

    @pytest.mark.asyncio
    async def test_slow_call_survives_capacity_pressure(
        self, repository, directory, narrative, images, mock_openai, story_update_response, make_completion
    ):
        cache = DedupCache(max_entries=1)
        reconciler = CallReconciler(repository, directory, narrative, images, cache)
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_completion(**kwargs):
            started.set()
            await release.wait()
            return make_completion(json.dumps(story_update_response))

        mock_openai.chat.completions.create.side_effect = slow_completion

        slow = asyncio.create_task(reconciler.handle_call_completion(make_event()))
        await started.wait()
        for index in range(3):
            cache.try_acquire(f"call_other_{index}")
            cache.finish(f"call_other_{index}")

        redelivery = await reconciler.handle_call_completion(make_event())
        assert redelivery.status == ReconciliationStatus.DUPLICATE

        release.set()
        assert (await slow).status == ReconciliationStatus.PROCESSED
        assert mock_openai.chat.completions.create.await_count == 1
