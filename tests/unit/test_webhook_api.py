"""Unit tests for the Retell webhook endpoint."""
from family_stories.core.dependencies import get_post_call_hooks
from family_stories.db.base import STORIES
from family_stories.main import app
from family_stories.services.calls.hooks import PostCallHook


def call_ended(call_id="call_123", **call_fields):
    call = {
        "call_id": call_id,
        "transcript": "Agent: Hello\nUser: We lived on Harehills Lane.",
        "transcript_object": [{"role": "user", "content": "We lived on Harehills Lane.", "words": []}],
        "recording_url": "https://recordings.example/call.wav",
    }
    call.update(call_fields)
    return {"event": "call_ended", "call": call}


class RecordingHook(PostCallHook):
    name = "recording"

    def __init__(self):
        self.calls = []

    async def run(self, outcome, call_id):
        self.calls.append((outcome.story_id, call_id))


class TestRetellWebhook:
    """Test POST /webhook/retell."""

    def test_other_events_are_ignored(self, test_client, mock_openai):
        response = test_client.post(
            "/webhook/retell", json={"event": "call_started", "call": {"call_id": "call_123"}}
        )

        assert response.status_code == 200
        assert response.json() == {"status": "ignored"}
        mock_openai.chat.completions.create.assert_not_called()

    def test_call_ended_updates_story(self, test_client, store):
        response = test_client.post("/webhook/retell", json=call_ended())

        assert response.status_code == 200
        assert response.json() == {"status": "success"}
        story = store.snapshot(STORIES, "story_1")
        assert story["title"] == "The House on Harehills Lane"
        assert story["sessions"]["session_1700000000000"]["updated"] is True

    def test_repeated_delivery_reports_duplicate(self, test_client, mock_openai):
        first = test_client.post("/webhook/retell", json=call_ended())
        second = test_client.post("/webhook/retell", json=call_ended())

        assert first.json() == {"status": "success"}
        assert second.status_code == 200
        assert second.json() == {"status": "duplicate"}
        assert mock_openai.chat.completions.create.await_count == 1

    def test_unknown_call_returns_404(self, test_client):
        response = test_client.post("/webhook/retell", json=call_ended(call_id="call_unknown"))

        assert response.status_code == 404
        assert response.json() == {"error": "No matching story found for this call"}

    def test_processing_failure_returns_400(self, test_client, mock_openai, store):
        mock_openai.chat.completions.create.side_effect = RuntimeError("openai down")

        response = test_client.post("/webhook/retell", json=call_ended())

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Failed to process webhook"
        assert "openai down" in body["details"]
        assert store.snapshot(STORIES, "story_1")["sessions"]["session_1700000000000"]["updated"] is False

    def test_failed_delivery_can_be_retried(self, test_client, mock_openai):
        mock_openai.chat.completions.create.side_effect = RuntimeError("openai down")
        assert test_client.post("/webhook/retell", json=call_ended()).status_code == 400

        mock_openai.chat.completions.create.side_effect = None
        response = test_client.post("/webhook/retell", json=call_ended())

        assert response.json() == {"status": "success"}

    def test_missing_call_id_returns_400(self, test_client):
        response = test_client.post(
            "/webhook/retell", json={"event": "call_ended", "call": {"transcript": "hi"}}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Failed to process webhook"

    def test_post_call_hooks_run_after_success(self, test_client):
        hook = RecordingHook()
        app.dependency_overrides[get_post_call_hooks] = lambda: [hook]

        response = test_client.post("/webhook/retell", json=call_ended())

        assert response.status_code == 200
        assert hook.calls == [("story_1", "call_123")]

    def test_post_call_hooks_skipped_for_duplicates(self, test_client):
        hook = RecordingHook()
        app.dependency_overrides[get_post_call_hooks] = lambda: [hook]

        test_client.post("/webhook/retell", json=call_ended())
        test_client.post("/webhook/retell", json=call_ended())

        assert hook.calls == [("story_1", "call_123")]

    def test_ignored_event_with_null_call(self, test_client):
        response = test_client.post("/webhook/retell", json={"event": "call_started", "call": None})

        assert response.status_code == 200
        assert response.json() == {"status": "ignored"}

    def test_call_ended_with_null_call_returns_400(self, test_client):
        response = test_client.post("/webhook/retell", json={"event": "call_ended", "call": None})

        assert response.status_code == 400
        assert response.json()["error"] == "Failed to process webhook"
