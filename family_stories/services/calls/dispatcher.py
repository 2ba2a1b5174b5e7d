"""Scheduled outbound call dispatch."""
import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import BaseModel

from family_stories.core.errors import DispatchFailedError
from family_stories.services.calls.platform import CallPlatformClient
from family_stories.services.stories.directory import Directory
from family_stories.services.stories.models import Story, utc_now
from family_stories.services.stories.repository import StoryRepository

logger = logging.getLogger(__name__)


class DispatchReport(BaseModel):
    """What one tick did."""

    skipped: bool = False
    dispatched: List[str] = []
    failed: List[str] = []


class ScheduledCallDispatcher:
    """Places the outbound calls stories have scheduled.

    Each tick scans the stories, dials every one whose schedule falls in the
    upcoming window and records either the new session or the failure on the
    story. Ticks never overlap: a tick requested while one is running is skipped.
    """

    def __init__(
        self,
        repository: StoryRepository,
        directory: Directory,
        platform: CallPlatformClient,
        from_number: str,
        window_seconds: int = 300,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.directory = directory
        self.platform = platform
        self.from_number = from_number
        self.window_seconds = window_seconds
        self.clock = clock
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def tick(self, now: Optional[datetime] = None) -> DispatchReport:
        """Run one dispatch pass."""
        if self._running:
            logger.warning("[DISPATCH] Previous tick still running, skipping this one")
            return DispatchReport(skipped=True)

        self._running = True
        try:
            return await self._dispatch_due(now or self.clock())
        finally:
            self._running = False

    async def _dispatch_due(self, now: datetime) -> DispatchReport:
        report = DispatchReport()
        stories = await self.repository.list_stories()
        due = [
            story
            for story in stories
            if story.next_schedule is not None
            and story.next_schedule.is_due(now, self.window_seconds)
        ]
        if due:
            logger.info(f"[DISPATCH] {len(due)} scheduled call(s) due out of {len(stories)} stories")

        for story in due:
            logger.info(f"[DISPATCH] Processing scheduled call for story {story.id}")
            try:
                await self._dispatch(story)
                report.dispatched.append(story.id)
                logger.info(f"[DISPATCH] Successfully initiated call for story {story.id}")
            except Exception as e:
                logger.error(
                    f"[DISPATCH] Error processing scheduled call for story {story.id}: "
                    f"{type(e).__name__}: {e}",
                    exc_info=True,
                )
                report.failed.append(story.id)
                await self._record_failure(story, str(e))
        return report

    async def _dispatch(self, story: Story) -> None:
        agent_id = await self.directory.get_agent_id(story.user_id, story.category_id)
        response = await self.platform.create_phone_call(
            from_number=self.from_number,
            to_number=story.next_schedule.phone_number,
            agent_id=agent_id,
            dynamic_variables={
                "initial_question": story.initial_question or "",
                "summary": story.context_summary(),
            },
        )
        call_id = (response or {}).get("call_id")
        if not call_id:
            raise DispatchFailedError("Failed to get call ID")

        await self.repository.add_session(
            story.id, call_id, self.clock(), clear_schedule=True, video_complete=True
        )

    async def _record_failure(self, story: Story, message: str) -> None:
        try:
            await self.repository.mark_schedule_failed(story.id, message, self.clock())
        except Exception as e:
            # Store is unreachable too; the schedule stays "scheduled" and is retried
            logger.error(
                f"[DISPATCH] Could not record failure for story {story.id}: {type(e).__name__}: {e}"
            )

    async def run_forever(self, interval_seconds: int = 60) -> None:
        """Tick on a fixed cadence until cancelled."""
        logger.info(f"[DISPATCH] Starting scheduled calls loop (every {interval_seconds}s)")
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[DISPATCH] Tick failed: {type(e).__name__}: {e}", exc_info=True)
            await asyncio.sleep(interval_seconds)
