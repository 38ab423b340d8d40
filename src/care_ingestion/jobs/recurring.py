# ============================================================================
# src/care_ingestion/jobs/recurring.py
# ============================================================================
"""
Recurring jobs.

Each schedule is an asyncio task that publishes one job per interval to
its queue. Schedules are registered under a fixed key; registering the
same key again replaces the running schedule.

- The first run is published on registration unless run_immediately=False
- Missed slots (a slow publish, a suspended process) are skipped, not replayed
- Runs get a single attempt and expire after one interval, so an
  unconsumed run is dropped instead of piling up behind the next one
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .queue import JobQueue

logger = logging.getLogger(__name__)


@dataclass
class RecurringJob:
    key: str
    queue: str
    name: str
    data: Dict[str, Any]
    every_seconds: float
    runs: int = 0


class RecurringScheduler:
    def __init__(self, queue: JobQueue):
        self.queue = queue
        self._schedules: Dict[str, RecurringJob] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    def add(
        self,
        queue: str,
        key: str,
        name: str,
        data: Dict[str, Any],
        every_seconds: float,
        run_immediately: bool = True,
    ) -> RecurringJob:
        """Register (or replace) the schedule stored under `key`."""
        if self.remove(key):
            logger.info(f"Replaced existing recurring job {key}")

        schedule = RecurringJob(key=key, queue=queue, name=name, data=data, every_seconds=every_seconds)
        self._schedules[key] = schedule
        self._tasks[key] = asyncio.create_task(
            self._run(schedule, run_immediately),
            name=f"recurring:{key}",
        )

        logger.info(f"Recurring job {key} scheduled on {queue} (every {every_seconds}s)")
        return schedule

    def remove(self, key: str) -> bool:
        task = self._tasks.pop(key, None)
        self._schedules.pop(key, None)
        if task is None:
            return False
        task.cancel()
        return True

    def list(self, queue: Optional[str] = None) -> List[RecurringJob]:
        return sorted(
            (schedule for schedule in self._schedules.values() if queue is None or schedule.queue == queue),
            key=lambda schedule: schedule.key,
        )

    async def _run(self, schedule: RecurringJob, run_immediately: bool) -> None:
        loop = asyncio.get_running_loop()
        next_run = loop.time() if run_immediately else loop.time() + schedule.every_seconds

        while True:
            delay = next_run - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)

            try:
                await self.queue.add(
                    schedule.queue,
                    schedule.name,
                    schedule.data,
                    attempts=1,
                    backoff_ms=0,
                    expiration=schedule.every_seconds,
                )
                schedule.runs += 1
            except Exception as e:
                logger.error(f"Recurring job {schedule.key} could not be queued: {e}")

            # Skip missed slots rather than replaying them
            now = loop.time()
            while next_run <= now:
                next_run += schedule.every_seconds

    async def close(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        self._schedules.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
