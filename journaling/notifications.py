"""
Daily journaling reminder.

At most one reminder is scheduled at any time: rescheduling cancels the
previous one first. The reminder runs as a background asyncio task that
sleeps until the next occurrence of the configured local time of day and
then calls `deliver`.

Typical usage:
    scheduler = ReminderScheduler(deliver=show_notification)
    scheduler.schedule_daily(True, time(20, 0))
    ...
    scheduler.cancel_all()
"""

import asyncio
import inspect
import logging
from datetime import datetime, time, timedelta
from typing import Awaitable, Callable, Optional, Union

from .clock import Clock, SystemClock

logger = logging.getLogger(__name__)

REMINDER_TITLE = "Time to journal"
REMINDER_BODY = "Take a few minutes to write about your day."

Deliver = Callable[[str, str], Union[None, Awaitable[None]]]


def next_fire_time(now: datetime, reminder_time: time) -> datetime:
    """Next instant at `reminder_time` strictly after `now`, in now's timezone."""
    candidate = now.replace(hour=reminder_time.hour, minute=reminder_time.minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def _log_delivery(title: str, body: str) -> None:
    logger.info(f"Reminder: {title} - {body}")


class ReminderScheduler:
    """Schedules exactly one repeating daily reminder."""

    def __init__(self, deliver: Optional[Deliver] = None, clock: Optional[Clock] = None):
        self.deliver = deliver or _log_delivery
        self.clock = clock or SystemClock()
        self._task: Optional[asyncio.Task] = None
        self.reminder_time: Optional[time] = None

    @property
    def is_scheduled(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule_daily(self, enabled: bool, reminder_time: time) -> None:
        """Replace any existing reminder; schedule a new one only when enabled."""
        self.cancel_all()
        if not enabled:
            logger.info("Daily reminder disabled")
            return
        self.reminder_time = time(reminder_time.hour, reminder_time.minute)
        self._task = asyncio.create_task(self._run(self.reminder_time))
        logger.info(f"Daily reminder scheduled at {self.reminder_time:%H:%M}")

    def cancel_all(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self.reminder_time = None

    async def _run(self, reminder_time: time) -> None:
        while True:
            now = self.clock.now()
            delay = (next_fire_time(now, reminder_time) - now).total_seconds()
            await asyncio.sleep(delay)
            try:
                result = self.deliver(REMINDER_TITLE, REMINDER_BODY)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Failed to deliver reminder: {e}", exc_info=True)
