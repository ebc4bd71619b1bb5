"""Recurring event registration for one updater instance."""

import logging
from typing import Optional
from .locks import LockCoordinator
from .protocols import TimerSubsystem

logger = logging.getLogger("statusctl.schedule")


class ScheduleManager:
    """Owns the instance's recurring event in the timer subsystem."""

    def __init__(self, timer: TimerSubsystem, event_hook: str, locks: LockCoordinator):
        self.timer = timer
        self.event_hook = event_hook
        self.locks = locks

    def next_fire_time(self) -> Optional[int]:
        return self.timer.next_fire_time(self.event_hook)

    def ensure_scheduled(self, start: int, frequency: str) -> bool:
        """Register the event unless it already is. Returns whether it was registered now."""
        if self.timer.next_fire_time(self.event_hook) is not None:
            return False
        self.timer.schedule(self.event_hook, start, frequency)
        logger.info("event_scheduled", extra={"event_hook": self.event_hook, "start": start, "frequency": frequency})
        return True

    def reschedule(self, start: int, frequency: str) -> None:
        """Replace the registration with one using the given start and frequency.

        A run in flight keeps its lock; only its continuation marker is dropped.
        """
        self.locks.clear_continuation()
        self.timer.clear(self.event_hook)
        self.timer.schedule(self.event_hook, start, frequency)
        logger.info("event_rescheduled", extra={"event_hook": self.event_hook, "start": start, "frequency": frequency})

    def clear(self) -> None:
        """Drop the registration along with any lock or continuation marker."""
        self.locks.clear_continuation()
        self.locks.release()
        self.timer.clear(self.event_hook)
        logger.info("event_cleared", extra={"event_hook": self.event_hook})
