"""Poller process that fires due events and drains continuations."""

import logging
import signal
import time
from typing import Callable, Dict, Iterable, Optional
from .hooks import DeferredQueue, HookRegistry
from .storage import EventScheduler
from .updater import AutoStatusUpdater

logger = logging.getLogger("statusctl.worker")


class Poller:
    """Plays the role of the host's cron for a set of updaters.

    Each tick is one unit of work: due events are advanced and fired through
    the hook registry, updaters with a pending continuation are triggered,
    and the deferred batches run at the end.
    """

    def __init__(
        self,
        timer: EventScheduler,
        hooks: HookRegistry,
        deferred: DeferredQueue,
        updaters: Iterable[AutoStatusUpdater] = (),
        clock: Callable[[], float] = time.time,
    ):
        self.timer = timer
        self.hooks = hooks
        self.deferred = deferred
        self.updaters: Dict[str, AutoStatusUpdater] = {u.slug: u for u in updaters}
        self.clock = clock
        self.running = True

    def add(self, updater: AutoStatusUpdater) -> None:
        self.updaters[updater.slug] = updater

    def _handle_shutdown(self, signum, frame):
        """Handle shutdown signal gracefully."""
        self.running = False
        logger.info("poller_stopping", extra={"signum": signum})

    def tick(self, now: Optional[float] = None) -> int:
        """Run one poll pass. Returns the number of deferred batches that ran."""
        now = self.clock() if now is None else now

        for event_id in self.timer.due_events(now):
            # Advance first so a batch sees the following tick as its next run.
            self.timer.advance(event_id, now)
            if not self.hooks.has_action(event_id):
                logger.warning("event_without_action", extra={"event_id": event_id})
                continue
            logger.info("event_fired", extra={"event_id": event_id})
            self.hooks.do_action(event_id)

        for updater in self.updaters.values():
            if not updater.invalidated and updater.locks.has_continuation():
                updater.update_orders()

        return self.deferred.run_pending()

    def run(self, poll_interval: float = 60.0) -> None:
        """Run the poll loop until SIGINT or SIGTERM."""
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)

        logger.info("poller_started", extra={"updaters": sorted(self.updaters)})
        while self.running:
            try:
                self.tick()
            except KeyboardInterrupt:
                self.running = False
            except Exception:
                logger.exception("poller_tick_failed")
            time.sleep(poll_interval)

        logger.info("poller_stopped")
