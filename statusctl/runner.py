"""Batch execution of status transitions."""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from .diagnostics import Diagnostics
from .errors import OrderNotFoundError
from .hooks import ORDER_STATUS_UPDATED, SKIP_ORDER_UPDATE, HookRegistry
from .locks import LockCoordinator
from .models import ContinuationState, OrderSettings, RunResult
from .protocols import RecordStore
from .schedule import ScheduleManager

logger = logging.getLogger("statusctl.runner")

BATCH_CAP = 50
CONTINUATION_MARGIN = 10


def compute_cutoff(days: int, now: float) -> datetime:
    """UTC midnight of the day ``days`` days before now.

    Orders whose timestamp is at or before this moment are eligible.
    """
    moment = datetime.fromtimestamp(now, tz=timezone.utc) - timedelta(days=days)
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


class BatchRunner:
    """Runs one capped batch of status transitions under the instance lock.

    A logical run whose eligible orders exceed the batch cap is chunked: the
    batch that fills its cap leaves a continuation marker carrying the
    progress so far, and the next trigger picks up from there.
    """

    def __init__(
        self,
        slug: str,
        orders: RecordStore,
        locks: LockCoordinator,
        schedule: ScheduleManager,
        hooks: HookRegistry,
        diagnostics: Diagnostics,
        batch_cap: int = BATCH_CAP,
        continuation_margin: int = CONTINUATION_MARGIN,
        clock: Callable[[], float] = time.time,
    ):
        self.slug = slug
        self.orders = orders
        self.locks = locks
        self.schedule = schedule
        self.hooks = hooks
        self.diagnostics = diagnostics
        self.batch_cap = batch_cap
        self.continuation_margin = continuation_margin
        self.clock = clock

    def applied_cap(self, limit: int, processed: int) -> int:
        """How many orders this invocation may consider."""
        if limit == -1:
            return self.batch_cap
        return max(0, min(self.batch_cap, limit - processed))

    def run(self, settings: OrderSettings) -> Optional[RunResult]:
        """Run a batch. Returns None if another run holds the lock or the run failed."""
        if not self.locks.try_acquire():
            logger.info("batch_skipped_locked", extra={"slug": self.slug})
            return None

        try:
            return self._run_locked(settings)
        except Exception as e:
            logger.exception("batch_failed", extra={"slug": self.slug})
            self.diagnostics.notice(f"Batch run failed: {e}", hidden=settings.hide_notices)
            return None
        finally:
            self.locks.release()

    def _run_locked(self, settings: OrderSettings) -> RunResult:
        now = self.clock()
        # The marker survives a failed batch so the next trigger retries it.
        state = self.locks.continuation() or ContinuationState()

        cutoff = compute_cutoff(settings.days, now)
        cap = self.applied_cap(settings.limit, state.processed)
        result = RunResult(
            slug=self.slug,
            cutoff=cutoff,
            applied_cap=cap,
            processed_total=state.processed,
        )
        if cap == 0:
            self.locks.clear_continuation()
            logger.info("logical_run_exhausted", extra={"slug": self.slug, "processed": state.processed})
            return result

        orders = self.orders.query(
            settings.target_statuses,
            cap,
            settings.since,
            cutoff,
            offset=state.skipped,
        )
        result.queried = len(orders)

        for order in orders:
            previous_status = order.get_status()
            if self.hooks.apply_filters(
                SKIP_ORDER_UPDATE, False, order, previous_status, settings.new_status, settings.days
            ):
                result.skipped.append(order.id)
                continue

            note = (
                f"Order status updated from {previous_status} to {settings.new_status} "
                f"due to {settings.days} days since {settings.since.value}."
            )
            try:
                updated = self.orders.update_status(order, settings.new_status, note)
            except OrderNotFoundError:
                logger.warning("order_vanished", extra={"slug": self.slug, "order_id": order.id})
                result.failed.append(order.id)
                continue

            result.updated.append(order.id)
            self.hooks.do_action(ORDER_STATUS_UPDATED, updated, previous_status, settings.new_status, settings.days)

        result.processed_total = state.processed + len(orders)
        self.locks.clear_continuation()

        # A full batch means the cap, not the data, ended this invocation.
        if len(orders) == cap:
            result.continued = self._schedule_continuation(
                ContinuationState(
                    processed=result.processed_total,
                    skipped=state.skipped + len(result.skipped),
                ),
                now,
            )

        logger.info(
            "batch_completed",
            extra={
                "slug": self.slug,
                "queried": result.queried,
                "updated": len(result.updated),
                "skipped": len(result.skipped),
                "failed": len(result.failed),
                "continued": result.continued,
            },
        )
        return result

    def _schedule_continuation(self, state: ContinuationState, now: float) -> bool:
        next_run = self.schedule.next_fire_time()
        if next_run is None:
            logger.info("continuation_skipped_unscheduled", extra={"slug": self.slug})
            return False

        remaining = next_run - now
        if remaining <= self.continuation_margin:
            logger.info("continuation_skipped_next_tick_close", extra={"slug": self.slug, "remaining": remaining})
            return False

        self.locks.mark_continuation(state, int(remaining - self.continuation_margin))
        return True
