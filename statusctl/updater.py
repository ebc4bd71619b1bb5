"""The public updater: moves orders to a new status once they have aged."""

import logging
import time
from typing import Any, Mapping, Optional
from .diagnostics import Diagnostics
from .errors import InvalidSettingsError, MissingDependencyError, StatusCtlError
from .hooks import DeferredQueue, HookRegistry
from .locks import LockCoordinator
from .models import OrderSettings, RunResult
from .protocols import KeyValueStore, RecordStore, TimerSubsystem
from .runner import BatchRunner
from .schedule import ScheduleManager
from .settings import RuntimeSettings
from .validation import SettingsValidator

logger = logging.getLogger("statusctl.updater")

EVENT_PREFIX = "statusctl_update_orders_"
SCHEDULE_FIELDS = ("start", "frequency")


def _setting(name: str) -> property:
    def fget(self: "AutoStatusUpdater") -> Any:
        return self.get(name)

    def fset(self: "AutoStatusUpdater", value: Any) -> None:
        self.update(name, value)

    return property(fget, fset, doc=f"The validated ``{name}`` setting.")


class AutoStatusUpdater:
    """Periodically moves aged orders from the target statuses to a new status.

    Settings are validated field by field on construction and on every
    assignment. A construction that fails validation raises
    InvalidSettingsError, unless ``block_exceptions`` is set, in which case
    the updater is invalidated and every public operation returns None.

    Example:
        updater = AutoStatusUpdater(
            "stale-pending",
            {"days": 30, "target_statuses": ["pending"], "new_status": "cancelled"},
            orders=OrderStore(data_dir),
            transients=TransientStore(data_dir),
            timer=EventScheduler(data_dir),
        )
        updater.update_orders()          # queue a batch
        updater.deferred.run_pending()   # end of the unit of work: run it
    """

    days = _setting("days")
    since = _setting("since")
    target_statuses = _setting("target_statuses")
    new_status = _setting("new_status")
    limit = _setting("limit")
    frequency = _setting("frequency")
    start = _setting("start")
    hide_notices = _setting("hide_notices")
    block_exceptions = _setting("block_exceptions")

    def __init__(
        self,
        slug: str,
        settings: Optional[Mapping[str, Any]] = None,
        *,
        orders: Optional[RecordStore],
        transients: KeyValueStore,
        timer: TimerSubsystem,
        hooks: Optional[HookRegistry] = None,
        deferred: Optional[DeferredQueue] = None,
        runtime: Optional[RuntimeSettings] = None,
        clock=time.time,
    ):
        self._slug = slug
        self._event_hook = f"{EVENT_PREFIX}{slug}"
        self._invalidated = False
        self.runtime = runtime or RuntimeSettings()
        self.hooks = hooks or HookRegistry()
        self.deferred = deferred or DeferredQueue()
        self.diagnostics = Diagnostics(type(self).__name__, self.runtime.environment)
        self.locks = LockCoordinator(transients, self._event_hook, self.runtime.lock_ttl)
        self.schedule = ScheduleManager(timer, self._event_hook, self.locks)
        self.validator = SettingsValidator(timer.known_intervals, self.diagnostics, clock)
        self.runner = BatchRunner(
            slug,
            orders,
            self.locks,
            self.schedule,
            self.hooks,
            self.diagnostics,
            batch_cap=self.runtime.batch_cap,
            continuation_margin=self.runtime.continuation_margin,
            clock=clock,
        )

        result = self.validator.validate(OrderSettings(start=int(clock())), settings or {})
        self._settings = result.settings
        if not isinstance(slug, str) or not slug.strip():
            self._fail(InvalidSettingsError("The slug must be a non-empty string.", ["slug"]), invalidate=True)
            return
        if not result.ok:
            self._fail(InvalidSettingsError(
                f"Invalid settings provided: {', '.join(result.failed)}. Check the log for details.",
                result.failed,
            ), invalidate=True)
            return
        if orders is None or not orders.is_available():
            self.diagnostics.notice(
                f"The order store must be available to use {type(self).__name__}.",
                hidden=self._settings.hide_notices,
            )
            self._fail(MissingDependencyError("The order store is not available."), invalidate=True)
            return

        self.schedule.ensure_scheduled(self._settings.start, self._settings.frequency)
        self.hooks.add_action(self._event_hook, self.update_orders)

        # A previous batch was cut short by the cap: resume it now rather than at the next tick.
        if self.locks.has_continuation():
            logger.info("continuation_resumed_on_boot", extra={"slug": slug})
            self.update_orders()

    def _fail(self, error: StatusCtlError, invalidate: bool = False) -> None:
        """Raise the error unless exceptions are blocked; optionally invalidate instead."""
        if self._settings.block_exceptions:
            logger.warning("updater_error_blocked", extra={"slug": self._slug, "error": str(error)})
            if invalidate:
                self._invalidated = True
            return
        raise error

    def __repr__(self) -> str:
        return f"<{type(self).__name__} slug={self._slug!r} invalidated={self._invalidated}>"

    @property
    def slug(self) -> str:
        return self._slug

    @property
    def event_hook(self) -> Optional[str]:
        """Namespace of the scheduled event, lock and continuation keys."""
        if self._invalidated:
            return None
        return self._event_hook

    @property
    def invalidated(self) -> bool:
        return self._invalidated

    @property
    def settings(self) -> Optional[OrderSettings]:
        if self._invalidated:
            return None
        return self._settings

    def get(self, name: str) -> Any:
        if self._invalidated:
            return None
        if name not in self.validator.fields:
            self._fail(InvalidSettingsError(f'Setting "{name}" does not exist.', [name]))
            return None
        return getattr(self._settings, name)

    def update(self, name: str, value: Any) -> Optional[bool]:
        """Validate and store one setting. Returns whether it was accepted."""
        return self.update_settings({name: value})

    def update_settings(self, values: Mapping[str, Any]) -> Optional[bool]:
        """Validate several settings at once; only the fields that pass are stored."""
        if self._invalidated:
            return None

        result = self.validator.validate(self._settings, values)
        self._settings = result.settings
        accepted = [name for name in values if name not in result.failed]
        if any(name in SCHEDULE_FIELDS for name in accepted):
            self.update_events()

        if not result.ok:
            rejected = ", ".join(f'"{name}"={values[name]!r}' for name in result.failed)
            self._fail(InvalidSettingsError(f"Invalid value provided for {rejected}.", result.failed))
            return False
        return True

    def update_orders(self) -> None:
        """Queue a batch to run once the current unit of work completes."""
        if self._invalidated:
            return None
        self.deferred.defer(self.really_update_orders)
        return None

    def really_update_orders(self) -> Optional[RunResult]:
        """Run a batch now. Never raises; returns None if skipped or failed."""
        if self._invalidated:
            return None
        return self.runner.run(self._settings)

    def schedule_events(self) -> Optional[bool]:
        """Register the recurring event if it is missing."""
        if self._invalidated:
            return None
        return self.schedule.ensure_scheduled(self._settings.start, self._settings.frequency)

    def update_events(self) -> Optional[bool]:
        """Re-register the recurring event with the current start and frequency."""
        if self._invalidated:
            return None
        self.schedule.reschedule(self._settings.start, self._settings.frequency)
        return True

    def clear_events(self) -> Optional[bool]:
        """Remove the recurring event, any lock or continuation marker and queued batches."""
        if self._invalidated:
            return None
        self.schedule.clear()
        self.deferred.discard(self.really_update_orders)
        return True

    def next_scheduled(self) -> Optional[int]:
        if self._invalidated:
            return None
        return self.schedule.next_fire_time()
