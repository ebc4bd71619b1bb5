"""In-process actions, filters and deferred work."""

import logging
from typing import Any, Callable, Dict, List, Tuple

logger = logging.getLogger("statusctl.hooks")

ORDER_STATUS_UPDATED = "statusctl_order_status_updated"
SKIP_ORDER_UPDATE = "statusctl_skip_order_update"


class HookRegistry:
    """Named actions and filters.

    Actions are notified in registration order; filters pass a value through
    each callback in turn. A callback is registered at most once per name.
    """

    def __init__(self) -> None:
        self._actions: Dict[str, List[Callable[..., Any]]] = {}
        self._filters: Dict[str, List[Callable[..., Any]]] = {}

    def add_action(self, name: str, callback: Callable[..., Any]) -> None:
        callbacks = self._actions.setdefault(name, [])
        if callback not in callbacks:
            callbacks.append(callback)

    def remove_action(self, name: str, callback: Callable[..., Any]) -> None:
        callbacks = self._actions.get(name, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def has_action(self, name: str) -> bool:
        return bool(self._actions.get(name))

    def do_action(self, name: str, *args: Any) -> None:
        for callback in list(self._actions.get(name, [])):
            callback(*args)

    def add_filter(self, name: str, callback: Callable[..., Any]) -> None:
        callbacks = self._filters.setdefault(name, [])
        if callback not in callbacks:
            callbacks.append(callback)

    def remove_filter(self, name: str, callback: Callable[..., Any]) -> None:
        callbacks = self._filters.get(name, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def apply_filters(self, name: str, value: Any, *args: Any) -> Any:
        for callback in list(self._filters.get(name, [])):
            value = callback(value, *args)
        return value


class DeferredQueue:
    """Work handed off until the current unit of work completes.

    ``run_pending()`` is the end of the unit of work: it runs every queued
    callback once and never raises.
    """

    def __init__(self) -> None:
        self._pending: List[Tuple[Callable[..., Any], Tuple[Any, ...]]] = []

    def defer(self, callback: Callable[..., Any], *args: Any) -> None:
        if (callback, args) not in self._pending:
            self._pending.append((callback, args))

    def discard(self, callback: Callable[..., Any]) -> None:
        """Drop every queued call of callback."""
        self._pending = [entry for entry in self._pending if entry[0] != callback]

    def __len__(self) -> int:
        return len(self._pending)

    def run_pending(self) -> int:
        """Run queued callbacks, including ones queued while running. Returns how many ran."""
        ran = 0
        while self._pending:
            callback, args = self._pending.pop(0)
            try:
                callback(*args)
            except Exception:
                logger.exception("deferred_callback_failed", extra={"callback": repr(callback)})
            ran += 1
        return ran
