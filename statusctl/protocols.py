"""
Capability interfaces consumed by the updater.

The JSON-file stores in ``statusctl.storage`` implement all three; any other
backend with the same methods can be passed to ``AutoStatusUpdater`` instead.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Collection, List, Optional, Protocol, Set, runtime_checkable

from .models import Order, SinceField


@runtime_checkable
class RecordStore(Protocol):
    """Query orders by status and age, and move them to a new status."""

    def is_available(self) -> bool: ...

    def query(
        self,
        statuses: Collection[str],
        limit: int,
        since: SinceField,
        cutoff: datetime,
        offset: int = 0,
    ) -> List[Order]:
        """Return orders in ``statuses`` whose ``since`` timestamp is <= cutoff.

        Ordered oldest first, at most ``limit`` of them after skipping ``offset``.
        """
        ...

    def update_status(self, order: Order, new_status: str, note: str) -> Order:
        """Persist the new status with an audit note.

        Raises:
            OrderNotFoundError: If the order no longer exists.
        """
        ...


@runtime_checkable
class TimerSubsystem(Protocol):
    """Recurring event registrations."""

    def known_intervals(self) -> Set[str]: ...

    def next_fire_time(self, event_id: str) -> Optional[int]: ...

    def schedule(self, event_id: str, start: int, frequency: str) -> None: ...

    def clear(self, event_id: str) -> None: ...


@runtime_checkable
class KeyValueStore(Protocol):
    """Ephemeral values with expiry."""

    def set_if_absent(self, key: str, value: Any, ttl: int) -> bool: ...

    def set(self, key: str, value: Any, ttl: int) -> None: ...

    def get(self, key: str) -> Any: ...

    def delete(self, key: str) -> None: ...
