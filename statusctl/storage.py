"""Persistent orders, transients, events and instance settings using JSON files."""

import json
import os
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Collection, Dict, Iterator, List, Optional, Set
from .errors import OrderNotFoundError
from .models import Order, OrderNote, ScheduledEvent, SinceField

# Handle platform-specific locking
if sys.platform == "win32":
    import msvcrt
else:
    import fcntl


INTERVALS: Dict[str, int] = {
    "hourly": 3600,
    "twicedaily": 43200,
    "daily": 86400,
    "weekly": 604800,
}


class JsonStore:
    """Base for file-backed stores sharing one data directory."""

    filename = "data.json"
    empty: Any = {}

    def __init__(self, data_dir: str = ".statusctl", clock: Callable[[], float] = time.time):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.locks_dir = self.data_dir / "locks"
        self.locks_dir.mkdir(exist_ok=True)
        self.path = self.data_dir / self.filename
        self.clock = clock

        if not self.path.exists():
            self._write_json(self.path, self.empty)

    def _write_json(self, file_path: Path, data: Any) -> None:
        """Write data to JSON file with atomic write."""
        temp_file = file_path.with_suffix(".tmp")
        with open(temp_file, "w") as f:
            json.dump(data, f, indent=2, default=str)
        temp_file.replace(file_path)

    def _read_json(self, file_path: Path) -> Any:
        """Read JSON file safely."""
        if not file_path.exists():
            return type(self.empty)()
        with open(file_path, "r") as f:
            return json.load(f)

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold an exclusive lock on this store across a read-modify-write."""
        lock_file = self.locks_dir / f"{self.path.stem}.lock"
        fd = os.open(str(lock_file), os.O_CREAT | os.O_WRONLY, 0o644)
        try:
            if sys.platform == "win32":
                msvcrt.locking(fd, msvcrt.LK_LOCK, 1)
            else:
                fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            if sys.platform == "win32":
                try:
                    msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
                except OSError:
                    pass
            else:
                fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)


class OrderStore(JsonStore):
    """File-based order records."""

    filename = "orders.json"
    empty: Any = []

    def is_available(self) -> bool:
        return self.path.exists()

    def add_order(self, order: Order) -> None:
        """Add a new order."""
        with self._locked():
            orders = self._read_json(self.path)
            if any(o["id"] == order.id for o in orders):
                raise ValueError(f"Order {order.id} already exists")
            orders.append(order.model_dump(mode="json"))
            self._write_json(self.path, orders)

    def get_order(self, order_id: str) -> Optional[Order]:
        """Get an order by ID."""
        for order_data in self._read_json(self.path):
            if order_data["id"] == order_id:
                return Order(**order_data)
        return None

    def get_all_orders(self) -> List[Order]:
        """Get all orders."""
        return [Order(**order_data) for order_data in self._read_json(self.path)]

    def get_orders_by_status(self, status: str) -> List[Order]:
        """Get all orders in a specific status."""
        return [order for order in self.get_all_orders() if order.status == status]

    def query(
        self,
        statuses: Collection[str],
        limit: int,
        since: SinceField,
        cutoff: datetime,
        offset: int = 0,
    ) -> List[Order]:
        """Orders in one of ``statuses`` whose ``since`` timestamp is at or before cutoff, oldest first."""
        wanted = set(statuses)
        eligible = []
        for order in self.get_all_orders():
            stamp = order.timestamp(since)
            if order.status in wanted and stamp is not None and stamp <= cutoff:
                eligible.append(order)
        # sorted() is stable, so ties keep insertion order
        eligible = sorted(eligible, key=lambda o: o.timestamp(since))
        if limit < 0:
            return eligible[offset:]
        return eligible[offset:offset + limit]

    def update_status(self, order: Order, new_status: str, note: str) -> Order:
        """Move an order to a new status and record an audit note."""
        with self._locked():
            orders = self._read_json(self.path)
            for i, order_data in enumerate(orders):
                if order_data["id"] == order.id:
                    updated = Order(**order_data)
                    updated.status = new_status
                    updated.date_modified = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
                    updated.notes.append(OrderNote(note=note))
                    orders[i] = updated.model_dump(mode="json")
                    self._write_json(self.path, orders)
                    return updated
        raise OrderNotFoundError(order.id)


class TransientStore(JsonStore):
    """Key-value pairs that expire after a number of seconds."""

    filename = "transients.json"

    def _live(self, data: Dict[str, Any]) -> Dict[str, Any]:
        now = self.clock()
        return {k: v for k, v in data.items() if v["expires_at"] > now}

    def set_if_absent(self, key: str, value: Any, ttl: int) -> bool:
        """Store value unless a live value exists. Returns whether it was stored."""
        with self._locked():
            data = self._live(self._read_json(self.path))
            if key in data:
                return False
            data[key] = {"value": value, "expires_at": self.clock() + ttl}
            self._write_json(self.path, data)
            return True

    def set(self, key: str, value: Any, ttl: int) -> None:
        with self._locked():
            data = self._live(self._read_json(self.path))
            data[key] = {"value": value, "expires_at": self.clock() + ttl}
            self._write_json(self.path, data)

    def get(self, key: str) -> Any:
        entry = self._live(self._read_json(self.path)).get(key)
        return entry["value"] if entry else None

    def delete(self, key: str) -> None:
        with self._locked():
            data = self._live(self._read_json(self.path))
            data.pop(key, None)
            self._write_json(self.path, data)


class EventScheduler(JsonStore):
    """Recurring events keyed by event id."""

    filename = "events.json"

    def __init__(
        self,
        data_dir: str = ".statusctl",
        clock: Callable[[], float] = time.time,
        intervals: Optional[Dict[str, int]] = None,
    ):
        super().__init__(data_dir, clock)
        self.intervals = dict(INTERVALS)
        if intervals:
            self.intervals.update(intervals)

    def known_intervals(self) -> Set[str]:
        return set(self.intervals)

    def get_event(self, event_id: str) -> Optional[ScheduledEvent]:
        event_data = self._read_json(self.path).get(event_id)
        return ScheduledEvent(**event_data) if event_data else None

    def get_all_events(self) -> List[ScheduledEvent]:
        return [ScheduledEvent(**e) for e in self._read_json(self.path).values()]

    def next_fire_time(self, event_id: str) -> Optional[int]:
        event = self.get_event(event_id)
        return event.next_run if event else None

    def schedule(self, event_id: str, start: int, frequency: str) -> None:
        """Register a recurring event first firing at ``start``."""
        if frequency not in self.intervals:
            raise ValueError(f"Unknown interval: {frequency}")
        event = ScheduledEvent(
            event_id=event_id,
            next_run=int(start),
            frequency=frequency,
            interval=self.intervals[frequency],
        )
        with self._locked():
            events = self._read_json(self.path)
            events[event_id] = event.model_dump()
            self._write_json(self.path, events)

    def clear(self, event_id: str) -> None:
        with self._locked():
            events = self._read_json(self.path)
            if events.pop(event_id, None) is not None:
                self._write_json(self.path, events)

    def due_events(self, now: Optional[float] = None) -> List[str]:
        """Event ids whose next run is at or before now."""
        now = self.clock() if now is None else now
        return [e.event_id for e in self.get_all_events() if e.next_run <= now]

    def advance(self, event_id: str, now: Optional[float] = None) -> Optional[int]:
        """Move a fired event to its first future run. Returns the new next run."""
        now = self.clock() if now is None else now
        with self._locked():
            events = self._read_json(self.path)
            event_data = events.get(event_id)
            if not event_data:
                return None
            event = ScheduledEvent(**event_data)
            next_run = event.next_run
            while next_run <= now:
                next_run += event.interval
            event.next_run = next_run
            events[event_id] = event.model_dump()
            self._write_json(self.path, events)
            return next_run


class InstanceRegistry(JsonStore):
    """Raw setting overrides of named updater instances."""

    filename = "instances.json"

    def get_all(self) -> Dict[str, Dict[str, Any]]:
        return self._read_json(self.path)

    def get(self, slug: str) -> Optional[Dict[str, Any]]:
        return self._read_json(self.path).get(slug)

    def save(self, slug: str, overrides: Dict[str, Any]) -> None:
        with self._locked():
            instances = self._read_json(self.path)
            instances[slug] = overrides
            self._write_json(self.path, instances)

    def remove(self, slug: str) -> bool:
        with self._locked():
            instances = self._read_json(self.path)
            if instances.pop(slug, None) is None:
                return False
            self._write_json(self.path, instances)
            return True
