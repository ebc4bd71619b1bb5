"""Run lock and continuation marker for one updater instance."""

from typing import Optional
from .models import ContinuationState
from .protocols import KeyValueStore
from .settings import DEFAULT_LOCK_TTL


class LockCoordinator:
    """Non-blocking, expiring run lock plus the continuation marker.

    Both live in the shared key-value store under keys derived from the
    instance's event hook, so separate processes see the same state. A holder
    that dies without releasing the lock is recovered by expiry.
    """

    def __init__(self, store: KeyValueStore, event_hook: str, lock_ttl: int = DEFAULT_LOCK_TTL):
        self.store = store
        self.lock_key = f"{event_hook}_lock"
        self.continuation_key = f"{event_hook}_continue"
        self.lock_ttl = lock_ttl

    def try_acquire(self, ttl: Optional[int] = None) -> bool:
        """Take the lock if nobody holds it. Never waits."""
        return self.store.set_if_absent(self.lock_key, True, ttl or self.lock_ttl)

    def release(self) -> None:
        self.store.delete(self.lock_key)

    def is_locked(self) -> bool:
        return bool(self.store.get(self.lock_key))

    def mark_continuation(self, state: ContinuationState, ttl: int) -> None:
        self.store.set(self.continuation_key, state.model_dump(), ttl)

    def continuation(self) -> Optional[ContinuationState]:
        data = self.store.get(self.continuation_key)
        return ContinuationState(**data) if data else None

    def has_continuation(self) -> bool:
        return self.continuation() is not None

    def clear_continuation(self) -> None:
        self.store.delete(self.continuation_key)
