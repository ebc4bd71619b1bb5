"""Data models for orders, instance settings and batch runs."""

import time
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple
from pydantic import BaseModel, Field, field_validator


class SinceField(str, Enum):
    """Order timestamps the age threshold can be measured from."""
    MODIFIED = "modified"
    CREATED = "created"
    COMPLETED = "completed"
    PAID = "paid"

    @property
    def attribute(self) -> str:
        """Name of the matching timestamp attribute on Order."""
        return f"date_{self.value}"


class OrderNote(BaseModel):
    """Audit note attached to an order."""
    note: str
    added_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Order(BaseModel):
    """A record whose status can be moved over time."""
    id: str
    status: str = "pending"
    date_created: Optional[datetime] = Field(default_factory=lambda: datetime.now(timezone.utc))
    date_modified: Optional[datetime] = Field(default_factory=lambda: datetime.now(timezone.utc))
    date_completed: Optional[datetime] = None
    date_paid: Optional[datetime] = None
    notes: List[OrderNote] = Field(default_factory=list)

    @field_validator("date_created", "date_modified", "date_completed", "date_paid")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def get_status(self) -> str:
        return self.status

    def timestamp(self, since: SinceField) -> Optional[datetime]:
        return getattr(self, since.attribute)


class OrderSettings(BaseModel):
    """Validated configuration of one updater instance.

    Only SettingsValidator should produce new values of this model; the
    field-level rules (and the target/new status conflict check) live there.
    """
    days: int = 90
    since: SinceField = SinceField.MODIFIED
    target_statuses: Tuple[str, ...] = ("pending",)
    new_status: str = "cancelled"
    limit: int = -1
    frequency: str = "daily"
    start: int = Field(default_factory=lambda: int(time.time()))
    hide_notices: bool = False
    block_exceptions: bool = False

    class Config:
        frozen = True
        use_enum_values = False


class ContinuationState(BaseModel):
    """Progress of a logical run that was cut short by the batch cap."""
    processed: int = 0
    skipped: int = 0


class ScheduledEvent(BaseModel):
    """A recurring event registered with the timer subsystem."""
    event_id: str
    next_run: int
    frequency: str
    interval: int


class RunResult(BaseModel):
    """Outcome of one physical batch invocation."""
    slug: str
    cutoff: datetime
    applied_cap: int
    queried: int = 0
    updated: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    processed_total: int = 0
    continued: bool = False
