"""Field-by-field validation of updater settings."""

import math
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, NamedTuple, Optional, Set, Tuple

from .diagnostics import Diagnostics
from .models import OrderSettings, SinceField

STATUS_PREFIX = "wc-"
# 9999-12-31 23:59:59 UTC
MAX_TIMESTAMP = 253402300799

_UNITS = {
    "sec": 1, "second": 1,
    "min": 60, "minute": 60,
    "hour": 3600,
    "day": 86400,
    "week": 604800,
}
_RELATIVE = re.compile(r"([+-]?\d+)\s*(second|sec|minute|min|hour|day|week)s?")


def parse_time_expression(expression: str, now: Optional[float] = None) -> Optional[int]:
    """Resolve a time expression to a unix timestamp, or None if it can't be parsed.

    Understands ``now``, ``today``/``midnight``, ``tomorrow``, ``yesterday``,
    relative offsets such as ``+1 day 2 hours`` or ``3 hours ago``, and ISO 8601
    dates. Naive dates are taken as UTC.
    """
    now = time.time() if now is None else now
    text = expression.strip().lower()
    if not text:
        return None

    current = datetime.fromtimestamp(now, tz=timezone.utc)
    midnight = current.replace(hour=0, minute=0, second=0, microsecond=0)
    named = {
        "now": current,
        "today": midnight,
        "midnight": midnight,
        "tomorrow": midnight + timedelta(days=1),
        "yesterday": midnight - timedelta(days=1),
    }
    if text in named:
        return int(named[text].timestamp())

    body, ago = text, False
    if body.endswith(" ago"):
        body, ago = body[:-4].strip(), True
    if body.startswith("in "):
        body = body[3:].strip()
    if _RELATIVE.sub("", body).strip() == "" and _RELATIVE.search(body):
        offset = sum(int(n) * _UNITS[unit] for n, unit in _RELATIVE.findall(body))
        return int(now - offset if ago else now + offset)

    try:
        parsed = datetime.fromisoformat(expression.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def strip_status_prefix(status: str) -> str:
    return status[len(STATUS_PREFIX):] if status.startswith(STATUS_PREFIX) else status


def _as_int(value: Any) -> Optional[int]:
    """Truncated integer of a finite number or numeric string, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, float) or not math.isfinite(value):
        return None
    return int(value)


class Rejected(Exception):
    """A value failed its field rule."""


class ValidationResult(NamedTuple):
    settings: OrderSettings
    failed: List[str]

    @property
    def ok(self) -> bool:
        return not self.failed


class SettingsValidator:
    """Validates proposed setting values against the current settings.

    Each field goes through its own rule; a passing field is written back
    (coerced) into the working copy before the next field is checked, so
    ``target_statuses`` and ``new_status`` are always checked against the
    latest accepted value of the other. Failing fields keep their prior value
    and are reported through the diagnostics sink.
    """

    def __init__(
        self,
        intervals: Callable[[], Set[str]],
        diagnostics: Diagnostics,
        clock: Callable[[], float] = time.time,
    ):
        self._intervals = intervals
        self._diagnostics = diagnostics
        self._clock = clock
        self._rules: Dict[str, Callable[[Any, Dict[str, Any]], Any]] = {
            "days": self._validate_days,
            "since": self._validate_since,
            "target_statuses": self._validate_target_statuses,
            "new_status": self._validate_new_status,
            "limit": self._validate_limit,
            "frequency": self._validate_frequency,
            "start": self._validate_start,
            "hide_notices": self._validate_hide_notices,
            "block_exceptions": self._validate_block_exceptions,
        }

    @property
    def fields(self) -> Tuple[str, ...]:
        return tuple(self._rules)

    def validate(self, current: OrderSettings, proposed: Mapping[str, Any]) -> ValidationResult:
        working = current.model_dump()
        failed: List[str] = []

        # The notice flags apply to every other field's diagnostics.
        ordered = sorted(proposed, key=lambda name: name not in ("hide_notices", "block_exceptions"))
        for name in ordered:
            rule = self._rules.get(name)
            if rule is None:
                self._notice(f'Invalid setting "{name}" provided.', working)
                failed.append(name)
                continue
            try:
                working[name] = rule(proposed[name], working)
            except Rejected as e:
                self._notice(str(e), working)
                failed.append(name)

        return ValidationResult(OrderSettings(**working), failed)

    def _notice(self, message: str, working: Dict[str, Any]) -> None:
        self._diagnostics.notice(message, hidden=working["hide_notices"])

    def _validate_days(self, value: Any, working: Dict[str, Any]) -> int:
        days = _as_int(value)
        if days is None:
            raise Rejected("The days must be an integer.")
        if days < 1:
            raise Rejected("The days must be greater than or equal to 1.")
        return days

    def _validate_since(self, value: Any, working: Dict[str, Any]) -> SinceField:
        choices = ", ".join(s.value for s in SinceField)
        if not isinstance(value, str):
            raise Rejected(f"The since setting must be one of the following: {choices}")
        name = value[len("date_"):] if value.startswith("date_") else value
        try:
            return SinceField(name)
        except ValueError:
            raise Rejected(f"The since setting must be one of the following: {choices}") from None

    def _statuses_conflict(self, new_status: str, target_statuses: Iterable[str]) -> bool:
        return new_status in target_statuses

    def _validate_target_statuses(self, value: Any, working: Dict[str, Any]) -> Tuple[str, ...]:
        values = list(value) if isinstance(value, (list, tuple, set, frozenset)) else [value]
        if not values:
            raise Rejected("The target statuses cannot be empty.")
        statuses: List[str] = []
        for status in values:
            if not isinstance(status, str) or not status.strip():
                raise Rejected("The target statuses must be non-empty strings.")
            status = strip_status_prefix(status.strip())
            if status not in statuses:
                statuses.append(status)
        if self._statuses_conflict(working["new_status"], statuses):
            raise Rejected("The new status cannot be one of the target statuses.")
        return tuple(statuses)

    def _validate_new_status(self, value: Any, working: Dict[str, Any]) -> str:
        if not isinstance(value, str) or not value.strip():
            raise Rejected("The new status must be a non-empty string.")
        status = strip_status_prefix(value.strip())
        if self._statuses_conflict(status, working["target_statuses"]):
            raise Rejected("The new status cannot be one of the target statuses.")
        return status

    def _validate_limit(self, value: Any, working: Dict[str, Any]) -> int:
        limit = _as_int(value)
        if limit is None:
            raise Rejected("The limit must be an integer.")
        if limit == 0 or limit < -1:
            raise Rejected("The limit must be -1 or greater than or equal to 1.")
        return limit

    def _validate_frequency(self, value: Any, working: Dict[str, Any]) -> str:
        frequencies = self._intervals()
        if not isinstance(value, str) or value not in frequencies:
            raise Rejected(f"The frequency must be one of the following: {', '.join(sorted(frequencies))}")
        return value

    def _validate_start(self, value: Any, working: Dict[str, Any]) -> int:
        start = _as_int(value)
        if start is None and isinstance(value, str):
            start = parse_time_expression(value, self._clock())
        if start is None or not 0 <= start <= MAX_TIMESTAMP:
            raise Rejected("The start must be a valid timestamp or a parsable time expression.")
        return start

    def _validate_hide_notices(self, value: Any, working: Dict[str, Any]) -> bool:
        if not isinstance(value, bool):
            raise Rejected("The hide_notices setting must be a boolean.")
        return value

    def _validate_block_exceptions(self, value: Any, working: Dict[str, Any]) -> bool:
        if not isinstance(value, bool):
            raise Rejected("The block_exceptions setting must be a boolean.")
        return value
