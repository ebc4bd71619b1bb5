"""Exception types raised by statusctl."""

from typing import Iterable


class StatusCtlError(Exception):
    """Base class for statusctl errors."""


class InvalidSettingsError(StatusCtlError, ValueError):
    """One or more settings failed validation."""

    def __init__(self, message: str, fields: Iterable[str] = ()):
        super().__init__(message)
        self.fields = list(fields)


class MissingDependencyError(StatusCtlError):
    """The order store is not available."""


class StoreError(StatusCtlError):
    """The order store rejected an operation."""


class OrderNotFoundError(StoreError, KeyError):
    """An order disappeared between query and update."""

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id

    def __str__(self) -> str:
        return self.args[0]


class StatusCtlWarning(UserWarning):
    """Visible warning for diagnostics outside production."""
