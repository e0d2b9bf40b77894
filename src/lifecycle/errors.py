"""Error taxonomy shared by the engine and the marketplace service layer."""

from __future__ import annotations

from typing import Any


class MarketplaceError(Exception):
    """Base class. ``user_message`` is safe to show in the UI."""

    user_message = "Something went wrong"

    def __init__(self, message: str = "", *, user_message: str | None = None) -> None:
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class InvalidTransitionError(MarketplaceError):
    user_message = "Cannot perform this action"

    def __init__(self, entity_type: str, current: str, target: str) -> None:
        self.entity_type = entity_type
        self.current = current
        self.target = target
        super().__init__(f"{entity_type}: illegal transition {current} -> {target}")


class NotFoundError(MarketplaceError):
    user_message = "This item is no longer available, refreshing"

    def __init__(self, record_id: int, entity_type: str = "") -> None:
        self.record_id = record_id
        self.entity_type = entity_type
        label = f"{entity_type} " if entity_type else ""
        super().__init__(f"{label}{record_id} not found")


class TransportError(MarketplaceError):
    user_message = "Could not reach the marketplace, try again later"

    def __init__(self, message: str, *, status_code: int = 0, code: str = "") -> None:
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class PartialBatchFailure(MarketplaceError):
    """Summary of a bulk action where some items failed."""

    user_message = "Some items could not be updated"

    def __init__(self, succeeded: int, failed: int, failures: dict[int, str] | None = None) -> None:
        self.succeeded = succeeded
        self.failed = failed
        self.failures: dict[int, str] = dict(failures or {})
        super().__init__(f"{succeeded} succeeded, {failed} failed")

    def summary(self) -> dict[str, Any]:
        return {"succeeded": self.succeeded, "failed": self.failed, "failures": dict(self.failures)}


class UnknownEntityTypeError(MarketplaceError):
    def __init__(self, entity_type: Any) -> None:
        self.entity_type = entity_type
        super().__init__(f"unknown entity type: {entity_type!r}")


class UnknownStatusError(MarketplaceError):
    def __init__(self, entity_type: str, status: Any) -> None:
        self.entity_type = entity_type
        self.status = status
        super().__init__(f"unknown {entity_type} status: {status!r}")
