"""Exception hierarchy shared by the store, the media manager and the editor."""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .services.media import AssetKind


class SugarStepsError(RuntimeError):
    """Base class for every recoverable error raised by the core."""


class BootstrapError(SugarStepsError):
    """Raised when initialization cannot be completed."""


class ValidationError(SugarStepsError):
    """A required field is missing or out of range."""

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class AssetCopyError(SugarStepsError):
    """One or more media sources could not be copied into private storage."""

    def __init__(self, failures: Dict["AssetKind", str]) -> None:
        self.failures = dict(failures)
        kinds = ", ".join(kind.value for kind in self.failures)
        super().__init__(f"Failed to store lesson media ({kinds})")


class StoreError(SugarStepsError):
    """A store operation failed."""


class ConstraintError(StoreError):
    """A uniqueness or integrity rule was violated on write."""


class NotFoundError(SugarStepsError):
    """No entity exists for the requested id."""

    def __init__(self, entity: str, entity_id: int) -> None:
        super().__init__(f"No {entity} with id={entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class PermissionDeniedError(SugarStepsError):
    """The active user's role does not allow the requested lesson mutation."""


class SubscriptionClosed(SugarStepsError):
    """The subscription was cancelled and will deliver no further values."""


__all__ = [
    "AssetCopyError",
    "BootstrapError",
    "ConstraintError",
    "NotFoundError",
    "PermissionDeniedError",
    "StoreError",
    "SubscriptionClosed",
    "SugarStepsError",
    "ValidationError",
]
