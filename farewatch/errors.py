from __future__ import annotations


class FareWatchError(RuntimeError):
    """Base class for all farewatch errors."""


class ProviderError(FareWatchError):
    """Network, auth, quota or payload failure inside one provider adapter."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class OrchestrationError(FareWatchError):
    """A tracker check could not complete."""


class TrackerNotFoundError(OrchestrationError):
    def __init__(self, tracker_id: str) -> None:
        super().__init__(f"Tracker {tracker_id} not found")
        self.tracker_id = tracker_id


class PersistenceError(OrchestrationError):
    """Writing a batch or tracker state to storage failed."""


class TrackerValidationError(ValueError):
    """Tracker configuration rejected at creation time."""


class StatusTransitionError(FareWatchError):
    """Requested status change is not allowed from the current status."""


__all__ = [
    "FareWatchError",
    "ProviderError",
    "OrchestrationError",
    "TrackerNotFoundError",
    "PersistenceError",
    "TrackerValidationError",
    "StatusTransitionError",
]
