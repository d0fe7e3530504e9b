"""Error taxonomy for the subscription engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional


class SubscriptionEngineError(Exception):
    """Base class for engine failures."""


class ConfigurationError(SubscriptionEngineError):
    """A required external attribute (e.g. a variant's issue count) is missing or invalid."""


class NotFoundError(SubscriptionEngineError, LookupError):
    """A referenced record does not exist at processing time."""


class TransientError(SubscriptionEngineError):
    """The backing store is unavailable; the whole event should be redelivered."""


class ConcurrencyConflict(SubscriptionEngineError):
    """A versioned write lost against a concurrent writer."""


@dataclass
class StoreValidationError(SubscriptionEngineError):
    """The store rejected a create or update."""

    message: str
    user_errors: List[Mapping[str, Any]] = field(default_factory=list)
    record_type: Optional[str] = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @property
    def payload(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "record_type": self.record_type,
            "user_errors": [dict(error) for error in self.user_errors],
        }


__all__ = [
    "ConcurrencyConflict",
    "ConfigurationError",
    "NotFoundError",
    "StoreValidationError",
    "SubscriptionEngineError",
    "TransientError",
]
