"""Domain Events related to remote calls and key lifecycle.

Examples include events for when calls are started, retried, cancelled,
fail or succeed, and when a managed key changes lifecycle state.
"""

from dataclasses import dataclass, field
import time
from typing import Optional


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


# --- Remote Call Events ---

@dataclass
class ApiCallInitiated(DomainEvent):
    """Event triggered when a remote call is about to be made."""
    endpoint: str  # e.g., 'create_api_key'
    attempt_number: int = 1
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallSucceeded(DomainEvent):
    """Event triggered when a remote call succeeds."""
    endpoint: str
    latency_ms: float
    attempts: int = 1
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallFailed(DomainEvent):
    """Event triggered when a remote call fails definitively."""
    endpoint: str
    error_type: str
    error_message: str
    attempts: int = 1
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a rate-limited call is scheduled for retry."""
    endpoint: str
    attempt_number: int
    delay_seconds: float
    hinted: bool = False  # True when the delay came from the service
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallCancelled(DomainEvent):
    """Event triggered when a pending retry is abandoned (cancel or deadline)."""
    endpoint: str
    reason: str  # 'cancelled' or 'deadline'
    attempts: int
    timestamp: float = field(default_factory=time.time)


# --- Lifecycle Events ---

@dataclass
class ResourceTransitioned(DomainEvent):
    """Event triggered when the reconciler moves a key to a new status."""
    key_id: Optional[str]
    from_status: str
    to_status: str
    timestamp: float = field(default_factory=time.time)
