"""Domain exceptions.

Remote failures are raised as RequestError subclasses by the client adapter;
the retry service and the reconciler add their own terminal errors on top.
"""

from typing import Any, Optional


class KeysyncError(Exception):
    """Base class for every error raised by keysync."""


# --- Remote request errors ---

class RequestError(KeysyncError):
    """A remote call failed."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message if status_code is None else f"[{status_code}] {message}")


class RateLimitedError(RequestError):
    """The remote rejected the call because of rate limiting (HTTP 429).

    retry_after is the service-suggested wait in seconds, if it gave one.
    """
    def __init__(self, message: str = "Too many requests", retry_after: Optional[float] = None, status_code: int = 429):
        self.retry_after = retry_after
        super().__init__(message, status_code)


class RemoteOperationFailed(RequestError):
    """Non-retryable remote failure (not found, validation rejection, ...)."""


# --- Retry errors ---

class MaxRetryError(KeysyncError):
    """Exception raised when max retries are exceeded."""
    def __init__(self, original_exception: Exception, attempts: int):
        self.original_exception = original_exception
        self.attempts = attempts
        super().__init__(f"Max retries ({attempts}) exceeded. Last error: {original_exception}")


class OperationCancelledError(KeysyncError):
    """The surrounding context cancelled a call that was waiting to retry."""
    def __init__(self, message: str, last_exception: Optional[Exception] = None):
        self.last_exception = last_exception
        super().__init__(message)


class OperationTimedOutError(OperationCancelledError):
    """The deadline passed before a retryable call could complete."""


# --- Reconciliation errors ---

class ReconcileError(KeysyncError):
    """An operation was requested from a state that does not allow it."""


class RefreshFailedError(ReconcileError):
    """A mutation succeeded but the follow-up read did not.

    state holds what is known after the mutation (for create: the new ID and
    secret), so the caller can still persist it.
    """
    def __init__(self, message: str, state: Any):
        self.state = state
        super().__init__(message)
