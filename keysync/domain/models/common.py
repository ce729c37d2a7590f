"""Defines common Value Objects used across the API key context.

These objects represent simple values like key identifiers, scope names
and subuser names, ensuring consistency and type safety.
"""

from typing import FrozenSet, Iterable, NewType, Optional, TypedDict

# === Core Value Objects ===

# Using NewType for semantic clarity, although they are strings at runtime.
ApiKeyID = NewType("ApiKeyID", str)        # Opaque ID assigned by SendGrid on creation
ScopeName = NewType("ScopeName", str)      # A single permission, e.g. 'mail.send'
SubuserName = NewType("SubuserName", str)  # Target of the on-behalf-of header
SecretValue = NewType("SecretValue", str)  # The 'SG.xxx' key, only returned by create

ScopeSet = FrozenSet[str]

# SendGrid adds this scope to every key it returns; it is never user-controlled.
FORCED_SCOPE = ScopeName("2fa_required")


def to_scope_set(scopes: Optional[Iterable[str]]) -> ScopeSet:
    """Collapses any iterable of scopes into an unordered set.

    None becomes the empty set and empty scope names are dropped.
    """
    if scopes is None:
        return frozenset()
    return frozenset(scope for scope in scopes if scope)


def without_forced_scope(scopes: Optional[Iterable[str]]) -> ScopeSet:
    """Returns the scopes with the implicit forced scope removed."""
    return to_scope_set(scopes) - {FORCED_SCOPE}


# --- Structured Data ---
class BackoffPolicy(TypedDict):
    """Value Object representing retry backoff configuration."""
    max_retries: int
    initial_delay: float
    factor: float
    max_delay: float
    max_elapsed: Optional[float]
