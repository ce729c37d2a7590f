"""Domain models for SendGrid API keys.

Includes the raw remote representation, the caller's desired state and the
canonical state the reconciler hands back after every operation.
"""

import enum
from dataclasses import dataclass, field, replace
from typing import Iterable, Optional, Tuple

from .common import (
    ApiKeyID,
    ScopeSet,
    SecretValue,
    SubuserName,
    to_scope_set,
    without_forced_scope,
)


class ResourceStatus(str, enum.Enum):
    """Lifecycle of a managed API key."""
    ABSENT = "absent"
    CREATED = "created"
    READ = "read"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class ApiKey:
    """An API key exactly as the remote service returned it."""
    key_id: ApiKeyID
    name: str
    scopes: Tuple[str, ...] = ()
    api_key: Optional[SecretValue] = None  # Only set on the create response


@dataclass(frozen=True)
class DesiredApiKey:
    """Caller-declared target values for an API key."""
    name: str
    scopes: ScopeSet = field(default_factory=frozenset)
    on_behalf_of: Optional[SubuserName] = None

    @classmethod
    def build(
        cls,
        name: str,
        scopes: Optional[Iterable[str]] = None,
        on_behalf_of: Optional[str] = None,
    ) -> "DesiredApiKey":
        """Normalizes loose inputs (lists, duplicates, empty strings)."""
        return cls(
            name=name,
            scopes=to_scope_set(scopes),
            on_behalf_of=SubuserName(on_behalf_of) if on_behalf_of else None,
        )


@dataclass(frozen=True)
class ApiKeyState:
    """Canonical state of a managed key, as last observed from the remote."""
    key_id: Optional[ApiKeyID] = None
    name: Optional[str] = None
    scopes: ScopeSet = field(default_factory=frozenset)
    api_key: Optional[SecretValue] = None
    on_behalf_of: Optional[SubuserName] = None
    status: ResourceStatus = ResourceStatus.ABSENT

    @property
    def is_deleted(self) -> bool:
        return self.status is ResourceStatus.DELETED

    def observed(self, remote: ApiKey, status: ResourceStatus) -> "ApiKeyState":
        """Returns a copy refreshed from a remote read.

        The secret is carried over from this state because reads never return it.
        """
        return replace(
            self,
            key_id=remote.key_id,
            name=remote.name,
            scopes=without_forced_scope(remote.scopes),
            status=status,
        )
