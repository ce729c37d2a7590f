"""Interface for the remote API key service.

Defines the four calls the reconciler needs. Implementations translate
between the remote wire format and the domain ApiKey model.
"""

import abc
from typing import Iterable, Optional

from keysync.domain.models.api_key import ApiKey
from keysync.domain.models.common import ApiKeyID


class ApiKeyClient(abc.ABC):
    """Abstract Base Class for API key CRUD calls.

    Every method takes on_behalf_of explicitly so one client instance can be
    shared between reconciliations targeting different subusers.
    """

    @abc.abstractmethod
    async def create_api_key(
        self, name: str, scopes: Iterable[str], on_behalf_of: Optional[str] = None
    ) -> ApiKey:
        """Creates a key.

        Returns:
            The created ApiKey, including the one-time secret in api_key.

        Raises:
            RateLimitedError: If the service asks the caller to back off.
            RemoteOperationFailed: For any other failure.
        """
        pass

    @abc.abstractmethod
    async def read_api_key(self, key_id: ApiKeyID, on_behalf_of: Optional[str] = None) -> ApiKey:
        """Fetches a key's name and scopes (never the secret)."""
        pass

    @abc.abstractmethod
    async def update_api_key(
        self,
        key_id: ApiKeyID,
        name: str,
        scopes: Optional[Iterable[str]] = None,
        on_behalf_of: Optional[str] = None,
    ) -> ApiKey:
        """Renames a key and, when scopes is not None, replaces its scopes.

        Passing scopes=None must leave the remote scopes untouched.
        """
        pass

    @abc.abstractmethod
    async def delete_api_key(self, key_id: ApiKeyID, on_behalf_of: Optional[str] = None) -> None:
        """Revokes a key. The ID is invalid afterwards."""
        pass
