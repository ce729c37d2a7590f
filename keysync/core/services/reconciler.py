"""Reconciles a desired API key against the remote service.

The reconciler is a small state machine over ApiKeyState values:

    ABSENT -> CREATED -> READ <-> UPDATED -> DELETED

Mutating calls always go through the ApiRetryService so rate-limit
rejections are absorbed. Every mutation is followed by a read, so the state
handed back always matches what the service will return on later reads.
States are immutable: on failure the caller's state is left as it was.
"""

import logging
from dataclasses import replace
from typing import Any, Callable, Coroutine, Optional

from keysync.core.services.diff_evaluator import scopes_payload
from keysync.domain.errors import KeysyncError, ReconcileError, RefreshFailedError, RemoteOperationFailed
from keysync.domain.events.api_events import DomainEvent, ResourceTransitioned
from keysync.domain.interfaces.api_key_client import ApiKeyClient
from keysync.domain.models.api_key import ApiKeyState, DesiredApiKey, ResourceStatus
from keysync.domain.models.common import ApiKeyID, SubuserName
from keysync.infrastructure.resilience.api_retry import ApiRetryService, log_event

logger = logging.getLogger(__name__)


class ApiKeyReconciler:
    """Drives create/read/update/delete of a single API key."""

    def __init__(
        self,
        client: ApiKeyClient,
        retry_service: ApiRetryService,
        wrap_reads: bool = True,
        event_sink: Optional[Callable[[DomainEvent], None]] = None,
    ):
        """Initializes the reconciler.

        Args:
            client: The remote API key client.
            retry_service: Retry executor used for every mutating call.
            wrap_reads: Also route reads through the retry executor.
            event_sink: Receives lifecycle events; defaults to debug logging.
        """
        self.client = client
        self.retry_service = retry_service
        self.wrap_reads = wrap_reads
        self.event_sink = event_sink or log_event

    async def create(self, desired: DesiredApiKey, **retry_options: Any) -> ApiKeyState:
        """Creates the key and returns its normalized state, secret included.

        Raises:
            RefreshFailedError: The key was created but could not be read back;
                the error's state carries the new ID and secret.
        """
        if not desired.name:
            raise ReconcileError("An API key needs a name")

        logger.info(f"Creating API key '{desired.name}' with {len(desired.scopes)} scope(s)")
        created = await self._call(
            self.client.create_api_key,
            desired.name,
            sorted(desired.scopes),
            on_behalf_of=desired.on_behalf_of,
            endpoint_name="create_api_key",
            **retry_options,
        )

        state = ApiKeyState(
            key_id=created.key_id,
            name=created.name or desired.name,
            api_key=created.api_key,
            on_behalf_of=desired.on_behalf_of,
            status=ResourceStatus.CREATED,
        )
        self._transition(ResourceStatus.ABSENT, state)

        try:
            refreshed = await self._fetch(state, **retry_options)
        except KeysyncError as e:
            logger.error(f"Created API key {state.key_id} but could not read it back: {e}")
            raise RefreshFailedError(f"API key {state.key_id} created but refresh failed: {e}", state) from e
        return replace(refreshed, status=ResourceStatus.CREATED)

    async def read(self, state: ApiKeyState, **retry_options: Any) -> ApiKeyState:
        """Returns the key's current remote state with the forced scope filtered out."""
        self._require_live(state, "read")
        refreshed = await self._fetch(state, **retry_options)
        self._transition(state.status, refreshed)
        return refreshed

    async def import_key(
        self, key_id: str, on_behalf_of: Optional[str] = None, **retry_options: Any
    ) -> ApiKeyState:
        """Adopts an existing key by ID. Its secret cannot be recovered."""
        logger.info(f"Importing API key {key_id}")
        state = ApiKeyState(
            key_id=ApiKeyID(key_id),
            on_behalf_of=SubuserName(on_behalf_of) if on_behalf_of else None,
        )
        return await self.read(state, **retry_options)

    async def update(self, state: ApiKeyState, desired: DesiredApiKey, **retry_options: Any) -> ApiKeyState:
        """Pushes the desired name (always) and scopes (only if changed).

        The call acts on behalf of desired.on_behalf_of only; None targets the
        primary account.
        """
        self._require_live(state, "update")
        if not desired.name:
            raise ReconcileError("An API key needs a name")

        scopes = scopes_payload(state.scopes, desired.scopes)
        on_behalf_of = desired.on_behalf_of
        logger.info(
            f"Updating API key {state.key_id}: name='{desired.name}', "
            f"scopes={'unchanged' if scopes is None else sorted(scopes)}"
        )
        await self._call(
            self.client.update_api_key,
            state.key_id,
            desired.name,
            None if scopes is None else sorted(scopes),
            on_behalf_of=on_behalf_of,
            endpoint_name="update_api_key",
            **retry_options,
        )

        updated = replace(state, name=desired.name, on_behalf_of=on_behalf_of, status=ResourceStatus.UPDATED)
        if scopes is not None:
            updated = replace(updated, scopes=scopes)
        try:
            refreshed = await self._fetch(updated, **retry_options)
        except KeysyncError as e:
            logger.error(f"Updated API key {state.key_id} but could not read it back: {e}")
            raise RefreshFailedError(f"API key {state.key_id} updated but refresh failed: {e}", updated) from e

        refreshed = replace(refreshed, status=ResourceStatus.UPDATED)
        self._transition(state.status, refreshed)
        return refreshed

    async def delete(self, state: ApiKeyState, **retry_options: Any) -> ApiKeyState:
        """Revokes the key. The returned state is terminal."""
        self._require_live(state, "delete")
        logger.info(f"Deleting API key {state.key_id}")
        await self._call(
            self.client.delete_api_key,
            state.key_id,
            on_behalf_of=state.on_behalf_of,
            endpoint_name="delete_api_key",
            **retry_options,
        )
        deleted = replace(state, api_key=None, status=ResourceStatus.DELETED)
        self._transition(state.status, deleted)
        return deleted

    async def _fetch(self, state: ApiKeyState, **retry_options: Any) -> ApiKeyState:
        if self.wrap_reads:
            remote = await self._call(
                self.client.read_api_key,
                state.key_id,
                on_behalf_of=state.on_behalf_of,
                endpoint_name="read_api_key",
                **retry_options,
            )
        else:
            remote = await self.client.read_api_key(state.key_id, on_behalf_of=state.on_behalf_of)
        return state.observed(remote, ResourceStatus.READ)

    async def _call(
        self, func: Callable[..., Coroutine[Any, Any, Any]], *args: Any, **kwargs: Any
    ) -> Any:
        return await self.retry_service.execute_with_retry(func, *args, **kwargs)

    def _require_live(self, state: ApiKeyState, operation: str) -> None:
        if state.is_deleted:
            # Same outcome the service gives for a revoked ID.
            raise RemoteOperationFailed(f"API key {state.key_id} has been deleted", 404)
        if not state.key_id:
            raise ReconcileError(f"Cannot {operation} an API key that has no ID")

    def _transition(self, from_status: ResourceStatus, state: ApiKeyState) -> None:
        if from_status is not state.status:
            self.event_sink(ResourceTransitioned(
                key_id=state.key_id, from_status=from_status.value, to_status=state.status.value,
            ))
