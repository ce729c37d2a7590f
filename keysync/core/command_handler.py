"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py), turns CLI arguments
into desired state, delegates to the ApiKeyReconciler and reports the
result through the UserInterface.
"""

import logging
from typing import List, Optional, Union

from keysync.core.services.reconciler import ApiKeyReconciler
from keysync.domain.errors import KeysyncError, RefreshFailedError
from keysync.domain.interfaces.user_interface import UserInterface
from keysync.domain.models.api_key import ApiKeyState, DesiredApiKey

logger = logging.getLogger(__name__)


class CommandHandler:
    """Handles incoming commands and delegates to the reconciler.

    Each handle_* coroutine returns the resulting state, or None after
    reporting an error to the user. A declined delete returns False.
    """

    def __init__(self, reconciler: ApiKeyReconciler, ui: UserInterface):
        self.reconciler = reconciler
        self.ui = ui

    async def handle_create(
        self, name: str, scopes: List[str], on_behalf_of: Optional[str] = None
    ) -> Optional[ApiKeyState]:
        """Handles the 'create' command."""
        desired = DesiredApiKey.build(name, scopes, on_behalf_of)
        try:
            state = await self.reconciler.create(desired)
        except RefreshFailedError as e:
            # The key exists; the secret must still reach the user.
            logger.error(f"Create succeeded but refresh failed: {e}", exc_info=True)
            self.ui.display_warning(f"Created API key {e.state.key_id} but could not read it back: {e.__cause__}")
            self.ui.display_secret(e.state)
            return None
        except KeysyncError as e:
            logger.error(f"Create failed: {e}", exc_info=True)
            self.ui.display_error(f"Failed to create API key '{name}': {e}")
            return None

        self.ui.display_key_state(state, title="Created API key")
        self.ui.display_secret(state)
        return state

    async def handle_show(self, key_id: str, on_behalf_of: Optional[str] = None) -> Optional[ApiKeyState]:
        """Handles the 'show' command (import by ID)."""
        try:
            state = await self.reconciler.import_key(key_id, on_behalf_of)
        except KeysyncError as e:
            logger.error(f"Read of {key_id} failed: {e}", exc_info=True)
            self.ui.display_error(f"Failed to read API key {key_id}: {e}")
            return None
        self.ui.display_key_state(state)
        return state

    async def handle_update(
        self,
        key_id: str,
        name: Optional[str] = None,
        scopes: Optional[List[str]] = None,
        on_behalf_of: Optional[str] = None,
    ) -> Optional[ApiKeyState]:
        """Handles the 'update' command.

        The current state is read first; options left out keep their current value.
        """
        try:
            current = await self.reconciler.import_key(key_id, on_behalf_of)
            desired = DesiredApiKey.build(
                name or current.name,
                current.scopes if scopes is None else scopes,
                on_behalf_of,
            )
            state = await self.reconciler.update(current, desired)
        except KeysyncError as e:
            logger.error(f"Update of {key_id} failed: {e}", exc_info=True)
            self.ui.display_error(f"Failed to update API key {key_id}: {e}")
            return None
        self.ui.display_key_state(state, title="Updated API key")
        return state

    async def handle_delete(
        self, key_id: str, on_behalf_of: Optional[str] = None, confirm: bool = True
    ) -> Union[ApiKeyState, bool, None]:
        """Handles the 'delete' command.

        Returns False when the user declines the confirmation; that is not a failure.
        """
        if confirm and not self.ui.ask_yes_no_question(f"Delete API key {key_id}?"):
            self.ui.display_info("Aborted.")
            return False
        try:
            current = await self.reconciler.import_key(key_id, on_behalf_of)
            state = await self.reconciler.delete(current)
        except KeysyncError as e:
            logger.error(f"Delete of {key_id} failed: {e}", exc_info=True)
            self.ui.display_error(f"Failed to delete API key {key_id}: {e}")
            return None
        self.ui.display_info(f"API key {key_id} deleted.")
        return state
