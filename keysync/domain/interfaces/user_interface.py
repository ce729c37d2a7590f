"""Interface for reporting results to the user.

Defines the contract for displaying key state, one-time secrets, errors,
warnings and informational messages, allowing different UI implementations.
"""

import abc
from typing import Any

from keysync.domain.models.api_key import ApiKeyState


class UserInterface(abc.ABC):
    """Abstract Base Class for user interaction."""

    @abc.abstractmethod
    def display_key_state(self, state: ApiKeyState, **kwargs: Any) -> None:
        """Displays the canonical state of an API key.

        Args:
            state: The state returned by the reconciler.
            **kwargs: Additional arguments for formatting (e.g., title).
        """
        pass

    @abc.abstractmethod
    def display_secret(self, state: ApiKeyState) -> None:
        """Displays the one-time secret of a freshly created key."""
        pass

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message to the user."""
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message to the user."""
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message to the user."""
        pass

    def ask_yes_no_question(self, question: str) -> bool:
        """Asks a yes/no question and returns the answer.

        Args:
            question: The question to ask

        Returns:
            True if the answer is yes, False otherwise
        """
        return False
