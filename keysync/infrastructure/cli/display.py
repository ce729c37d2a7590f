import logging
from typing import Any, Optional

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from keysync.domain.interfaces.user_interface import UserInterface
from keysync.domain.models.api_key import ApiKeyState

logger = logging.getLogger(__name__)


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        """Initializes the rich Console."""
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    @console.setter
    def console(self, console: Console) -> None:
        self._console = console

    def display_key_state(self, state: ApiKeyState, **kwargs: Any) -> None:
        """Displays a key's canonical state as a two-column table.

        Args:
            state: The state to render.
            **kwargs: Additional arguments including:
                - title: Table title (default: "API key")
        """
        title = kwargs.get("title", "API key")
        table = Table(title=title, show_header=False, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("Field", style="bold cyan")
        table.add_column("Value")

        table.add_row("ID", state.key_id or "-")
        table.add_row("Name", state.name or "-")
        table.add_row("Scopes", "\n".join(sorted(state.scopes)) or "[dim]none[/dim]")
        if state.on_behalf_of:
            table.add_row("On behalf of", state.on_behalf_of)
        table.add_row("Status", state.status.value)
        self.console.print(table)

    def display_secret(self, state: ApiKeyState) -> None:
        """Shows the one-time secret; SendGrid never returns it again."""
        if not state.api_key:
            self.display_warning("No secret available for this key. It is only returned on creation.")
            return
        panel = Panel(
            Text(state.api_key, style="bold white"),
            title="[bold green]API key secret[/bold green]",
            subtitle="[dim]store it now, it cannot be retrieved later[/dim]",
            border_style="green",
            box=HEAVY,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message in a distinct style."""
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message."""
        self.console.print(f"[blue]Info:[/blue] {info_message}")

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message with enhanced styling."""
        logger.warning(f"Display warning: {warning_message}")
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=SIMPLE,
            padding=(0, 1)
        )
        self.console.print(panel)

    def ask_yes_no_question(self, question: str) -> bool:
        """Asks a yes/no question and returns the answer.

        Args:
            question: The question to ask

        Returns:
            True if the answer is yes, False otherwise
        """
        logger.debug(f"Asking yes/no question: {question}")
        response = self.console.input(f"[bold yellow]{question} (y/n)[/bold yellow] ").strip().lower()
        return response in ("y", "yes")
