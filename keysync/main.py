"""Main entry point for the keysync application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import typer
from typing_extensions import Annotated

# --- Core Layer ---
from keysync.core.command_handler import CommandHandler
from keysync.core.services.reconciler import ApiKeyReconciler

# --- Infrastructure Layer ---
from keysync.infrastructure.cli.display import ConsoleDisplay
from keysync.infrastructure.config.settings import (
    get_backoff_policy,
    get_config,
    get_default_on_behalf_of,
    get_sendgrid_api_key,
    load_configuration,
)
from keysync.infrastructure.monitoring.logger_setup import setup_logging
from keysync.infrastructure.resilience.api_retry import ApiRetryService
from keysync.infrastructure.resilience.rate_limiter import RateLimiter
from keysync.infrastructure.sendgrid.api_key_client import SendGridApiKeyClient

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when the application cannot be wired from the current settings."""


# --- Dependency Injection Container (Manual) ---

def create_dependencies(ui: Optional[ConsoleDisplay] = None) -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root. Called once per command so the HTTP
    client lives inside the event loop that uses it.
    """
    # 1. Load Configuration First
    load_configuration()

    dependencies: Dict[str, Any] = {}
    dependencies["ui"] = ui or ConsoleDisplay()

    # 2. Remote client
    api_key = get_sendgrid_api_key()
    if not api_key:
        raise ConfigurationError(
            "SendGrid API key not configured. Set SENDGRID_API_KEY or sendgrid.api_key in ~/.keysync/config.yaml."
        )
    dependencies["rate_limiter"] = RateLimiter(
        max_requests=int(get_config("rate_limit.max_requests")),
        time_window=float(get_config("rate_limit.time_window")),
    )
    dependencies["client"] = SendGridApiKeyClient(
        api_key=api_key,
        base_url=get_config("sendgrid.base_url"),
        timeout_s=float(get_config("sendgrid.timeout_s")),
        rate_limiter=dependencies["rate_limiter"],
    )

    # 3. Resilience and core services
    dependencies["api_retry_service"] = ApiRetryService.from_policy(get_backoff_policy())
    dependencies["reconciler"] = ApiKeyReconciler(
        client=dependencies["client"],
        retry_service=dependencies["api_retry_service"],
        wrap_reads=bool(get_config("retry.wrap_reads")),
    )
    dependencies["command_handler"] = CommandHandler(
        reconciler=dependencies["reconciler"],
        ui=dependencies["ui"],
    )
    logger.debug("All dependencies initialized successfully.")
    return dependencies


# --- Typer App Definition ---
app = typer.Typer(
    name="keysync",
    help="keysync: manage SendGrid API keys with rate-limit aware retries.",
    add_completion=False,
    no_args_is_help=True,
)

_options: Dict[str, Any] = {}


def run_command(action: Callable[[CommandHandler], Awaitable[Any]]) -> Any:
    """Wires dependencies, runs one handler coroutine and closes the client.

    Exits with status 1 when the handler reported a failure (returned None).
    """
    ui = ConsoleDisplay()
    try:
        dependencies = create_dependencies(ui=ui)
    except (ConfigurationError, ValueError) as e:
        logger.error(f"Application initialization failed: {e}")
        ui.display_error(str(e))
        raise typer.Exit(code=1)

    async def _run() -> Any:
        try:
            return await action(dependencies["command_handler"])
        finally:
            await dependencies["client"].close()

    result = asyncio.run(_run())
    if result is None:
        raise typer.Exit(code=1)
    return result


def _subuser(on_behalf_of: Optional[str]) -> Optional[str]:
    return on_behalf_of or _options.get("on_behalf_of") or get_default_on_behalf_of()


# --- CLI Commands ---

OnBehalfOfOption = Annotated[
    Optional[str],
    typer.Option("--on-behalf-of", "-u", help="Subuser to act on behalf of."),
]
ScopeOption = Annotated[
    Optional[List[str]],
    typer.Option("--scope", "-s", help="Scope to grant. Repeat for several scopes."),
]


@app.command()
def create(
    name: Annotated[str, typer.Option("--name", "-n", help="Name describing the API key.")],
    scope: ScopeOption = None,
    on_behalf_of: OnBehalfOfOption = None,
):
    """Create an API key and print its one-time secret."""
    run_command(lambda handler: handler.handle_create(name, scope or [], _subuser(on_behalf_of)))


@app.command()
def show(
    key_id: Annotated[str, typer.Argument(help="ID of the API key.")],
    on_behalf_of: OnBehalfOfOption = None,
):
    """Show an API key's name and scopes."""
    run_command(lambda handler: handler.handle_show(key_id, _subuser(on_behalf_of)))


@app.command()
def update(
    key_id: Annotated[str, typer.Argument(help="ID of the API key.")],
    name: Annotated[Optional[str], typer.Option("--name", "-n", help="New name.")] = None,
    scope: ScopeOption = None,
    on_behalf_of: OnBehalfOfOption = None,
):
    """Rename an API key and/or replace its scopes."""
    run_command(lambda handler: handler.handle_update(key_id, name, scope, _subuser(on_behalf_of)))


@app.command()
def delete(
    key_id: Annotated[str, typer.Argument(help="ID of the API key.")],
    on_behalf_of: OnBehalfOfOption = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")] = False,
):
    """Revoke an API key."""
    run_command(lambda handler: handler.handle_delete(key_id, _subuser(on_behalf_of), confirm=not yes))


@app.callback()
def main_callback(
    on_behalf_of: OnBehalfOfOption = None,
    log_level: Annotated[
        Optional[str], typer.Option("--log-level", help="Logging level (debug, info, warning, ...).")
    ] = None,
):
    """Global options shared by every command."""
    load_configuration()
    setup_logging(
        log_level=log_level or get_config("logging.level"),
        log_format=get_config("logging.format"),
        log_file=get_config("logging.file"),
    )
    _options["on_behalf_of"] = on_behalf_of


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
