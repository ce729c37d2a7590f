"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
YAML configuration file (~/.keysync/config.yaml). Dotted keys such as
'retry.max_retries' address nested mappings in the YAML file and map to
KEYSYNC_RETRY_MAX_RETRIES in the environment.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from keysync.domain.models.common import BackoffPolicy

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".keysync"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "KEYSYNC_"

# Keys that also answer to a conventional, unprefixed environment variable
ENV_ALIASES = {
    "sendgrid.api_key": "SENDGRID_API_KEY",
}

DEFAULTS: Dict[str, Any] = {
    "sendgrid.base_url": "https://api.sendgrid.com",
    "sendgrid.timeout_s": 30.0,
    "retry.max_retries": 5,
    "retry.initial_backoff_s": 1.0,
    "retry.backoff_factor": 2.0,
    "retry.max_backoff_s": 60.0,
    "retry.max_elapsed_s": 1200.0,  # 20 minutes
    "retry.wrap_reads": True,
    "rate_limit.max_requests": 600,
    "rate_limit.time_window": 60,
    "logging.level": "WARNING",
    "logging.format": "%(message)s",
}

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


def load_configuration(
    config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None, force: bool = False
) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Default values defined in this module

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
        force: Reload even if configuration was already loaded.
    """
    global _config, _loaded
    if _loaded and not force:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if config_file.exists():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
        else:
            if isinstance(yaml_config, dict):
                _config.update(yaml_config)
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a mapping.")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. Load from .env file (Medium priority)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        # override=False: real environment variables take precedence
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("No .env file found at or above the current directory.")

    # 3. Environment Variables (Highest priority) are handled in get_config
    _loaded = True


def env_var_name(key: str) -> str:
    """Maps a dotted config key to its environment variable name."""
    return ENV_PREFIX + key.upper().replace(".", "_")


def _coerce(value: str) -> Any:
    """Converts common string forms from the environment."""
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False
    try:
        return float(value) if "." in value else int(value)
    except ValueError:
        return value


def _lookup(tree: Dict[str, Any], key: str) -> Any:
    """Resolves a dotted key against a nested mapping (flat keys win)."""
    if key in tree:
        return tree[key]
    node: Any = tree
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(key)
        node = node[part]
    return node


def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by key.

    Priority:
    1. Test configuration (if in testing mode)
    2. Environment variable (KEYSYNC_* or a known alias)
    3. YAML config
    4. Module defaults, then the given default

    Args:
        key: The dotted configuration key
        default: Default value if the key is not found anywhere

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    for env_key in (env_var_name(key), ENV_ALIASES.get(key)):
        if env_key and env_key in os.environ:
            return _coerce(os.environ[env_key])

    try:
        return _lookup(_config, key)
    except KeyError:
        pass

    if key in DEFAULTS:
        return DEFAULTS[key]
    logger.debug(f"Config key '{key}' not found. Returning default: {default}")
    return default


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


# --- Convenience Functions ---

def get_sendgrid_api_key() -> Optional[str]:
    """Convenience function to get the SendGrid API key."""
    key = get_config("sendgrid.api_key")
    return str(key) if key else None


def get_default_on_behalf_of() -> Optional[str]:
    """Subuser used when a command does not name one."""
    subuser = get_config("sendgrid.on_behalf_of")
    return str(subuser) if subuser else None


def get_backoff_policy() -> BackoffPolicy:
    """Builds the retry policy from the retry.* settings."""
    max_elapsed = get_config("retry.max_elapsed_s")
    return BackoffPolicy(
        max_retries=int(get_config("retry.max_retries")),
        initial_delay=float(get_config("retry.initial_backoff_s")),
        factor=float(get_config("retry.backoff_factor")),
        max_delay=float(get_config("retry.max_backoff_s")),
        max_elapsed=float(max_elapsed) if max_elapsed else None,
    )


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")
