"""
WhatsApp Command Bot - Configuration Module

This module handles environment variable loading, validation, and configuration
management for the WhatsApp Command Bot application.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


def get_env_var(
    var_name: str, required: bool = True, default: Optional[str] = None
) -> Optional[str]:
    """
    Get environment variable with optional default and validation.

    Args:
        var_name: Name of the environment variable
        required: Whether the variable is required
        default: Default value if not required and not found

    Returns:
        The environment variable value or default

    Raises:
        ConfigurationError: If required variable is missing
    """
    value = os.getenv(var_name, default)
    if required and not value:
        raise ConfigurationError(
            f"Required environment variable {var_name} is not set"
        )
    return value


def get_env_int(
    var_name: str, required: bool = True, default: Optional[int] = None
) -> Optional[int]:
    """
    Get environment variable as integer.

    Raises:
        ConfigurationError: If required variable is missing or invalid
    """
    value = get_env_var(var_name, required, str(default) if default is not None else None)
    if value is None:
        return default

    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(f"Environment variable {var_name} must be an integer, got: {value}") from e


def get_env_float(
    var_name: str, required: bool = True, default: Optional[float] = None
) -> Optional[float]:
    """Get environment variable as float."""
    value = get_env_var(var_name, required, str(default) if default is not None else None)
    if value is None:
        return default

    try:
        return float(value)
    except ValueError as e:
        raise ConfigurationError(f"Environment variable {var_name} must be a number, got: {value}") from e


def get_env_bool(var_name: str, required: bool = True, default: Optional[bool] = None) -> Optional[bool]:
    """
    Get environment variable as boolean.

    Args:
        var_name: Name of the environment variable
        required: Whether the variable is required
        default: Default value if not required and not found

    Returns:
        The environment variable value as boolean or default
    """
    value = get_env_var(var_name, required, str(default).lower() if default is not None else None)
    if value is None:
        return default

    return value.lower() in ("true", "1", "yes", "on")


def get_env_list(var_name: str, default: Optional[List[str]] = None) -> List[str]:
    """Get a comma separated environment variable as a list of stripped values."""
    value = get_env_var(var_name, required=False)
    if not value:
        return list(default or [])
    return [item.strip() for item in value.split(",") if item.strip()]


# =============================================================================
# BOT IDENTITY & BEHAVIOUR
# =============================================================================

BOT_NAME = get_env_var("BOT_NAME", required=False, default="WABot")
PREFIX = get_env_var("PREFIX", required=False, default=".")
OWNER_NUMBERS = get_env_list("OWNER_NUMBER")
PUBLIC_MODE = get_env_bool("PUBLIC_MODE", required=False, default=True)
UNKNOWN_COMMAND_REPLY = get_env_bool("UNKNOWN_COMMAND_REPLY", required=False, default=False)
TIMEZONE = get_env_var("TIMEZONE", required=False, default="UTC")

# =============================================================================
# DISPATCH CONFIGURATION
# =============================================================================

HANDLER_TIMEOUT = get_env_float("HANDLER_TIMEOUT", required=False, default=30.0)
REPLY_DEDUPE_SECONDS = get_env_int("REPLY_DEDUPE_SECONDS", required=False, default=5)
PLUGIN_PACKAGES = get_env_list(
    "PLUGIN_PACKAGES",
    default=["wabot.plugins.core_plugins", "wabot.plugins.admin_plugins"],
)

# =============================================================================
# STORAGE CONFIGURATION
# =============================================================================

PERMISSIONS_FILE = get_env_var(
    "PERMISSIONS_FILE", required=False, default=os.path.join("data", "permissions.json")
)
DATABASE_URL = get_env_var("DATABASE_URL", required=False)
DB_POOL_MIN_CONN = get_env_int("DB_POOL_MIN_CONN", required=False, default=1)
DB_POOL_MAX_CONN = get_env_int("DB_POOL_MAX_CONN", required=False, default=5)

# =============================================================================
# WHATSAPP BRIDGE CONFIGURATION
# =============================================================================

BRIDGE_URL = get_env_var("BRIDGE_URL", required=False, default="http://localhost:3000")
BRIDGE_TOKEN = get_env_var("BRIDGE_TOKEN", required=False)
SEND_MAX_ATTEMPTS = get_env_int("SEND_MAX_ATTEMPTS", required=False, default=3)
SEND_TIMEOUT = get_env_float("SEND_TIMEOUT", required=False, default=15.0)

# =============================================================================
# WEBHOOK SERVER CONFIGURATION
# =============================================================================

WEBHOOK_SECRET_TOKEN = get_env_var("WEBHOOK_SECRET_TOKEN", required=False)
FLASK_DEBUG = get_env_bool("FLASK_DEBUG", required=False, default=False)
LOG_LEVEL = get_env_var("LOG_LEVEL", required=False, default="INFO")
PORT = get_env_int("PORT", required=False, default=8000)

# =============================================================================
# DEVELOPMENT SETTINGS
# =============================================================================

DEV_MODE = get_env_bool("DEV_MODE", required=False, default=False)
DEBUG_WEBHOOKS = get_env_bool("DEBUG_WEBHOOKS", required=False, default=False)


@dataclass
class BotSettings:
    """Snapshot of the settings the bot runs with.

    The module level values are the defaults; tests and embedders build
    their own instance instead of patching this module.
    """

    bot_name: str = BOT_NAME
    prefix: str = PREFIX
    owner_numbers: List[str] = field(default_factory=lambda: list(OWNER_NUMBERS))
    public_mode: bool = PUBLIC_MODE
    unknown_command_reply: bool = UNKNOWN_COMMAND_REPLY
    handler_timeout: Optional[float] = HANDLER_TIMEOUT
    reply_dedupe_seconds: int = REPLY_DEDUPE_SECONDS
    plugin_packages: List[str] = field(default_factory=lambda: list(PLUGIN_PACKAGES))
    permissions_file: str = PERMISSIONS_FILE
    database_url: Optional[str] = DATABASE_URL
    db_pool_min_conn: int = DB_POOL_MIN_CONN
    db_pool_max_conn: int = DB_POOL_MAX_CONN
    bridge_url: str = BRIDGE_URL
    bridge_token: Optional[str] = BRIDGE_TOKEN
    send_max_attempts: int = SEND_MAX_ATTEMPTS
    send_timeout: float = SEND_TIMEOUT
    timezone: str = TIMEZONE


def validate_config() -> None:
    """
    Validate configuration on startup.

    Raises:
        ConfigurationError: If configuration validation fails
    """
    logger.info("Validating configuration...")

    if not PREFIX or PREFIX.strip() != PREFIX:
        raise ConfigurationError("PREFIX must be a non-empty string without surrounding whitespace")

    for number in OWNER_NUMBERS:
        if not number.isdigit():
            raise ConfigurationError(
                f"OWNER_NUMBER entries must be digits only (country code included), got: {number}"
            )

    if HANDLER_TIMEOUT is not None and HANDLER_TIMEOUT <= 0:
        raise ConfigurationError(f"HANDLER_TIMEOUT must be positive, got: {HANDLER_TIMEOUT}")

    if SEND_MAX_ATTEMPTS < 1:
        raise ConfigurationError(f"SEND_MAX_ATTEMPTS must be at least 1, got: {SEND_MAX_ATTEMPTS}")

    if DB_POOL_MIN_CONN and DB_POOL_MAX_CONN and DB_POOL_MIN_CONN > DB_POOL_MAX_CONN:
        raise ConfigurationError(
            f"DB_POOL_MIN_CONN ({DB_POOL_MIN_CONN}) cannot be greater than DB_POOL_MAX_CONN ({DB_POOL_MAX_CONN})"
        )

    if not OWNER_NUMBERS:
        logger.warning("⚠️ OWNER_NUMBER not configured. Owner-only commands will be unavailable.")

    # Production safety checks
    if not DEV_MODE:
        if FLASK_DEBUG:
            logger.warning("FLASK_DEBUG is enabled in production mode - this is not recommended")
        if DEBUG_WEBHOOKS:
            logger.warning("DEBUG_WEBHOOKS is enabled in production mode - this is not recommended")

    logger.info("✅ Configuration validation passed")


# Validate configuration on import
try:
    validate_config()
except ConfigurationError as e:
    logger.error(f"Configuration validation failed: {e}")
    raise


# Log configuration summary (without sensitive data)
if DEV_MODE:
    logger.info("Configuration summary:")
    logger.info(f"  - BOT_NAME: {BOT_NAME}")
    logger.info(f"  - PREFIX: {PREFIX}")
    logger.info(f"  - OWNER_NUMBER: {len(OWNER_NUMBERS)} configured")
    logger.info(f"  - PUBLIC_MODE: {PUBLIC_MODE}")
    logger.info(f"  - DATABASE_URL: {'***' + DATABASE_URL[-20:] if DATABASE_URL else 'Not set'}")
    logger.info(f"  - BRIDGE_URL: {BRIDGE_URL}")
    logger.info(f"  - HANDLER_TIMEOUT: {HANDLER_TIMEOUT}s")
