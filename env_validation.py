"""Environment variable validation and typed accessors."""

import logging
import os
from typing import Dict

logger = logging.getLogger(__name__)


class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass


def validate_environment() -> None:
    """Validate the service configuration before the app starts serving.

    Raises EnvironmentError if validation fails.
    """
    required_vars: Dict[str, str] = {}

    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
        "LLM_API_URL": os.getenv("LLM_API_URL") or "https://api.openai.com/v1/chat/completions",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "OPENAI_API_KEY": "API key for the chat-completions endpoint; coaching falls back to defaults without it",
        "RECOMMENDATION_MODEL": "Model used for difficulty recommendations",
        "COACH_MODEL": "Model used for per-turn coaching and roleplay",
    }

    missing = []
    for var, description in required_vars.items():
        if not os.getenv(var):
            missing.append(f"{var} ({description})")

    if missing:
        raise EnvironmentError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    url_vars = {"LLM_API_URL"}
    for var in url_vars:
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentError(f"Invalid URL format for {var}: {value}")

    threshold = os.getenv("PREFERENCE_CONFIDENCE_THRESHOLD")
    if threshold is not None:
        try:
            parsed = float(threshold)
        except ValueError as exc:
            raise EnvironmentError(
                f"PREFERENCE_CONFIDENCE_THRESHOLD must be numeric: {threshold}"
            ) from exc
        if not 0.0 <= parsed <= 1.0:
            raise EnvironmentError(
                f"PREFERENCE_CONFIDENCE_THRESHOLD must be within [0, 1]: {threshold}"
            )

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.warning("Optional environment variable not set: %s (%s)", var, description)


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def get_env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r; using %s", name, value, default)
        return default


def get_env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r; using %s", name, value, default)
        return default
