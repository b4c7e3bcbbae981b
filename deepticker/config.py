"""Application configuration settings.

This module provides centralized configuration management using environment
variables with sensible defaults. Cache lifetimes, the primary quote source's
rate ceiling and the portfolio health thresholds are policy values and live
here rather than in the components that apply them.
"""

import os
from dataclasses import dataclass


def _get_bool_env(name: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable.

    Args:
        name: Environment variable name.
        default: Default value if not set.

    Returns:
        Boolean value from environment.
    """
    value = os.getenv(name, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def _get_float_env(name: str, default: float) -> float:
    """Get a float value from environment variable, falling back on bad input."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_int_env(name: str, default: int) -> int:
    """Get an integer value from environment variable, falling back on bad input."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        QUOTE_PRIMARY_TTL: Seconds a quote from the primary source stays fresh.
        QUOTE_SECONDARY_TTL: Seconds a quote from the secondary source stays fresh.
        INSIGHT_TTL: Seconds an AI insight stays fresh.
        HISTORY_TTL: Seconds daily price history stays fresh.
        PRIMARY_RATE_LIMIT: Primary quote source requests per minute.
        QUOTE_REQUEST_TIMEOUT: Per-request timeout for quote sources.
        QUOTE_MAX_RETRIES: Transport retries against the primary source.
        AI_REQUEST_TIMEOUT: Per-request timeout for AI providers.
        DEFAULT_AI_PROVIDER: Provider auto-selected when it has a credential.
        HEALTH_WARNING_CHANGE: Absolute daily change (%) that marks a warning.
        HEALTH_DANGER_DECLINE: Daily decline (%) that marks a holding in danger.
        HEALTH_DANGER_RATIO: Share of holdings in danger that flags the portfolio.
        HEALTH_WARNING_RATIO: Share of holdings in warning that flags the portfolio.
        REJECT_ALARMIST_BRIEFINGS: Reject briefings that read as alarmist.
        KEYRING_SERVICE: Service name used for the OS keyring.
        LOG_LEVEL: Logging level.
        LOG_JSON: Render logs as JSON instead of console output.
    """

    # Caching
    QUOTE_PRIMARY_TTL: float = 300.0  # 5 minutes
    QUOTE_SECONDARY_TTL: float = 600.0  # 10 minutes
    INSIGHT_TTL: float = 300.0  # 5 minutes
    HISTORY_TTL: float = 3600.0  # 1 hour

    # Quote sources
    PRIMARY_RATE_LIMIT: int = 5  # Alpha Vantage free tier
    QUOTE_REQUEST_TIMEOUT: float = 12.0
    QUOTE_MAX_RETRIES: int = 2

    # AI providers
    AI_REQUEST_TIMEOUT: float = 60.0
    DEFAULT_AI_PROVIDER: str = "deepseek"
    REJECT_ALARMIST_BRIEFINGS: bool = True

    # Portfolio health policy
    HEALTH_WARNING_CHANGE: float = 2.0
    HEALTH_DANGER_DECLINE: float = 10.0
    HEALTH_DANGER_RATIO: float = 0.3
    HEALTH_WARNING_RATIO: float = 0.5

    # Credentials
    KEYRING_SERVICE: str = "deepticker"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables.

        Returns:
            Settings instance populated from environment.
        """
        return cls(
            QUOTE_PRIMARY_TTL=_get_float_env("QUOTE_PRIMARY_TTL", 300.0),
            QUOTE_SECONDARY_TTL=_get_float_env("QUOTE_SECONDARY_TTL", 600.0),
            INSIGHT_TTL=_get_float_env("INSIGHT_TTL", 300.0),
            HISTORY_TTL=_get_float_env("HISTORY_TTL", 3600.0),
            PRIMARY_RATE_LIMIT=_get_int_env("PRIMARY_RATE_LIMIT", 5),
            QUOTE_REQUEST_TIMEOUT=_get_float_env("QUOTE_REQUEST_TIMEOUT", 12.0),
            QUOTE_MAX_RETRIES=_get_int_env("QUOTE_MAX_RETRIES", 2),
            AI_REQUEST_TIMEOUT=_get_float_env("AI_REQUEST_TIMEOUT", 60.0),
            DEFAULT_AI_PROVIDER=os.getenv("DEFAULT_AI_PROVIDER", "deepseek"),
            REJECT_ALARMIST_BRIEFINGS=_get_bool_env("REJECT_ALARMIST_BRIEFINGS", default=True),
            HEALTH_WARNING_CHANGE=_get_float_env("HEALTH_WARNING_CHANGE", 2.0),
            HEALTH_DANGER_DECLINE=_get_float_env("HEALTH_DANGER_DECLINE", 10.0),
            HEALTH_DANGER_RATIO=_get_float_env("HEALTH_DANGER_RATIO", 0.3),
            HEALTH_WARNING_RATIO=_get_float_env("HEALTH_WARNING_RATIO", 0.5),
            KEYRING_SERVICE=os.getenv("KEYRING_SERVICE", "deepticker"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
            LOG_JSON=_get_bool_env("LOG_JSON", default=False),
        )


# Global settings instance
settings = Settings.from_env()
