"""Application configuration settings.

This module provides centralized configuration management using environment
variables with sensible defaults.
"""

import os
from dataclasses import dataclass, field


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


def _get_list_env(name: str, default: list[str]) -> list[str]:
    """Get a comma-separated list from an environment variable."""
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        LOG_LEVEL: Logging level.
        WEBHOOK_TIMEOUT_SECONDS: Default per-delivery HTTP timeout.
        WEBHOOK_MAX_RETRIES: Default retries after the first attempt (0 = fire once).
        WEBHOOK_MAX_CONCURRENT_DELIVERIES: Outstanding webhook requests allowed at once.
        WEBHOOK_RETRY_BACKOFF_SECONDS: Base delay for exponential retry backoff.
        WEBHOOK_USER_AGENT: User-Agent header sent with deliveries.
        DELIVERY_LOG_ENABLED: Persist delivery attempts to SQLite.
        DELIVERY_LOG_PATH: SQLite file for the delivery log.
        CORS_ORIGINS: Allowed CORS origins.
        HOST: Bind address for the HTTP server.
        PORT: Bind port for the HTTP server.
    """

    # Logging
    LOG_LEVEL: str = "INFO"

    # Webhook delivery
    WEBHOOK_TIMEOUT_SECONDS: float = 10.0
    WEBHOOK_MAX_RETRIES: int = 0
    WEBHOOK_MAX_CONCURRENT_DELIVERIES: int = 10
    WEBHOOK_RETRY_BACKOFF_SECONDS: float = 1.0
    WEBHOOK_USER_AGENT: str = "LeadHub-Webhook/1.0"

    # Delivery log
    DELIVERY_LOG_ENABLED: bool = True
    DELIVERY_LOG_PATH: str = "./data/webhook_deliveries.db"

    # HTTP server
    CORS_ORIGINS: list[str] = field(default_factory=lambda: ["*"])
    HOST: str = "127.0.0.1"
    PORT: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables.

        Returns:
            Settings instance populated from environment.
        """
        return cls(
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
            WEBHOOK_TIMEOUT_SECONDS=float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "10")),
            WEBHOOK_MAX_RETRIES=int(os.getenv("WEBHOOK_MAX_RETRIES", "0")),
            WEBHOOK_MAX_CONCURRENT_DELIVERIES=int(
                os.getenv("WEBHOOK_MAX_CONCURRENT_DELIVERIES", "10")
            ),
            WEBHOOK_RETRY_BACKOFF_SECONDS=float(
                os.getenv("WEBHOOK_RETRY_BACKOFF_SECONDS", "1.0")
            ),
            WEBHOOK_USER_AGENT=os.getenv("WEBHOOK_USER_AGENT", "LeadHub-Webhook/1.0"),
            DELIVERY_LOG_ENABLED=_get_bool_env("DELIVERY_LOG_ENABLED", default=True),
            DELIVERY_LOG_PATH=os.getenv("DELIVERY_LOG_PATH", "./data/webhook_deliveries.db"),
            CORS_ORIGINS=_get_list_env("CORS_ORIGINS", ["*"]),
            HOST=os.getenv("HOST", "127.0.0.1"),
            PORT=int(os.getenv("PORT", "8000")),
        )


# Global settings instance
settings = Settings.from_env()
