"""
Configuration system for the change relay.

This module provides configuration management with support for:
- Environment variables
- .env file
- Code-level configuration (construct Settings(...) and inject it)

Configuration priority (highest to lowest):
1. Environment variables (CLI or shell)
2. .env file
3. Defaults
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application configuration with environment variable support.

    All settings can be configured via environment variables with the same name.
    Example:
        ENVIRONMENT=staging RELAY_TRANSPORT=redis python run_api.py
    """

    # ============================================================
    # Relay Configuration
    # ============================================================

    # Scopes every topic and subscription name ("{ENVIRONMENT}__{model}").
    # Required as soon as a relay is configured; read once per relay.
    ENVIRONMENT: Optional[str] = None

    # Default transport project/account identifier for relays started
    # from code that does not pass one explicitly
    RELAY_PROJECT_ID: Optional[str] = None

    # Relays started with the HTTP process. A server relay starts when
    # RELAY_SERVICE_NAME and RELAY_MODELS_TO_BROADCAST are set; a client
    # relay starts when RELAY_CLIENT_SERVICE_NAME and
    # RELAY_MODELS_TO_SUBSCRIBE are set. Model lists are comma-separated.
    RELAY_SERVICE_NAME: Optional[str] = None
    RELAY_MODELS_TO_BROADCAST: str = ""
    RELAY_CLIENT_SERVICE_NAME: Optional[str] = None
    RELAY_MODELS_TO_SUBSCRIBE: str = ""

    # Extra models defined in the process model store (comma-separated)
    RELAY_MODELS: str = ""

    # Transport backend: "memory" (in-process) or "redis" (Redis Streams)
    RELAY_TRANSPORT: str = "memory"

    # Reject inbound messages that carry no userId instead of invoking the
    # callback without an actor
    RELAY_REQUIRE_ACTOR: bool = False

    # Attempts for transport provisioning/publish on connection errors
    RELAY_TRANSPORT_RETRY_ATTEMPTS: int = 3

    # ============================================================
    # Redis Streams Transport
    # ============================================================

    REDIS_URL: str = "redis://localhost:6379/0"

    # XREADGROUP block timeout in milliseconds
    RELAY_REDIS_BLOCK_MS: int = 5000

    # Messages fetched per XREADGROUP call
    RELAY_REDIS_BATCH_SIZE: int = 10

    # Approximate stream length cap (None = unbounded)
    RELAY_REDIS_MAXLEN: Optional[int] = 10000

    # ============================================================
    # HTTP Server
    # ============================================================

    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Header carrying the acting user's id when no auth layer sets
    # request.state.user_id
    ACTOR_HEADER: str = "X-User-Id"

    # Enable API documentation endpoints (/docs, /redoc)
    ENABLE_DOCS: bool = True

    DEBUG: bool = False

    # ============================================================
    # Logging
    # ============================================================

    LOG_LEVEL: str = "INFO"

    # Use JSON structured logging (better for production)
    LOG_JSON_FORMAT: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Allow extra fields for forward compatibility
    )


# Global settings instance
# This is initialized once at startup and shared across the application
settings = Settings()


def get_settings() -> Settings:
    """
    Settings used by the application factory when none are passed in.

    Returns:
        Global settings instance.
    """
    return settings


def print_config_summary() -> None:
    """
    Print configuration summary for startup logging.

    This helps users verify their configuration is correct.
    """
    print("\n" + "="*60)
    print("Change Relay - Configuration Summary")
    print("="*60)

    print(f"\nRelay:")
    print(f"   Environment: {settings.ENVIRONMENT or 'MISSING (set ENVIRONMENT)'}")
    print(f"   Project: {settings.RELAY_PROJECT_ID or '<per relay>'}")
    print(f"   Server: {settings.RELAY_SERVICE_NAME or '-'} -> {settings.RELAY_MODELS_TO_BROADCAST or '-'}")
    print(f"   Client: {settings.RELAY_CLIENT_SERVICE_NAME or '-'} <- {settings.RELAY_MODELS_TO_SUBSCRIBE or '-'}")
    print(f"   Transport: {settings.RELAY_TRANSPORT}")
    print(f"   Require actor: {settings.RELAY_REQUIRE_ACTOR}")

    if settings.RELAY_TRANSPORT == "redis":
        print(f"\nRedis Streams:")
        print(f"   URL: {settings.REDIS_URL}")
        print(f"   Block: {settings.RELAY_REDIS_BLOCK_MS}ms")
        print(f"   Batch size: {settings.RELAY_REDIS_BATCH_SIZE}")
        print(f"   Max length: {settings.RELAY_REDIS_MAXLEN or 'unbounded'}")

    print(f"\nHTTP:")
    print(f"   Host: {settings.HOST}")
    print(f"   Port: {settings.PORT}")
    print(f"   Actor header: {settings.ACTOR_HEADER}")

    print(f"\nLogging:")
    print(f"   Level: {settings.LOG_LEVEL}")
    print(f"   Format: {'JSON' if settings.LOG_JSON_FORMAT else 'TEXT'}")

    print("\n" + "="*60 + "\n")


if __name__ == "__main__":
    # Allow running this file directly to view current configuration
    print_config_summary()
