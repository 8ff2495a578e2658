"""Core configuration - centralized config for the acp package.

All environment-based configuration should flow through this module.

Usage:
    from acp.core.config import get_config
    config = get_config()

    window = config.voting_window_slots
    log_level = config.log_level
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ACPSettings(BaseSettings):
    """Configuration settings for the Agent Collaboration Protocol.

    Settings can be configured via environment variables with the ACP_ prefix.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
        validation_alias="ACP_LOG_LEVEL",
    )
    log_format: str = Field(
        default="",
        description="Log format: 'json', 'text', or '' (auto-detect)",
        validation_alias="ACP_LOG_FORMAT",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (optional)",
        validation_alias="ACP_LOG_FILE",
    )

    # ==========================================================================
    # PROTOCOL SETTINGS
    # ==========================================================================

    program_id: str = Field(
        default="acp-program-v1",
        description="Namespace mixed into every derived account address",
        validation_alias="ACP_PROGRAM_ID",
    )
    voting_window_slots: int = Field(
        default=9000,
        gt=0,
        description="Slots between swarm action creation and its voting deadline",
        validation_alias="ACP_VOTING_WINDOW_SLOTS",
    )
    stake_withdrawal_delay_slots: int = Field(
        default=432_000,
        ge=0,
        description="Slots between a stake withdrawal request and claim eligibility",
        validation_alias="ACP_STAKE_WITHDRAWAL_DELAY_SLOTS",
    )
    collateral_timelock_seconds: int = Field(
        default=7 * 24 * 60 * 60,
        ge=0,
        description="Seconds between a collateral withdrawal request and claim eligibility",
        validation_alias="ACP_COLLATERAL_TIMELOCK_SECONDS",
    )

    # ==========================================================================
    # LEDGER / RESILIENCE SETTINGS
    # ==========================================================================

    ledger_url: str = Field(
        default="http://localhost:8899",
        description="Base URL of the ledger node used by the HTTP transport",
        validation_alias="ACP_LEDGER_URL",
    )
    ledger_timeout: float = Field(
        default=10.0,
        gt=0,
        description="HTTP timeout in seconds",
        validation_alias="ACP_LEDGER_TIMEOUT",
    )
    retry_max_retries: int = Field(
        default=3,
        ge=0,
        description="Retries for transient ledger failures",
        validation_alias="ACP_RETRY_MAX_RETRIES",
    )
    retry_base_delay_ms: int = Field(
        default=1000,
        ge=0,
        description="Base backoff delay in milliseconds",
        validation_alias="ACP_RETRY_BASE_DELAY_MS",
    )
    retry_max_delay_ms: int = Field(
        default=10_000,
        ge=0,
        description="Backoff ceiling in milliseconds (before jitter)",
        validation_alias="ACP_RETRY_MAX_DELAY_MS",
    )

    # ==========================================================================
    # CLIENT REGISTRY SETTINGS
    # ==========================================================================

    client_cache_max_size: int = Field(
        default=16,
        gt=0,
        description="Maximum cached clients per registry",
        validation_alias="ACP_CLIENT_CACHE_MAX_SIZE",
    )
    client_cache_max_age_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Idle seconds before a cached client is evicted",
        validation_alias="ACP_CLIENT_CACHE_MAX_AGE_SECONDS",
    )


# ==========================================================================
# GLOBAL CONFIG INSTANCE (lazy loaded)
# ==========================================================================

_config: ACPSettings | None = None


def get_config() -> ACPSettings:
    """Get the global configuration instance.

    Returns:
        The singleton ACPSettings instance.
    """
    global _config
    if _config is None:
        _config = ACPSettings()
    return _config


def clear_config_cache() -> None:
    """Clear the config cache. Useful for testing."""
    global _config
    _config = None
