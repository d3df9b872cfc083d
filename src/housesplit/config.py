"""Configuration management for HouseSplit."""

from decimal import Decimal
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="HOUSESPLIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Balances below this magnitude count as settled
    settlement_epsilon: Decimal = Decimal("0.01")

    # New payments start confirmed instead of waiting for the receiver
    auto_accept_payments: bool = True

    # Materialize every missed occurrence in one pass instead of one per pass
    recurring_catch_up: bool = False

    # Display
    currency_symbol: str = "RM"

    # Database path
    database_path: Path = Path.home() / ".housesplit" / "housesplit.db"

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Check the HOUSESPLIT_* variables in your "
            f"environment or .env file.\n"
            f"Error: {e}"
        ) from e
