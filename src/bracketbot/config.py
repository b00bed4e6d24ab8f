from __future__ import annotations

from typing import Optional
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with validation.

    All settings are loaded from environment variables (or a local ``.env``).
    Strategy constants default to the values the bot has always traded with.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Quoine credentials
    quoine_token_id: str = ""
    quoine_token_secret: str = ""
    quoine_base_url: str = "https://api.quoine.com"

    # LINE Messaging API
    line_channel_secret: str = ""
    line_channel_token: str = ""
    line_user_id: str = ""
    line_base_url: str = "https://api.line.me"

    # Strategy parameters
    product_id: int = 5  # BTCJPY
    leverage_level: int = 25
    funding_currency: str = "JPY"
    lower_margin: float = 0.99
    upper_margin: float = 1.01
    order_quantity: float = 0.1
    price_decimals: int = 5

    # Timing (seconds)
    signal_window_seconds: float = 60.0
    no_signal_sleep_seconds: float = 60.0
    fill_wait_seconds: float = 60.0
    close_delay_seconds: float = 60.0
    loss_cooldown_seconds: float = 600.0
    api_error_sleep_seconds: float = 60.0

    # Misc
    http_timeout_seconds: float = 15.0
    log_level: str = "INFO"

    @field_validator("lower_margin")
    @classmethod
    def lower_margin_range(cls, v: float) -> float:
        if not 0 < v < 1:
            raise ValueError(f"lower_margin must be in (0, 1), got {v}")
        return v

    @field_validator("upper_margin")
    @classmethod
    def upper_margin_range(cls, v: float) -> float:
        if v <= 1:
            raise ValueError(f"upper_margin must be > 1, got {v}")
        return v

    @field_validator("order_quantity")
    @classmethod
    def quantity_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"order_quantity must be > 0, got {v}")
        return v

    @field_validator("leverage_level", "product_id")
    @classmethod
    def must_be_positive_int(cls, v: int, info) -> int:
        if v < 1:
            raise ValueError(f"{info.field_name} must be >= 1, got {v}")
        return v

    @field_validator("price_decimals")
    @classmethod
    def decimals_range(cls, v: int) -> int:
        if v < 0 or v > 10:
            raise ValueError(f"price_decimals must be in [0, 10], got {v}")
        return v

    @field_validator(
        "signal_window_seconds",
        "no_signal_sleep_seconds",
        "fill_wait_seconds",
        "close_delay_seconds",
        "loss_cooldown_seconds",
        "api_error_sleep_seconds",
    )
    @classmethod
    def duration_non_negative(cls, v: float, info) -> float:
        if v < 0:
            raise ValueError(f"{info.field_name} must be >= 0, got {v}")
        return v

    @field_validator("http_timeout_seconds")
    @classmethod
    def timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"http_timeout_seconds must be > 0, got {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_known(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log_level: {v}")
        return level

    @field_validator("quoine_base_url", "line_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_margin_order(self) -> "Settings":
        if self.lower_margin >= self.upper_margin:
            raise ValueError(
                f"lower_margin ({self.lower_margin}) must be < upper_margin ({self.upper_margin})"
            )
        return self

    @property
    def line_configured(self) -> bool:
        return bool(self.line_channel_token and self.line_user_id)

    def validate_quoine_credentials(self) -> None:
        """Raise if Quoine credentials are missing."""
        if not self.quoine_token_id or not self.quoine_token_secret:
            raise ValueError(
                "QUOINE_TOKEN_ID and QUOINE_TOKEN_SECRET must be set"
            )

    def validate_line_credentials(self) -> None:
        """Raise if LINE credentials are missing."""
        if not self.line_configured:
            raise ValueError(
                "LINE_CHANNEL_TOKEN and LINE_USER_ID must be set for LINE notifications"
            )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Force reload settings from environment."""
    global _settings
    _settings = Settings()
    return _settings
