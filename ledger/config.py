"""
Coin engine configuration.

Values come from environment variables prefixed with ``COINS_`` (or a local
``.env`` file) and fall back to the storefront defaults.
"""

from pathlib import Path
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_env_file() -> str | None:
    if Path(".env").exists():
        return ".env"
    return None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=get_env_file(),
        env_file_encoding="utf-8",
        env_prefix="COINS_",
        case_sensitive=False,
        extra="ignore",
    )

    # Calendar days, months and the daily bonus reset are taken in this zone
    TIMEZONE: str = "America/Sao_Paulo"
    DAILY_RESET_HOUR: int = 20

    # Orders
    ORDER_DEFAULT_COINS: int = 20
    ORDER_CODE_TTL_HOURS: int = 24
    ORDER_CODE_LENGTH: int = 25

    # Reward catalog
    REDEMPTION_CODE_LENGTH: int = 8
    CODE_GENERATION_ATTEMPTS: int = 10

    # 100 coins = 1 currency unit
    COINS_PER_CURRENCY_UNIT: int = 100

    LOG_LEVEL: str = "INFO"

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.TIMEZONE)


settings = Settings()
