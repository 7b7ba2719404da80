from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Smallest currency unit every amount is quantized to.
    minor_unit: Decimal = Decimal("0.01")
    rounding: str = "ROUND_HALF_UP"

    log_level: str = "INFO"

    # JSON list of coupon definitions loaded into the store at startup.
    coupons_file: Optional[str] = None

    host: str = "127.0.0.1"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_prefix="COUPON_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
