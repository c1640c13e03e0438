import os
from datetime import time
from functools import lru_cache
from typing import List, Literal

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


WaitStrategy = Literal["per_person", "service_duration"]


def runtime_default_store_url() -> str | None:
    """Return the record store URL advertised by the hosting environment, if any."""

    url = os.getenv("SUPABASE_URL")
    if url:
        return url.rstrip("/") + "/rest/v1"
    return None


class ShopConfig(BaseModel):
    """Shop-wide scheduling policy handed to every engine component."""

    model_config = ConfigDict(frozen=True)

    open_time: time = time(10, 0)
    close_time: time = time(22, 0)
    slot_minutes: int = Field(default=45, gt=0)
    grace_period_minutes: int = Field(default=15, ge=0)
    per_person_wait_minutes: int = Field(default=15, ge=0)
    wait_strategy: WaitStrategy = "per_person"
    timezone: str = "Asia/Shanghai"
    single_checked_in_per_provider: bool = False
    verify_after_insert: bool = True

    @model_validator(mode="after")
    def _check_hours(self) -> "ShopConfig":
        if self.close_time <= self.open_time:
            raise ValueError("close_time must be later than open_time")
        return self


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = Field(default="ShopQueue Booking Engine")
    cors_origins: List[AnyHttpUrl] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
        ]
    )
    store_base_url: AnyHttpUrl | None = Field(
        default_factory=runtime_default_store_url
    )
    store_api_key: str | None = Field(
        default=None
    )
    store_timeout: float = Field(
        default=10.0
    )
    appointments_table: str = Field(
        default="app_appointments"
    )
    providers_table: str = Field(
        default="app_barbers"
    )
    services_table: str = Field(
        default="app_services"
    )
    use_mock_data: bool = Field(
        default=True
    )
    seed_demo_data: bool = Field(
        default=True
    )

    open_time: time = Field(default=time(10, 0))
    close_time: time = Field(default=time(22, 0))
    slot_minutes: int = Field(default=45)
    grace_period_minutes: int = Field(default=15)
    per_person_wait_minutes: int = Field(default=15)
    wait_strategy: WaitStrategy = Field(default="per_person")
    timezone: str = Field(default="Asia/Shanghai")
    single_checked_in_per_provider: bool = Field(default=False)
    verify_after_insert: bool = Field(default=True)

    enable_sweeper: bool = Field(default=True)
    sweep_interval_seconds: float = Field(default=30.0)
    poll_interval_seconds: float = Field(default=5.0)
    notifier_queue_size: int = Field(default=256)
    audit_capacity: int = Field(default=500)
    stream_keepalive_seconds: float = Field(default=15.0)

    model_config = SettingsConfigDict(env_prefix="SHOPQ_", case_sensitive=False)

    @field_validator("cors_origins", mode="before")
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    def shop_config(self) -> ShopConfig:
        return ShopConfig(
            open_time=self.open_time,
            close_time=self.close_time,
            slot_minutes=self.slot_minutes,
            grace_period_minutes=self.grace_period_minutes,
            per_person_wait_minutes=self.per_person_wait_minutes,
            wait_strategy=self.wait_strategy,
            timezone=self.timezone,
            single_checked_in_per_provider=self.single_checked_in_per_provider,
            verify_after_insert=self.verify_after_insert,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
