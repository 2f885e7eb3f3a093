from __future__ import annotations

import pathlib
from functools import lru_cache
from typing import Annotated, List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode

load_dotenv()

REPO_DIR = pathlib.Path(__file__).resolve().parent.parent
KNOWN_PROVIDERS = ("kiwi", "serpapi", "mock")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    db_path: str = Field(str(REPO_DIR / "farewatch.db"), alias="FAREWATCH_DB")
    providers: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["kiwi", "serpapi"], alias="FAREWATCH_PROVIDERS"
    )

    kiwi_api_key: str = Field("", alias="KIWI_API_KEY")
    serpapi_api_key: str = Field("", alias="SERPAPI_API_KEY")
    mock_fallback: bool = Field(True, alias="FAREWATCH_MOCK_FALLBACK")

    provider_timeout_s: float = Field(60.0, alias="PROVIDER_TIMEOUT_S")
    kiwi_airport_group_size: int = Field(5, alias="KIWI_AIRPORT_GROUP_SIZE")
    serpapi_max_date_pairs: int = Field(1, alias="SERPAPI_MAX_DATE_PAIRS")

    batch_window_s: int = Field(60, alias="BATCH_WINDOW_S")
    report_top_n: int = Field(5, alias="REPORT_TOP_N")
    alert_cooldown_h: int = Field(24, alias="ALERT_COOLDOWN_H")
    check_interval_h: int = Field(12, alias="CHECK_INTERVAL_H")
    trackers_per_run: int = Field(5, alias="TRACKERS_PER_RUN")
    retention_days: int = Field(30, alias="RETENTION_DAYS")

    smtp_host: Optional[str] = Field(None, alias="SMTP_HOST")
    smtp_port: int = Field(465, alias="SMTP_PORT")
    smtp_user: str = Field("", alias="SMTP_USER")
    smtp_pass: str = Field("", alias="SMTP_PASS")
    smtp_use_tls: bool = Field(False, alias="SMTP_USE_TLS")
    email_from: str = Field("farewatch@localhost", alias="EMAIL_FROM")

    telegram_token: Optional[str] = Field(None, alias="TELEGRAM_BOT_TOKEN")
    telegram_chat_id: Optional[str] = Field(None, alias="TELEGRAM_CHAT_ID")

    app_url: str = Field("", alias="APP_URL")

    @field_validator("providers", mode="before")
    @classmethod
    def _split_providers(cls, v):
        if isinstance(v, str):
            v = [p.strip() for p in v.split(",") if p.strip()]
        return [str(p).lower() for p in v]

    @field_validator("providers")
    @classmethod
    def _known_providers(cls, v: List[str]) -> List[str]:
        unknown = [p for p in v if p not in KNOWN_PROVIDERS]
        if unknown:
            raise ValueError(
                f"FAREWATCH_PROVIDERS contains unknown providers: {unknown}"
            )
        return v

    @field_validator(
        "provider_timeout_s",
        "kiwi_airport_group_size",
        "serpapi_max_date_pairs",
        "batch_window_s",
        "report_top_n",
        "check_interval_h",
        "trackers_per_run",
        "retention_days",
    )
    @classmethod
    def _positive(cls, v):
        if v <= 0:
            raise ValueError("must be greater than 0")
        return v

    @field_validator("alert_cooldown_h")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("ALERT_COOLDOWN_H must not be negative")
        return v

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host)

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_token and self.telegram_chat_id)


@lru_cache()
def get_settings() -> Settings:
    """Return application settings loaded from the environment."""
    return Settings()  # type: ignore[call-arg]


__all__ = ["Settings", "get_settings", "KNOWN_PROVIDERS"]
