import json
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_project_root = Path(__file__).resolve().parents[1]
load_dotenv(_project_root / ".env", override=False)


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"

    DATABASE_URL: str = "sqlite:///./adpilot.db"
    DB_POOL_SIZE: int = 20
    DB_POOL_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30

    CLERK_JWT_ISSUER: str
    CLERK_JWKS_URL: str
    CLERK_AUDIENCE: list[str] = ["http://localhost:5173", "backend"]

    BACKEND_CORS_ORIGINS: list[str]

    META_GRAPH_API_VERSION: str = "v21.0"
    META_GRAPH_API_BASE_URL: str = "https://graph.facebook.com"
    META_REQUEST_TIMEOUT_SECONDS: float = 30.0
    # Fallbacks for conversion feedback when the business has none of its own.
    META_SYSTEM_USER_TOKEN: str | None = None
    META_PIXEL_ID: str | None = None

    # Shared secret for the external timer and for agents reporting back.
    CRON_SECRET: str | None = None
    AGENT_BASE_URL: str = "http://localhost:3000"
    AGENT_REQUEST_TIMEOUT_SECONDS: float = 300.0
    AGENT_DISPATCH_ERROR_BUFFER: int = 200
    AGENT_SHUTDOWN_GRACE_SECONDS: float = 10.0
    AGENT_FREQUENCY_HOURS: dict[str, int] = Field(
        default_factory=lambda: {
            "competitor_analyst": 168,
            "review_scout": 168,
            "creative_director": 336,
            "performance_monitor": 4,
            "campaign_optimizer": 24,
        }
    )

    LAUNCH_DEFAULT_DAILY_BUDGET_CENTS: int = 1500
    LAUNCH_DEFAULT_RADIUS_KM: float = 25.0
    LAUNCH_DEFAULT_AGE_MIN: int = 25
    LAUNCH_DEFAULT_AGE_MAX: int = 65
    LAUNCH_DEFAULT_COUNTRY: str = "US"
    LAUNCH_DEFAULT_LINK_URL: str = "https://example.com/"
    LAUNCH_OBJECTIVE: str = "OUTCOME_LEADS"
    LAUNCH_BILLING_EVENT: str = "IMPRESSIONS"
    LAUNCH_OPTIMIZATION_GOAL: str = "LEAD_GENERATION"
    PROVISIONING_STUCK_AFTER_MINUTES: int = 30

    CONVERSION_CURRENCY: str = "USD"
    CONVERSION_GOOD_LEAD_VALUE: int = 100
    # Local numbers starting with 0 are rewritten to this prefix before hashing.
    CONVERSION_PHONE_COUNTRY_PREFIX: str = "+61"

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def split_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("CLERK_AUDIENCE", mode="before")
    @classmethod
    def split_audience(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [aud.strip() for aud in value.split(",") if aud.strip()]
        return value

    @field_validator("AGENT_FREQUENCY_HOURS", mode="before")
    @classmethod
    def parse_frequencies(cls, value: Any) -> Any:
        if isinstance(value, str):
            return json.loads(value)
        return value

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
