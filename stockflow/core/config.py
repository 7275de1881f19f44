import json
from typing import List, Literal, Union
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "StockFlow Transfers"
    env: str = "dev"
    secret_key: str
    access_token_expire_minutes: int = 60

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # TRANSFERS
    transfer_number_prefix: str = Field(default="TR", min_length=1, max_length=8)
    sod_exempt_roles: List[str] = Field(default_factory=lambda: ["super_admin"])
    notification_provider_default: str = "log"
    api_timeout_hint_ms: int = Field(default=300000, ge=1000, le=1_800_000)

    # JOBS / WORKER
    transfer_job_max_attempts: int = Field(default=3, ge=1, le=20)
    transfer_job_retry_base_seconds: int = Field(default=60, ge=1, le=86400)
    worker_enabled: bool = False
    worker_tick_seconds: int = Field(default=5, ge=1, le=3600)

    # RECONCILIATION
    reconciliation_interval_minutes: int = Field(default=60, ge=1, le=10080)
    reconciliation_mode: Literal["report", "fix"] = "report"
    reconciliation_auto_fix_max_units: int = Field(default=10, ge=0)
    reconciliation_auto_fix_max_percent: float = Field(default=5.0, ge=0, le=100)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    cors_origin_regex: str | None = None

    @field_validator("cors_origins", "sod_exempt_roles", mode="before")
    @classmethod
    def assemble_string_list(cls, v: Union[str, List[str]]) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            if not v.strip():
                return []
            if v.startswith("["):
                parsed = json.loads(v)
                if not isinstance(parsed, list):
                    raise ValueError("List setting JSON value must be a list")
                return [str(i).strip() for i in parsed if str(i).strip()]
            return [i.strip() for i in v.split(",") if i.strip()]
        if isinstance(v, list):
            return [str(i).strip() for i in v if str(i).strip()]
        raise ValueError(v)

    @field_validator("transfer_number_prefix")
    @classmethod
    def normalize_prefix(cls, value: str) -> str:
        cleaned = value.strip().upper()
        if not cleaned.isalnum():
            raise ValueError("TRANSFER_NUMBER_PREFIX must be alphanumeric")
        return cleaned

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        weak_secrets = {
            "",
            "change_me",
            "change_me_please_to_a_long_random_string",
            "dev-secret-key-change-before-prod",
        }
        if self.secret_key.strip() in weak_secrets or len(self.secret_key.strip()) < 32:
            raise ValueError("SECRET_KEY must be a strong random value in production")

        if "*" in self.cors_origins:
            raise ValueError("CORS_ORIGINS cannot contain '*' in production")
        if self.cors_origin_regex:
            raise ValueError("CORS_ORIGIN_REGEX cannot be set in production")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )


settings = Settings()
