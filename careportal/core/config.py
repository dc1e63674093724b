# careportal/core/config.py
import json
from typing import List, Optional, Union

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ==== Infrastructure ====
    database_url: str = "postgresql+asyncpg://app:app@db:5432/careportal"
    redis_url: str = "redis://redis:6379/0"
    notifications_queue: str = "notifications"

    # ==== Security / Auth ====
    jwt_secret: str = "changeme"
    jwt_alg: str = "HS256"

    # regular login lifetime, minutes
    jwt_expires_min: int = 60

    # "remember me" session, minutes (~30 days)
    jwt_remember_expires_min: int = 60 * 24 * 30

    # ==== CORS ====
    # CORS_ORIGINS=http://localhost:3000,http://127.0.0.1:3000
    cors_origins: Union[str, List[str]] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # ==== Tickets ====
    ticket_number_prefix: str = "CL"

    # ==== Troubleshooting gate ====
    sop_ack_ttl_minutes: int = 60
    gating_scroll_threshold_px: int = 50

    # ==== Closed-ticket summaries ====
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_models: Union[str, List[str]] = ["gpt-4o", "gpt-4-turbo", "gpt-4"]
    summary_timeout_seconds: float = 30.0
    summary_max_tokens: int = 300

    # ==== Email ====
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    mail_from: str = "Care Portal <support@careportal.local>"
    app_url: str = "http://localhost:3000"

    # ==== Outbound webhook (optional) ====
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None

    # ==== Bootstrap platform admin ====
    admin_email: str = "admin@example.com"
    admin_password: str = "ChangeMe123!"
    admin_name: str = "Platform Admin"

    # ==== Logging / environment ====
    env: str = "dev"          # dev|staging|prod
    log_level: str = "INFO"   # DEBUG|INFO|WARNING|ERROR

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("cors_origins", "openai_models", mode="before")
    @classmethod
    def _parse_list(cls, v):
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("[") and s.endswith("]"):
                try:
                    parsed = json.loads(s)
                    return [str(i).strip() for i in parsed if str(i).strip()]
                except ValueError:
                    pass
            return [i.strip() for i in s.split(",") if i.strip()]
        return v


settings = Settings()
