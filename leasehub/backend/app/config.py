from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    database_url: str = "sqlite:///./leasehub.db"

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    # ---- Auth ----
    auth_mode: str = "dev"  # dev|jwt
    jwt_secret: str = "dev-change-me"
    jwt_algorithm: str = "HS256"

    # Dev header names
    dev_header_user_id: str = "X-User-Id"
    dev_header_user_role: str = "X-User-Role"

    # ---- Tenancy rules ----
    default_lease_term_months: int = 12
    allowed_cheque_counts: list[int] = [1, 2, 4, 6, 12]
    allowed_payment_methods: list[str] = ["cheque", "bank_transfer", "cash", "other"]
    default_payment_method: str = "cheque"
    default_reminder_lead_days: int = 3

    # ---- Celery ----
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"

    # ---- Notifications ----
    # inline delivery only covers the log sink; a webhook target is always queued
    notifications_async: bool = False
    notification_webhook_url: str | None = None
    notification_timeout_seconds: float = 5.0
    notification_max_attempts: int = 5

    def model_post_init(self, __context) -> None:
        env = (self.app_env or "local").strip().lower()
        is_prod = env in ("prod", "production")

        if is_prod:
            if (self.auth_mode or "").strip().lower() == "dev":
                raise ValueError("SECURITY: auth_mode=dev is not allowed in prod")
            if self.jwt_secret == "dev-change-me":
                raise ValueError("SECURITY: jwt_secret must be set in prod")

            origins = self.cors_allow_origins
            if origins == "*" or origins == ["*"] or (isinstance(origins, str) and "*" in origins):
                raise ValueError("SECURITY: cors_allow_origins wildcard is not allowed in prod")


settings = Settings()
