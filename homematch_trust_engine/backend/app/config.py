from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    app_version: str = "2026-10-19.v1"
    database_url: str = "sqlite:///./homematch.db"

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    # ---- Speech-to-text / analysis (OpenAI-compatible API) ----
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    transcription_model: str = "whisper-1"
    analysis_model: str = "gpt-4-turbo-preview"
    analysis_temperature: float = 0.3

    transcription_timeout_seconds: float = 60.0
    transcription_max_attempts: int = 3
    transcription_workers: int = 4
    transcription_placeholder: str = "[Transcription failed]"

    analysis_timeout_seconds: float = 90.0
    analysis_max_attempts: int = 3

    retry_backoff_min_seconds: float = 1.0
    retry_backoff_max_seconds: float = 20.0

    # ---- Media / document storage gateway ----
    storage_base_url: str = "http://localhost:9000/homematch"
    storage_token: str | None = None
    storage_timeout_seconds: float = 30.0

    # ---- Documents ----
    document_max_bytes: int = 10 * 1024 * 1024  # 10MB
    document_allowed_types: list[str] = ["application/pdf", "image/jpeg", "image/png", "image/jpg"]

    # ---- Notifications ----
    notification_delivery: str = "celery"  # celery|inline|off
    notify_webhook_url: str | None = None
    notify_timeout_seconds: float = 10.0
    notify_max_retries: int = 5
    notify_retry_base_seconds: int = 5
    notify_retry_max_seconds: int = 300
    notify_claim_lease_seconds: int = 120
    notify_sweep_grace_seconds: int = 600

    # ---- Celery ----
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"
    celery_task_always_eager: bool = False
    interview_task_max_retries: int = 3

    def model_post_init(self, __context) -> None:
        env = (self.app_env or "local").strip().lower()
        is_prod = env in ("prod", "production")

        if is_prod:
            origins = self.cors_allow_origins
            if origins == "*" or origins == ["*"] or (isinstance(origins, str) and "*" in origins):
                raise ValueError("SECURITY: cors_allow_origins wildcard is not allowed in prod")
            if (self.notification_delivery or "").strip().lower() == "off":
                raise ValueError("notification_delivery=off is not allowed in prod")

        if int(self.transcription_workers) < 1:
            raise ValueError("transcription_workers must be >= 1")
        if int(self.notify_sweep_grace_seconds) < int(self.notify_retry_max_seconds):
            raise ValueError("notify_sweep_grace_seconds must be >= notify_retry_max_seconds")


settings = Settings()
