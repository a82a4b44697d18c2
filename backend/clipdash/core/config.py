from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "ClipDash Scheduler"
    app_env: str = "development"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "clipdash"
    postgres_user: str = "clipdash"
    postgres_password: str = "clipdash"

    redis_host: str = "localhost"
    redis_port: int = 6379

    database_url: str | None = None
    redis_url: str | None = None
    worker_heartbeat_key: str = "worker:heartbeat"
    worker_heartbeat_ttl_seconds: int = 45

    worker_secret: str | None = None
    worker_batch_size: int = 5
    worker_schedule_seconds: float = 60.0
    max_publish_attempts: int = 3
    ig_poll_batch_size: int = 10
    ig_processing_timeout_seconds: int = 600
    ig_check_timeout_seconds: float = 20.0
    ig_poll_lease_seconds: int = 60

    token_encryption_key: str = "change_this_in_production"
    token_refresh_margin_seconds: int = 90

    storage_api_url: str = "http://localhost:54321/storage/v1"
    storage_service_key: str | None = None
    uploads_bucket: str = "uploads"
    signed_url_ttl_seconds: int = 900
    instagram_signed_url_ttl_seconds: int = 3600

    google_client_id: str | None = None
    google_client_secret: str | None = None
    youtube_upload_base_url: str = "https://www.googleapis.com/upload/youtube/v3"

    tiktok_client_key: str | None = None
    tiktok_client_secret: str | None = None
    tiktok_api_base_url: str = "https://open.tiktokapis.com/v2"
    tiktok_status_poll_attempts: int = 6
    tiktok_status_poll_interval_seconds: float = 5.0

    linkedin_client_id: str | None = None
    linkedin_client_secret: str | None = None
    linkedin_api_base_url: str = "https://api.linkedin.com/rest"
    linkedin_api_version: str = "202601"

    meta_graph_api_base_url: str = "https://graph.facebook.com/v21.0"
    instagram_graph_api_base_url: str = "https://graph.instagram.com/v21.0"

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    email_from: str = "notifications@clipdash.org"
    public_app_url: str = "https://clipdash.org"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def ig_check_budget_seconds(self) -> float:
        # A container check is a status GET followed by media_publish.
        return 2 * self.ig_check_timeout_seconds

    @model_validator(mode="after")
    def validate_poll_lease(self) -> "Settings":
        if self.ig_poll_lease_seconds <= self.ig_check_budget_seconds:
            raise ValueError(
                f"ig_poll_lease_seconds ({self.ig_poll_lease_seconds}) must exceed the container check "
                f"budget of {self.ig_check_budget_seconds} seconds"
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.app_env.strip().lower() == "production"

    @property
    def debug_overrides_enabled(self) -> bool:
        return not self.is_production

    @property
    def sqlalchemy_database_uri(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def cache_redis_url(self) -> str:
        if self.redis_url:
            return self.redis_url
        return f"redis://{self.redis_host}:{self.redis_port}/0"


settings = Settings()
