"""
Application settings loaded from environment variables (and .env).
"""
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App
    app_name: str = "studenthub-backend"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # Database (Railway/Heroku style postgres:// is accepted)
    database_url: Optional[str] = None

    # Auth collaborator
    jwt_secret: Optional[str] = None

    # Token vault
    encryption_key: str = ""
    token_ttl_days: int = 365

    # Providers
    github_api_base: str = "https://api.github.com"
    vercel_api_base: str = "https://api.vercel.com"
    http_timeout_seconds: float = 30.0
    git_timeout_seconds: float = 120.0
    git_user_name: str = "Student Hub"
    git_user_email: str = "noreply@studenthub.local"
    default_branch: str = "main"

    # Deployments
    upload_dir: str = "uploads"
    max_upload_mb: int = 100
    scratch_dir: Optional[str] = None  # None -> system temp dir
    deployment_lock_stale_seconds: int = 900
    vercel_build_wait_seconds: float = 120.0
    vercel_build_poll_seconds: float = 5.0
    status_poll_interval_seconds: float = 2.0

    # Mail (notifications are skipped when smtp_host is empty)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_start_tls: bool = True
    email_from: str = "noreply@studenthub.local"
    email_from_name: str = "Student Hub"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def mail_enabled(self) -> bool:
        return bool(self.smtp_host)

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",
        extra="ignore",
    )


settings = Settings()
