"""Application configuration using pydantic-settings."""
from functools import lru_cache
from urllib.parse import urlparse

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Hosted backend (auth, table API, realtime feed)
    supabase_url: str = Field(
        default="http://localhost:54321",
        validation_alias="SUPABASE_URL",
    )
    supabase_anon_key: str = Field(default="", validation_alias="SUPABASE_ANON_KEY")
    realtime_path: str = Field(
        default="/realtime/v1/changes",
        validation_alias="REALTIME_PATH",
    )
    bookmarks_table: str = Field(default="bookmarks", validation_alias="BOOKMARKS_TABLE")

    # OAuth sign-in
    oauth_provider: str = Field(default="google", validation_alias="OAUTH_PROVIDER")
    site_url: str = Field(default="http://localhost:8000", validation_alias="SITE_URL")
    dashboard_path: str = Field(default="/dashboard", validation_alias="DASHBOARD_PATH")
    session_cookie_name: str = Field(
        default="bm_session",
        validation_alias="SESSION_COOKIE_NAME",
    )
    session_cookie_secure: bool = Field(
        default=False,
        validation_alias="SESSION_COOKIE_SECURE",
    )

    # CORS - comma-separated list of allowed origins (stored as string, parsed via property)
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        validation_alias="CORS_ORIGINS",
    )

    http_timeout: float = Field(default=30.0, validation_alias="HTTP_TIMEOUT")

    # Toast lifetimes shown to the presentation layer
    add_toast_seconds: float = Field(default=4.0, validation_alias="ADD_TOAST_SECONDS")
    delete_toast_seconds: float = Field(default=5.0, validation_alias="DELETE_TOAST_SECONDS")

    # Unviewed bookmark lists are released after this long without a request
    session_idle_seconds: float = Field(default=900.0, validation_alias="SESSION_IDLE_SECONDS")
    session_sweep_seconds: float = Field(default=60.0, validation_alias="SESSION_SWEEP_SECONDS")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    @model_validator(mode="after")
    def validate_backend_url(self) -> "Settings":
        """
        Require HTTPS for a non-local backend.

        Bearer credentials and the anon key travel with every request, so plain
        HTTP is only accepted when the backend runs on this machine.
        """
        parsed = urlparse(self.supabase_url)
        if parsed.scheme not in {"http", "https"} or not parsed.hostname:
            raise ValueError(f"SUPABASE_URL is not a valid URL: '{self.supabase_url}'")

        local_hosts = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}
        if parsed.scheme == "http" and parsed.hostname.lower() not in local_hosts:
            raise ValueError(
                f"SUPABASE_URL must use https for non-local hosts "
                f"(got '{self.supabase_url}').",
            )
        return self

    @property
    def cors_origins(self) -> list[str]:
        """Parse comma-separated CORS origins string into a list."""
        if not self.cors_origins_str:
            return []
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]

    @property
    def backend_url(self) -> str:
        """Backend base URL without a trailing slash."""
        return self.supabase_url.rstrip("/")

    @property
    def auth_callback_url(self) -> str:
        """URL the identity provider redirects back to after sign-in."""
        return f"{self.site_url.rstrip('/')}/auth/callback"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
