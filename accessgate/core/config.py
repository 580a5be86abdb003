"""
Application configuration.
All settings are loaded from environment variables (or .env).
Defaults match the fixed timings of the access flow; override only for tests or local runs.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Runtime settings for the access engine and its host process.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"

    # ===========================================
    # ACCESS FLOW TIMINGS (milliseconds)
    # ===========================================
    authorization_timeout_ms: int = 3000
    view_timeout_ms: int = 2000
    login_dedup_window_ms: int = 1000

    # ===========================================
    # READER IDENTITY
    # ===========================================
    reader_id_scope: str = "amp-access"
    # 0 = never expire
    reader_id_ttl_seconds: int = 0

    # ===========================================
    # PROXY ORIGINS
    # ===========================================
    # Hosts (comma-separated) that serve cached copies of publisher documents.
    # type=other documents never contact the server from these hosts.
    proxy_origin_hosts: str = "cdn.ampproject.org"

    # ===========================================
    # REDIS (reader ids + cross-document broadcast)
    # ===========================================
    redis_url: str = "redis://localhost:6379/0"
    broadcast_channel: str = "access:broadcast"

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("authorization_timeout_ms", "view_timeout_ms", "login_dedup_window_ms")
    @classmethod
    def validate_positive_ms(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("timings must be positive milliseconds")
        return v

    @property
    def proxy_origin_hosts_set(self) -> set[str]:
        """Get proxy origin hosts as a set."""
        return {h.strip().lower() for h in self.proxy_origin_hosts.split(",") if h.strip()}

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
