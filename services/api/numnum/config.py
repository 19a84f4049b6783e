"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # ── Backend-as-a-service (PostgREST + auth) ────────────────────────────
    supabase_url: str = "http://localhost:54321"
    supabase_anon_key: str = ""
    gateway_timeout: float = 10.0        # seconds, applies to every request

    # ── Map ────────────────────────────────────────────────────────────────
    map_review_limit: int = 200          # most recent reviews considered
    map_snippet_length: int = 90         # characters before truncation

    # ── Posts ──────────────────────────────────────────────────────────────
    posts_page_size: int = 50

    # ── Observability ──────────────────────────────────────────────────────
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    tracing_enabled: bool = True
    service_name: str = "numnum-api"
    environment: str = "development"
    log_level: str = "INFO"


settings = Settings()
