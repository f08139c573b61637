"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    supabase_bucket: str = "story-assets"
    cms_base_url: str
    story_cache_ttl_seconds: int = 300
    gemini_api_key: str
    gemini_image_model: str = "gemini-2.5-flash-image"
    openai_api_key: str
    openai_analysis_model: str = "gpt-4o"
    replicate_api_token: str
    session_ttl_hours: int = 24
    generation_max_retries: int = 3
    fallback_max_retries: int = 2
    postprocess_max_retries: int = 3
    description_cache_ttl_seconds: int | None = None
    allowed_origins: str | None = "*"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @property
    def description_cache_ttl(self) -> int:
        """Description cache lifetime, defaulting to the session lifetime."""
        if self.description_cache_ttl_seconds is not None:
            return self.description_cache_ttl_seconds
        return self.session_ttl_hours * 3600


def parse_allowed_origins(raw: str | None) -> list[str]:
    """Parse allowed CORS origins from env."""
    if raw is None:
        return []
    cleaned = raw.strip()
    if cleaned == "*":
        return ["*"]
    return [origin.strip() for origin in cleaned.split(",") if origin.strip()]
