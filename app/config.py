"""
Application Configuration
Loads environment variables and provides typed configuration.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # OpenAI (formatting plan)
    openai_api_key: Optional[str] = Field(default=None)
    openai_base_url: Optional[str] = Field(default=None)
    formatting_model: str = "gpt-4o"

    # Vision (image analysis) - independent credential, optional
    vision_api_key: Optional[str] = Field(default=None)
    vision_model: str = "gpt-4o"

    # App Settings
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    max_upload_bytes: int = Field(default=10 * 1024 * 1024)

    # Retry Settings
    retry_max_attempts: int = 3
    retry_initial_delay: float = 1.0
    vision_retry_max_attempts: int = 2
    vision_retry_initial_delay: float = 2.0

    # Prompt Settings
    html_prompt_chars: int = 5000
    raw_text_prompt_chars: int = 2000

    @property
    def vision_enabled(self) -> bool:
        """Vision analysis runs only with a real credential."""
        key = (self.vision_api_key or "").strip()
        return bool(key) and "YOUR_API_KEY" not in key


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
