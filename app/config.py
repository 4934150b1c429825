"""
Application configuration using Pydantic Settings.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # JWT verification (tokens are issued by the auth service)
    jwt_secret: str
    jwt_algorithm: str = "HS256"

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = "http://localhost:3000"

    # AI provider (OpenAI-compatible chat completions endpoint)
    ai_api_url: str = "https://api.deepseek.com/v1/chat/completions"
    ai_default_provider: str = "deepseek"
    ai_request_timeout: float = 120.0  # seconds, applies to each read of the stream

    # Chat sessions
    default_session_title: str = "New chat"
    session_title_max_length: int = 50
    fallback_answer: str = "Sorry, I couldn't come up with an answer."

    # Token statistics window when the client does not pass one
    token_stats_default_days: int = 30

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Ignore extra fields in .env file that aren't defined in Settings
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Convert comma-separated CORS origins to list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
