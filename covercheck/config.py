"""
Runtime configuration for covercheck.

Configuration Sources (in order of precedence):
1. Keyword arguments passed to CoverCheckSettings(...)
2. Environment variables (COVERCHECK_*)
3. A .env file in the working directory
4. Default values

Environment Variables:
    COVERCHECK_STREAM_URL=https://.../functions/v1/analyze-chunks-stream
    COVERCHECK_API_KEY=...
    COVERCHECK_REQUEST_TIMEOUT=300
    COVERCHECK_EMBEDDING_MODEL=BAAI/bge-base-en-v1.5
    COVERCHECK_MATCH_THRESHOLD=45
    COVERCHECK_BATCH_DELAY_SECONDS=0.5
    COVERCHECK_LOG_LEVEL=INFO
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


class CoverCheckSettings(BaseSettings):
    """Settings for the scoring transport, embeddings and batch workflow."""

    model_config = SettingsConfigDict(
        env_prefix="COVERCHECK_",
        env_file=".env",
        extra="ignore",
    )

    stream_url: Optional[str] = Field(
        default=None, description="Remote streaming analysis endpoint"
    )
    api_key: Optional[SecretStr] = Field(
        default=None, description="Bearer token for the remote endpoint"
    )
    request_timeout: float = Field(
        default=300.0, gt=0, description="Streaming request timeout in seconds"
    )
    embedding_model: str = Field(
        default="BAAI/bge-base-en-v1.5",
        description="sentence-transformers model for local scoring",
    )
    match_threshold: float = Field(
        default=45.0, ge=0, le=100, description="Passage score needed for a match"
    )
    batch_delay_seconds: float = Field(
        default=0.5, ge=0, description="Pause between batch optimization units"
    )
    log_level: str = Field(default="INFO", description="Console log level")

    @field_validator("stream_url")
    @classmethod
    def validate_stream_url(cls, v: Optional[str]) -> Optional[str]:
        """Require an absolute http(s) URL when set."""
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"stream_url must be an http(s) URL, got '{v}'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate logging level."""
        if v.upper() not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log level '{v}'. Must be one of: {', '.join(sorted(VALID_LOG_LEVELS))}"
            )
        return v.upper()

    def auth_headers(self) -> dict:
        """Headers for the remote endpoint (empty when no key is set)."""
        if self.api_key is None:
            return {}
        key = self.api_key.get_secret_value()
        return {"Authorization": f"Bearer {key}", "apikey": key}


@lru_cache(maxsize=1)
def get_settings() -> CoverCheckSettings:
    """Process-wide settings instance."""
    return CoverCheckSettings()
