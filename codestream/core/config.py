from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Any


def parse_bool(v: Any) -> bool:
    """Parse boolean flags from env strings like "true", "1", "off" """
    if isinstance(v, bool):
        return v
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "yes", "on")
    return bool(v)


class Settings(BaseSettings):
    """Pipeline settings - all configurable via environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "CodeStream"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # ==========================================
    # Claude API
    # ==========================================
    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_BASE_URL: str = ""
    CLAUDE_MODEL: str = "claude-sonnet-4-20250514"
    CLAUDE_MAX_TOKENS: int = 32768
    CLAUDE_TEMPERATURE: float = 0.7
    CLAUDE_MAX_RETRIES: int = 3
    CLAUDE_RETRY_BASE_DELAY: float = 1.0
    CLAUDE_RETRY_MAX_DELAY: float = 30.0
    CLAUDE_REQUEST_TIMEOUT: int = 300
    CLAUDE_CONNECT_TIMEOUT: int = 10

    # ==========================================
    # Stream Orchestrator
    # ==========================================
    STREAM_MIN_DETECT_CHARS: int = 50
    STREAM_DETECT_WINDOW_CHARS: int = 500
    STREAM_PROGRESS_INTERVAL_MS: int = 100
    STREAM_CHARS_PER_LINE: int = 40
    STREAM_DEFAULT_EXPECTED_LINES: int = 100

    # ==========================================
    # Completion Scheduler (cosmetic ordering)
    # ==========================================
    COMPLETION_STAGGER_ENABLED: bool = True
    COMPLETION_MIN_DWELL_MS: int = 500
    COMPLETION_STAGGER_MS: int = 200
    COMPLETION_SWEEP_STAGGER_MS: int = 150

    # ==========================================
    # Truncation recovery
    # ==========================================
    TRUNCATION_MIN_CHARS: int = 50
    REPAIR_MAX_CLOSERS: int = 3
    JSON_REPAIR_MAX_CHARS: int = 500_000
    EMERGENCY_MIN_BLOCK_CHARS: int = 50
    SOURCE_ROOT: str = "src"

    # ==========================================
    # Continuation
    # ==========================================
    CONTINUATION_MAX_BATCHES: int = 5
    CONTINUATION_MAX_RETRIES: int = 3
    CONTINUATION_RETRY_DELAY: float = 1.0
    CONTINUATION_FILES_PER_BATCH: int = 5

    @field_validator("DEBUG", "COMPLETION_STAGGER_ENABLED", mode="before")
    @classmethod
    def _parse_flags(cls, v: Any) -> bool:
        return parse_bool(v)

    @field_validator("SOURCE_ROOT", mode="after")
    @classmethod
    def _strip_source_root(cls, v: str) -> str:
        return v.strip().strip("/") or "src"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


settings = Settings()
