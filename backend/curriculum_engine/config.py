import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    openai_api_key: Optional[str] = Field(None, alias="OPENAI_API_KEY")
    database_url: Optional[str] = Field(None, alias="CURRICULUM_DATABASE_URL")
    database_pool_size: int = Field(10, alias="CURRICULUM_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="CURRICULUM_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="CURRICULUM_DATABASE_ECHO")
    analysis_model: str = Field("gpt-5", alias="CURRICULUM_ANALYSIS_MODEL")
    analysis_reasoning: Literal["minimal", "low", "medium", "high"] = Field(
        "medium", alias="CURRICULUM_ANALYSIS_REASONING"
    )
    generation_model: str = Field("gpt-5-mini", alias="CURRICULUM_GENERATION_MODEL")
    generation_timeout_seconds: float = Field(90.0, alias="CURRICULUM_GENERATION_TIMEOUT_SECONDS")
    job_max_attempts: int = Field(3, ge=1, alias="CURRICULUM_JOB_MAX_ATTEMPTS")
    queue_default_batch: int = Field(10, ge=1, alias="CURRICULUM_QUEUE_DEFAULT_BATCH")
    queue_max_batch: int = Field(50, ge=1, alias="CURRICULUM_QUEUE_MAX_BATCH")
    queue_stale_after_seconds: Optional[int] = Field(None, alias="CURRICULUM_QUEUE_STALE_AFTER_SECONDS")
    queue_trigger_secret: Optional[str] = Field(None, alias="CURRICULUM_QUEUE_TRIGGER_SECRET")
    analysis_dispatch: Literal["background", "inline", "off"] = Field(
        "background",
        alias="CURRICULUM_ANALYSIS_DISPATCH",
    )
    default_sessions_required: int = Field(3, ge=1, alias="CURRICULUM_DEFAULT_SESSIONS_REQUIRED")
    transcript_excerpt_chars: int = Field(1200, ge=80, alias="CURRICULUM_TRANSCRIPT_EXCERPT_CHARS")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        settings = Settings()  # type: ignore[arg-type]
        if settings.openai_api_key and not os.getenv("OPENAI_API_KEY"):
            os.environ["OPENAI_API_KEY"] = settings.openai_api_key
        return settings
    except ValidationError as exc:
        raise RuntimeError(f"Invalid backend configuration: {exc}") from exc
