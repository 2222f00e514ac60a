import os
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_database_url() -> str:
    """Get database URL, using absolute path for SQLite to avoid path resolution issues.

    SQLite is for local development only. Set DATABASE_URL to a PostgreSQL
    connection string in production.
    """
    db_url = os.getenv("DATABASE_URL", "")
    if db_url:
        logger.info("Using DATABASE_URL from environment")
        return db_url

    db_path = Path(__file__).parent.parent.parent / "chatmemory.db"
    abs_path = db_path.resolve()
    db_url = f"sqlite:///{abs_path}"
    logger.warning(f"Using SQLite database (LOCAL DEV ONLY): {db_url}")
    return db_url


class Settings(BaseSettings):
    database_url: str = Field(
        default_factory=get_database_url,
        validation_alias="DATABASE_URL",
    )
    openai_api_key: str = Field(default="", validation_alias="OPENAI_API_KEY")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")
    log_json: bool = Field(default=False, validation_alias="LOG_JSON")
    log_llm_trace: bool = Field(
        default=False,
        validation_alias="LOG_LLM_TRACE",
        description="Write LLM input/output previews (conversation text) to the log sinks",
    )

    # Conversation memory knobs
    memory_k_raw_turns: int = Field(
        default=3,
        ge=1,
        validation_alias="MEMORY_K_RAW_TURNS",
        description="Number of most recent turns kept verbatim in the prompt",
    )
    memory_summary_token_cap: int = Field(
        default=500,
        ge=100,
        validation_alias="MEMORY_SUMMARY_TOKEN_CAP",
        description="Maximum size of the rolling summary in estimated tokens",
    )
    memory_prompt_token_budget: int = Field(
        default=3000,
        ge=500,
        validation_alias="MEMORY_PROMPT_TOKEN_BUDGET",
        description="Token budget for the memory block spliced into the main prompt",
    )
    memory_chunk_summarize_threshold: int = Field(
        default=6000,
        ge=500,
        validation_alias="MEMORY_CHUNK_SUMMARIZE_THRESHOLD",
        description="Uncompacted tokens (summary + raw turns) that trigger compaction",
    )
    memory_summarizer_model: str = Field(
        default="gpt-5.1-nano",
        validation_alias="MEMORY_SUMMARIZER_MODEL",
        description="Model used for summarization when no hosted prompt is configured",
    )
    summary_prompt_id: str = Field(
        default="",
        validation_alias="PROMPT_ID_SUMMARY_GLOBAL",
        description="Hosted prompt template id for the rolling summarizer",
    )
    summary_prompt_version: str = Field(
        default="1",
        validation_alias="PROMPT_VERSION_SUMMARY_GLOBAL",
    )
    llm_trace_max_chars: int = Field(
        default=2000,
        ge=100,
        validation_alias="LLM_TRACE_MAX_CHARS",
        description="Maximum characters of LLM input/output previews written to logs",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that log level is one of the standard logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Valid levels are: {', '.join(sorted(valid_levels))}. Defaulting to INFO.")
            return "INFO"
        return upper_value


settings = Settings()
