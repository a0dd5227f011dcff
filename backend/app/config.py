"""Typed settings configuration - single source of truth."""

from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str | None = None

    # Supabase (storage + auth collaborators)
    supabase_url: str | None = None
    supabase_service_role_key: SecretStr | None = None
    supabase_anon_key: SecretStr | None = None
    storage_bucket: str = "lecture-materials"
    signed_url_ttl_seconds: int = 3600
    max_signed_paths: int = 50

    # Local/dev auth: bearer token -> user id (used when Supabase is not configured)
    dev_auth_tokens: dict[str, str] = {}

    # OpenAI
    openai_api_key: SecretStr | None = None
    openai_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = 1536
    embedding_batch_size: int = 20

    # Timeouts (seconds)
    llm_timeout_seconds: float = 30.0
    retrieval_timeout_seconds: float = 20.0

    # Chunking (words)
    chunk_max_words: int = 600
    chunk_target_words: int = 400
    chunk_overlap_words: int = 60
    chunk_min_words: int = 20
    min_content_chars: int = 50
    max_upload_bytes: int = 20 * 1024 * 1024

    # Retrieval
    similarity_threshold: float = 0.3
    max_chunks_to_llm: int = 5
    retrieval_overfetch: int = 3
    hybrid_vector_weight: float = 0.7
    hybrid_lexical_weight: float = 0.3

    # Chat
    max_question_chars: int = 2000
    chat_history_turns: int = 5
    history_message_chars: int = 1000
    max_answer_tokens: int = 1024
    answer_temperature: float = 0.3
    conversation_max_messages: int = 100
    source_preview_chars: int = 200

    # Usage metering
    daily_query_limit: int = 50
    daily_cost_limit: float | None = 5.0
    input_cost_per_million: float = 0.15
    output_cost_per_million: float = 0.60
    usage_tz_offset_hours: int = 8


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
