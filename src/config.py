from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # API Keys
    openai_api_key: str = ""

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    processing_log_table: str = "processing_logs"
    source_table: str = "source_items"
    transcript_bucket: str = "transcripts"
    transcript_cache_folder: str = "raw"

    # Vector store
    embedding_model: str = "text-embedding-3-small"
    vector_table: str = "transcript_chunks"
    vector_upsert_batch_size: int = 100

    # Transcripts
    transcript_languages: list[str] = ["en", "ko"]

    # Chunking
    chunk_max_len: int = 800
    chunk_overlap_len: int = 150
    chunk_min_len: int = 400
    chunk_max_duration_sec: float = 120.0
    chunk_min_duration_sec: float = 30.0
    chunk_drop_unit_under: int = 3
    chunk_coalesce_max_gap_sec: float = 0.8
    chunk_coalesce_min_group_len: int = 40
    chunk_use_tokens: bool = False
    chunk_token_encoding: str = "cl100k_base"

    # Retry
    retry_max_retries: int = 3
    retry_base_delay_sec: float = 1.0
    retry_max_delay_sec: float = 30.0

    # Worker pacing
    idle_poll_interval_sec: float = 600.0
    cache_hit_delay_sec: float = 5.0
    error_backoff_sec: float = 30.0
    batch_size_range: tuple[int, int] = (10, 15)
    inter_request_delay_range_sec: tuple[float, float] = (60.0, 300.0)
    rest_duration_range_min: tuple[float, float] = (20.0, 40.0)

    # Admin API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Gracefully handles missing .env files (e.g. in CI/testing) by falling
    back to environment variables and defaults.
    """
    try:
        return Settings()
    except Exception:
        # If .env is missing or unreadable, build settings from env vars only.
        return Settings(_env_file=None)  # type: ignore[call-arg]
