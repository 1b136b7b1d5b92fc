# Author: Bradley R. Kinnard — env vars or bust

"""
Settings via pydantic-settings. Reads from env, falls back to .env file.
Every knob the pipeline has lives here: timeouts, TTLs, breaker thresholds, backends.
"""

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    redis_url: str = "redis://localhost:6379/0"
    log_level: str = "INFO"
    verbose: bool = False  # pretty console logs instead of JSON
    openai_api_key: str = ""  # required for LLM calls
    openai_model: str = "gpt-4o"
    max_code_bytes: int = 100_000  # 100KB, reject bigger payloads
    aws_region: str = "us-east-1"

    # which backends to wire up. memory = process local, fine for dev and tests
    cache_backend: Literal["redis", "memory"] = "redis"
    store_backend: Literal["dynamodb", "memory"] = "dynamodb"
    notifier_backend: Literal["redis", "none"] = "redis"

    # timeouts, seconds. every suspension point gets one
    upstream_timeout: float = 5.0
    storage_timeout: float = 2.0
    notify_timeout: float = 1.0

    # cache tiers
    cache_ttl: int = 300  # 5 min for real results
    fallback_cache_ttl: int = 30  # degraded results shouldn't stick around
    db_max_age_ms: int = 300_000  # second tier: persisted results younger than this count

    # circuit breaker. overrides is JSON: {"analysis": {"max_errors": 3, "reset_window": 30}}
    breaker_max_errors: int = 5
    breaker_reset_window: float = 60.0
    breaker_overrides: dict[str, dict[str, float]] = {}
    analysis_service_name: str = "analysis"

    # persisted store
    analyses_table: str = "CodeAnalyses"
    fingerprint_index: str = "fingerprint-created-index"
    user_index: str = "user-created-index"
    dynamodb_endpoint: str | None = None  # http://localhost:8000 for local

    # AWS creds for local dev
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None

    # stub mode - canned upstream analysis without LLM
    stub_mode: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # ignore unknown env vars


settings = Settings()
