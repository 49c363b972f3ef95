from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    API_PREFIX: str = "/api"

    # database & redis
    DATABASE_URL: str = "sqlite:///./company_intel.db"
    # Keep this as a plain string so redis:// URLs are always accepted
    REDIS_URL: str = "redis://localhost:6379/0"

    # external APIs
    OPENROUTER_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None  # Required for layer-2 news search
    OPENAI_WEB_MODEL: str | None = None  # Optional override for web search model

    # auth / security
    API_AUTH_KEY: str | None = None
    FRONTEND_ORIGIN: str | None = None
    # Explicit debug-only switch for wide-open CORS in non-prod envs
    CORS_ALLOW_ALL_ORIGINS: bool = False

    # llm
    LLM_MODEL: str = "openai/gpt-5.1"
    LLM_MAX_TOKENS: int = 8000
    # Hard cap on concurrent LLM calls per process
    LLM_MAX_CONCURRENCY: int = 4
    LLM_PRICEBOOK_JSON: str | None = None
    WEB_SEARCH_PER_CALL_USD: float = 0.01
    PRICING_CACHE_TTL_SECONDS: int = 300

    # research jobs
    STAGE_MAX_ATTEMPTS: int = 3
    RESEARCH_RETENTION_DAYS: int = 90

    # news
    NEWS_RETENTION_DAYS: int = 30
    NEWS_RECENT_DAYS: int = 1
    NEWS_HISTORY_DAYS: int = 30
    NEWS_HTTP_TIMEOUT_SECONDS: int = 10
    NEWS_FEED_CACHE_TTL_SECONDS: int = 15 * 60
    NEWS_USER_AGENT: str = "Company-Intelligence/1.0 (News Aggregator)"

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
