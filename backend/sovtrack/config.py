"""
Configuration management for sovtrack
Environment-based settings with safe local defaults
"""

from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "sovtrack"
    APP_ENV: str = "development"  # development, staging, production
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./sovtrack.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Model service (OpenAI-compatible chat/completions)
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_DEFAULT_MODEL: str = "gpt-4o-mini"

    # Per-stage models
    PROFILE_MODEL: str = "gpt-4o-search-preview"
    CATEGORY_MODEL: str = "gpt-4o-mini"
    COMPETITOR_MODEL: str = "gpt-4o-mini-search-preview"
    KEYWORD_MODEL: str = "gpt-3.5-turbo"
    QUESTION_MODEL: str = "gpt-3.5-turbo"
    RESPONSE_MODEL: str = "gpt-4o-mini"
    LOCATION_MODEL: str = "gpt-3.5-turbo"

    # LLM Execution Settings
    LLM_DEFAULT_TEMPERATURE: float = 0.7
    LLM_DEFAULT_MAX_TOKENS: int = 2000
    LLM_REQUEST_TIMEOUT: int = 60  # seconds
    CATEGORY_TEMPERATURE: float = 0.3
    KEYWORD_TEMPERATURE: float = 0.1
    KEYWORD_MAX_TOKENS: int = 300
    QUESTION_MAX_TOKENS: int = 300
    RESPONSE_MAX_TOKENS: int = 600
    LOCATION_MAX_TOKENS: int = 50
    COMPETITOR_CONTEXT_MAX_TOKENS: int = 1500

    # Pipeline
    PIPELINE_CONCURRENCY: int = 5
    MAX_CATEGORIES: int = 4
    MAX_COMPETITORS: int = 5
    KEYWORDS_PER_CATEGORY: int = 10
    PROMPTS_PER_CATEGORY: int = 5

    # Mention matching
    MENTION_FUZZY_MATCHING: bool = False
    MENTION_FUZZY_THRESHOLD: int = 85

    # Scoring weights for the AI visibility score
    VISIBILITY_SHARE_WEIGHT: float = 0.4
    VISIBILITY_COVERAGE_WEIGHT: float = 0.6

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    @field_validator("PIPELINE_CONCURRENCY", mode="before")
    @classmethod
    def parse_concurrency(cls, v) -> int:
        return max(1, int(v))

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Cached settings loader"""
    return Settings()


# Used when the model is unreachable or no credentials are configured
FALLBACK_CATEGORIES: List[str] = [
    "Business Solutions",
    "Digital Services",
    "Technology Platform",
    "Professional Services",
]

PLACEHOLDER_COMPETITORS: List[str] = [
    "Competitor A",
    "Competitor B",
    "Competitor C",
    "Competitor D",
    "Competitor E",
]

# Stand-ins fed to the question prompt when a brand has no competitors yet
GENERIC_COMPETITOR_NAMES: List[str] = [
    "competitor1",
    "competitor2",
    "competitor3",
    "competitor4",
    "competitor5",
]
