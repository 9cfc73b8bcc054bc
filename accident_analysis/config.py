"""
Configuration for Accident Analysis
===================================

Environment variables:
- LLM_MODE: none|openai|openrouter (default: none)
- OPENAI_API_KEY: API key for OpenAI
- OPENAI_MODEL: Model to use (default: gpt-4o)
- OPENROUTER_API_KEY: API key for OpenRouter
- OPENROUTER_MODEL: Model to use (default: openai/gpt-4o)
- LLM_TIMEOUT: HTTP timeout per AI request, seconds (default: 30)
- AI_CALL_TIMEOUT: Upper bound on one AI call from the workflow (default: 60)
- DATABASE_URL: SQLAlchemy URL (default: sqlite:///./accidents.db)
"""

from typing import Optional, List
from pydantic_settings import BaseSettings
from functools import lru_cache

from .schemas import LLMMode


class Settings(BaseSettings):
    """Application settings from environment variables"""

    # LLM Configuration
    llm_mode: LLMMode = LLMMode.NONE

    # OpenAI (testimony analysis + tree generation)
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o"
    openai_base_url: str = "https://api.openai.com/v1"

    # OpenRouter (alternative gateway, same payload format)
    openrouter_api_key: Optional[str] = None
    openrouter_model: str = "openai/gpt-4o"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"

    # Sampling
    testimony_temperature: float = 0.3
    tree_temperature: float = 0.4
    llm_max_tokens: int = 4096

    # Timeouts (seconds)
    llm_timeout: int = 30
    ai_call_timeout: float = 60.0

    # Database
    database_url: str = "sqlite:///./accidents.db"
    sql_echo: bool = False

    # Accident numbering: ACC-2024-001
    accident_number_prefix: str = "ACC"

    # Service info
    service_version: str = "1.0.0"

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        env_file_encoding = "utf-8"

    def validate_llm_config(self) -> List[str]:
        """Validate LLM configuration, return list of warnings"""
        warnings = []

        if self.llm_mode == LLMMode.OPENAI:
            if not self.openai_api_key:
                warnings.append("LLM_MODE=openai but OPENAI_API_KEY not set")

        elif self.llm_mode == LLMMode.OPENROUTER:
            if not self.openrouter_api_key:
                warnings.append("LLM_MODE=openrouter but OPENROUTER_API_KEY not set")

        if self.ai_call_timeout < self.llm_timeout:
            warnings.append(
                "AI_CALL_TIMEOUT is lower than LLM_TIMEOUT; slow responses will be cut by the workflow"
            )

        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Convenience function
def get_llm_mode() -> LLMMode:
    """Get current LLM mode"""
    return get_settings().llm_mode
