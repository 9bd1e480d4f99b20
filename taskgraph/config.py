"""
Application configuration management using pydantic-settings
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from dataclasses import dataclass
from typing import List, Optional
import logging


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # LLM Provider - Google Gemini
    GOOGLE_API_KEY: str = ""

    # LLM Provider - Groq
    GROQ_API_KEY: str = ""

    # Which provider backs the planner and llm_generate ("gemini" or "groq")
    LLM_PROVIDER: str = "gemini"

    # Planner
    PLANNER_MODEL: str = "gemini-2.5-flash"
    PLANNER_MAX_STEPS: int = 10
    PLANNER_ENABLE_PARALLEL: bool = True
    PLANNER_CONFIDENCE_THRESHOLD: float = 0.0
    PLANNER_TIMEOUT_SECONDS: float = 60.0
    PLANNER_FALLBACK_TOOL: str = "llm_generate"

    # Executor
    EXECUTOR_MAX_CONCURRENCY: int = 4
    EXECUTOR_DEFAULT_TIMEOUT_SECONDS: float = 30.0
    EXECUTOR_MAX_RETRIES: int = 3
    EXECUTOR_RETRY_DELAY_SECONDS: float = 1.0

    # Persistence ("memory", "file" or "mongo")
    PERSISTENCE_BACKEND: str = "memory"
    PERSISTENCE_DIR: str = "./.taskgraph"
    PERSISTENCE_AUTO_SAVE: bool = True
    CHECKPOINT_INTERVAL_SECONDS: float = 30.0
    CHECKPOINT_ON_CONFIRMATION: bool = True

    # Database - MongoDB (only used by the "mongo" backend)
    MONGODB_URI: str = "mongodb://localhost:27017"
    MONGODB_DB_NAME: str = "taskgraph"

    # Built-in file tools are confined to this directory
    TOOLS_WORKSPACE_DIR: str = "./workspace"

    # Application
    APP_NAME: str = "taskgraph"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]


# Global settings instance
settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Apply LOG_LEVEL to the root logger"""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


# ─── Component configs ───────────────────────────────────────────────────────

@dataclass
class PlannerConfig:
    """Knobs for plan generation"""
    model: str = "gemini-2.5-flash"
    max_steps: int = 10
    enable_parallel: bool = True
    confidence_threshold: float = 0.0
    planning_timeout: float = 60.0
    fallback_tool: str = "llm_generate"

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None) -> "PlannerConfig":
        s = s or settings
        return cls(
            model=s.PLANNER_MODEL,
            max_steps=s.PLANNER_MAX_STEPS,
            enable_parallel=s.PLANNER_ENABLE_PARALLEL,
            confidence_threshold=s.PLANNER_CONFIDENCE_THRESHOLD,
            planning_timeout=s.PLANNER_TIMEOUT_SECONDS,
            fallback_tool=s.PLANNER_FALLBACK_TOOL,
        )


@dataclass
class ExecutorConfig:
    """Knobs for plan execution. Timeouts and delays are in seconds."""
    max_concurrency: int = 4
    default_timeout: float = 30.0
    max_retries: int = 3
    retry_delay: float = 1.0

    def __post_init__(self):
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None) -> "ExecutorConfig":
        s = s or settings
        return cls(
            max_concurrency=s.EXECUTOR_MAX_CONCURRENCY,
            default_timeout=s.EXECUTOR_DEFAULT_TIMEOUT_SECONDS,
            max_retries=s.EXECUTOR_MAX_RETRIES,
            retry_delay=s.EXECUTOR_RETRY_DELAY_SECONDS,
        )
