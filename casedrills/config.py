"""
Application configuration and environment variables
"""

from pydantic_settings import BaseSettings
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv

# Get the project root directory (parent of 'casedrills' folder)
BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env file from project root explicitly
env_path = BASE_DIR / ".env"
load_dotenv(dotenv_path=env_path, override=False)


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # API Configuration
    API_PREFIX: str = "/api"
    PROJECT_NAME: str = "Case Drill Evaluation Engine"
    VERSION: str = "1.0.0"

    # Supabase Configuration
    SUPABASE_URL: str = "https://your-project.supabase.co"
    SUPABASE_KEY: str = "your-supabase-anon-key"
    SUPABASE_SERVICE_KEY: Optional[str] = None

    # OpenAI Configuration
    OPENAI_API_KEY: str = "your-openai-api-key"
    OPENAI_MODEL: str = "gpt-4o-mini"

    # Storage backend: "supabase" for production, "memory" for local development
    STORAGE_BACKEND: str = Field(default="supabase", pattern=r"^(supabase|memory)$")

    # Drill scoring
    CALCULATION_TOLERANCE_PERCENT: float = Field(default=1.0, gt=0)
    MAX_CALCULATION_SECONDS: int = Field(default=300, gt=0)
    TARGET_TIME_SECONDS: int = Field(default=150, gt=0)
    TARGET_ACCURACY: int = Field(default=90, ge=0, le=100)

    # AI evaluation
    AI_EVALUATION_TIMEOUT_MS: int = Field(default=30000, gt=0)
    AI_EVALUATION_SOFT_BUDGET_MS: int = Field(default=200, gt=0)
    AI_EVALUATION_MAX_RETRIES: int = Field(default=3, ge=0)  # retries after the first call

    # Attempt limits
    MAX_CONCURRENT_ATTEMPTS: int = Field(default=3, ge=1)
    MAX_RESPONSE_LENGTH: int = Field(default=8000, gt=0)

    # Application Settings
    DEBUG: bool = False
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    @field_validator('CORS_ORIGINS')
    @classmethod
    def strip_cors_origins(cls, v):
        """Normalize whitespace in the comma-separated origins string"""
        return ",".join(origin.strip() for origin in v.split(',') if origin.strip())

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list"""
        return [origin for origin in self.CORS_ORIGINS.split(',') if origin]

    @property
    def supabase_configured(self) -> bool:
        return "your-project" not in self.SUPABASE_URL and "your-supabase" not in self.SUPABASE_KEY

    @property
    def openai_configured(self) -> bool:
        return bool(self.OPENAI_API_KEY) and "your-openai" not in self.OPENAI_API_KEY

    model_config = {
        "env_file": str(BASE_DIR / ".env"),
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore"
    }


class EngineConfig(BaseModel):
    """
    Immutable configuration for the drill engine.

    Built once at process start and passed to every core component, so the
    scoring and state machine code never reads environment state directly.
    """
    model_config = ConfigDict(frozen=True)

    tolerance_percent: float = Field(default=1.0, gt=0)
    max_calculation_seconds: int = Field(default=300, gt=0)
    target_time_seconds: int = Field(default=150, gt=0)
    target_accuracy: int = Field(default=90, ge=0, le=100)
    ai_timeout_ms: int = Field(default=30000, gt=0)
    ai_soft_budget_ms: int = Field(default=200, gt=0)
    ai_max_retries: int = Field(default=3, ge=0)
    retry_backoff_ms: int = Field(default=100, ge=0)
    max_concurrent_attempts: int = Field(default=3, ge=1)
    max_response_length: int = Field(default=8000, gt=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineConfig":
        """Build the engine configuration from application settings"""
        return cls(
            tolerance_percent=settings.CALCULATION_TOLERANCE_PERCENT,
            max_calculation_seconds=settings.MAX_CALCULATION_SECONDS,
            target_time_seconds=settings.TARGET_TIME_SECONDS,
            target_accuracy=settings.TARGET_ACCURACY,
            ai_timeout_ms=settings.AI_EVALUATION_TIMEOUT_MS,
            ai_soft_budget_ms=settings.AI_EVALUATION_SOFT_BUDGET_MS,
            ai_max_retries=settings.AI_EVALUATION_MAX_RETRIES,
            max_concurrent_attempts=settings.MAX_CONCURRENT_ATTEMPTS,
            max_response_length=settings.MAX_RESPONSE_LENGTH,
        )


# Global settings instance (web layer only; the engine receives EngineConfig)
try:
    settings = Settings()

    # Validate and warn about placeholder values
    import warnings
    if settings.STORAGE_BACKEND == "supabase" and not settings.supabase_configured:
        warnings.warn(
            "[WARN] SUPABASE_URL/SUPABASE_KEY are not configured. Please set them in your .env file.",
            UserWarning
        )
    if not settings.openai_configured:
        warnings.warn(
            "[WARN] OPENAI_API_KEY is not configured. Free-text drills cannot be evaluated.",
            UserWarning
        )
except Exception as e:
    import sys
    print(f"[ERROR] Error loading configuration: {e}", file=sys.stderr)
    print("Please check your .env file or create one with required variables.", file=sys.stderr)
    raise
