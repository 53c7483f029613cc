import os
from functools import lru_cache


class Settings:
    """Application settings loaded from environment variables with validation."""

    # Database settings
    db_user: str = os.getenv("DB_USER", "postgres")
    db_password: str = os.getenv("DB_PASSWORD", "postgres")
    db_host: str = os.getenv("DB_HOST", "postgres")
    db_port: str = os.getenv("DB_PORT", "5432")
    db_name: str = os.getenv("DB_NAME", "takehome")

    @property
    def database_url(self) -> str:
        override = os.getenv("DATABASE_URL", "").strip()
        if override:
            return override
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def environment(self) -> str:
        return os.getenv("ENVIRONMENT", "development")

    @property
    def debug(self) -> bool:
        return os.getenv("DEBUG", "false").lower() in {"1", "true", "yes"}

    @property
    def log_level(self) -> str:
        return os.getenv("LOG_LEVEL", "INFO").upper()

    # CORS origins (comma-separated). If empty, defaults are used in main.py
    @property
    def cors_allowed_origins(self) -> list[str]:
        raw = os.getenv("ALLOWED_ORIGINS", "").strip()
        if not raw:
            return []
        return [o.strip() for o in raw.split(",") if o.strip()]

    # Public web base URL for candidate-facing links
    @property
    def web_external_base_url(self) -> str:
        val = os.getenv("WEB_EXTERNAL_BASE_URL", "").strip()
        return (val or "http://localhost:5173").rstrip("/")

    # Security & Secrets
    @property
    def jwt_secret(self) -> str:
        val = os.getenv("JWT_SECRET", "")
        if self.environment == "production":
            if len(val) < 32:
                raise ValueError("JWT_SECRET must be set and at least 32 characters in production")
        else:
            if not val:
                # Dev-safe default; DO NOT use in production
                val = (os.getenv("DB_PASSWORD", "dev") + os.getenv("DB_USER", "dev")).ljust(32, "_")
        return val

    @property
    def jwt_lifetime_seconds(self) -> int:
        try:
            return int(os.getenv("JWT_LIFETIME_SECONDS", str(60 * 60 * 8)))
        except ValueError:
            return 60 * 60 * 8

    # ElevenLabs post-call webhook
    @property
    def elevenlabs_webhook_secret(self) -> str | None:
        val = os.getenv("ELEVENLABS_WEBHOOK_SECRET", "").strip()
        if self.environment == "production" and len(val) < 16:
            raise ValueError("ELEVENLABS_WEBHOOK_SECRET must be set in production")
        return val or None

    @property
    def webhook_tolerance_seconds(self) -> int:
        """Maximum allowed skew between the signed timestamp and now."""
        try:
            return int(os.getenv("WEBHOOK_TOLERANCE_SECONDS", "1800"))
        except ValueError:
            return 1800

    # LLM Provider Configuration
    @property
    def primary_llm_provider(self) -> str:
        """Primary LLM provider: openai or gemini"""
        return os.getenv("PRIMARY_LLM_PROVIDER", "openai").lower()

    @property
    def openai_api_key(self) -> str | None:
        return os.getenv("OPENAI_API_KEY")

    @property
    def openai_model(self) -> str:
        return os.getenv("OPENAI_MODEL", "gpt-4o-mini")

    @property
    def gemini_api_key(self) -> str | None:
        return os.getenv("GEMINI_API_KEY")

    @property
    def gemini_model(self) -> str:
        return os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

    @property
    def llm_timeout_seconds(self) -> float:
        try:
            return float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))
        except ValueError:
            return 30.0

    @property
    def llm_max_retries(self) -> int:
        try:
            return max(1, int(os.getenv("LLM_MAX_RETRIES", "3")))
        except ValueError:
            return 3

    @property
    def generate_missing_summaries(self) -> bool:
        return os.getenv("GENERATE_MISSING_SUMMARIES", "true").lower() in {"1", "true", "yes"}

    # Redis
    @property
    def redis_url(self) -> str | None:
        val = os.getenv("REDIS_URL", "").strip()
        return val or None

    @property
    def interview_session_ttl_seconds(self) -> int:
        try:
            return int(os.getenv("INTERVIEW_SESSION_TTL_SECONDS", str(60 * 60 * 4)))
        except ValueError:
            return 60 * 60 * 4

    @property
    def interview_stale_after_minutes(self) -> int:
        try:
            return int(os.getenv("INTERVIEW_STALE_AFTER_MINUTES", "120"))
        except ValueError:
            return 120

    # Client polling hints
    @property
    def status_poll_interval_seconds(self) -> int:
        try:
            return int(os.getenv("STATUS_POLL_INTERVAL_SECONDS", "30"))
        except ValueError:
            return 30

    @property
    def question_poll_interval_seconds(self) -> int:
        try:
            return int(os.getenv("QUESTION_POLL_INTERVAL_SECONDS", "10"))
        except ValueError:
            return 10

    @property
    def question_poll_max_attempts(self) -> int:
        try:
            return int(os.getenv("QUESTION_POLL_MAX_ATTEMPTS", "30"))
        except ValueError:
            return 30

    # Billing
    @property
    def free_tier_submission_limit(self) -> int:
        """Submissions an account without an active subscription may create. 0 disables the gate."""
        try:
            return int(os.getenv("FREE_TIER_SUBMISSION_LIMIT", "3"))
        except ValueError:
            return 3


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
