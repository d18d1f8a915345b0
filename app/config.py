import sys
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database path - can be overridden via DATABASE_PATH env var for Docker
    database_path: str = "study_progression.db"
    # JWT_SECRET must be set via environment variable - no default
    jwt_secret: str = ""
    # CORS origins (comma-separated)
    cors_origins: str = ""

    # Question bank: remote content service wins over the local YAML file
    question_bank_url: str = ""
    question_bank_path: str = "question_bank.yaml"
    question_bank_timeout_seconds: float = 5.0

    # Diagnostic
    diagnostic_question_count: int = 15
    diagnostic_time_limit_minutes: int = 20

    # Day test
    day_test_question_count: int = 10
    day_test_time_limit_minutes: int = 15
    default_pass_percent: float = 80.0
    pass_requirement_step: float = 2.0
    pass_requirement_ceiling: float = 100.0
    cooldown_base_minutes: int = 60
    cooldown_max_minutes: int = 24 * 60

    # Watch integrity (all in seconds of video time)
    verification_interval_seconds: int = 300
    comprehension_trigger_seconds: int = 1800
    comprehension_question_count: int = 2
    # Largest position jump credited as watch time per progress tick
    max_progress_delta_seconds: int = 10
    completion_tolerance_seconds: int = 5

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


def _load_settings() -> Settings:
    """Load settings and validate critical security requirements."""
    s = Settings()

    # JWT_SECRET is required - no hardcoded fallback
    if not s.jwt_secret:
        print("ERROR: JWT_SECRET environment variable is required but not set.", file=sys.stderr)
        print("Set JWT_SECRET to a secure random string (at least 32 characters).", file=sys.stderr)
        sys.exit(1)

    if len(s.jwt_secret) < 32:
        print("ERROR: JWT_SECRET must be at least 32 characters.", file=sys.stderr)
        sys.exit(1)

    if s.pass_requirement_ceiling < s.default_pass_percent:
        print("ERROR: PASS_REQUIREMENT_CEILING must not be below DEFAULT_PASS_PERCENT.", file=sys.stderr)
        sys.exit(1)

    return s


settings = _load_settings()
