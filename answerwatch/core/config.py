from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "aw_user"
    postgres_password: str = "changeme"
    postgres_db: str = "answerwatch"

    @property
    def postgres_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def postgres_url_sync(self) -> str:
        """For Alembic migrations (sync driver)."""
        return (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Redis (Celery broker + result backend)
    redis_url: str = "redis://localhost:6379/0"

    # Realtime events from worker jobs, relayed to the API over Redis pub/sub
    realtime_channel: str = "answerwatch:execution-events"
    realtime_reconnect_seconds: float = 5.0

    # Encryption for platform credentials
    fernet_key: str = ""

    # Scheduler
    cron_schedule: str = "*/5 * * * *"  # standard 5-field cron, evaluated in UTC
    initial_check_delay_seconds: int = 10

    # Orchestrator
    max_concurrent_jobs: int = 5

    # Provider calls
    provider_timeout_seconds: float = 90.0
    provider_max_retries: int = 2

    # Combined analysis
    analysis_model: str = "gpt-4o-mini"
    analysis_max_retries: int = 2
    reanalysis_max_retries: int = 4
    analysis_backoff_seconds: float = 1.0
    analysis_max_chars: int = 6000
    openai_api_key: str = ""  # used when a business has no ChatGPT platform configured

    # Page metadata
    page_fetch_timeout_seconds: float = 5.0
    page_fetch_concurrency: int = 5
    page_fetch_max_urls: int = 25

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # CORS
    allowed_origins: str = "*"  # comma-separated

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable


settings = Settings()


def validate_settings() -> None:
    """Validate critical settings. Called on API and worker startup."""
    from answerwatch.tasks.schedule import InvalidScheduleError, parse_cron_schedule

    errors: list[str] = []

    try:
        parse_cron_schedule(settings.cron_schedule)
    except InvalidScheduleError as e:
        errors.append(str(e))

    if not settings.fernet_key:
        errors.append(
            'FERNET_KEY must be set (generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())")'
        )

    if settings.max_concurrent_jobs < 1:
        errors.append("MAX_CONCURRENT_JOBS must be at least 1")

    if settings.app_env == "production":
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
