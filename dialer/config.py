"""Configuration management for the outbound call engine."""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

SERVICE_NAME = "dialer"
SERVICE_VERSION = "1.0.0"


class Config:
    """Application configuration."""

    # Persistence & queue
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./dialer.db")
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Scheduling run
    # How often the periodic trigger fires a batch run (minutes).
    SCHEDULE_INTERVAL_MINUTES: int = int(os.getenv("SCHEDULE_INTERVAL_MINUTES", "5"))
    BATCH_SIZE: int = int(os.getenv("BATCH_SIZE", "50"))
    # Per-user ceiling on calls scheduled in a single run, regardless of plan.
    HARD_CALL_CAP: int = int(os.getenv("HARD_CALL_CAP", "10"))
    DISTRIBUTION_WINDOW_MINUTES: int = int(os.getenv("DISTRIBUTION_WINDOW_MINUTES", "30"))
    RESCHEDULE_LOOKAHEAD_MINUTES: int = int(os.getenv("RESCHEDULE_LOOKAHEAD_MINUTES", "30"))
    RECONTACT_AFTER_HOURS: int = int(os.getenv("RECONTACT_AFTER_HOURS", "24"))
    PRIORITIZE_ATTEMPTS: int = int(os.getenv("PRIORITIZE_ATTEMPTS", "3"))
    PRIORITIZE_RETRY_DELAY_SECONDS: float = float(os.getenv("PRIORITIZE_RETRY_DELAY_SECONDS", "1"))

    # Single-flight lease for batch runs, renewed before each user. Must outlive
    # the slowest single user.
    RUN_LEASE_SECONDS: int = int(os.getenv("RUN_LEASE_SECONDS", "120"))
    # 0 disables the soft deadline.
    RUN_SOFT_DEADLINE_SECONDS: int = int(os.getenv("RUN_SOFT_DEADLINE_SECONDS", "0"))

    # Call job retry contract (enforced by Celery, see dialer.executor.worker)
    CALL_JOB_ATTEMPTS: int = int(os.getenv("CALL_JOB_ATTEMPTS", "3"))
    CALL_JOB_BACKOFF_SECONDS: int = int(os.getenv("CALL_JOB_BACKOFF_SECONDS", "60"))
    WORKER_CONCURRENCY: int = int(os.getenv("WORKER_CONCURRENCY", "5"))

    # Calling provider (Ultravox)
    ULTRAVOX_API_URL: str = os.getenv("ULTRAVOX_API_URL", "https://api.ultravox.ai")
    ULTRAVOX_API_KEY: str = os.getenv("ULTRAVOX_API_KEY", "")
    ULTRAVOX_TIMEOUT_SECONDS: float = float(os.getenv("ULTRAVOX_TIMEOUT_SECONDS", "10"))
    CALLER_FROM_NUMBER: str = os.getenv("CALLER_FROM_NUMBER", "")

    # Application Settings
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"
    BASE_URL: str = os.getenv("BASE_URL", "http://localhost:8000")  # For webhooks - use the public URL in production
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def has_provider_config(cls) -> bool:
        """Check if the calling provider is configured."""
        return bool(cls.ULTRAVOX_API_URL and cls.ULTRAVOX_API_KEY)

    @classmethod
    def soft_deadline_enabled(cls) -> bool:
        return cls.RUN_SOFT_DEADLINE_SECONDS > 0


# Create a global config instance
config = Config()
