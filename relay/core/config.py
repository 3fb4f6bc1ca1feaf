from functools import lru_cache
from typing import Optional, List
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from relay.core.exceptions import ConfigValidationError


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Queue Relay"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"

    # Backends
    QUEUE_BACKEND: str = "sqs"
    STORE_BACKEND: str = "dynamodb"

    # SQS
    SQS_URL: Optional[str] = None
    DEAD_LETTER_QUEUE_URL: Optional[str] = None

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 10
    REDIS_QUEUE_NAME: Optional[str] = None

    # DynamoDB
    DDB_TABLE: Optional[str] = None

    # Postgres
    DATABASE_URL: Optional[str] = None
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 5
    CREATE_TABLES: bool = False

    # AWS credentials
    AWS_PROFILE: Optional[str] = None
    AWS_REGION: Optional[str] = None
    AWS_ENDPOINT_URL: Optional[str] = None

    # Polling / lease
    RECEIVE_WAIT_SECONDS: int = 20
    VISIBILITY_TIMEOUT_SECONDS: int = 60 * 10
    EXIT_WHEN_EMPTY: bool = False

    # Failure policy
    POISON_MESSAGE_POLICY: str = "dead_letter"
    MAX_RECEIVE_COUNT: Optional[int] = None

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    @field_validator("QUEUE_BACKEND")
    @classmethod
    def validate_queue_backend(cls, v):
        allowed = ["sqs", "redis"]
        if v not in allowed:
            raise ValueError(f"QUEUE_BACKEND must be one of: {allowed}")
        return v

    @field_validator("STORE_BACKEND")
    @classmethod
    def validate_store_backend(cls, v):
        allowed = ["dynamodb", "postgres"]
        if v not in allowed:
            raise ValueError(f"STORE_BACKEND must be one of: {allowed}")
        return v

    @field_validator("POISON_MESSAGE_POLICY")
    @classmethod
    def validate_poison_policy(cls, v):
        allowed = ["dead_letter", "discard", "retain"]
        if v not in allowed:
            raise ValueError(f"POISON_MESSAGE_POLICY must be one of: {allowed}")
        return v

    @field_validator("RECEIVE_WAIT_SECONDS")
    @classmethod
    def validate_wait_seconds(cls, v):
        # SQS caps long polling at 20 seconds
        if v < 0 or v > 20:
            raise ValueError("RECEIVE_WAIT_SECONDS must be between 0 and 20")
        return v

    @field_validator("MAX_RECEIVE_COUNT")
    @classmethod
    def validate_max_receive_count(cls, v):
        if v is not None and v < 1:
            raise ValueError("MAX_RECEIVE_COUNT must be at least 1")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed_levels:
            raise ValueError(f"Log level must be one of: {allowed_levels}")
        return v.upper()

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v):
        if v not in ("json", "console"):
            raise ValueError("LOG_FORMAT must be 'json' or 'console'")
        return v

    @property
    def queue_ref(self) -> Optional[str]:
        """Queue reference for the selected backend."""
        return self.SQS_URL if self.QUEUE_BACKEND == "sqs" else self.REDIS_QUEUE_NAME

    @property
    def table_ref(self) -> Optional[str]:
        """Store reference for the selected backend."""
        return self.DDB_TABLE if self.STORE_BACKEND == "dynamodb" else "relay_records"

    def validate_required(self) -> None:
        """
        Check that the references required by the selected backends are present.

        Raises:
            ConfigValidationError: listing every missing or inconsistent setting
        """
        problems: List[str] = []

        if self.QUEUE_BACKEND == "sqs" and not self.SQS_URL:
            problems.append("SQS_URL is required when QUEUE_BACKEND=sqs")
        if self.QUEUE_BACKEND == "redis" and not self.REDIS_QUEUE_NAME:
            problems.append("REDIS_QUEUE_NAME is required when QUEUE_BACKEND=redis")
        if self.STORE_BACKEND == "dynamodb" and not self.DDB_TABLE:
            problems.append("DDB_TABLE is required when STORE_BACKEND=dynamodb")
        if self.STORE_BACKEND == "postgres" and not self.DATABASE_URL:
            problems.append("DATABASE_URL is required when STORE_BACKEND=postgres")

        if (
            self.QUEUE_BACKEND == "sqs"
            and self.POISON_MESSAGE_POLICY == "dead_letter"
            and not self.DEAD_LETTER_QUEUE_URL
        ):
            problems.append(
                "DEAD_LETTER_QUEUE_URL is required when POISON_MESSAGE_POLICY=dead_letter on SQS"
            )

        if self.VISIBILITY_TIMEOUT_SECONDS <= self.RECEIVE_WAIT_SECONDS:
            problems.append("VISIBILITY_TIMEOUT_SECONDS must exceed RECEIVE_WAIT_SECONDS")

        if problems:
            raise ConfigValidationError("; ".join(problems))


@lru_cache
def get_settings() -> Settings:
    """Load settings from the environment once per process."""
    return Settings()
