# ============================================================================
# src/care_ingestion/config/queue_config.py
# ============================================================================
"""
Job Queue Settings
- RabbitMQ connection
- Worker concurrency (consumer prefetch)
- Rate limiting (protects the AI provider)
- Retry policy
- Completed/failed history retention
- Recurring sweep schedule
"""

from urllib.parse import quote

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class QueueSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_CONNECTION_TIMEOUT: float = Field(default=30.0, gt=0)

    DOCUMENT_CONCURRENCY: int = Field(
        default=3,
        ge=1,
        description="Documents processed concurrently (AI calls are slow)"
    )
    RATE_LIMIT_MAX: int = Field(
        default=5,
        ge=1,
        description="Maximum job starts per rate-limit window"
    )
    RATE_LIMIT_DURATION_MS: int = Field(
        default=1000,
        ge=1,
    )
    DEFAULT_ATTEMPTS: int = Field(default=3, ge=1)
    DEFAULT_BACKOFF_MS: int = Field(default=2000, ge=0)
    DOCUMENT_ATTEMPTS: int = Field(
        default=2,
        ge=1,
        description="Fewer retries for document processing (AI calls are expensive)"
    )
    DOCUMENT_BACKOFF_MS: int = Field(
        default=5000,
        ge=0,
        description="First retry delay; doubles on every further attempt"
    )
    KEEP_COMPLETED: int = Field(default=100, ge=0)
    KEEP_FAILED: int = Field(default=200, ge=0)
    SWEEP_INTERVAL_SECONDS: int = Field(
        default=900,
        gt=0,
        description="Stale document sweep runs every 15 minutes"
    )

    @property
    def rabbitmq_url(self) -> str:
        vhost = quote(self.RABBITMQ_VHOST, safe="")
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}/{vhost}"
        )

queue_settings = QueueSettings()
