from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Broker (Kafka)
    # ------------------------------------------------------------------
    # When disabled, lifecycle events only go to the local audit log.
    broker_enabled: bool = True
    kafka_brokers: str = "localhost:9092"  # comma-separated host:port list
    kafka_client_id: str = "saas-automation-app"
    kafka_group_id: str = "saas-automation-group"
    kafka_session_timeout_ms: int = 30000
    kafka_heartbeat_interval_ms: int = 3000

    # Start the workflow event consumer together with the API process
    consumer_autostart: bool = False
    # Degraded-mode heartbeat period of the workflow event consumer
    consumer_heartbeat_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Dispatch (Slack / Discord / Notion)
    # ------------------------------------------------------------------
    dispatch_max_attempts: int = 3
    dispatch_default_retry_after: float = 1.0  # seconds, when the server sends no hint
    http_timeout: float = 30.0

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    data_dir: Path = Path("data")

    class Config:
        env_file = ".env"
        case_sensitive = False

    def broker_list(self) -> list[str]:
        return [b.strip() for b in self.kafka_brokers.split(",") if b.strip()]

    @property
    def workflows_dir(self) -> Path:
        return self.data_dir / "workflows"

    @property
    def executions_db(self) -> Path:
        return self.data_dir / "executions.db"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
