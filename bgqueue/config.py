from typing import Dict, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    host: str = "127.0.0.1"
    port: int = 8000
    base_url: str = "http://127.0.0.1:8000"
    storage_filename: str = "queue"

    # Defaults applied to every registered queue
    time_limit: float = 20
    memory_fraction: float = 0.9
    lock_duration: float = 60
    health_check_interval: float = 5
    memory_limit: Optional[str] = None

    # process id -> "package.module:function"
    task_handlers: Dict[str, str] = {}

    model_config = SettingsConfigDict(
        env_prefix="BGQUEUE_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


class QueueConfig(BaseModel):
    """
    Per-queue settings, resolved once when a BatchQueue is built.

    `process_id` namespaces every key the queue writes, so two queue types
    sharing one store never see each other's batches or locks.
    """

    prefix: str = "bgqueue"
    action: str = "background_process"
    process_id: Optional[str] = None

    time_limit: float = Field(default=20, ge=0)
    memory_fraction: float = Field(default=0.9, gt=0, le=1)
    memory_limit: Optional[str] = None
    lock_duration: float = Field(default=60, gt=0)
    # Minutes
    health_check_interval: float = Field(default=5, gt=0)
    trigger_timeout: float = Field(default=0.01, gt=0)

    @model_validator(mode="after")
    def resolve_process_id(self):
        if not self.process_id:
            self.process_id = f"{self.prefix}_{self.action}"
        if self.lock_duration <= self.time_limit:
            raise ValueError(
                f"lock_duration ({self.lock_duration}s) must be greater than "
                f"time_limit ({self.time_limit}s)"
            )
        return self

    @property
    def batch_prefix(self) -> str:
        return f"{self.process_id}_batch_"

    @property
    def lock_key(self) -> str:
        return f"{self.process_id}_process_lock"

    @property
    def health_check_id(self) -> str:
        return f"{self.process_id}_cron"

    @property
    def health_check_period(self) -> float:
        return self.health_check_interval * 60

    @classmethod
    def from_settings(cls, app_config: AppConfig, process_id: str) -> "QueueConfig":
        return cls(
            process_id=process_id,
            time_limit=app_config.time_limit,
            memory_fraction=app_config.memory_fraction,
            memory_limit=app_config.memory_limit,
            lock_duration=app_config.lock_duration,
            health_check_interval=app_config.health_check_interval,
        )


settings = AppConfig()
