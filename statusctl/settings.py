"""Process-level runtime configuration read from the environment."""

from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_LOCK_TTL = 180


class RuntimeSettings(BaseSettings):
    """Runtime configuration shared by every updater instance in a process."""
    model_config = SettingsConfigDict(env_prefix="STATUSCTL_")

    data_dir: str = ".statusctl"
    environment: Literal["local", "development", "staging", "production"] = "production"
    max_execution_time: int = 0  # 0 means unset; lock TTL falls back to DEFAULT_LOCK_TTL
    batch_cap: int = 50
    continuation_margin: int = 10
    poll_interval: float = 60.0
    log_level: str = "INFO"

    @property
    def lock_ttl(self) -> int:
        return self.max_execution_time if self.max_execution_time > 0 else DEFAULT_LOCK_TTL
