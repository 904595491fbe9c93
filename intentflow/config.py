from pydantic import AnyUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "dev"
    SERVICE_PORT: int = 8080
    LOG_JSON: bool = True
    MAX_EVENT_SIZE: int = 65536
    # Event store backend: "memory" or "redis"
    STORE_ADAPTER: Literal["memory", "redis"] = "memory"
    REDIS_URL: AnyUrl | None = None
    REDIS_KEY_PREFIX: str = "intentflow"
    # Authentication
    API_KEYS: str = ""  # Comma-separated list of API keys
    REQUIRE_AUTH: bool = False
    SYSTEM_USER_IDS: str = "system"  # Comma-separated ids allowed to see every tenant
    # Realtime delivery; websocket fan-out when unset
    REALTIME_URL: AnyUrl | None = None
    REALTIME_TIMEOUT: float = 2.0  # Seconds per room broadcast
    # Worker runtime
    VALIDATOR_RETRIES: int = 2
    EXECUTOR_RETRIES: int = 3

    @property
    def system_user_ids(self) -> set[str]:
        return {u.strip() for u in self.SYSTEM_USER_IDS.split(",") if u.strip()}

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
