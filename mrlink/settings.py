# mrlink/settings.py
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Manages the client runtime's settings, loading from environment variables
    and .env files.
    """
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # Application settings
    LOG_LEVEL: str = "INFO"

    # Remote process settings
    REMOTE_URL: str = "ws://localhost:8888/api/messages"
    OPEN_TIMEOUT: float = 10.0
    RECONNECT: bool = True
    RECONNECT_DELAY: float = 10.0

    # Local identity. A fresh id is generated when this is unset.
    LOCAL_ID: Optional[str] = None
    MRL_VERSION: str = "unknown"

    # Wire settings
    HEARTBEAT: str = "X"

    # Blocking call settings
    BLOCKING_POLL_INTERVAL: float = 1.0
    BLOCKING_RETRIES: int = 20
    CORRELATION_TTL: float = 120.0


# Create a single, globally accessible instance of the settings.
settings = Settings()
