from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):

    DATABASE_URL: str = "sqlite+aiosqlite:///./cardshop.db"
    DB_ECHO: bool = False
    BASE_URL: str = "http://localhost:8000"

    # epay compatible credit gateway
    EPAY_PID: str = ""
    EPAY_KEY: str = ""
    EPAY_BASE_URL: str = "https://credit.linux.do/epay"
    EPAY_NOTIFY_URL: str = ""
    EPAY_RETURN_URL: str = ""
    EPAY_HTTP_PROXY: Optional[str] = None
    EPAY_REQUEST_TIMEOUT: float = 60.0     # seconds
    EPAY_QUERY_ATTEMPTS: int = 2

    INVENTORY_LOCK_TTL_SECONDS: int = 300
    ORDER_TIMEOUT_MINUTES: int = 15
    POLL_RETRY_DELAY_SECONDS: float = 2.0
    POINTS_RATIO: int = 100                # points per currency unit
    MAX_ORDER_QUANTITY: int = 100

    ENABLE_SWEEPER: bool = True
    SWEEP_INTERVAL_SECONDS: float = 60.0
    SWEEP_WORKERS: int = 2
    SWEEP_BATCH_SIZE: int = 100

    class Config:
        env_file = ".env"
        extra="ignore"

config_settings = Settings()
