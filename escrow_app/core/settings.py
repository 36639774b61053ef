import os

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "RENTAL CONTRACT AND ESCROW SETTLEMENT ENGINE"
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./escrow.db")
    SECRET_KEY: str = os.getenv("SECRET_KEY", "change-me")
    ALGORITHM: str = os.getenv("ALGORITHM", "HS256")
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")
    CURRENCY: str = "GNF"
    ALLOWED_HOSTS: list[str] = ["http://localhost:3000"]
    AUTO_CREATE_TABLES: bool = False
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    BLOCKING_WORKERS: int = 4

    UPSTASH_REDIS_TOKEN: str | None = os.getenv("UPSTASH_REDIS_REST_TOKEN")
    UPSTASH_REDIS_URL: str | None = os.getenv("UPSTASH_REDIS_REST_URL")
    DRAMATIQ_REDIS_URL: str = os.getenv("DRAMATIQ_REDIS_URL", "redis://localhost:6379/0")

    OTP_TTL_MINUTES: int = 10
    OTP_MAX_ATTEMPTS: int = 3
    OTP_BCRYPT_ROUNDS: int = 10
    SIGNING_TOKEN_TTL_DAYS: int = 7
    SEAL_DELAY_SECONDS: int = 60
    RETRACTION_WINDOW_HOURS: int = 48
    RETRACTION_REMINDER_HOURS: int = 6
    DEFAULT_NOTICE_MONTHS: int = 3
    INDEFINITE_TERM_MONTHS: int = 120
    DUPLICATE_PAYMENT_WINDOW_SECONDS: int = 300
    CREATE_LOCK_TTL_SECONDS: int = 30
    PROVIDER_TIMEOUT_SECONDS: float = 15.0

    ORANGE_MONEY_BASE_URL: str = "https://api.orange.com/orange-money-webpay/gn/v1"
    ORANGE_MONEY_API_KEY: str | None = os.getenv("ORANGE_MONEY_API_KEY")
    ORANGE_MONEY_WEBHOOK_SECRET: str | None = os.getenv("ORANGE_MONEY_WEBHOOK_SECRET")
    MTN_MOMO_BASE_URL: str = "https://proxy.momoapi.mtn.com/collection/v1_0"
    MTN_MOMO_API_KEY: str | None = os.getenv("MTN_MOMO_API_KEY")
    MTN_MOMO_WEBHOOK_SECRET: str | None = os.getenv("MTN_MOMO_WEBHOOK_SECRET")

    WAHA_BASE_URL: str | None = os.getenv("WAHA_BASE_URL")
    WAHA_API_KEY: str | None = os.getenv("WAHA_API_KEY")
    WAHA_SESSION: str = "default"

    DOCUMENT_STORAGE_PATH: str = os.getenv("DOCUMENT_STORAGE_PATH", "media/contracts")

    class Config:
        env_file = ".env"
        extra = "ignore"
        case_sensitive = False


settings = Settings()
