from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from decimal import Decimal
from pydantic import field_validator


def _parse_bool(v):
    if isinstance(v, str):
        return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
    return bool(v)


class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'mostrador_user'
    POSTGRES_PASSWORD: str = 'mostrador_pass'
    POSTGRES_DB: str = 'mostrador_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432

    # Redis settings (broker de Celery y rate limiting)
    REDIS_HOST: str = 'redis'
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None

    # JWT settings
    APP_SECRET_STRING: str = 'your-super-secret-key-here-change-in-production-2024'
    ALGORITHM: str = 'HS256'

    # Rate limiting
    RATE_LIMIT_BACKEND: str = 'redis'  # redis | memory
    RATE_LIMIT_REQUESTS: int = 100
    RATE_LIMIT_WINDOW: int = 60
    SALES_RATE_LIMIT_REQUESTS: int = 30

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Reglas de negocio
    STOCK_OVERSELL_POLICY: str = 'clamp'  # clamp | reject
    REFUND_AMOUNT_POLICY: str = 'lenient'  # lenient | strict
    MONEY_TOLERANCE: Decimal = Decimal('0.01')
    MIN_REASON_LENGTH: int = 10
    MAX_SPLIT_PAYMENTS: int = 2

    # Email settings
    EMAIL_SMTP_SERVER: str = 'smtp.gmail.com'
    EMAIL_SMTP_PORT: int = 587
    EMAIL_USE_TLS: bool = True
    EMAIL_USERNAME: str = ''
    EMAIL_PASSWORD: str = ''
    EMAIL_FROM: str = ''
    EMAIL_FROM_NAME: str = 'Mostrador'
    NOTIFICATIONS_ENABLED: bool = True

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", "EMAIL_USE_TLS", "NOTIFICATIONS_ENABLED", mode="before")
    @classmethod
    def parse_bool_flags(cls, v):
        return _parse_bool(v)

    @field_validator("STOCK_OVERSELL_POLICY")
    @classmethod
    def validate_oversell_policy(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ("clamp", "reject"):
            raise ValueError("STOCK_OVERSELL_POLICY debe ser 'clamp' o 'reject'")
        return v

    @field_validator("REFUND_AMOUNT_POLICY")
    @classmethod
    def validate_refund_policy(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ("lenient", "strict"):
            raise ValueError("REFUND_AMOUNT_POLICY debe ser 'lenient' o 'strict'")
        return v

settings = Settings()
