from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List
from pydantic import field_validator

class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'invoice_user'
    POSTGRES_PASSWORD: str = 'invoice_pass'
    POSTGRES_DB: str = 'invoice_sync'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432

    # Redis settings (broker de Celery)
    REDIS_HOST: str = 'redis'
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None

    # Implementaciones de los clientes externos ("paquete.modulo:Clase")
    ACCOUNTING_CLIENT_PATH: Optional[str] = None
    METADATA_PROVIDER_PATH: Optional[str] = None

    # Loại đơn hàng cho phép tạo hóa đơn (editable en runtime)
    ALLOWED_ORDER_TYPES: List[str] = ["01.Thường", "01. Thường"]

    # Concurrencia para búsquedas de metadata en procesamiento por lotes
    LOOKUP_CONCURRENCY: int = 5
    BATCH_MAX_SIZE: int = 500

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
    def async_database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
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

    @field_validator("DEBUG", mode="before")
    @classmethod
    def parse_debug(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("ALLOWED_ORDER_TYPES", mode="before")
    @classmethod
    def parse_allowed_order_types(cls, v):
        # Acepta "01.Thường|01. Thường" además de JSON
        if isinstance(v, str) and not v.strip().startswith("["):
            return [item.strip() for item in v.split("|") if item.strip()]
        return v

    @field_validator("LOOKUP_CONCURRENCY")
    @classmethod
    def validate_concurrency(cls, v):
        if v < 1:
            raise ValueError("LOOKUP_CONCURRENCY debe ser mayor a 0")
        return v

settings = Settings()
