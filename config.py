import os
import logging
from functools import lru_cache

from pydantic import BaseModel, Field


class Settings(BaseModel):
    database_url: str = Field("mongodb://localhost:27017", description="Mongo connection string")
    database_name: str = Field("library", description="Database name")
    secret_key: str = Field("dev-secret-change-me-in-production", description="JWT signing key")
    jwt_algorithm: str = "HS256"
    access_token_expire_seconds: int = Field(86400, ge=0)
    loan_period_days: int = Field(14, gt=0)
    daily_fine_rate: float = Field(5.0, gt=0)
    borrow_limit: int = Field(5, gt=0)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        values = {}
        for name in cls.model_fields:
            raw = os.getenv(name.upper())
            if raw is not None:
                values[name] = raw
        return cls(**values)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
