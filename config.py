"""Settings (env / .env)."""
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

STATUS_FLOWS = ("any", "forward")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    database_url: Optional[str]
    database_name: Optional[str]
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    mongo_transactions: bool = False
    order_max_retries: int = 3
    order_status_flow: str = "any"
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    port: int = 8000

    def __post_init__(self):
        if self.order_status_flow not in STATUS_FLOWS:
            raise ValueError(f"ORDER_STATUS_FLOW must be one of {STATUS_FLOWS}")
        if self.order_max_retries < 1:
            raise ValueError("ORDER_MAX_RETRIES must be at least 1")


def load_settings() -> Settings:
    origins = os.getenv("CORS_ORIGINS", "*")
    return Settings(
        database_url=os.getenv("DATABASE_URL"),
        database_name=os.getenv("DATABASE_NAME"),
        jwt_secret=os.getenv("JWT_SECRET", "change-me"),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        mongo_transactions=_env_bool("MONGO_TRANSACTIONS", False),
        order_max_retries=int(os.getenv("ORDER_MAX_RETRIES", 3)),
        order_status_flow=os.getenv("ORDER_STATUS_FLOW", "any").lower(),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        port=int(os.getenv("PORT", 8000)),
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()
