"""
Runtime settings

Read from the environment once at startup.
"""
import os
from dataclasses import dataclass, field
from typing import List


def _origins(raw: str) -> List[str]:
    return [o.strip() for o in raw.split(",") if o.strip()] or ["*"]


@dataclass(frozen=True)
class Settings:
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "lokalfarmers"
    port: int = 8000
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    storage_retry_attempts: int = 3
    default_page_limit: int = 10

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            database_name=os.getenv("DATABASE_NAME", cls.database_name),
            port=int(os.getenv("PORT", cls.port)),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            cors_origins=_origins(os.getenv("CORS_ORIGINS", "*")),
            storage_retry_attempts=int(os.getenv("STORAGE_RETRY_ATTEMPTS", cls.storage_retry_attempts)),
            default_page_limit=int(os.getenv("DEFAULT_PAGE_LIMIT", cls.default_page_limit)),
        )
