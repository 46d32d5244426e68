"""
Runtime configuration loaded from environment variables (and a local .env file)
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy.engine import URL

load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Application settings. Every field falls back to its environment variable."""

    # Provider credentials
    openai_api_key: Optional[str] = field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    anthropic_api_key: Optional[str] = field(default_factory=lambda: os.getenv("ANTHROPIC_API_KEY"))
    tavily_api_key: Optional[str] = field(default_factory=lambda: os.getenv("TAVILY_API_KEY"))
    default_model: str = field(default_factory=lambda: os.getenv("DEFAULT_MODEL", "gpt-4o"))

    # Storage
    database_url: Optional[str] = field(default_factory=lambda: os.getenv("DATABASE_URL"))
    db_host: str = field(default_factory=lambda: os.getenv("DB_HOST", "localhost"))
    db_port: int = field(default_factory=lambda: _env_int("DB_PORT", 3306))
    db_user: str = field(default_factory=lambda: os.getenv("DB_USER", "root"))
    db_password: str = field(default_factory=lambda: os.getenv("DB_PASSWORD", ""))
    db_database: str = field(default_factory=lambda: os.getenv("DB_DATABASE", "imran_ai"))
    db_pool_size: int = field(default_factory=lambda: _env_int("DB_POOL_SIZE", 10))
    db_max_overflow: int = field(default_factory=lambda: _env_int("DB_MAX_OVERFLOW", 0))
    db_pool_timeout: float = field(default_factory=lambda: _env_float("DB_POOL_TIMEOUT", 30.0))
    db_create_tables: bool = field(default_factory=lambda: _env_bool("DB_CREATE_TABLES", True))

    # Server
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _env_int("PORT", 8081))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # Upstream call limits, in seconds. None disables the limit.
    generation_timeout: Optional[float] = field(
        default_factory=lambda: _env_float("GENERATION_TIMEOUT_SECONDS", 120.0)
    )
    search_timeout: Optional[float] = field(
        default_factory=lambda: _env_float("SEARCH_TIMEOUT_SECONDS", 30.0)
    )

    @property
    def sqlalchemy_url(self) -> str:
        """DATABASE_URL wins; otherwise a MySQL (aiomysql) URL is built from the DB_* parts."""
        if self.database_url:
            return self.database_url
        url = URL.create(
            "mysql+aiomysql",
            username=self.db_user,
            password=self.db_password or None,
            host=self.db_host,
            port=self.db_port,
            database=self.db_database,
        )
        return url.render_as_string(hide_password=False)
