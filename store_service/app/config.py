# store_service/app/config.py
import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv


class ConfigurationError(RuntimeError):
    pass


@dataclass(frozen=True)
class Settings:
    database_url: str
    secret_key: str
    token_expire_hours: int = 24
    bcrypt_rounds: int = 12
    starting_balance: float = 100.0
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    db_echo: bool = False


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    if os.getenv("STORE_DB_HOST"):
        return (
            f"postgresql+asyncpg://{os.getenv('STORE_DB_USER')}:{os.getenv('STORE_DB_PASSWORD')}"
            f"@{os.getenv('STORE_DB_HOST')}:{os.getenv('STORE_DB_PORT', '5432')}/{os.getenv('STORE_DB_NAME')}"
        )
    return "sqlite+aiosqlite:///./store.db"


def load_settings() -> Settings:
    """
    Read settings from the environment (and .env, without overriding it).

    Called once at process start; the result is immutable.
    """
    load_dotenv(".env", override=False)

    secret_key = os.getenv("SECRET_KEY")
    if not secret_key:
        raise ConfigurationError("SECRET_KEY environment variable is not set")

    try:
        return Settings(
            database_url=_database_url(),
            secret_key=secret_key,
            token_expire_hours=int(os.getenv("TOKEN_EXPIRE_HOURS", "24")),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", "12")),
            starting_balance=float(os.getenv("STARTING_BALANCE", "100")),
            cors_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            db_echo=os.getenv("DB_ECHO", "false").lower() in ("1", "true", "yes"),
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid numeric setting: {e}") from e
