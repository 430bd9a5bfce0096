import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def load_env() -> None:
    """Load .env from project root if present."""
    env_path = Path.cwd() / ".env"
    if not env_path.exists():
        return
    load_dotenv(dotenv_path=env_path)


@dataclass(frozen=True)
class Settings:
    db_path: Path
    log_level: str
    log_dir: Path
    default_plan_limit: int
    lock_timeout: float
    db_retries: int


def load_settings() -> Settings:
    """Read engine settings from the environment (after load_env)."""
    return Settings(
        db_path=Path(os.getenv("LEADSTITCH_DB_PATH", "data/leadstitch.db")),
        log_level=os.getenv("LEADSTITCH_LOG_LEVEL", "INFO"),
        log_dir=Path(os.getenv("LEADSTITCH_LOG_DIR", "logs")),
        default_plan_limit=int(os.getenv("LEADSTITCH_DEFAULT_PLAN_LIMIT", "250")),
        lock_timeout=float(os.getenv("LEADSTITCH_LOCK_TIMEOUT", "5")),
        db_retries=int(os.getenv("LEADSTITCH_DB_RETRIES", "2")),
    )
