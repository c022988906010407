import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load the appropriate .env file on module import
env = os.environ.get("SLUICE_ENV", "development").lower()
env_file = f".env.{env}"
if os.path.exists(env_file):
    load_dotenv(env_file)
else:
    # Fall back to the default .env file
    load_dotenv()


@dataclass
class Config:
    environment: str
    database_url: str
    batch_size: int
    log_level: str
    log_file: Path | None

    @classmethod
    def from_env(cls) -> "Config":
        log_file = os.environ.get("SLUICE_LOG_FILE")
        return cls(
            environment=env,
            database_url=os.environ.get("DATABASE_URL", "postgresql://localhost:5432/sluice"),
            batch_size=int(os.environ.get("SLUICE_BATCH_SIZE", "200")),
            log_level=os.environ.get("SLUICE_LOG_LEVEL", "INFO").upper(),
            log_file=Path(log_file) if log_file else None,
        )


config = Config.from_env()
