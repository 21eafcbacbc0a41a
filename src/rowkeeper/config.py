import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Load the appropriate .env file on module import
env = os.environ.get("ROWKEEPER_ENV", "development").lower()
env_file = f".env.{env}"
if os.path.exists(env_file):
    load_dotenv(env_file)
else:
    # Fall back to the default .env file
    load_dotenv()


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None
    user: str | None
    password: str | None
    database: str | None
    port: int = 5432
    pool_min: int = 2
    pool_max: int = 10
    connect_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        return cls(
            host=os.environ.get("DB_HOST"),
            user=os.environ.get("DB_USER"),
            password=os.environ.get("DB_PASSWORD"),
            database=os.environ.get("DB_NAME"),
            port=int(os.environ.get("DB_PORT", "5432")),
            pool_min=int(os.environ.get("DB_POOL_MIN", "2")),
            pool_max=int(os.environ.get("DB_POOL_MAX", "10")),
            connect_timeout=float(os.environ.get("DB_CONNECT_TIMEOUT", "10")),
        )

    def missing_fields(self) -> list[str]:
        """Names of the required settings that are empty."""
        return [name for name in ("host", "user", "database") if not getattr(self, name)]


@dataclass
class Config:
    environment: str
    database: DatabaseConfig

    @classmethod
    def from_env(cls) -> "Config":
        return cls(environment=env, database=DatabaseConfig.from_env())


config = Config.from_env()
