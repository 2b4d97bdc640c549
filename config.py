import os
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: List[str] = field(
        default_factory=lambda: [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    )

    # Database settings
    data_file: str = os.getenv("LIBRARY_DB_FILE") or os.getenv("LIBRARY_DATA_FILE", "library.db")
    database_timeout: float = float(os.getenv("DATABASE_TIMEOUT", "30"))

    # Security settings
    secret_key: str = os.getenv("SECRET_KEY", "your-secret-key-change-this-in-production")
    jwt_secret_key: str = os.getenv("JWT_SECRET_KEY", secret_key)
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    jwt_expiration_minutes: int = int(os.getenv("JWT_EXPIRATION_MINUTES", "60"))  # 1 hour
    admin_key: str = os.getenv("ADMIN_KEY", "change-this-admin-key")
    bcrypt_rounds: int = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Issue Desk")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_flag("DEBUG")
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
