"""
Runtime configuration for the FreshMart API.

Values come from the environment (a local .env file is loaded first) and are
collected in a single Settings object that is passed to the app factory.
"""

import logging
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return default
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings(BaseModel):
    database_url: str = "sqlite:///grocery.db"
    statement_timeout: float = Field(30.0, gt=0, description="Seconds before a statement is aborted")
    db_echo: bool = False

    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = Field(60 * 24 * 30, ge=1)

    password_reset_expire_minutes: int = Field(60, ge=1)
    bcrypt_rounds: int = Field(10, ge=4, le=31)

    environment: str = "development"
    client_url: str = "http://localhost:3000"
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"]
    )

    email_host: Optional[str] = None
    email_port: int = 587
    email_user: Optional[str] = None
    email_pass: Optional[str] = None
    email_from: str = "noreply@freshmart.local"
    email_from_name: str = "FreshMart"

    seed_sample_data: bool = True
    admin_email: str = "admin@example.com"
    admin_password: str = "admin123"

    log_level: str = "INFO"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        defaults = cls()
        return cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            statement_timeout=float(os.getenv("DB_STATEMENT_TIMEOUT", defaults.statement_timeout)),
            db_echo=_env_bool("DB_ECHO", defaults.db_echo),
            jwt_secret=os.getenv("JWT_SECRET", defaults.jwt_secret),
            jwt_expire_minutes=int(os.getenv("JWT_EXPIRE_MINUTES", defaults.jwt_expire_minutes)),
            password_reset_expire_minutes=int(
                os.getenv("PASSWORD_RESET_EXPIRE", defaults.password_reset_expire_minutes)
            ),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", defaults.bcrypt_rounds)),
            environment=os.getenv("APP_ENV", defaults.environment),
            client_url=os.getenv("CLIENT_URL", defaults.client_url),
            cors_origins=_env_list("CORS_ORIGINS", defaults.cors_origins),
            email_host=os.getenv("EMAIL_HOST") or None,
            email_port=int(os.getenv("EMAIL_PORT", defaults.email_port)),
            email_user=os.getenv("EMAIL_USER") or None,
            email_pass=os.getenv("EMAIL_PASS") or None,
            email_from=os.getenv("EMAIL_FROM", defaults.email_from),
            email_from_name=os.getenv("EMAIL_FROM_NAME", defaults.email_from_name),
            seed_sample_data=_env_bool("SEED_SAMPLE_DATA", defaults.seed_sample_data),
            admin_email=os.getenv("ADMIN_EMAIL", defaults.admin_email),
            admin_password=os.getenv("ADMIN_PASSWORD", defaults.admin_password),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    if settings.jwt_secret == "change-me" and not settings.is_development:
        logging.getLogger(__name__).warning("JWT_SECRET is not set; using the insecure default")
