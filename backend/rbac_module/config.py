import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DB_PATH = BASE_DIR / "school_platform.db"


def _csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    environment: str = os.getenv("ENVIRONMENT", "development")
    database_url: str = os.getenv("DATABASE_URL", f"sqlite:///{DEFAULT_DB_PATH}")

    jwt_secret: str = os.getenv("JWT_SECRET", "change-me-in-production")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    jwt_exp_minutes: int = int(os.getenv("JWT_EXP_MINUTES", "15"))
    jwt_refresh_secret: str = os.getenv("JWT_REFRESH_SECRET", "change-me-refresh-in-production")
    jwt_refresh_exp_days: int = int(os.getenv("JWT_REFRESH_EXP_DAYS", "7"))

    bcrypt_rounds: int = int(os.getenv("BCRYPT_ROUNDS", "12"))
    max_login_attempts: int = int(os.getenv("MAX_LOGIN_ATTEMPTS", "5"))
    lockout_duration_minutes: int = int(os.getenv("LOCKOUT_DURATION_MINUTES", "15"))

    cors_origins: tuple[str, ...] = field(
        default_factory=lambda: _csv(os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"))
    )

    default_admin_email: str = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@school.local")
    default_admin_password: str = os.getenv("DEFAULT_ADMIN_PASSWORD", "Admin12345")
    default_school_name: str = os.getenv("DEFAULT_SCHOOL_NAME", "Default School")
    default_school_code: str = os.getenv("DEFAULT_SCHOOL_CODE", "DEFAULT")

    notification_retention_days: int = int(os.getenv("NOTIFICATION_RETENTION_DAYS", "30"))
    audit_retention_days: int = int(os.getenv("AUDIT_RETENTION_DAYS", "90"))

    def __post_init__(self) -> None:
        if not 4 <= self.bcrypt_rounds <= 15:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 15")
        if self.max_login_attempts < 1:
            raise ValueError("MAX_LOGIN_ATTEMPTS must be positive")
        if self.jwt_exp_minutes < 1 or self.jwt_refresh_exp_days < 1:
            raise ValueError("Token lifetimes must be positive")
        if self.environment == "production" and self.jwt_secret == "change-me-in-production":
            raise ValueError("JWT_SECRET must be set in production")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()
