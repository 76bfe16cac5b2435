import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./labportal.db")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_DAYS = int(os.getenv("JWT_EXPIRES_DAYS", "7"))

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

AUTH_HOST = os.getenv("AUTH_HOST", "0.0.0.0")
AUTH_PORT = int(os.getenv("AUTH_PORT", "3002"))
LOGBOOK_HOST = os.getenv("LOGBOOK_HOST", "0.0.0.0")
LOGBOOK_PORT = int(os.getenv("LOGBOOK_PORT", "3001"))

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["*"])

RATE_LIMIT = os.getenv("RATE_LIMIT", "100/minute")
RATE_LIMIT_ENABLED = _get_bool(os.getenv("RATE_LIMIT_ENABLED"), default=True)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
