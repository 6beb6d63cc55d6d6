import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
DEBUG_SQL = _get_bool(os.getenv("DEBUG_SQL"), default=False)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./awn.db")
STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", "10"))

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "10080"))

CORS_ALLOWED_ORIGINS = _get_list(
    os.getenv("CORS_ALLOWED_ORIGINS"),
    ["http://localhost:3000", "http://localhost:3001"],
)

# Bookable start times offered to patients for every therapist and day.
DAILY_SLOT_TEMPLATE = _get_list(
    os.getenv("DAILY_SLOT_TEMPLATE"),
    ["08:00", "09:00", "10:00", "11:00", "12:00", "13:00", "14:00", "15:00", "16:00", "17:00", "18:00"],
)

MAX_NOTES_LENGTH = int(os.getenv("MAX_NOTES_LENGTH", "1000"))
DEFAULT_SESSION_DURATION_MINUTES = 60
MAX_PAGE_SIZE = 100


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
