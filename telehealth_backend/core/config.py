import os



def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:3000"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

DAILY_API_KEY = os.getenv("DAILY_API_KEY", "")
DAILY_API_URL = os.getenv("DAILY_API_URL", "https://api.daily.co/v1")
DAILY_TIMEOUT_SECONDS = float(os.getenv("DAILY_TIMEOUT_SECONDS", "10"))
DAILY_ENABLE_RECORDING = _get_bool(os.getenv("DAILY_ENABLE_RECORDING"), default=False)
ROOM_EXPIRY_GRACE_MINUTES = int(os.getenv("ROOM_EXPIRY_GRACE_MINUTES", "60"))

DEFAULT_SESSION_DURATION_MINUTES = 60
DEFAULT_MAX_SESSIONS_PER_DAY = 8
NEXT_SLOT_HORIZON_DAYS = int(os.getenv("NEXT_SLOT_HORIZON_DAYS", "14"))
MAX_NEXT_SLOT_HORIZON_DAYS = 90
JOIN_WINDOW_MINUTES = int(os.getenv("JOIN_WINDOW_MINUTES", "30"))
MAX_SESSION_LIST_LIMIT = 50
MAX_SESSION_NOTES_LENGTH = 5000


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
