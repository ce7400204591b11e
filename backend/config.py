import os
from dotenv import load_dotenv

load_dotenv()
_RAW_DB_URL = os.getenv("DATABASE_URL", "sqlite:///./notas_fadex.db")
DATABASE_URL = _RAW_DB_URL.replace("postgres://", "postgresql://", 1)
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 480))
APP_URL = os.getenv("APP_URL", "http://localhost:8000")
ATTESTATION_TOKEN_EXPIRE_DAYS = int(os.getenv("ATTESTATION_TOKEN_EXPIRE_DAYS", 30))
MAX_ATTESTATION_FILE_SIZE = int(os.getenv("MAX_ATTESTATION_FILE_SIZE", 10_000_000))
DEFAULT_ATTESTATION_DEADLINE_DAYS = 30
DEFAULT_REMINDER_FREQUENCY_DAYS = 3
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REFRESH_TOKEN = os.getenv("GOOGLE_REFRESH_TOKEN", "")
DRIVE_ROOT_FOLDER_ID = os.getenv("DRIVE_ROOT_FOLDER_ID", "")
EMAIL_SENDER = os.getenv("EMAIL_SENDER", "")
DRIVE_TIMEOUT = 30  # seconds
EMAIL_TIMEOUT = 15  # seconds


class ConfigurationError(RuntimeError):
    """A required secret or setting is missing from the environment."""


def get_auth_secret() -> str:
    # Read on every call so a missing secret fails at the point of use.
    secret = os.getenv("AUTH_SECRET")
    if not secret:
        raise ConfigurationError("A variável de ambiente AUTH_SECRET não está definida.")
    return secret


def get_cron_secret() -> str | None:
    return os.getenv("CRON_SECRET") or None
