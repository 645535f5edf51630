import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

RETAKE_POLICIES = ("reset", "keep")


def _get_env(name: str, default: Optional[str] = None) -> str:
    val = os.getenv(name, default)
    if val is None or val.strip() == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return val.strip()


def _parse_origins(raw: str) -> list[str]:
    raw = (raw or "").strip()
    if not raw:
        return ["*"]
    if raw == "*":
        return ["*"]
    return [o.strip() for o in raw.split(",") if o.strip()]


class Settings:
    """Runtime configuration, read from the environment (and `.env`) at construction."""

    def __init__(self):
        self.database_url = _get_env("DATABASE_URL", "sqlite:///./lms.db")
        self.auth_service_url = _get_env("AUTH_SERVICE_URL", "http://auth-service:8001").rstrip("/")
        self.cors_origins = _parse_origins(os.getenv("CORS_ORIGINS", "*"))

        self.upload_dir = _get_env("UPLOAD_DIR", "uploads")
        self.max_file_size = int(_get_env("MAX_FILE_SIZE", str(50 * 1024 * 1024)))
        self.temp_file_ttl_hours = int(_get_env("TEMP_FILE_TTL_HOURS", "24"))
        self.temp_file_purge_interval = int(_get_env("TEMP_FILE_PURGE_INTERVAL", "3600"))  # seconds

        self.retake_grading_policy = _get_env("RETAKE_GRADING_POLICY", "reset").lower()
        if self.retake_grading_policy not in RETAKE_POLICIES:
            raise RuntimeError(
                f"RETAKE_GRADING_POLICY must be one of {', '.join(RETAKE_POLICIES)}, "
                f"got {self.retake_grading_policy!r}"
            )

        self.port = int(_get_env("PORT", "5000"))

    @property
    def allow_credentials(self) -> bool:
        # Browsers reject "*" with credentials
        return self.cors_origins != ["*"]


settings = Settings()
