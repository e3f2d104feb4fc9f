import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent

# 20 MiB
DEFAULT_MAX_UPLOAD_BYTES = 20 * 1024 * 1024

UPLOADS_URL_PREFIX = "/uploads"

_APP_ENV = (os.getenv("APP_ENV") or "").strip().lower()


class Settings(BaseSettings):
    """Runtime configuration for the chat relay, read from env and `.env`."""

    model_config = SettingsConfigDict(
        env_file=None if _APP_ENV in {"test", "ci"} else str(BASE_DIR / ".env"),
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3000, alias="PORT")

    upload_dir: Path = Field(default=BASE_DIR / "uploads", alias="UPLOAD_DIR")
    max_upload_bytes: int = Field(default=DEFAULT_MAX_UPLOAD_BYTES, alias="MAX_UPLOAD_BYTES")

    # strftime pattern for the server-stamped message time
    time_format: str = Field(default="%H:%M", alias="TIME_FORMAT")

    # When true, chat messages carry the sender's registered name instead of
    # whatever name the client declared.
    enforce_sender_name: bool = Field(default=False, alias="ENFORCE_SENDER_NAME")

    # JSON list or comma-separated, e.g. `*` or `http://a.test,http://b.test`
    cors_allow_origins: Annotated[List[str], NoDecode] = Field(default=["*"], alias="CORS_ALLOW_ORIGINS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            if value.startswith("["):
                return json.loads(value)
            return [part.strip() for part in value.split(",") if part.strip()]
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
