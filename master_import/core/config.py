import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import List, Tuple

from dotenv import load_dotenv

load_dotenv()


class Settings:
    def __init__(self) -> None:
        base_dir = Path(__file__).resolve().parent.parent.parent
        self.APP_NAME: str = os.getenv("APP_NAME", "Master Data Import API")
        self.SQLALCHEMY_DATABASE_URI: str = os.getenv(
            "SQLALCHEMY_DATABASE_URI",
            f"sqlite:///{(base_dir / 'master_import.db').as_posix()}",
        )
        self.ENV: str = os.getenv("ENV", "development")

        cors_origins = os.getenv("BACKEND_CORS_ORIGINS")
        self.BACKEND_CORS_ORIGINS: List[str] = (
            [origin.strip() for origin in cors_origins.split(",") if origin.strip()]
            if cors_origins
            else ["http://localhost:3000", "http://localhost:5173", "http://127.0.0.1:5173"]
        )

        self.IMPORT_MAX_FILE_MB: int = int(os.getenv("IMPORT_MAX_FILE_MB", "10"))
        self.IMPORT_MAX_ROWS: int = int(os.getenv("IMPORT_MAX_ROWS", "10000"))
        self.IMPORT_BATCH_SIZE: int = int(os.getenv("IMPORT_BATCH_SIZE", "100"))
        self.IMPORT_VALIDATION_CHUNK_SIZE: int = int(os.getenv("IMPORT_VALIDATION_CHUNK_SIZE", "1000"))
        self.IMPORT_SESSION_TTL_MINUTES: int = int(os.getenv("IMPORT_SESSION_TTL_MINUTES", "30"))
        formats = os.getenv("IMPORT_FORMATS", "csv,xlsx,xls")
        self.IMPORT_FORMATS: Tuple[str, ...] = tuple(
            fmt.strip().lower().lstrip(".") for fmt in formats.split(",") if fmt.strip()
        )
        self.IMPORT_TASKS_SECRET: str = os.getenv("IMPORT_TASKS_SECRET", "")


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


MIME_TYPES = {
    "csv": ("text/csv", "application/csv", "application/octet-stream"),
    "xlsx": (
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/octet-stream",
    ),
    "xls": ("application/vnd.ms-excel", "application/octet-stream"),
}


@dataclass(frozen=True)
class ImportConfig:
    """Limits and sizes consumed by the orchestrator.

    Built once and handed to ``ImportOrchestrator``; values never change while
    a job runs.
    """

    max_file_size_bytes: int = 10 * 1024 * 1024
    max_rows: int = 10000
    batch_size: int = 100
    validation_chunk_size: int = 1000
    session_ttl_minutes: int = 30
    supported_formats: Tuple[str, ...] = ("csv", "xlsx", "xls")

    def __post_init__(self) -> None:
        for name in ("max_file_size_bytes", "max_rows", "batch_size", "validation_chunk_size", "session_ttl_minutes"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

    @classmethod
    def from_settings(cls, current: Settings | None = None) -> "ImportConfig":
        current = current or get_settings()
        return cls(
            max_file_size_bytes=current.IMPORT_MAX_FILE_MB * 1024 * 1024,
            max_rows=current.IMPORT_MAX_ROWS,
            batch_size=current.IMPORT_BATCH_SIZE,
            validation_chunk_size=current.IMPORT_VALIDATION_CHUNK_SIZE,
            session_ttl_minutes=current.IMPORT_SESSION_TTL_MINUTES,
            supported_formats=current.IMPORT_FORMATS,
        )

    def mime_types(self) -> Tuple[str, ...]:
        allowed = []
        for fmt in self.supported_formats:
            for mime in MIME_TYPES.get(fmt, ()):
                if mime not in allowed:
                    allowed.append(mime)
        return tuple(allowed)
