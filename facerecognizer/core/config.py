"""Configuration settings for the face recognizer."""
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


def _available_cpus() -> int:
    """Cores this process may run on, honouring the scheduler affinity mask."""
    if hasattr(os, "sched_getaffinity"):
        return len(os.sched_getaffinity(0)) or 1
    return os.cpu_count() or 1


def _default_data_dir() -> Path:
    """Per-user data directory, following the XDG convention."""
    base = os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share"
    return Path(base) / "face-recognizer"


class Settings(BaseSettings):
    """Application settings.

    These settings are loaded from environment variables with the following precedence:
    1. Environment variables
    2. .env file
    3. Default values

    Attributes:
        REGISTRY_BACKEND: Which identity registry implementation to use
        MATCH_THRESHOLD: Maximum euclidean distance for two encodings to match
        MODEL_LIFECYCLE: Whether each file task gets its own model instances
            or checks them out of a shared pool
    """
    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_prefix="",  # No prefix for environment variables
        env_nested_delimiter="__"
    )

    # Core Settings
    PROJECT_NAME: str = "Face Recognizer"
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"

    # Storage Settings
    DATA_DIR: Path = _default_data_dir()
    DATABASE_URL: Optional[str] = None
    REGISTRY_BACKEND: Literal["sqlite", "memory", "file"] = "sqlite"
    REGISTRY_FILE: Optional[Path] = None
    STORAGE_RETRY_ATTEMPTS: int = 1
    STORAGE_RETRY_BACKOFF: float = 0.5  # seconds

    # Face matching settings
    MATCH_THRESHOLD: float = 0.6
    LOCATE_LIMIT: int = 30
    SERIALIZE_MATCHER: bool = False

    # Worker Settings
    MAX_CONCURRENCY: Optional[int] = None
    FILE_TIMEOUT_SECONDS: float = 300.0  # 0 disables the per-file timeout

    # Model Settings
    MODEL_LIFECYCLE: Literal["exclusive-per-task", "shared-pool"] = "exclusive-per-task"
    MODEL_POOL_SIZE: Optional[int] = None
    MODEL_DIR: Path = Path("models")
    DETECTOR_MODEL: Literal["cnn", "hog"] = "cnn"
    DETECTOR_UPSAMPLE: int = 1
    ENCODING_JITTERS: int = 0

    # Telemetry
    TELEMETRY_SINK: Literal["memory", "log", "none"] = "memory"

    LOG_LEVEL: str = "INFO"

    @property
    def database_url(self) -> str:
        """Get the SQLAlchemy database URL, defaulting to a file in DATA_DIR."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"sqlite+aiosqlite:///{self.DATA_DIR / 'db.sqlite'}"

    @property
    def registry_file(self) -> Path:
        """Get the path of the flat-file registry."""
        return self.REGISTRY_FILE or self.DATA_DIR / "registry.json"

    @property
    def worker_count(self) -> int:
        """Number of concurrent file tasks.

        Half the available cores are left free because native inference spawns its own threads.
        """
        if self.MAX_CONCURRENCY:
            return max(1, self.MAX_CONCURRENCY)
        return max(1, _available_cpus() // 2)

    @property
    def model_pool_size(self) -> int:
        """Get the number of model bundles kept in the shared pool."""
        return max(1, self.MODEL_POOL_SIZE or self.worker_count)

    @property
    def file_timeout(self) -> Optional[float]:
        """Get the per-file timeout in seconds, or None when disabled."""
        return self.FILE_TIMEOUT_SECONDS if self.FILE_TIMEOUT_SECONDS > 0 else None


settings = Settings()
