"""Configuration management for Chronometry."""

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

from platformdirs import user_config_dir, user_data_dir, user_log_dir

__all__ = [
    "Config",
    "SyncSettings",
    "PhotoSettings",
    "ServerSettings",
    "setup_logging",
    "DEFAULT_API_URL",
]

logger = logging.getLogger(__name__)

APP_NAME = "Chronometry"
APP_AUTHOR = "Chronometry"

# API endpoints
DEFAULT_API_URL = "http://127.0.0.1:5000"

# Sync settings
DEFAULT_SYNC_INTERVAL = 60  # seconds
DEFAULT_CONNECTIVITY_INTERVAL = 10  # seconds
DEFAULT_REQUEST_TIMEOUT = 30  # seconds
MIN_SYNC_INTERVAL = 15

# Photo settings
DEFAULT_PHOTO_MAX_DIMENSION = 1600
DEFAULT_JPEG_QUALITY = 80


@dataclass
class SyncSettings:
    """Sync configuration."""

    interval_seconds: int = DEFAULT_SYNC_INTERVAL
    connectivity_interval_seconds: int = DEFAULT_CONNECTIVITY_INTERVAL
    timeout: int = DEFAULT_REQUEST_TIMEOUT


@dataclass
class PhotoSettings:
    """Photo capture configuration."""

    max_dimension: int = DEFAULT_PHOTO_MAX_DIMENSION
    jpeg_quality: int = DEFAULT_JPEG_QUALITY


@dataclass
class Config:
    """Main client configuration object."""

    api_url: str = DEFAULT_API_URL
    sync: SyncSettings = field(default_factory=SyncSettings)
    photos: PhotoSettings = field(default_factory=PhotoSettings)
    history_limit: int = 10
    debug_mode: bool = False

    @classmethod
    def get_config_dir(cls) -> Path:
        """Get the configuration directory path."""
        return Path(user_config_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_data_dir(cls) -> Path:
        """Get the data directory path (for the local SQLite store)."""
        return Path(user_data_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_log_dir(cls) -> Path:
        """Get the log directory path."""
        return Path(user_log_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_config_file(cls) -> Path:
        """Get the config file path."""
        return cls.get_config_dir() / "config.json"

    @classmethod
    def load(cls, config_file: Optional[Path] = None) -> "Config":
        """Load config from file, or return defaults."""
        config_file = config_file or cls.get_config_file()
        if config_file.exists():
            try:
                with open(config_file, "r") as f:
                    data = json.load(f)
                return cls._from_dict(data)
            except Exception as e:
                logger.warning(f"Failed to load config: {e}, using defaults")
        return cls()

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary."""
        sync_data = data.pop("sync", {})
        photo_data = data.pop("photos", {})

        sync = SyncSettings(**sync_data) if sync_data else SyncSettings()
        sync.interval_seconds = max(MIN_SYNC_INTERVAL, sync.interval_seconds)

        return cls(
            sync=sync,
            photos=PhotoSettings(**photo_data) if photo_data else PhotoSettings(),
            **{k: v for k, v in data.items() if k in cls.__dataclass_fields__},
        )

    def save(self, config_file: Optional[Path] = None) -> None:
        """Save config to file."""
        config_file = config_file or self.get_config_file()
        config_file.parent.mkdir(parents=True, exist_ok=True)

        data = asdict(self)
        with open(config_file, "w") as f:
            json.dump(data, f, indent=2)
        logger.info(f"Config saved to {config_file}")


@dataclass
class ServerSettings:
    """Server configuration, read from the environment."""

    host: str = "0.0.0.0"
    port: int = 5000
    db_path: Path = Path("./data/chronometry.db")
    session_ttl: int = 7 * 24 * 3600
    debug: bool = False

    @classmethod
    def from_env(cls) -> "ServerSettings":
        """Build settings from CHRONOMETRY_* / PORT / DB_PATH variables."""
        return cls(
            host=os.getenv("CHRONOMETRY_HOST", cls.host),
            port=int(os.getenv("PORT", cls.port)),
            db_path=Path(os.getenv("DB_PATH", str(cls.db_path))),
            session_ttl=int(os.getenv("CHRONOMETRY_SESSION_TTL", cls.session_ttl)),
            debug=os.getenv("CHRONOMETRY_DEBUG", "").lower() in {"1", "true", "yes"},
        )


def setup_logging(debug: bool = False, log_file: Optional[Path] = None) -> None:
    """Configure logging."""
    if log_file is None:
        log_dir = Config.get_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / "chronometry.log"
    else:
        log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(),
        ],
        force=True,
    )

    # Reduce noise from libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
