"""
Configuration models for media-catalog.

Handles catalog settings, event-log synchronization and indexing setup.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Set
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_DIR_NAME = ".media-catalog"


class SyncConfig(BaseModel):
    """Event-log synchronization configuration"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    enabled: bool = True

    # Layout under the catalog root
    app_dir_name: str = APP_DIR_NAME
    events_dir_name: str = "events"
    event_file_extension: str = ".json"

    # Compaction
    compaction_threshold: int = Field(default=50, ge=2, le=100000)

    # In-memory buffer of recently applied events
    history_size: int = Field(default=100, ge=1, le=10000)

    @field_validator('event_file_extension')
    @classmethod
    def validate_extension(cls, v: str) -> str:
        """Validate extension starts with a dot"""
        if not v.startswith('.'):
            raise ValueError('Event file extension must start with "."')
        return v.lower()

    def get_sync_dir(self, root_path: Path) -> Path:
        """Directory of event files for a catalog root"""
        return Path(root_path) / self.app_dir_name / self.events_dir_name


class IndexConfig(BaseModel):
    """Asset indexing configuration"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    # Database location; None means <data_dir>/catalog.db
    database_path: Optional[Path] = None

    image_extensions: List[str] = Field(
        default_factory=lambda: [".jpg", ".jpeg", ".png", ".gif", ".webp"]
    )
    video_extensions: List[str] = Field(
        default_factory=lambda: [".mp4", ".mov"]
    )

    skip_dotfiles: bool = True
    embedding_dimensions: int = Field(default=512, ge=1, le=8192)

    # Hashing window for content-derived ids
    id_hash_bytes: int = Field(default=16 * 1024, ge=1024)

    # Modification-time tolerance for "already up to date"
    mtime_tolerance_ms: int = Field(default=1000, ge=0)

    @field_validator('image_extensions', 'video_extensions')
    @classmethod
    def validate_extensions(cls, v: List[str]) -> List[str]:
        """Normalize extensions to lowercase with leading dot"""
        if not v:
            raise ValueError('Extension list cannot be empty')
        normalized = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            normalized.append(ext if ext.startswith('.') else f".{ext}")
        return normalized

    @property
    def media_extensions(self) -> Set[str]:
        return set(self.image_extensions) | set(self.video_extensions)


class WatchConfig(BaseModel):
    """Media-root watcher configuration"""
    model_config = ConfigDict(validate_assignment=True)

    enabled: bool = True
    debounce_ms: int = Field(default=500, ge=0, le=60000)
    recursive: bool = True


class CatalogConfig(BaseModel):
    """Per-root catalog configuration with validation"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    name: str
    root_path: Path

    sync: SyncConfig = Field(default_factory=SyncConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)

    version: str = "1.0.0"

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate catalog name"""
        if not v or not v.strip():
            raise ValueError('Catalog name cannot be empty')
        return v.strip()

    @field_validator('root_path')
    @classmethod
    def validate_root_path(cls, v: Path) -> Path:
        """Validate root path exists"""
        if not v.exists():
            raise ValueError(f'Root path does not exist: {v}')
        if not v.is_dir():
            raise ValueError(f'Root path is not a directory: {v}')
        return v.resolve()

    def get_app_dir(self) -> Path:
        return self.root_path / self.sync.app_dir_name

    def get_config_file(self) -> Path:
        return self.get_app_dir() / "config.json"

    def get_thumbnail_dir(self) -> Path:
        return self.get_app_dir() / "thumbnails"

    def get_embeddings_dir(self) -> Path:
        return self.get_app_dir() / "embeddings"

    @property
    def is_initialized(self) -> bool:
        return self.get_config_file().exists()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        data = self.model_dump(mode='json')
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CatalogConfig':
        if 'root_path' in data:
            data['root_path'] = Path(data['root_path'])
        return cls(**data)


class GlobalSettings(BaseSettings):
    """Global application settings with environment variable support"""
    model_config = SettingsConfigDict(
        env_prefix="MEDIA_CATALOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".media-catalog"
    )

    # Logging
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_to_file: bool = False

    @property
    def default_database_path(self) -> Path:
        return self.data_dir / "catalog.db"

    def get_log_file(self) -> Optional[Path]:
        """Get log file path if logging to file is enabled"""
        if not self.log_to_file:
            return None
        log_dir = self.data_dir / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir / "media-catalog.log"


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(settings: Optional[GlobalSettings] = None) -> None:
    """Apply log level and optional file logging from global settings"""
    settings = settings or GlobalSettings()
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    log_file = settings.get_log_file()
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )
