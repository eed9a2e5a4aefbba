"""
Default configuration values for media-catalog.

Centralized defaults that can be overridden by environment variables or the
per-root config file.
"""

from typing import Any, Dict

# Per-root catalog defaults
DEFAULT_SETTINGS = {
    # Event-log synchronization
    "sync": {
        "enabled": True,
        "app_dir_name": ".media-catalog",
        "events_dir_name": "events",
        "event_file_extension": ".json",
        "compaction_threshold": 50,
        "history_size": 100
    },

    # Asset indexing
    "index": {
        "database_path": None,
        "image_extensions": [".jpg", ".jpeg", ".png", ".gif", ".webp"],
        "video_extensions": [".mp4", ".mov"],
        "skip_dotfiles": True,
        "embedding_dimensions": 512,
        "id_hash_bytes": 16 * 1024,
        "mtime_tolerance_ms": 1000
    },

    # Media-root watcher
    "watch": {
        "enabled": True,
        "debounce_ms": 500,
        "recursive": True
    },

    "version": "1.0.0"
}

# Environment variable mappings
ENV_VAR_MAPPING = {
    'MEDIA_CATALOG_SYNC_ENABLED': 'sync.enabled',
    'MEDIA_CATALOG_COMPACTION_THRESHOLD': 'sync.compaction_threshold',
    'MEDIA_CATALOG_DATABASE_PATH': 'index.database_path',
    'MEDIA_CATALOG_EMBEDDING_DIMENSIONS': 'index.embedding_dimensions',
    'MEDIA_CATALOG_MTIME_TOLERANCE_MS': 'index.mtime_tolerance_ms',
    'MEDIA_CATALOG_WATCH_ENABLED': 'watch.enabled',
    'MEDIA_CATALOG_WATCH_DEBOUNCE_MS': 'watch.debounce_ms'
}


def get_default_catalog_config(name: str, root_path: str) -> Dict[str, Any]:
    """Default catalog configuration for a root"""
    return {
        'name': name,
        'root_path': root_path,
        'sync': dict(DEFAULT_SETTINGS['sync']),
        'index': {
            **DEFAULT_SETTINGS['index'],
            'image_extensions': list(DEFAULT_SETTINGS['index']['image_extensions']),
            'video_extensions': list(DEFAULT_SETTINGS['index']['video_extensions'])
        },
        'watch': dict(DEFAULT_SETTINGS['watch']),
        'version': DEFAULT_SETTINGS['version']
    }
