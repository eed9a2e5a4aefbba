"""
Catalog configuration loading and management.

Reads ``<root>/.media-catalog/config.json`` (creating defaults when absent),
applies environment overrides and caches one configuration per root.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging

from pydantic import ValidationError

from core.models.config import CatalogConfig, GlobalSettings, APP_DIR_NAME
from .defaults import get_default_catalog_config, ENV_VAR_MAPPING

logger = logging.getLogger(__name__)


class ConfigurationLoader:
    """Load and manage catalog configurations"""

    def __init__(self, global_settings: Optional[GlobalSettings] = None):
        self.global_settings = global_settings or GlobalSettings()
        self.config_cache: Dict[str, CatalogConfig] = {}

    def load_catalog_config(
        self,
        root_path: Union[str, Path],
        name: Optional[str] = None
    ) -> CatalogConfig:
        """Load or create the configuration of a catalog root"""
        root_path = Path(root_path).resolve()

        if not name:
            name = root_path.name.lower().replace(' ', '-') or "catalog"

        cache_key = str(root_path)
        if cache_key in self.config_cache:
            return self.config_cache[cache_key]

        config_file = root_path / APP_DIR_NAME / "config.json"

        if config_file.exists():
            config = self._load_existing_config(config_file, root_path, name)
        else:
            config = self._create_catalog_config(root_path, name)

        self.config_cache[cache_key] = config
        return config

    def _load_existing_config(self, config_file: Path, root_path: Path, name: str) -> CatalogConfig:
        """Load an existing configuration file with validation"""
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            data = self._apply_env_overrides(data)
            # The root is where the file was found, even if the tree was moved
            data['root_path'] = root_path
            data.setdefault('name', name)

            return CatalogConfig.from_dict(data)

        except (json.JSONDecodeError, ValidationError, ValueError, OSError) as e:
            logger.error(f"Failed to load config from {config_file}: {e}")
            return self._create_catalog_config(root_path, name)

    def _create_catalog_config(self, root_path: Path, name: str) -> CatalogConfig:
        """Create a default configuration for a root"""
        config_data = get_default_catalog_config(name, str(root_path))
        config_data = self._apply_env_overrides(config_data)
        return CatalogConfig.from_dict(config_data)

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration"""
        for env_var, config_path in ENV_VAR_MAPPING.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                self._set_nested_value(config_data, config_path, env_value)

        return config_data

    def _set_nested_value(self, data: Dict[str, Any], path: str, value: str) -> None:
        """Set nested dictionary value using dot notation path"""
        keys = path.split('.')
        current = data

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = self._convert_env_value(value)

    def _convert_env_value(self, value: str) -> Any:
        """Convert environment variable string to appropriate type"""
        if value.lower() in ('true', 'yes', 'on'):
            return True
        elif value.lower() in ('false', 'no', 'off'):
            return False

        try:
            if '.' in value:
                return float(value)
            else:
                return int(value)
        except ValueError:
            pass

        return value

    def save_catalog_config(self, config: CatalogConfig) -> bool:
        """Save catalog configuration to ``<root>/.media-catalog/config.json``"""
        try:
            config_file = config.get_config_file()
            config_file.parent.mkdir(parents=True, exist_ok=True)

            with open(config_file, 'w', encoding='utf-8') as f:
                json.dump(config.to_dict(), f, indent=2, ensure_ascii=False)

            logger.info(f"Saved configuration to {config_file}")
            self.config_cache[str(config.root_path)] = config
            return True

        except OSError as e:
            logger.error(f"Failed to save config for {config.root_path}: {e}")
            return False

    def setup_catalog(
        self,
        root_path: Union[str, Path],
        name: Optional[str] = None,
        overwrite: bool = False
    ) -> CatalogConfig:
        """Create the app directory layout and persist the configuration"""
        root_path = Path(root_path).resolve()

        if not root_path.is_dir():
            raise ValueError(f"Catalog root does not exist: {root_path}")

        config = self.load_catalog_config(root_path, name)

        if config.is_initialized and not overwrite:
            logger.info(f"Catalog already initialized at {root_path}")
            return config

        if name and config.name != name:
            config = CatalogConfig.from_dict({**config.to_dict(), "name": name})

        for directory in (
            config.get_app_dir(),
            config.sync.get_sync_dir(config.root_path),
            config.get_thumbnail_dir(),
            config.get_embeddings_dir(),
        ):
            directory.mkdir(parents=True, exist_ok=True)

        self.save_catalog_config(config)
        logger.info(f"Catalog setup complete for '{config.name}'")
        return config

    def resolve_database_path(self, config: CatalogConfig) -> Path:
        """Configured database path, or the global default"""
        return config.index.database_path or self.global_settings.default_database_path

    def clear_cache(self) -> None:
        """Clear configuration cache"""
        self.config_cache.clear()
        logger.info("Configuration cache cleared")
