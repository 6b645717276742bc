"""Load and save dashboard settings as YAML."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from kubestack.constants.defaults import (
    CONFIG_ENV_VAR,
    CONFIG_FILE_NAME,
    STATE_DIR_DEFAULT,
)
from kubestack.models.state.app_settings import (
    ConfigLoadError,
    ConfigSaveError,
    DashboardSettings,
)

logger = logging.getLogger(__name__)


class ConfigManager:
    """Settings persistence helpers."""

    @staticmethod
    def default_path() -> Path:
        """Return the config path, honouring the environment override."""
        override = os.environ.get(CONFIG_ENV_VAR)
        if override:
            return Path(override).expanduser()
        return Path(STATE_DIR_DEFAULT).expanduser() / CONFIG_FILE_NAME

    @classmethod
    def load(cls, path: Path | None = None) -> DashboardSettings:
        """Load settings from YAML.

        A missing file yields default settings.

        Raises:
            ConfigLoadError: If the file cannot be read, parsed or validated.
        """
        config_path = path or cls.default_path()
        if not config_path.exists():
            logger.debug("No config file at %s, using defaults", config_path)
            return DashboardSettings()

        try:
            with config_path.open(encoding="utf-8") as handle:
                raw = yaml.safe_load(handle)
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigLoadError(f"Failed to read {config_path}: {exc}") from exc

        if raw is None:
            return DashboardSettings()
        if not isinstance(raw, dict):
            raise ConfigLoadError(f"{config_path} must contain a mapping")

        try:
            return DashboardSettings.model_validate(raw)
        except ValidationError as exc:
            raise ConfigLoadError(f"Invalid settings in {config_path}: {exc}") from exc

    @classmethod
    def save(cls, settings: DashboardSettings, path: Path | None = None) -> Path:
        """Write settings to YAML and return the path written.

        Raises:
            ConfigSaveError: If the file cannot be written.
        """
        config_path = path or cls.default_path()
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with config_path.open("w", encoding="utf-8") as handle:
                yaml.safe_dump(settings.model_dump(mode="json"), handle, sort_keys=False)
        except OSError as exc:
            raise ConfigSaveError(f"Failed to write {config_path}: {exc}") from exc
        logger.info("Saved settings to %s", config_path)
        return config_path

    @classmethod
    def reset(cls, path: Path | None = None) -> DashboardSettings:
        """Overwrite the config file with defaults."""
        settings = DashboardSettings()
        cls.save(settings, path)
        return settings


__all__ = ["ConfigManager"]
