"""Dashboard settings models."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kubestack.constants.defaults import (
    DEPLOYMENT_BATCH_SIZE_DEFAULT,
    KUBECTL_BINARY_DEFAULT,
    LOG_LEVEL_DEFAULT,
    REFRESH_INTERVAL_DEFAULT,
    STACK_SNAPSHOT_TTL_SECONDS,
    STATE_DIR_DEFAULT,
    STORE_FILE_NAME,
)
from kubestack.constants.timeouts import DISCOVERY_QUERY_TIMEOUT


class DashboardSettings(BaseModel):
    """Dashboard settings model with validation."""

    model_config = ConfigDict(populate_by_name=True)

    # Cluster contexts to poll, in order. Empty means the current context.
    contexts: list[str] = Field(default_factory=list)

    # Refresh cycles
    refresh_interval_seconds: int = Field(default=REFRESH_INTERVAL_DEFAULT, ge=1)
    query_timeout_seconds: float = Field(default=DISCOVERY_QUERY_TIMEOUT, gt=0)
    snapshot_ttl_seconds: float = Field(default=STACK_SNAPSHOT_TTL_SECONDS, gt=0)

    # Paths and binaries
    state_dir: str = STATE_DIR_DEFAULT
    kubectl_binary: str = KUBECTL_BINARY_DEFAULT

    log_level: str = LOG_LEVEL_DEFAULT

    # Second discovery phase (deployment heuristics)
    enable_deployment_discovery: bool = True
    deployment_batch_size: int = Field(default=DEPLOYMENT_BATCH_SIZE_DEFAULT, ge=1)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.upper()

    @property
    def store_path(self) -> Path:
        """Path of the JSON key-value store inside the state directory."""
        return Path(self.state_dir).expanduser() / STORE_FILE_NAME


class ConfigError(Exception):
    """Base exception for configuration errors."""


class ConfigLoadError(ConfigError):
    """Raised when settings fail to load."""


class ConfigSaveError(ConfigError):
    """Raised when settings fail to save."""
