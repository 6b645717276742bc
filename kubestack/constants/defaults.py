"""Default values for settings and cache behavior.

All default values used in DashboardSettings and by the freshness cache.
"""

from typing import Final

# ============================================================================
# Freshness cache defaults
# ============================================================================

CACHE_VERSION: Final = 4
CACHE_KEY_PREFIX: Final = "kc_cache:"
MAX_CONSECUTIVE_FAILURES: Final = 3
FAILURE_BACKOFF_MULTIPLIER: Final = 2
FAILURE_BACKOFF_MAX_EXPONENT: Final = 5

# Refresh rates by data category (seconds)
REFRESH_RATES: Final[dict[str, float]] = {
    "realtime": 15.0,
    "pods": 30.0,
    "clusters": 60.0,
    "deployments": 60.0,
    "services": 60.0,
    "metrics": 45.0,
    "gpu": 45.0,
    "helm": 120.0,
    "gitops": 120.0,
    "namespaces": 180.0,
    "rbac": 300.0,
    "operators": 300.0,
    "costs": 600.0,
    "default": 120.0,
}

# ============================================================================
# Stack discovery defaults
# ============================================================================

STACK_SNAPSHOT_KEY: Final = "kubestack-stack-cache"
STACK_SNAPSHOT_TTL_SECONDS: Final = 300.0
REFRESH_INTERVAL_DEFAULT: Final = 120
DEPLOYMENT_BATCH_SIZE_DEFAULT: Final = 3

# ============================================================================
# Settings defaults
# ============================================================================

STATE_DIR_DEFAULT: Final = "~/.kubestack"
KUBECTL_BINARY_DEFAULT: Final = "kubectl"
LOG_LEVEL_DEFAULT: Final = "INFO"
CONFIG_ENV_VAR: Final = "KUBESTACK_CONFIG"
CONFIG_FILE_NAME: Final = "config.yaml"
STORE_FILE_NAME: Final = "store.json"

__all__ = [
    "CACHE_KEY_PREFIX",
    "CACHE_VERSION",
    "CONFIG_ENV_VAR",
    "CONFIG_FILE_NAME",
    "DEPLOYMENT_BATCH_SIZE_DEFAULT",
    "FAILURE_BACKOFF_MAX_EXPONENT",
    "FAILURE_BACKOFF_MULTIPLIER",
    "KUBECTL_BINARY_DEFAULT",
    "LOG_LEVEL_DEFAULT",
    "MAX_CONSECUTIVE_FAILURES",
    "REFRESH_INTERVAL_DEFAULT",
    "REFRESH_RATES",
    "STACK_SNAPSHOT_KEY",
    "STACK_SNAPSHOT_TTL_SECONDS",
    "STATE_DIR_DEFAULT",
    "STORE_FILE_NAME",
]
