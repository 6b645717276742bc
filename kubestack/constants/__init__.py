"""Constants module for kubestack.

Centralized constants organized by domain:
- enums.py: All Enum class definitions
- defaults.py: Default values for settings and the freshness cache
- timeouts.py: Timeout and interval values (seconds)
- patterns.py: Label keys, name tokens and error tokens
"""

from kubestack.constants.defaults import (
    CACHE_VERSION,
    MAX_CONSECUTIVE_FAILURES,
    REFRESH_INTERVAL_DEFAULT,
    REFRESH_RATES,
    STACK_SNAPSHOT_KEY,
    STACK_SNAPSHOT_TTL_SECONDS,
)
from kubestack.constants.enums import (
    AutoscalerKind,
    ClusterOutcome,
    ComponentRole,
    ComponentStatus,
    DiscoveryPhase,
    DiscoverySource,
    FetchState,
    ResourceKind,
    StackStatus,
    StreamState,
    TransportErrorKind,
)
from kubestack.constants.timeouts import (
    DISCOVERY_QUERY_TIMEOUT,
    DISCOVERY_REFRESH_INTERVAL,
    STREAM_TIMEOUT,
)

__all__ = [
    "CACHE_VERSION",
    "DISCOVERY_QUERY_TIMEOUT",
    "DISCOVERY_REFRESH_INTERVAL",
    "MAX_CONSECUTIVE_FAILURES",
    "REFRESH_INTERVAL_DEFAULT",
    "REFRESH_RATES",
    "STACK_SNAPSHOT_KEY",
    "STACK_SNAPSHOT_TTL_SECONDS",
    "STREAM_TIMEOUT",
    # Enums
    "AutoscalerKind",
    "ClusterOutcome",
    "ComponentRole",
    "ComponentStatus",
    "DiscoveryPhase",
    "DiscoverySource",
    "FetchState",
    "ResourceKind",
    "StackStatus",
    "StreamState",
    "TransportErrorKind",
]
