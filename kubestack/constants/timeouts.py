"""Timeout constants for kubestack.

All timeout and interval values for remote queries, streams, and refresh cycles.
"""

from typing import Final

# ============================================================================
# Remote query timeouts (float, in seconds)
# ============================================================================

DISCOVERY_QUERY_TIMEOUT: Final = 15.0
CLUSTER_REQUEST_TIMEOUT: Final = "15s"

# Process-level command timeout (must be greater than request timeout)
KUBECTL_COMMAND_TIMEOUT: Final = 25

# ============================================================================
# Streaming timeouts (float, in seconds)
# ============================================================================

STREAM_TIMEOUT: Final = 60.0
STREAM_CONNECT_TIMEOUT: Final = 10.0

# ============================================================================
# Refresh cycles (seconds)
# ============================================================================

DISCOVERY_REFRESH_INTERVAL: Final = 120.0
MAX_BACKOFF_INTERVAL: Final = 600.0

__all__ = [
    "CLUSTER_REQUEST_TIMEOUT",
    "DISCOVERY_QUERY_TIMEOUT",
    "DISCOVERY_REFRESH_INTERVAL",
    "KUBECTL_COMMAND_TIMEOUT",
    "MAX_BACKOFF_INTERVAL",
    "STREAM_CONNECT_TIMEOUT",
    "STREAM_TIMEOUT",
]
