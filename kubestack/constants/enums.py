"""All enum definitions for kubestack.

This module consolidates all enumerations used throughout the application.
"""

from enum import Enum

# =============================================================================
# Stack Topology Enums
# =============================================================================


class ComponentRole(str, Enum):
    """Role of one replica group inside an inference stack."""

    PREFILL = "prefill"
    DECODE = "decode"
    UNIFIED = "unified"
    ENDPOINT_PICKER = "endpoint-picker"
    GATEWAY = "gateway"


class ComponentStatus(str, Enum):
    """Health of a single stack component."""

    RUNNING = "running"
    PENDING = "pending"
    ERROR = "error"
    UNKNOWN = "unknown"


class StackStatus(str, Enum):
    """Roll-up health of a whole stack."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class AutoscalerKind(str, Enum):
    """Autoscaler mechanisms that can govern a stack."""

    WEIGHTED_VARIANT = "weighted-variant"
    HORIZONTAL_POD = "horizontal-pod"
    VERTICAL_POD = "vertical-pod"
    NONE = "none"


class DiscoverySource(str, Enum):
    """Which discovery phase produced a stack."""

    WORKLOADS = "workloads"
    DEPLOYMENTS = "deployments"


class ResourceKind(str, Enum):
    """Kubernetes resource collections queried during discovery."""

    POD = "pods"
    INFERENCE_POOL = "inferencepools"
    SERVICE = "services"
    GATEWAY = "gateway"
    HORIZONTAL_POD_AUTOSCALER = "hpa"
    VARIANT_AUTOSCALING = "variantautoscalings"
    VERTICAL_POD_AUTOSCALER = "vpa"
    DEPLOYMENT = "deployments"


# =============================================================================
# Fetch / Cycle State Enums
# =============================================================================


class FetchState(Enum):
    """Data fetch state values."""

    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class StreamState(str, Enum):
    """Lifecycle of one streamed query."""

    IDLE = "idle"
    STREAMING = "streaming"
    DONE = "done"
    ERRORED = "errored"


class DiscoveryPhase(str, Enum):
    """Lifecycle of one discovery cycle."""

    IDLE = "idle"
    RUNNING = "running"
    SETTLED = "settled"


class ClusterOutcome(str, Enum):
    """Per-cluster result of one discovery cycle."""

    SKIPPED_UNREACHABLE = "skipped-unreachable"
    SKIPPED_EMPTY = "skipped-empty"
    PARTIAL = "partial"
    MERGED = "merged"
    FAILED = "failed"


class TransportErrorKind(str, Enum):
    """Structured classification of a failed remote query."""

    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection-refused"
    DNS_FAILURE = "dns-failure"
    DEADLINE_EXCEEDED = "deadline-exceeded"
    UNREACHABLE = "unreachable"
    COMMAND_FAILED = "command-failed"

    @property
    def is_connectivity(self) -> bool:
        """Return True when the error means the cluster could not be reached."""
        return self in _CONNECTIVITY_ERROR_KINDS


_CONNECTIVITY_ERROR_KINDS = frozenset(
    {
        TransportErrorKind.TIMEOUT,
        TransportErrorKind.CONNECTION_REFUSED,
        TransportErrorKind.DNS_FAILURE,
        TransportErrorKind.DEADLINE_EXCEEDED,
        TransportErrorKind.UNREACHABLE,
    }
)


__all__ = [
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
