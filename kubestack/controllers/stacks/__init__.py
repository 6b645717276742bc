"""Stack discovery domain."""

from kubestack.controllers.stacks.controller import (
    ClusterFetchStatus,
    DiscoveryInProgressError,
    DiscoveryState,
    StackDiscoveryController,
)

__all__ = [
    "ClusterFetchStatus",
    "DiscoveryInProgressError",
    "DiscoveryState",
    "StackDiscoveryController",
]
