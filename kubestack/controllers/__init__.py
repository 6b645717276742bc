"""Controllers module for kubestack.

This module provides the stack discovery controller and the streaming
reconciler that feed dashboard views.
"""

from __future__ import annotations

# Base classes
from kubestack.controllers.base import (
    AsyncControllerMixin,
    BaseController,
    WorkerResult,
)

# Stack discovery domain
from kubestack.controllers.stacks.controller import (
    ClusterFetchStatus,
    DiscoveryInProgressError,
    DiscoveryState,
    StackDiscoveryController,
)

# Streaming
from kubestack.controllers.streaming.reconciler import (
    ReconciledState,
    StreamingReconciler,
)

__all__ = [
    # Base
    "AsyncControllerMixin",
    "BaseController",
    "WorkerResult",
    # Stack discovery
    "ClusterFetchStatus",
    "DiscoveryInProgressError",
    "DiscoveryState",
    "StackDiscoveryController",
    # Streaming
    "ReconciledState",
    "StreamingReconciler",
]
