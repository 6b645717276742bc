"""kubestack - llm-d stack discovery and data freshness for Kubernetes dashboards."""

from kubestack.controllers.stacks import DiscoveryState, StackDiscoveryController
from kubestack.controllers.streaming import ReconciledState, StreamingReconciler
from kubestack.models.cache.freshness_cache import CacheOptions, CacheState, FreshnessCache
from kubestack.models.stacks import Stack, StackComponent, StackServerInfo

__version__ = "0.1.0"

__all__ = [
    "CacheOptions",
    "CacheState",
    "DiscoveryState",
    "FreshnessCache",
    "ReconciledState",
    "Stack",
    "StackComponent",
    "StackDiscoveryController",
    "StackServerInfo",
    "StreamingReconciler",
    "__version__",
]
