"""Autoscaler resolvers."""

from kubestack.controllers.stacks.resolvers.autoscaler_resolver import (
    AUTOSCALER_RESOLVERS,
    AutoscalerIndex,
    resolve_autoscaler,
)

__all__ = ["AUTOSCALER_RESOLVERS", "AutoscalerIndex", "resolve_autoscaler"]
