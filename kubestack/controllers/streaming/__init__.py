"""Streaming reconciliation."""

from kubestack.controllers.streaming.reconciler import ReconciledState, StreamingReconciler

__all__ = ["ReconciledState", "StreamingReconciler"]
