"""Narrow interfaces to remote clusters and event streams."""

from kubestack.transport.errors import classify_transport_error, summarize_error
from kubestack.transport.kubectl import KubectlExecutor, QueryExecutor, QueryResponse
from kubestack.transport.sse import (
    SSEStreamTransport,
    StreamEvent,
    StreamTransport,
    StreamTransportError,
)

__all__ = [
    "KubectlExecutor",
    "QueryExecutor",
    "QueryResponse",
    "SSEStreamTransport",
    "StreamEvent",
    "StreamTransport",
    "StreamTransportError",
    "classify_transport_error",
    "summarize_error",
]
