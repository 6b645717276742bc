"""Resource fetcher for stack discovery - runs the per-cluster sub-queries."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from kubestack.constants.enums import ResourceKind, TransportErrorKind
from kubestack.constants.patterns import ROLE_LABEL
from kubestack.constants.timeouts import DISCOVERY_QUERY_TIMEOUT
from kubestack.models.stacks.resources import ParsedResources, parse_resource_list
from kubestack.transport.kubectl import QueryExecutor, QueryResponse

logger = logging.getLogger(__name__)

# Sub-queries issued concurrently for every cluster
WORKLOAD_QUERIES: dict[ResourceKind, tuple[str, ...]] = {
    ResourceKind.POD: ("get", "pods", "-A", "-l", ROLE_LABEL, "-o", "json"),
    ResourceKind.INFERENCE_POOL: ("get", "inferencepools", "-A", "-o", "json"),
    ResourceKind.SERVICE: ("get", "services", "-A", "-o", "json"),
    ResourceKind.GATEWAY: ("get", "gateway", "-A", "-o", "json"),
    ResourceKind.HORIZONTAL_POD_AUTOSCALER: ("get", "hpa", "-A", "-o", "json"),
    ResourceKind.VARIANT_AUTOSCALING: ("get", "variantautoscalings", "-A", "-o", "json"),
    ResourceKind.VERTICAL_POD_AUTOSCALER: ("get", "vpa", "-A", "-o", "json"),
}

NAMESPACE_QUERY: tuple[str, ...] = ("get", "namespaces", "-o", "jsonpath={.items[*].metadata.name}")


def deployment_query(namespace: str) -> tuple[str, ...]:
    return ("get", "deployments", "-n", namespace, "-o", "json")


@dataclass(frozen=True)
class SubQueryResult:
    """Response and parse outcome of one sub-query."""

    kind: ResourceKind
    response: QueryResponse
    parsed: ParsedResources[Any]

    @property
    def ok(self) -> bool:
        return self.response.ok and self.parsed.ok

    @property
    def items(self) -> tuple[Any, ...]:
        return self.parsed.items if self.ok else ()

    @property
    def error(self) -> str | None:
        if not self.response.ok:
            return self.response.error_summary
        if self.parsed.error is not None:
            return self.parsed.error.message
        return None

    @classmethod
    def from_response(cls, kind: ResourceKind, response: QueryResponse) -> SubQueryResult:
        if response.ok:
            parsed = parse_resource_list(kind, response.output)
        else:
            parsed = ParsedResources(kind=kind)
        return cls(kind=kind, response=response, parsed=parsed)


@dataclass(frozen=True)
class ClusterQueryResult:
    """All workload sub-query results for one cluster."""

    cluster: str
    results: dict[ResourceKind, SubQueryResult] = field(default_factory=dict)

    def __getitem__(self, kind: ResourceKind) -> SubQueryResult:
        return self.results[kind]

    def items(self, kind: ResourceKind) -> tuple[Any, ...]:
        result = self.results.get(kind)
        return result.items if result is not None else ()

    def succeeded(self, kind: ResourceKind) -> bool:
        result = self.results.get(kind)
        return result is not None and result.ok

    @property
    def is_unreachable(self) -> bool:
        """True when the pod query failed with a connectivity-class error."""
        pods = self.results.get(ResourceKind.POD)
        return pods is not None and pods.response.is_unreachable

    @property
    def is_empty(self) -> bool:
        """Pods and pools both answered successfully with nothing in them."""
        return (
            self.succeeded(ResourceKind.POD)
            and self.succeeded(ResourceKind.INFERENCE_POOL)
            and not self.items(ResourceKind.POD)
            and not self.items(ResourceKind.INFERENCE_POOL)
        )

    @property
    def failed_kinds(self) -> frozenset[ResourceKind]:
        return frozenset(kind for kind, result in self.results.items() if not result.ok)


class StackResourceFetcher:
    """Fetches stack-related resources from one cluster at a time."""

    def __init__(self, executor: QueryExecutor, timeout: float = DISCOVERY_QUERY_TIMEOUT) -> None:
        """Initialize with a query executor.

        Args:
            executor: Runs remote queries against a cluster context
            timeout: Per-query timeout in seconds
        """
        self._executor = executor
        self._timeout = timeout

    async def _query(self, args: Sequence[str], cluster: str) -> QueryResponse:
        """Run one query, converting timeouts and executor errors into responses."""
        try:
            return await asyncio.wait_for(
                self._executor.execute(args, context=cluster, timeout=self._timeout),
                self._timeout,
            )
        except asyncio.TimeoutError:
            return QueryResponse.failure(
                f"query timed out after {self._timeout:g}s",
                TransportErrorKind.TIMEOUT,
            )
        except Exception as exc:
            logger.warning("Query %s on %s raised: %s", args[1], cluster, exc)
            return QueryResponse.failure(str(exc) or type(exc).__name__, TransportErrorKind.COMMAND_FAILED)

    async def fetch_cluster(self, cluster: str) -> ClusterQueryResult:
        """Run all workload sub-queries for ``cluster`` concurrently."""
        kinds = list(WORKLOAD_QUERIES)
        responses = await asyncio.gather(
            *(self._query(WORKLOAD_QUERIES[kind], cluster) for kind in kinds)
        )
        results = {
            kind: SubQueryResult.from_response(kind, response)
            for kind, response in zip(kinds, responses)
        }
        for result in results.values():
            if not result.ok:
                logger.warning(
                    "Sub-query %s failed on %s: %s",
                    result.kind.value,
                    cluster,
                    result.error,
                )
        return ClusterQueryResult(cluster=cluster, results=results)

    async def fetch_namespaces(self, cluster: str) -> list[str] | None:
        """Return every namespace name, or None when the query failed."""
        response = await self._query(NAMESPACE_QUERY, cluster)
        if not response.ok:
            logger.warning("Namespace listing failed on %s: %s", cluster, response.error_summary)
            return None
        return response.output.split()

    async def fetch_deployments(self, cluster: str, namespace: str) -> SubQueryResult:
        response = await self._query(deployment_query(namespace), cluster)
        return SubQueryResult.from_response(ResourceKind.DEPLOYMENT, response)

    async def fetch_deployment_batch(
        self,
        cluster: str,
        namespaces: Sequence[str],
    ) -> dict[str, SubQueryResult]:
        """Fetch deployments for a batch of namespaces concurrently."""
        results = await asyncio.gather(
            *(self.fetch_deployments(cluster, namespace) for namespace in namespaces)
        )
        return dict(zip(namespaces, results))


__all__ = [
    "NAMESPACE_QUERY",
    "WORKLOAD_QUERIES",
    "ClusterQueryResult",
    "StackResourceFetcher",
    "SubQueryResult",
    "deployment_query",
]
