"""Stack discovery controller.

Polls clusters one after another, runs each cluster's sub-queries in
parallel, builds stacks and merges them into the global collection. One
cluster's failure never disturbs another cluster's stacks, and a failed
query never removes stacks that were already known.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

from kubestack.constants.defaults import DEPLOYMENT_BATCH_SIZE_DEFAULT
from kubestack.constants.enums import (
    ClusterOutcome,
    DiscoveryPhase,
    DiscoverySource,
    FetchState,
    ResourceKind,
)
from kubestack.constants.timeouts import DISCOVERY_QUERY_TIMEOUT, DISCOVERY_REFRESH_INTERVAL
from kubestack.controllers.base import BaseController, WorkerResult
from kubestack.controllers.stacks.fetchers import ClusterQueryResult, StackResourceFetcher
from kubestack.controllers.stacks.parsers.stack_merger import (
    FailedParts,
    add_new_stacks,
    drop_stale_deployment_stacks,
    merge_cluster_stacks,
)
from kubestack.controllers.stacks.parsers.stack_parser import (
    InfraIndex,
    build_deployment_stack,
    build_workload_stacks,
    is_candidate_namespace,
)
from kubestack.controllers.stacks.resolvers import AutoscalerIndex
from kubestack.models.stacks.stack_info import Stack
from kubestack.storage.snapshot_store import StackSnapshot, StackSnapshotStore
from kubestack.transport.kubectl import QueryExecutor

logger = logging.getLogger(__name__)

_AUTOSCALER_KINDS = (
    ResourceKind.HORIZONTAL_POD_AUTOSCALER,
    ResourceKind.VARIANT_AUTOSCALING,
    ResourceKind.VERTICAL_POD_AUTOSCALER,
)


class DiscoveryInProgressError(RuntimeError):
    """Raised when a discovery cycle is requested while one is running."""


@dataclass
class ClusterFetchStatus:
    """Status tracking for one cluster within the latest cycle."""

    cluster: str
    state: FetchState = FetchState.LOADING
    outcome: ClusterOutcome | None = None
    error_message: str | None = None
    failed_sources: tuple[str, ...] = ()
    last_updated: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "cluster": self.cluster,
            "state": self.state.value,
            "outcome": self.outcome.value if self.outcome else None,
            "error_message": self.error_message,
            "failed_sources": list(self.failed_sources),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


@dataclass(frozen=True)
class DiscoveryState:
    """Immutable snapshot of the discovery engine."""

    stacks: tuple[Stack, ...] = ()
    is_loading: bool = False
    is_refreshing: bool = False
    error: str | None = None
    last_refresh: float | None = None
    phase: DiscoveryPhase = DiscoveryPhase.IDLE
    cluster_outcomes: Mapping[str, ClusterOutcome] = field(
        default_factory=lambda: MappingProxyType({})
    )


class StackDiscoveryController(BaseController[DiscoveryState]):
    """Discovers llm-d stacks across clusters with progressive merging."""

    def __init__(
        self,
        executor: QueryExecutor,
        snapshot_store: StackSnapshotStore | None = None,
        *,
        clusters: Sequence[str] = (),
        refresh_interval: float = DISCOVERY_REFRESH_INTERVAL,
        query_timeout: float = DISCOVERY_QUERY_TIMEOUT,
        enable_deployment_discovery: bool = True,
        deployment_batch_size: int = DEPLOYMENT_BATCH_SIZE_DEFAULT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__()
        self._executor = executor
        self._fetcher = StackResourceFetcher(executor, timeout=query_timeout)
        self._snapshot_store = snapshot_store
        self._clusters: tuple[str, ...] = tuple(clusters)
        self._refresh_interval = refresh_interval
        self._enable_deployment_discovery = enable_deployment_discovery
        self._deployment_batch_size = max(1, deployment_batch_size)
        self._clock = clock

        self._stacks: list[Stack] = []
        self._is_loading = False
        self._is_refreshing = False
        self._error: str | None = None
        self._last_refresh: float | None = None
        self._phase = DiscoveryPhase.IDLE
        self._cluster_status: dict[str, ClusterFetchStatus] = {}

        self._in_cycle = False
        self._cancel_requested = False
        self._stopping = False
        self._task: asyncio.Task[None] | None = None

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> DiscoveryState:
        return DiscoveryState(
            stacks=tuple(self._stacks),
            is_loading=self._is_loading,
            is_refreshing=self._is_refreshing,
            error=self._error,
            last_refresh=self._last_refresh,
            phase=self._phase,
            cluster_outcomes=MappingProxyType(
                {
                    name: status.outcome
                    for name, status in self._cluster_status.items()
                    if status.outcome is not None
                }
            ),
        )

    @property
    def stacks(self) -> list[Stack]:
        return list(self._stacks)

    @property
    def is_running(self) -> bool:
        return self._in_cycle

    def get_cluster_status(self, cluster: str) -> ClusterFetchStatus | None:
        return self._cluster_status.get(cluster)

    def get_all_cluster_statuses(self) -> dict[str, ClusterFetchStatus]:
        return self._cluster_status.copy()

    async def check_connection(self) -> bool:
        """Return True when at least one configured cluster answers."""
        for cluster in self._clusters or ("",):
            response = await self._executor.execute(
                ("get", "--raw", "/readyz"),
                context=cluster or None,
                timeout=DISCOVERY_QUERY_TIMEOUT,
            )
            if response.ok:
                return True
        return False

    # =========================================================================
    # Snapshot
    # =========================================================================

    def load_snapshot(self) -> StackSnapshot | None:
        """Expose the persisted snapshot, if any, as the current stacks."""
        if self._snapshot_store is None:
            return None
        snapshot = self._snapshot_store.load()
        if snapshot is None:
            return None
        self._stacks = list(snapshot.stacks)
        self._last_refresh = snapshot.timestamp
        fresh = self._snapshot_store.is_fresh(snapshot)
        logger.info(
            "Loaded %d cached stack(s) (%s, %.0fs old)",
            len(snapshot.stacks),
            "fresh" if fresh else "stale",
            snapshot.age(self._clock()),
        )
        self._publish()
        return snapshot

    def _replace_stacks(self, stacks: list[Stack]) -> None:
        self._stacks = stacks
        if self._snapshot_store is not None:
            self._snapshot_store.save(stacks)
        self._publish()

    # =========================================================================
    # Discovery cycle
    # =========================================================================

    async def discover(
        self,
        clusters: Sequence[str] | None = None,
        *,
        silent: bool = False,
    ) -> DiscoveryState:
        """Run one discovery cycle over ``clusters`` in order.

        Raises:
            DiscoveryInProgressError: If a cycle is already running.
        """
        if self._in_cycle:
            raise DiscoveryInProgressError("stack discovery is already running")

        targets = tuple(clusters) if clusters is not None else self._clusters
        self._in_cycle = True
        self._cancel_requested = False
        self._phase = DiscoveryPhase.RUNNING
        self._cluster_status = {c: ClusterFetchStatus(cluster=c) for c in targets}
        self._is_loading = not silent and not self._stacks
        self._is_refreshing = not self._is_loading
        self._publish()

        try:
            for cluster in targets:
                if self._cancel_requested:
                    logger.info("Discovery cancelled before cluster %s", cluster)
                    break
                await self._discover_cluster_safely(cluster)
            self._error = self._summarize_cycle_error(targets)
            self._last_refresh = self._clock()
        finally:
            self._in_cycle = False
            self._is_loading = False
            self._is_refreshing = False
            self._phase = DiscoveryPhase.SETTLED
            self._publish()
        return self.state

    async def refetch(self, clusters: Sequence[str] | None = None) -> WorkerResult:
        """Run a cycle on demand and report the outcome without raising."""
        return await self.run_timed(lambda: self.discover(clusters))

    def _summarize_cycle_error(self, clusters: Sequence[str]) -> str | None:
        outcomes = [self._cluster_status[c].outcome for c in clusters if c in self._cluster_status]
        failed = {ClusterOutcome.SKIPPED_UNREACHABLE, ClusterOutcome.FAILED}
        if outcomes and all(o in failed for o in outcomes):
            return f"No cluster could be reached ({len(outcomes)} tried)"
        return None

    async def _discover_cluster_safely(self, cluster: str) -> None:
        status = self._cluster_status.setdefault(cluster, ClusterFetchStatus(cluster=cluster))
        try:
            outcome = await self._discover_cluster(cluster, status)
        except Exception as exc:
            logger.exception("Stack discovery failed for cluster %s", cluster)
            status.state = FetchState.ERROR
            status.outcome = ClusterOutcome.FAILED
            status.error_message = str(exc)
        else:
            status.outcome = outcome
            status.state = FetchState.ERROR if outcome == ClusterOutcome.SKIPPED_UNREACHABLE else FetchState.SUCCESS
            status.last_updated = datetime.now(timezone.utc)
        self._publish()

    async def _discover_cluster(self, cluster: str, status: ClusterFetchStatus) -> ClusterOutcome:
        result = await self._fetcher.fetch_cluster(cluster)
        status.failed_sources = tuple(sorted(kind.value for kind in result.failed_kinds))

        if result.is_unreachable:
            status.error_message = result[ResourceKind.POD].error
            logger.warning("Cluster %s unreachable, keeping its stacks: %s", cluster, status.error_message)
            return ClusterOutcome.SKIPPED_UNREACHABLE

        infra = InfraIndex.build(
            services=result.items(ResourceKind.SERVICE),
            gateways=result.items(ResourceKind.GATEWAY),
            pools=result.items(ResourceKind.INFERENCE_POOL),
        )
        autoscalers = AutoscalerIndex.build(
            variant_autoscalings=result.items(ResourceKind.VARIANT_AUTOSCALING),
            hpas=result.items(ResourceKind.HORIZONTAL_POD_AUTOSCALER),
            vpas=result.items(ResourceKind.VERTICAL_POD_AUTOSCALER),
        )

        if result.is_empty:
            logger.debug("Cluster %s has no labelled pods or pools", cluster)
            self._replace_stacks(merge_cluster_stacks(self._stacks, cluster, []))
            outcome = ClusterOutcome.SKIPPED_EMPTY
        else:
            outcome = self._merge_workloads(cluster, result, infra, autoscalers)

        if self._enable_deployment_discovery and not self._cancel_requested:
            await self._discover_deployments(cluster, result, infra, autoscalers)
        return outcome

    def _merge_workloads(
        self,
        cluster: str,
        result: ClusterQueryResult,
        infra: InfraIndex,
        autoscalers: AutoscalerIndex,
    ) -> ClusterOutcome:
        fresh = build_workload_stacks(cluster, result.items(ResourceKind.POD), infra, autoscalers)
        failed = FailedParts(
            workloads=not result.succeeded(ResourceKind.POD),
            endpoint_pickers=not result.succeeded(ResourceKind.SERVICE),
            gateways=not result.succeeded(ResourceKind.GATEWAY),
            autoscalers=not all(result.succeeded(kind) for kind in _AUTOSCALER_KINDS),
        )
        incomplete = not (
            result.succeeded(ResourceKind.POD) and result.succeeded(ResourceKind.INFERENCE_POOL)
        )
        merged = merge_cluster_stacks(self._stacks, cluster, fresh, failed, keep_missing=incomplete)
        self._replace_stacks(merged)
        logger.debug("Merged %d stack(s) from cluster %s", len(fresh), cluster)
        return ClusterOutcome.PARTIAL if result.failed_kinds else ClusterOutcome.MERGED

    async def _discover_deployments(
        self,
        cluster: str,
        result: ClusterQueryResult,
        infra: InfraIndex,
        autoscalers: AutoscalerIndex,
    ) -> None:
        """Second phase: add stacks found only through deployment heuristics."""
        namespaces = await self._fetcher.fetch_namespaces(cluster)
        if namespaces is None:
            return

        workload_namespaces = {p.namespace for p in result.items(ResourceKind.POD)}
        workload_namespaces.update(infra.pools)
        candidates = [
            ns for ns in namespaces if is_candidate_namespace(ns) and ns not in workload_namespaces
        ]

        existing = set(namespaces)
        checked = {
            s.namespace
            for s in self._stacks
            if s.cluster == cluster
            and s.source == DiscoverySource.DEPLOYMENTS
            and s.namespace not in existing
        }
        confirmed: set[str] = set()

        if candidates:
            logger.debug("Deployment phase for %s: %d candidate namespace(s)", cluster, len(candidates))

        for start in range(0, len(candidates), self._deployment_batch_size):
            if self._cancel_requested:
                return
            batch = candidates[start : start + self._deployment_batch_size]
            batch_results = await self._fetcher.fetch_deployment_batch(cluster, batch)

            found = []
            for namespace, sub_result in batch_results.items():
                if not sub_result.ok:
                    logger.warning(
                        "Deployment query failed for %s/%s: %s",
                        cluster,
                        namespace,
                        sub_result.error,
                    )
                    continue
                checked.add(namespace)
                stack = build_deployment_stack(
                    namespace, cluster, sub_result.items, infra, autoscalers
                )
                if stack is not None:
                    found.append(stack)
                    confirmed.add(stack.id)

            if found:
                self._replace_stacks(add_new_stacks(self._stacks, found))

        remaining = drop_stale_deployment_stacks(self._stacks, cluster, confirmed, checked)
        if len(remaining) != len(self._stacks):
            self._replace_stacks(remaining)

    # =========================================================================
    # Periodic operation
    # =========================================================================

    def start(self, clusters: Sequence[str] | None = None) -> StackSnapshot | None:
        """Expose any persisted snapshot, then refresh now and periodically.

        The first refresh is silent when a snapshot was available.
        """
        if clusters is not None:
            self._clusters = tuple(clusters)
        if self._task is not None and not self._task.done():
            return None

        snapshot = self.load_snapshot()
        silent = snapshot is not None and bool(snapshot.stacks)
        self._stopping = False
        self._task = asyncio.create_task(self._run_periodic(silent), name="stack-discovery")
        return snapshot

    async def stop(self) -> None:
        """Stop periodic discovery, letting a running cycle finish its current cluster."""
        self._stopping = True
        self._cancel_requested = True
        task, self._task = self._task, None
        if task is None or task.done():
            return
        if not self._in_cycle:
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.debug("Periodic discovery cancelled")

    async def _run_periodic(self, silent: bool) -> None:
        while not self._stopping:
            try:
                await self.discover(silent=silent)
            except DiscoveryInProgressError:
                logger.debug("Skipping periodic discovery, a cycle is already running")
            silent = True
            if self._stopping:
                return
            await asyncio.sleep(self._refresh_interval)


__all__ = [
    "ClusterFetchStatus",
    "DiscoveryInProgressError",
    "DiscoveryState",
    "StackDiscoveryController",
]
