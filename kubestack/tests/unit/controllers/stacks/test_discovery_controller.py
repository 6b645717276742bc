"""Tests for the stack discovery controller."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Sequence
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kubestack.constants.enums import (
    ClusterOutcome,
    DiscoveryPhase,
    DiscoverySource,
    FetchState,
    ResourceKind,
)
from kubestack.controllers.stacks import (
    DiscoveryInProgressError,
    DiscoveryState,
    StackDiscoveryController,
)
from kubestack.controllers.stacks.fetchers.resource_fetcher import (
    NAMESPACE_QUERY,
    WORKLOAD_QUERIES,
    deployment_query,
)
from kubestack.models.stacks import build_demo_stacks
from kubestack.storage import MemoryKeyValueStore, StackSnapshotStore
from kubestack.transport.kubectl import QueryResponse

UNREACHABLE = "Unable to connect to the server: dial tcp: lookup api.c: no such host"


class FakeClock:
    def __init__(self, now: float = 10_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeExecutor:
    """Answers queries from canned responses keyed by cluster and arguments.

    Unregistered clusters are unreachable; unregistered queries on a known
    cluster succeed with no output.
    """

    def __init__(self) -> None:
        self.responses: dict[str, dict[tuple[str, ...], QueryResponse]] = {}
        self.calls: list[tuple[str | None, tuple[str, ...]]] = []
        self.gate: asyncio.Event | None = None
        self.hanging: set[tuple[str, tuple[str, ...]]] = set()

    def reachable(self, cluster: str) -> None:
        self.responses.setdefault(cluster, {})

    def unreachable(self, cluster: str) -> None:
        self.responses.pop(cluster, None)

    def set(self, cluster: str, args: Sequence[str], response: QueryResponse) -> None:
        self.responses.setdefault(cluster, {})[tuple(args)] = response

    def hang(self, cluster: str, args: Sequence[str]) -> None:
        self.hanging.add((cluster, tuple(args)))

    def queried(self, cluster: str, args: Sequence[str]) -> bool:
        return (cluster, tuple(args)) in self.calls

    async def execute(
        self,
        args: Sequence[str],
        *,
        context: str | None = None,
        timeout: float | None = None,
    ) -> QueryResponse:
        self.calls.append((context, tuple(args)))
        if (context, tuple(args)) in self.hanging:
            await asyncio.Event().wait()
        if self.gate is not None:
            await self.gate.wait()
        cluster = self.responses.get(context or "")
        if cluster is None:
            return QueryResponse.failure(UNREACHABLE)
        return cluster.get(tuple(args), QueryResponse.success(""))


def listing(*items: dict[str, Any]) -> QueryResponse:
    return QueryResponse.success(json.dumps({"items": list(items)}))


def pod_json(name: str, namespace: str, role: str = "decode", ready: bool = True) -> dict[str, Any]:
    return {
        "metadata": {"name": name, "namespace": namespace, "labels": {"llm-d.ai/role": role}},
        "status": {"phase": "Running", "containerStatuses": [{"ready": ready}]},
    }


def meta_json(name: str, namespace: str, **extra: Any) -> dict[str, Any]:
    return {"metadata": {"name": name, "namespace": namespace}, **extra}


def deployment_json(name: str, namespace: str, replicas: int = 1, ready: int = 1) -> dict[str, Any]:
    return {
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"replicas": replicas},
        "status": {"readyReplicas": ready},
    }


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def executor() -> FakeExecutor:
    """Executor with one reachable cluster hosting a decode-only stack."""
    fake = FakeExecutor()
    fake.set("c1", WORKLOAD_QUERIES[ResourceKind.POD], listing(pod_json("llama-decode-1", "llm-d")))
    return fake


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def snapshot_store(clock: FakeClock) -> StackSnapshotStore:
    return StackSnapshotStore(MemoryKeyValueStore(), clock=clock)


def make_controller(
    executor: FakeExecutor,
    snapshot_store: StackSnapshotStore | None = None,
    clock: FakeClock | None = None,
    **kwargs: Any,
) -> StackDiscoveryController:
    kwargs.setdefault("enable_deployment_discovery", False)
    return StackDiscoveryController(executor, snapshot_store, clock=clock or FakeClock(), **kwargs)


class TestDiscoveryCycle:
    """Tests for a single discovery cycle."""

    @pytest.mark.asyncio
    async def test_discovers_stack(self, executor: FakeExecutor, clock: FakeClock) -> None:
        controller = make_controller(executor, clock=clock)

        state = await controller.discover(["c1"])

        assert [s.id for s in state.stacks] == ["llm-d@c1"]
        assert state.phase == DiscoveryPhase.SETTLED
        assert state.error is None
        assert state.last_refresh == clock.now
        assert state.is_loading is False
        assert state.cluster_outcomes == {"c1": ClusterOutcome.MERGED}
        assert controller.get_cluster_status("c1").state == FetchState.SUCCESS

    @pytest.mark.asyncio
    async def test_all_sub_queries_run_per_cluster(self, executor: FakeExecutor) -> None:
        await make_controller(executor).discover(["c1"])

        for args in WORKLOAD_QUERIES.values():
            assert executor.queried("c1", args)

    @pytest.mark.asyncio
    async def test_first_cycle_reports_loading(self, executor: FakeExecutor) -> None:
        controller = make_controller(executor)
        seen: list[DiscoveryState] = []
        controller.subscribe(seen.append)

        await controller.discover(["c1"])

        assert seen[0].is_loading is True
        assert seen[0].phase == DiscoveryPhase.RUNNING
        assert seen[-1].is_loading is False

    @pytest.mark.asyncio
    async def test_cycle_persists_snapshot(
        self, executor: FakeExecutor, snapshot_store: StackSnapshotStore
    ) -> None:
        await make_controller(executor, snapshot_store).discover(["c1"])

        snapshot = snapshot_store.load()
        assert snapshot is not None
        assert [s.id for s in snapshot.stacks] == ["llm-d@c1"]

    @pytest.mark.asyncio
    async def test_unavailable_snapshot_storage_does_not_fail_cluster(self, executor: FakeExecutor) -> None:
        broken = MagicMock()
        broken.get_item.side_effect = OSError("storage disabled")
        broken.set_item.side_effect = OSError("quota exceeded")
        controller = make_controller(executor, StackSnapshotStore(broken))

        assert controller.load_snapshot() is None
        state = await controller.discover(["c1"])

        assert [s.id for s in state.stacks] == ["llm-d@c1"]
        assert state.cluster_outcomes == {"c1": ClusterOutcome.MERGED}
        assert state.error is None
        broken.set_item.assert_called()

    @pytest.mark.asyncio
    async def test_empty_cluster_list_settles(self, executor: FakeExecutor) -> None:
        controller = make_controller(executor)

        state = await controller.discover([])

        assert state.stacks == ()
        assert state.phase == DiscoveryPhase.SETTLED
        assert state.error is None
        assert executor.calls == []


class TestClusterIsolation:
    """Tests for per-cluster failure handling."""

    @pytest.mark.asyncio
    async def test_unreachable_cluster_keeps_its_stacks(self, executor: FakeExecutor) -> None:
        executor.set("c2", WORKLOAD_QUERIES[ResourceKind.POD], listing(pod_json("qwen-1", "qwen", "both")))
        controller = make_controller(executor)
        await controller.discover(["c1", "c2"])

        executor.unreachable("c2")
        executor.set("c1", WORKLOAD_QUERIES[ResourceKind.POD], listing(pod_json("llama-decode-1", "llm-d", ready=False)))
        state = await controller.discover(["c1", "c2"])

        assert {s.id for s in state.stacks} == {"llm-d@c1", "qwen@c2"}
        assert state.cluster_outcomes["c2"] == ClusterOutcome.SKIPPED_UNREACHABLE
        assert state.cluster_outcomes["c1"] == ClusterOutcome.MERGED
        assert state.error is None
        assert controller.get_cluster_status("c2").state == FetchState.ERROR
        assert "no such host" in controller.get_cluster_status("c2").error_message

    @pytest.mark.asyncio
    async def test_hung_pod_query_skips_cluster(self, executor: FakeExecutor) -> None:
        controller = make_controller(executor, query_timeout=0.05)
        await controller.discover(["c1"])

        executor.hang("c1", WORKLOAD_QUERIES[ResourceKind.POD])
        state = await controller.discover(["c1"])

        assert state.cluster_outcomes == {"c1": ClusterOutcome.SKIPPED_UNREACHABLE}
        assert [s.id for s in state.stacks] == ["llm-d@c1"]
        assert "timed out" in controller.get_cluster_status("c1").error_message

    @pytest.mark.asyncio
    async def test_hung_sub_query_fails_only_itself(self, executor: FakeExecutor) -> None:
        executor.hang("c1", WORKLOAD_QUERIES[ResourceKind.SERVICE])
        controller = make_controller(executor, query_timeout=0.05)

        state = await controller.discover(["c1"])

        assert state.cluster_outcomes == {"c1": ClusterOutcome.PARTIAL}
        assert [s.id for s in state.stacks] == ["llm-d@c1"]
        assert state.error is None

    @pytest.mark.asyncio
    async def test_all_clusters_unreachable_sets_error(self, executor: FakeExecutor) -> None:
        controller = make_controller(executor)
        await controller.discover(["c1"])

        executor.unreachable("c1")
        state = await controller.discover(["c1"])

        assert state.error is not None
        assert [s.id for s in state.stacks] == ["llm-d@c1"]

    @pytest.mark.asyncio
    async def test_failed_sub_query_preserves_previous_parts(self, executor: FakeExecutor) -> None:
        executor.set("c1", WORKLOAD_QUERIES[ResourceKind.SERVICE], listing(meta_json("llama-epp", "llm-d")))
        controller = make_controller(executor)
        await controller.discover(["c1"])

        executor.set(
            "c1",
            WORKLOAD_QUERIES[ResourceKind.SERVICE],
            QueryResponse.failure('Error from server (Forbidden): services is forbidden'),
        )
        state = await controller.discover(["c1"])

        (stack,) = state.stacks
        assert stack.components.endpoint_picker is not None
        assert stack.components.endpoint_picker.name == "llama-epp"
        assert state.cluster_outcomes["c1"] == ClusterOutcome.PARTIAL
        assert controller.get_cluster_status("c1").failed_sources == ("services",)

    @pytest.mark.asyncio
    async def test_failed_pod_query_keeps_known_stacks(self, executor: FakeExecutor) -> None:
        controller = make_controller(executor)
        first = await controller.discover(["c1"])

        executor.set(
            "c1",
            WORKLOAD_QUERIES[ResourceKind.POD],
            QueryResponse.failure('Error from server (Forbidden): pods is forbidden'),
        )
        state = await controller.discover(["c1"])

        assert state.stacks == first.stacks
        assert state.cluster_outcomes["c1"] == ClusterOutcome.PARTIAL

    @pytest.mark.asyncio
    async def test_empty_cluster_clears_its_stacks(self, executor: FakeExecutor) -> None:
        controller = make_controller(executor)
        await controller.discover(["c1"])

        executor.set("c1", WORKLOAD_QUERIES[ResourceKind.POD], listing())
        state = await controller.discover(["c1"])

        assert state.stacks == ()
        assert state.cluster_outcomes["c1"] == ClusterOutcome.SKIPPED_EMPTY

    @pytest.mark.asyncio
    async def test_unexpected_error_marks_cluster_failed(self, executor: FakeExecutor) -> None:
        executor.set("c2", WORKLOAD_QUERIES[ResourceKind.POD], listing(pod_json("qwen-1", "qwen")))
        controller = make_controller(executor)
        real_fetch = controller._fetcher.fetch_cluster

        async def flaky(cluster: str) -> Any:
            if cluster == "c1":
                raise RuntimeError("parser exploded")
            return await real_fetch(cluster)

        with patch.object(controller._fetcher, "fetch_cluster", side_effect=flaky):
            state = await controller.discover(["c1", "c2"])

        assert state.cluster_outcomes == {"c1": ClusterOutcome.FAILED, "c2": ClusterOutcome.MERGED}
        assert [s.id for s in state.stacks] == ["qwen@c2"]
        assert controller.get_cluster_status("c1").error_message == "parser exploded"


class TestSingleFlight:
    """Tests for rejecting overlapping cycles."""

    @pytest.mark.asyncio
    async def test_overlapping_cycle_is_rejected(self, executor: FakeExecutor) -> None:
        executor.gate = asyncio.Event()
        controller = make_controller(executor)
        running = asyncio.create_task(controller.discover(["c1"]))
        await wait_until(lambda: bool(executor.calls))

        assert controller.is_running is True
        with pytest.raises(DiscoveryInProgressError):
            await controller.discover(["c1"])

        result = await controller.refetch(["c1"])
        assert result.success is False
        assert "already running" in result.error

        executor.gate.set()
        await running
        assert controller.is_running is False

    @pytest.mark.asyncio
    async def test_refetch_reports_success(self, executor: FakeExecutor) -> None:
        result = await make_controller(executor).refetch(["c1"])

        assert result.success is True
        assert result.duration_ms >= 0


class TestSnapshotAndPeriodic:
    """Tests for cold start from a snapshot and periodic operation."""

    @pytest.mark.asyncio
    async def test_cold_start_renders_snapshot_then_refreshes_silently(
        self,
        executor: FakeExecutor,
        clock: FakeClock,
        snapshot_store: StackSnapshotStore,
    ) -> None:
        cached = build_demo_stacks()
        clock.now = 10_000.0
        snapshot_store.save(cached)
        clock.now = 10_120.0

        controller = make_controller(executor, snapshot_store, clock, refresh_interval=3600)
        seen: list[DiscoveryState] = []
        controller.subscribe(seen.append)

        snapshot = controller.start(["c1"])

        assert snapshot is not None
        assert snapshot.age(clock.now) == 120.0
        assert snapshot_store.is_fresh(snapshot)
        assert [s.id for s in controller.state.stacks] == [s.id for s in cached]

        await wait_until(lambda: controller.state.phase == DiscoveryPhase.SETTLED)
        await controller.stop()

        assert all(not state.is_loading for state in seen)
        assert any(state.is_refreshing for state in seen)
        assert "llm-d@c1" in {s.id for s in controller.state.stacks}
        assert {s.id for s in cached} <= {s.id for s in controller.state.stacks}

    @pytest.mark.asyncio
    async def test_start_without_snapshot_loads_visibly(self, executor: FakeExecutor) -> None:
        controller = make_controller(executor, refresh_interval=3600)
        seen: list[DiscoveryState] = []
        controller.subscribe(seen.append)

        assert controller.start(["c1"]) is None
        await wait_until(lambda: controller.state.phase == DiscoveryPhase.SETTLED)
        await controller.stop()

        assert any(state.is_loading for state in seen)

    @pytest.mark.asyncio
    async def test_stop_lets_current_cluster_finish(self, executor: FakeExecutor) -> None:
        executor.reachable("c2")
        executor.gate = asyncio.Event()
        controller = make_controller(executor, refresh_interval=3600)

        controller.start(["c1", "c2"])
        await wait_until(lambda: bool(executor.calls))
        stopping = asyncio.create_task(controller.stop())
        await asyncio.sleep(0)
        executor.gate.set()
        await stopping

        assert controller.state.cluster_outcomes == {"c1": ClusterOutcome.MERGED}
        assert all(context != "c2" for context, _ in executor.calls)
        assert controller.state.phase == DiscoveryPhase.SETTLED

    @pytest.mark.asyncio
    async def test_check_connection(self, executor: FakeExecutor) -> None:
        executor.set("c1", ("get", "--raw", "/readyz"), QueryResponse.success("ok"))

        assert await make_controller(executor, clusters=["c1"]).check_connection() is True
        assert await make_controller(FakeExecutor(), clusters=["c1"]).check_connection() is False


class TestDeploymentPhase:
    """Tests for deployment-based discovery."""

    @pytest.fixture
    def deployment_executor(self, executor: FakeExecutor) -> FakeExecutor:
        executor.set("c1", NAMESPACE_QUERY, QueryResponse.success("llm-d serving-a kube-system"))
        executor.set(
            "c1",
            deployment_query("serving-a"),
            listing(deployment_json("vllm-server", "serving-a", replicas=2, ready=2), deployment_json("redis", "serving-a")),
        )
        return executor

    @pytest.mark.asyncio
    async def test_adds_deployment_stacks(self, deployment_executor: FakeExecutor) -> None:
        controller = make_controller(deployment_executor, enable_deployment_discovery=True)

        state = await controller.discover(["c1"])

        by_id = {s.id: s for s in state.stacks}
        assert set(by_id) == {"llm-d@c1", "serving-a@c1"}
        assert by_id["serving-a@c1"].source == DiscoverySource.DEPLOYMENTS
        assert by_id["serving-a@c1"].total_replicas == 2
        assert by_id["llm-d@c1"].source == DiscoverySource.WORKLOADS
        assert not deployment_executor.queried("c1", deployment_query("llm-d"))
        assert not deployment_executor.queried("c1", deployment_query("kube-system"))

    @pytest.mark.asyncio
    async def test_drops_deployment_stack_no_longer_found(self, deployment_executor: FakeExecutor) -> None:
        controller = make_controller(deployment_executor, enable_deployment_discovery=True)
        await controller.discover(["c1"])

        deployment_executor.set("c1", deployment_query("serving-a"), listing(deployment_json("redis", "serving-a")))
        state = await controller.discover(["c1"])

        assert [s.id for s in state.stacks] == ["llm-d@c1"]

    @pytest.mark.asyncio
    async def test_drops_deployment_stack_of_deleted_namespace(self, deployment_executor: FakeExecutor) -> None:
        controller = make_controller(deployment_executor, enable_deployment_discovery=True)
        await controller.discover(["c1"])

        deployment_executor.set("c1", NAMESPACE_QUERY, QueryResponse.success("llm-d kube-system"))
        state = await controller.discover(["c1"])

        assert [s.id for s in state.stacks] == ["llm-d@c1"]

    @pytest.mark.asyncio
    async def test_failed_deployment_query_keeps_stack(self, deployment_executor: FakeExecutor) -> None:
        controller = make_controller(deployment_executor, enable_deployment_discovery=True)
        await controller.discover(["c1"])

        deployment_executor.set(
            "c1", deployment_query("serving-a"), QueryResponse.failure("error: the server was unable to return a response")
        )
        state = await controller.discover(["c1"])

        assert {s.id for s in state.stacks} == {"llm-d@c1", "serving-a@c1"}

    @pytest.mark.asyncio
    async def test_batches_candidate_namespaces(self, executor: FakeExecutor) -> None:
        namespaces = " ".join(f"serving-{i}" for i in range(5))
        executor.set("c1", NAMESPACE_QUERY, QueryResponse.success(namespaces))
        controller = make_controller(executor, enable_deployment_discovery=True, deployment_batch_size=2)

        with patch.object(
            controller._fetcher, "fetch_deployment_batch", wraps=controller._fetcher.fetch_deployment_batch
        ) as batch:
            await controller.discover(["c1"])

        assert [len(call.args[1]) for call in batch.call_args_list] == [2, 2, 1]

    @pytest.mark.asyncio
    async def test_disabled_phase_skips_namespace_query(self, deployment_executor: FakeExecutor) -> None:
        controller = make_controller(deployment_executor, enable_deployment_discovery=False)

        await controller.discover(["c1"])

        assert not deployment_executor.queried("c1", NAMESPACE_QUERY)

    @pytest.mark.asyncio
    async def test_namespace_failure_skips_phase(self, deployment_executor: FakeExecutor) -> None:
        deployment_executor.set("c1", NAMESPACE_QUERY, QueryResponse.failure("error: forbidden"))
        controller = make_controller(deployment_executor, enable_deployment_discovery=True)
        controller._fetcher.fetch_deployment_batch = AsyncMock()  # type: ignore[method-assign]

        state = await controller.discover(["c1"])

        controller._fetcher.fetch_deployment_batch.assert_not_called()
        assert [s.id for s in state.stacks] == ["llm-d@c1"]
