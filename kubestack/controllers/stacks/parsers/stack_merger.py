"""Merge per-cluster discovery results into the global stack collection."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from kubestack.constants.enums import DiscoverySource, StackStatus
from kubestack.models.stacks.stack_info import Stack


@dataclass(frozen=True)
class FailedParts:
    """Which parts of a cluster's fresh stacks came from failed sub-queries."""

    workloads: bool = False
    endpoint_pickers: bool = False
    gateways: bool = False
    autoscalers: bool = False

    @property
    def any(self) -> bool:
        return self.workloads or self.endpoint_pickers or self.gateways or self.autoscalers


def stack_sort_key(stack: Stack) -> tuple[int, str]:
    """Healthy stacks first, then by display name."""
    return (0 if stack.status == StackStatus.HEALTHY else 1, stack.display_name.casefold())


def sort_stacks(stacks: Iterable[Stack]) -> list[Stack]:
    return sorted(stacks, key=stack_sort_key)


def preserve_failed_parts(fresh: Stack, previous: Stack, failed: FailedParts) -> Stack:
    """Carry over parts of ``previous`` whose sub-query failed this cycle."""
    if not failed.any:
        return fresh

    components = fresh.components
    updates: dict[str, object] = {}
    if failed.workloads:
        for role in ("prefill", "decode", "unified"):
            if not getattr(components, role) and getattr(previous.components, role):
                updates[role] = getattr(previous.components, role)
    if failed.endpoint_pickers and components.endpoint_picker is None:
        updates["endpoint_picker"] = previous.components.endpoint_picker
    if failed.gateways and components.gateway is None:
        updates["gateway"] = previous.components.gateway

    autoscaler = fresh.autoscaler
    if failed.autoscalers and autoscaler is None:
        autoscaler = previous.autoscaler

    model = fresh.model
    if failed.workloads and model is None:
        model = previous.model

    if not updates and autoscaler is fresh.autoscaler and model == fresh.model:
        return fresh
    return fresh.rebuilt(
        components=components.model_copy(update=updates) if updates else None,
        model=model,
        autoscaler=autoscaler,
    )


def merge_cluster_stacks(
    current: Sequence[Stack],
    cluster: str,
    fresh: Sequence[Stack],
    failed: FailedParts | None = None,
    keep_missing: bool = False,
) -> list[Stack]:
    """Replace one cluster's stacks and return the re-sorted collection.

    Stacks of other clusters are never touched. Previously known stacks of
    this cluster that were found by the deployment phase are kept until
    that phase decides on them. With ``keep_missing`` every previously
    known stack absent from ``fresh`` is kept.
    """
    failed = failed or FailedParts()
    previous = {s.id: s for s in current if s.cluster == cluster}
    others = [s for s in current if s.cluster != cluster]

    merged: dict[str, Stack] = {}
    for stack in fresh:
        old = previous.get(stack.id)
        merged[stack.id] = preserve_failed_parts(stack, old, failed) if old is not None else stack

    for stack_id, old in previous.items():
        if stack_id in merged:
            continue
        if keep_missing or old.source == DiscoverySource.DEPLOYMENTS:
            merged[stack_id] = old

    return sort_stacks([*others, *merged.values()])


def add_new_stacks(current: Sequence[Stack], additions: Iterable[Stack]) -> list[Stack]:
    """Add deployment-phase stacks without overriding workload stacks.

    An addition whose id belongs to a workload stack is ignored. One whose
    id belongs to an earlier deployment-phase stack replaces it.
    """
    workload_ids = {s.id for s in current if s.source != DiscoverySource.DEPLOYMENTS}
    new = {s.id: s for s in additions if s.id not in workload_ids}
    if not new:
        return list(current)
    kept = [s for s in current if s.id not in new]
    return sort_stacks([*kept, *new.values()])


def drop_stale_deployment_stacks(
    current: Sequence[Stack],
    cluster: str,
    confirmed_ids: set[str],
    checked_namespaces: set[str],
) -> list[Stack]:
    """Remove deployment-phase stacks of ``cluster`` that were checked but not found again."""
    return [
        s
        for s in current
        if not (
            s.cluster == cluster
            and s.source == DiscoverySource.DEPLOYMENTS
            and s.namespace in checked_namespaces
            and s.id not in confirmed_ids
        )
    ]


__all__ = [
    "FailedParts",
    "add_new_stacks",
    "drop_stale_deployment_stacks",
    "merge_cluster_stacks",
    "preserve_failed_parts",
    "sort_stacks",
    "stack_sort_key",
]
