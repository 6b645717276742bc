"""Resolve the autoscaler that governs a stack's namespace.

Resolvers are tried in priority order and the first match wins:
weighted-variant, then horizontal-pod, then vertical-pod.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from kubestack.constants.enums import AutoscalerKind
from kubestack.models.stacks.resources import (
    HorizontalPodAutoscalerResource,
    VariantAutoscalingResource,
    VerticalPodAutoscalerResource,
)
from kubestack.models.stacks.stack_info import AutoscalerBinding


@dataclass(frozen=True)
class AutoscalerIndex:
    """Autoscalers of one cluster, indexed by the namespace they govern."""

    weighted_variant: dict[str, VariantAutoscalingResource] = field(default_factory=dict)
    weighted_variant_by_target: dict[str, VariantAutoscalingResource] = field(default_factory=dict)
    horizontal_pod: dict[str, HorizontalPodAutoscalerResource] = field(default_factory=dict)
    vertical_pod: dict[str, VerticalPodAutoscalerResource] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        variant_autoscalings: Iterable[VariantAutoscalingResource] = (),
        hpas: Iterable[HorizontalPodAutoscalerResource] = (),
        vpas: Iterable[VerticalPodAutoscalerResource] = (),
    ) -> AutoscalerIndex:
        """Index autoscalers; the first one seen per namespace wins.

        A weighted-variant autoscaler is indexed under its own namespace and,
        when its scale target lives elsewhere, under the target namespace too.
        """
        weighted: dict[str, VariantAutoscalingResource] = {}
        by_target: dict[str, VariantAutoscalingResource] = {}
        for va in variant_autoscalings:
            weighted.setdefault(va.namespace, va)
            if va.target_namespace != va.namespace:
                by_target.setdefault(va.target_namespace, va)

        horizontal: dict[str, HorizontalPodAutoscalerResource] = {}
        for hpa in hpas:
            horizontal.setdefault(hpa.namespace, hpa)

        vertical: dict[str, VerticalPodAutoscalerResource] = {}
        for vpa in vpas:
            vertical.setdefault(vpa.namespace, vpa)

        return cls(
            weighted_variant=weighted,
            weighted_variant_by_target=by_target,
            horizontal_pod=horizontal,
            vertical_pod=vertical,
        )

    def weighted_variant_for(self, namespace: str) -> VariantAutoscalingResource | None:
        """Own-namespace autoscaler first, then one targeting ``namespace``."""
        own = self.weighted_variant.get(namespace)
        if own is not None:
            return own
        return self.weighted_variant_by_target.get(namespace)


AutoscalerResolver = Callable[[str, AutoscalerIndex], "AutoscalerBinding | None"]


def resolve_weighted_variant(namespace: str, index: AutoscalerIndex) -> AutoscalerBinding | None:
    va = index.weighted_variant_for(namespace)
    if va is None:
        return None
    return AutoscalerBinding(
        kind=AutoscalerKind.WEIGHTED_VARIANT,
        name=va.name,
        min_replicas=va.spec.min_replicas,
        max_replicas=va.spec.max_replicas,
        current_replicas=va.status.current_replicas,
        desired_replicas=va.desired_replicas,
    )


def resolve_horizontal_pod(namespace: str, index: AutoscalerIndex) -> AutoscalerBinding | None:
    hpa = index.horizontal_pod.get(namespace)
    if hpa is None:
        return None
    return AutoscalerBinding(
        kind=AutoscalerKind.HORIZONTAL_POD,
        name=hpa.name,
        min_replicas=hpa.spec.min_replicas,
        max_replicas=hpa.spec.max_replicas,
        current_replicas=hpa.status.current_replicas,
        desired_replicas=hpa.status.desired_replicas,
    )


def resolve_vertical_pod(namespace: str, index: AutoscalerIndex) -> AutoscalerBinding | None:
    vpa = index.vertical_pod.get(namespace)
    if vpa is None:
        return None
    return AutoscalerBinding(kind=AutoscalerKind.VERTICAL_POD, name=vpa.name)


AUTOSCALER_RESOLVERS: tuple[AutoscalerResolver, ...] = (
    resolve_weighted_variant,
    resolve_horizontal_pod,
    resolve_vertical_pod,
)


def resolve_autoscaler(
    namespace: str,
    index: AutoscalerIndex,
    resolvers: Iterable[AutoscalerResolver] = AUTOSCALER_RESOLVERS,
) -> AutoscalerBinding | None:
    """Return the highest-priority autoscaler governing ``namespace``."""
    for resolver in resolvers:
        binding = resolver(namespace, index)
        if binding is not None:
            return binding
    return None


__all__ = [
    "AUTOSCALER_RESOLVERS",
    "AutoscalerIndex",
    "AutoscalerResolver",
    "resolve_autoscaler",
    "resolve_horizontal_pod",
    "resolve_vertical_pod",
    "resolve_weighted_variant",
]
