"""Typed views over raw Kubernetes resources used by stack discovery.

Every resource collection returned by a remote query is parsed at the boundary
into one of the variants below. Items that fail validation are reported as
``ResourceParseError`` values rather than leaking loosely-shaped dicts.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from kubestack.constants.enums import ResourceKind

logger = logging.getLogger(__name__)


class _Resource(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class ObjectMeta(_Resource):
    """Subset of Kubernetes object metadata."""

    name: str
    namespace: str = "default"
    labels: dict[str, str] = Field(default_factory=dict)


class _NamespacedResource(_Resource):
    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace


# ============================================================================
# Pods
# ============================================================================


class ContainerStatus(_Resource):
    ready: bool = False


class PodStatus(_Resource):
    phase: str = "Unknown"
    container_statuses: list[ContainerStatus] | None = Field(
        default=None, alias="containerStatuses"
    )


class PodResource(_NamespacedResource):
    """A workload pod."""

    status: PodStatus = Field(default_factory=PodStatus)

    @property
    def is_ready(self) -> bool:
        """Running with every container reporting ready."""
        statuses = self.status.container_statuses
        return (
            self.status.phase == "Running"
            and statuses is not None
            and all(c.ready for c in statuses)
        )


# ============================================================================
# Inference pools, services, gateways
# ============================================================================


class LabelSelector(_Resource):
    match_labels: dict[str, str] = Field(default_factory=dict, alias="matchLabels")


class InferencePoolSpec(_Resource):
    selector: LabelSelector | None = None


class InferencePoolResource(_NamespacedResource):
    """An InferencePool custom resource."""

    spec: InferencePoolSpec = Field(default_factory=InferencePoolSpec)


class ServicePort(_Resource):
    port: int


class ServiceSpec(_Resource):
    ports: list[ServicePort] = Field(default_factory=list)


class ServiceResource(_NamespacedResource):
    """A Kubernetes service."""

    spec: ServiceSpec = Field(default_factory=ServiceSpec)


class GatewayAddress(_Resource):
    value: str


class GatewaySpec(_Resource):
    gateway_class_name: str | None = Field(default=None, alias="gatewayClassName")


class GatewayStatus(_Resource):
    addresses: list[GatewayAddress] = Field(default_factory=list)


class GatewayResource(_NamespacedResource):
    """A Gateway API gateway."""

    spec: GatewaySpec = Field(default_factory=GatewaySpec)
    status: GatewayStatus = Field(default_factory=GatewayStatus)

    @property
    def has_address(self) -> bool:
        return bool(self.status.addresses)


# ============================================================================
# Autoscalers
# ============================================================================


class ReplicaBounds(_Resource):
    min_replicas: int | None = Field(default=None, alias="minReplicas")
    max_replicas: int | None = Field(default=None, alias="maxReplicas")


class ReplicaStatus(_Resource):
    current_replicas: int | None = Field(default=None, alias="currentReplicas")
    desired_replicas: int | None = Field(default=None, alias="desiredReplicas")


class HorizontalPodAutoscalerResource(_NamespacedResource):
    """A HorizontalPodAutoscaler."""

    spec: ReplicaBounds = Field(default_factory=ReplicaBounds)
    status: ReplicaStatus = Field(default_factory=ReplicaStatus)


class ScaleTargetRef(_Resource):
    namespace: str | None = None
    name: str | None = None


class VariantAutoscalingSpec(ReplicaBounds):
    scale_target_ref: ScaleTargetRef | None = Field(default=None, alias="scaleTargetRef")


class OptimizedAlloc(_Resource):
    num_replicas: int | None = Field(default=None, alias="numReplicas")


class VariantAutoscalingStatus(ReplicaStatus):
    desired_optimized_alloc: OptimizedAlloc | None = Field(
        default=None, alias="desiredOptimizedAlloc"
    )


class VariantAutoscalingResource(_NamespacedResource):
    """A weighted-variant autoscaler (VariantAutoscaling custom resource)."""

    spec: VariantAutoscalingSpec = Field(default_factory=VariantAutoscalingSpec)
    status: VariantAutoscalingStatus = Field(default_factory=VariantAutoscalingStatus)

    @property
    def target_namespace(self) -> str:
        """Namespace of the workload this autoscaler scales."""
        ref = self.spec.scale_target_ref
        if ref is not None and ref.namespace:
            return ref.namespace
        return self.namespace

    @property
    def desired_replicas(self) -> int | None:
        alloc = self.status.desired_optimized_alloc
        if alloc is not None and alloc.num_replicas is not None:
            return alloc.num_replicas
        return self.status.desired_replicas


class VerticalPodAutoscalerResource(_NamespacedResource):
    """A VerticalPodAutoscaler."""


# ============================================================================
# Deployments (second discovery phase)
# ============================================================================


class PodTemplateMeta(_Resource):
    labels: dict[str, str] = Field(default_factory=dict)


class PodTemplate(_Resource):
    metadata: PodTemplateMeta = Field(default_factory=PodTemplateMeta)


class DeploymentSpec(_Resource):
    replicas: int | None = None
    template: PodTemplate = Field(default_factory=PodTemplate)


class DeploymentStatus(_Resource):
    replicas: int | None = None
    ready_replicas: int | None = Field(default=None, alias="readyReplicas")
    available_replicas: int | None = Field(default=None, alias="availableReplicas")


class DeploymentResource(_NamespacedResource):
    """A Deployment."""

    spec: DeploymentSpec = Field(default_factory=DeploymentSpec)
    status: DeploymentStatus = Field(default_factory=DeploymentStatus)

    @property
    def template_labels(self) -> dict[str, str]:
        return self.spec.template.metadata.labels

    @property
    def desired_replicas(self) -> int:
        if self.spec.replicas is not None:
            return self.spec.replicas
        return self.status.replicas or 0


Resource = Union[
    PodResource,
    InferencePoolResource,
    ServiceResource,
    GatewayResource,
    HorizontalPodAutoscalerResource,
    VariantAutoscalingResource,
    VerticalPodAutoscalerResource,
    DeploymentResource,
]

RESOURCE_MODELS: dict[ResourceKind, type[BaseModel]] = {
    ResourceKind.POD: PodResource,
    ResourceKind.INFERENCE_POOL: InferencePoolResource,
    ResourceKind.SERVICE: ServiceResource,
    ResourceKind.GATEWAY: GatewayResource,
    ResourceKind.HORIZONTAL_POD_AUTOSCALER: HorizontalPodAutoscalerResource,
    ResourceKind.VARIANT_AUTOSCALING: VariantAutoscalingResource,
    ResourceKind.VERTICAL_POD_AUTOSCALER: VerticalPodAutoscalerResource,
    ResourceKind.DEPLOYMENT: DeploymentResource,
}


# ============================================================================
# Parse results
# ============================================================================


@dataclass(frozen=True)
class ResourceParseError:
    """Why a raw item or response could not be parsed."""

    kind: ResourceKind
    message: str
    index: int | None = None


R = TypeVar("R")


@dataclass(frozen=True)
class ParsedResources(Generic[R]):
    """Outcome of parsing one resource collection.

    ``error`` is set when the whole response was unusable; individually
    malformed items are dropped and listed in ``rejected``.
    """

    kind: ResourceKind
    items: tuple[R, ...] = ()
    rejected: tuple[ResourceParseError, ...] = field(default=())
    error: ResourceParseError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_resource(kind: ResourceKind, raw: Any, index: int | None = None) -> Resource | ResourceParseError:
    """Validate one raw item into its typed variant."""
    model = RESOURCE_MODELS[kind]
    try:
        return model.model_validate(raw)  # type: ignore[return-value]
    except ValidationError as exc:
        return ResourceParseError(
            kind=kind,
            message=f"{exc.error_count()} validation error(s): {exc.errors()[0]['msg']}",
            index=index,
        )


def parse_resource_list(kind: ResourceKind, output: str) -> ParsedResources[Any]:
    """Parse a ``kubectl get ... -o json`` list response."""
    try:
        data = json.loads(output) if output.strip() else {"items": []}
    except json.JSONDecodeError as exc:
        return ParsedResources(
            kind=kind,
            error=ResourceParseError(kind=kind, message=f"invalid JSON: {exc.msg}"),
        )

    if not isinstance(data, dict):
        return ParsedResources(
            kind=kind,
            error=ResourceParseError(kind=kind, message="response is not a JSON object"),
        )

    raw_items = data.get("items") or []
    if not isinstance(raw_items, list):
        return ParsedResources(
            kind=kind,
            error=ResourceParseError(kind=kind, message="'items' is not a list"),
        )

    items: list[Any] = []
    rejected: list[ResourceParseError] = []
    for index, raw in enumerate(raw_items):
        parsed = parse_resource(kind, raw, index)
        if isinstance(parsed, ResourceParseError):
            rejected.append(parsed)
        else:
            items.append(parsed)

    if rejected:
        logger.debug(
            "Dropped %d malformed %s item(s): %s",
            len(rejected),
            kind.value,
            rejected[0].message,
        )
    return ParsedResources(kind=kind, items=tuple(items), rejected=tuple(rejected))


__all__ = [
    "RESOURCE_MODELS",
    "DeploymentResource",
    "GatewayResource",
    "HorizontalPodAutoscalerResource",
    "InferencePoolResource",
    "ObjectMeta",
    "ParsedResources",
    "PodResource",
    "Resource",
    "ResourceParseError",
    "ServiceResource",
    "VariantAutoscalingResource",
    "VerticalPodAutoscalerResource",
    "parse_resource",
    "parse_resource_list",
]
