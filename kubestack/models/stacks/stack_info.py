"""llm-d stack topology models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kubestack.constants.enums import (
    AutoscalerKind,
    ComponentRole,
    ComponentStatus,
    DiscoverySource,
    StackStatus,
)


def derive_component_status(replicas: int, ready_replicas: int) -> ComponentStatus:
    """Derive a replica group's status from its replica counts."""
    if replicas <= 0:
        return ComponentStatus.UNKNOWN
    if ready_replicas == replicas:
        return ComponentStatus.RUNNING
    if ready_replicas == 0:
        return ComponentStatus.ERROR
    return ComponentStatus.PENDING


class StackComponent(BaseModel):
    """One homogeneous replica group within a stack."""

    model_config = ConfigDict(frozen=True)

    name: str
    namespace: str
    cluster: str
    role: ComponentRole
    replicas: int = Field(default=0, ge=0)
    ready_replicas: int = Field(default=0, ge=0)
    status: ComponentStatus = ComponentStatus.UNKNOWN
    model: str | None = None
    pod_names: tuple[str, ...] = ()

    @model_validator(mode="after")
    def _check_ready_within_replicas(self) -> StackComponent:
        if self.ready_replicas > self.replicas:
            raise ValueError(
                f"ready_replicas ({self.ready_replicas}) exceeds replicas ({self.replicas})"
            )
        return self

    @classmethod
    def from_counts(
        cls,
        *,
        name: str,
        namespace: str,
        cluster: str,
        role: ComponentRole,
        replicas: int,
        ready_replicas: int,
        model: str | None = None,
        pod_names: tuple[str, ...] = (),
    ) -> StackComponent:
        """Build a component whose status is derived from its counts."""
        replicas = max(0, replicas)
        ready_replicas = min(max(0, ready_replicas), replicas)
        return cls(
            name=name,
            namespace=namespace,
            cluster=cluster,
            role=role,
            replicas=replicas,
            ready_replicas=ready_replicas,
            status=derive_component_status(replicas, ready_replicas),
            model=model,
            pod_names=pod_names,
        )


class AutoscalerBinding(BaseModel):
    """The autoscaler that governs a stack."""

    model_config = ConfigDict(frozen=True)

    kind: AutoscalerKind
    name: str | None = None
    min_replicas: int | None = None
    max_replicas: int | None = None
    current_replicas: int | None = None
    desired_replicas: int | None = None


class StackComponents(BaseModel):
    """Component groups of a stack, keyed by role."""

    model_config = ConfigDict(frozen=True)

    prefill: tuple[StackComponent, ...] = ()
    decode: tuple[StackComponent, ...] = ()
    unified: tuple[StackComponent, ...] = ()
    endpoint_picker: StackComponent | None = None
    gateway: StackComponent | None = None

    def serving(self) -> tuple[StackComponent, ...]:
        """Return the model-serving groups (prefill, decode, unified)."""
        return (*self.prefill, *self.decode, *self.unified)

    def present(self) -> tuple[StackComponent, ...]:
        """Return every component present in the stack."""
        infra = tuple(c for c in (self.endpoint_picker, self.gateway) if c is not None)
        return (*self.serving(), *infra)


def derive_stack_status(components: StackComponents) -> StackStatus:
    """Roll component statuses up into one stack status."""
    present = components.present()
    if not present:
        return StackStatus.UNKNOWN
    running = sum(1 for c in present if c.status == ComponentStatus.RUNNING)
    if running == len(present):
        return StackStatus.HEALTHY
    if running == 0:
        return StackStatus.UNHEALTHY
    return StackStatus.DEGRADED


def stack_id(namespace: str, cluster: str) -> str:
    """Return the unique stack key for a namespace within a cluster."""
    return f"{namespace}@{cluster}"


class Stack(BaseModel):
    """One llm-d inference-serving deployment (a namespace within a cluster)."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    namespace: str
    cluster: str
    inference_pool: str | None = None
    components: StackComponents = Field(default_factory=StackComponents)
    status: StackStatus = StackStatus.UNKNOWN
    has_disaggregation: bool = False
    model: str | None = None
    total_replicas: int = 0
    ready_replicas: int = 0
    autoscaler: AutoscalerBinding | None = None
    source: DiscoverySource = DiscoverySource.WORKLOADS

    @classmethod
    def build(
        cls,
        *,
        namespace: str,
        cluster: str,
        components: StackComponents,
        inference_pool: str | None = None,
        model: str | None = None,
        autoscaler: AutoscalerBinding | None = None,
        source: DiscoverySource = DiscoverySource.WORKLOADS,
    ) -> Stack:
        """Build a stack and compute all derived fields."""
        serving = components.serving()
        return cls(
            id=stack_id(namespace, cluster),
            display_name=inference_pool or namespace,
            namespace=namespace,
            cluster=cluster,
            inference_pool=inference_pool,
            components=components,
            status=derive_stack_status(components),
            has_disaggregation=bool(components.prefill) and bool(components.decode),
            model=model,
            total_replicas=sum(c.replicas for c in serving),
            ready_replicas=sum(c.ready_replicas for c in serving),
            autoscaler=autoscaler,
            source=source,
        )

    def rebuilt(
        self,
        *,
        components: StackComponents | None = None,
        model: str | None = None,
        autoscaler: AutoscalerBinding | None = None,
    ) -> Stack:
        """Return a copy with replaced parts and recomputed derived fields."""
        return Stack.build(
            namespace=self.namespace,
            cluster=self.cluster,
            components=components if components is not None else self.components,
            inference_pool=self.inference_pool,
            model=model if model is not None else self.model,
            autoscaler=autoscaler if autoscaler is not None else self.autoscaler,
            source=self.source,
        )


class StackServerInfo(BaseModel):
    """Flattened per-server row derived from a stack, used for tables."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    namespace: str
    cluster: str
    model: str
    component_type: ComponentRole
    status: ComponentStatus
    replicas: int
    ready_replicas: int


__all__ = [
    "AutoscalerBinding",
    "Stack",
    "StackComponent",
    "StackComponents",
    "StackServerInfo",
    "derive_component_status",
    "derive_stack_status",
    "stack_id",
]
