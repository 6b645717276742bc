"""Parser turning typed cluster resources into llm-d stacks."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from kubestack.constants.enums import ComponentRole, ComponentStatus, DiscoverySource
from kubestack.constants.patterns import (
    APP_LABEL,
    APP_NAME_LABEL,
    APP_PART_OF_LABEL,
    DECODE_NAME_TOKEN,
    DECODE_ROLE_VALUES,
    DEFAULT_TEMPLATE_HASH,
    ENDPOINT_PICKER_DEPLOYMENT_TOKENS,
    ENDPOINT_PICKER_NAME_INFIX,
    ENDPOINT_PICKER_NAME_SUFFIX,
    INFERENCE_SERVING_LABEL,
    LEGACY_MODEL_LABEL,
    MODEL_LABEL,
    POD_NAME_SUFFIX_PATTERN,
    POD_TEMPLATE_HASH_LABEL,
    PREFILL_NAME_TOKEN,
    PREFILL_ROLE_VALUES,
    ROLE_LABEL,
    SERVING_APP_LABEL_VALUE,
    SERVING_APP_NAME_VALUES,
    SERVING_DEPLOYMENT_NAME_TOKENS,
    SERVING_NAMESPACE_EXACT,
    SERVING_NAMESPACE_INFRA_TOKENS,
    SERVING_NAMESPACE_TOKENS,
    SERVING_PART_OF_VALUE,
    UNIFIED_ROLE_VALUES,
)
from kubestack.controllers.stacks.resolvers.autoscaler_resolver import (
    AutoscalerIndex,
    resolve_autoscaler,
)
from kubestack.models.stacks.resources import (
    DeploymentResource,
    GatewayResource,
    InferencePoolResource,
    PodResource,
    ServiceResource,
)
from kubestack.models.stacks.stack_info import (
    Stack,
    StackComponent,
    StackComponents,
    StackServerInfo,
)

logger = logging.getLogger(__name__)

_SERVING_ROLES = (ComponentRole.PREFILL, ComponentRole.DECODE, ComponentRole.UNIFIED)


# ============================================================================
# Role classification
# ============================================================================


def _role_from_label(value: str | None) -> ComponentRole | None:
    if not value:
        return None
    role = value.lower()
    if role in PREFILL_ROLE_VALUES:
        return ComponentRole.PREFILL
    if role in DECODE_ROLE_VALUES:
        return ComponentRole.DECODE
    if role in UNIFIED_ROLE_VALUES:
        return ComponentRole.UNIFIED
    return None


def _role_from_name(name: str) -> ComponentRole:
    lowered = name.lower()
    if PREFILL_NAME_TOKEN in lowered:
        return ComponentRole.PREFILL
    if DECODE_NAME_TOKEN in lowered:
        return ComponentRole.DECODE
    return ComponentRole.UNIFIED


def classify_role(name: str, labels: dict[str, str]) -> ComponentRole:
    """Classify a workload: explicit role label, then name substring, then unified."""
    return _role_from_label(labels.get(ROLE_LABEL)) or _role_from_name(name)


def classify_pod_role(pod: PodResource) -> ComponentRole:
    return classify_role(pod.name, pod.metadata.labels)


# ============================================================================
# Pod grouping
# ============================================================================


def component_base_name(pod_name: str, template_hash: str | None = None) -> str:
    """Strip the generated suffixes from a pod name.

    ``vllm-decode-5d4f8b7c9-x2k4q`` with hash ``5d4f8b7c9`` becomes
    ``vllm-decode``.
    """
    base = POD_NAME_SUFFIX_PATTERN.sub("", pod_name)
    if template_hash and template_hash != DEFAULT_TEMPLATE_HASH:
        base = base.removesuffix(f"-{template_hash}")
    return base or pod_name


def group_pods_into_components(
    pods: Sequence[PodResource],
    role: ComponentRole,
    namespace: str,
    cluster: str,
    model: str | None = None,
) -> tuple[StackComponent, ...]:
    """Group pods by pod-template-hash into one component per replica set."""
    groups: dict[str, list[PodResource]] = {}
    for pod in pods:
        template_hash = pod.metadata.labels.get(POD_TEMPLATE_HASH_LABEL, DEFAULT_TEMPLATE_HASH)
        groups.setdefault(template_hash, []).append(pod)

    components = []
    for template_hash, group in groups.items():
        components.append(
            StackComponent.from_counts(
                name=component_base_name(group[0].name, template_hash),
                namespace=namespace,
                cluster=cluster,
                role=role,
                replicas=len(group),
                ready_replicas=sum(1 for pod in group if pod.is_ready),
                model=model,
                pod_names=tuple(pod.name for pod in group),
            )
        )
    return tuple(components)


def _pod_model(pods: Sequence[PodResource]) -> str | None:
    if not pods:
        return None
    labels = pods[0].metadata.labels
    return labels.get(MODEL_LABEL) or labels.get(LEGACY_MODEL_LABEL)


def build_serving_components(
    pods: Sequence[PodResource],
    namespace: str,
    cluster: str,
) -> tuple[StackComponents, str | None]:
    """Classify and group one namespace's pods. Returns components and model."""
    by_role: dict[ComponentRole, list[PodResource]] = {role: [] for role in _SERVING_ROLES}
    for pod in pods:
        by_role[classify_pod_role(pod)].append(pod)

    model = _pod_model(pods)
    components = StackComponents(
        prefill=group_pods_into_components(by_role[ComponentRole.PREFILL], ComponentRole.PREFILL, namespace, cluster, model),
        decode=group_pods_into_components(by_role[ComponentRole.DECODE], ComponentRole.DECODE, namespace, cluster, model),
        unified=group_pods_into_components(by_role[ComponentRole.UNIFIED], ComponentRole.UNIFIED, namespace, cluster, model),
    )
    return components, model


# ============================================================================
# Infrastructure components
# ============================================================================


def is_endpoint_picker_name(name: str) -> bool:
    lowered = name.lower()
    return ENDPOINT_PICKER_NAME_INFIX in lowered or lowered.endswith(ENDPOINT_PICKER_NAME_SUFFIX)


def build_endpoint_picker(service: ServiceResource, cluster: str) -> StackComponent:
    """Endpoint picker backed by a service; services carry no replica counts."""
    return StackComponent.from_counts(
        name=service.name,
        namespace=service.namespace,
        cluster=cluster,
        role=ComponentRole.ENDPOINT_PICKER,
        replicas=1,
        ready_replicas=1,
    )


def build_gateway_component(gateway: GatewayResource, cluster: str) -> StackComponent:
    """Gateway is running once it has an address, otherwise pending."""
    if gateway.has_address:
        return StackComponent(
            name=gateway.name,
            namespace=gateway.namespace,
            cluster=cluster,
            role=ComponentRole.GATEWAY,
            replicas=1,
            ready_replicas=1,
            status=ComponentStatus.RUNNING,
        )
    return StackComponent(
        name=gateway.name,
        namespace=gateway.namespace,
        cluster=cluster,
        role=ComponentRole.GATEWAY,
        replicas=1,
        ready_replicas=0,
        status=ComponentStatus.PENDING,
    )


@dataclass(frozen=True)
class InfraIndex:
    """Endpoint pickers, gateways and pools of one cluster keyed by namespace."""

    endpoint_pickers: dict[str, ServiceResource] = field(default_factory=dict)
    gateways: dict[str, GatewayResource] = field(default_factory=dict)
    pools: dict[str, InferencePoolResource] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        services: Iterable[ServiceResource] = (),
        gateways: Iterable[GatewayResource] = (),
        pools: Iterable[InferencePoolResource] = (),
    ) -> InfraIndex:
        """Index by namespace; the first resource seen per namespace wins."""
        pickers: dict[str, ServiceResource] = {}
        for service in services:
            if is_endpoint_picker_name(service.name):
                pickers.setdefault(service.namespace, service)

        gateways_by_ns: dict[str, GatewayResource] = {}
        for gateway in gateways:
            gateways_by_ns.setdefault(gateway.namespace, gateway)

        pools_by_ns: dict[str, InferencePoolResource] = {}
        for pool in pools:
            pools_by_ns.setdefault(pool.namespace, pool)

        return cls(endpoint_pickers=pickers, gateways=gateways_by_ns, pools=pools_by_ns)

    def endpoint_picker(self, namespace: str, cluster: str) -> StackComponent | None:
        service = self.endpoint_pickers.get(namespace)
        return build_endpoint_picker(service, cluster) if service is not None else None

    def gateway(self, namespace: str, cluster: str) -> StackComponent | None:
        gateway = self.gateways.get(namespace)
        return build_gateway_component(gateway, cluster) if gateway is not None else None

    def pool_name(self, namespace: str) -> str | None:
        pool = self.pools.get(namespace)
        return pool.name if pool is not None else None


def _attach_infra(
    components: StackComponents,
    namespace: str,
    cluster: str,
    infra: InfraIndex,
    endpoint_picker: StackComponent | None = None,
) -> StackComponents:
    return components.model_copy(
        update={
            "endpoint_picker": endpoint_picker or infra.endpoint_picker(namespace, cluster),
            "gateway": infra.gateway(namespace, cluster),
        }
    )


# ============================================================================
# Workload (pod and pool) stacks
# ============================================================================


def build_workload_stacks(
    cluster: str,
    pods: Sequence[PodResource],
    infra: InfraIndex,
    autoscalers: AutoscalerIndex,
) -> list[Stack]:
    """Build one stack per namespace that has role-labelled pods or a pool."""
    pods_by_ns: dict[str, list[PodResource]] = {}
    for pod in pods:
        pods_by_ns.setdefault(pod.namespace, []).append(pod)

    namespaces = list(dict.fromkeys([*pods_by_ns, *infra.pools]))
    stacks = []
    for namespace in namespaces:
        components, model = build_serving_components(pods_by_ns.get(namespace, []), namespace, cluster)
        stacks.append(
            Stack.build(
                namespace=namespace,
                cluster=cluster,
                components=_attach_infra(components, namespace, cluster, infra),
                inference_pool=infra.pool_name(namespace),
                model=model,
                autoscaler=resolve_autoscaler(namespace, autoscalers),
            )
        )
    return stacks


# ============================================================================
# Deployment stacks (second discovery phase)
# ============================================================================


def is_candidate_namespace(namespace: str) -> bool:
    """Heuristic for namespaces likely to host inference serving."""
    lowered = namespace.lower()
    return lowered in SERVING_NAMESPACE_EXACT or any(
        token in lowered for token in SERVING_NAMESPACE_TOKENS
    )


def is_endpoint_picker_deployment(name: str) -> bool:
    lowered = name.lower()
    return is_endpoint_picker_name(lowered) or any(
        token in lowered for token in ENDPOINT_PICKER_DEPLOYMENT_TOKENS
    )


def is_serving_deployment(deployment: DeploymentResource) -> bool:
    """Heuristic for deployments that belong to an inference stack."""
    name = deployment.name.lower()
    labels = deployment.template_labels

    if any(token in name for token in SERVING_DEPLOYMENT_NAME_TOKENS) or name.endswith(
        ENDPOINT_PICKER_NAME_SUFFIX
    ):
        return True
    if labels.get(INFERENCE_SERVING_LABEL) == "true":
        return True
    if labels.get(LEGACY_MODEL_LABEL) or labels.get(MODEL_LABEL) or labels.get(ROLE_LABEL):
        return True
    if labels.get(APP_LABEL) == SERVING_APP_LABEL_VALUE:
        return True
    if labels.get(APP_NAME_LABEL) in SERVING_APP_NAME_VALUES:
        return True
    if labels.get(APP_PART_OF_LABEL) == SERVING_PART_OF_VALUE:
        return True
    return is_candidate_namespace(deployment.namespace) and any(
        token in name for token in SERVING_NAMESPACE_INFRA_TOKENS
    )


def _deployment_model(deployment: DeploymentResource) -> str | None:
    labels = deployment.template_labels
    return labels.get(LEGACY_MODEL_LABEL) or labels.get(MODEL_LABEL)


def build_components_from_deployments(
    deployments: Sequence[DeploymentResource],
    namespace: str,
    cluster: str,
) -> tuple[StackComponents, str | None]:
    """Classify serving deployments into components. Returns components and model."""
    model = next((m for m in map(_deployment_model, deployments) if m), None)
    endpoint_picker: StackComponent | None = None
    by_role: dict[ComponentRole, list[StackComponent]] = {role: [] for role in _SERVING_ROLES}

    for deployment in deployments:
        replicas = deployment.desired_replicas
        ready = deployment.status.ready_replicas or 0

        if endpoint_picker is None and is_endpoint_picker_deployment(deployment.name):
            endpoint_picker = StackComponent.from_counts(
                name=deployment.name,
                namespace=namespace,
                cluster=cluster,
                role=ComponentRole.ENDPOINT_PICKER,
                replicas=replicas,
                ready_replicas=ready,
            )
            continue

        role = classify_role(deployment.name, deployment.template_labels)
        by_role[role].append(
            StackComponent.from_counts(
                name=deployment.name,
                namespace=namespace,
                cluster=cluster,
                role=role,
                replicas=replicas,
                ready_replicas=ready,
                model=_deployment_model(deployment) or model,
            )
        )

    components = StackComponents(
        prefill=tuple(by_role[ComponentRole.PREFILL]),
        decode=tuple(by_role[ComponentRole.DECODE]),
        unified=tuple(by_role[ComponentRole.UNIFIED]),
        endpoint_picker=endpoint_picker,
    )
    return components, model


def build_deployment_stack(
    namespace: str,
    cluster: str,
    deployments: Sequence[DeploymentResource],
    infra: InfraIndex,
    autoscalers: AutoscalerIndex,
) -> Stack | None:
    """Build a stack from a namespace's serving deployments, if it has any."""
    serving = [d for d in deployments if is_serving_deployment(d)]
    if not serving:
        return None

    components, model = build_components_from_deployments(serving, namespace, cluster)
    return Stack.build(
        namespace=namespace,
        cluster=cluster,
        components=_attach_infra(components, namespace, cluster, infra, components.endpoint_picker),
        inference_pool=infra.pool_name(namespace),
        model=model,
        autoscaler=resolve_autoscaler(namespace, autoscalers),
        source=DiscoverySource.DEPLOYMENTS,
    )


# ============================================================================
# Server rows
# ============================================================================

_SERVER_LABELS = {
    ComponentRole.PREFILL: "Prefill",
    ComponentRole.DECODE: "Decode",
    ComponentRole.UNIFIED: "Server",
}


def flatten_stack_servers(stack: Stack) -> list[StackServerInfo]:
    """Flatten a stack into one row per serving group plus its infrastructure."""
    rows: list[StackServerInfo] = []
    groups = (
        (ComponentRole.PREFILL, stack.components.prefill),
        (ComponentRole.DECODE, stack.components.decode),
        (ComponentRole.UNIFIED, stack.components.unified),
    )
    for role, components in groups:
        for index, component in enumerate(components):
            rows.append(
                StackServerInfo(
                    id=f"{stack.id}-{role.value}-{index}",
                    name=f"{_SERVER_LABELS[role]}-{index}",
                    namespace=stack.namespace,
                    cluster=stack.cluster,
                    model=component.model or stack.model or "unknown",
                    component_type=role,
                    status=component.status,
                    replicas=component.replicas,
                    ready_replicas=component.ready_replicas,
                )
            )

    for component in (stack.components.endpoint_picker, stack.components.gateway):
        if component is None:
            continue
        rows.append(
            StackServerInfo(
                id=f"{stack.id}-{component.role.value}",
                name=component.name,
                namespace=stack.namespace,
                cluster=stack.cluster,
                model=component.role.value,
                component_type=component.role,
                status=component.status,
                replicas=component.replicas,
                ready_replicas=component.ready_replicas,
            )
        )
    return rows


__all__ = [
    "InfraIndex",
    "build_components_from_deployments",
    "build_deployment_stack",
    "build_endpoint_picker",
    "build_gateway_component",
    "build_serving_components",
    "build_workload_stacks",
    "classify_pod_role",
    "classify_role",
    "component_base_name",
    "flatten_stack_servers",
    "group_pods_into_components",
    "is_candidate_namespace",
    "is_endpoint_picker_deployment",
    "is_serving_deployment",
]
