"""Demonstration stacks shown when no cluster data is available."""

from __future__ import annotations

from kubestack.constants.enums import AutoscalerKind, ComponentRole
from kubestack.models.stacks.stack_info import (
    AutoscalerBinding,
    Stack,
    StackComponent,
    StackComponents,
)

DEMO_CLUSTER = "demo-cluster"


def _component(
    name: str,
    namespace: str,
    role: ComponentRole,
    replicas: int,
    ready: int,
    model: str | None = None,
) -> StackComponent:
    return StackComponent.from_counts(
        name=name,
        namespace=namespace,
        cluster=DEMO_CLUSTER,
        role=role,
        replicas=replicas,
        ready_replicas=ready,
        model=model,
    )


def build_demo_stacks() -> list[Stack]:
    """Return a small, fixed set of stacks covering each health state."""
    llama = "meta-llama/Llama-3.1-8B-Instruct"
    granite = "ibm-granite/granite-3.1-8b-instruct"
    qwen = "Qwen/Qwen2.5-7B-Instruct"

    disaggregated = Stack.build(
        namespace="llm-d-llama",
        cluster=DEMO_CLUSTER,
        inference_pool="llama-pool",
        model=llama,
        components=StackComponents(
            prefill=(_component("llama-prefill", "llm-d-llama", ComponentRole.PREFILL, 2, 2, llama),),
            decode=(_component("llama-decode", "llm-d-llama", ComponentRole.DECODE, 4, 4, llama),),
            endpoint_picker=_component("llama-pool-epp", "llm-d-llama", ComponentRole.ENDPOINT_PICKER, 1, 1),
            gateway=_component("llama-gateway", "llm-d-llama", ComponentRole.GATEWAY, 1, 1),
        ),
        autoscaler=AutoscalerBinding(
            kind=AutoscalerKind.WEIGHTED_VARIANT,
            name="llama-decode-va",
            min_replicas=2,
            max_replicas=8,
            current_replicas=4,
            desired_replicas=4,
        ),
    )

    degraded = Stack.build(
        namespace="llm-d-granite",
        cluster=DEMO_CLUSTER,
        model=granite,
        components=StackComponents(
            unified=(_component("granite-server", "llm-d-granite", ComponentRole.UNIFIED, 3, 1, granite),),
            endpoint_picker=_component("granite-epp", "llm-d-granite", ComponentRole.ENDPOINT_PICKER, 1, 1),
        ),
        autoscaler=AutoscalerBinding(
            kind=AutoscalerKind.HORIZONTAL_POD,
            name="granite-server",
            min_replicas=1,
            max_replicas=4,
            current_replicas=3,
            desired_replicas=3,
        ),
    )

    unhealthy = Stack.build(
        namespace="inference-qwen",
        cluster=DEMO_CLUSTER,
        model=qwen,
        components=StackComponents(
            unified=(_component("qwen-vllm", "inference-qwen", ComponentRole.UNIFIED, 1, 0, qwen),),
        ),
    )

    return [disaggregated, degraded, unhealthy]


__all__ = ["DEMO_CLUSTER", "build_demo_stacks"]
