"""Stack parsers and merge helpers."""

from kubestack.controllers.stacks.parsers.stack_merger import (
    FailedParts,
    add_new_stacks,
    merge_cluster_stacks,
    sort_stacks,
)
from kubestack.controllers.stacks.parsers.stack_parser import (
    InfraIndex,
    build_deployment_stack,
    build_workload_stacks,
    classify_pod_role,
    flatten_stack_servers,
    is_candidate_namespace,
)

__all__ = [
    "FailedParts",
    "InfraIndex",
    "add_new_stacks",
    "build_deployment_stack",
    "build_workload_stacks",
    "classify_pod_role",
    "flatten_stack_servers",
    "is_candidate_namespace",
    "merge_cluster_stacks",
    "sort_stacks",
]
