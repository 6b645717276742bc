"""Stack topology models and typed resource views."""

from kubestack.models.stacks.demo_stacks import build_demo_stacks
from kubestack.models.stacks.stack_info import (
    AutoscalerBinding,
    Stack,
    StackComponent,
    StackComponents,
    StackServerInfo,
    derive_component_status,
    derive_stack_status,
    stack_id,
)

__all__ = [
    "AutoscalerBinding",
    "Stack",
    "StackComponent",
    "StackComponents",
    "StackServerInfo",
    "build_demo_stacks",
    "derive_component_status",
    "derive_stack_status",
    "stack_id",
]
