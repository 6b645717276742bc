"""Label keys, name tokens and regex patterns used to recognise llm-d resources."""

import re
from typing import Final

# ============================================================================
# Label keys
# ============================================================================

ROLE_LABEL: Final = "llm-d.ai/role"
MODEL_LABEL: Final = "llm-d.ai/model"
LEGACY_MODEL_LABEL: Final = "llmd.org/model"
INFERENCE_SERVING_LABEL: Final = "llmd.org/inferenceServing"
POD_TEMPLATE_HASH_LABEL: Final = "pod-template-hash"
DEFAULT_TEMPLATE_HASH: Final = "default"

# ============================================================================
# Role label values
# ============================================================================

PREFILL_ROLE_VALUES: Final = frozenset({"prefill", "prefill-server"})
DECODE_ROLE_VALUES: Final = frozenset({"decode", "decode-server"})
UNIFIED_ROLE_VALUES: Final = frozenset({"both", "unified", "model", "server", "vllm"})

PREFILL_NAME_TOKEN: Final = "prefill"
DECODE_NAME_TOKEN: Final = "decode"

# Trailing random suffix kubernetes appends to generated pod names
POD_NAME_SUFFIX_PATTERN = re.compile(r"-[a-z0-9]+$")

# ============================================================================
# Endpoint picker recognition
# ============================================================================

ENDPOINT_PICKER_NAME_INFIX: Final = "-epp"
ENDPOINT_PICKER_NAME_SUFFIX: Final = "epp"
ENDPOINT_PICKER_DEPLOYMENT_TOKENS: Final = ("scheduling", "inference-pool")

# ============================================================================
# Deployment-phase heuristics
# ============================================================================

SERVING_NAMESPACE_TOKENS: Final = (
    "llm-d",
    "llmd",
    "e2e",
    "vllm",
    "effi",
    "guygir",
    "aibrix",
    "hc4ai",
    "inf",
    "gaie",
    "sched",
    "inference",
    "serving",
    "model",
    "ai-",
    "-ai",
    "ml-",
)
SERVING_NAMESPACE_EXACT: Final = frozenset({"b2"})

SERVING_DEPLOYMENT_NAME_TOKENS: Final = (
    "vllm",
    "llm-d",
    "llmd",
    "tgi",
    "triton",
    "llama",
    "granite",
    "qwen",
    "mistral",
    "mixtral",
    "inference",
    "modelservice",
    "-epp",
    "scheduling",
    "inference-pool",
)
SERVING_APP_NAME_VALUES: Final = frozenset({"vllm", "tgi"})
APP_LABEL: Final = "app"
APP_NAME_LABEL: Final = "app.kubernetes.io/name"
APP_PART_OF_LABEL: Final = "app.kubernetes.io/part-of"
SERVING_APP_LABEL_VALUE: Final = "llm-inference"
SERVING_PART_OF_VALUE: Final = "inference"
# Only counted when the namespace itself looks like a serving namespace
SERVING_NAMESPACE_INFRA_TOKENS: Final = ("gateway", "ingress")

# ============================================================================
# Transport error tokens (lower-cased substrings of kubectl stderr)
# ============================================================================

DNS_FAILURE_TOKENS: Final = ("no such host", "server misbehaving", "name resolution")
CONNECTION_REFUSED_TOKENS: Final = ("connection refused",)
DEADLINE_EXCEEDED_TOKENS: Final = ("context deadline exceeded", "deadline exceeded")
TIMEOUT_TOKENS: Final = ("i/o timeout", "timed out", "timeout")
UNREACHABLE_TOKENS: Final = ("unable to connect", "connection reset by peer", "no route to host")

__all__ = [
    "APP_LABEL",
    "APP_NAME_LABEL",
    "APP_PART_OF_LABEL",
    "CONNECTION_REFUSED_TOKENS",
    "DEADLINE_EXCEEDED_TOKENS",
    "DECODE_NAME_TOKEN",
    "DECODE_ROLE_VALUES",
    "DEFAULT_TEMPLATE_HASH",
    "DNS_FAILURE_TOKENS",
    "ENDPOINT_PICKER_DEPLOYMENT_TOKENS",
    "ENDPOINT_PICKER_NAME_INFIX",
    "ENDPOINT_PICKER_NAME_SUFFIX",
    "INFERENCE_SERVING_LABEL",
    "LEGACY_MODEL_LABEL",
    "MODEL_LABEL",
    "POD_NAME_SUFFIX_PATTERN",
    "POD_TEMPLATE_HASH_LABEL",
    "PREFILL_NAME_TOKEN",
    "PREFILL_ROLE_VALUES",
    "ROLE_LABEL",
    "SERVING_APP_LABEL_VALUE",
    "SERVING_APP_NAME_VALUES",
    "SERVING_DEPLOYMENT_NAME_TOKENS",
    "SERVING_NAMESPACE_EXACT",
    "SERVING_NAMESPACE_INFRA_TOKENS",
    "SERVING_NAMESPACE_TOKENS",
    "SERVING_PART_OF_VALUE",
    "TIMEOUT_TOKENS",
    "UNIFIED_ROLE_VALUES",
    "UNREACHABLE_TOKENS",
]
