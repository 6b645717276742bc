"""Classification of failed remote queries."""

from __future__ import annotations

from kubestack.constants.enums import TransportErrorKind
from kubestack.constants.patterns import (
    CONNECTION_REFUSED_TOKENS,
    DEADLINE_EXCEEDED_TOKENS,
    DNS_FAILURE_TOKENS,
    TIMEOUT_TOKENS,
    UNREACHABLE_TOKENS,
)

# Checked in order; the first kind whose token appears wins.
_CLASSIFIERS: tuple[tuple[TransportErrorKind, tuple[str, ...]], ...] = (
    (TransportErrorKind.DNS_FAILURE, DNS_FAILURE_TOKENS),
    (TransportErrorKind.CONNECTION_REFUSED, CONNECTION_REFUSED_TOKENS),
    (TransportErrorKind.DEADLINE_EXCEEDED, DEADLINE_EXCEEDED_TOKENS),
    (TransportErrorKind.TIMEOUT, TIMEOUT_TOKENS),
    (TransportErrorKind.UNREACHABLE, UNREACHABLE_TOKENS),
)

_SUMMARY_FALLBACK = "Remote query failed"
_SUMMARY_MAX_LENGTH = 160


def classify_transport_error(output: str) -> TransportErrorKind:
    """Map a failed command's error output onto a structured error kind."""
    lowered = output.lower()
    for kind, tokens in _CLASSIFIERS:
        if any(token in lowered for token in tokens):
            return kind
    return TransportErrorKind.COMMAND_FAILED


def summarize_error(output: str) -> str:
    """Extract a concise, user-facing line from multi-line error output."""
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    if not lines:
        return _SUMMARY_FALLBACK

    selected = lines[-1]
    for line in reversed(lines):
        lowered = line.lower()
        if line.startswith("error:") or any(
            token in lowered for _, tokens in _CLASSIFIERS for token in tokens
        ):
            selected = line
            break

    cleaned = selected.removeprefix("error:").strip()
    if len(cleaned) > _SUMMARY_MAX_LENGTH:
        return f"{cleaned[:_SUMMARY_MAX_LENGTH - 3].rstrip()}..."
    return cleaned or _SUMMARY_FALLBACK


__all__ = ["TransportErrorKind", "classify_transport_error", "summarize_error"]
