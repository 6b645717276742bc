"""Remote query executor backed by the kubectl binary."""

from __future__ import annotations

import asyncio
import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from kubestack.constants.defaults import KUBECTL_BINARY_DEFAULT
from kubestack.constants.enums import TransportErrorKind
from kubestack.constants.timeouts import CLUSTER_REQUEST_TIMEOUT, KUBECTL_COMMAND_TIMEOUT
from kubestack.transport.errors import classify_transport_error, summarize_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryResponse:
    """Outcome of one remote query.

    ``error_kind`` is None exactly when ``exit_code`` is 0.
    """

    exit_code: int
    output: str
    error_kind: TransportErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def is_unreachable(self) -> bool:
        """True when the cluster could not be reached at all."""
        return self.error_kind is not None and self.error_kind.is_connectivity

    @property
    def error_summary(self) -> str | None:
        if self.ok:
            return None
        return summarize_error(self.output)

    @classmethod
    def success(cls, output: str) -> QueryResponse:
        return cls(exit_code=0, output=output)

    @classmethod
    def failure(cls, output: str, error_kind: TransportErrorKind | None = None, exit_code: int = 1) -> QueryResponse:
        return cls(
            exit_code=exit_code or 1,
            output=output,
            error_kind=error_kind or classify_transport_error(output),
        )


class QueryExecutor(Protocol):
    """Runs a command-line query against one cluster."""

    async def execute(
        self,
        args: Sequence[str],
        *,
        context: str | None = None,
        timeout: float | None = None,
    ) -> QueryResponse: ...


class KubectlExecutor:
    """Run kubectl in a worker thread and classify its failures.

    Never raises for command failures; they are returned as responses with
    an ``error_kind``.
    """

    def __init__(
        self,
        binary: str = KUBECTL_BINARY_DEFAULT,
        request_timeout: str = CLUSTER_REQUEST_TIMEOUT,
        command_timeout: float = KUBECTL_COMMAND_TIMEOUT,
    ) -> None:
        self._binary = binary
        self._request_timeout = request_timeout
        self._command_timeout = command_timeout

    def build_command(self, args: Sequence[str], context: str | None = None) -> list[str]:
        cmd = [self._binary]
        if context:
            cmd.extend(["--context", context])
        cmd.append(f"--request-timeout={self._request_timeout}")
        cmd.extend(args)
        return cmd

    def _run_sync(self, cmd: list[str], timeout: float) -> QueryResponse:
        """Run the command synchronously (thread-safe wrapper target)."""
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired:
            return QueryResponse.failure(
                f"command timed out after {timeout:g}s",
                TransportErrorKind.TIMEOUT,
            )
        except OSError as exc:
            return QueryResponse.failure(str(exc), TransportErrorKind.COMMAND_FAILED)

        if result.returncode != 0:
            stderr = (result.stderr or "").strip() or "kubectl command failed"
            return QueryResponse.failure(stderr, exit_code=result.returncode)
        return QueryResponse.success(result.stdout)

    async def execute(
        self,
        args: Sequence[str],
        *,
        context: str | None = None,
        timeout: float | None = None,
    ) -> QueryResponse:
        cmd = self.build_command(args, context)
        effective_timeout = timeout if timeout is not None else self._command_timeout
        response = await asyncio.to_thread(self._run_sync, cmd, effective_timeout)
        if not response.ok:
            logger.debug(
                "kubectl %s failed (%s): %s",
                " ".join(args),
                response.error_kind.value if response.error_kind else "unknown",
                response.error_summary,
            )
        return response


__all__ = ["KubectlExecutor", "QueryExecutor", "QueryResponse"]
