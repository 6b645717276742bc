"""kubestack CLI - llm-d stack discovery for Kubernetes dashboards.

Commands:
- discover: Run one discovery cycle and print the stacks found
- watch: Keep discovering on an interval, re-rendering on each update
- snapshot: Show the persisted stack snapshot and its age
- stream: Consume a batch event stream with cache fallback

Async work runs through asyncio.run() inside each sync command; output is
a rich Table, or JSON with --json.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import httpx
import typer
from rich.console import Console
from rich.live import Live
from rich.table import Table

from kubestack.constants.enums import ClusterOutcome, StackStatus
from kubestack.controllers.stacks import (
    ClusterFetchStatus,
    DiscoveryState,
    StackDiscoveryController,
)
from kubestack.controllers.stacks.parsers import flatten_stack_servers
from kubestack.controllers.streaming import ReconciledState, StreamingReconciler
from kubestack.models.cache.freshness_cache import CacheOptions, FreshnessCache
from kubestack.models.stacks import Stack, build_demo_stacks
from kubestack.models.state.app_settings import ConfigLoadError, DashboardSettings
from kubestack.storage import JsonFileKeyValueStore, StackSnapshotStore
from kubestack.transport import KubectlExecutor, SSEStreamTransport
from kubestack.utils import ConfigManager, configure_logging

app = typer.Typer(
    name="kubestack",
    help="Discover llm-d inference stacks across Kubernetes clusters",
    no_args_is_help=True,
)

console = Console()

_STATUS_STYLES = {
    StackStatus.HEALTHY: "green",
    StackStatus.DEGRADED: "yellow",
    StackStatus.UNHEALTHY: "red",
    StackStatus.UNKNOWN: "dim",
}

_OUTCOME_STYLES = {
    ClusterOutcome.MERGED: "green",
    ClusterOutcome.PARTIAL: "yellow",
    ClusterOutcome.SKIPPED_EMPTY: "dim",
    ClusterOutcome.SKIPPED_UNREACHABLE: "red",
    ClusterOutcome.FAILED: "red",
}


# =============================================================================
# Helpers
# =============================================================================


def _load_settings(config: Path | None, verbose: bool = False) -> DashboardSettings:
    try:
        settings = ConfigManager.load(config)
    except ConfigLoadError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(2) from exc
    configure_logging("DEBUG" if verbose else settings.log_level)
    return settings


def _build_controller(settings: DashboardSettings, clusters: Sequence[str]) -> StackDiscoveryController:
    executor = KubectlExecutor(binary=settings.kubectl_binary)
    snapshot_store = StackSnapshotStore(
        JsonFileKeyValueStore(settings.store_path),
        ttl_seconds=settings.snapshot_ttl_seconds,
    )
    return StackDiscoveryController(
        executor,
        snapshot_store,
        clusters=clusters,
        refresh_interval=settings.refresh_interval_seconds,
        query_timeout=settings.query_timeout_seconds,
        enable_deployment_discovery=settings.enable_deployment_discovery,
        deployment_batch_size=settings.deployment_batch_size,
    )


async def _resolve_clusters(settings: DashboardSettings, contexts: list[str] | None) -> list[str]:
    """Pick contexts from the command line, then settings, then kubectl."""
    if contexts:
        return contexts
    if settings.contexts:
        return list(settings.contexts)

    executor = KubectlExecutor(binary=settings.kubectl_binary)
    response = await executor.execute(("config", "current-context"))
    current = response.output.strip() if response.ok else ""
    if not current:
        console.print(f"[red]No kubectl context configured: {response.error_summary}[/red]")
        raise typer.Exit(1)
    return [current]


def _demo_cache() -> FreshnessCache[list[Stack]]:
    async def _unused() -> list[Stack]:
        return []

    return FreshnessCache(
        "stacks:demo",
        CacheOptions(
            fetcher=_unused,
            initial_value=[],
            demo_value=build_demo_stacks(),
            enabled=False,
        ),
    )


def _replicas(stack: Stack) -> str:
    return f"{stack.ready_replicas}/{stack.total_replicas}"


def _stacks_table(stacks: Sequence[Stack], title: str = "Stacks") -> Table:
    table = Table(title=title)
    table.add_column("Stack", style="cyan")
    table.add_column("Cluster")
    table.add_column("Namespace")
    table.add_column("Status")
    table.add_column("Model")
    table.add_column("Ready", justify="right")
    table.add_column("P/D", justify="center")
    table.add_column("Autoscaler")
    table.add_column("Source", style="dim")

    for stack in stacks:
        style = _STATUS_STYLES.get(stack.status, "")
        table.add_row(
            stack.display_name,
            stack.cluster,
            stack.namespace,
            f"[{style}]{stack.status.value}[/{style}]" if style else stack.status.value,
            stack.model or "-",
            _replicas(stack),
            "yes" if stack.has_disaggregation else "",
            stack.autoscaler.kind.value if stack.autoscaler else "-",
            stack.source.value,
        )
    return table


def _servers_table(stacks: Sequence[Stack]) -> Table:
    table = Table(title="Servers")
    table.add_column("Server", style="cyan")
    table.add_column("Stack")
    table.add_column("Type")
    table.add_column("Model")
    table.add_column("Status")
    table.add_column("Ready", justify="right")

    for stack in stacks:
        for server in flatten_stack_servers(stack):
            table.add_row(
                server.name,
                stack.id,
                server.component_type.value,
                server.model,
                server.status.value,
                f"{server.ready_replicas}/{server.replicas}",
            )
    return table


def _clusters_table(statuses: dict[str, ClusterFetchStatus]) -> Table:
    table = Table(title="Clusters")
    table.add_column("Cluster", style="cyan")
    table.add_column("Outcome")
    table.add_column("Failed queries")
    table.add_column("Error", overflow="fold")

    for name, status in statuses.items():
        outcome = status.outcome.value if status.outcome else "pending"
        style = _OUTCOME_STYLES.get(status.outcome) if status.outcome else None
        table.add_row(
            name,
            f"[{style}]{outcome}[/{style}]" if style else outcome,
            ", ".join(status.failed_sources) or "-",
            status.error_message or "",
        )
    return table


def _print_stacks_json(stacks: Sequence[Stack], **extra: Any) -> None:
    data = {"stacks": [s.model_dump(mode="json") for s in stacks], **extra}
    print(json.dumps(data, indent=2, default=str))


# =============================================================================
# Commands
# =============================================================================


@app.command("discover")
def discover(
    context: list[str] = typer.Option(None, "--context", "-c", help="Cluster context (repeatable)"),
    demo: bool = typer.Option(False, "--demo", help="Show demo stacks without contacting clusters"),
    config: Path = typer.Option(None, "--config", help="Settings file (YAML)"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    servers: bool = typer.Option(False, "--servers", "-s", help="Also list individual servers"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Run one discovery cycle and print the stacks found."""
    settings = _load_settings(config, verbose)

    if demo:
        stacks = _demo_cache().state.value
        if json_output:
            _print_stacks_json(stacks, demo=True)
        else:
            console.print(_stacks_table(stacks, title="Stacks (demo)"))
            if servers:
                console.print(_servers_table(stacks))
        return

    async def _discover() -> tuple[DiscoveryState, dict[str, ClusterFetchStatus]]:
        clusters = await _resolve_clusters(settings, context)
        controller = _build_controller(settings, clusters)
        controller.load_snapshot()
        state = await controller.discover()
        return state, controller.get_all_cluster_statuses()

    state, statuses = asyncio.run(_discover())

    if json_output:
        _print_stacks_json(
            state.stacks,
            clusters={name: status.to_dict() for name, status in statuses.items()},
            error=state.error,
        )
    else:
        console.print(_stacks_table(state.stacks))
        if servers:
            console.print(_servers_table(state.stacks))
        console.print(_clusters_table(statuses))
        if state.error:
            console.print(f"[red]{state.error}[/red]")

    if state.error:
        raise typer.Exit(1)


@app.command("watch")
def watch(
    context: list[str] = typer.Option(None, "--context", "-c", help="Cluster context (repeatable)"),
    config: Path = typer.Option(None, "--config", help="Settings file (YAML)"),
    interval: int = typer.Option(None, "--interval", "-i", help="Seconds between cycles"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Keep discovering stacks, re-rendering after every update."""
    settings = _load_settings(config, verbose)
    if interval is not None:
        settings = settings.model_copy(update={"refresh_interval_seconds": max(1, interval)})

    async def _watch() -> None:
        clusters = await _resolve_clusters(settings, context)
        controller = _build_controller(settings, clusters)

        with Live(_stacks_table([]), console=console, refresh_per_second=4) as live:

            def render(state: DiscoveryState) -> None:
                suffix = " (refreshing)" if state.is_refreshing else ""
                live.update(_stacks_table(state.stacks, title=f"Stacks{suffix}"))

            unsubscribe = controller.subscribe(render)
            try:
                controller.start()
                while True:
                    await asyncio.sleep(1)
            finally:
                unsubscribe()
                await controller.stop()

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        console.print("Stopped")


@app.command("snapshot")
def snapshot(
    config: Path = typer.Option(None, "--config", help="Settings file (YAML)"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    clear: bool = typer.Option(False, "--clear", help="Delete the persisted snapshot"),
) -> None:
    """Show the persisted stack snapshot and its age."""
    settings = _load_settings(config)
    store = StackSnapshotStore(
        JsonFileKeyValueStore(settings.store_path),
        ttl_seconds=settings.snapshot_ttl_seconds,
    )

    if clear:
        store.clear()
        console.print("Snapshot cleared")
        return

    stored = store.load()
    if stored is None:
        console.print("No stack snapshot stored")
        raise typer.Exit(1)

    age = stored.age(time.time())
    fresh = store.is_fresh(stored)
    if json_output:
        _print_stacks_json(stored.stacks, timestamp=stored.timestamp, age_seconds=age, fresh=fresh)
        return

    label = "fresh" if fresh else "stale"
    console.print(_stacks_table(stored.stacks, title=f"Snapshot ({age:.0f}s old, {label})"))


@app.command("stream")
def stream(
    base_url: str = typer.Argument(..., help="Base URL of the streaming API"),
    path: str = typer.Option("/api/benchmarks/stream", "--path", "-p", help="Stream endpoint path"),
    fallback_path: str = typer.Option(
        None, "--fallback-path", help="Non-streaming endpoint (defaults to PATH without /stream)"
    ),
    config: Path = typer.Option(None, "--config", help="Settings file (YAML)"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output items as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Consume a batch event stream, falling back to the cached result."""
    settings = _load_settings(config, verbose)
    list_path = fallback_path or path.removesuffix("/stream")

    async def _stream() -> ReconciledState[Any]:
        async with httpx.AsyncClient(base_url=base_url) as http:

            async def fetch_all() -> list[Any]:
                response = await http.get(list_path)
                response.raise_for_status()
                return response.json()

            cache: FreshnessCache[list[Any]] = FreshnessCache(
                f"stream:{base_url}{path}",
                CacheOptions(fetcher=fetch_all, initial_value=[], value_type=list[Any]),
                store=JsonFileKeyValueStore(settings.store_path),
            )
            reconciler: StreamingReconciler[Any] = StreamingReconciler(
                cache, lambda: SSEStreamTransport(http, path)
            )

            last_progress = 0

            def report(state: ReconciledState[Any]) -> None:
                nonlocal last_progress
                if state.stream_progress != last_progress and not json_output:
                    console.print(f"Received {state.stream_progress} item(s)")
                last_progress = state.stream_progress

            unsubscribe = reconciler.subscribe(report)
            try:
                reconciler.start()
                return await reconciler.wait()
            finally:
                unsubscribe()
                reconciler.close()

    state = asyncio.run(_stream())
    items = list(state.value)

    if json_output:
        print(json.dumps(items, indent=2, default=str))
    else:
        source = "stream" if state.stream_progress else "cache"
        console.print(
            f"{len(items)} item(s) from {source}; stream {state.stream_state.value}"
            + (f": {state.stream_error}" if state.stream_error else "")
        )
    if not items and state.stream_error:
        raise typer.Exit(1)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
