"""Stack resource fetchers."""

from kubestack.controllers.stacks.fetchers.resource_fetcher import (
    ClusterQueryResult,
    StackResourceFetcher,
    SubQueryResult,
)

__all__ = ["ClusterQueryResult", "StackResourceFetcher", "SubQueryResult"]
