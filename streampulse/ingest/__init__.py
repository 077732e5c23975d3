"""
Ingest layer: upstream stream statistics client and global KPI aggregation
"""

from .client import StreamStatsClient, create_proxy_client, create_upstream_client
from .aggregates import KpiAccumulator

__all__ = [
    "StreamStatsClient",
    "create_proxy_client",
    "create_upstream_client",
    "KpiAccumulator",
]
