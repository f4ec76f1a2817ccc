"""
Vector Index Package

Provides the OpenSearch k-NN backed schema manager, document writer,
similarity searcher, and cluster health monitor.
"""

from .client import build_client, call_store
from .health import ClusterHealthMonitor
from .models import (
    ClusterStatus,
    Document,
    HealthStatus,
    IndexSchema,
    SearchResult,
    SimilarityMetric,
)
from .schema import IndexSchemaManager
from .search import SimilaritySearcher
from .writer import DocumentStoreWriter

__all__ = [
    "build_client",
    "call_store",
    "ClusterHealthMonitor",
    "ClusterStatus",
    "Document",
    "HealthStatus",
    "IndexSchema",
    "SearchResult",
    "SimilarityMetric",
    "IndexSchemaManager",
    "SimilaritySearcher",
    "DocumentStoreWriter",
]
