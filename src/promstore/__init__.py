"""promstore: shared, multi-process Prometheus metrics.

Counters, gauges and histograms from any number of memory-isolated
processes accumulate into one storage backend and render as a single
Prometheus text exposition.

Example:
    >>> from promstore import CollectorRegistry, FileStorage, render
    >>>
    >>> registry = CollectorRegistry(FileStorage("/run/myapp/metrics.json"))
    >>> requests = registry.get_or_register_counter(
    ...     "app", "requests_total", "Total requests", ["method", "endpoint"]
    ... )
    >>> requests.inc(["GET", "/api/users"])
    >>> print(render(registry.collect()))
"""

from promstore.config import MetricDefinition, PromstoreConfig, load_config
from promstore.exceptions import (
    ConfigError,
    DuplicateMetricError,
    InvalidArgumentError,
    InvalidBucketsError,
    InvalidLabelError,
    MetricError,
    PromstoreError,
    StorageContentionError,
    StorageError,
    StorageUnavailableError,
)
from promstore.exposition import CONTENT_TYPE, format_value, render
from promstore.metrics import (
    DEFAULT_BUCKETS,
    Counter,
    Gauge,
    Histogram,
    Metric,
    exponential_buckets,
    linear_buckets,
)
from promstore.registry import CollectorRegistry
from promstore.storage import FileStorage, MemoryStorage, StorageAdapter, create_storage
from promstore.types import (
    MetricFamilySamples,
    MetricIdentity,
    MetricSchema,
    MetricType,
    Sample,
)

__version__ = "0.1.0"

__all__ = [
    # Registry
    "CollectorRegistry",
    # Metrics
    "Metric",
    "Counter",
    "Gauge",
    "Histogram",
    "DEFAULT_BUCKETS",
    "linear_buckets",
    "exponential_buckets",
    # Types
    "MetricType",
    "MetricIdentity",
    "MetricSchema",
    "Sample",
    "MetricFamilySamples",
    # Storage
    "StorageAdapter",
    "MemoryStorage",
    "FileStorage",
    "create_storage",
    # Exposition
    "render",
    "format_value",
    "CONTENT_TYPE",
    # Config
    "PromstoreConfig",
    "MetricDefinition",
    "load_config",
    # Errors
    "PromstoreError",
    "MetricError",
    "DuplicateMetricError",
    "InvalidLabelError",
    "InvalidBucketsError",
    "InvalidArgumentError",
    "StorageError",
    "StorageUnavailableError",
    "StorageContentionError",
    "ConfigError",
]
