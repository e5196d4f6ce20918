"""Collector registry: metric identity, registration and collection.

The registry owns the schema of every metric family it hands out and
nothing else. Numeric state lives in the injected storage adapter, so
several processes, each with their own registry, share one view as long as
they use the same storage and prefix.

Example:
    >>> registry = CollectorRegistry(FileStorage("/run/app/metrics.json"))
    >>> counter = registry.get_or_register_counter(
    ...     "app", "requests_total", "Total requests", ["method"]
    ... )
    >>> counter.inc(["GET"])
    >>> print(registry.render())
"""

from __future__ import annotations

import logging
import math
import threading
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Sequence

from promstore.exceptions import DuplicateMetricError, InvalidArgumentError, InvalidBucketsError
from promstore.exposition import render
from promstore.labels import (
    BUCKET_TAG_PREFIX,
    SUM_TAG,
    VALUE_TAG,
    DecodedKey,
    LabelCodec,
    parse_bound,
    validate_label_names,
    validate_metric_name,
)
from promstore.metrics import (
    DEFAULT_BUCKETS,
    METRIC_CLASSES,
    Counter,
    Gauge,
    Histogram,
    Metric,
)
from promstore.storage.base import StorageAdapter
from promstore.types import (
    MetricFamilySamples,
    MetricIdentity,
    MetricSchema,
    MetricType,
    Sample,
)

if TYPE_CHECKING:
    from promstore.config import PromstoreConfig

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "promstore"


def validate_buckets(buckets: Sequence[float] | None) -> tuple[float, ...]:
    """Validate histogram bucket bounds.

    ``None`` selects ``DEFAULT_BUCKETS``. A trailing ``+Inf`` is accepted
    and dropped since it is always implied.

    Raises:
        InvalidBucketsError: If bounds are empty, not numbers, not finite or
            not strictly ascending.
    """
    if buckets is None:
        return DEFAULT_BUCKETS
    if isinstance(buckets, (str, bytes)):
        raise InvalidBucketsError(f"Buckets must be a sequence of numbers, got {buckets!r}")

    bounds: list[float] = []
    for bound in buckets:
        if isinstance(bound, bool) or not isinstance(bound, (int, float)):
            raise InvalidBucketsError(f"Bucket bound must be a number, got {bound!r}")
        bounds.append(float(bound))

    if bounds and bounds[-1] == math.inf:
        bounds.pop()
    if not bounds:
        raise InvalidBucketsError("Histogram must have at least one finite bucket bound")
    for bound in bounds:
        if not math.isfinite(bound):
            raise InvalidBucketsError(f"Bucket bounds must be finite, got {bound}")
    for lower, upper in zip(bounds, bounds[1:]):
        if not lower < upper:
            raise InvalidBucketsError(
                f"Bucket bounds must be strictly ascending, got {lower} before {upper}"
            )
    return tuple(bounds)


class CollectorRegistry:
    """Registry of metric families backed by a storage adapter.

    Args:
        storage: Adapter holding all numeric state.
        prefix: Key namespace for every record this registry writes. Two
            registries with different prefixes can share one storage
            without seeing each other's data.
    """

    def __init__(self, storage: StorageAdapter[Any], prefix: str = DEFAULT_PREFIX) -> None:
        self._storage = storage
        self._codec = LabelCodec(prefix)
        self._metrics: dict[str, Metric] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: "PromstoreConfig") -> "CollectorRegistry":
        """Build a registry, its storage and its predefined metrics from config."""
        from promstore.storage.factory import create_storage

        registry = cls(create_storage(config.storage, **config.storage_options()), prefix=config.prefix)
        for definition in config.metrics:
            registry.get_or_register(
                definition.kind,
                definition.namespace,
                definition.name,
                definition.help,
                definition.labels,
                definition.buckets,
            )
        return registry

    @property
    def storage(self) -> StorageAdapter[Any]:
        return self._storage

    @property
    def prefix(self) -> str:
        return self._codec.prefix

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def _build(
        self,
        kind: MetricType | str,
        namespace: str,
        name: str,
        help: str,
        label_names: Sequence[str],
        buckets: Sequence[float] | None,
    ) -> tuple[MetricIdentity, MetricSchema]:
        try:
            kind = MetricType.from_string(kind)
        except ValueError as e:
            raise InvalidArgumentError(str(e), kind) from None
        validate_metric_name(namespace, name)
        if not isinstance(help, str):
            raise InvalidArgumentError(f"Help text must be a string, got {help!r}", help)
        labels = validate_label_names(label_names)

        if kind is MetricType.HISTOGRAM:
            bounds: tuple[float, ...] | None = validate_buckets(buckets)
        elif buckets is not None:
            raise InvalidBucketsError(f"Only histograms take buckets, not {kind.value}s")
        else:
            bounds = None

        identity = MetricIdentity(namespace=namespace, name=name, kind=kind)
        return identity, MetricSchema(help=help, label_names=labels, buckets=bounds)

    def _create(self, identity: MetricIdentity, schema: MetricSchema) -> Metric:
        metric = METRIC_CLASSES[identity.kind](identity, schema, self._storage, self._codec)
        self._metrics[identity.fqname] = metric
        logger.debug("Registered %s with labels %s", identity, list(schema.label_names))
        return metric

    def register(
        self,
        kind: MetricType | str,
        namespace: str,
        name: str,
        help: str,
        label_names: Sequence[str] = (),
        buckets: Sequence[float] | None = None,
    ) -> Metric:
        """Register a new metric family.

        Raises:
            DuplicateMetricError: If the fully qualified name is already
                registered, whatever its schema.
            InvalidLabelError: On malformed label names.
            InvalidBucketsError: On malformed histogram buckets.
            InvalidArgumentError: On an invalid metric name or kind.
        """
        identity, schema = self._build(kind, namespace, name, help, label_names, buckets)
        with self._lock:
            existing = self._metrics.get(identity.fqname)
            if existing is not None:
                raise DuplicateMetricError(
                    identity.fqname, f"registered as {existing.type.value}"
                )
            return self._create(identity, schema)

    def get_or_register(
        self,
        kind: MetricType | str,
        namespace: str,
        name: str,
        help: str,
        label_names: Sequence[str] = (),
        buckets: Sequence[float] | None = None,
    ) -> Metric:
        """Return the existing handle for an identical schema, or register one.

        Raises:
            DuplicateMetricError: If the name is registered with a different
                kind, help text, label names or buckets.
        """
        identity, schema = self._build(kind, namespace, name, help, label_names, buckets)
        with self._lock:
            existing = self._metrics.get(identity.fqname)
            if existing is None:
                return self._create(identity, schema)

            if existing.type is not identity.kind:
                raise DuplicateMetricError(
                    identity.fqname,
                    f"registered as {existing.type.value}, requested {identity.kind.value}",
                )
            difference = existing.schema.describe_difference(schema)
            if difference is not None:
                raise DuplicateMetricError(identity.fqname, difference)
            return existing

    def register_counter(
        self, namespace: str, name: str, help: str, label_names: Sequence[str] = ()
    ) -> Counter:
        return self.register(MetricType.COUNTER, namespace, name, help, label_names)  # type: ignore[return-value]

    def register_gauge(
        self, namespace: str, name: str, help: str, label_names: Sequence[str] = ()
    ) -> Gauge:
        return self.register(MetricType.GAUGE, namespace, name, help, label_names)  # type: ignore[return-value]

    def register_histogram(
        self,
        namespace: str,
        name: str,
        help: str,
        label_names: Sequence[str] = (),
        buckets: Sequence[float] | None = None,
    ) -> Histogram:
        return self.register(MetricType.HISTOGRAM, namespace, name, help, label_names, buckets)  # type: ignore[return-value]

    def get_or_register_counter(
        self, namespace: str, name: str, help: str, label_names: Sequence[str] = ()
    ) -> Counter:
        return self.get_or_register(MetricType.COUNTER, namespace, name, help, label_names)  # type: ignore[return-value]

    def get_or_register_gauge(
        self, namespace: str, name: str, help: str, label_names: Sequence[str] = ()
    ) -> Gauge:
        return self.get_or_register(MetricType.GAUGE, namespace, name, help, label_names)  # type: ignore[return-value]

    def get_or_register_histogram(
        self,
        namespace: str,
        name: str,
        help: str,
        label_names: Sequence[str] = (),
        buckets: Sequence[float] | None = None,
    ) -> Histogram:
        return self.get_or_register(MetricType.HISTOGRAM, namespace, name, help, label_names, buckets)  # type: ignore[return-value]

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def get(self, namespace: str, name: str) -> Metric | None:
        """Get a registered handle, or None."""
        fqname = f"{namespace}_{name}" if namespace else name
        with self._lock:
            return self._metrics.get(fqname)

    def unregister(self, namespace: str, name: str) -> bool:
        """Forget a schema. Stored values are left untouched.

        Returns:
            True if a metric was removed.
        """
        fqname = f"{namespace}_{name}" if namespace else name
        with self._lock:
            return self._metrics.pop(fqname, None) is not None

    @property
    def families(self) -> list[MetricIdentity]:
        """Registered identities, ordered by fully qualified name."""
        with self._lock:
            return [self._metrics[n].identity for n in sorted(self._metrics)]

    def __contains__(self, fqname: object) -> bool:
        with self._lock:
            return fqname in self._metrics

    def __len__(self) -> int:
        with self._lock:
            return len(self._metrics)

    # -------------------------------------------------------------------------
    # Collection
    # -------------------------------------------------------------------------

    def collect(self) -> list[MetricFamilySamples]:
        """Snapshot every registered family present in storage.

        Records that cannot be attributed to a registered schema are skipped
        and logged. Families without any stored record are omitted.
        """
        with self._lock:
            metrics = dict(self._metrics)

        records = self._storage.enumerate(self._codec.namespace_prefix)
        grouped: dict[str, dict[tuple[str, ...], dict[str, float]]] = defaultdict(
            lambda: defaultdict(dict)
        )

        for key, raw in records:
            accepted = self._accept(key, raw, metrics)
            if accepted is None:
                continue
            decoded, value = accepted
            grouped[decoded.fqname][decoded.label_values][decoded.tag] = value

        families = []
        for fqname in sorted(grouped):
            metric = metrics[fqname]
            if metric.type is MetricType.HISTOGRAM:
                samples = self._histogram_samples(metric, grouped[fqname])
            else:
                samples = [
                    Sample(fqname, metric.label_names, values, tags[VALUE_TAG])
                    for values, tags in sorted(grouped[fqname].items())
                ]
            families.append(MetricFamilySamples(metric.identity, metric.schema, samples))
        return families

    def _accept(
        self,
        key: str,
        raw: Any,
        metrics: dict[str, Metric],
    ) -> tuple[DecodedKey, float] | None:
        """Validate one stored record against the registered schemas."""
        try:
            decoded = self._codec.decode(key)
        except ValueError as e:
            logger.warning("Skipping undecodable record %r: %s", key, e)
            return None

        metric = metrics.get(decoded.fqname)
        if metric is None or metric.type is not decoded.kind:
            logger.debug("Skipping record %r of unregistered %s %s", key, decoded.kind.value, decoded.fqname)
            return None
        if len(decoded.label_values) != len(metric.label_names):
            logger.warning(
                "Skipping record %r: %d label values for %d label names",
                key, len(decoded.label_values), len(metric.label_names),
            )
            return None
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            logger.warning("Skipping record %r with non-numeric value %r", key, raw)
            return None

        if metric.type is MetricType.HISTOGRAM:
            valid = decoded.tag == SUM_TAG or decoded.bound in metric.schema.bounds
        else:
            valid = decoded.tag == VALUE_TAG
        if not valid:
            logger.warning("Skipping record %r: tag does not match schema of %s", key, decoded.fqname)
            return None
        return decoded, float(raw)

    def _histogram_samples(
        self,
        metric: Metric,
        series: dict[tuple[str, ...], dict[str, float]],
    ) -> list[Sample]:
        fqname = metric.name
        label_names = metric.label_names
        samples = []
        for values, tags in sorted(series.items()):
            buckets = {
                parse_bound(tag[len(BUCKET_TAG_PREFIX):]): value
                for tag, value in tags.items()
                if tag.startswith(BUCKET_TAG_PREFIX)
            }
            for bound in metric.schema.bounds:
                samples.append(
                    Sample(f"{fqname}_bucket", label_names, values, buckets.get(bound, 0.0), bound)
                )
            samples.append(Sample(f"{fqname}_sum", label_names, values, tags.get(SUM_TAG, 0.0)))
            samples.append(Sample(f"{fqname}_count", label_names, values, buckets.get(math.inf, 0.0)))
        return samples

    def wipe(self) -> int:
        """Remove every stored record under this registry's prefix.

        Registered schemas are kept.

        Returns:
            Number of removed records.
        """
        removed = self._storage.wipe(self._codec.namespace_prefix)
        logger.info("Wiped %d records under prefix '%s'", removed, self._codec.prefix)
        return removed

    def render(self) -> str:
        """Collect and render in the text exposition format."""
        return render(self.collect())
