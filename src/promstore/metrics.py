"""Metric handles: counters, gauges and histograms.

Handles are thin: they validate arguments, derive storage keys through the
label codec and issue atomic storage operations. They hold no numeric
state, so any number of processes holding handles for the same identity
accumulate into the same records.

Metric Types:
    - Counter: Monotonically increasing value (e.g., request count)
    - Gauge: Point-in-time value (e.g., active connections)
    - Histogram: Cumulative distribution of values over fixed buckets

Label values are passed as an ordered sequence matching the label names the
metric was registered with:

    >>> requests = registry.register_counter(
    ...     "app", "requests_total", "Total requests", ["method", "endpoint"]
    ... )
    >>> requests.inc(["GET", "/api/users"])
    >>> requests.labels("POST", "/api/users").inc_by(5)
"""

from __future__ import annotations

import math
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

from promstore.exceptions import InvalidArgumentError
from promstore.labels import (
    SUM_TAG,
    VALUE_TAG,
    LabelCodec,
    bucket_tag,
    validate_label_values,
)
from promstore.storage.base import StorageAdapter
from promstore.types import MetricIdentity, MetricSchema, MetricType

LabelValues = Sequence[Any]


# =============================================================================
# Bucket helpers
# =============================================================================


DEFAULT_BUCKETS: tuple[float, ...] = (
    0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5,
    0.75, 1.0, 2.5, 5.0, 7.5, 10.0,
)


def linear_buckets(start: float, width: float, count: int) -> list[float]:
    """Return ``count`` bounds starting at ``start``, ``width`` apart."""
    if count < 1:
        raise InvalidArgumentError("count must be at least 1", count)
    if width <= 0:
        raise InvalidArgumentError("width must be positive", width)
    return [start + i * width for i in range(count)]


def exponential_buckets(start: float, factor: float, count: int) -> list[float]:
    """Return ``count`` bounds starting at ``start``, each ``factor`` times the last."""
    if count < 1:
        raise InvalidArgumentError("count must be at least 1", count)
    if start <= 0:
        raise InvalidArgumentError("start must be positive", start)
    if factor <= 1:
        raise InvalidArgumentError("factor must be greater than 1", factor)
    return [start * factor**i for i in range(count)]


def _number(value: Any, what: str) -> float:
    """Convert to float, rejecting non-numbers, booleans and NaN."""
    if isinstance(value, bool):
        raise InvalidArgumentError(f"{what} must be a number, got {value!r}", value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidArgumentError(f"{what} must be a number, got {value!r}", value) from None
    if math.isnan(number):
        raise InvalidArgumentError(f"{what} must not be NaN", value)
    return number


# =============================================================================
# Metric Base Class
# =============================================================================


class Metric(ABC):
    """Abstract base class for metric handles.

    Handles are created by ``CollectorRegistry``; they should not be
    instantiated directly.
    """

    def __init__(
        self,
        identity: MetricIdentity,
        schema: MetricSchema,
        storage: StorageAdapter[Any],
        codec: LabelCodec,
    ) -> None:
        self._identity = identity
        self._schema = schema
        self._storage = storage
        self._codec = codec

    @property
    @abstractmethod
    def type(self) -> MetricType:
        """Get metric type."""
        pass

    @property
    def identity(self) -> MetricIdentity:
        return self._identity

    @property
    def schema(self) -> MetricSchema:
        return self._schema

    @property
    def name(self) -> str:
        """Fully qualified metric name."""
        return self._identity.fqname

    @property
    def help(self) -> str:
        return self._schema.help

    @property
    def label_names(self) -> tuple[str, ...]:
        return self._schema.label_names

    def _key(self, label_values: LabelValues, tag: str) -> str:
        values = validate_label_values(self._schema.label_names, label_values)
        return self._codec.encode(self._identity, values, tag)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, labels={list(self.label_names)})"


# =============================================================================
# Counter
# =============================================================================


class Counter(Metric):
    """Monotonically increasing counter.

    Use for: request counts, errors, completed tasks.
    """

    @property
    def type(self) -> MetricType:
        return MetricType.COUNTER

    def inc(self, label_values: LabelValues = ()) -> float:
        """Increment by one and return the new value."""
        return self.inc_by(1, label_values)

    def inc_by(self, delta: float, label_values: LabelValues = ()) -> float:
        """Add ``delta`` and return the new value.

        Raises:
            InvalidArgumentError: If ``delta`` is negative or not a number.
            InvalidLabelError: On label arity mismatch.
        """
        amount = _number(delta, "Counter increment")
        if amount < 0:
            raise InvalidArgumentError(
                f"Counter '{self.name}' can only increase (got {delta})", delta
            )
        return self._storage.add_and_get(self._key(label_values, VALUE_TAG), amount)

    def get(self, label_values: LabelValues = ()) -> float:
        """Current value for a label set (0 when never written)."""
        value = self._storage.get(self._key(label_values, VALUE_TAG))
        return 0.0 if value is None else value

    def labels(self, *label_values: Any) -> "LabeledCounter":
        """Get the counter bound to one label set."""
        validate_label_values(self._schema.label_names, label_values)
        return LabeledCounter(self, label_values)


class LabeledCounter:
    """Counter with pre-set label values."""

    def __init__(self, counter: Counter, label_values: LabelValues) -> None:
        self._counter = counter
        self._label_values = tuple(label_values)

    def inc(self) -> float:
        return self._counter.inc(self._label_values)

    def inc_by(self, delta: float) -> float:
        return self._counter.inc_by(delta, self._label_values)

    def get(self) -> float:
        return self._counter.get(self._label_values)


# =============================================================================
# Gauge
# =============================================================================


class Gauge(Metric):
    """Point-in-time value that can go up or down.

    Use for: queue size, active users, memory usage. Concurrent ``set`` calls
    resolve last-write-wins.
    """

    @property
    def type(self) -> MetricType:
        return MetricType.GAUGE

    def set(self, value: float, label_values: LabelValues = ()) -> float:
        """Overwrite the value. NaN and infinities are accepted."""
        if isinstance(value, bool):
            raise InvalidArgumentError(f"Gauge value must be a number, got {value!r}", value)
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise InvalidArgumentError(f"Gauge value must be a number, got {value!r}", value) from None
        return self._storage.set_and_get(self._key(label_values, VALUE_TAG), number)

    def inc(self, label_values: LabelValues = ()) -> float:
        return self.inc_by(1, label_values)

    def dec(self, label_values: LabelValues = ()) -> float:
        return self.inc_by(-1, label_values)

    def inc_by(self, delta: float, label_values: LabelValues = ()) -> float:
        """Add ``delta`` (may be negative) and return the new value."""
        amount = _number(delta, "Gauge delta")
        return self._storage.add_and_get(self._key(label_values, VALUE_TAG), amount)

    def dec_by(self, delta: float, label_values: LabelValues = ()) -> float:
        """Subtract ``delta`` and return the new value."""
        return self.inc_by(-_number(delta, "Gauge delta"), label_values)

    def get(self, label_values: LabelValues = ()) -> float:
        value = self._storage.get(self._key(label_values, VALUE_TAG))
        return 0.0 if value is None else value

    def set_to_current_time(self, label_values: LabelValues = ()) -> float:
        """Set to the current Unix timestamp."""
        return self.set(time.time(), label_values)

    @contextmanager
    def track_inprogress(self, label_values: LabelValues = ()) -> Iterator[None]:
        """Increment on entry, decrement on exit."""
        self.inc(label_values)
        try:
            yield
        finally:
            self.dec(label_values)

    def labels(self, *label_values: Any) -> "LabeledGauge":
        """Get the gauge bound to one label set."""
        validate_label_values(self._schema.label_names, label_values)
        return LabeledGauge(self, label_values)


class LabeledGauge:
    """Gauge with pre-set label values."""

    def __init__(self, gauge: Gauge, label_values: LabelValues) -> None:
        self._gauge = gauge
        self._label_values = tuple(label_values)

    def set(self, value: float) -> float:
        return self._gauge.set(value, self._label_values)

    def inc(self) -> float:
        return self._gauge.inc(self._label_values)

    def dec(self) -> float:
        return self._gauge.dec(self._label_values)

    def inc_by(self, delta: float) -> float:
        return self._gauge.inc_by(delta, self._label_values)

    def dec_by(self, delta: float) -> float:
        return self._gauge.dec_by(delta, self._label_values)

    def get(self) -> float:
        return self._gauge.get(self._label_values)


# =============================================================================
# Histogram
# =============================================================================


class Histogram(Metric):
    """Cumulative histogram over fixed bucket bounds.

    Each bucket record holds the number of observations less than or equal
    to its bound, so counts never decrease with the bound. ``_count`` is not
    stored; it is the ``+Inf`` bucket's count.

    One observation touches several records without a cross-record
    transaction. Buckets are updated from ``+Inf`` downwards and ``_sum``
    last, so a concurrent reader may see an observation in the higher
    buckets before the lower ones and the sum, but never a lower bucket
    ahead of a higher one.

    Use for: request latency, response sizes.

    Example:
        >>> latency = registry.register_histogram(
        ...     "app", "request_duration_seconds", "Request latency",
        ...     ["method"], [0.1, 0.5, 1.0],
        ... )
        >>> latency.observe(0.42, ["GET"])
        >>> with latency.time(["GET"]):
        ...     handle_request()
    """

    @property
    def type(self) -> MetricType:
        return MetricType.HISTOGRAM

    @property
    def buckets(self) -> tuple[float, ...]:
        """Bucket bounds including ``+Inf``."""
        return self._schema.bounds

    def observe(self, value: float, label_values: LabelValues = ()) -> None:
        """Record one observation.

        Raises:
            InvalidArgumentError: If ``value`` is not a number or is NaN.
            InvalidLabelError: On label arity mismatch.
        """
        amount = _number(value, "Observed value")
        values = validate_label_values(self._schema.label_names, label_values)

        for bound in reversed(self._schema.bounds):
            if amount > bound:
                break
            self._storage.add_and_get(
                self._codec.encode(self._identity, values, bucket_tag(bound)), 1
            )
        self._storage.add_and_get(self._codec.encode(self._identity, values, SUM_TAG), amount)

    @contextmanager
    def time(self, label_values: LabelValues = ()) -> Iterator[None]:
        """Observe the duration of the block in seconds."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.observe(time.perf_counter() - start, label_values)

    def labels(self, *label_values: Any) -> "LabeledHistogram":
        """Get the histogram bound to one label set."""
        validate_label_values(self._schema.label_names, label_values)
        return LabeledHistogram(self, label_values)


class LabeledHistogram:
    """Histogram with pre-set label values."""

    def __init__(self, histogram: Histogram, label_values: LabelValues) -> None:
        self._histogram = histogram
        self._label_values = tuple(label_values)

    def observe(self, value: float) -> None:
        self._histogram.observe(value, self._label_values)

    @contextmanager
    def time(self) -> Iterator[None]:
        with self._histogram.time(self._label_values):
            yield


METRIC_CLASSES: dict[MetricType, type[Metric]] = {
    MetricType.COUNTER: Counter,
    MetricType.GAUGE: Gauge,
    MetricType.HISTOGRAM: Histogram,
}
