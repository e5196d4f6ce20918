"""Core data types shared across promstore.

These types describe metric identity and schema (what the registry owns)
and the collection-time snapshot handed to the exposition renderer. None of
them hold live numeric state; all counts live in a storage adapter.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum


class MetricType(str, Enum):
    """Kinds of metrics supported by the registry."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"

    @classmethod
    def from_string(cls, value: "str | MetricType") -> "MetricType":
        """Convert a string (case-insensitive) to a MetricType."""
        if isinstance(value, MetricType):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise ValueError(f"Unknown metric type '{value}' (expected one of: {valid})")


@dataclass(frozen=True)
class MetricIdentity:
    """Unique identifier of a metric family.

    Attributes:
        namespace: Name prefix, joined to ``name`` with an underscore.
        name: Metric name within the namespace.
        kind: Metric type.
    """

    namespace: str
    name: str
    kind: MetricType

    @property
    def fqname(self) -> str:
        """Fully qualified metric name (``namespace_name``)."""
        if not self.namespace:
            return self.name
        return f"{self.namespace}_{self.name}"

    def __str__(self) -> str:
        return f"{self.kind.value} {self.fqname}"


@dataclass(frozen=True)
class MetricSchema:
    """Schema attached to a metric identity.

    Attributes:
        help: Free-form description rendered on the HELP line.
        label_names: Ordered label names (may be empty).
        buckets: Finite, strictly ascending histogram bucket bounds. ``None``
            for counters and gauges. The implicit ``+Inf`` bound is not
            part of this tuple; see ``bounds``.
    """

    help: str
    label_names: tuple[str, ...] = ()
    buckets: tuple[float, ...] | None = None

    @property
    def bounds(self) -> tuple[float, ...]:
        """Bucket bounds including the trailing ``+Inf``."""
        if self.buckets is None:
            return ()
        return (*self.buckets, math.inf)

    def describe_difference(self, other: "MetricSchema") -> str | None:
        """Return a human-readable reason the schemas differ, or None."""
        if self.help != other.help:
            return f"help text differs ({self.help!r} != {other.help!r})"
        if self.label_names != other.label_names:
            return f"label names differ ({list(self.label_names)} != {list(other.label_names)})"
        if self.buckets != other.buckets:
            return f"buckets differ ({self.buckets} != {other.buckets})"
        return None


@dataclass(frozen=True)
class Sample:
    """A single exposition line.

    Attributes:
        name: Sample name, including ``_bucket``/``_sum``/``_count``
            suffixes for histograms.
        label_names: Label names in schema order.
        label_values: Label values paired positionally with ``label_names``.
        value: Numeric value.
        bound: Histogram bucket upper bound for ``_bucket`` samples, rendered
            as the trailing ``le`` label.
    """

    name: str
    label_names: tuple[str, ...]
    label_values: tuple[str, ...]
    value: float
    bound: float | None = None

    @property
    def labels(self) -> dict[str, str]:
        """Labels as a mapping (without ``le``)."""
        return dict(zip(self.label_names, self.label_values))


@dataclass
class MetricFamilySamples:
    """All samples of one metric family at collection time."""

    identity: MetricIdentity
    schema: MetricSchema
    samples: list[Sample] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.identity.fqname

    @property
    def type(self) -> MetricType:
        return self.identity.kind

    @property
    def help(self) -> str:
        return self.schema.help
