"""Tests for CollectorRegistry registration, collection and wipe."""

from __future__ import annotations

import logging
import math

import pytest

from promstore.config import MetricDefinition, PromstoreConfig
from promstore.exceptions import (
    DuplicateMetricError,
    InvalidArgumentError,
    InvalidBucketsError,
    InvalidLabelError,
)
from promstore.metrics import DEFAULT_BUCKETS, Counter, Gauge, Histogram
from promstore.registry import CollectorRegistry, validate_buckets
from promstore.storage.memory import MemoryStorage
from promstore.types import MetricType


# =============================================================================
# Registration
# =============================================================================


class TestRegistration:
    """Tests for register / get_or_register."""

    def test_register_returns_typed_handles(self, registry):
        assert isinstance(registry.register_counter("app", "c_total", "c"), Counter)
        assert isinstance(registry.register_gauge("app", "g", "g"), Gauge)
        assert isinstance(registry.register_histogram("app", "h", "h"), Histogram)
        assert len(registry) == 3

    def test_generic_register_accepts_kind_string(self, registry):
        metric = registry.register("gauge", "app", "temperature", "Temperature")
        assert metric.type is MetricType.GAUGE

    def test_unknown_kind(self, registry):
        with pytest.raises(InvalidArgumentError):
            registry.register("summary", "app", "x", "x")

    def test_get_or_register_is_idempotent(self, registry):
        first = registry.get_or_register_counter("cache", "hits_total", "Cache hits", ["cache_type"])
        second = registry.get_or_register_counter("cache", "hits_total", "Cache hits", ["cache_type"])

        assert first is second
        first.inc(["redis"])
        second.inc(["apcu"])

        names = [family.name for family in registry.collect()]
        assert names == ["cache_hits_total"]

    def test_get_or_register_histogram_idempotent_with_equal_bounds(self, registry):
        first = registry.get_or_register_histogram("app", "h", "h", [], [1, 2])
        second = registry.get_or_register_histogram("app", "h", "h", [], [1.0, 2.0])
        assert first is second

    def test_register_twice_fails(self, registry):
        registry.register_counter("app", "requests_total", "Requests")
        with pytest.raises(DuplicateMetricError):
            registry.register_counter("app", "requests_total", "Requests")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"help": "Different help"},
            {"label_names": ["method", "status"]},
            {"label_names": ["endpoint", "method"]},
        ],
    )
    def test_get_or_register_schema_mismatch(self, registry, kwargs):
        registry.get_or_register_counter("app", "requests_total", "Requests", ["method", "endpoint"])
        args = {"help": "Requests", "label_names": ["method", "endpoint"], **kwargs}

        with pytest.raises(DuplicateMetricError):
            registry.get_or_register_counter("app", "requests_total", args["help"], args["label_names"])

    def test_get_or_register_kind_mismatch(self, registry):
        registry.get_or_register_counter("app", "requests", "Requests")
        with pytest.raises(DuplicateMetricError, match="counter"):
            registry.get_or_register_gauge("app", "requests", "Requests")

    def test_get_or_register_bucket_mismatch(self, registry):
        registry.get_or_register_histogram("app", "h", "h", [], [1, 2])
        with pytest.raises(DuplicateMetricError, match="buckets"):
            registry.get_or_register_histogram("app", "h", "h", [], [1, 3])

    def test_namespace_composition_collides(self, registry):
        """``a`` + ``b_c`` and ``a_b`` + ``c`` share one fully qualified name."""
        registry.register_counter("a", "b_c", "x")
        with pytest.raises(DuplicateMetricError):
            registry.register_counter("a_b", "c", "x")

    def test_failed_registration_leaves_no_trace(self, registry):
        with pytest.raises(InvalidLabelError):
            registry.register_counter("app", "bad", "Bad", ["le"])
        with pytest.raises(InvalidBucketsError):
            registry.register_histogram("app", "bad_h", "Bad", [], [2, 1])

        assert len(registry) == 0
        # The names are still free.
        registry.register_counter("app", "bad", "Now fine")
        registry.register_histogram("app", "bad_h", "Now fine", [], [1, 2])

    def test_histogram_rejects_le_label(self, registry):
        with pytest.raises(InvalidLabelError):
            registry.register_histogram("app", "h", "h", ["le"])

    def test_buckets_only_for_histograms(self, registry):
        with pytest.raises(InvalidBucketsError):
            registry.register("counter", "app", "c", "c", [], [1, 2])

    def test_lookup_and_unregister(self, registry):
        counter = registry.register_counter("app", "c_total", "c")

        assert registry.get("app", "c_total") is counter
        assert "app_c_total" in registry
        assert registry.get("app", "missing") is None

        assert registry.unregister("app", "c_total") is True
        assert registry.unregister("app", "c_total") is False
        assert "app_c_total" not in registry

    def test_families_sorted(self, registry):
        registry.register_gauge("b", "g", "g")
        registry.register_counter("a", "c", "c")
        assert [identity.fqname for identity in registry.families] == ["a_c", "b_g"]


class TestValidateBuckets:
    """Tests for bucket bound validation."""

    def test_none_selects_defaults(self):
        assert validate_buckets(None) == DEFAULT_BUCKETS

    def test_trailing_inf_dropped(self):
        assert validate_buckets([1, 2, math.inf]) == (1.0, 2.0)

    @pytest.mark.parametrize(
        "buckets",
        [[], [math.inf], [2, 1], [1, 1], [1, math.inf, 2], [float("nan")], ["a"], [True], "12"],
    )
    def test_invalid(self, buckets):
        with pytest.raises(InvalidBucketsError):
            validate_buckets(buckets)


# =============================================================================
# Collection
# =============================================================================


class TestCollect:
    """Tests for collect()."""

    def test_empty(self, registry):
        registry.register_counter("app", "c_total", "c")
        assert registry.collect() == []

    def test_families_ordered_by_name(self, registry):
        registry.register_gauge("zeta", "g", "g").set(1)
        registry.register_counter("alpha", "c_total", "c").inc()
        registry.register_histogram("mid", "h", "h", [], [1]).observe(0.5)

        assert [f.name for f in registry.collect()] == ["alpha_c_total", "mid_h", "zeta_g"]

    def test_samples_ordered_by_label_values(self, registry):
        counter = registry.register_counter("app", "c_total", "c", ["method", "endpoint"])
        for values in [("POST", "/b"), ("GET", "/z"), ("GET", "/a")]:
            counter.inc(values)

        family = registry.collect()[0]
        assert [s.label_values for s in family.samples] == [
            ("GET", "/a"),
            ("GET", "/z"),
            ("POST", "/b"),
        ]
        assert family.samples[0].labels == {"method": "GET", "endpoint": "/a"}

    def test_histogram_sample_layout(self, registry):
        histogram = registry.register_histogram("app", "latency", "Latency", ["method"], [0.5, 1.0])
        histogram.observe(0.7, ["POST"])
        histogram.observe(0.2, ["GET"])

        family = registry.collect()[0]
        layout = [(s.name, s.label_values, s.bound) for s in family.samples]
        assert layout == [
            ("app_latency_bucket", ("GET",), 0.5),
            ("app_latency_bucket", ("GET",), 1.0),
            ("app_latency_bucket", ("GET",), math.inf),
            ("app_latency_sum", ("GET",), None),
            ("app_latency_count", ("GET",), None),
            ("app_latency_bucket", ("POST",), 0.5),
            ("app_latency_bucket", ("POST",), 1.0),
            ("app_latency_bucket", ("POST",), math.inf),
            ("app_latency_sum", ("POST",), None),
            ("app_latency_count", ("POST",), None),
        ]

    def test_example_session(self, registry):
        """The canonical mixed-usage scenario renders every family."""
        requests = registry.register_counter("app", "requests_total", "Total requests", ["method", "endpoint"])
        requests.inc(["GET", "/api/users"])
        requests.inc(["POST", "/api/users"])
        requests.inc_by(5, ["GET", "/api/products"])

        users = registry.register_gauge("app", "active_users", "Active users", ["region"])
        users.set(150, ["europe"])
        users.set(200, ["asia"])
        users.inc(["europe"])
        users.dec(["asia"])
        users.inc_by(10, ["europe"])

        latency = registry.register_histogram(
            "app", "request_duration_seconds", "Latency", ["method"], [0.1, 0.5, 1.0, 2.0, 5.0]
        )
        for value, method in [(0.05, "GET"), (0.2, "GET"), (0.8, "POST"), (1.5, "POST"), (3.0, "DELETE")]:
            latency.observe(value, [method])

        values = {
            (s.name, s.label_values, s.bound): s.value
            for family in registry.collect()
            for s in family.samples
        }
        assert values[("app_requests_total", ("GET", "/api/products"), None)] == 5
        assert values[("app_active_users", ("europe",), None)] == 161
        assert values[("app_active_users", ("asia",), None)] == 199
        assert values[("app_request_duration_seconds_count", ("POST",), None)] == 2
        assert values[("app_request_duration_seconds_bucket", ("POST",), 1.0)] == 1
        assert values[("app_request_duration_seconds_bucket", ("DELETE",), 2.0)] == 0
        assert values[("app_request_duration_seconds_bucket", ("DELETE",), 5.0)] == 1

    def test_unregistered_records_skipped(self):
        storage = MemoryStorage()
        writer = CollectorRegistry(storage)
        writer.register_counter("app", "a_total", "a").inc()
        writer.register_counter("app", "b_total", "b").inc()

        reader = CollectorRegistry(storage)
        reader.register_counter("app", "a_total", "a")

        assert [f.name for f in reader.collect()] == ["app_a_total"]

    def test_other_process_values_visible(self):
        """Two registries with identical schemas share one view."""
        storage = MemoryStorage()
        first = CollectorRegistry(storage)
        second = CollectorRegistry(storage)
        first.get_or_register_counter("shared", "process_requests", "Requests", ["pid"]).inc(["1"])
        second.get_or_register_counter("shared", "process_requests", "Requests", ["pid"]).inc(["2"])

        family = first.collect()[0]
        assert [s.label_values for s in family.samples] == [("1",), ("2",)]

    def test_malformed_records_skipped(self, caplog):
        storage = MemoryStorage()
        registry = CollectorRegistry(storage)
        counter = registry.register_counter("app", "c_total", "c", ["method"])
        histogram = registry.register_histogram("app", "h", "h", [], [1.0])
        counter.inc(["GET"])

        storage.set_and_get("promstore/garbage", 1)
        storage.set_and_get("promstore/counter/app_c_total/!!!/value", 1)
        # Wrong arity: two label values for one label name.
        storage.set_and_get("promstore/counter/app_c_total/WyJhIiwiYiJd/value", 1)
        # Bucket bound not in the schema.
        storage.set_and_get("promstore/histogram/app_h/W10=/bucket:7.0", 1)
        # Non-numeric value written by foreign code.
        storage._data["promstore/counter/app_c_total/WyJQVVQiXQ==/value"] = "oops"

        with caplog.at_level(logging.WARNING, logger="promstore.registry"):
            families = registry.collect()

        assert [f.name for f in families] == ["app_c_total"]
        assert [(s.label_values, s.value) for s in families[0].samples] == [(("GET",), 1)]
        assert len(caplog.records) == 5
        histogram.observe(0.5)
        assert [f.name for f in registry.collect()] == ["app_c_total", "app_h"]

    def test_prefixes_isolate_registries(self):
        storage = MemoryStorage()
        one = CollectorRegistry(storage, prefix="one")
        two = CollectorRegistry(storage, prefix="two")
        one.register_counter("app", "c_total", "c").inc()
        two.register_counter("app", "c_total", "c").inc_by(5)

        assert one.collect()[0].samples[0].value == 1
        assert two.collect()[0].samples[0].value == 5

    def test_render_shortcut(self, registry):
        registry.register_counter("app", "c_total", "Count").inc()
        assert registry.render() == "# HELP app_c_total Count\n# TYPE app_c_total counter\napp_c_total 1\n"


# =============================================================================
# Wipe
# =============================================================================


class TestWipe:
    """Tests for wipe()."""

    def test_wipe_removes_samples_keeps_schemas(self, registry):
        counter = registry.register_counter("app", "c_total", "c", ["m"])
        gauge = registry.register_gauge("app", "g", "g")
        histogram = registry.register_histogram("app", "h", "h", [], [1.0])
        counter.inc(["x"])
        gauge.set(3)
        histogram.observe(0.5)

        assert registry.wipe() == 5  # counter, gauge, two buckets, sum
        assert registry.collect() == []
        assert len(registry) == 3

        counter.inc(["x"])
        assert registry.collect()[0].samples[0].value == 1

    def test_wipe_leaves_other_prefixes(self):
        storage = MemoryStorage()
        one = CollectorRegistry(storage, prefix="one")
        two = CollectorRegistry(storage, prefix="two")
        one.register_counter("app", "c_total", "c").inc()
        two.register_counter("app", "c_total", "c").inc()
        storage.set_and_get("unrelated", 42)

        one.wipe()

        assert one.collect() == []
        assert two.collect()[0].samples[0].value == 1
        assert storage.get("unrelated") == 42


# =============================================================================
# Configuration
# =============================================================================


class TestFromConfig:
    """Tests for building a registry from configuration."""

    def test_predefined_metrics(self, tmp_path):
        config = PromstoreConfig(
            storage="file",
            path=str(tmp_path / "m.json"),
            prefix="svc",
            metrics=[
                MetricDefinition(kind="counter", namespace="app", name="jobs_total", help="Jobs", labels=["queue"]),
                MetricDefinition(kind="histogram", namespace="app", name="job_seconds", help="Job time", buckets=[1, 10]),
            ],
        )
        registry = CollectorRegistry.from_config(config)

        assert registry.prefix == "svc"
        assert isinstance(registry.get("app", "jobs_total"), Counter)
        assert registry.get("app", "job_seconds").buckets == (1.0, 10.0, math.inf)

        registry.get("app", "jobs_total").inc(["default"])
        assert (tmp_path / "m.json").exists()
