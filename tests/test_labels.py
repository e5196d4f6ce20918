"""Tests for label validation and storage key encoding."""

from __future__ import annotations

import math

import pytest

from promstore.exceptions import InvalidArgumentError, InvalidLabelError
from promstore.labels import (
    SUM_TAG,
    VALUE_TAG,
    LabelCodec,
    bucket_tag,
    format_bound,
    parse_bound,
    validate_label_names,
    validate_label_values,
    validate_metric_name,
)
from promstore.types import MetricIdentity, MetricType


# =============================================================================
# Validation
# =============================================================================


class TestValidateMetricName:
    """Tests for metric name validation."""

    def test_namespace_and_name_are_joined(self):
        assert validate_metric_name("app", "requests_total") == "app_requests_total"

    def test_empty_namespace(self):
        assert validate_metric_name("", "up") == "up"

    def test_colons_allowed(self):
        assert validate_metric_name("job", "rule:rate5m") == "job_rule:rate5m"

    @pytest.mark.parametrize("name", ["", "1abc", "has-dash", "has space", "a/b"])
    def test_invalid_names(self, name):
        with pytest.raises(InvalidArgumentError):
            validate_metric_name("", name)


class TestValidateLabelNames:
    """Tests for label name validation."""

    def test_valid_names_keep_order(self):
        assert validate_label_names(["method", "endpoint"]) == ("method", "endpoint")

    def test_empty_sequence(self):
        assert validate_label_names([]) == ()

    def test_reserved_le(self):
        with pytest.raises(InvalidLabelError, match="reserved"):
            validate_label_names(["method", "le"])

    def test_double_underscore_prefix(self):
        with pytest.raises(InvalidLabelError):
            validate_label_names(["__name__"])

    def test_duplicate(self):
        with pytest.raises(InvalidLabelError, match="Duplicate"):
            validate_label_names(["method", "method"])

    def test_empty_name(self):
        with pytest.raises(InvalidLabelError):
            validate_label_names([""])

    def test_invalid_characters(self):
        with pytest.raises(InvalidLabelError):
            validate_label_names(["content-type"])

    def test_bare_string_rejected(self):
        """A string is a sequence of characters, not of label names."""
        with pytest.raises(InvalidLabelError):
            validate_label_names("method")


class TestValidateLabelValues:
    """Tests for label value arity checks."""

    def test_matching_arity(self):
        assert validate_label_values(("a", "b"), ["x", "y"]) == ("x", "y")

    def test_non_strings_are_stringified(self):
        assert validate_label_values(("pid",), [4242]) == ("4242",)

    def test_too_few(self):
        with pytest.raises(InvalidLabelError, match="Expected 2"):
            validate_label_values(("a", "b"), ["x"])

    def test_too_many(self):
        with pytest.raises(InvalidLabelError):
            validate_label_values((), ["x"])

    def test_bare_string_rejected(self):
        with pytest.raises(InvalidLabelError):
            validate_label_values(("a",), "x")


# =============================================================================
# Bounds
# =============================================================================


class TestBounds:
    """Tests for bucket bound text form."""

    @pytest.mark.parametrize(
        "bound,text",
        [(0.1, "0.1"), (1.0, "1.0"), (5, "5.0"), (0.005, "0.005"), (math.inf, "+Inf")],
    )
    def test_format(self, bound, text):
        assert format_bound(bound) == text

    def test_parse_inf(self):
        assert parse_bound("+Inf") == math.inf

    def test_parse_is_exact(self):
        assert parse_bound(format_bound(0.1 + 0.2)) == 0.1 + 0.2


# =============================================================================
# Codec
# =============================================================================


class TestLabelCodec:
    """Tests for storage key encoding."""

    @pytest.fixture
    def codec(self) -> LabelCodec:
        return LabelCodec("promstore")

    @pytest.fixture
    def identity(self) -> MetricIdentity:
        return MetricIdentity("app", "requests_total", MetricType.COUNTER)

    def test_key_starts_with_namespace_prefix(self, codec, identity):
        key = codec.encode(identity, ("GET",), VALUE_TAG)
        assert key.startswith(codec.namespace_prefix)
        assert key.startswith(codec.family_prefix(identity))

    def test_decode_recovers_components(self, codec, identity):
        key = codec.encode(identity, ("GET", "/api/users"), VALUE_TAG)
        decoded = codec.decode(key)

        assert decoded.kind is MetricType.COUNTER
        assert decoded.fqname == "app_requests_total"
        assert decoded.label_values == ("GET", "/api/users")
        assert decoded.tag == VALUE_TAG
        assert decoded.bound is None

    def test_awkward_label_values(self, codec, identity):
        values = ('a/b"c\\d', "line\nbreak", "ünïcode", "")
        decoded = codec.decode(codec.encode(identity, values, VALUE_TAG))
        assert decoded.label_values == values

    def test_bucket_tag(self, codec):
        identity = MetricIdentity("app", "latency", MetricType.HISTOGRAM)
        decoded = codec.decode(codec.encode(identity, (), bucket_tag(0.5)))
        assert decoded.bound == 0.5

        decoded = codec.decode(codec.encode(identity, (), bucket_tag(math.inf)))
        assert decoded.bound == math.inf

    def test_sum_tag(self, codec):
        identity = MetricIdentity("app", "latency", MetricType.HISTOGRAM)
        decoded = codec.decode(codec.encode(identity, ("x",), SUM_TAG))
        assert decoded.tag == SUM_TAG

    def test_distinct_label_sets_have_distinct_keys(self, codec, identity):
        assert codec.encode(identity, ("a", "b"), VALUE_TAG) != codec.encode(
            identity, ("a/b",), VALUE_TAG
        )

    @pytest.mark.parametrize(
        "key",
        [
            "other/counter/x/W10=/value",
            "promstore/counter/x/W10=",
            "promstore/widget/x/W10=/value",
            "promstore/counter/x/!!!/value",
            "promstore/counter/x/e30=/value",  # {} instead of a list
            "promstore/counter/x/W10=/bogus",
            "promstore/histogram/x/W10=/bucket:abc",
        ],
    )
    def test_decode_rejects_foreign_keys(self, codec, key):
        with pytest.raises(ValueError):
            codec.decode(key)

    @pytest.mark.parametrize("prefix", ["", "a/b"])
    def test_invalid_prefix(self, prefix):
        with pytest.raises(InvalidArgumentError):
            LabelCodec(prefix)
