"""Label validation and storage key encoding.

Every stored record is addressed by a key derived from the metric identity,
the ordered label values and a record tag::

    <prefix>/<kind>/<fqname>/<labels>/<tag>

``labels`` is the URL-safe base64 encoding of the JSON array of label
values, so arbitrary label values (including ``/``) round-trip unchanged.
``tag`` is ``value`` for counters and gauges, and ``sum`` or
``bucket:<bound>`` for histograms.

Example:
    >>> codec = LabelCodec("promstore")
    >>> identity = MetricIdentity("app", "requests_total", MetricType.COUNTER)
    >>> key = codec.encode(identity, ("GET",), VALUE_TAG)
    >>> codec.decode(key).label_values
    ('GET',)
"""

from __future__ import annotations

import base64
import binascii
import json
import math
import re
from dataclasses import dataclass
from typing import Any, Sequence

from promstore.exceptions import InvalidArgumentError, InvalidLabelError
from promstore.types import MetricIdentity, MetricType

METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

RESERVED_LABEL = "le"

VALUE_TAG = "value"
SUM_TAG = "sum"
BUCKET_TAG_PREFIX = "bucket:"

_SEPARATOR = "/"


# =============================================================================
# Validation
# =============================================================================


def validate_metric_name(namespace: str, name: str) -> str:
    """Validate a namespace/name pair and return the fully qualified name.

    Raises:
        InvalidArgumentError: If the composed name is not a valid metric name.
    """
    if not name:
        raise InvalidArgumentError("Metric name must not be empty", name)
    fqname = f"{namespace}_{name}" if namespace else name
    if not METRIC_NAME_RE.match(fqname):
        raise InvalidArgumentError(f"Invalid metric name: '{fqname}'", fqname)
    return fqname


def validate_label_names(label_names: Sequence[str]) -> tuple[str, ...]:
    """Validate user-supplied label names.

    Names must be non-empty, unique, valid Prometheus label names, must not
    use the reserved ``__`` prefix and must not be ``le``.

    Raises:
        InvalidLabelError: On any violation.
    """
    if isinstance(label_names, str):
        raise InvalidLabelError(
            f"Label names must be a sequence of strings, got string '{label_names}'"
        )
    names = tuple(label_names)
    seen: set[str] = set()
    for label in names:
        if not isinstance(label, str) or not label:
            raise InvalidLabelError(f"Label names must be non-empty strings: {label!r}")
        if not LABEL_NAME_RE.match(label):
            raise InvalidLabelError(f"Invalid label name: '{label}'")
        if label.startswith("__"):
            raise InvalidLabelError(f"Label name '{label}' uses the reserved '__' prefix")
        if label == RESERVED_LABEL:
            raise InvalidLabelError(f"Label name '{RESERVED_LABEL}' is reserved")
        if label in seen:
            raise InvalidLabelError(f"Duplicate label name: '{label}'")
        seen.add(label)
    return names


def validate_label_values(
    label_names: tuple[str, ...],
    label_values: Sequence[Any],
) -> tuple[str, ...]:
    """Check label value arity against the schema and normalize to strings.

    Raises:
        InvalidLabelError: If the number of values differs from the number of
            label names.
    """
    if isinstance(label_values, str):
        raise InvalidLabelError(
            f"Label values must be a sequence, got string '{label_values}'"
        )
    values = tuple(label_values)
    if len(values) != len(label_names):
        raise InvalidLabelError(
            f"Expected {len(label_names)} label values for {list(label_names)}, "
            f"got {len(values)}: {list(values)}"
        )
    return tuple(v if isinstance(v, str) else str(v) for v in values)


# =============================================================================
# Bucket bound text form
# =============================================================================


def format_bound(bound: float) -> str:
    """Render a bucket bound as its ``le`` label text."""
    if math.isinf(bound) and bound > 0:
        return "+Inf"
    return repr(float(bound))


def parse_bound(text: str) -> float:
    """Inverse of ``format_bound``."""
    return float(text)


# =============================================================================
# Key codec
# =============================================================================


@dataclass(frozen=True)
class DecodedKey:
    """Components recovered from a storage key."""

    kind: MetricType
    fqname: str
    label_values: tuple[str, ...]
    tag: str

    @property
    def bound(self) -> float | None:
        """Bucket bound for bucket records, otherwise None."""
        if not self.tag.startswith(BUCKET_TAG_PREFIX):
            return None
        return parse_bound(self.tag[len(BUCKET_TAG_PREFIX):])


class LabelCodec:
    """Encodes (identity, label values, tag) into storage keys and back."""

    def __init__(self, prefix: str) -> None:
        if not prefix or _SEPARATOR in prefix:
            raise InvalidArgumentError(
                f"Storage prefix must be non-empty and must not contain '{_SEPARATOR}'",
                prefix,
            )
        self._prefix = prefix

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def namespace_prefix(self) -> str:
        """Key prefix covering every record written through this codec."""
        return f"{self._prefix}{_SEPARATOR}"

    def family_prefix(self, identity: MetricIdentity) -> str:
        """Key prefix covering every record of one metric family."""
        return _SEPARATOR.join(
            (self._prefix, identity.kind.value, identity.fqname, "")
        )

    def encode(
        self,
        identity: MetricIdentity,
        label_values: tuple[str, ...],
        tag: str,
    ) -> str:
        payload = json.dumps(list(label_values), ensure_ascii=False, separators=(",", ":"))
        encoded = base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")
        return _SEPARATOR.join(
            (self._prefix, identity.kind.value, identity.fqname, encoded, tag)
        )

    def decode(self, key: str) -> DecodedKey:
        """Decode a storage key.

        Raises:
            ValueError: If the key was not produced by this codec.
        """
        parts = key.split(_SEPARATOR)
        if len(parts) != 5 or parts[0] != self._prefix:
            raise ValueError(f"Not a {self._prefix} key: {key!r}")
        _, kind, fqname, encoded, tag = parts

        try:
            payload = base64.urlsafe_b64decode(encoded.encode("ascii")).decode("utf-8")
            values = json.loads(payload)
        except (binascii.Error, UnicodeError, json.JSONDecodeError) as e:
            raise ValueError(f"Corrupt label segment in key {key!r}") from e
        if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
            raise ValueError(f"Label segment is not a list of strings in key {key!r}")

        decoded = DecodedKey(
            kind=MetricType.from_string(kind),
            fqname=fqname,
            label_values=tuple(values),
            tag=tag,
        )
        if tag not in (VALUE_TAG, SUM_TAG):
            # Raises ValueError for unknown tags or unparsable bounds.
            if decoded.bound is None:
                raise ValueError(f"Unknown record tag {tag!r} in key {key!r}")
        return decoded


def bucket_tag(bound: float) -> str:
    """Record tag for a histogram bucket."""
    return f"{BUCKET_TAG_PREFIX}{format_bound(bound)}"
