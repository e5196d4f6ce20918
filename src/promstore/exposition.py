"""Prometheus text exposition format (version 0.0.4).

Example output:
    # HELP app_requests_total Total requests
    # TYPE app_requests_total counter
    app_requests_total{method="GET",endpoint="/api/users"} 2

Rendering is a pure function of the collected families: no storage access,
deterministic for a given input.
"""

from __future__ import annotations

import math
from typing import Iterable

from promstore.labels import RESERVED_LABEL, format_bound
from promstore.types import MetricFamilySamples, Sample

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def escape_label_value(value: str) -> str:
    """Escape backslash, double quote and newline in a label value."""
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def escape_help(text: str) -> str:
    """Escape backslash and newline in HELP text."""
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def format_value(value: float) -> str:
    """Render a sample value.

    Integral values render without a fractional part (``2``), other finite
    values use the shortest round-tripping form (``0.85``, ``1e-09``).
    """
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if float(value).is_integer() and abs(value) < 1e16:
        return str(int(value))
    return repr(float(value))


def _format_labels(sample: Sample) -> str:
    parts = [
        f'{name}="{escape_label_value(value)}"'
        for name, value in zip(sample.label_names, sample.label_values)
    ]
    if sample.bound is not None:
        parts.append(f'{RESERVED_LABEL}="{format_bound(sample.bound)}"')
    if not parts:
        return ""
    return "{" + ",".join(parts) + "}"


def format_sample(sample: Sample) -> str:
    """Render one sample line (without trailing newline)."""
    return f"{sample.name}{_format_labels(sample)} {format_value(sample.value)}"


def render(families: Iterable[MetricFamilySamples]) -> str:
    """Render collected families in the text exposition format.

    Args:
        families: Families as returned by ``CollectorRegistry.collect()``.

    Returns:
        Exposition text, newline terminated; empty string for no families.
    """
    lines: list[str] = []
    for family in families:
        lines.append(f"# HELP {family.name} {escape_help(family.help)}")
        lines.append(f"# TYPE {family.name} {family.type.value}")
        lines.extend(format_sample(sample) for sample in family.samples)

    if not lines:
        return ""
    return "\n".join(lines) + "\n"
