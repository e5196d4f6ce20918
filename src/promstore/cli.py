"""Command-line interface for promstore.

The CLI works on the metric families declared in a configuration file, so
shell scripts and cron jobs can feed the same shared storage as the
application processes, and the accumulated view can be rendered from any
process.
"""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer

from promstore.config import PromstoreConfig, load_config
from promstore.exceptions import PromstoreError
from promstore.metrics import Counter, Gauge, Histogram, Metric
from promstore.registry import CollectorRegistry

app = typer.Typer(
    name="promstore",
    help="Shared, multi-process Prometheus metrics storage",
    add_completion=False,
)

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Configuration file (YAML or JSON)"),
]
LabelOption = Annotated[
    Optional[list[str]],
    typer.Option("--label", "-l", help="Label value, repeat in label-name order"),
]


def _load(config_path: Optional[Path]) -> tuple[PromstoreConfig, CollectorRegistry]:
    config = load_config(config_path)
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return config, CollectorRegistry.from_config(config)


def _fail(error: Exception) -> None:
    typer.echo(f"Error: {error}", err=True)
    raise typer.Exit(1)


def _metric(config: PromstoreConfig, registry: CollectorRegistry, fqname: str) -> Metric:
    definition = config.find_metric(fqname)
    metric = registry.get(definition.namespace, definition.name) if definition else None
    if metric is None:
        typer.echo(f"Error: Metric not defined in configuration: {fqname}", err=True)
        raise typer.Exit(1)
    return metric


@app.command(name="render")
def render_cmd(
    config: ConfigOption = None,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write to this file instead of stdout"),
    ] = None,
) -> None:
    """Render all configured families in the text exposition format."""
    try:
        _, registry = _load(config)
        text = registry.render()
    except PromstoreError as e:
        _fail(e)

    if output is None:
        typer.echo(text, nl=False)
    else:
        output.write_text(text, encoding="utf-8")
        typer.echo(f"Metrics written to {output}")


@app.command(name="families")
def families_cmd(config: ConfigOption = None) -> None:
    """List configured metric families."""
    try:
        _, registry = _load(config)
    except PromstoreError as e:
        _fail(e)

    for identity in registry.families:
        metric = registry.get(identity.namespace, identity.name)
        labels = ",".join(metric.label_names) if metric else ""
        typer.echo(f"{identity.fqname}\t{identity.kind.value}\t{labels}")


@app.command(name="wipe")
def wipe_cmd(
    config: ConfigOption = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
) -> None:
    """Remove every stored value under the configured prefix."""
    try:
        cfg, registry = _load(config)
    except PromstoreError as e:
        _fail(e)

    if not yes:
        typer.confirm(f"Wipe all metrics under prefix '{cfg.prefix}'?", abort=True)
    try:
        removed = registry.wipe()
    except PromstoreError as e:
        _fail(e)
    typer.echo(f"Removed {removed} records")


@app.command(name="inc")
def inc_cmd(
    metric: Annotated[str, typer.Argument(help="Fully qualified metric name")],
    amount: Annotated[float, typer.Argument(help="Amount to add")] = 1.0,
    label: LabelOption = None,
    config: ConfigOption = None,
) -> None:
    """Increment a counter or gauge."""
    try:
        cfg, registry = _load(config)
        handle = _metric(cfg, registry, metric)
        if not isinstance(handle, (Counter, Gauge)):
            raise typer.BadParameter(f"{metric} is a {handle.type.value}, not a counter or gauge")
        value = handle.inc_by(amount, label or [])
    except PromstoreError as e:
        _fail(e)
    typer.echo(f"{metric} = {value:g}")


@app.command(name="set")
def set_cmd(
    metric: Annotated[str, typer.Argument(help="Fully qualified gauge name")],
    value: Annotated[float, typer.Argument(help="New value")],
    label: LabelOption = None,
    config: ConfigOption = None,
) -> None:
    """Set a gauge."""
    try:
        cfg, registry = _load(config)
        handle = _metric(cfg, registry, metric)
        if not isinstance(handle, Gauge):
            raise typer.BadParameter(f"{metric} is a {handle.type.value}, not a gauge")
        handle.set(value, label or [])
    except PromstoreError as e:
        _fail(e)
    typer.echo(f"{metric} = {value:g}")


@app.command(name="observe")
def observe_cmd(
    metric: Annotated[str, typer.Argument(help="Fully qualified histogram name")],
    value: Annotated[float, typer.Argument(help="Observed value")],
    label: LabelOption = None,
    config: ConfigOption = None,
) -> None:
    """Record one histogram observation."""
    try:
        cfg, registry = _load(config)
        handle = _metric(cfg, registry, metric)
        if not isinstance(handle, Histogram):
            raise typer.BadParameter(f"{metric} is a {handle.type.value}, not a histogram")
        handle.observe(value, label or [])
    except PromstoreError as e:
        _fail(e)
    typer.echo(f"{metric} observed {value:g}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
