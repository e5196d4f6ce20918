"""Configuration loading for promstore.

Configuration is layered, later sources overriding earlier ones:

1. Defaults (``PromstoreConfig`` field defaults)
2. A YAML or JSON file
3. ``PROMSTORE_*`` environment variables

Example file::

    storage: file
    path: /run/myapp/metrics.json
    prefix: myapp
    metrics:
      - kind: counter
        namespace: app
        name: requests_total
        help: Total requests
        labels: [method, endpoint]
      - kind: histogram
        namespace: app
        name: request_duration_seconds
        help: Request latency
        labels: [method]
        buckets: [0.1, 0.5, 1.0, 2.0, 5.0]

Example environment::

    PROMSTORE_STORAGE=file
    PROMSTORE_PATH=/run/myapp/metrics.json
    PROMSTORE_LOCK_TIMEOUT=0.5
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from promstore.exceptions import ConfigError
from promstore.types import MetricType

logger = logging.getLogger(__name__)

ENV_PREFIX = "PROMSTORE"
CONFIG_PATH_ENV = f"{ENV_PREFIX}_CONFIG"


@dataclass
class MetricDefinition:
    """A metric family declared in configuration.

    Attributes:
        kind: ``counter``, ``gauge`` or ``histogram``.
        namespace: Name prefix.
        name: Metric name.
        help: HELP text.
        labels: Ordered label names.
        buckets: Histogram bucket bounds (None for the defaults).
    """

    kind: str
    namespace: str
    name: str
    help: str = ""
    labels: list[str] = field(default_factory=list)
    buckets: list[float] | None = None

    @property
    def fqname(self) -> str:
        return f"{self.namespace}_{self.name}" if self.namespace else self.name

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MetricDefinition":
        if not isinstance(data, Mapping):
            raise ConfigError(f"Metric definition must be a mapping, got {data!r}")
        unknown = set(data) - {f.name for f in fields(cls)}
        if unknown:
            raise ConfigError(f"Unknown metric definition keys: {sorted(unknown)}")
        for required in ("kind", "name"):
            if required not in data:
                raise ConfigError(f"Metric definition is missing '{required}': {dict(data)}")
        try:
            MetricType.from_string(str(data["kind"]))
        except ValueError as e:
            raise ConfigError(str(e)) from None

        labels = data.get("labels") or []
        if not isinstance(labels, list):
            raise ConfigError(f"'labels' must be a list in metric '{data['name']}'")
        buckets = data.get("buckets")
        if buckets is not None and not isinstance(buckets, list):
            raise ConfigError(f"'buckets' must be a list in metric '{data['name']}'")

        return cls(
            kind=str(data["kind"]),
            namespace=str(data.get("namespace") or ""),
            name=str(data["name"]),
            help=str(data.get("help") or ""),
            labels=[str(label) for label in labels],
            buckets=buckets,
        )


@dataclass
class PromstoreConfig:
    """Runtime configuration.

    Attributes:
        storage: Storage backend name (``memory`` or ``file``).
        path: Document path for file storage.
        prefix: Registry key namespace inside the storage.
        lock_strategy: File lock strategy (``auto``, ``fcntl``,
            ``filelock``, ``none``).
        lock_timeout: Seconds to wait for the file lock per attempt.
        max_attempts: Lock attempts before StorageContentionError.
        log_level: Logging level name used by the CLI.
        metrics: Predefined metric families.
    """

    storage: str = "memory"
    path: str = ".promstore/metrics.json"
    prefix: str = "promstore"
    lock_strategy: str = "auto"
    lock_timeout: float = 1.0
    max_attempts: int = 10
    log_level: str = "WARNING"
    metrics: list[MetricDefinition] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigError: On invalid values.
        """
        if not self.prefix or "/" in self.prefix:
            raise ConfigError(f"Invalid prefix: '{self.prefix}'")
        if self.lock_timeout < 0:
            raise ConfigError("lock_timeout must not be negative")
        if self.max_attempts < 1:
            raise ConfigError("max_attempts must be at least 1")
        if logging.getLevelName(self.log_level.upper()) == f"Level {self.log_level.upper()}":
            raise ConfigError(f"Unknown log level: '{self.log_level}'")

        seen: set[str] = set()
        for definition in self.metrics:
            if definition.fqname in seen:
                raise ConfigError(f"Metric '{definition.fqname}' defined more than once")
            seen.add(definition.fqname)

    def storage_options(self) -> dict[str, Any]:
        """Keyword arguments for ``create_storage(self.storage, ...)``."""
        if self.storage.lower() in ("file", "filesystem"):
            return {
                "path": self.path,
                "lock_strategy": self.lock_strategy,
                "lock_timeout": self.lock_timeout,
                "max_attempts": self.max_attempts,
            }
        return {}

    def find_metric(self, fqname: str) -> MetricDefinition | None:
        for definition in self.metrics:
            if definition.fqname == fqname:
                return definition
        return None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PromstoreConfig":
        known = {f.name: f for f in fields(cls)}
        unknown = set(data) - set(known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {sorted(unknown)}")

        values: dict[str, Any] = {}
        for name, value in data.items():
            if name == "metrics":
                if not isinstance(value, list):
                    raise ConfigError("'metrics' must be a list")
                values[name] = [MetricDefinition.from_dict(item) for item in value]
            else:
                values[name] = _coerce(name, value, type(getattr(_DEFAULTS, name)))
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _coerce(name: str, value: Any, target: type) -> Any:
    """Convert a raw file or environment value to the field's type."""
    try:
        if target is float:
            return float(value)
        if target is int:
            if isinstance(value, bool):
                raise ValueError(value)
            return int(value)
        return str(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid value for '{name}': {value!r}") from None


# =============================================================================
# Sources
# =============================================================================


def load_file(path: str | Path) -> dict[str, Any]:
    """Load a YAML or JSON configuration file.

    Raises:
        ConfigError: If the file is missing, unreadable or malformed.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
        suffix = path.suffix.lower()
        if suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content) or {}
        elif suffix == ".json":
            data = json.loads(content)
        else:
            raise ConfigError(f"Unsupported configuration format: {suffix}")
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to load configuration {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration root must be a mapping: {path}")
    return data


def load_env(env: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Read ``PROMSTORE_*`` variables into a flat dict of config fields.

    ``PROMSTORE_CONFIG`` (the file location) and variables that do not name
    a scalar field are ignored.
    """
    env = os.environ if env is None else env
    prefix = f"{ENV_PREFIX}_"
    scalar_fields = {f.name for f in fields(PromstoreConfig)} - {"metrics"}

    result: dict[str, Any] = {}
    for key, value in env.items():
        if not key.startswith(prefix) or key == CONFIG_PATH_ENV:
            continue
        name = key[len(prefix):].lower()
        if name in scalar_fields:
            result[name] = value
        else:
            logger.debug("Ignoring unknown environment variable %s", key)
    return result


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> PromstoreConfig:
    """Load configuration from defaults, an optional file and the environment.

    Args:
        path: Configuration file. Falls back to ``$PROMSTORE_CONFIG``.
        env: Environment mapping (defaults to ``os.environ``).

    Raises:
        ConfigError: On missing files or invalid values.
    """
    env = os.environ if env is None else env
    if path is None:
        path = env.get(CONFIG_PATH_ENV) or None

    data: dict[str, Any] = {}
    if path is not None:
        data.update(load_file(path))
        logger.debug("Loaded configuration from %s", path)
    data.update(load_env(env))
    return PromstoreConfig.from_dict(data)


_DEFAULTS = PromstoreConfig()
