"""
Store configuration (``batch_kernel.config``).

Responsibility
--------------
Defines the settings needed to build an execution history store and loads
them from a YAML file or from ``BATCH_KERNEL_*`` environment variables.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Consumed by
``batch_kernel.bootstrap``; has no dependency on services or selectors.

Invariants enforced
-------------------
* Every loaded settings object is a frozen ``StoreSettings`` that has been
  validated (known context format, known charset, non-empty URL).
* Unknown keys are rejected rather than ignored, so a typo never silently
  falls back to a default.

Failure modes
-------------
* Missing YAML file, non-mapping root, unknown key, bad value
  -> ``ConfigurationError`` naming the source.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import codecs
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from batch_kernel import fields as f
from batch_kernel.exceptions import ConfigurationError

ENV_PREFIX = "BATCH_KERNEL_"

CONTEXT_FORMATS = ("document", "string")


@dataclass(frozen=True)
class StoreSettings:
    """Connection, collection and codec settings for one history store."""

    database_url: str = "sqlite:///batch_history.db"
    job_collection: str = f.DEFAULT_JOB_COLLECTION
    counter_collection: str = f.DEFAULT_COUNTER_COLLECTION
    context_format: str = "document"
    context_charset: str = "utf-8"
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    busy_timeout: float = 30.0

    def __post_init__(self) -> None:
        if not self.database_url:
            raise ConfigurationError("database_url must not be empty")
        if not self.job_collection or not self.counter_collection:
            raise ConfigurationError("collection names must not be empty")
        if self.job_collection == self.counter_collection:
            raise ConfigurationError("job and counter collections must differ")
        if self.context_format not in CONTEXT_FORMATS:
            raise ConfigurationError(
                f"context_format must be one of {', '.join(CONTEXT_FORMATS)}, "
                f"got {self.context_format!r}"
            )
        try:
            codecs.lookup(self.context_charset)
        except LookupError as exc:
            raise ConfigurationError(f"unknown charset {self.context_charset!r}") from exc

    def with_overrides(self, **overrides: Any) -> StoreSettings:
        return replace(self, **overrides)


_FIELD_TYPES = {field.name: field.type for field in fields(StoreSettings)}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _coerce(name: str, value: Any, source: str) -> Any:
    expected = _FIELD_TYPES[name]
    try:
        if expected == "bool":
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in _TRUE:
                return True
            if text in _FALSE:
                return False
            raise ValueError(f"not a boolean: {value!r}")
        if expected == "int":
            if isinstance(value, bool):
                raise ValueError(f"not an integer: {value!r}")
            return int(value)
        if expected == "float":
            return float(value)
        return str(value)
    except ValueError as exc:
        raise ConfigurationError(f"invalid value for {name}: {exc}", source=source) from exc


def settings_from_mapping(data: Mapping[str, Any], source: str = "<mapping>") -> StoreSettings:
    """
    Build settings from a flat mapping of field name to value.

    Raises:
        ConfigurationError: unknown key or invalid value.
    """
    unknown = sorted(set(data) - set(_FIELD_TYPES))
    if unknown:
        raise ConfigurationError(f"unknown settings: {', '.join(unknown)}", source=source)
    values = {name: _coerce(name, value, source) for name, value in data.items() if value is not None}
    try:
        return StoreSettings(**values)
    except ConfigurationError as exc:
        raise ConfigurationError(str(exc), source=source) from exc


def load_settings(path: str | Path) -> StoreSettings:
    """
    Load settings from a YAML file.

    The file holds a mapping of settings, optionally nested under a top-level
    ``batch_kernel`` key::

        batch_kernel:
          database_url: postgresql+psycopg2://batch@db/history
          context_format: string
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError("settings file not found", source=str(path))
    with open(path, encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if isinstance(data, Mapping) and set(data) == {"batch_kernel"}:
        data = data["batch_kernel"] or {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(
            f"settings root must be a mapping, got {type(data).__name__}", source=str(path)
        )
    return settings_from_mapping(data, source=str(path))


def settings_from_env(environ: Mapping[str, str] | None = None) -> StoreSettings:
    """
    Build settings from ``BATCH_KERNEL_<FIELD>`` variables.

    Variables that are not set keep their defaults; unrelated
    ``BATCH_KERNEL_*`` variables are rejected like unknown YAML keys.
    """
    environ = os.environ if environ is None else environ
    data = {
        key[len(ENV_PREFIX):].lower(): value
        for key, value in environ.items()
        if key.startswith(ENV_PREFIX)
    }
    return settings_from_mapping(data, source="environment")
