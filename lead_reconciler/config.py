"""Configuration helpers for the reconciliation pipeline."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from .models import ReconciliationError

LOGGER = logging.getLogger(__name__)


class ConfigurationError(ReconciliationError):
    """Raised when configuration files are missing or malformed."""


_SUPPORTED_EXTENSIONS = {".json", ".yaml", ".yml"}


def load_configuration(path: str | Path) -> Dict[str, Any]:
    """Load configuration data from a JSON or YAML file."""

    file_path = Path(path)
    if not file_path.exists():
        raise ConfigurationError(f"Configuration file '{file_path}' was not found")

    if file_path.suffix.lower() not in _SUPPORTED_EXTENSIONS:
        raise ConfigurationError(
            f"Unsupported configuration format '{file_path.suffix}'. Supported extensions: {sorted(_SUPPORTED_EXTENSIONS)}"
        )

    text = file_path.read_text(encoding="utf-8")
    try:
        if file_path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Configuration file '{file_path}' could not be parsed: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file '{file_path}' must contain a mapping at the top level")
    return data


@dataclass(frozen=True)
class PipelineSettings:
    """Tunable constants for batching, concurrency, pacing, and progress reporting."""

    batch_size: int = 50
    concurrency_limit: int = 5
    inter_batch_delay_seconds: float = 0.5
    retry_delay_seconds: float = 0.2
    progress_threshold: int = 100
    progress_interval: int = 100

    def __post_init__(self) -> None:
        if self.batch_size < 2:
            raise ConfigurationError("batch_size must be at least 2")
        if not 1 <= self.concurrency_limit < self.batch_size:
            raise ConfigurationError(
                f"concurrency_limit must be between 1 and batch_size - 1 (got {self.concurrency_limit} for batch size {self.batch_size})"
            )
        if self.inter_batch_delay_seconds < 0 or self.retry_delay_seconds < 0:
            raise ConfigurationError("Delays cannot be negative")
        if self.progress_interval < 1:
            raise ConfigurationError("progress_interval must be positive")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any] | None) -> "PipelineSettings":
        values = dict(values or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            LOGGER.warning("Ignoring unknown pipeline settings: %s", ", ".join(unknown))
        try:
            return cls(**{name: values[name] for name in known if values.get(name) is not None})
        except TypeError as exc:
            raise ConfigurationError(f"Invalid pipeline settings: {exc}") from exc


def section(config: Mapping[str, Any], name: str) -> Dict[str, Any]:
    value = config.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Configuration section '{name}' must be a mapping")
    return value


__all__ = ["ConfigurationError", "PipelineSettings", "load_configuration", "section"]
