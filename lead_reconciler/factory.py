"""Factory helpers for constructing pipeline collaborators from configuration."""
from __future__ import annotations

import importlib
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .config import ConfigurationError, PipelineSettings, section
from .identity import IdentityResolver
from .orchestrator import BatchOrchestrator, UploadService
from .progress import LoggingSink, NotificationSink, ProgressReporter
from .rate_limit import DelayPolicy, RateLimitedStore, RateLimiter
from .reconciler import RecordReconciler
from .store import InMemoryStore

LOGGER = logging.getLogger(__name__)


def _load_class(path: str):
    module_name, _, attr = path.rpartition(".")
    if not module_name:
        raise ConfigurationError(f"Invalid class path '{path}'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Module '{module_name}' could not be imported: {exc}") from exc
    try:
        return getattr(module, attr)
    except AttributeError as exc:
        raise ConfigurationError(f"Module '{module_name}' does not define '{attr}'") from exc


def build_settings(config: Dict[str, Any]) -> PipelineSettings:
    return PipelineSettings.from_mapping(section(config, "pipeline"))


def build_sink(config: Dict[str, Any]) -> NotificationSink:
    """Instantiate the notification sink named in the configuration."""

    sink_cfg = section(config, "notifications")
    class_path = sink_cfg.get("class")
    if not class_path or not sink_cfg.get("enabled", True):
        LOGGER.debug("No notification sink enabled, logging notifications instead")
        return LoggingSink()
    sink_cls = _load_class(class_path)
    return sink_cls(**(sink_cfg.get("options") or {}))


def build_store(config: Dict[str, Any], snapshot: Optional[Union[str, Path]] = None):
    """Load the store snapshot and wrap it with the configured rate limiting."""

    store = InMemoryStore.load_snapshot(snapshot) if snapshot else InMemoryStore()
    store_cfg = section(config, "store")
    delay_seconds = float(store_cfg.get("delay_seconds", 0) or 0)
    calls_per_minute = store_cfg.get("rate_limit_per_minute")
    if not delay_seconds and not calls_per_minute:
        return store
    return RateLimitedStore(
        store,
        delay_policy=DelayPolicy(delay_seconds=delay_seconds),
        rate_limiter=RateLimiter(float(calls_per_minute)) if calls_per_minute else RateLimiter(None),
    )


def build_upload_service(
    config: Dict[str, Any],
    store,
    *,
    sink: Optional[NotificationSink] = None,
) -> UploadService:
    """Wire reconciler, orchestrator, and reporter around ``store``."""

    settings = build_settings(config)
    reporter = ProgressReporter(
        sink or build_sink(config),
        progress_threshold=settings.progress_threshold,
        progress_interval=settings.progress_interval,
    )
    reconciler = RecordReconciler(store, IdentityResolver(store))
    orchestrator = BatchOrchestrator(reconciler, settings=settings, reporter=reporter)
    return UploadService(store, orchestrator)


__all__ = ["build_settings", "build_sink", "build_store", "build_upload_service"]
