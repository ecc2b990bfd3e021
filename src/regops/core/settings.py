"""Runtime settings for the regops job subsystem.

Every interval, bound and cap the schedulers use is read from here so a
deployment can tune them with ``REGOPS_*`` environment variables or a
``.env`` file without touching code.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not runtime
    - **Environment-driven:** Reads from env vars and .env files
    - **Sensible defaults:** Matches the operator's historical behavior

Fields
──────
log_level / log_json              : structlog configuration
cron_sync_interval                : seconds between cron catch-up passes
ttl_sweep_interval                : seconds between TTL sweeps
max_missed_schedules              : catch-up cap per cron sync
max_concurrent_jobs               : dispatcher running slots
conflict_retries                  : optimistic-concurrency retry limit
requeue_after                     : delay before a "not yet" reconcile reruns
scan_workers / scan_queue_size    : bounded worker pool shape
finalizer_token                   : token that blocks physical deletion
external_registry_sync_schedule   : default cron for registry sync jobs

Tags:
    settings, configuration, pydantic, environment, regops-core

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RegopsSettings(BaseSettings):
    """Settings shared by the manager, schedulers and CLI."""

    model_config = SettingsConfigDict(
        env_prefix="REGOPS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    # ── Timers ───────────────────────────────────────────────────
    cron_sync_interval: float = Field(default=10.0, gt=0)
    ttl_sweep_interval: float = Field(default=10.0, gt=0)
    requeue_after: float = Field(default=5.0, ge=0)

    # ── Scheduling bounds ────────────────────────────────────────
    max_missed_schedules: int = Field(default=100, ge=1)
    max_concurrent_jobs: int = Field(default=1, ge=1)
    conflict_retries: int = Field(default=5, ge=1)

    # ── Worker pool ──────────────────────────────────────────────
    scan_workers: int = Field(default=4, ge=1)
    scan_queue_size: int = Field(default=16, ge=1)

    # ── Records ──────────────────────────────────────────────────
    finalizer_token: str = "regops.io/finalizer"
    external_registry_sync_schedule: str = "*/5 * * * *"


_settings_cache: dict[str, RegopsSettings] = {}


def get_settings(*, _force_reload: bool = False) -> RegopsSettings:
    """Load, validate, and cache a :class:`RegopsSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = RegopsSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Drop the cached settings (for testing)."""
    _settings_cache.clear()


__all__ = ["RegopsSettings", "get_settings", "clear_settings_cache"]
