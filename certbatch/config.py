"""Runtime settings: CLI flag, then environment, then default."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from certbatch.core.log import DEFAULT_LOG_LEVEL, LOG_LEVELS
from certbatch.core.parallel import default_worker_count
from certbatch.protocol.registry import SchemaRegistry


ENV_SCHEMA = "CERTBATCH_SCHEMA"
ENV_WORKERS = "CERTBATCH_WORKERS"
ENV_LOG_LEVEL = "CERTBATCH_LOG_LEVEL"


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Settings:
    schema_version: str
    max_workers: int
    log_level: str
    # True when the version came from a flag or the environment rather than the default.
    schema_pinned: bool = False


def resolve_log_level(flag: str | None, environ: Mapping[str, str] | None = None) -> str:
    env = os.environ if environ is None else environ
    level = (flag or env.get(ENV_LOG_LEVEL) or DEFAULT_LOG_LEVEL).lower()
    if level not in LOG_LEVELS:
        raise ConfigError(f"log level must be one of {', '.join(LOG_LEVELS)}, got {level!r}")
    return level


def resolve_settings(
    registry: SchemaRegistry,
    *,
    schema: str | None = None,
    workers: int | None = None,
    log_level: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    env = os.environ if environ is None else environ

    pinned = schema or env.get(ENV_SCHEMA)
    schema_version = pinned or registry.latest
    if schema_version not in registry:
        raise ConfigError(f"unknown schema version {schema_version!r} (known: {', '.join(registry.versions())})")

    if workers is None:
        raw = env.get(ENV_WORKERS)
        if raw:
            try:
                workers = int(raw)
            except ValueError:
                raise ConfigError(f"{ENV_WORKERS} must be an integer, got {raw!r}") from None
        else:
            workers = default_worker_count()
    if workers < 1:
        raise ConfigError("worker count must be >= 1")

    return Settings(
        schema_version=schema_version,
        max_workers=workers,
        log_level=resolve_log_level(log_level, env),
        schema_pinned=bool(pinned),
    )
