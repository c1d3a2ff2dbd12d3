"""Centralized runtime settings with validation and effective-value reporting."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from pdf_size_chooser.core.utils import (
    env_float,
    env_int,
    env_int_list,
    env_optional_int,
    get_effective_cpu_count,
)

logger = logging.getLogger(__name__)

DEFAULT_QUALITY_LADDER: Tuple[int, ...] = (100, 75, 50, 25)
TASK_RUNNER_CHOICES = ("pool", "queue")


@dataclass(frozen=True)
class EngineSettings:
    """Policy knobs for the size-targeting engine.

    Defaults reproduce the shipped behaviour; tests construct instances
    directly to exercise extremes (a one-level ladder, a one-attempt gate).
    """

    quality_ladder: Tuple[int, ...] = DEFAULT_QUALITY_LADDER
    quality_step: int = 5
    max_attempts: int = 3
    quality_floor: int = 1
    default_quality: int = 75

    sample_percentage: float = 0.25
    min_sample_pages: int = 2
    max_sample_pages: int = 20
    whole_document_max_pages: int = 3
    sample_seed: Optional[int] = None
    sample_workers: int = 2
    sample_retries: int = 1

    image_floor_ratio: float = 0.15
    fixed_floor_ratio: float = 0.85

    analysis_timeout_sec: float = 10.0
    estimation_timeout_sec: float = 30.0
    gate_timeout_sec: float = 300.0
    backend_timeout_sec: float = 300.0
    max_backend_processes: int = 2


@dataclass(frozen=True)
class ServiceSettings:
    """Job-layer settings: workers, storage and upload limits."""

    temp_dir: Path = field(default_factory=lambda: Path("/tmp/pdf-jobs"))
    job_ttl_seconds: int = 3600
    cleanup_interval_seconds: int = 600
    async_workers: int = 2
    task_runner: str = "pool"
    max_upload_mb: float = 250.0


def _clamp_int(value: int, low: int, high: int, *, name: str, default: int) -> int:
    if value < low or value > high:
        logger.warning("[settings] %s=%s outside [%s, %s]; using %s", name, value, low, high, default)
        return default
    return value


def _auto_async_workers(effective_cpu: int) -> int:
    return max(1, min(3, effective_cpu // 2))


def _parse_ladder(raw: Tuple[int, ...]) -> Tuple[int, ...]:
    ladder = sorted({q for q in raw if 1 <= q <= 100}, reverse=True)
    if len(ladder) != len(raw):
        logger.warning("[settings] QUALITY_LADDER=%s contained duplicates or values outside 1-100", raw)
    if not ladder:
        logger.warning("[settings] Empty QUALITY_LADDER; using %s", DEFAULT_QUALITY_LADDER)
        return DEFAULT_QUALITY_LADDER
    return tuple(ladder)


@lru_cache(maxsize=1)
def get_engine_settings() -> EngineSettings:
    effective_cpu = get_effective_cpu_count()
    defaults = EngineSettings()

    max_attempts = max(1, env_int("MAX_ATTEMPTS", defaults.max_attempts))
    quality_floor = _clamp_int(
        env_int("QUALITY_FLOOR", defaults.quality_floor), 1, 100,
        name="QUALITY_FLOOR", default=defaults.quality_floor,
    )
    quality_step = max(1, env_int("QUALITY_STEP", defaults.quality_step))
    default_quality = _clamp_int(
        env_int("DEFAULT_QUALITY", defaults.default_quality), 1, 100,
        name="DEFAULT_QUALITY", default=defaults.default_quality,
    )

    sample_percentage = env_float("SAMPLE_PERCENTAGE", defaults.sample_percentage)
    if not 0.0 < sample_percentage <= 1.0:
        logger.warning("[settings] Invalid SAMPLE_PERCENTAGE=%s; using %s", sample_percentage, defaults.sample_percentage)
        sample_percentage = defaults.sample_percentage

    min_sample_pages = max(1, env_int("MIN_SAMPLE_PAGES", defaults.min_sample_pages))
    max_sample_pages = max(min_sample_pages, env_int("MAX_SAMPLE_PAGES", defaults.max_sample_pages))

    return EngineSettings(
        quality_ladder=_parse_ladder(env_int_list("QUALITY_LADDER", defaults.quality_ladder)),
        quality_step=quality_step,
        max_attempts=max_attempts,
        quality_floor=quality_floor,
        default_quality=default_quality,
        sample_percentage=sample_percentage,
        min_sample_pages=min_sample_pages,
        max_sample_pages=max_sample_pages,
        sample_seed=env_optional_int("SAMPLE_SEED"),
        sample_workers=max(1, env_int("SAMPLE_WORKERS", defaults.sample_workers)),
        sample_retries=max(0, env_int("SAMPLE_RETRIES", defaults.sample_retries)),
        analysis_timeout_sec=max(1.0, env_float("ANALYSIS_TIMEOUT_SEC", defaults.analysis_timeout_sec)),
        estimation_timeout_sec=max(1.0, env_float("ESTIMATION_TIMEOUT_SEC", defaults.estimation_timeout_sec)),
        gate_timeout_sec=max(1.0, env_float("GATE_TIMEOUT_SEC", defaults.gate_timeout_sec)),
        backend_timeout_sec=max(1.0, env_float("BACKEND_TIMEOUT_SEC", defaults.backend_timeout_sec)),
        max_backend_processes=max(1, env_int("MAX_BACKEND_PROCESSES", min(4, effective_cpu))),
    )


@lru_cache(maxsize=1)
def get_service_settings() -> ServiceSettings:
    effective_cpu = get_effective_cpu_count()
    defaults = ServiceSettings()

    task_runner = (os.environ.get("TASK_RUNNER") or defaults.task_runner).strip().lower()
    if task_runner not in TASK_RUNNER_CHOICES:
        logger.warning("[settings] Invalid TASK_RUNNER=%s; using %s", task_runner, defaults.task_runner)
        task_runner = defaults.task_runner

    raw_workers = env_optional_int("ASYNC_WORKERS")
    async_workers = raw_workers if raw_workers and raw_workers > 0 else _auto_async_workers(effective_cpu)

    return ServiceSettings(
        temp_dir=Path(os.environ.get("TEMP_DIR") or str(defaults.temp_dir)),
        job_ttl_seconds=max(60, env_int("JOB_TTL_SECONDS", defaults.job_ttl_seconds)),
        cleanup_interval_seconds=max(10, env_int("CLEANUP_INTERVAL_SECONDS", defaults.cleanup_interval_seconds)),
        async_workers=async_workers,
        task_runner=task_runner,
        max_upload_mb=max(1.0, env_float("MAX_UPLOAD_MB", defaults.max_upload_mb)),
    )


def describe_effective_settings(
    engine_settings: Optional[EngineSettings] = None,
    service_settings: Optional[ServiceSettings] = None,
) -> Dict[str, Any]:
    """Effective configuration in JSON-friendly form for startup logs."""
    engine = asdict(engine_settings or get_engine_settings())
    service = asdict(service_settings or get_service_settings())
    service["temp_dir"] = str(service["temp_dir"])
    engine["quality_ladder"] = list(engine["quality_ladder"])
    return {"engine": engine, "service": service}
