"""Shared utility functions for the size-targeting service.

Contains:
- env_int / env_float / env_int_list: environment parsing
- get_effective_cpu_count: CPU budget that respects cgroup quotas
- decimal size helpers (1 MB = 1,000,000 bytes, matching what platforms
  such as Gmail and Slack use for attachment limits)
"""

import logging
import math
import os
from pathlib import Path
from typing import Optional, Tuple

# Decimal (SI) units
KB: int = 1000
MB: int = 1000 * 1000
GB: int = 1000 * 1000 * 1000

logger = logging.getLogger(__name__)


def env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("[settings] Invalid %s=%s; using %s", name, raw, default)
        return default


def env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("[settings] Invalid %s=%s; using %s", name, raw, default)
        return default


def env_optional_int(name: str) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("[settings] Invalid %s=%s; ignoring", name, raw)
        return None


def env_int_list(name: str, default: Tuple[int, ...]) -> Tuple[int, ...]:
    """Parse a comma-separated list of integers (e.g. ``100,75,50,25``)."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    values = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            values.append(int(part))
        except ValueError:
            logger.warning("[settings] Invalid %s=%s; using %s", name, raw, default)
            return default
    return tuple(values) or default


def get_effective_cpu_count(default: int = 1) -> int:
    """Return effective CPU count, respecting cgroup quotas when present."""
    host_count = os.cpu_count() or default
    try:
        affinity = os.sched_getaffinity(0)
        if affinity:
            host_count = min(host_count, len(affinity))
    except (AttributeError, OSError):
        pass

    # cgroup v2
    cpu_max = Path("/sys/fs/cgroup/cpu.max")
    if cpu_max.exists():
        try:
            quota_str, period_str = cpu_max.read_text().strip().split()[:2]
            if quota_str != "max":
                quota = int(quota_str)
                period = int(period_str)
                if quota > 0 and period > 0:
                    host_count = min(host_count, max(1, int(quota / period)))
        except (OSError, ValueError):
            pass

    return max(1, host_count)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (62.5 -> 63)."""
    return int(math.floor(value + 0.5))


def mb_to_bytes(mb: float) -> int:
    """Convert decimal megabytes to bytes."""
    return int(round(mb * MB))


def bytes_to_mb(size_bytes: float, decimals: int = 2) -> float:
    """Convert bytes to decimal megabytes, rounded for display."""
    return round(size_bytes / MB, decimals)
