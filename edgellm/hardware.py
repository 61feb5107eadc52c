"""Host memory probe and the accelerator cache ceiling derived from it."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

MiB = 1024**2
GiB = 1024**3

DEFAULT_MEMORY_CEILING = 512 * MiB
MIN_MEMORY_CEILING = 64 * MiB


@dataclass(frozen=True)
class MemoryProfile:
    total_bytes: int
    available_bytes: int
    platform: str

    @property
    def total_gb(self) -> float:
        return round(self.total_bytes / GiB, 2)

    @property
    def available_gb(self) -> float:
        return round(self.available_bytes / GiB, 2)


def detect_memory() -> MemoryProfile:
    """Snapshot of physical memory on this host."""
    import psutil

    ram = psutil.virtual_memory()
    return MemoryProfile(
        total_bytes=int(ram.total),
        available_bytes=int(ram.available),
        platform=sys.platform,
    )


def resolve_memory_ceiling(
    requested_bytes: Optional[int] = None,
    profile: Optional[MemoryProfile] = None,
) -> int:
    """Choose the accelerator cache ceiling for one engine.

    Starts from ``requested_bytes`` (default 512 MiB), scales it down on
    small hosts (x0.5 at <= 4 GiB, x0.75 at <= 8 GiB), and clamps it to
    ``[64 MiB, available / 2]``.
    """
    ceiling = requested_bytes if requested_bytes else DEFAULT_MEMORY_CEILING

    if profile is None:
        try:
            profile = detect_memory()
        except (ImportError, OSError) as exc:
            logger.debug("Memory probe failed, using ceiling as requested: %s", exc)
            return max(ceiling, MIN_MEMORY_CEILING)

    if profile.total_bytes <= 4 * GiB:
        ceiling = int(ceiling * 0.5)
    elif profile.total_bytes <= 8 * GiB:
        ceiling = int(ceiling * 0.75)

    if profile.available_bytes > 0:
        ceiling = min(ceiling, profile.available_bytes // 2)
    return max(ceiling, MIN_MEMORY_CEILING)
