"""Host memory sampling used to tell memory exhaustion from plain crashes."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import psutil

from websnap.settings import MemorySettings

LOGGER = logging.getLogger(__name__)

_MB = 1024 * 1024


@dataclass(slots=True, frozen=True)
class MemorySnapshot:
    """Point-in-time view of host memory."""

    total_mb: int
    available_mb: int
    percent: float

    def to_dict(self) -> dict[str, object]:
        return {
            "total_mb": self.total_mb,
            "available_mb": self.available_mb,
            "percent": self.percent,
        }


def sample_host_memory() -> MemorySnapshot | None:
    """Return the current host memory snapshot, or ``None`` if unavailable."""

    try:
        vm = psutil.virtual_memory()
    except (psutil.Error, OSError) as exc:
        LOGGER.debug("Host memory sample failed: %s", exc)
        return None
    return MemorySnapshot(
        total_mb=int(vm.total // _MB),
        available_mb=int(vm.available // _MB),
        percent=float(vm.percent),
    )


def host_under_pressure(settings: MemorySettings, snapshot: MemorySnapshot | None = None) -> bool:
    """True when the host is near its memory ceiling."""

    snapshot = snapshot if snapshot is not None else sample_host_memory()
    if snapshot is None:
        return False
    return snapshot.percent >= settings.pressure_percent or snapshot.available_mb < settings.min_available_mb
