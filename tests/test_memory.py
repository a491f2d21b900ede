from __future__ import annotations

from types import SimpleNamespace

import pytest

import websnap.memory as memory_module
from websnap.memory import MemorySnapshot, host_under_pressure, sample_host_memory
from websnap.settings import MemorySettings

_SETTINGS = MemorySettings(pressure_percent=90.0, min_available_mb=256)


def test_sample_host_memory_converts_to_megabytes(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = SimpleNamespace(total=8 * 1024**3, available=2 * 1024**3, percent=75.0)
    monkeypatch.setattr(memory_module.psutil, "virtual_memory", lambda: fake)

    snapshot = sample_host_memory()

    assert snapshot == MemorySnapshot(total_mb=8192, available_mb=2048, percent=75.0)
    assert snapshot.to_dict()["available_mb"] == 2048


def test_sample_host_memory_returns_none_when_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    def _boom():
        raise OSError("no /proc")

    monkeypatch.setattr(memory_module.psutil, "virtual_memory", _boom)

    assert sample_host_memory() is None
    assert host_under_pressure(_SETTINGS) is False


@pytest.mark.parametrize(
    ("snapshot", "expected"),
    [
        (MemorySnapshot(total_mb=8192, available_mb=4096, percent=50.0), False),
        (MemorySnapshot(total_mb=8192, available_mb=400, percent=95.0), True),
        (MemorySnapshot(total_mb=1024, available_mb=100, percent=80.0), True),
    ],
)
def test_host_under_pressure(snapshot: MemorySnapshot, expected: bool) -> None:
    assert host_under_pressure(_SETTINGS, snapshot) is expected
