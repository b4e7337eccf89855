import os
import time
from pathlib import Path

import pytest

from snippet_sandbox.execution.reaper import Reaper, SweepSummary, is_stale
from snippet_sandbox.execution.store import ArtifactStore


def _age(path: Path, seconds: float) -> None:
    past = time.time() - seconds
    os.utime(path, (past, past))


def _reaper(store: ArtifactStore, retention: float = 60.0, interval: float = 3600.0) -> Reaper:
    return Reaper(store, retention_seconds=retention, interval_seconds=interval)


def test_is_stale_threshold() -> None:
    assert is_stale(mtime=0.0, retention_seconds=10.0, now=11.0) is True
    assert is_stale(mtime=0.0, retention_seconds=10.0, now=10.0) is False


def test_sweep_on_missing_or_empty_directory_is_noop(tmp_path: Path) -> None:
    missing = _reaper(ArtifactStore(tmp_path / "missing"))
    assert missing.sweep() == SweepSummary(0, 0, 0, 0)

    store = ArtifactStore(tmp_path / "empty")
    store.prepare()
    assert _reaper(store).sweep() == SweepSummary(0, 0, 0, 0)


def test_sweep_removes_only_stale_entries(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path)
    stale = tmp_path / "temp_stale.py"
    fresh = tmp_path / "temp_fresh.py"
    stale.write_text("x = 1", encoding="utf-8")
    fresh.write_text("x = 2", encoding="utf-8")
    _age(stale, 120)

    summary = _reaper(store).sweep()

    assert summary.removed == 1
    assert not stale.exists()
    assert fresh.exists()


def test_second_sweep_finds_nothing(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path)
    for index in range(3):
        path = tmp_path / f"temp_{index}.py"
        path.write_text("pass", encoding="utf-8")
        _age(path, 120)
    reaper = _reaper(store)

    first = reaper.sweep()
    second = reaper.sweep()

    assert first.removed == 3
    assert second == SweepSummary(0, 0, 0, 0)


def test_live_artifacts_are_never_reaped(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path)
    artifact = store.create("import time")
    _age(artifact.path, 120)

    summary = _reaper(store).sweep()

    assert summary.skipped_live == 1
    assert summary.removed == 0
    assert artifact.path.exists()
    store.delete(artifact)


def test_directories_are_left_alone(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path)
    nested = tmp_path / "nested"
    nested.mkdir()
    _age(nested, 120)

    summary = _reaper(store).sweep()

    assert summary.scanned == 1
    assert summary.removed == 0
    assert nested.exists()


def test_one_failing_entry_does_not_stop_the_cycle(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = ArtifactStore(tmp_path)
    for name in ("temp_a.py", "temp_b.py", "temp_c.py"):
        path = tmp_path / name
        path.write_text("pass", encoding="utf-8")
        _age(path, 120)
    original = store.remove_path

    def _flaky(path: Path) -> bool:
        if path.name == "temp_b.py":
            raise PermissionError("busy")
        return original(path)

    monkeypatch.setattr(store, "remove_path", _flaky)
    summary = _reaper(store).sweep()

    assert summary.removed == 2
    assert summary.failed == 1
    assert sorted(p.name for p in tmp_path.iterdir()) == ["temp_b.py"]


def test_timer_sweeps_until_stopped(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path)
    reaper = _reaper(store, retention=0.01, interval=0.05)
    reaper.start()
    reaper.start()
    try:
        stale = tmp_path / "temp_late.py"
        stale.write_text("pass", encoding="utf-8")
        _age(stale, 10)
        deadline = time.monotonic() + 5.0
        while stale.exists() and time.monotonic() < deadline:
            time.sleep(0.05)
        assert not stale.exists()
        assert reaper.running
    finally:
        reaper.stop(timeout=5.0)
    assert not reaper.running
