import logging
from pathlib import Path

import pytest

from snippet_sandbox import StorageError
from snippet_sandbox.execution import store as store_module
from snippet_sandbox.execution.store import ArtifactStore


def test_create_writes_code_verbatim(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path / "artifacts")
    code = "print('héllo')\r\nprint(2)\n"

    artifact = store.create(code)

    assert artifact.path.parent == tmp_path / "artifacts"
    assert artifact.path.name.startswith("temp_")
    assert artifact.path.suffix == ".py"
    assert len(artifact.path.stem) == len("temp_") + 32
    assert artifact.path.read_bytes() == code.encode("utf-8")
    assert store.is_live(artifact.path)


def test_delete_is_idempotent(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path)
    artifact = store.create("x = 1")

    store.delete(artifact)
    store.delete(artifact)

    assert not artifact.path.exists()
    assert not store.is_live(artifact.path)
    assert store.live_count() == 0


def test_delete_logs_instead_of_raising(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    store = ArtifactStore(tmp_path)
    artifact = store.create("x = 1")

    def _denied(path: Path) -> bool:
        raise PermissionError("read-only filesystem")

    monkeypatch.setattr(store, "remove_path", _denied)
    with caplog.at_level(logging.WARNING):
        store.delete(artifact)

    assert "Failed to delete artifact" in caplog.text
    assert not store.is_live(artifact.path)


def test_context_manager_deletes_on_error(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path)

    with pytest.raises(RuntimeError):
        with store.artifact("x = 1") as artifact:
            assert artifact.path.exists()
            raise RuntimeError("runner blew up")

    assert not artifact.path.exists()
    assert store.live_count() == 0


def test_name_collision_raises_storage_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = ArtifactStore(tmp_path)
    (tmp_path / "temp_fixed.py").write_text("old", encoding="utf-8")
    monkeypatch.setattr(store_module, "artifact_name", lambda: "temp_fixed.py")

    with pytest.raises(StorageError, match="collision"):
        store.create("new")

    assert (tmp_path / "temp_fixed.py").read_text(encoding="utf-8") == "old"
    assert store.live_count() == 0


def test_unwritable_directory_raises_storage_error(tmp_path: Path) -> None:
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("", encoding="utf-8")
    store = ArtifactStore(blocker / "artifacts")

    with pytest.raises(StorageError):
        store.create("x = 1")
    assert store.live_count() == 0
