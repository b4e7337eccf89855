from __future__ import annotations

import logging
import os
import secrets
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ..errors import StorageError
from .types import Artifact

logger = logging.getLogger(__name__)

ARTIFACT_PREFIX = "temp_"
ARTIFACT_SUFFIX = ".py"


def artifact_name() -> str:
    """Return a fresh artifact filename derived from a 128-bit random token.

    Example:
        ```python
        name = artifact_name()  # "temp_3f9c...e1.py"
        ```
    """
    return f"{ARTIFACT_PREFIX}{secrets.token_hex(16)}{ARTIFACT_SUFFIX}"


class ArtifactStore:
    """Create and delete the temporary source files of executions.

    The store also tracks which artifacts are in flight so the reaper never
    removes a file an execution is still using.

    Example:
        ```python
        store = ArtifactStore(Path("sandbox_temp"))
        with store.artifact("print(1)") as artifact:
            ...
        ```
    """

    def __init__(self, directory: Path) -> None:
        """Bind the store to an artifact directory without touching disk.

        Example:
            ```python
            store = ArtifactStore(Path("/tmp/sandbox_temp"))
            ```
        """
        self._directory = Path(directory)
        self._lock = threading.Lock()
        self._live: set[Path] = set()

    @property
    def directory(self) -> Path:
        """Return the artifact directory.

        Example:
            ```python
            root = store.directory
            ```
        """
        return self._directory

    def prepare(self) -> None:
        """Create the artifact directory if it does not exist yet.

        Example:
            ```python
            store.prepare()
            ```
        """
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create artifact directory {self._directory}: {exc}") from exc

    def create(self, code: str) -> Artifact:
        """Write `code` verbatim to a new uniquely named file.

        Raises `StorageError` when the directory is unwritable or the name
        already exists.

        Example:
            ```python
            artifact = store.create("print('hi')")
            ```
        """
        self.prepare()
        path = self._directory / artifact_name()
        with self._lock:
            if path in self._live:
                raise StorageError(f"Artifact name collision: {path.name}")
            self._live.add(path)
        try:
            # "x" refuses to reuse a name that already exists.
            with path.open("x", encoding="utf-8", newline="") as handle:
                handle.write(code)
        except FileExistsError as exc:
            self._forget(path)
            raise StorageError(f"Artifact name collision: {path.name}") from exc
        except OSError as exc:
            self._forget(path)
            self._discard_partial(path)
            raise StorageError(f"Cannot write artifact {path}: {exc}") from exc
        artifact = Artifact(path=path, created_at=time.time())
        logger.debug("Created artifact %s", path)
        return artifact

    def delete(self, artifact: Artifact) -> None:
        """Delete an artifact's file; never raises.

        A file that is already gone is fine. Other errors are logged and left
        for the reaper.

        Example:
            ```python
            store.delete(artifact)
            ```
        """
        try:
            removed = self.remove_path(artifact.path)
        except OSError:
            logger.warning("Failed to delete artifact %s", artifact.path, exc_info=True)
        else:
            if removed:
                logger.debug("Deleted artifact %s", artifact.path)
        finally:
            self._forget(artifact.path)

    def remove_path(self, path: Path) -> bool:
        """Unlink a path, returning False if it was already absent.

        Errors other than a missing file propagate.

        Example:
            ```python
            removed = store.remove_path(Path("sandbox_temp/temp_ab.py"))
            ```
        """
        try:
            os.unlink(path)
        except FileNotFoundError:
            return False
        return True

    def is_live(self, path: Path) -> bool:
        """Return whether `path` belongs to an execution still in flight.

        Example:
            ```python
            if not store.is_live(path):
                store.remove_path(path)
            ```
        """
        with self._lock:
            return path in self._live

    def live_count(self) -> int:
        """Return the number of artifacts currently in flight.

        Example:
            ```python
            assert store.live_count() == 0
            ```
        """
        with self._lock:
            return len(self._live)

    @contextmanager
    def artifact(self, code: str) -> Iterator[Artifact]:
        """Create an artifact and guarantee its deletion on every exit path.

        Example:
            ```python
            with store.artifact("print(1)") as artifact:
                runner.run(artifact)
            ```
        """
        created = self.create(code)
        try:
            yield created
        finally:
            self.delete(created)

    def _forget(self, path: Path) -> None:
        """Drop a path from the in-flight registry.

        Example:
            ```python
            store._forget(artifact.path)
            ```
        """
        with self._lock:
            self._live.discard(path)

    def _discard_partial(self, path: Path) -> None:
        """Remove a half-written artifact after a failed write, if any.

        Example:
            ```python
            store._discard_partial(path)
            ```
        """
        try:
            self.remove_path(path)
        except OSError:
            logger.warning("Failed to remove partial artifact %s", path, exc_info=True)
