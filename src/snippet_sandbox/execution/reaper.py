from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass

from .store import ArtifactStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SweepSummary:
    """Counts from one reaper cycle.

    Example:
        ```python
        summary = SweepSummary(scanned=3, removed=2, skipped_live=1, failed=0)
        ```
    """

    scanned: int
    removed: int
    skipped_live: int
    failed: int


def is_stale(mtime: float, retention_seconds: float, now: float) -> bool:
    """Decide whether an entry last modified at `mtime` is past retention.

    Example:
        ```python
        stale = is_stale(mtime=0.0, retention_seconds=3600.0, now=time.time())
        ```
    """
    return (now - mtime) > retention_seconds


class Reaper:
    """Background sweep deleting orphaned artifacts past the retention age.

    Example:
        ```python
        reaper = Reaper(store, retention_seconds=3600.0, interval_seconds=3600.0)
        reaper.start()
        ```
    """

    def __init__(
        self,
        store: ArtifactStore,
        *,
        retention_seconds: float,
        interval_seconds: float,
    ) -> None:
        """Configure the reaper without starting its timer.

        Example:
            ```python
            reaper = Reaper(store, retention_seconds=60.0, interval_seconds=30.0)
            ```
        """
        self._store = store
        self._retention_seconds = retention_seconds
        self._interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        """Return whether the timer thread is alive.

        Example:
            ```python
            assert reaper.running
            ```
        """
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> None:
        """Start the timer thread; calling it twice is a no-op.

        Example:
            ```python
            reaper.start()
            ```
        """
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._thread = threading.Thread(
                target=self._loop,
                name="snippet-sandbox-reaper",
                daemon=True,
            )
            self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Cancel the timer and wait for a cycle in progress to finish.

        Example:
            ```python
            reaper.stop(timeout=5.0)
            ```
        """
        with self._lock:
            self._stop.set()
            thread = self._thread
            self._thread = None
        if thread is not None:
            thread.join(timeout)

    def sweep(self, now: float | None = None) -> SweepSummary:
        """Run one cycle over the artifact directory.

        A failure on one entry is logged and the cycle moves on.

        Example:
            ```python
            summary = reaper.sweep()
            ```
        """
        current = time.time() if now is None else now
        directory = self._store.directory
        scanned = removed = skipped_live = failed = 0
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except FileNotFoundError:
            return SweepSummary(0, 0, 0, 0)

        for entry in entries:
            scanned += 1
            path = directory / entry.name
            try:
                if not entry.is_file(follow_symlinks=False):
                    continue
                if self._store.is_live(path):
                    skipped_live += 1
                    continue
                mtime = entry.stat(follow_symlinks=False).st_mtime
                if not is_stale(mtime, self._retention_seconds, current):
                    continue
                if self._store.remove_path(path):
                    removed += 1
                    logger.info("Reaped stale artifact %s", path)
            except OSError:
                failed += 1
                logger.warning("Failed to reap %s", path, exc_info=True)

        summary = SweepSummary(
            scanned=scanned,
            removed=removed,
            skipped_live=skipped_live,
            failed=failed,
        )
        logger.debug("Reaper cycle finished: %s", summary)
        return summary

    def _loop(self) -> None:
        """Sweep every interval until stopped.

        Example:
            ```python
            reaper._loop()
            ```
        """
        while not self._stop.wait(self._interval_seconds):
            try:
                self.sweep()
            except OSError:
                logger.exception("Reaper cycle failed for %s", self._store.directory)
