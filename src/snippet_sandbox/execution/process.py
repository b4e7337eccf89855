from __future__ import annotations

import logging
import os
import selectors
import signal
import subprocess
import threading
import time
from typing import IO

from ..constraints import Constraints
from ..errors import SpawnError
from .types import Artifact, Completed, ExecutionOutcome, OutputExceeded, TimedOut

logger = logging.getLogger(__name__)

_READ_CHUNK_BYTES = 64 * 1024
_POLL_INTERVAL_SECONDS = 0.05
_READER_JOIN_SECONDS = 1.0


def child_environment() -> dict[str, str]:
    """Return the stripped environment handed to the child interpreter.

    Nothing from the service's own environment is inherited.

    Example:
        ```python
        env = child_environment()
        ```
    """
    return {
        "PYTHONPATH": "",
        "PYTHONNOUSERSITE": "1",
        "PYTHONDONTWRITEBYTECODE": "1",
        "LANG": "C.UTF-8",
    }


def _decode(data: bytes | bytearray) -> str:
    """Decode captured child output, replacing undecodable bytes.

    Example:
        ```python
        text = _decode(b"hi\\n")
        ```
    """
    return bytes(data).decode("utf-8", errors="replace")


class _StreamCollector:
    """Drain one pipe into a byte buffer on a background thread.

    The thread waits on a selector with a short timeout, so `stop` ends it
    even when a process outside the killed group still holds the write end.

    Example:
        ```python
        collector = _StreamCollector("stdout", proc.stdout, 1024, overflow)
        collector.start()
        ```
    """

    def __init__(
        self,
        name: str,
        stream: IO[bytes],
        limit: int,
        overflow: threading.Event,
    ) -> None:
        """Prepare a collector for one stream with a shared overflow flag.

        Example:
            ```python
            collector = _StreamCollector("stderr", proc.stderr, 1024, threading.Event())
            ```
        """
        self.name = name
        self._stream = stream
        self._limit = limit
        self._overflow = overflow
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._drain,
            name=f"snippet-sandbox-{name}",
            daemon=True,
        )

    def start(self) -> None:
        """Start draining the stream.

        Example:
            ```python
            collector.start()
            ```
        """
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        """Wait for the drain thread to reach end of stream.

        Example:
            ```python
            collector.join(timeout=1.0)
            ```
        """
        self._thread.join(timeout)

    def stop(self) -> None:
        """Ask the drain thread to give up without waiting for end of stream.

        Example:
            ```python
            collector.stop()
            ```
        """
        self._stop.set()

    @property
    def alive(self) -> bool:
        """Whether the drain thread is still running.

        Example:
            ```python
            if collector.alive:
                collector.stop()
            ```
        """
        return self._thread.is_alive()

    def snapshot(self) -> bytes:
        """Return a copy of the bytes captured so far.

        Example:
            ```python
            data = collector.snapshot()
            ```
        """
        with self._lock:
            return bytes(self._buffer)

    def _drain(self) -> None:
        """Read chunks until end of stream, a stop request, or a cap breach.

        Example:
            ```python
            collector._drain()
            ```
        """
        fd = self._stream.fileno()
        with selectors.DefaultSelector() as selector:
            selector.register(fd, selectors.EVENT_READ)
            while not self._stop.is_set():
                if not selector.select(_POLL_INTERVAL_SECONDS):
                    continue
                try:
                    chunk = os.read(fd, _READ_CHUNK_BYTES)
                except OSError:
                    return
                if not chunk:
                    return
                with self._lock:
                    self._buffer.extend(chunk)
                    exceeded = len(self._buffer) > self._limit
                if exceeded:
                    self._overflow.set()
                    return


class ProcessRunner:
    """Run one artifact as a child interpreter under time and output ceilings.

    Example:
        ```python
        runner = ProcessRunner(Constraints(wall_clock_timeout_seconds=2.0))
        outcome = runner.run(artifact)
        ```
    """

    def __init__(self, constraints: Constraints) -> None:
        """Bind the runner to fixed constraints.

        Example:
            ```python
            runner = ProcessRunner(Constraints())
            ```
        """
        self._constraints = constraints

    def command(self, artifact: Artifact) -> list[str]:
        """Return the argv used to execute an artifact.

        `-I` isolates the interpreter from user site-packages and `PYTHON*`
        variables; `-u` keeps output unbuffered so the cap sees it promptly.

        Example:
            ```python
            argv = runner.command(artifact)
            ```
        """
        return [self._constraints.interpreter, "-I", "-u", str(artifact.path.resolve())]

    def run(self, artifact: Artifact) -> ExecutionOutcome:
        """Execute the artifact and classify how it ended.

        Raises `SpawnError` when the interpreter cannot be started.

        Example:
            ```python
            outcome = runner.run(store.create("print('hi')"))
            ```
        """
        constraints = self._constraints
        try:
            proc = subprocess.Popen(
                self.command(artifact),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=child_environment(),
                cwd=str(artifact.path.resolve().parent),
                start_new_session=True,
            )
        except OSError as exc:
            raise SpawnError(f"Failed to start {constraints.interpreter}: {exc}") from exc

        if proc.stdout is None or proc.stderr is None:
            self._kill_group(proc)
            proc.wait()
            raise SpawnError(f"Process {proc.pid} started without output pipes")
        overflow = threading.Event()
        stdout = _StreamCollector("stdout", proc.stdout, constraints.max_output_bytes, overflow)
        stderr = _StreamCollector("stderr", proc.stderr, constraints.max_output_bytes, overflow)
        stdout.start()
        stderr.start()

        deadline = time.monotonic() + constraints.wall_clock_timeout_seconds
        timed_out = False
        try:
            while proc.poll() is None:
                if overflow.wait(_POLL_INTERVAL_SECONDS):
                    break
                if time.monotonic() >= deadline:
                    timed_out = True
                    break
        finally:
            # Also reaps anything the program left behind in its session.
            self._kill_group(proc)
            proc.wait()
            self._finish_readers(proc, (stdout, stderr))
            proc.stdout.close()
            proc.stderr.close()

        limit = constraints.max_output_bytes
        if overflow.is_set():
            logger.info("Process %s exceeded the %d byte output cap", proc.pid, limit)
            return OutputExceeded(
                stdout=_decode(stdout.snapshot()[:limit]),
                stderr=_decode(stderr.snapshot()[:limit]),
                max_output_bytes=limit,
            )
        if timed_out:
            logger.info(
                "Process %s timed out after %ss", proc.pid, constraints.wall_clock_timeout_seconds
            )
            return TimedOut(timeout_seconds=constraints.wall_clock_timeout_seconds)
        return Completed(
            exit_code=proc.returncode,
            stdout=_decode(stdout.snapshot()),
            stderr=_decode(stderr.snapshot()),
        )

    def _finish_readers(
        self, proc: subprocess.Popen[bytes], collectors: tuple[_StreamCollector, ...]
    ) -> None:
        """Wait briefly for end of stream, then stop readers still blocked.

        A descendant that left the process group can hold a pipe open
        indefinitely; its output after the kill is discarded.

        Example:
            ```python
            runner._finish_readers(proc, (stdout, stderr))
            ```
        """
        deadline = time.monotonic() + _READER_JOIN_SECONDS
        for collector in collectors:
            collector.join(max(0.0, deadline - time.monotonic()))
        for collector in collectors:
            if collector.alive:
                logger.warning(
                    "Process %s left its %s pipe open; abandoning the rest", proc.pid, collector.name
                )
                collector.stop()
        for collector in collectors:
            collector.join()

    def _kill_group(self, proc: subprocess.Popen[bytes]) -> None:
        """Send SIGKILL to the child's whole process group.

        Example:
            ```python
            runner._kill_group(proc)
            ```
        """
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            proc.kill()
