from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Iterator

from .constraints import Constraints
from .errors import SandboxError
from .execution.process import ProcessRunner
from .execution.reaper import Reaper
from .execution.store import ArtifactStore
from .execution.types import (
    ExecutionOutcome,
    ExecutionRequest,
    InternalError,
    Invalid,
    Language,
    RejectedByGate,
)
from .gate import Denied, StaticGate

logger = logging.getLogger(__name__)

MISSING_FIELDS_MESSAGE = "Code and language are required"
UNSUPPORTED_LANGUAGE_MESSAGE = "Only Python is supported at the moment"
CODE_TOO_LARGE_MESSAGE = "Code exceeds maximum size limit"
UNENCODABLE_CODE_MESSAGE = "Code must be valid UTF-8 text"
SHUTTING_DOWN_MESSAGE = "Execution service is shutting down"


class ExecutionService:
    """Validate, gate, materialize, run and clean up one submission per call.

    The service is an explicit object: `start()` launches the reaper and
    `stop()` cancels it and waits for in-flight executions to finish their
    cleanup. A run cannot be cancelled by the caller once it has started; only
    the timeout and the output cap stop it early.

    Example:
        ```python
        with ExecutionService(Constraints()) as service:
            outcome = service.execute(ExecutionRequest(code="print(1)", language="python"))
        ```
    """

    def __init__(
        self,
        constraints: Constraints | None = None,
        *,
        store: ArtifactStore | None = None,
        gate: StaticGate | None = None,
        runner: ProcessRunner | None = None,
        reaper: Reaper | None = None,
    ) -> None:
        """Wire collaborators, defaulting each one from the constraints.

        Example:
            ```python
            service = ExecutionService(Constraints(wall_clock_timeout_seconds=2.0))
            ```
        """
        self.constraints = constraints or Constraints()
        self.store = store or ArtifactStore(self.constraints.artifact_dir)
        self.gate = gate or StaticGate.for_modules(self.constraints.blocked_modules)
        self.runner = runner or ProcessRunner(self.constraints)
        self.reaper = reaper or Reaper(
            self.store,
            retention_seconds=self.constraints.artifact_retention_seconds,
            interval_seconds=self.constraints.reaper_interval_seconds,
        )
        self._state = threading.Condition()
        self._in_flight = 0
        self._closed = False

    def __enter__(self) -> "ExecutionService":
        """Start the service for a `with` block.

        Example:
            ```python
            with ExecutionService() as service:
                ...
            ```
        """
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        """Stop the service when leaving a `with` block.

        Example:
            ```python
            service.__exit__(None, None, None)
            ```
        """
        self.stop()

    @property
    def in_flight(self) -> int:
        """Return the number of executions currently past the gate.

        Example:
            ```python
            assert service.in_flight == 0
            ```
        """
        with self._state:
            return self._in_flight

    def start(self) -> None:
        """Prepare the artifact directory and start the reaper timer.

        Example:
            ```python
            service.start()
            ```
        """
        self.store.prepare()
        with self._state:
            self._closed = False
        self.reaper.start()
        logger.info("Execution service started with artifacts in %s", self.store.directory)

    def stop(self, timeout: float | None = None) -> bool:
        """Stop the reaper, refuse new work and wait for in-flight cleanup.

        Returns False if executions were still running when `timeout` expired.

        Example:
            ```python
            drained = service.stop(timeout=10.0)
            ```
        """
        self.reaper.stop(timeout)
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._state:
            self._closed = True
            while self._in_flight:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    logger.warning(
                        "Stopped with %d execution(s) still in flight", self._in_flight
                    )
                    return False
                self._state.wait(remaining)
        logger.info("Execution service stopped")
        return True

    def validate(self, request: ExecutionRequest) -> Invalid | None:
        """Check shape, language and size; return `Invalid` or None.

        Example:
            ```python
            problem = service.validate(ExecutionRequest(code="", language="python"))
            ```
        """
        if not request.code or not request.language:
            return Invalid(MISSING_FIELDS_MESSAGE)
        if request.language not in {lang.value for lang in Language}:
            return Invalid(UNSUPPORTED_LANGUAGE_MESSAGE)
        try:
            size = len(request.code.encode("utf-8"))
        except UnicodeEncodeError:
            return Invalid(UNENCODABLE_CODE_MESSAGE)
        if size > self.constraints.max_code_bytes:
            return Invalid(CODE_TOO_LARGE_MESSAGE)
        return None

    def execute(self, request: ExecutionRequest) -> ExecutionOutcome:
        """Run one submission end to end and return its outcome.

        Validation and gate rejections return before anything touches the
        filesystem. Once an artifact exists it is deleted on every path out.

        Example:
            ```python
            outcome = service.execute(ExecutionRequest(code="print(2 + 2)", language="python"))
            ```
        """
        invalid = self.validate(request)
        if invalid is not None:
            return invalid

        verdict = self.gate.evaluate(request.code)
        if isinstance(verdict, Denied):
            logger.info(
                "Gate denied submission: %s %r on line %d",
                verdict.construct,
                verdict.match,
                verdict.line,
            )
            return RejectedByGate(verdict.reason)

        with self._admission() as admitted:
            if not admitted:
                return InternalError(SHUTTING_DOWN_MESSAGE)
            try:
                with self.store.artifact(request.code) as artifact:
                    return self.runner.run(artifact)
            except SandboxError as exc:
                logger.exception("Execution failed for reasons unrelated to the code")
                return InternalError(str(exc))

    @contextmanager
    def _admission(self) -> Iterator[bool]:
        """Count an execution as in flight unless the service is stopped.

        Example:
            ```python
            with service._admission() as admitted:
                ...
            ```
        """
        with self._state:
            if self._closed:
                admitted = False
            else:
                admitted = True
                self._in_flight += 1
        try:
            yield admitted
        finally:
            if admitted:
                with self._state:
                    self._in_flight -= 1
                    self._state.notify_all()
