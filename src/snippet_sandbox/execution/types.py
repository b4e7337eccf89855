from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from ..errors import ErrorKind


class Language(StrEnum):
    """Languages accepted by the execution service.

    Example:
        ```python
        lang = Language("python")
        ```
    """

    PYTHON = "python"


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """One `(code, language)` submission from the caller.

    Example:
        ```python
        req = ExecutionRequest(code="print('hi')", language="python")
        ```
    """

    code: str
    language: str


@dataclass(frozen=True, slots=True)
class Artifact:
    """Temporary source file holding one submission while it executes.

    Example:
        ```python
        artifact = Artifact(path=Path("sandbox_temp/temp_ab12.py"), created_at=0.0)
        ```
    """

    path: Path
    created_at: float


@dataclass(frozen=True, slots=True)
class Completed:
    """The process exited on its own; only exit code zero counts as success.

    Example:
        ```python
        out = Completed(exit_code=0, stdout="hi\\n", stderr="")
        ```
    """

    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        """Return whether the program exited cleanly.

        Example:
            ```python
            assert Completed(0, "", "").ok
            ```
        """
        return self.exit_code == 0

    @property
    def kind(self) -> ErrorKind | None:
        """Return the failure class, or None on success.

        Example:
            ```python
            assert Completed(1, "", "boom").kind is ErrorKind.RUNTIME_FAILURE
            ```
        """
        return None if self.ok else ErrorKind.RUNTIME_FAILURE


@dataclass(frozen=True, slots=True)
class TimedOut:
    """The process ran past the wall-clock timeout and was killed.

    Example:
        ```python
        out = TimedOut(timeout_seconds=5.0)
        ```
    """

    timeout_seconds: float

    ok = False
    kind = ErrorKind.RESOURCE_EXCEEDED


@dataclass(frozen=True, slots=True)
class OutputExceeded:
    """An output stream passed the output cap and the process was killed.

    `stdout` and `stderr` hold what was captured before the kill, truncated to
    the cap.

    Example:
        ```python
        out = OutputExceeded(stdout="xxxx", stderr="", max_output_bytes=4)
        ```
    """

    stdout: str
    stderr: str
    max_output_bytes: int

    ok = False
    kind = ErrorKind.RESOURCE_EXCEEDED


@dataclass(frozen=True, slots=True)
class RejectedByGate:
    """The static gate denied the source before anything touched the disk.

    Example:
        ```python
        out = RejectedByGate(reason="Code contains potentially dangerous operations")
        ```
    """

    reason: str

    ok = False
    kind = ErrorKind.POLICY_VIOLATION


@dataclass(frozen=True, slots=True)
class Invalid:
    """The request was malformed, oversized or in an unsupported language.

    Example:
        ```python
        out = Invalid(reason="Only Python is supported at the moment")
        ```
    """

    reason: str

    ok = False
    kind = ErrorKind.VALIDATION


@dataclass(frozen=True, slots=True)
class InternalError:
    """Storage or spawn failure unrelated to the submitted code.

    Example:
        ```python
        out = InternalError(reason="artifact directory is not writable")
        ```
    """

    reason: str

    ok = False
    kind = ErrorKind.INTERNAL


ExecutionOutcome = Completed | TimedOut | OutputExceeded | RejectedByGate | Invalid | InternalError
