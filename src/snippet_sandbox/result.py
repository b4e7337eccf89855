from __future__ import annotations

from dataclasses import dataclass

from .errors import ErrorKind
from .execution.types import (
    Completed,
    ExecutionOutcome,
    InternalError,
    Invalid,
    OutputExceeded,
    RejectedByGate,
    TimedOut,
)

OUTPUT_EXCEEDED_MESSAGE = "Output exceeded maximum buffer size"
INTERNAL_ERROR_MESSAGE = "Failed to execute code"


@dataclass(slots=True)
class ExecutionResult:
    """Caller-facing summary of an outcome: `success`, `output`, `error`.

    Example:
        ```python
        result = ExecutionResult(success=True, output="hi\\n")
        ```
    """

    success: bool
    output: str | None = None
    error: str | None = None
    kind: ErrorKind | None = None


def _runtime_failure_message(outcome: Completed) -> str:
    """Return stderr, or a fallback naming the exit code when stderr is empty.

    Example:
        ```python
        msg = _runtime_failure_message(Completed(3, "", ""))
        ```
    """
    if outcome.stderr.strip():
        return outcome.stderr
    if outcome.exit_code < 0:
        return f"Process terminated by signal {-outcome.exit_code}"
    return f"Process exited with code {outcome.exit_code}"


def to_result(outcome: ExecutionOutcome) -> ExecutionResult:
    """Normalize an execution outcome into the caller-facing result shape.

    Example:
        ```python
        result = to_result(Completed(exit_code=0, stdout="4\\n", stderr=""))
        assert result.output == "4\\n"
        ```
    """
    if isinstance(outcome, Completed):
        if outcome.ok:
            return ExecutionResult(success=True, output=outcome.stdout)
        return ExecutionResult(
            success=False,
            error=_runtime_failure_message(outcome),
            kind=ErrorKind.RUNTIME_FAILURE,
        )
    if isinstance(outcome, TimedOut):
        return ExecutionResult(
            success=False,
            error=f"Execution timed out after {outcome.timeout_seconds:g}s",
            kind=outcome.kind,
        )
    if isinstance(outcome, OutputExceeded):
        return ExecutionResult(
            success=False,
            output=outcome.stdout or None,
            error=OUTPUT_EXCEEDED_MESSAGE,
            kind=outcome.kind,
        )
    if isinstance(outcome, (RejectedByGate, Invalid)):
        return ExecutionResult(success=False, error=outcome.reason, kind=outcome.kind)
    if isinstance(outcome, InternalError):
        return ExecutionResult(success=False, error=INTERNAL_ERROR_MESSAGE, kind=outcome.kind)
    raise TypeError(f"Unknown execution outcome: {outcome!r}")
