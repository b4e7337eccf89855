from .constraints import Constraints, load_constraints
from .errors import ErrorKind, SandboxError, SpawnError, StorageError
from .execution.types import (
    Completed,
    ExecutionOutcome,
    ExecutionRequest,
    InternalError,
    Invalid,
    OutputExceeded,
    RejectedByGate,
    TimedOut,
)
from .gate import Allowed, Denied, StaticGate
from .result import ExecutionResult, to_result
from .service import ExecutionService

__all__ = [
    "Allowed",
    "Completed",
    "Constraints",
    "Denied",
    "ErrorKind",
    "ExecutionOutcome",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionService",
    "InternalError",
    "Invalid",
    "OutputExceeded",
    "RejectedByGate",
    "SandboxError",
    "SpawnError",
    "StaticGate",
    "StorageError",
    "TimedOut",
    "load_constraints",
    "to_result",
]
