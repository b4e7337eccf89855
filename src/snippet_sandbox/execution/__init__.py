from .process import ProcessRunner
from .reaper import Reaper, SweepSummary
from .store import ArtifactStore
from .types import (
    Artifact,
    Completed,
    ExecutionOutcome,
    ExecutionRequest,
    InternalError,
    Invalid,
    Language,
    OutputExceeded,
    RejectedByGate,
    TimedOut,
)

__all__ = [
    "Artifact",
    "ArtifactStore",
    "Completed",
    "ExecutionOutcome",
    "ExecutionRequest",
    "InternalError",
    "Invalid",
    "Language",
    "OutputExceeded",
    "ProcessRunner",
    "Reaper",
    "RejectedByGate",
    "SweepSummary",
    "TimedOut",
]
