from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Failure classes and how the HTTP layer reports them.

    `VALIDATION` and `POLICY_VIOLATION` are the caller's fault (400),
    `RESOURCE_EXCEEDED` and `RUNTIME_FAILURE` are reported as `success: false`,
    `INTERNAL` is a server fault (500).
    """

    VALIDATION = "validation"
    POLICY_VIOLATION = "policy_violation"
    RESOURCE_EXCEEDED = "resource_exceeded"
    RUNTIME_FAILURE = "runtime_failure"
    INTERNAL = "internal"


class SandboxError(RuntimeError):
    """Base class for failures unrelated to the submitted code."""


class StorageError(SandboxError):
    """The artifact directory could not be prepared or written."""


class SpawnError(SandboxError):
    """The interpreter process could not be started."""
