"""Exceptions raised by the migration core."""

from typing import Optional


class MigrationError(Exception):
    """Base class for migration failures"""


class EnvironmentCheckError(MigrationError):
    """Required tooling or cluster access is missing; raised before any work starts"""


class MalformedDocumentError(MigrationError):
    """A workload manifest does not have the expected shape"""


class LedgerWriteError(MigrationError):
    """The state ledger could not be appended to. Always fatal."""

    def __init__(self, path: str, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to append to state file {path}: {cause}")


class RolloutError(MigrationError):
    """A rollout failed or timed out. Halts the whole pass."""

    def __init__(self, ref, status: str, timeout_seconds: Optional[float] = None):
        self.ref = ref
        self.status = status
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Rollout of {ref} did not complete: {status}")


class NoTTYError(EnvironmentCheckError):
    """Interactive mode was requested but no terminal is available for prompts"""
