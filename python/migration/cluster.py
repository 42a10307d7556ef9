"""Cluster collaborator interface used by the orchestrator."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional

from migration.models import PatchOp, WorkloadDocument, WorkloadKind, WorkloadRef


class RolloutStatus(Enum):
    COMPLETE = "complete"
    FAILED = "failed"
    TIMEOUT = "timeout"


class ClusterClient(ABC):
    """Everything the migration needs from a cluster.

    Implementations return False or None for per-resource failures and
    reserve exceptions for problems that should stop the run.
    """

    @abstractmethod
    def fetch(self, kinds: List[WorkloadKind], namespaces: Optional[List[str]] = None) -> List[WorkloadDocument]:
        """List workloads of the given kinds, all namespaces when none are given."""

    @abstractmethod
    def get(self, ref: WorkloadRef) -> Optional[WorkloadDocument]:
        """Re-read one workload live; None if it no longer exists."""

    @abstractmethod
    def apply_patch(self, ref: WorkloadRef, ops: List[PatchOp]) -> bool:
        """Apply all operations as one JSON-patch request."""

    @abstractmethod
    def dry_run_validate(self, ref: WorkloadRef, ops: List[PatchOp]) -> bool:
        """Validate the patch server-side without persisting it."""

    @abstractmethod
    def wait_for_rollout(self, ref: WorkloadRef, timeout_seconds: float) -> RolloutStatus:
        pass

    @abstractmethod
    def get_live_uid(self, ref: WorkloadRef) -> Optional[str]:
        pass

    @abstractmethod
    def get_current_context_id(self) -> str:
        pass
