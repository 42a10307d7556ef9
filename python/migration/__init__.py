"""
Migration of Kubernetes workload images from bitnami/ to bitnamilegacy/.

- image_rewriter / patch_planner: pure planning of JSON-patch operations
- ledger: append-only progress record used to resume interrupted runs
- kube_client: Kubernetes API access and rollout tracking
- orchestrator: per-workload state machine and run policies
"""

from migration.image_rewriter import needs_rewrite, rewrite
from migration.ledger import MigrationLedger
from migration.orchestrator import MigrationOrchestrator, MigrationSettings, RunReport
from migration.patch_planner import plan, plan_changes

__all__ = [
    "needs_rewrite",
    "rewrite",
    "plan",
    "plan_changes",
    "MigrationLedger",
    "MigrationOrchestrator",
    "MigrationSettings",
    "RunReport",
]
