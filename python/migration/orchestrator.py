"""
Per-resource migration state machine and the run policies built on it.

For every fetched workload the orchestrator decides whether work is needed
(ledger check, then planning) and, when it is, executes the change:

    applying -> server dry-run -> patch -> applied -> rollout wait -> verified

Each step is recorded in the ledger before the next one starts, so a run
that dies anywhere can be resumed. A rollout that fails or times out halts
the whole pass; other per-resource failures are reported and the pass
moves on.
"""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from migration.cluster import ClusterClient, RolloutStatus
from migration.errors import RolloutError
from migration.image_rewriter import needs_rewrite, references_bitnami
from migration.interactive import AFTER_PATCH_PROMPT, MAIN_PROMPT, Choice, OperatorPrompter
from migration.ledger import MigrationLedger
from migration.models import LedgerPhase, PatchOp, WorkloadDocument, WorkloadKind, WorkloadRef
from migration.patch_planner import ImageChange, plan_changes
from migration.render import render_changes, render_patch, render_plan, render_scan
from utils.logging_utils import get_logger


class ResourceState(Enum):
    SKIPPED_VERIFIED = "skipped-verified"
    SKIPPED_NO_CHANGE = "skipped-no-change"
    SKIPPED_BY_OPERATOR = "skipped-by-operator"
    PENDING = "pending"
    APPLYING = "applying"
    APPLIED = "applied"
    ROLLOUT_WAITING = "rollout-waiting"
    VERIFIED = "verified"
    FAILED = "failed"


@dataclass
class MigrationSettings:
    """Run settings resolved from config, environment and CLI flags."""

    context_id: str
    rollout_timeout: float = 180.0
    force_recheck: bool = False
    kinds: List[WorkloadKind] = field(default_factory=lambda: list(WorkloadKind))
    namespaces: List[str] = field(default_factory=list)


@dataclass
class Decision:
    """Outcome of the ledger check and planning steps for one workload."""

    doc: WorkloadDocument
    uid: Optional[str]
    changes: List[ImageChange] = field(default_factory=list)
    skip: Optional[ResourceState] = None
    reason: str = ""
    resume_rollout: bool = False

    @property
    def ref(self) -> WorkloadRef:
        return self.doc.ref

    @property
    def ops(self) -> List[PatchOp]:
        return [change.to_patch_op() for change in self.changes]

    @property
    def needs_work(self) -> bool:
        return self.skip is None


@dataclass
class ResourceOutcome:
    ref: WorkloadRef
    state: ResourceState
    uid: Optional[str] = None
    changes: List[ImageChange] = field(default_factory=list)
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.ref.kind.value,
            "namespace": self.ref.namespace,
            "name": self.ref.name,
            "uid": self.uid,
            "state": self.state.value,
            "message": self.message,
            "changes": [
                {"path": c.path, "container": c.container, "from": c.old_image, "to": c.new_image}
                for c in self.changes
            ],
        }


@dataclass
class RunReport:
    """Everything one pass did, in processing order."""

    action: str
    context_id: str
    outcomes: List[ResourceOutcome] = field(default_factory=list)
    findings: List[Dict[str, Any]] = field(default_factory=list)
    halted: bool = False
    halt_status: str = ""
    quit_requested: bool = False

    def add(self, outcome: ResourceOutcome) -> None:
        self.outcomes.append(outcome)

    @property
    def inspected(self) -> int:
        return len(self.outcomes)

    @property
    def failed(self) -> bool:
        return self.halted or any(o.state is ResourceState.FAILED for o in self.outcomes)

    def counts(self) -> Dict[str, int]:
        counter = Counter(o.state for o in self.outcomes)
        return {state.value: counter.get(state, 0) for state in ResourceState}

    def pending(self) -> List[ResourceOutcome]:
        return [o for o in self.outcomes if o.state is ResourceState.PENDING]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "context": self.context_id,
            "summary": {
                "inspected": self.inspected,
                "failed": self.failed,
                "halted": self.halted,
                "quit_requested": self.quit_requested,
                "counts": self.counts(),
            },
            "resources": [o.to_dict() for o in self.outcomes],
            "findings": self.findings,
        }


class MigrationOrchestrator:
    """Drives workloads through the migration state machine."""

    def __init__(self, cluster: ClusterClient, ledger: MigrationLedger, settings: MigrationSettings):
        self.logger = get_logger(self.__class__.__name__)
        self.cluster = cluster
        self.ledger = ledger
        self.settings = settings

    @property
    def context_id(self) -> str:
        return self.settings.context_id

    def _fetch(self) -> List[WorkloadDocument]:
        return self.cluster.fetch(self.settings.kinds, self.settings.namespaces or None)

    def _plan(self, doc: WorkloadDocument) -> List[ImageChange]:
        try:
            return plan_changes(doc)
        except Exception as e:
            # Unexpected manifest shapes must not stop the pass
            self.logger.warning(f"Could not plan {doc.ref}, treating as unchanged: {e}")
            return []

    # State machine

    def decide(self, doc: WorkloadDocument) -> Decision:
        """Ledger check and planning. Never mutates the cluster or the ledger."""
        uid = self.cluster.get_live_uid(doc.ref) or doc.uid

        if self.ledger.is_verified(doc.ref, self.context_id, uid):
            if not self.settings.force_recheck:
                return Decision(doc, uid, skip=ResourceState.SKIPPED_VERIFIED, reason="verified")

            live = self.cluster.get(doc.ref)
            if live is None:
                return Decision(doc, uid, skip=ResourceState.SKIPPED_VERIFIED, reason="verified, gone from cluster")
            live_changes = self._plan(live)
            if not live_changes:
                return Decision(live, uid, skip=ResourceState.SKIPPED_VERIFIED, reason="verified, recheck clean")
            self.logger.warning(f"{doc.ref} was verified but references bitnami/ images again; migrating")
            return Decision(live, uid, changes=live_changes, reason="drift")

        changes = self._plan(doc)
        if changes:
            return Decision(doc, uid, changes=changes, reason="pending")

        # Patched by an earlier run that stopped before the rollout was confirmed
        if self.ledger.latest_phase(doc.ref, self.context_id, uid) in (
            LedgerPhase.APPLYING,
            LedgerPhase.APPLIED,
        ):
            return Decision(doc, uid, reason="rollout not yet verified", resume_rollout=True)
        return Decision(doc, uid, skip=ResourceState.SKIPPED_NO_CHANGE, reason="no bitnami/ images")

    def execute(self, decision: Decision) -> ResourceOutcome:
        """Apply a pending decision.

        Raises:
            RolloutError: If the rollout fails or times out
            LedgerWriteError: If progress cannot be recorded
        """
        ref, uid, ops = decision.ref, decision.uid, decision.ops

        if decision.resume_rollout:
            self.logger.info(f"{ref}: images already migrated, confirming rollout")
        else:
            self.logger.info(f"{ref}: {ResourceState.APPLYING.value} {len(ops)} image change(s)")
            self.ledger.record(LedgerPhase.APPLYING, ref, self.context_id, uid, extra=[op.to_dict() for op in ops])

            if not self.cluster.dry_run_validate(ref, ops):
                return self._failed(decision, "server-side validation rejected the patch")
            if not self.cluster.apply_patch(ref, ops):
                return self._failed(decision, "patch request failed")

            self.ledger.record(LedgerPhase.APPLIED, ref, self.context_id, uid)
            self.logger.info(f"{ref}: {ResourceState.APPLIED.value}")

        if ref.kind.has_rollout:
            self.logger.info(f"{ref}: {ResourceState.ROLLOUT_WAITING.value} (timeout {self.settings.rollout_timeout:g}s)")
            status = self.cluster.wait_for_rollout(ref, self.settings.rollout_timeout)
            if status is not RolloutStatus.COMPLETE:
                raise RolloutError(ref, status.value, self.settings.rollout_timeout)
        else:
            self.logger.info(f"{ref}: template updated (no rollout)")

        self.ledger.record(LedgerPhase.VERIFIED, ref, self.context_id, uid)
        self.logger.info(f"{ref}: {ResourceState.VERIFIED.value}")
        return ResourceOutcome(ref, ResourceState.VERIFIED, uid, decision.changes)

    def _failed(self, decision: Decision, message: str) -> ResourceOutcome:
        self.logger.error(f"{decision.ref}: {ResourceState.FAILED.value}, {message}")
        return ResourceOutcome(decision.ref, ResourceState.FAILED, decision.uid, decision.changes, message)

    def _skipped(self, decision: Decision) -> ResourceOutcome:
        self.logger.info(f"{decision.ref}: {decision.skip.value} ({decision.reason})")
        return ResourceOutcome(decision.ref, decision.skip, decision.uid, message=decision.reason)

    def _execute_or_halt(self, report: RunReport, decision: Decision) -> bool:
        """Execute and record; returns False when the pass must stop."""
        try:
            report.add(self.execute(decision))
        except RolloutError as e:
            self.logger.error(f"{e}; halting, no further workloads will be touched")
            report.add(ResourceOutcome(decision.ref, ResourceState.FAILED, decision.uid, decision.changes, str(e)))
            report.halted = True
            report.halt_status = e.status
            return False
        return True

    # Policies

    def plan(self) -> RunReport:
        """Show what apply would do without touching the cluster or the ledger."""
        report = RunReport("plan", self.context_id)
        for doc in self._fetch():
            decision = self.decide(doc)
            if not decision.needs_work:
                report.add(self._skipped(decision))
                continue
            if decision.resume_rollout:
                self.logger.info(f"{decision.ref}: patched earlier, rollout still to be confirmed")
            report.add(ResourceOutcome(decision.ref, ResourceState.PENDING, decision.uid, decision.changes, decision.reason))

        print(render_plan((o.ref, o.changes) for o in report.pending()))
        self.logger.info(f"Inspected {report.inspected} workloads, {len(report.pending())} need migration")
        return report

    def apply(self, action: str = "apply", note_unfinished: bool = False) -> RunReport:
        report = RunReport(action, self.context_id)
        for doc in self._fetch():
            decision = self.decide(doc)
            if not decision.needs_work:
                report.add(self._skipped(decision))
                continue
            if note_unfinished:
                self._note_unfinished(decision)
            if not self._execute_or_halt(report, decision):
                break
        return report

    def continue_run(self) -> RunReport:
        """Resume an interrupted migration. Same decisions as apply."""
        unfinished = self.ledger.unfinished(self.context_id)
        if unfinished:
            self.logger.info(f"Ledger has {len(unfinished)} workloads with unfinished migrations")
        return self.apply(action="continue", note_unfinished=True)

    def _note_unfinished(self, decision: Decision) -> None:
        phase = self.ledger.latest_phase(decision.ref, self.context_id, decision.uid)
        if phase in (LedgerPhase.APPLYING, LedgerPhase.APPLIED):
            self.logger.info(f"{decision.ref}: resuming after unfinished '{phase.value}' step")

    def verify(self) -> RunReport:
        """Report whether any selected workload still references bitnami/ images.

        The ledger is ignored; this looks only at what is live.
        """
        report = RunReport("verify", self.context_id)
        for doc in self._fetch():
            changes = self._plan(doc)
            if changes:
                images = ", ".join(c.old_image for c in changes)
                self.logger.warning(f"WARNING {doc.ref}: still on bitnami/ ({images})")
                report.add(ResourceOutcome(doc.ref, ResourceState.PENDING, doc.uid, changes, "still references bitnami/"))
            else:
                self.logger.info(f"OK {doc.ref}")
                report.add(ResourceOutcome(doc.ref, ResourceState.SKIPPED_NO_CHANGE, doc.uid, message="ok"))
        return report

    def interactive(self, prompter: OperatorPrompter) -> RunReport:
        """Ask the operator before each pending workload."""
        report = RunReport("interactive", self.context_id)
        apply_all = False
        for doc in self._fetch():
            decision = self.decide(doc)
            if not decision.needs_work:
                report.add(self._skipped(decision))
                continue

            if decision.resume_rollout:
                prompter.show(f"{decision.ref}: patched earlier, rollout still to be confirmed")
            else:
                prompter.show(render_changes(decision.ref, decision.changes))

            if not apply_all:
                choice = prompter.ask(MAIN_PROMPT)
                if choice is Choice.SHOW_PATCH:
                    prompter.show(render_patch(decision.ops))
                    choice = prompter.ask(AFTER_PATCH_PROMPT)
                    if choice is Choice.SHOW_PATCH:
                        choice = Choice.SKIP

                if choice is Choice.QUIT:
                    self.logger.info("Stopped by operator")
                    report.quit_requested = True
                    break
                if choice is Choice.APPLY_ALL:
                    apply_all = True
                elif choice is not Choice.APPLY:
                    self.logger.info(f"{decision.ref}: skipped by operator")
                    report.add(ResourceOutcome(decision.ref, ResourceState.SKIPPED_BY_OPERATOR, decision.uid, decision.changes))
                    continue

            if not self._execute_or_halt(report, decision):
                break
        return report

    def scan(self) -> RunReport:
        """Inventory every container image that mentions bitnami."""
        report = RunReport("scan", self.context_id)
        for doc in self._fetch():
            for section, containers in doc.template.sections():
                for container in containers:
                    if not references_bitnami(container.image):
                        continue
                    report.findings.append(
                        {
                            "namespace": doc.ref.namespace,
                            "kind": doc.ref.kind.value,
                            "name": doc.ref.name,
                            "container": container.name,
                            "section": section,
                            "image": container.image,
                            "status": "needs-migration" if needs_rewrite(container.image) else "legacy",
                        }
                    )
        print(render_scan(report.findings))
        self.logger.info(f"Found {len(report.findings)} bitnami image references")
        return report
