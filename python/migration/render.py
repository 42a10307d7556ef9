"""Console rendering of planned changes, patches and run summaries."""

import json
from typing import Any, Dict, List

from tabulate import tabulate

from migration.models import PatchOp, WorkloadRef


def render_changes(ref: WorkloadRef, changes) -> str:
    """Diff table for one workload."""
    headers = ["Section", "#", "Container", "From", "To"]
    rows = [[c.section, c.index, c.container or "-", c.old_image, c.new_image] for c in changes]
    return f"{ref}\n" + tabulate(rows, headers=headers, tablefmt="grid")


def render_plan(pending) -> str:
    """One table of every pending change across workloads.

    Args:
        pending: Iterable of (WorkloadRef, [ImageChange]) pairs
    """
    headers = ["Namespace", "Kind", "Name", "Container", "From", "To"]
    rows = []
    for ref, changes in pending:
        for change in changes:
            rows.append([ref.namespace, ref.kind.value, ref.name, change.container or "-", change.old_image, change.new_image])
    if not rows:
        return "No pending changes."
    return tabulate(rows, headers=headers, tablefmt="grid")


def render_patch(ops: List[PatchOp]) -> str:
    return json.dumps([op.to_dict() for op in ops], indent=2)


def render_summary(counts: Dict[str, int]) -> str:
    rows = [[state, count] for state, count in counts.items() if count]
    if not rows:
        return "No workloads matched."
    return tabulate(rows, headers=["Outcome", "Workloads"], tablefmt="grid")


def render_scan(findings: List[Dict[str, Any]]) -> str:
    headers = ["Namespace", "Kind", "Name", "Container", "Section", "Image", "Status"]
    rows = [
        [f["namespace"], f["kind"], f["name"], f["container"] or "-", f["section"], f["image"], f["status"]]
        for f in findings
    ]
    if not rows:
        return "No bitnami images found."
    return tabulate(rows, headers=headers, tablefmt="grid")
