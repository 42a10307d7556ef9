"""
Plan JSON-patch operations that move a workload's images to bitnamilegacy/.

Planning is pure: it reads a WorkloadDocument and never touches the cluster.
Containers are planned before init containers, each in index order.
"""

from dataclasses import dataclass
from typing import List, Optional

from migration.image_rewriter import needs_rewrite, rewrite
from migration.models import PatchOp, WorkloadDocument, WorkloadKind


@dataclass(frozen=True)
class ImageChange:
    """One image field that will be rewritten."""

    section: str  # "containers" or "initContainers"
    index: int
    container: Optional[str]
    old_image: str
    new_image: str
    path: str

    def to_patch_op(self) -> PatchOp:
        return PatchOp(path=self.path, value=self.new_image)


def image_path(kind: WorkloadKind, section: str, index: int) -> str:
    """JSON pointer to the image field of one container entry."""
    return "/" + "/".join(kind.pod_spec_path + (section, str(index), "image"))


def plan_changes(doc: WorkloadDocument) -> List[ImageChange]:
    """List every image change needed for the document (empty if none)."""
    changes = []
    for section, containers in doc.template.sections():
        for container in containers:
            if not needs_rewrite(container.image):
                continue
            changes.append(
                ImageChange(
                    section=section,
                    index=container.index,
                    container=container.name,
                    old_image=container.image,
                    new_image=rewrite(container.image),
                    path=image_path(doc.kind, section, container.index),
                )
            )
    return changes


def plan(doc: WorkloadDocument) -> List[PatchOp]:
    """Ordered patch operations for the document."""
    return [change.to_patch_op() for change in plan_changes(doc)]
