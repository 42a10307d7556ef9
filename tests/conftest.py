"""
Pytest configuration file.

Sets up the Python path so test files can import from the python/ directory,
and provides an in-memory cluster plus manifest builders shared by the tests.
"""
import copy
import sys
from pathlib import Path

import pytest

# Add python directory to path for all tests
_python_dir = Path(__file__).parent.parent / 'python'
_python_dir_abs = str(_python_dir.absolute())
if _python_dir_abs not in sys.path:
    sys.path.insert(0, _python_dir_abs)

from migration.cluster import ClusterClient, RolloutStatus  # noqa: E402
from migration.models import WorkloadDocument, WorkloadKind, WorkloadRef  # noqa: E402


def _containers(images, prefix):
    return [{"name": f"{prefix}{i}", "image": image} for i, image in enumerate(images)]


def make_manifest(kind="Deployment", name="redis", namespace="default", uid="u1", images=(), init_images=()):
    """Build a workload manifest the way the API serves it (camelCase keys)."""
    pod_spec = {"containers": _containers(images, "app")}
    if init_images:
        pod_spec["initContainers"] = _containers(init_images, "init")
    template = {"metadata": {"labels": {"app": name}}, "spec": pod_spec}

    if kind == "CronJob":
        spec = {"schedule": "*/5 * * * *", "jobTemplate": {"spec": {"template": template}}}
    else:
        spec = {"replicas": 1, "template": template}

    return {
        "kind": kind,
        "metadata": {"name": name, "namespace": namespace, "uid": uid, "generation": 1},
        "spec": spec,
    }


def _set_path(manifest, path, value):
    parts = path.strip("/").split("/")
    target = manifest
    for part in parts[:-1]:
        target = target[int(part)] if isinstance(target, list) else target[part]
    target[parts[-1]] = value


class FakeCluster(ClusterClient):
    """In-memory cluster that applies JSON-patch replace ops to stored manifests."""

    def __init__(self, manifests=(), context_id="ctx-a"):
        self.context_id = context_id
        self.objects = {}
        for manifest in manifests:
            self.put(manifest)
        self.rollout_results = {}
        self.reject_validation = set()
        self.reject_apply = set()
        self.validated = []
        self.patches = []
        self.rollout_waits = []

    @staticmethod
    def ref_of(manifest):
        meta = manifest["metadata"]
        return WorkloadRef(WorkloadKind.parse(manifest["kind"]), meta["namespace"], meta["name"])

    def put(self, manifest):
        """Create or replace an object, e.g. to simulate drift or re-creation."""
        self.objects[self.ref_of(manifest)] = copy.deepcopy(manifest)

    def image_of(self, ref, path):
        target = self.objects[ref]
        for part in path.strip("/").split("/"):
            target = target[int(part)] if isinstance(target, list) else target[part]
        return target

    def fetch(self, kinds, namespaces=None):
        return [
            WorkloadDocument.from_manifest(copy.deepcopy(manifest), ref.kind)
            for ref, manifest in self.objects.items()
            if ref.kind in kinds and (not namespaces or ref.namespace in namespaces)
        ]

    def get(self, ref):
        if ref not in self.objects:
            return None
        return WorkloadDocument.from_manifest(copy.deepcopy(self.objects[ref]), ref.kind)

    def dry_run_validate(self, ref, ops):
        self.validated.append((ref, list(ops)))
        return ref not in self.reject_validation

    def apply_patch(self, ref, ops):
        self.patches.append((ref, list(ops)))
        if ref in self.reject_apply:
            return False
        for op in ops:
            _set_path(self.objects[ref], op.path, op.value)
        return True

    def wait_for_rollout(self, ref, timeout_seconds):
        self.rollout_waits.append((ref, timeout_seconds))
        return self.rollout_results.get(ref, RolloutStatus.COMPLETE)

    def get_live_uid(self, ref):
        manifest = self.objects.get(ref)
        return manifest["metadata"].get("uid") if manifest else None

    def get_current_context_id(self):
        return self.context_id


@pytest.fixture
def manifest_factory():
    return make_manifest


@pytest.fixture
def fake_cluster():
    return FakeCluster()


@pytest.fixture
def state_file(tmp_path):
    return str(tmp_path / "bitnami-migration-state.jsonl")


@pytest.fixture
def ledger(state_file):
    from migration.ledger import MigrationLedger

    return MigrationLedger(state_file)
