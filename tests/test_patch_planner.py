"""Unit tests for migration/patch_planner.py and WorkloadDocument parsing"""

import pytest

from conftest import make_manifest
from migration.errors import MalformedDocumentError
from migration.models import WorkloadDocument, WorkloadKind
from migration.patch_planner import plan, plan_changes


def _doc(**kwargs):
    return WorkloadDocument.from_manifest(make_manifest(**kwargs))


class TestPlanPaths:
    """Patch paths per workload kind"""

    @pytest.mark.parametrize(
        "kind,expected_path",
        [
            ("Deployment", "/spec/template/spec/containers/0/image"),
            ("DaemonSet", "/spec/template/spec/containers/0/image"),
            ("StatefulSet", "/spec/template/spec/containers/0/image"),
            ("CronJob", "/spec/jobTemplate/spec/template/spec/containers/0/image"),
        ],
    )
    def test_path_per_kind(self, kind, expected_path):
        """Each kind is planned against its own pod template location"""
        ops = plan(_doc(kind=kind, images=["bitnami/x:1.0"]))

        assert [op.to_dict() for op in ops] == [
            {"op": "replace", "path": expected_path, "value": "bitnamilegacy/x:1.0"}
        ]

    def test_single_deployment_replace(self):
        """One bitnami container yields one replace operation"""
        ops = plan(_doc(images=["docker.io/bitnami/redis:7.0"]))

        assert len(ops) == 1
        assert ops[0].op == "replace"
        assert ops[0].path == "/spec/template/spec/containers/0/image"
        assert ops[0].value == "docker.io/bitnamilegacy/redis:7.0"

    def test_cronjob_init_container_index(self):
        """Only the init container still on bitnami/ is planned, at its own index"""
        doc = _doc(kind="CronJob", images=["busybox:1.36"], init_images=["bitnamilegacy/nginx:1", "bitnami/nginx:1"])

        ops = plan(doc)

        assert len(ops) == 1
        assert ops[0].path == "/spec/jobTemplate/spec/template/spec/initContainers/1/image"
        assert ops[0].value == "bitnamilegacy/nginx:1"


class TestPlanChanges:
    """Tests for plan_changes()"""

    def test_containers_before_init_containers(self):
        doc = _doc(images=["nginx:1", "bitnami/redis:7"], init_images=["bitnami/os-shell:12"])

        changes = plan_changes(doc)

        assert [(c.section, c.index) for c in changes] == [("containers", 1), ("initContainers", 0)]
        assert changes[0].container == "app1"
        assert changes[0].old_image == "bitnami/redis:7"
        assert changes[0].new_image == "bitnamilegacy/redis:7"
        assert changes[1].container == "init0"

    def test_no_matching_images_gives_empty_plan(self):
        assert plan(_doc(images=["nginx:1", "bitnamilegacy/redis:7"])) == []

    def test_replanning_migrated_document_is_empty(self):
        """Applying the planned values and planning again yields nothing"""
        manifest = make_manifest(images=["bitnami/redis:7", "myorg/not-bitnami/tools/bitnami/exporter:1"], init_images=["bitnami/os-shell:12"])
        doc = WorkloadDocument.from_manifest(manifest)
        for change in plan_changes(doc):
            section = manifest["spec"]["template"]["spec"][change.section]
            section[change.index]["image"] = change.new_image

        assert plan(WorkloadDocument.from_manifest(manifest)) == []


class TestMalformedDocuments:
    """Planning never fails on odd container sections"""

    def test_missing_containers(self):
        manifest = make_manifest()
        del manifest["spec"]["template"]["spec"]["containers"]

        assert plan(WorkloadDocument.from_manifest(manifest)) == []

    def test_non_list_containers(self):
        manifest = make_manifest()
        manifest["spec"]["template"]["spec"]["containers"] = {"image": "bitnami/redis:7"}

        assert plan(WorkloadDocument.from_manifest(manifest)) == []

    def test_missing_template(self):
        manifest = make_manifest(images=["bitnami/redis:7"])
        del manifest["spec"]["template"]

        assert plan(WorkloadDocument.from_manifest(manifest)) == []

    def test_non_mapping_entries_keep_original_indexes(self):
        manifest = make_manifest()
        manifest["spec"]["template"]["spec"]["containers"] = ["garbage", None, {"name": "redis", "image": "bitnami/redis:7"}]

        ops = plan(WorkloadDocument.from_manifest(manifest))

        assert [op.path for op in ops] == ["/spec/template/spec/containers/2/image"]

    def test_container_without_image_is_skipped(self):
        manifest = make_manifest(images=["bitnami/redis:7"])
        manifest["spec"]["template"]["spec"]["containers"].insert(0, {"name": "noimage"})

        ops = plan(WorkloadDocument.from_manifest(manifest))

        assert [op.path for op in ops] == ["/spec/template/spec/containers/1/image"]

    def test_missing_name_raises(self):
        manifest = make_manifest()
        del manifest["metadata"]["name"]

        with pytest.raises(MalformedDocumentError, match="no metadata.name"):
            WorkloadDocument.from_manifest(manifest)

    def test_kind_taken_from_argument_when_manifest_has_none(self):
        manifest = make_manifest(kind="StatefulSet")
        del manifest["kind"]

        doc = WorkloadDocument.from_manifest(manifest, WorkloadKind.STATEFUL_SET)

        assert doc.kind is WorkloadKind.STATEFUL_SET
        assert doc.uid == "u1"

    def test_unknown_kind_raises(self):
        manifest = make_manifest()
        manifest["kind"] = "ReplicaSet"

        with pytest.raises(MalformedDocumentError, match="Unsupported workload kind"):
            WorkloadDocument.from_manifest(manifest)


class TestWorkloadKind:
    """Tests for WorkloadKind parsing"""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("deploy", WorkloadKind.DEPLOYMENT),
            ("Deployment", WorkloadKind.DEPLOYMENT),
            ("ds", WorkloadKind.DAEMON_SET),
            ("statefulsets", WorkloadKind.STATEFUL_SET),
            ("sts", WorkloadKind.STATEFUL_SET),
            ("cronjob", WorkloadKind.CRON_JOB),
            (" CJ ", WorkloadKind.CRON_JOB),
        ],
    )
    def test_parse_aliases(self, text, expected):
        assert WorkloadKind.parse(text) is expected

    def test_parse_unknown(self):
        with pytest.raises(ValueError, match="Unsupported workload kind"):
            WorkloadKind.parse("job")

    def test_parse_many_drops_duplicates(self):
        kinds = WorkloadKind.parse_many(["deploy", "Deployment", "sts"])

        assert kinds == [WorkloadKind.DEPLOYMENT, WorkloadKind.STATEFUL_SET]

    def test_only_cronjob_has_no_rollout(self):
        assert [k for k in WorkloadKind if not k.has_rollout] == [WorkloadKind.CRON_JOB]
