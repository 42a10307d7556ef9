"""
Data model for workload image migration.

Workloads are read from the cluster as plain manifest dicts and normalized
into these typed shapes. The per-kind location of the pod template is a
property of WorkloadKind, so planners never look paths up by string.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from migration.errors import MalformedDocumentError


class WorkloadKind(Enum):
    """Workload kinds whose pod templates are migrated."""

    DEPLOYMENT = "Deployment"
    DAEMON_SET = "DaemonSet"
    STATEFUL_SET = "StatefulSet"
    CRON_JOB = "CronJob"

    @property
    def pod_spec_path(self) -> Tuple[str, ...]:
        """Path from the manifest root to the pod spec."""
        if self is WorkloadKind.CRON_JOB:
            return ("spec", "jobTemplate", "spec", "template", "spec")
        return ("spec", "template", "spec")

    @property
    def has_rollout(self) -> bool:
        """CronJob template edits only apply to the next scheduled run."""
        return self is not WorkloadKind.CRON_JOB

    @property
    def aliases(self) -> Tuple[str, ...]:
        return _KIND_ALIASES[self]

    @classmethod
    def parse(cls, value: str) -> "WorkloadKind":
        """Resolve a kind name or kubectl short name (deploy, ds, sts, cronjob)."""
        key = str(value).strip().lower()
        for kind in cls:
            if key == kind.value.lower() or key in kind.aliases:
                return kind
        raise ValueError(
            f"Unsupported workload kind '{value}' (expected one of: "
            f"{', '.join(k.value for k in cls)} or deploy, ds, sts, cronjob)"
        )

    @classmethod
    def parse_many(cls, values: List[str]) -> List["WorkloadKind"]:
        """Parse a list of kinds, dropping duplicates while keeping order."""
        kinds: List[WorkloadKind] = []
        for value in values:
            kind = cls.parse(value)
            if kind not in kinds:
                kinds.append(kind)
        return kinds


_KIND_ALIASES = {
    WorkloadKind.DEPLOYMENT: ("deploy", "deployment", "deployments"),
    WorkloadKind.DAEMON_SET: ("ds", "daemonset", "daemonsets"),
    WorkloadKind.STATEFUL_SET: ("sts", "statefulset", "statefulsets"),
    WorkloadKind.CRON_JOB: ("cj", "cronjob", "cronjobs"),
}


@dataclass(frozen=True)
class WorkloadRef:
    """Identifies a workload within one cluster."""

    kind: WorkloadKind
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind.value}/{self.name} ({self.namespace})"

    @property
    def resource(self) -> str:
        """kubectl style resource name, e.g. deployment/redis."""
        return f"{self.kind.value.lower()}/{self.name}"


@dataclass(frozen=True)
class ContainerSpec:
    """One container or init container entry, keeping its position in the manifest."""

    index: int
    name: Optional[str]
    image: Optional[str]


@dataclass(frozen=True)
class PodTemplateSpec:
    containers: Tuple[ContainerSpec, ...] = ()
    init_containers: Tuple[ContainerSpec, ...] = ()

    def sections(self) -> Tuple[Tuple[str, Tuple[ContainerSpec, ...]], ...]:
        """Container sections in planning order, keyed by manifest field name."""
        return (("containers", self.containers), ("initContainers", self.init_containers))


def _container_section(pod_spec: Any, section: str) -> Tuple[ContainerSpec, ...]:
    if not isinstance(pod_spec, dict):
        return ()
    entries = pod_spec.get(section)
    if not isinstance(entries, list):
        return ()
    containers = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            continue
        image = entry.get("image")
        containers.append(
            ContainerSpec(
                index=index,
                name=entry.get("name"),
                image=image if isinstance(image, str) else None,
            )
        )
    return tuple(containers)


def _dig(manifest: Dict[str, Any], path: Tuple[str, ...]) -> Any:
    current: Any = manifest
    for part in path:
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


@dataclass(frozen=True)
class WorkloadDocument:
    """A workload as read from the cluster in the current pass."""

    ref: WorkloadRef
    uid: Optional[str]
    template: PodTemplateSpec = field(default_factory=PodTemplateSpec)

    @property
    def kind(self) -> WorkloadKind:
        return self.ref.kind

    @classmethod
    def from_manifest(cls, manifest: Dict[str, Any], kind: Optional[WorkloadKind] = None) -> "WorkloadDocument":
        """Build a document from a manifest dict (camelCase keys, as the API serves them).

        Args:
            manifest: Workload manifest
            kind: Kind to use when the manifest has no "kind" field (list responses omit it)

        Raises:
            MalformedDocumentError: If the kind, name or namespace cannot be determined
        """
        if not isinstance(manifest, dict):
            raise MalformedDocumentError(f"Workload manifest must be a mapping, got {type(manifest).__name__}")

        if manifest.get("kind"):
            try:
                kind = WorkloadKind.parse(manifest["kind"])
            except ValueError as e:
                raise MalformedDocumentError(str(e)) from e
        if kind is None:
            raise MalformedDocumentError("Workload manifest has no kind")

        metadata = manifest.get("metadata")
        if not isinstance(metadata, dict) or not metadata.get("name"):
            raise MalformedDocumentError(f"{kind.value} manifest has no metadata.name")

        pod_spec = _dig(manifest, kind.pod_spec_path)
        return cls(
            ref=WorkloadRef(kind=kind, namespace=metadata.get("namespace") or "default", name=metadata["name"]),
            uid=metadata.get("uid"),
            template=PodTemplateSpec(
                containers=_container_section(pod_spec, "containers"),
                init_containers=_container_section(pod_spec, "initContainers"),
            ),
        )


@dataclass(frozen=True)
class PatchOp:
    """A single JSON-patch replace of one image field."""

    path: str
    value: str
    op: str = "replace"

    def to_dict(self) -> Dict[str, str]:
        return {"op": self.op, "path": self.path, "value": self.value}


class LedgerPhase(Enum):
    APPLYING = "applying"
    APPLIED = "applied"
    VERIFIED = "verified"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class LedgerEntry:
    """One immutable line of the migration state file."""

    phase: LedgerPhase
    kind: str
    namespace: str
    name: str
    context: str
    uid: str
    extra: Any = ""
    ts: str = field(default_factory=utc_timestamp)

    @property
    def identity(self) -> Tuple[str, str, str, str, str]:
        return (self.kind, self.namespace, self.name, self.context, self.uid)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["phase"] = self.phase.value
        return {key: data[key] for key in ("ts", "phase", "kind", "namespace", "name", "context", "uid", "extra")}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerEntry":
        """Parse a state file record.

        Raises:
            ValueError: If the record is not a ledger entry
        """
        if not isinstance(data, dict):
            raise ValueError("ledger record must be an object")
        missing = [key for key in ("phase", "kind", "namespace", "name") if key not in data]
        if missing:
            raise ValueError(f"ledger record is missing {', '.join(missing)}")
        return cls(
            phase=LedgerPhase(data["phase"]),
            kind=str(data["kind"]),
            namespace=str(data["namespace"]),
            name=str(data["name"]),
            context=str(data.get("context") or ""),
            uid=str(data.get("uid") or ""),
            extra=data.get("extra", ""),
            ts=str(data.get("ts") or ""),
        )


def identity_of(ref: WorkloadRef, context_id: str, uid: Optional[str]) -> Tuple[str, str, str, str, str]:
    """Identity tuple for a workload incarnation in one cluster."""
    return (ref.kind.value, ref.namespace, ref.name, context_id, uid or "")
