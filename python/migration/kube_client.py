"""
Kubernetes implementation of the cluster collaborator.

Uses the official kubernetes client (AppsV1Api for Deployments, DaemonSets
and StatefulSets, BatchV1Api for CronJobs). Patches are sent as JSON-patch:
the client selects application/json-patch+json when the body is a list.
Rollout completion follows the same rules as `kubectl rollout status`.
"""

import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from migration.cluster import ClusterClient, RolloutStatus
from migration.errors import MalformedDocumentError
from migration.models import PatchOp, WorkloadDocument, WorkloadKind, WorkloadRef
from utils.config_manager import get_current_context_id, get_kubernetes_clients
from utils.logging_utils import get_logger
from utils.retry_utils import retry_with_backoff

# Rollout progress: None while still in progress
RolloutCheck = Tuple[Optional[RolloutStatus], str]


def _int(value: Any) -> int:
    return int(value or 0)


def deployment_rollout_status(manifest: Dict[str, Any]) -> RolloutCheck:
    metadata = manifest.get("metadata") or {}
    spec = manifest.get("spec") or {}
    status = manifest.get("status") or {}
    name = metadata.get("name")

    if _int(metadata.get("generation")) > _int(status.get("observedGeneration")):
        return None, "Waiting for deployment spec update to be observed..."

    for condition in status.get("conditions") or []:
        if condition.get("type") == "Progressing" and condition.get("reason") == "ProgressDeadlineExceeded":
            return RolloutStatus.FAILED, f'deployment "{name}" exceeded its progress deadline'

    replicas = spec.get("replicas")
    updated = _int(status.get("updatedReplicas"))
    if replicas is not None and updated < _int(replicas):
        return None, f"{updated} out of {replicas} new replicas have been updated..."
    if _int(status.get("replicas")) > updated:
        return None, f"{_int(status.get('replicas')) - updated} old replicas are pending termination..."
    available = _int(status.get("availableReplicas"))
    if available < updated:
        return None, f"{available} of {updated} updated replicas are available..."
    return RolloutStatus.COMPLETE, f'deployment "{name}" successfully rolled out'


def daemon_set_rollout_status(manifest: Dict[str, Any]) -> RolloutCheck:
    metadata = manifest.get("metadata") or {}
    spec = manifest.get("spec") or {}
    status = manifest.get("status") or {}
    name = metadata.get("name")

    strategy = (spec.get("updateStrategy") or {}).get("type", "RollingUpdate")
    if strategy != "RollingUpdate":
        return RolloutStatus.COMPLETE, f"rollout status is only available for RollingUpdate strategy type ({strategy})"

    if _int(metadata.get("generation")) > _int(status.get("observedGeneration")):
        return None, "Waiting for daemon set spec update to be observed..."

    desired = _int(status.get("desiredNumberScheduled"))
    updated = _int(status.get("updatedNumberScheduled"))
    if updated < desired:
        return None, f"{updated} out of {desired} new pods have been updated..."
    available = _int(status.get("numberAvailable"))
    if available < desired:
        return None, f"{available} of {desired} updated pods are available..."
    return RolloutStatus.COMPLETE, f'daemon set "{name}" successfully rolled out'


def stateful_set_rollout_status(manifest: Dict[str, Any]) -> RolloutCheck:
    metadata = manifest.get("metadata") or {}
    spec = manifest.get("spec") or {}
    status = manifest.get("status") or {}

    update_strategy = spec.get("updateStrategy") or {}
    strategy = update_strategy.get("type", "RollingUpdate")
    if strategy != "RollingUpdate":
        return RolloutStatus.COMPLETE, f"rollout status is only available for RollingUpdate strategy type ({strategy})"

    observed = _int(status.get("observedGeneration"))
    if observed == 0 or _int(metadata.get("generation")) > observed:
        return None, "Waiting for statefulset spec update to be observed..."

    replicas = spec.get("replicas")
    ready = _int(status.get("readyReplicas"))
    if replicas is not None and ready < _int(replicas):
        return None, f"Waiting for {_int(replicas) - ready} pods to be ready..."

    partition = (update_strategy.get("rollingUpdate") or {}).get("partition")
    if partition is not None and replicas is not None:
        updated = _int(status.get("updatedReplicas"))
        expected = _int(replicas) - _int(partition)
        if updated < expected:
            return None, f"Waiting for partitioned roll out to finish: {updated} out of {expected} new pods have been updated..."
        return RolloutStatus.COMPLETE, f"partitioned roll out complete: {updated} new pods have been updated..."

    if status.get("updateRevision") != status.get("currentRevision"):
        return None, (
            f"waiting for statefulset rolling update to complete {_int(status.get('updatedReplicas'))} "
            f"pods at revision {status.get('updateRevision')}..."
        )
    return RolloutStatus.COMPLETE, f"statefulset rolling update complete {ready} pods at revision {status.get('currentRevision')}..."


ROLLOUT_CHECKS: Dict[WorkloadKind, Callable[[Dict[str, Any]], RolloutCheck]] = {
    WorkloadKind.DEPLOYMENT: deployment_rollout_status,
    WorkloadKind.DAEMON_SET: daemon_set_rollout_status,
    WorkloadKind.STATEFUL_SET: stateful_set_rollout_status,
}


class KubernetesClusterClient(ClusterClient):
    """Cluster collaborator backed by the Kubernetes API."""

    def __init__(
        self,
        apps_v1,
        batch_v1,
        context_id: str = "unknown",
        poll_interval: float = 2.0,
        retry_settings: Optional[Dict[str, Any]] = None,
        api_client=None,
    ):
        """
        Args:
            apps_v1: kubernetes.client.AppsV1Api instance
            batch_v1: kubernetes.client.BatchV1Api instance
            context_id: Cluster identity used to key the ledger
            poll_interval: Seconds between rollout status reads
            retry_settings: Keyword arguments for retry_with_backoff on reads
            api_client: ApiClient used to serialize models into manifest dicts
        """
        self.logger = get_logger(self.__class__.__name__)
        self.apps_v1 = apps_v1
        self.batch_v1 = batch_v1
        self.context_id = context_id
        self.poll_interval = poll_interval
        self.retry_settings = retry_settings or {}
        self._api_client = api_client

    @classmethod
    def from_config(
        cls,
        context: Optional[str] = None,
        poll_interval: float = 2.0,
        retry_settings: Optional[Dict[str, Any]] = None,
    ) -> "KubernetesClusterClient":
        """Load kubeconfig (or in-cluster config) and build the API clients."""
        apps_v1, batch_v1 = get_kubernetes_clients(context)
        return cls(
            apps_v1,
            batch_v1,
            context_id=get_current_context_id(context),
            poll_interval=poll_interval,
            retry_settings=retry_settings,
        )

    def _calls(self, kind: WorkloadKind) -> Dict[str, Callable]:
        """API methods for one kind: list_all, list, read, patch."""
        if kind is WorkloadKind.DEPLOYMENT:
            return {
                "list_all": self.apps_v1.list_deployment_for_all_namespaces,
                "list": self.apps_v1.list_namespaced_deployment,
                "read": self.apps_v1.read_namespaced_deployment,
                "patch": self.apps_v1.patch_namespaced_deployment,
            }
        if kind is WorkloadKind.DAEMON_SET:
            return {
                "list_all": self.apps_v1.list_daemon_set_for_all_namespaces,
                "list": self.apps_v1.list_namespaced_daemon_set,
                "read": self.apps_v1.read_namespaced_daemon_set,
                "patch": self.apps_v1.patch_namespaced_daemon_set,
            }
        if kind is WorkloadKind.STATEFUL_SET:
            return {
                "list_all": self.apps_v1.list_stateful_set_for_all_namespaces,
                "list": self.apps_v1.list_namespaced_stateful_set,
                "read": self.apps_v1.read_namespaced_stateful_set,
                "patch": self.apps_v1.patch_namespaced_stateful_set,
            }
        return {
            "list_all": self.batch_v1.list_cron_job_for_all_namespaces,
            "list": self.batch_v1.list_namespaced_cron_job,
            "read": self.batch_v1.read_namespaced_cron_job,
            "patch": self.batch_v1.patch_namespaced_cron_job,
        }

    def _read_with_retry(self, func: Callable, *args, **kwargs):
        return retry_with_backoff(**self.retry_settings)(func)(*args, **kwargs)

    def _to_dict(self, obj: Any) -> Dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        if self._api_client is None:
            self._api_client = client.ApiClient()
        return self._api_client.sanitize_for_serialization(obj)

    def _items(self, response: Any) -> List[Any]:
        if isinstance(response, dict):
            return response.get("items") or []
        return response.items or []

    def fetch(self, kinds: List[WorkloadKind], namespaces: Optional[List[str]] = None) -> List[WorkloadDocument]:
        """List workloads, namespace by namespace when a restriction is given.

        A failed list call is logged and contributes nothing; the other
        namespaces and kinds are still returned.
        """
        documents: List[WorkloadDocument] = []
        scopes = namespaces or [None]
        for namespace in scopes:
            for kind in kinds:
                calls = self._calls(kind)
                try:
                    if namespace is None:
                        response = self._read_with_retry(calls["list_all"])
                    else:
                        response = self._read_with_retry(calls["list"], namespace)
                except Exception as e:
                    where = f"namespace {namespace}" if namespace else "all namespaces"
                    self.logger.warning(f"Failed to list {kind.value} in {where}: {e}")
                    continue

                for item in self._items(response):
                    try:
                        documents.append(WorkloadDocument.from_manifest(self._to_dict(item), kind))
                    except MalformedDocumentError as e:
                        self.logger.warning(f"Skipping malformed {kind.value}: {e}")
        self.logger.info(f"Fetched {len(documents)} workloads")
        return documents

    def _read(self, ref: WorkloadRef) -> Optional[Dict[str, Any]]:
        try:
            obj = self._read_with_retry(self._calls(ref.kind)["read"], ref.name, ref.namespace)
        except ApiException as e:
            if e.status == 404:
                self.logger.info(f"{ref} no longer exists")
            else:
                self.logger.warning(f"Failed to read {ref}: {e.status} {e.reason}")
            return None
        except (HTTPError, OSError) as e:
            self.logger.warning(f"Failed to read {ref}: {e}")
            return None
        return self._to_dict(obj)

    def get(self, ref: WorkloadRef) -> Optional[WorkloadDocument]:
        manifest = self._read(ref)
        if manifest is None:
            return None
        try:
            return WorkloadDocument.from_manifest(manifest, ref.kind)
        except MalformedDocumentError as e:
            self.logger.warning(f"Live copy of {ref} is malformed: {e}")
            return None

    def get_live_uid(self, ref: WorkloadRef) -> Optional[str]:
        manifest = self._read(ref)
        if manifest is None:
            return None
        return (manifest.get("metadata") or {}).get("uid")

    def _patch(self, ref: WorkloadRef, ops: List[PatchOp], dry_run: bool) -> bool:
        body = [op.to_dict() for op in ops]
        kwargs = {"dry_run": "All"} if dry_run else {}
        try:
            self._calls(ref.kind)["patch"](ref.name, ref.namespace, body, **kwargs)
        except ApiException as e:
            action = "Server-side validation" if dry_run else "Patch"
            self.logger.error(f"{action} of {ref} rejected: {e.status} {e.reason}")
            if e.body:
                self.logger.debug(f"API response: {e.body}")
            return False
        except (HTTPError, OSError) as e:
            action = "Server-side validation" if dry_run else "Patch"
            self.logger.error(f"{action} of {ref} failed: {e}")
            return False
        return True

    def dry_run_validate(self, ref: WorkloadRef, ops: List[PatchOp]) -> bool:
        return self._patch(ref, ops, dry_run=True)

    def apply_patch(self, ref: WorkloadRef, ops: List[PatchOp]) -> bool:
        # Mutating calls are not retried
        return self._patch(ref, ops, dry_run=False)

    def wait_for_rollout(self, ref: WorkloadRef, timeout_seconds: float) -> RolloutStatus:
        """Poll the workload until its rollout completes, fails or the timeout passes.

        A timeout of 0 checks once.
        """
        check = ROLLOUT_CHECKS.get(ref.kind)
        if check is None:
            return RolloutStatus.COMPLETE

        deadline = time.monotonic() + timeout_seconds
        last_message = ""
        while True:
            manifest = self._read(ref)
            if manifest is None:
                return RolloutStatus.FAILED

            status, message = check(manifest)
            if message != last_message:
                self.logger.info(f"{ref}: {message}")
                last_message = message
            if status is not None:
                if status is RolloutStatus.COMPLETE and "only available for RollingUpdate" in message:
                    self.logger.warning(f"{ref} has no trackable rollout; treating as complete")
                return status

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self.logger.error(f"Timed out after {timeout_seconds:g}s waiting for {ref} to roll out")
                return RolloutStatus.TIMEOUT
            time.sleep(min(self.poll_interval, remaining))

    def get_current_context_id(self) -> str:
        return self.context_id
