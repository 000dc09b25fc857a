"""Cluster state access through kubectl."""

import json
from typing import Any, Dict, List, Optional

from pgdowngrade.constants import (
    CLUSTER_LABEL,
    CLUSTER_RESOURCE,
    INSTANCE_NAME_LABEL,
    INSTANCE_ROLE_LABEL,
    JOB_ROLE_LABEL,
    JOB_ROLE_MAJOR_DOWNGRADE,
    NODE_SERIAL_ANNOTATION,
    PG_DATA_MOUNT_PATH,
)
from pgdowngrade.errors import DowngradeError
from pgdowngrade.models import (
    Cluster,
    ClusterStatus,
    ExecutionUnit,
    ExecutionUnitStatus,
    PersistentVolume,
)


def build_job_manifest(unit: ExecutionUnit) -> Dict[str, Any]:
    """Render ``unit`` as a batch/v1 Job owned by its cluster."""
    owner = unit.owner_reference
    labels = {
        CLUSTER_LABEL: owner.name,
        INSTANCE_NAME_LABEL: f"{owner.name}-{unit.target_node_serial}",
        JOB_ROLE_LABEL: JOB_ROLE_MAJOR_DOWNGRADE,
    }
    return {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": {
            "name": unit.name,
            "namespace": unit.namespace,
            "labels": labels,
            "ownerReferences": [
                {
                    "apiVersion": owner.api_version,
                    "kind": owner.kind,
                    "name": owner.name,
                    "uid": owner.uid,
                    "controller": True,
                    "blockOwnerDeletion": True,
                }
            ],
        },
        "spec": {
            "backoffLimit": 0,
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "restartPolicy": "Never",
                    "containers": [
                        {
                            "name": JOB_ROLE_MAJOR_DOWNGRADE,
                            "image": unit.image,
                            "command": list(unit.command),
                            "env": [
                                {"name": key, "value": value}
                                for key, value in sorted(unit.environment.items())
                            ],
                            "volumeMounts": [{"name": "pgdata", "mountPath": PG_DATA_MOUNT_PATH}],
                        }
                    ],
                    "volumes": [
                        {
                            "name": "pgdata",
                            "persistentVolumeClaim": {"claimName": unit.volume_claim},
                        }
                    ],
                },
            },
        },
    }


def _parse_major(value, field: str) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise DowngradeError(f"Cluster field {field} is not a major version: {value!r}") from exc


class KubectlClusterClient:
    """Reads and writes cluster resources by shelling out to kubectl."""

    def __init__(
        self,
        command_runner,
        namespace: str,
        kubectl: str = "kubectl",
        context: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.command_runner = command_runner
        self.namespace = namespace
        self.kubectl = kubectl
        self.context = context
        self.timeout = timeout

    def _base_cmd(self) -> List[str]:
        cmd = [self.kubectl, "--namespace", self.namespace]
        if self.context:
            cmd.extend(["--context", self.context])
        return cmd

    def _run(self, args: List[str], input_text: Optional[str] = None):
        return self.command_runner.run(
            self._base_cmd() + args,
            tool="kubectl",
            capture_output=True,
            timeout=self.timeout,
            input_text=input_text,
        )

    def _get_json(self, args: List[str]) -> Optional[Dict[str, Any]]:
        result = self._run(args + ["-o", "json"])
        output = (result.stdout or "").strip()
        if not output:
            return None
        try:
            parsed = json.loads(output)
        except ValueError as exc:
            raise DowngradeError(f"kubectl returned invalid JSON for {' '.join(args)}: {exc}") from exc
        if not isinstance(parsed, dict):
            raise DowngradeError(f"kubectl returned unexpected output for {' '.join(args)}.")
        return parsed

    def get_cluster(self, name: str) -> Cluster:
        data = self._get_json(["get", CLUSTER_RESOURCE, name])
        if data is None:
            raise DowngradeError(f"Cluster {self.namespace}/{name} not found.")
        return self.parse_cluster(data)

    @staticmethod
    def parse_cluster(data: Dict[str, Any]) -> Cluster:
        metadata = data.get("metadata") or {}
        spec = data.get("spec") or {}
        status = data.get("status") or {}
        catalog_ref = spec.get("imageCatalogRef") or {}
        image_info = status.get("pgDataImageInfo") or {}

        declared_major = catalog_ref.get("major")
        recorded_major = image_info.get("majorVersion")
        return Cluster(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            uid=metadata.get("uid", ""),
            image_name=spec.get("imageName") or status.get("image") or "",
            declared_major_version=_parse_major(declared_major, "spec.imageCatalogRef.major"),
            status=ClusterStatus(
                pg_data_major_version=_parse_major(recorded_major, "status.pgDataImageInfo.majorVersion"),
                phase=status.get("phase"),
                phase_reason=status.get("phaseReason"),
            ),
        )

    def list_volumes(self, cluster_name: str) -> List[PersistentVolume]:
        data = self._get_json(["get", "pvc", "-l", f"{CLUSTER_LABEL}={cluster_name}"])
        volumes = []
        for item in (data or {}).get("items", []):
            metadata = item.get("metadata") or {}
            labels = metadata.get("labels") or {}
            annotations = metadata.get("annotations") or {}
            volumes.append(
                PersistentVolume(
                    name=metadata.get("name", ""),
                    role=labels.get(INSTANCE_ROLE_LABEL),
                    serial=annotations.get(NODE_SERIAL_ANNOTATION),
                )
            )
        return volumes

    def register_phase(self, cluster: Cluster, phase: str, reason: str):
        patch = json.dumps({"status": {"phase": phase, "phaseReason": reason}})
        self._run(
            [
                "patch",
                CLUSTER_RESOURCE,
                cluster.name,
                "--subresource=status",
                "--type=merge",
                "-p",
                patch,
            ]
        )

    def find_units(self, cluster: Cluster) -> List[ExecutionUnitStatus]:
        selector = f"{CLUSTER_LABEL}={cluster.name},{JOB_ROLE_LABEL}={JOB_ROLE_MAJOR_DOWNGRADE}"
        data = self._get_json(["get", "job", "-l", selector])
        units = []
        for item in (data or {}).get("items", []):
            metadata = item.get("metadata") or {}
            status = item.get("status") or {}
            units.append(
                ExecutionUnitStatus(
                    name=metadata.get("name", ""),
                    active=int(status.get("active") or 0),
                    succeeded=int(status.get("succeeded") or 0),
                    failed=int(status.get("failed") or 0),
                )
            )
        return units

    def create_unit(self, unit: ExecutionUnit):
        manifest = build_job_manifest(unit)
        self._run(["create", "-f", "-"], input_text=json.dumps(manifest))
