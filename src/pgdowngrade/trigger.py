"""Decides when a major version downgrade must start and schedules it."""

import logging
from typing import Iterable, List, Optional

from .constants import (
    CLUSTER_API_VERSION,
    CLUSTER_KIND,
    DEFAULT_PG_DATA,
    DOWNGRADE_COMMAND,
    JOB_ROLE_MAJOR_DOWNGRADE,
    PHASE_MAJOR_UPGRADE,
    PRIMARY_ROLE,
)
from .errors import DowngradeError
from .models import (
    Cluster,
    DowngradeRequest,
    ExecutionUnit,
    ExecutionUnitStatus,
    OwnerReference,
    PersistentVolume,
    ReconcileResult,
)

logger = logging.getLogger("pgdowngrade")


def find_primary_volume(volumes: Iterable[PersistentVolume]) -> Optional[PersistentVolume]:
    for volume in volumes:
        if volume.role == PRIMARY_ROLE:
            return volume
    return None


def parse_node_serial(volume: PersistentVolume) -> int:
    if volume.serial is None or not volume.serial.strip():
        raise DowngradeError(f"Volume {volume.name} has no node serial annotation.")
    try:
        return int(volume.serial.strip())
    except ValueError as exc:
        raise DowngradeError(
            f"Volume {volume.name} has an invalid node serial '{volume.serial}': {exc}"
        ) from exc


def unit_name(cluster: Cluster, node_serial: int) -> str:
    return f"{cluster.name}-{node_serial}-{JOB_ROLE_MAJOR_DOWNGRADE}"


def build_execution_unit(
    cluster: Cluster,
    request: DowngradeRequest,
    volume: PersistentVolume,
    pg_data: str = DEFAULT_PG_DATA,
) -> ExecutionUnit:
    instance_name = f"{cluster.name}-{request.target_node_serial}"
    return ExecutionUnit(
        name=unit_name(cluster, request.target_node_serial),
        namespace=cluster.namespace,
        command=DOWNGRADE_COMMAND,
        owner_reference=OwnerReference(
            api_version=CLUSTER_API_VERSION,
            kind=CLUSTER_KIND,
            name=cluster.name,
            uid=cluster.uid,
        ),
        target_node_serial=request.target_node_serial,
        volume_claim=volume.name,
        image=cluster.image_name,
        environment={
            "CLUSTER_NAME": cluster.name,
            "NAMESPACE": cluster.namespace,
            "POD_NAME": instance_name,
            "PGDATA": pg_data,
            "TARGET_MAJOR_VERSION": str(request.target_major_version),
        },
    )


class DowngradeTrigger:
    """Schedules one downgrade unit when the declared major is below the on-disk one.

    ``client`` must provide ``register_phase(cluster, phase, reason)``,
    ``find_units(cluster)`` and ``create_unit(unit)``.
    """

    def __init__(self, client, pg_data: str = DEFAULT_PG_DATA):
        self.client = client
        self.pg_data = pg_data

    def build_request(
        self, cluster: Cluster, volumes: Iterable[PersistentVolume]
    ) -> Optional[DowngradeRequest]:
        requested_major = cluster.get_postgresql_major_version()
        recorded_major = cluster.status.pg_data_major_version

        if recorded_major is None or requested_major >= recorded_major:
            return None

        primary = find_primary_volume(volumes)
        if primary is None:
            logger.info("No primary volume found for cluster %s; not downgrading.", cluster.name)
            return None

        serial = parse_node_serial(primary)
        if serial == 0:
            return None

        return DowngradeRequest(
            current_major_version=recorded_major,
            target_major_version=requested_major,
            target_node_serial=serial,
        )

    def reconcile(
        self, cluster: Cluster, volumes: Iterable[PersistentVolume]
    ) -> Optional[ReconcileResult]:
        volumes = list(volumes)
        request = self.build_request(cluster, volumes)
        if request is None:
            return None

        # Any downgrade unit of the cluster blocks scheduling, whatever node it targets.
        existing = self.client.find_units(cluster)
        if existing:
            return self._observe_existing_units(cluster, existing)

        primary = find_primary_volume(volumes)
        unit = build_execution_unit(cluster, request, primary, pg_data=self.pg_data)

        message = (
            f"Downgrading cluster from version {request.current_major_version} "
            f"to {request.target_major_version}"
        )
        logger.info("%s (primary serial %s)", message, request.target_node_serial)
        self.client.register_phase(cluster, PHASE_MAJOR_UPGRADE, message)
        self.client.create_unit(unit)

        return ReconcileResult(requeue=True)

    def _observe_existing_units(
        self, cluster: Cluster, units: List[ExecutionUnitStatus]
    ) -> Optional[ReconcileResult]:
        active = [unit for unit in units if unit.is_active]
        if active:
            logger.info("Downgrade unit %s is still running.", active[0].name)
            return ReconcileResult(requeue=True)

        for unit in units:
            if unit.failed:
                logger.warning(
                    "Downgrade unit %s failed. Inspect the data directory before retrying.",
                    unit.name,
                )
        if cluster.status.phase == PHASE_MAJOR_UPGRADE:
            logger.info("Cluster %s is waiting for its on-disk version to be recorded.", cluster.name)
        return None
