import pytest

from pgdowngrade.constants import DOWNGRADE_COMMAND, PHASE_MAJOR_UPGRADE
from pgdowngrade.errors import DowngradeError
from pgdowngrade.models import (
    Cluster,
    ClusterStatus,
    ExecutionUnitStatus,
    PersistentVolume,
    ReconcileResult,
)
from pgdowngrade.trigger import DowngradeTrigger, find_primary_volume, parse_node_serial


class FakeClusterClient:
    def __init__(self):
        self.phases = []
        self.units = []
        self.statuses = {}

    def register_phase(self, cluster, phase, reason):
        self.phases.append((cluster.name, phase, reason))

    def find_units(self, cluster):
        return list(self.statuses.values())

    def create_unit(self, unit):
        self.units.append(unit)
        self.statuses[unit.name] = ExecutionUnitStatus(name=unit.name, active=1)


def _cluster(image="ghcr.io/cloudnative-pg/postgresql:15.6", recorded=17, declared=None):
    return Cluster(
        name="cluster-example",
        namespace="default",
        uid="0d3a1c2e-uid",
        image_name=image,
        declared_major_version=declared,
        status=ClusterStatus(pg_data_major_version=recorded),
    )


def _volumes():
    return [
        PersistentVolume(name="cluster-example-1", role="replica", serial="1"),
        PersistentVolume(name="cluster-example-2", role="primary", serial="2"),
        PersistentVolume(name="cluster-example-3", role="replica", serial="3"),
    ]


def test_downgrade_from_17_to_15_schedules_one_unit_on_primary():
    client = FakeClusterClient()
    trigger = DowngradeTrigger(client)

    result = trigger.reconcile(_cluster(), _volumes())

    assert result == ReconcileResult(requeue=True)
    assert client.phases == [
        ("cluster-example", PHASE_MAJOR_UPGRADE, "Downgrading cluster from version 17 to 15")
    ]
    assert len(client.units) == 1
    unit = client.units[0]
    assert unit.target_node_serial == 2
    assert unit.name == "cluster-example-2-major-downgrade"
    assert unit.volume_claim == "cluster-example-2"
    assert unit.command == DOWNGRADE_COMMAND
    assert unit.owner_reference.uid == "0d3a1c2e-uid"
    assert unit.owner_reference.kind == "Cluster"
    assert unit.environment["POD_NAME"] == "cluster-example-2"
    assert unit.environment["TARGET_MAJOR_VERSION"] == "15"


@pytest.mark.parametrize(
    "image,recorded",
    [
        ("postgres:17", 17),
        ("postgres:17.2", 16),
        ("postgres:16.4-bookworm", 16),
        ("postgres:16", None),
    ],
)
def test_no_unit_unless_target_below_recorded(image, recorded):
    client = FakeClusterClient()
    trigger = DowngradeTrigger(client)

    result = trigger.reconcile(_cluster(image=image, recorded=recorded), _volumes())

    assert result is None
    assert client.phases == []
    assert client.units == []


def test_declared_major_takes_precedence_over_image_tag():
    client = FakeClusterClient()
    trigger = DowngradeTrigger(client)

    trigger.reconcile(_cluster(image="example.com/pg@sha256:abcd", declared=16), _volumes())

    assert client.phases[0][2] == "Downgrading cluster from version 17 to 16"


def test_unparseable_image_reports_error_without_side_effects():
    client = FakeClusterClient()
    trigger = DowngradeTrigger(client)

    with pytest.raises(DowngradeError, match="no tag"):
        trigger.reconcile(_cluster(image="registry:5000/postgres"), _volumes())

    assert client.phases == []
    assert client.units == []


def test_missing_primary_has_no_side_effects():
    client = FakeClusterClient()
    trigger = DowngradeTrigger(client)
    volumes = [PersistentVolume(name="cluster-example-1", role="replica", serial="1")]

    assert trigger.reconcile(_cluster(), volumes) is None
    assert trigger.reconcile(_cluster(), []) is None
    assert client.phases == []
    assert client.units == []


def test_primary_with_serial_zero_is_not_a_primary():
    client = FakeClusterClient()
    trigger = DowngradeTrigger(client)
    volumes = [PersistentVolume(name="cluster-example-0", role="primary", serial="0")]

    assert trigger.reconcile(_cluster(), volumes) is None
    assert client.units == []


def test_invalid_primary_serial_surfaces_lookup_error():
    client = FakeClusterClient()
    trigger = DowngradeTrigger(client)
    volumes = [PersistentVolume(name="cluster-example-2", role="primary", serial="two")]

    with pytest.raises(DowngradeError, match="invalid node serial"):
        trigger.reconcile(_cluster(), volumes)

    assert client.phases == []
    assert client.units == []


def test_repeated_reconcile_does_not_create_second_unit():
    client = FakeClusterClient()
    trigger = DowngradeTrigger(client)

    first = trigger.reconcile(_cluster(), _volumes())
    second = trigger.reconcile(_cluster(), _volumes())
    third = trigger.reconcile(_cluster(), _volumes())

    assert first.requeue and second.requeue and third.requeue
    assert len(client.units) == 1
    assert len(client.phases) == 1


def test_failed_unit_is_not_rescheduled():
    client = FakeClusterClient()
    client.statuses["cluster-example-2-major-downgrade"] = ExecutionUnitStatus(
        name="cluster-example-2-major-downgrade", failed=1
    )
    trigger = DowngradeTrigger(client)

    assert trigger.reconcile(_cluster(), _volumes()) is None
    assert client.units == []
    assert client.phases == []


def test_find_primary_volume_and_parse_serial():
    primary = find_primary_volume(_volumes())

    assert primary.name == "cluster-example-2"
    assert parse_node_serial(primary) == 2
    assert find_primary_volume([]) is None

    with pytest.raises(DowngradeError, match="no node serial"):
        parse_node_serial(PersistentVolume(name="pvc", role="primary"))


def test_primary_switch_while_unit_runs_does_not_schedule_second_unit():
    client = FakeClusterClient()
    trigger = DowngradeTrigger(client)
    switched = [
        PersistentVolume(name="cluster-example-2", role="replica", serial="2"),
        PersistentVolume(name="cluster-example-3", role="primary", serial="3"),
    ]

    first = trigger.reconcile(_cluster(), _volumes())
    second = trigger.reconcile(
        Cluster(
            name="cluster-example",
            namespace="default",
            uid="0d3a1c2e-uid",
            image_name="ghcr.io/cloudnative-pg/postgresql:15.6",
            status=ClusterStatus(pg_data_major_version=17, phase=PHASE_MAJOR_UPGRADE),
        ),
        switched,
    )

    assert first == second == ReconcileResult(requeue=True)
    assert [unit.name for unit in client.units] == ["cluster-example-2-major-downgrade"]
    assert len(client.phases) == 1


def test_finished_unit_on_other_node_blocks_new_unit():
    client = FakeClusterClient()
    client.statuses["cluster-example-1-major-downgrade"] = ExecutionUnitStatus(
        name="cluster-example-1-major-downgrade", succeeded=1
    )
    trigger = DowngradeTrigger(client)

    assert trigger.reconcile(_cluster(), _volumes()) is None
    assert client.units == []
    assert client.phases == []
