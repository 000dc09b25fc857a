"""Shared domain models for pgdowngrade."""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

from pgdowngrade.constants import (
    BACKUP_SUFFIX,
    CONFIG_INCLUDE_FILE,
    DEFAULT_SOCKET_DIR,
    DEFAULT_SUPERUSER,
    DUMP_FILE_NAME,
)
from pgdowngrade.versions import image_major_version


class DataDirectoryState(str, Enum):
    """On-disk progress of the data directory, in execution order."""

    ORIGINAL = "original"
    DUMPED = "dumped"
    BACKED_UP = "backed_up"
    REINITIALIZED = "reinitialized"
    RESTORED = "restored"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class DowngradeRequest:
    current_major_version: int
    target_major_version: int
    target_node_serial: int


@dataclass(frozen=True)
class OwnerReference:
    api_version: str
    kind: str
    name: str
    uid: str


@dataclass(frozen=True)
class ExecutionUnit:
    """One-shot, node-pinned task running the executor's command."""

    name: str
    namespace: str
    command: Tuple[str, ...]
    owner_reference: OwnerReference
    target_node_serial: int
    volume_claim: str
    image: str
    environment: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ExecutionUnitStatus:
    name: str
    active: int = 0
    succeeded: int = 0
    failed: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.active == 0 and (self.succeeded > 0 or self.failed > 0)

    @property
    def is_active(self) -> bool:
        return not self.is_terminal


@dataclass(frozen=True)
class ClusterStatus:
    pg_data_major_version: Optional[int] = None
    phase: Optional[str] = None
    phase_reason: Optional[str] = None


@dataclass(frozen=True)
class Cluster:
    name: str
    namespace: str
    uid: str
    image_name: str
    declared_major_version: Optional[int] = None
    status: ClusterStatus = field(default_factory=ClusterStatus)

    def get_postgresql_major_version(self) -> int:
        if self.declared_major_version is not None:
            return self.declared_major_version
        return image_major_version(self.image_name)


@dataclass(frozen=True)
class PersistentVolume:
    """A member's data volume claim as reported by the cluster."""

    name: str
    role: Optional[str] = None
    serial: Optional[str] = None


@dataclass(frozen=True)
class ExecutorConfig:
    """Runtime parameters for one executor run, resolved once at startup."""

    pg_data: str
    pod_name: str = ""
    cluster_name: str = ""
    namespace: str = ""
    socket_dir: str = DEFAULT_SOCKET_DIR
    superuser: str = DEFAULT_SUPERUSER
    target_major_version: Optional[int] = None
    config_include_file: str = CONFIG_INCLUDE_FILE
    dump_file_name: str = DUMP_FILE_NAME
    backup_suffix: str = BACKUP_SUFFIX

    @property
    def backup_dir(self) -> str:
        return f"{os.path.normpath(self.pg_data)}{self.backup_suffix}"


@dataclass(frozen=True)
class ReconcileResult:
    requeue: bool = False
