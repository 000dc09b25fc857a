"""Shared constants for pgdowngrade."""

DIR_MODE = 0o700

DEFAULT_SOCKET_DIR = "/controller/run"
DEFAULT_PG_DATA = "/var/lib/postgresql/data/pgdata"
PG_DATA_MOUNT_PATH = "/var/lib/postgresql/data"
DEFAULT_SUPERUSER = "postgres"
DEFAULT_CONFIG_FILE = ".pgdowngrade.yml"

CONFIG_INCLUDE_FILE = "custom.conf"
MAIN_CONFIG_FILE = "postgresql.conf"
PG_VERSION_FILE = "PG_VERSION"
DUMP_FILE_NAME = "downgrade_dump.sql"
BACKUP_SUFFIX = ".old"
SERVER_LOG_FILE = "downgrade-postgres.log"

DOWNGRADE_COMMAND = ("pgdowngrade", "execute")
JOB_ROLE_MAJOR_DOWNGRADE = "major-downgrade"
PHASE_MAJOR_UPGRADE = "Upgrading Postgres major version"

CLUSTER_API_VERSION = "postgresql.cnpg.io/v1"
CLUSTER_KIND = "Cluster"
CLUSTER_RESOURCE = "clusters.postgresql.cnpg.io"
CLUSTER_LABEL = "cnpg.io/cluster"
INSTANCE_NAME_LABEL = "cnpg.io/instanceName"
INSTANCE_ROLE_LABEL = "cnpg.io/instanceRole"
JOB_ROLE_LABEL = "cnpg.io/jobRole"
NODE_SERIAL_ANNOTATION = "cnpg.io/nodeSerial"
PRIMARY_ROLE = "primary"
