from __future__ import annotations

import re
from typing import Any, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict, Field

from cloudplane.core.config import get_settings
from cloudplane.core.errors import RequestValidationError
from cloudplane.domain.env import EnvVar, EnvVarMap
from cloudplane.domain.states import (
    INSTALLATION_STATE_DB_MIGRATION_IN_PROGRESS,
    INSTALLATION_STATE_HIBERNATING,
    ResourceKind,
)


PROVIDER_AWS = "aws"

_CLUSTER_VERSION_RE = re.compile(r"^((\d{1,3}\.\d{1,3}\.\d{1,3})|(\d{1,3}\.\d{1,3})|latest)$")
# Hostname label characters only; see hostname(7).
_HOSTNAME_RE = re.compile(r"[a-zA-Z0-9][.a-zA-Z0-9-]+")

INSTALLATION_DEFAULT_VERSION = "stable"
INSTALLATION_DEFAULT_IMAGE = "mattermost/mattermost-enterprise-edition"
INSTALLATION_DEFAULT_SIZE = "100users"

INSTALLATION_SIZES = frozenset(
    {
        "100users",
        "1000users",
        "5000users",
        "10000users",
        "25000users",
        "miniSingleton",
        "miniHA",
    }
)

INSTALLATION_AFFINITY_ISOLATED = "isolated"
INSTALLATION_AFFINITY_MULTITENANT = "multitenant"
INSTALLATION_AFFINITIES = frozenset({INSTALLATION_AFFINITY_ISOLATED, INSTALLATION_AFFINITY_MULTITENANT})

DATABASE_MYSQL_OPERATOR = "mysql-operator"
DATABASE_SINGLE_TENANT_RDS_MYSQL = "aws-rds"
DATABASE_SINGLE_TENANT_RDS_POSTGRES = "aws-rds-postgres"
DATABASE_MULTITENANT_RDS_MYSQL = "aws-multitenant-rds"
DATABASE_MULTITENANT_RDS_POSTGRES = "aws-multitenant-rds-postgres"
DATABASE_MULTITENANT_RDS_POSTGRES_PGBOUNCER = "aws-multitenant-rds-postgres-pgbouncer"
DATABASE_PERSEUS = "perseus"
DATABASE_EXTERNAL = "external"
INSTALLATION_DATABASES = frozenset(
    {
        DATABASE_MYSQL_OPERATOR,
        DATABASE_SINGLE_TENANT_RDS_MYSQL,
        DATABASE_SINGLE_TENANT_RDS_POSTGRES,
        DATABASE_MULTITENANT_RDS_MYSQL,
        DATABASE_MULTITENANT_RDS_POSTGRES,
        DATABASE_MULTITENANT_RDS_POSTGRES_PGBOUNCER,
        DATABASE_PERSEUS,
        DATABASE_EXTERNAL,
    }
)
MULTITENANT_DATABASES = frozenset(
    {
        DATABASE_MULTITENANT_RDS_MYSQL,
        DATABASE_MULTITENANT_RDS_POSTGRES,
        DATABASE_MULTITENANT_RDS_POSTGRES_PGBOUNCER,
        DATABASE_PERSEUS,
    }
)
# Backup and restore only work against these engines.
BACKUP_RESTORE_DATABASES = frozenset({DATABASE_SINGLE_TENANT_RDS_POSTGRES, DATABASE_MULTITENANT_RDS_POSTGRES})

FILESTORE_MINIO_OPERATOR = "minio-operator"
FILESTORE_AWS_S3 = "aws-s3"
FILESTORE_MULTITENANT_AWS_S3 = "aws-multitenant-s3"
FILESTORE_BIFROST = "bifrost"
FILESTORE_LOCAL_EPHEMERAL = "local-ephemeral"
INSTALLATION_FILESTORES = frozenset(
    {
        FILESTORE_MINIO_OPERATOR,
        FILESTORE_AWS_S3,
        FILESTORE_MULTITENANT_AWS_S3,
        FILESTORE_BIFROST,
        FILESTORE_LOCAL_EPHEMERAL,
    }
)

SUBSCRIPTION_MAX_FAILURE_THRESHOLD_S = 72 * 3600


def valid_cluster_version(version: str) -> bool:
    return bool(_CLUSTER_VERSION_RE.match(version))


def validate_webhook_url(url: str) -> None:
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as exc:
        raise RequestValidationError(f"invalid subscription url {url!r}", field="url", value=url) from exc
    if parsed.scheme not in {"http", "https"} or not parsed.host:
        raise RequestValidationError(f"invalid subscription url {url!r}", field="url", value=url)


def validate_dns(dns: str) -> None:
    if len(dns) > 253:
        raise RequestValidationError(
            f"fully qualified domain names must be less than 254 characters in length, {dns} was {len(dns)}",
            field="dns",
            value=dns,
        )
    subdomain = dns.split(".", 1)[0]
    if len(subdomain) < 3 or len(subdomain) >= 64:
        raise RequestValidationError(
            f"DNS subdomain names must be between 3 and 63 characters, {subdomain!r} was {len(subdomain)}",
            field="dns",
            value=dns,
        )
    if not _HOSTNAME_RE.fullmatch(dns):
        raise RequestValidationError(f"DNS name provided ({dns}) failed hostname pattern check", field="dns", value=dns)


class _RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateClusterRequest(_RequestModel):
    provider: str = ""
    zones: list[str] = Field(default_factory=list)
    version: str = ""
    ami: str = Field(default="", alias="kops-ami")
    master_instance_type: str = Field(default="", alias="master-instance-type")
    master_count: int = Field(default=0, alias="master-count")
    node_instance_type: str = Field(default="", alias="node-instance-type")
    node_min_count: int = Field(default=0, alias="node-min-count")
    node_max_count: int = Field(default=0, alias="node-max-count")
    allow_installations: bool = Field(default=False, alias="allow-installations")

    def set_defaults(self) -> None:
        settings = get_settings()
        if not self.provider:
            self.provider = settings.default_cluster_provider
        if not self.version:
            self.version = settings.default_cluster_version
        if not self.zones:
            self.zones = [zone.strip() for zone in settings.default_cluster_zones.split(",") if zone.strip()]
        if not self.master_instance_type:
            self.master_instance_type = settings.default_master_instance_type
        if self.master_count == 0:
            self.master_count = settings.default_master_count
        if not self.node_instance_type:
            self.node_instance_type = settings.default_node_instance_type
        if self.node_min_count == 0:
            self.node_min_count = settings.default_node_min_count
        if self.node_max_count == 0:
            self.node_max_count = self.node_min_count

    def validate_request(self) -> None:
        if self.provider != PROVIDER_AWS:
            raise RequestValidationError(f"unsupported provider {self.provider}", field="provider", value=self.provider)
        if not valid_cluster_version(self.version):
            raise RequestValidationError(
                f"unsupported cluster version {self.version}", field="version", value=self.version
            )
        if self.master_count < 1:
            raise RequestValidationError(
                f"master count ({self.master_count}) must be 1 or greater",
                field="master_count",
                value=self.master_count,
            )
        if self.node_min_count < 1:
            raise RequestValidationError(
                f"node min count ({self.node_min_count}) must be 1 or greater",
                field="node_min_count",
                value=self.node_min_count,
            )
        if self.node_max_count != self.node_min_count:
            raise RequestValidationError(
                f"node min ({self.node_min_count}) and max ({self.node_max_count}) counts must match",
                field="node_max_count",
                value=self.node_max_count,
            )


class CreateInstallationRequest(_RequestModel):
    owner_id: str = ""
    group_id: str = ""
    version: str = ""
    image: str = ""
    dns: str = ""
    license: str = ""
    size: str = ""
    affinity: str = ""
    database: str = ""
    filestore: str = ""
    env: dict[str, EnvVar] = Field(default_factory=dict)

    def set_defaults(self) -> None:
        if not self.version:
            self.version = INSTALLATION_DEFAULT_VERSION
        if not self.image:
            self.image = INSTALLATION_DEFAULT_IMAGE
        if not self.size:
            self.size = INSTALLATION_DEFAULT_SIZE
        if not self.affinity:
            self.affinity = INSTALLATION_AFFINITY_ISOLATED
        if not self.database:
            self.database = DATABASE_MYSQL_OPERATOR
        if not self.filestore:
            self.filestore = FILESTORE_MINIO_OPERATOR

    def validate_request(self) -> None:
        if not self.owner_id:
            raise RequestValidationError("must specify owner", field="owner_id")
        validate_dns(self.dns)
        if self.size not in INSTALLATION_SIZES:
            raise RequestValidationError(f"invalid size {self.size}", field="size", value=self.size)
        if self.affinity not in INSTALLATION_AFFINITIES:
            raise RequestValidationError(f"unsupported affinity {self.affinity}", field="affinity", value=self.affinity)
        if self.database not in INSTALLATION_DATABASES:
            raise RequestValidationError(f"unsupported database {self.database}", field="database", value=self.database)
        if self.filestore not in INSTALLATION_FILESTORES:
            raise RequestValidationError(
                f"unsupported filestore {self.filestore}", field="filestore", value=self.filestore
            )
        EnvVarMap(self.env).validate()
        for name in ("dns", "version", "image", "license", "group_id"):
            value = getattr(self, name)
            if " " in value:
                raise RequestValidationError(f"cannot have spaces in {name} field", field=name, value=value)


class CreateInstallationBackupRequest(_RequestModel):
    installation_id: str = ""

    def validate_request(self) -> None:
        if not self.installation_id:
            raise RequestValidationError("installation ID must be specified", field="installation_id")


class CreateDBMigrationRequest(_RequestModel):
    installation_id: str = ""
    destination_database: str = ""
    destination_multitenant_database_id: str = ""

    def validate_request(self) -> None:
        if not self.installation_id:
            raise RequestValidationError("installation ID must be specified", field="installation_id")
        if self.destination_database not in MULTITENANT_DATABASES:
            raise RequestValidationError(
                f"database migration is only supported to multitenant databases, got {self.destination_database!r}",
                field="destination_database",
                value=self.destination_database,
            )
        if not self.destination_multitenant_database_id:
            raise RequestValidationError(
                "destination multitenant database ID must be specified",
                field="destination_multitenant_database_id",
            )


class CreateSubscriptionRequest(_RequestModel):
    name: str = ""
    url: str = ""
    owner_id: str = ""
    event_type: str = ""
    failure_threshold_s: int | None = None

    def set_defaults(self) -> None:
        if self.failure_threshold_s is None:
            self.failure_threshold_s = get_settings().subscription_failure_threshold_s

    def validate_request(self) -> None:
        if not self.name:
            raise RequestValidationError("subscription name is required", field="name")
        validate_webhook_url(self.url)
        if not self.event_type:
            raise RequestValidationError("event type is required when registering subscription", field="event_type")
        if not self.owner_id:
            raise RequestValidationError("owner ID is required when registering subscription", field="owner_id")
        threshold = self.failure_threshold_s or 0
        if threshold < 0 or threshold > SUBSCRIPTION_MAX_FAILURE_THRESHOLD_S:
            raise RequestValidationError(
                "failure threshold need to be between 0 and 72 hours",
                field="failure_threshold_s",
                value=self.failure_threshold_s,
            )


def ensure_backup_restore_compatible(installation: Any) -> None:
    problems: list[str] = []
    if installation.database not in BACKUP_RESTORE_DATABASES:
        problems.append(
            "backup-restore is supported only for Postgres database, "
            f"the database type is {installation.database!r}"
        )
    if installation.filestore == FILESTORE_MINIO_OPERATOR:
        problems.append("backup-restore is not supported for installation using local Minio file store")
    if problems:
        raise RequestValidationError(
            "some installation settings are incompatible with backup-restore: " + "; ".join(problems),
            field="installation",
            value=installation.id,
        )


def ensure_installation_ready_for_backup(installation: Any) -> None:
    if installation.state not in {INSTALLATION_STATE_HIBERNATING, INSTALLATION_STATE_DB_MIGRATION_IN_PROGRESS}:
        raise RequestValidationError(
            "only hibernated or migrating installations can be backed up, "
            f"state is {installation.state!r}",
            field="state",
            value=installation.state,
        )
    ensure_backup_restore_compatible(installation)


def ensure_installation_ready_for_db_restoration(installation: Any, backup: Any) -> None:
    if installation.state not in {INSTALLATION_STATE_HIBERNATING, INSTALLATION_STATE_DB_MIGRATION_IN_PROGRESS}:
        raise RequestValidationError(
            f"restoration is not supported for installation in state {installation.state}",
            field="state",
            value=installation.state,
        )
    if backup.installation_id != installation.id:
        raise RequestValidationError(
            "backup belongs to a different installation", field="backup_id", value=backup.id
        )
    if backup.backed_up_database_type and backup.backed_up_database_type != installation.database:
        raise RequestValidationError(
            "backup database type does not match installation database",
            field="backup_id",
            value=backup.id,
        )
    ensure_backup_restore_compatible(installation)


def determine_after_restoration_state(installation: Any) -> str:
    if installation.state in {INSTALLATION_STATE_HIBERNATING, INSTALLATION_STATE_DB_MIGRATION_IN_PROGRESS}:
        return installation.state
    raise RequestValidationError(
        f"restoration is not supported for installation in state {installation.state}",
        field="state",
        value=installation.state,
    )


@runtime_checkable
class EncodesToQuery(Protocol):
    def to_query(self) -> dict[str, str]:
        ...


def apply_to_url(request: EncodesToQuery, url: httpx.URL | str) -> httpx.URL:
    # Merge keeps unrelated parameters already on the URL.
    return httpx.URL(url).copy_merge_params(request.to_query())


class Paging(_RequestModel):
    page: int = 0
    per_page: int = 100
    include_deleted: bool = False

    def paging_query(self) -> dict[str, str]:
        query = {"page": str(self.page), "per_page": str(self.per_page)}
        if self.include_deleted:
            query["include_deleted"] = "true"
        return query


class GetClustersRequest(Paging):
    def to_query(self) -> dict[str, str]:
        return self.paging_query()


class GetInstallationsRequest(Paging):
    owner_id: str = ""
    group_id: str = ""
    dns: str = ""

    def to_query(self) -> dict[str, str]:
        query = {"owner": self.owner_id, "group": self.group_id}
        query.update(self.paging_query())
        if self.dns:
            query["dns_name"] = self.dns
        return query


class GetMultitenantDatabasesRequest(Paging):
    vpc_id: str = ""
    database_type: str = ""

    def to_query(self) -> dict[str, str]:
        query = self.paging_query()
        if self.vpc_id:
            query["vpc_id"] = self.vpc_id
        if self.database_type:
            query["database_type"] = self.database_type
        return query


class ListStateChangeEventsRequest(Paging):
    resource_type: ResourceKind | None = None
    resource_id: str = ""

    def to_query(self) -> dict[str, str]:
        query = {
            "resource_type": self.resource_type.value if self.resource_type else "",
            "resource_id": self.resource_id,
        }
        query.update(self.paging_query())
        return query
