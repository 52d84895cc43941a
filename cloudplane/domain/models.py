from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# JSONB on Postgres, plain JSON elsewhere (sqlite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class LockColumnsMixin:
    # Advisory lock; lock_acquired_at == 0 means unlocked.
    lock_acquired_by: Mapped[str | None] = mapped_column(String, nullable=True)
    lock_acquired_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)


class Cluster(LockColumnsMixin, Base):
    __tablename__ = "clusters"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, default="", nullable=False)
    state: Mapped[str] = mapped_column(String, index=True)
    provider: Mapped[str] = mapped_column(String, default="aws", nullable=False)
    provisioner: Mapped[str] = mapped_column(String, default="kops", nullable=False)
    # Serialized ClusterNodeMetadata, including any pending change request.
    provisioner_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    allow_installations: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    create_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    delete_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)


class Installation(LockColumnsMixin, Base):
    __tablename__ = "installations"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, default="", nullable=False)
    owner_id: Mapped[str] = mapped_column(String, index=True)
    group_id: Mapped[str | None] = mapped_column(String, nullable=True)
    dns: Mapped[str] = mapped_column(String, default="", nullable=False)
    version: Mapped[str] = mapped_column(String, default="", nullable=False)
    image: Mapped[str] = mapped_column(String, default="", nullable=False)
    license: Mapped[str] = mapped_column(String, default="", nullable=False)
    size: Mapped[str] = mapped_column(String, default="", nullable=False)
    affinity: Mapped[str] = mapped_column(String, default="isolated", nullable=False)
    database: Mapped[str] = mapped_column(String, default="", nullable=False)
    filestore: Mapped[str] = mapped_column(String, default="", nullable=False)
    state: Mapped[str] = mapped_column(String, index=True)
    env: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    volumes: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    # When a deletion request becomes final; 0 when no deletion is pending.
    deletion_pending_expiry: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    create_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    delete_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    __table_args__ = (UniqueConstraint("dns", "delete_at", name="uq_installations_dns_delete_at"),)


class InstallationBackup(LockColumnsMixin, Base):
    __tablename__ = "installation_backups"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    installation_id: Mapped[str] = mapped_column(String, ForeignKey("installations.id"), index=True)
    backed_up_database_type: Mapped[str] = mapped_column(String, default="", nullable=False)
    state: Mapped[str] = mapped_column(String, index=True)
    data_residence: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    request_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    start_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    delete_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)


class InstallationDBMigrationOperation(LockColumnsMixin, Base):
    __tablename__ = "installation_db_migration_operations"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    installation_id: Mapped[str] = mapped_column(String, ForeignKey("installations.id"), index=True)
    state: Mapped[str] = mapped_column(String, index=True)
    source_database: Mapped[str] = mapped_column(String, default="", nullable=False)
    destination_database: Mapped[str] = mapped_column(String, default="", nullable=False)
    source_multitenant: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    destination_multitenant: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    backup_id: Mapped[str | None] = mapped_column(String, nullable=True)
    installation_db_restoration_operation_id: Mapped[str | None] = mapped_column(String, nullable=True)
    request_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    complete_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    delete_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)


class InstallationDBRestorationOperation(LockColumnsMixin, Base):
    __tablename__ = "installation_db_restoration_operations"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    installation_id: Mapped[str] = mapped_column(String, ForeignKey("installations.id"), index=True)
    backup_id: Mapped[str] = mapped_column(String, default="", nullable=False)
    state: Mapped[str] = mapped_column(String, index=True)
    target_installation_state: Mapped[str] = mapped_column(String, default="", nullable=False)
    cluster_installation_id: Mapped[str | None] = mapped_column(String, nullable=True)
    request_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    complete_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    delete_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)


class MultitenantDatabase(LockColumnsMixin, Base):
    __tablename__ = "multitenant_databases"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    vpc_id: Mapped[str] = mapped_column(String, index=True)
    database_type: Mapped[str] = mapped_column(String, index=True)
    # Ordered installation IDs; MultitenantDatabaseInstallations keeps it duplicate-free.
    installations: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    create_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    delete_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)


class Subscription(LockColumnsMixin, Base):
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, default="", nullable=False)
    url: Mapped[str] = mapped_column(String)
    owner_id: Mapped[str] = mapped_column(String, index=True)
    event_type: Mapped[str] = mapped_column(String, index=True)
    # "" until the first delivery finishes, then "succeeded" or "failed".
    last_delivery_status: Mapped[str] = mapped_column(String, default="", nullable=False)
    last_delivery_attempt_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    failure_threshold_ms: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    create_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    delete_at: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)


class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    event_type: Mapped[str] = mapped_column(String, index=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, index=True)
    extra_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)


class StateChangeEvent(Base):
    __tablename__ = "state_change_events"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    event_id: Mapped[str] = mapped_column(String, ForeignKey("events.id"), index=True)
    resource_id: Mapped[str] = mapped_column(String, index=True)
    resource_type: Mapped[str] = mapped_column(String)
    old_state: Mapped[str] = mapped_column(String, default="", nullable=False)
    new_state: Mapped[str] = mapped_column(String)


class EventDelivery(Base):
    __tablename__ = "event_deliveries"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    event_id: Mapped[str] = mapped_column(String, ForeignKey("events.id"))
    subscription_id: Mapped[str] = mapped_column(String, ForeignKey("subscriptions.id"))
    status: Mapped[str] = mapped_column(String, default="not-attempted", nullable=False)
    last_attempt: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("event_id", "subscription_id", name="uq_event_deliveries_event_subscription"),
        Index("ix_event_deliveries_subscription_status", "subscription_id", "status"),
    )
