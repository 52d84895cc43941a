from __future__ import annotations

from dataclasses import dataclass, field
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from cloudplane.core.errors import NotFoundError, RequestValidationError
from cloudplane.domain.models import Cluster
from cloudplane.domain.patches import PatchClusterSizeRequest, PatchUpgradeClusterRequest
from cloudplane.domain.rebalance import ClusterNodeMetadata, NodeGroupSize
from cloudplane.domain.requests import CreateClusterRequest
from cloudplane.domain.states import (
    CLUSTER_STATE_MACHINE,
    CLUSTER_STATE_RESIZE_REQUESTED,
    CLUSTER_STATE_STABLE,
    CLUSTER_STATE_UPGRADE_REQUESTED,
    ResourceKind,
)
from cloudplane.persistence.repos import clusters as clusters_repo
from cloudplane.services.events import record_state_change
from cloudplane.services.locking import locked


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClusterChangeResult:
    # Outcome of a resize/upgrade request; node group data is empty for upgrades.
    cluster: Cluster
    changed: bool
    node_group_changes: dict[str, NodeGroupSize] = field(default_factory=dict)
    resize_actions: dict[str, list[str]] = field(default_factory=dict)


def _live(cluster: Cluster | None, cluster_id: str) -> Cluster:
    if cluster is None or cluster.delete_at:
        raise NotFoundError(f"cluster {cluster_id} not found")
    return cluster


async def _transition(session: AsyncSession, cluster: Cluster, target: str) -> None:
    old_state = cluster.state
    cluster.state = target
    if old_state != target:
        await record_state_change(session, ResourceKind.CLUSTER, cluster.id, old_state, target)


async def create_cluster(session: AsyncSession, request: CreateClusterRequest) -> Cluster:
    request.set_defaults()
    request.validate_request()
    cluster = await clusters_repo.create_cluster(session, request)
    await record_state_change(session, ResourceKind.CLUSTER, cluster.id, "", cluster.state)
    await session.commit()
    return cluster


async def request_cluster_state(session: AsyncSession, cluster_id: str, target: str, owner: str) -> Cluster:
    # Only externally requestable states may be set directly.
    if target not in CLUSTER_STATE_MACHINE.request_states:
        raise RequestValidationError(f"{target} is not a requestable cluster state", field="state", value=target)
    async with locked(session, Cluster, cluster_id, owner, resource_type=ResourceKind.CLUSTER.value) as cluster:
        cluster = _live(cluster, cluster_id)
        CLUSTER_STATE_MACHINE.require_transition(cluster.state, target)
        await _transition(session, cluster, target)
        await session.commit()
        return cluster


async def request_cluster_resize(
    session: AsyncSession,
    cluster_id: str,
    patch: PatchClusterSizeRequest,
    owner: str,
) -> ClusterChangeResult:
    patch.validate_patch()
    async with locked(session, Cluster, cluster_id, owner, resource_type=ResourceKind.CLUSTER.value) as cluster:
        cluster = _live(cluster, cluster_id)
        CLUSTER_STATE_MACHINE.require_transition(cluster.state, CLUSTER_STATE_RESIZE_REQUESTED)
        metadata = ClusterNodeMetadata.from_json(cluster.provisioner_metadata)
        if not patch.apply(metadata):
            return ClusterChangeResult(cluster=cluster, changed=False)
        # Computed up front so an impossible resize is refused before anything is saved.
        changes = metadata.worker_node_resize_changes()
        actions = metadata.resize_actions(changes)
        cluster.provisioner_metadata = metadata.to_json()
        await _transition(session, cluster, CLUSTER_STATE_RESIZE_REQUESTED)
        await session.commit()
        logger.info("cluster %s resize requested", cluster.id, extra={"actions": actions})
        return ClusterChangeResult(
            cluster=cluster,
            changed=True,
            node_group_changes=changes,
            resize_actions=actions,
        )


async def request_cluster_upgrade(
    session: AsyncSession,
    cluster_id: str,
    patch: PatchUpgradeClusterRequest,
    owner: str,
) -> ClusterChangeResult:
    patch.validate_patch()
    async with locked(session, Cluster, cluster_id, owner, resource_type=ResourceKind.CLUSTER.value) as cluster:
        cluster = _live(cluster, cluster_id)
        CLUSTER_STATE_MACHINE.require_transition(cluster.state, CLUSTER_STATE_UPGRADE_REQUESTED)
        metadata = ClusterNodeMetadata.from_json(cluster.provisioner_metadata)
        if not patch.apply(metadata):
            return ClusterChangeResult(cluster=cluster, changed=False)
        cluster.provisioner_metadata = metadata.to_json()
        await _transition(session, cluster, CLUSTER_STATE_UPGRADE_REQUESTED)
        await session.commit()
        return ClusterChangeResult(cluster=cluster, changed=True)


async def finish_cluster_resize(session: AsyncSession, cluster_id: str, owner: str) -> Cluster:
    # Supervisor side: fold the carried-out resize into metadata and return to stable.
    async with locked(session, Cluster, cluster_id, owner, resource_type=ResourceKind.CLUSTER.value) as cluster:
        cluster = _live(cluster, cluster_id)
        if cluster.state != CLUSTER_STATE_RESIZE_REQUESTED:
            raise RequestValidationError(
                f"cluster {cluster_id} is not being resized", field="state", value=cluster.state
            )
        metadata = ClusterNodeMetadata.from_json(cluster.provisioner_metadata)
        changes = metadata.worker_node_resize_changes()
        metadata.apply_node_group_changes(changes)
        metadata.apply_change_request()
        metadata.clear_change_request()
        cluster.provisioner_metadata = metadata.to_json()
        await _transition(session, cluster, CLUSTER_STATE_STABLE)
        await session.commit()
        return cluster
