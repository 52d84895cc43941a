from __future__ import annotations

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cloudplane.core.ids import new_cluster_id
from cloudplane.core.timeutil import get_millis
from cloudplane.domain.models import Cluster
from cloudplane.domain.rebalance import ClusterNodeMetadata, NodeGroupSize
from cloudplane.domain.requests import CreateClusterRequest
from cloudplane.domain.states import CLUSTER_STATE_CREATION_REQUESTED


# Worker group created with every new cluster.
DEFAULT_NODE_GROUP = "nodes"


async def get_cluster(session: AsyncSession, cluster_id: str) -> Cluster | None:
    result = await session.execute(select(Cluster).where(Cluster.id == cluster_id))
    return result.scalar_one_or_none()


async def list_clusters(
    session: AsyncSession,
    *,
    states: Iterable[str] | None = None,
    include_deleted: bool = False,
    page: int = 0,
    per_page: int | None = None,
) -> list[Cluster]:
    # Creation order with ID tie-break keeps pages stable.
    statement = select(Cluster).order_by(Cluster.create_at, Cluster.id)
    if states is not None:
        statement = statement.where(Cluster.state.in_(list(states)))
    if not include_deleted:
        statement = statement.where(Cluster.delete_at == 0)
    if per_page is not None:
        statement = statement.offset(page * per_page).limit(per_page)
    result = await session.execute(statement)
    return list(result.scalars().all())


async def create_cluster(
    session: AsyncSession,
    request: CreateClusterRequest,
    *,
    cluster_id: str | None = None,
    node_groups: dict[str, NodeGroupSize] | None = None,
) -> Cluster:
    # Callers run set_defaults/validate_request before persisting.
    if node_groups is None:
        node_groups = {
            DEFAULT_NODE_GROUP: NodeGroupSize(
                request.node_min_count, request.node_max_count, request.node_instance_type
            )
        }
    metadata = ClusterNodeMetadata(
        version=request.version,
        ami=request.ami,
        master_instance_type=request.master_instance_type,
        master_count=request.master_count,
        node_instance_type=request.node_instance_type,
        node_min_count=request.node_min_count,
        node_max_count=request.node_max_count,
        node_groups=dict(node_groups),
    )
    cluster = Cluster(
        id=cluster_id or new_cluster_id(),
        state=CLUSTER_STATE_CREATION_REQUESTED,
        provider=request.provider,
        provisioner="kops",
        provisioner_metadata=metadata.to_json(),
        allow_installations=request.allow_installations,
        create_at=get_millis(),
        delete_at=0,
        lock_acquired_by=None,
        lock_acquired_at=0,
    )
    session.add(cluster)
    await session.flush()
    return cluster
