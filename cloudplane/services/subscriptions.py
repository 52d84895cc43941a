from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from cloudplane.core.errors import NotFoundError
from cloudplane.domain.models import Subscription
from cloudplane.domain.patches import PatchSubscriptionRequest
from cloudplane.domain.requests import CreateSubscriptionRequest
from cloudplane.domain.states import ResourceKind
from cloudplane.persistence.repos import events as events_repo
from cloudplane.services.locking import locked


async def create_subscription(session: AsyncSession, request: CreateSubscriptionRequest) -> Subscription:
    request.set_defaults()
    request.validate_request()
    subscription = await events_repo.create_subscription(session, request)
    await session.commit()
    return subscription


async def update_subscription(
    session: AsyncSession,
    subscription_id: str,
    patch: PatchSubscriptionRequest,
    owner: str,
) -> tuple[Subscription, bool]:
    patch.validate_patch()
    async with locked(
        session, Subscription, subscription_id, owner, resource_type=ResourceKind.SUBSCRIPTION.value
    ) as subscription:
        if subscription is None or subscription.delete_at:
            raise NotFoundError(f"subscription {subscription_id} not found")
        changed = patch.apply(subscription)
        if changed:
            await session.commit()
        return subscription, changed
