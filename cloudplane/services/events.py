from __future__ import annotations

import logging

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from cloudplane.core.config import get_settings
from cloudplane.core.timeutil import get_millis
from cloudplane.domain.events import (
    SUBSCRIPTION_DELIVERY_NONE,
    finish_subscription_delivery,
    record_delivery_attempt,
)
from cloudplane.domain.models import Event, StateChangeEvent, Subscription
from cloudplane.domain.states import ResourceKind
from cloudplane.persistence.repos import events as events_repo
from cloudplane.persistence.repos.locks import unlock_rows


logger = logging.getLogger(__name__)

CONTENT_TYPE_JSON = "application/json"


async def record_state_change(
    session: AsyncSession,
    kind: ResourceKind,
    resource_id: str,
    old_state: str,
    new_state: str,
    extra_data: dict[str, str] | None = None,
) -> tuple[Event, StateChangeEvent]:
    # Persist the event and fan-out rows; the caller owns the commit.
    event, state_change, deliveries = await events_repo.create_state_change_event(
        session,
        resource_kind=kind,
        resource_id=resource_id,
        old_state=old_state,
        new_state=new_state,
        extra_data=extra_data,
    )
    logger.info(
        "%s %s state change %s -> %s",
        kind.value,
        resource_id,
        old_state or "<none>",
        new_state,
        extra={"event_id": event.id, "deliveries": len(deliveries)},
    )
    return event, state_change


def build_delivery_client(timeout_s: int | None = None) -> httpx.AsyncClient:
    timeout = timeout_s if timeout_s is not None else get_settings().event_delivery_timeout_s
    return httpx.AsyncClient(timeout=timeout)


async def _send_event(
    client: httpx.AsyncClient,
    subscription: Subscription,
    data: events_repo.StateChangeEventDeliveryData,
) -> bool:
    try:
        response = await client.post(
            subscription.url,
            json=data.to_payload().to_json(),
            headers={"Content-Type": CONTENT_TYPE_JSON},
        )
    except httpx.HTTPError as exc:
        logger.error(
            "failed to deliver event: %s",
            exc,
            extra={"subscription_id": subscription.id, "event_id": data.event.id},
        )
        return False
    if response.status_code >= 500:
        logger.error(
            "consumer failed to receive event, got %d response code",
            response.status_code,
            extra={"subscription_id": subscription.id, "event_id": data.event.id},
        )
        return False
    if response.status_code != 200:
        # Consumer-side rejection; not retried.
        logger.error(
            "event delivery resulted in status %d, treating it as consumer error",
            response.status_code,
            extra={"subscription_id": subscription.id, "event_id": data.event.id},
        )
    return True


async def deliver_subscription_events(
    session: AsyncSession,
    subscription: Subscription,
    client: httpx.AsyncClient,
) -> str:
    """Send pending events for one claimed subscription, oldest first.

    Stops at the first event that will be retried so later events never
    overtake it. Returns the delivery status recorded on the subscription.
    """
    deliveries = await events_repo.get_state_change_events_to_process(session, subscription.id)
    status = subscription.last_delivery_status or SUBSCRIPTION_DELIVERY_NONE
    for data in deliveries:
        succeeded = await _send_event(client, subscription, data)
        outcome = record_delivery_attempt(
            subscription,
            data.delivery,
            event_timestamp=data.event.timestamp,
            succeeded=succeeded,
            now=get_millis(),
        )
        status = outcome.subscription_status
        await session.commit()
        if not outcome.continue_sending:
            break
    finish_subscription_delivery(subscription, status, get_millis())
    await session.commit()
    return status


async def _process_claimed(
    session: AsyncSession,
    subscription: Subscription | None,
    owner: str,
    client: httpx.AsyncClient,
) -> bool:
    if subscription is None:
        await session.commit()
        return False
    await session.commit()
    try:
        await deliver_subscription_events(session, subscription, client)
    finally:
        if not await unlock_rows(session, Subscription, [subscription.id], owner):
            logger.error("failed to release lock for subscription", extra={"subscription_id": subscription.id})
        await session.commit()
    return True


async def process_up_to_date_once(session: AsyncSession, owner: str, client: httpx.AsyncClient) -> bool:
    # Returns False when no subscription had new events to send.
    subscription = await events_repo.claim_up_to_date_subscription(session, owner)
    return await _process_claimed(session, subscription, owner, client)


async def process_retrying_once(
    session: AsyncSession,
    owner: str,
    client: httpx.AsyncClient,
    *,
    now: int | None = None,
) -> bool:
    subscription = await events_repo.claim_retrying_subscription(
        session,
        owner,
        retry_delay_ms=get_settings().event_retry_delay_s * 1000,
        now=now,
    )
    return await _process_claimed(session, subscription, owner, client)
