from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cloudplane.core.ids import new_id
from cloudplane.core.timeutil import get_millis
from cloudplane.domain.events import (
    EVENT_DELIVERY_NOT_ATTEMPTED,
    EVENT_DELIVERY_PENDING_STATUSES,
    SUBSCRIPTION_DELIVERY_FAILED,
    SUBSCRIPTION_DELIVERY_NONE,
    SUBSCRIPTION_DELIVERY_SUCCEEDED,
    EventType,
    StateChangeEventPayload,
)
from cloudplane.domain.models import Event, EventDelivery, StateChangeEvent, Subscription
from cloudplane.domain.requests import CreateSubscriptionRequest, ListStateChangeEventsRequest
from cloudplane.domain.states import ResourceKind
from cloudplane.persistence.repos.locks import lock_rows


@dataclass(frozen=True)
class StateChangeEventDeliveryData:
    delivery: EventDelivery
    event: Event
    state_change: StateChangeEvent

    def to_payload(self) -> StateChangeEventPayload:
        return StateChangeEventPayload(
            event_id=self.event.id,
            timestamp=self.event.timestamp,
            resource_id=self.state_change.resource_id,
            resource_type=ResourceKind(self.state_change.resource_type),
            new_state=self.state_change.new_state,
            old_state=self.state_change.old_state,
            extra_data=dict(self.event.extra_data or {}),
        )


async def create_subscription(session: AsyncSession, request: CreateSubscriptionRequest) -> Subscription:
    subscription = Subscription(
        id=new_id(),
        name=request.name,
        url=request.url,
        owner_id=request.owner_id,
        event_type=request.event_type,
        last_delivery_status=SUBSCRIPTION_DELIVERY_NONE,
        last_delivery_attempt_at=0,
        failure_threshold_ms=int(request.failure_threshold_s or 0) * 1000,
        create_at=get_millis(),
        delete_at=0,
        lock_acquired_by=None,
        lock_acquired_at=0,
    )
    session.add(subscription)
    await session.flush()
    return subscription


async def list_subscriptions_for_event_type(session: AsyncSession, event_type: str) -> list[Subscription]:
    result = await session.execute(
        select(Subscription)
        .where(Subscription.event_type == event_type, Subscription.delete_at == 0)
        .order_by(Subscription.create_at, Subscription.id)
    )
    return list(result.scalars().all())


async def create_state_change_event(
    session: AsyncSession,
    *,
    resource_kind: ResourceKind,
    resource_id: str,
    old_state: str,
    new_state: str,
    extra_data: dict[str, str] | None = None,
    timestamp: int | None = None,
) -> tuple[Event, StateChangeEvent, list[EventDelivery]]:
    # One delivery row per live subscription, written in the same transaction as the event.
    event = Event(
        id=new_id(),
        event_type=EventType.RESOURCE_STATE_CHANGE.value,
        timestamp=timestamp if timestamp is not None else get_millis(),
        extra_data=dict(extra_data or {}),
    )
    state_change = StateChangeEvent(
        id=new_id(),
        event_id=event.id,
        resource_id=resource_id,
        resource_type=resource_kind.value,
        old_state=old_state,
        new_state=new_state,
    )
    session.add(event)
    session.add(state_change)
    deliveries: list[EventDelivery] = []
    for subscription in await list_subscriptions_for_event_type(session, event.event_type):
        delivery = EventDelivery(
            id=new_id(),
            event_id=event.id,
            subscription_id=subscription.id,
            status=EVENT_DELIVERY_NOT_ATTEMPTED,
            last_attempt=0,
            attempts=0,
        )
        session.add(delivery)
        deliveries.append(delivery)
    await session.flush()
    return event, state_change, deliveries


async def get_state_change_events_to_process(
    session: AsyncSession,
    subscription_id: str,
) -> list[StateChangeEventDeliveryData]:
    # Oldest first so a retrying event blocks everything behind it.
    result = await session.execute(
        select(EventDelivery, Event, StateChangeEvent)
        .join(Event, Event.id == EventDelivery.event_id)
        .join(StateChangeEvent, StateChangeEvent.event_id == Event.id)
        .where(
            EventDelivery.subscription_id == subscription_id,
            EventDelivery.status.in_(list(EVENT_DELIVERY_PENDING_STATUSES)),
        )
        .order_by(Event.timestamp, Event.id)
    )
    return [
        StateChangeEventDeliveryData(delivery=delivery, event=event, state_change=state_change)
        for delivery, event, state_change in result.all()
    ]


async def _claim(session: AsyncSession, statement, owner: str) -> Subscription | None:
    result = await session.execute(
        statement.where(Subscription.delete_at == 0, Subscription.lock_acquired_at == 0)
        .order_by(Subscription.last_delivery_attempt_at, Subscription.id)
        .limit(1)
    )
    subscription = result.scalars().first()
    if subscription is None:
        return None
    if not await lock_rows(session, Subscription, [subscription.id], owner):
        return None
    await session.refresh(subscription)
    return subscription


async def claim_up_to_date_subscription(session: AsyncSession, owner: str) -> Subscription | None:
    # New or last-succeeded subscriptions with at least one unattempted event.
    statement = (
        select(Subscription)
        .join(EventDelivery, EventDelivery.subscription_id == Subscription.id)
        .where(
            Subscription.last_delivery_status.in_([SUBSCRIPTION_DELIVERY_NONE, SUBSCRIPTION_DELIVERY_SUCCEEDED]),
            EventDelivery.status == EVENT_DELIVERY_NOT_ATTEMPTED,
        )
    )
    return await _claim(session, statement, owner)


async def claim_retrying_subscription(
    session: AsyncSession,
    owner: str,
    *,
    retry_delay_ms: int,
    now: int | None = None,
) -> Subscription | None:
    min_time = (now if now is not None else get_millis()) - retry_delay_ms
    statement = (
        select(Subscription)
        .join(EventDelivery, EventDelivery.subscription_id == Subscription.id)
        .where(
            Subscription.last_delivery_status == SUBSCRIPTION_DELIVERY_FAILED,
            Subscription.last_delivery_attempt_at < min_time,
            EventDelivery.status.in_(list(EVENT_DELIVERY_PENDING_STATUSES)),
        )
    )
    return await _claim(session, statement, owner)


async def list_state_change_events(
    session: AsyncSession,
    request: ListStateChangeEventsRequest,
) -> list[tuple[Event, StateChangeEvent]]:
    statement = (
        select(Event, StateChangeEvent)
        .join(StateChangeEvent, StateChangeEvent.event_id == Event.id)
        .order_by(Event.timestamp.desc(), Event.id)
    )
    if request.resource_type is not None:
        statement = statement.where(StateChangeEvent.resource_type == request.resource_type.value)
    if request.resource_id:
        statement = statement.where(StateChangeEvent.resource_id == request.resource_id)
    statement = statement.offset(request.page * request.per_page).limit(request.per_page)
    result = await session.execute(statement)
    return [(event, state_change) for event, state_change in result.all()]
