from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from cloudplane.domain.states import ResourceKind


class EventType(str, Enum):
    RESOURCE_STATE_CHANGE = "resourceStateChange"


# Subscription.last_delivery_status values.
SUBSCRIPTION_DELIVERY_NONE = ""
SUBSCRIPTION_DELIVERY_SUCCEEDED = "succeeded"
SUBSCRIPTION_DELIVERY_FAILED = "failed"

# EventDelivery.status values.
EVENT_DELIVERY_NOT_ATTEMPTED = "not-attempted"
EVENT_DELIVERY_DELIVERED = "delivered"
EVENT_DELIVERY_RETRYING = "retrying"
EVENT_DELIVERY_FAILED = "failed"

EVENT_DELIVERY_PENDING_STATUSES = (EVENT_DELIVERY_NOT_ATTEMPTED, EVENT_DELIVERY_RETRYING)


@dataclass(frozen=True)
class DeliveryOutcome:
    # Status to report on the subscription and whether later events may still be sent.
    subscription_status: str
    continue_sending: bool


def delivery_failed_permanently(*, event_timestamp: int, failure_threshold_ms: int, last_attempt: int) -> bool:
    # An event older than the subscription's failure threshold is given up on.
    return event_timestamp + failure_threshold_ms < last_attempt


def record_delivery_attempt(
    subscription: Any,
    delivery: Any,
    *,
    event_timestamp: int,
    succeeded: bool,
    now: int,
) -> DeliveryOutcome:
    """Update ``delivery`` after one send attempt for ``subscription``.

    A failed event still inside the failure threshold is marked retrying and
    halts delivery for the subscription so ordering is kept; once past the
    threshold it is marked failed and later events continue.
    """
    delivery.attempts = (delivery.attempts or 0) + 1
    delivery.last_attempt = now
    if succeeded:
        delivery.status = EVENT_DELIVERY_DELIVERED
        return DeliveryOutcome(SUBSCRIPTION_DELIVERY_SUCCEEDED, True)
    if delivery_failed_permanently(
        event_timestamp=event_timestamp,
        failure_threshold_ms=subscription.failure_threshold_ms or 0,
        last_attempt=now,
    ):
        delivery.status = EVENT_DELIVERY_FAILED
        # Given-up events leave the subscription healthy so new events are not held back.
        return DeliveryOutcome(SUBSCRIPTION_DELIVERY_NONE, True)
    delivery.status = EVENT_DELIVERY_RETRYING
    return DeliveryOutcome(SUBSCRIPTION_DELIVERY_FAILED, False)


def finish_subscription_delivery(subscription: Any, status: str, now: int) -> None:
    subscription.last_delivery_status = status
    subscription.last_delivery_attempt_at = now


def subscription_claimable(subscription: Any, *, now: int, retry_delay_ms: int) -> bool:
    # Failed subscriptions wait out the retry delay before being claimed again.
    if subscription.delete_at or subscription.lock_acquired_at:
        return False
    if subscription.last_delivery_status == SUBSCRIPTION_DELIVERY_FAILED:
        return subscription.last_delivery_attempt_at < now - retry_delay_ms
    return True


@dataclass(frozen=True)
class StateChangeEventPayload:
    event_id: str
    timestamp: int
    resource_id: str
    resource_type: ResourceKind
    new_state: str
    old_state: str
    extra_data: dict[str, str] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        return {
            "eventId": self.event_id,
            "timestamp": self.timestamp,
            "resourceId": self.resource_id,
            "resourceType": self.resource_type.value,
            "newState": self.new_state,
            "oldState": self.old_state,
            "extraData": dict(self.extra_data),
        }
