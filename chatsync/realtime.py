"""
Realtime broadcaster.

A single process-wide fan-out channel. Every event goes to every connected
subscriber as {"type": <event>, "data": <payload>}; clients filter by
contact id themselves. Delivery is best-effort and at-most-once, with no
replay for late subscribers.
"""

import logging
from enum import Enum
from typing import Any, Protocol

from pydantic import ValidationError as PydanticValidationError

from chatsync.metrics import record_realtime_event, record_realtime_failure, set_realtime_subscribers
from chatsync.schemas import WsInbound, WsOutbound
from chatsync.utils import epoch_millis

logger = logging.getLogger(__name__)


class Event(str, Enum):
    MESSAGE_CREATED = "message:new"
    MESSAGE_STATUS = "message:status"
    STATUS_CREATED = "status:new"
    STATUS_DELETED = "status:deleted"
    STATUS_ITEM_DELETED = "status:itemDeleted"
    CHAT_DELETED = "chat:deleted"
    CONTACT_UPDATED = "user:updated"
    TYPING = "typing"


class Subscriber(Protocol):
    async def send_json(self, data: Any) -> None:
        ...


class Broadcaster:
    def __init__(self):
        self._subscribers: set = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.add(subscriber)
        set_realtime_subscribers(len(self._subscribers))
        logger.info(f"Realtime subscriber added ({len(self._subscribers)} connected)")

    def unsubscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.discard(subscriber)
        set_realtime_subscribers(len(self._subscribers))
        logger.info(f"Realtime subscriber removed ({len(self._subscribers)} connected)")

    async def publish(self, event: Event, payload: dict[str, Any]) -> int:
        """
        Send an event to every current subscriber.

        A subscriber whose send fails is dropped; publishing itself never
        raises, so a broadcast problem cannot fail the write that caused it.

        Returns:
            Number of subscribers the event was handed to
        """
        event = Event(event)
        envelope = WsOutbound(type=event.value, data=payload).model_dump(mode="json")
        record_realtime_event(event.value)

        delivered = 0
        for subscriber in list(self._subscribers):
            try:
                await subscriber.send_json(envelope)
                delivered += 1
            except Exception as e:
                logger.warning(f"Realtime send failed for {event.value}, dropping subscriber: {e}")
                record_realtime_failure()
                self.unsubscribe(subscriber)

        logger.debug(f"Published {event.value} to {delivered} subscriber(s)")
        return delivered


# Process-wide instance
broadcaster = Broadcaster()


async def handle_client_frame(raw: str, events: Broadcaster = broadcaster) -> bool:
    """
    Process one upstream frame from a client connection.

    Only typing indicators are understood; they are relayed verbatim to all
    subscribers with the server time added as `at` (epoch millis). Frames
    that are not JSON, have an unknown type or lack a contactId are ignored.

    Returns:
        True when the frame was relayed
    """
    try:
        frame = WsInbound.model_validate_json(raw)
    except PydanticValidationError as e:
        logger.warning(f"Ignoring malformed realtime frame: {e.error_count()} error(s)")
        return False

    if frame.type != Event.TYPING.value:
        logger.debug(f"Ignoring realtime frame of type {frame.type!r}")
        return False
    if not frame.data.get("contactId"):
        logger.debug("Ignoring typing frame without contactId")
        return False

    await events.publish(Event.TYPING, {**frame.data, "at": epoch_millis()})
    return True
