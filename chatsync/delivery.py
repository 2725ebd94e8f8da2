"""
Delivery/read simulation for locally sent messages.

There is no real delivery network behind the service, so each sent message
gets a deferred task that marks it delivered and later read, emitting a
status event for every transition that actually applies.
"""

import asyncio
import logging
from typing import Optional

from chatsync import messages
from chatsync.config import settings
from chatsync.models import MessageStatus
from chatsync.realtime import Broadcaster, Event, broadcaster
from chatsync.schemas import MessageStatusEvent
from chatsync.storage import Database, database

logger = logging.getLogger(__name__)


class DeliverySimulator:
    """
    Deferred status transitions keyed by message id.

    Tasks for a contact are cancelled when its chat is deleted; a task that
    fires after its message is gone finds no row and does nothing.
    """

    def __init__(
        self,
        db: Database,
        events: Broadcaster,
        delivered_delay: float,
        read_delay: float,
    ):
        self.database = db
        self.events = events
        self.delivered_delay = delivered_delay
        self.read_delay = read_delay
        self._tasks: dict[str, tuple[str, asyncio.Task]] = {}

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, message_id: str, contact_id: str) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No event loop, delivery simulation skipped for {message_id}")
            return None

        task = loop.create_task(self._run(message_id), name=f"delivery:{message_id}")
        self._tasks[message_id] = (contact_id, task)
        task.add_done_callback(lambda _task: self._tasks.pop(message_id, None))
        logger.debug(f"Delivery simulation scheduled for {message_id}")
        return task

    def cancel(self, message_id: str) -> bool:
        entry = self._tasks.pop(message_id, None)
        if entry is None:
            return False
        entry[1].cancel()
        return True

    def cancel_contact(self, contact_id: str) -> int:
        ids = [mid for mid, (cid, _task) in self._tasks.items() if cid == contact_id]
        for message_id in ids:
            self.cancel(message_id)
        if ids:
            logger.info(f"Cancelled {len(ids)} delivery simulation(s) for contact {contact_id}")
        return len(ids)

    def shutdown(self) -> None:
        for message_id in list(self._tasks):
            self.cancel(message_id)

    async def _run(self, message_id: str) -> None:
        await asyncio.sleep(self.delivered_delay)
        await self._advance(message_id, MessageStatus.DELIVERED)
        await asyncio.sleep(max(self.read_delay - self.delivered_delay, 0))
        await self._advance(message_id, MessageStatus.READ)

    async def _advance(self, message_id: str, status: MessageStatus) -> None:
        try:
            with self.database.session() as db:
                changed = [
                    MessageStatusEvent(id=m.id, status=m.status).to_wire()
                    for m in messages.update_status(db, message_id, status)
                ]
        except Exception as e:
            # Timer failures never surface; the message may be gone or the store down
            logger.warning(f"Simulated {status.value} for {message_id} not applied: {e}")
            return

        for payload in changed:
            await self.events.publish(Event.MESSAGE_STATUS, payload)


simulator = DeliverySimulator(
    database,
    broadcaster,
    delivered_delay=settings.DELIVERED_DELAY_MS / 1000,
    read_delay=settings.READ_DELAY_MS / 1000,
)
