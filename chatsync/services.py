"""
Write paths: store mutation, then directory merge-upsert, then realtime event.

Events are published only after the write has committed, and a broadcast
problem never undoes or fails the write.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from chatsync import contacts, messages, statuses
from chatsync.delivery import simulator
from chatsync.errors import ValidationError
from chatsync.models import Contact, Message, MessageStatus
from chatsync.realtime import Event, broadcaster
from chatsync.schemas import ContactOut, MessageOut, MessageStatusEvent, StatusCollectionOut

logger = logging.getLogger(__name__)


def contact_out(contact_id: str, contact: Optional[Contact]) -> ContactOut:
    if contact is None:
        return ContactOut(contact_id=contact_id)
    return ContactOut.model_validate(contact)


async def record_contact(
    db: Session,
    contact_id: str,
    display_name: Optional[str] = None,
    avatar_url: Optional[str] = None,
) -> Optional[Contact]:
    """Merge-upsert a directory entry and announce it when a field changed."""
    contact, changed = contacts.merge_upsert(db, contact_id, display_name, avatar_url)
    if changed:
        await broadcaster.publish(Event.CONTACT_UPDATED, contact_out(contact_id, contact).to_wire())
    return contact


async def publish_message_created(message: Message) -> None:
    await broadcaster.publish(Event.MESSAGE_CREATED, MessageOut.model_validate(message).to_wire())


async def publish_status_changes(changed: list[Message]) -> None:
    for message in changed:
        await broadcaster.publish(
            Event.MESSAGE_STATUS,
            MessageStatusEvent(id=message.id, status=message.status).to_wire(),
        )


# =============================================================================
# Messages
# =============================================================================

async def send_message(
    db: Session,
    contact_id: str,
    text: str,
    display_name: Optional[str] = None,
    avatar_url: Optional[str] = None,
) -> Message:
    """
    Store a locally sent message and start its delivery/read simulation.

    Event order: user:updated (if the directory changed), message:new, then
    the simulated message:status events.
    """
    message = messages.create_message(db, contact_id, text, display_name, avatar_url)
    await record_contact(db, contact_id, display_name, avatar_url)
    await publish_message_created(message)
    simulator.schedule(message.id, contact_id)
    return message


async def post_message(
    db: Session,
    contact_id: str,
    text: str,
    status: MessageStatus = MessageStatus.SENT,
    display_name: Optional[str] = None,
    avatar_url: Optional[str] = None,
) -> Message:
    """Store an outbound message with the given status as-is; nothing is scheduled."""
    message = messages.create_message(db, contact_id, text, display_name, avatar_url, status=status)
    await record_contact(db, contact_id, display_name, avatar_url)
    await publish_message_created(message)
    return message


async def delete_chat(db: Session, contact_id: str) -> int:
    if not contact_id:
        raise ValidationError("contactId is required")
    deleted = messages.delete_all_for_contact(db, contact_id)
    simulator.cancel_contact(contact_id)
    await broadcaster.publish(Event.CHAT_DELETED, {"contactId": contact_id})
    return deleted


# =============================================================================
# Statuses
# =============================================================================

async def post_status(
    db: Session,
    contact_id: str,
    display_name: Optional[str],
    kind: str,
    text: Optional[str] = None,
    media_url: Optional[str] = None,
) -> StatusCollectionOut:
    collection, item = statuses.post_item(db, contact_id, display_name, kind, text, media_url)
    await record_contact(db, contact_id, display_name)
    await broadcaster.publish(
        Event.STATUS_CREATED,
        {
            "contactId": contact_id,
            "displayName": collection.display_name,
            "item": item.to_wire(),
        },
    )
    return collection


async def delete_status_item(db: Session, contact_id: str, item_id: str) -> Optional[StatusCollectionOut]:
    collection = statuses.delete_item(db, contact_id, item_id)
    await broadcaster.publish(Event.STATUS_ITEM_DELETED, {"contactId": contact_id, "itemId": item_id})
    return collection


async def delete_status_collection(db: Session, contact_id: str) -> int:
    deleted = statuses.delete_collection(db, contact_id)
    await broadcaster.publish(Event.STATUS_DELETED, {"contactId": contact_id})
    return deleted


# =============================================================================
# Directory
# =============================================================================

async def set_avatar(
    db: Session,
    contact_id: str,
    avatar_url: str,
    display_name: Optional[str] = None,
) -> ContactOut:
    if not contact_id or not contact_id.strip():
        raise ValidationError("contactId is required")
    if not avatar_url:
        raise ValidationError("avatarUrl is required")
    contact = await record_contact(db, contact_id, display_name, avatar_url)
    return contact_out(contact_id, contact)


async def clear_avatar(db: Session, contact_id: str) -> ContactOut:
    contact, changed = contacts.clear_avatar(db, contact_id)
    result = contact_out(contact_id, contact)
    if changed:
        await broadcaster.publish(Event.CONTACT_UPDATED, result.to_wire())
    return result
