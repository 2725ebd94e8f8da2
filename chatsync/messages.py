"""
Message store.

Append-mostly log of chat messages keyed by a caller-supplied id. Creation
fields are first-write-wins; the status field is the only one later writers
may change, and only forward (see can_transition).
"""

import logging
from datetime import datetime
from typing import NamedTuple, Optional, Union

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chatsync.errors import ValidationError
from chatsync.models import Direction, Message, MessageStatus
from chatsync.utils import new_id, to_iso, utc_now

logger = logging.getLogger(__name__)

# Position along the delivery path; failed is handled separately
_STATUS_RANK = {
    MessageStatus.PENDING: 0,
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
}


class AppendResult(NamedTuple):
    message: Message
    created: bool
    status_changed: bool


def can_transition(current: Union[str, MessageStatus], new: Union[str, MessageStatus]) -> bool:
    """
    Whether a message may move from `current` to `new`.

    Forward only along pending -> sent -> delivered -> read, or to failed
    from any non-terminal status. read and failed are terminal.
    """
    current = MessageStatus(current)
    new = MessageStatus(new)
    if current == new or current in (MessageStatus.READ, MessageStatus.FAILED):
        return False
    if new == MessageStatus.FAILED:
        return True
    return _STATUS_RANK[new] > _STATUS_RANK[current]


def _predecessors(new: MessageStatus) -> list[str]:
    return [s.value for s in MessageStatus if can_transition(s, new)]


def append_or_skip(
    db: Session,
    message_id: str,
    contact_id: str,
    text: str = "",
    timestamp: Optional[datetime] = None,
    direction: Direction = Direction.INBOUND,
    kind: str = "text",
    status: Optional[MessageStatus] = None,
    meta_id: Optional[str] = None,
    display_name: str = "",
    avatar_url: Optional[str] = None,
) -> AppendResult:
    """
    Insert a message unless its id already exists (idempotent).

    Args:
        db: Database session
        message_id: Unique message identifier
        contact_id: Contact the message belongs to
        timestamp: Message time; defaults to now
        status: Initial status on insert; on replay, applied only if it
            moves the stored status forward

    Returns:
        AppendResult(message, created, status_changed)
    """
    existing = db.get(Message, message_id)
    if existing is None:
        now = utc_now()
        message = Message(
            id=message_id,
            meta_id=meta_id,
            contact_id=contact_id,
            display_name=display_name or "",
            direction=Direction(direction).value,
            kind=kind,
            text=text or "",
            timestamp=to_iso(timestamp or now),
            status=MessageStatus(status or MessageStatus.SENT).value,
            avatar_url=avatar_url,
            created_at=to_iso(now),
        )
        try:
            db.add(message)
            db.commit()
            db.refresh(message)
            logger.info(f"Message created: id={message_id}, contact={contact_id}")
            return AppendResult(message, True, False)
        except IntegrityError:
            # Inserted concurrently by another writer; fall through to the replay path
            db.rollback()
            existing = db.get(Message, message_id)
            if existing is None:
                raise ValidationError(f"Message {message_id} conflicts with an existing record")

    logger.info(f"Duplicate message detected: {message_id}")
    status_changed = False
    if status is not None:
        status_changed = _advance(db, Message.id == message_id, MessageStatus(status)) > 0
        db.refresh(existing)
    return AppendResult(existing, False, status_changed)


def _advance(db: Session, match, new_status: MessageStatus) -> int:
    """Single conditional UPDATE: only rows whose status may move to new_status."""
    result = db.execute(
        update(Message)
        .where(match, Message.status.in_(_predecessors(new_status)))
        .values(status=new_status.value)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount or 0


def update_status(db: Session, message_id: str, new_status: Union[str, MessageStatus]) -> list[Message]:
    """
    Move every message whose id or meta id equals `message_id` to `new_status`.

    Messages for which the transition would go backwards are left alone.
    No match is not an error.

    Returns:
        The messages that actually changed.
    """
    new_status = MessageStatus(new_status)
    match = or_(Message.id == message_id, Message.meta_id == message_id)

    candidates = [
        m.id
        for m in db.query(Message.id).filter(match, Message.status.in_(_predecessors(new_status)))
    ]
    if not candidates:
        logger.debug(f"No status update applied: id={message_id}, status={new_status.value}")
        return []

    changed = _advance(db, Message.id.in_(candidates), new_status)
    logger.info(f"Status update: id={message_id} -> {new_status.value} ({changed} message(s))")

    return (
        db.query(Message)
        .filter(Message.id.in_(candidates), Message.status == new_status.value)
        .order_by(Message.timestamp.asc(), Message.id.asc())
        .all()
    )


def get_message(db: Session, message_id: str) -> Optional[Message]:
    return db.get(Message, message_id)


def list_by_contact(db: Session, contact_id: str) -> list[Message]:
    """Conversation order: timestamp ascending, id ascending on ties."""
    return (
        db.query(Message)
        .filter(Message.contact_id == contact_id)
        .order_by(Message.timestamp.asc(), Message.id.asc())
        .all()
    )


def delete_all_for_contact(db: Session, contact_id: str) -> int:
    """
    Remove every message of a contact. Irreversible.

    Returns:
        Number of messages removed
    """
    deleted = (
        db.query(Message)
        .filter(Message.contact_id == contact_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.info(f"Deleted {deleted} message(s) for contact {contact_id}")
    return deleted


def create_message(
    db: Session,
    contact_id: str,
    text: str,
    display_name: Optional[str] = None,
    avatar_url: Optional[str] = None,
    status: MessageStatus = MessageStatus.SENT,
) -> Message:
    """Store a locally sent (outbound) message with a generated id; status defaults to sent."""
    if not contact_id or not contact_id.strip():
        raise ValidationError("contactId is required")
    if not text or not text.strip():
        raise ValidationError("text is required")

    result = append_or_skip(
        db,
        message_id=new_id("local"),
        contact_id=contact_id,
        text=text,
        direction=Direction.OUTBOUND,
        status=status,
        display_name=display_name or "",
        avatar_url=avatar_url,
    )
    return result.message
