"""
Chat list projection.

Recomputed from the message store on every call; nothing is materialized.
"""

import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from chatsync.contacts import get_contacts
from chatsync.models import Message
from chatsync.schemas import ChatSummaryOut, MessageOut

logger = logging.getLogger(__name__)


def list_chats(db: Session) -> list[ChatSummaryOut]:
    """
    One summary per contact holding its most recent message.

    Ordering:
        - last_message.timestamp descending
        - contact_id ascending when two contacts share a last timestamp
        - within a contact, equal timestamps resolve to the highest id (the
          last row of the conversation order)
    """
    latest = (
        db.query(Message.contact_id, func.max(Message.timestamp).label("last_ts"))
        .group_by(Message.contact_id)
        .subquery()
    )
    rows = (
        db.query(Message)
        .join(
            latest,
            (Message.contact_id == latest.c.contact_id) & (Message.timestamp == latest.c.last_ts),
        )
        .order_by(Message.timestamp.desc(), Message.contact_id.asc(), Message.id.desc())
        .all()
    )

    last_by_contact: dict[str, Message] = {}
    for message in rows:
        # First row per contact wins: highest id among equal timestamps
        last_by_contact.setdefault(message.contact_id, message)

    contacts = get_contacts(db, last_by_contact.keys())
    chats = []
    for contact_id, message in last_by_contact.items():
        contact = contacts.get(contact_id)
        chats.append(
            ChatSummaryOut(
                contact_id=contact_id,
                display_name=(contact.display_name if contact else "") or message.display_name,
                avatar_url=(contact.avatar_url if contact else "") or message.avatar_url or "",
                last_message=MessageOut.model_validate(message),
            )
        )

    logger.info(f"Chat list computed: {len(chats)} chat(s)")
    return chats
