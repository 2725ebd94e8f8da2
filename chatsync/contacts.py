"""
Contact directory: contact id -> display name and avatar URL.

Writes use merge semantics. A non-empty value overwrites, an empty or
missing value leaves the stored field alone.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chatsync.models import Contact
from chatsync.utils import to_iso, utc_now

logger = logging.getLogger(__name__)


def get_contact(db: Session, contact_id: str) -> Optional[Contact]:
    return db.get(Contact, contact_id)


def get_contacts(db: Session, contact_ids: Iterable[str]) -> dict[str, Contact]:
    """Batch lookup used to decorate chat and status listings."""
    ids = list(set(contact_ids))
    if not ids:
        return {}
    return {c.contact_id: c for c in db.query(Contact).filter(Contact.contact_id.in_(ids))}


def merge_upsert(
    db: Session,
    contact_id: str,
    display_name: Optional[str] = None,
    avatar_url: Optional[str] = None,
) -> tuple[Optional[Contact], bool]:
    """
    Create or update a directory entry without clobbering existing fields.

    Returns:
        (contact, changed) - contact is None only when nothing was supplied
        and no entry exists; changed is True when any stored field changed.
    """
    values = {
        field: value
        for field, value in (("display_name", display_name), ("avatar_url", avatar_url))
        if value
    }
    if not values:
        return get_contact(db, contact_id), False

    contact = get_contact(db, contact_id)
    if contact is None:
        contact = Contact(
            contact_id=contact_id,
            display_name=values.get("display_name", ""),
            avatar_url=values.get("avatar_url", ""),
            updated_at=to_iso(utc_now()),
        )
        db.add(contact)
        try:
            db.commit()
        except IntegrityError:
            # Created concurrently; merge into the winner instead
            db.rollback()
            logger.debug(f"Contact {contact_id} inserted concurrently, merging")
            return merge_upsert(db, contact_id, display_name, avatar_url)
        db.refresh(contact)
        logger.info(f"Contact created: {contact_id}")
        return contact, True

    changes = {field: value for field, value in values.items() if getattr(contact, field) != value}
    if not changes:
        return contact, False

    for field, value in changes.items():
        setattr(contact, field, value)
    contact.updated_at = to_iso(utc_now())
    db.commit()
    db.refresh(contact)
    logger.info(f"Contact updated: {contact_id}, fields={sorted(changes)}")
    return contact, True


def clear_avatar(db: Session, contact_id: str) -> tuple[Optional[Contact], bool]:
    """Set the avatar to empty; the entry itself is kept."""
    contact = get_contact(db, contact_id)
    if contact is None or not contact.avatar_url:
        return contact, False

    contact.avatar_url = ""
    contact.updated_at = to_iso(utc_now())
    db.commit()
    db.refresh(contact)
    logger.info(f"Avatar cleared for contact {contact_id}")
    return contact, True
