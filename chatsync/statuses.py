"""
Status store: per-contact collections of ephemeral status items.

Items expire `STATUS_TTL_HOURS` after posting. Nothing is purged eagerly;
expired items are filtered out at read time and collections left without
visible items are hidden from listings.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chatsync.config import settings
from chatsync.contacts import get_contacts
from chatsync.errors import ValidationError
from chatsync.models import StatusCollection, StatusItem, StatusKind
from chatsync.schemas import StatusCollectionOut, StatusItemOut
from chatsync.utils import new_id, to_iso, utc_now

logger = logging.getLogger(__name__)


def validate_item(kind: str, text: Optional[str], media_url: Optional[str]) -> StatusKind:
    """
    Enforce kind/payload consistency.

    - text items need non-empty text and no media reference
    - image/video items need a media reference and no text
    """
    try:
        kind = StatusKind(kind)
    except ValueError:
        raise ValidationError(f"Unsupported status kind: {kind!r}")

    if kind == StatusKind.TEXT:
        if not text or not text.strip():
            raise ValidationError("text status requires non-empty text")
        if media_url:
            raise ValidationError("text status cannot carry a mediaUrl")
    else:
        if not media_url:
            raise ValidationError(f"{kind.value} status requires a mediaUrl")
        if text:
            raise ValidationError(f"{kind.value} status cannot carry text")
    return kind


def _collection_out(collection: StatusCollection, items: list[StatusItem], avatar_url: str = "") -> StatusCollectionOut:
    return StatusCollectionOut(
        contact_id=collection.contact_id,
        display_name=collection.display_name,
        avatar_url=avatar_url or "",
        last_updated=collection.last_updated,
        items=[StatusItemOut.model_validate(item) for item in items],
    )


def _avatar_for(db: Session, contact_id: str) -> str:
    contact = get_contacts(db, [contact_id]).get(contact_id)
    return contact.avatar_url if contact else ""


def _get_or_create_collection(db: Session, contact_id: str, display_name: str, now: str) -> StatusCollection:
    collection = db.get(StatusCollection, contact_id)
    if collection is not None:
        return collection

    collection = StatusCollection(contact_id=contact_id, display_name=display_name, created_at=now)
    db.add(collection)
    try:
        db.flush()
    except IntegrityError:
        # Another request created it first
        db.rollback()
        collection = db.get(StatusCollection, contact_id)
    return collection


def post_item(
    db: Session,
    contact_id: str,
    display_name: Optional[str],
    kind: str,
    text: Optional[str] = None,
    media_url: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[StatusCollectionOut, StatusItemOut]:
    """
    Append a status item to a contact's collection, creating it on first post.

    Args:
        now: Posting time (defaults to the current time); expiry is
            now + STATUS_TTL_HOURS

    Returns:
        (full updated collection, the new item)

    Raises:
        ValidationError: missing contact id or inconsistent kind/payload
    """
    if not contact_id or not contact_id.strip():
        raise ValidationError("contactId is required")
    kind = validate_item(kind, text, media_url)

    posted_at = now or utc_now()
    created = to_iso(posted_at)
    expires = to_iso(posted_at + timedelta(hours=settings.STATUS_TTL_HOURS))

    collection = _get_or_create_collection(db, contact_id, display_name or "", created)
    if display_name and collection.display_name != display_name:
        collection.display_name = display_name

    item = StatusItem(
        id=new_id("status"),
        contact_id=contact_id,
        kind=kind.value,
        text=text if kind == StatusKind.TEXT else None,
        media_url=media_url if kind != StatusKind.TEXT else None,
        created_at=created,
        expires_at=expires,
    )
    collection.items.append(item)
    collection.last_updated = created
    db.commit()
    db.refresh(collection)

    logger.info(f"Status item posted: contact={contact_id}, item={item.id}, kind={kind.value}")
    return (
        _collection_out(collection, list(collection.items), _avatar_for(db, contact_id)),
        StatusItemOut.model_validate(item),
    )


def list_visible(db: Session, now: Optional[datetime] = None) -> list[StatusCollectionOut]:
    """
    Collections with at least one unexpired item, most recently updated first.

    An item is visible when it has no expiry or expires strictly after `now`.
    """
    cutoff = to_iso(now or utc_now())

    collections = (
        db.query(StatusCollection)
        .order_by(StatusCollection.last_updated.desc(), StatusCollection.contact_id.asc())
        .all()
    )
    visible_items = (
        db.query(StatusItem)
        .filter(or_(StatusItem.expires_at.is_(None), StatusItem.expires_at > cutoff))
        .order_by(StatusItem.seq.asc())
        .all()
    )

    by_contact: dict[str, list[StatusItem]] = {}
    for item in visible_items:
        by_contact.setdefault(item.contact_id, []).append(item)

    contacts = get_contacts(db, by_contact.keys())
    result = []
    for collection in collections:
        items = by_contact.get(collection.contact_id)
        if not items:
            continue
        contact = contacts.get(collection.contact_id)
        result.append(_collection_out(collection, items, contact.avatar_url if contact else ""))

    logger.debug(f"Visible status collections: {len(result)} of {len(collections)}")
    return result


def get_collection(db: Session, contact_id: str) -> Optional[StatusCollectionOut]:
    """Full collection including expired items, or None."""
    collection = db.get(StatusCollection, contact_id)
    if collection is None:
        return None
    return _collection_out(collection, list(collection.items), _avatar_for(db, contact_id))


def delete_item(db: Session, contact_id: str, item_id: str) -> Optional[StatusCollectionOut]:
    """
    Remove one item. The collection stays even when it becomes empty.

    Returns:
        The updated collection, or None when the collection does not exist
    """
    collection = db.get(StatusCollection, contact_id)
    if collection is None:
        logger.info(f"Status item delete ignored, no collection for {contact_id}")
        return None

    removed = (
        db.query(StatusItem)
        .filter(StatusItem.contact_id == contact_id, StatusItem.id == item_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    db.expire(collection)
    logger.info(f"Status item delete: contact={contact_id}, item={item_id}, removed={removed}")
    return get_collection(db, contact_id)


def delete_collection(db: Session, contact_id: str) -> int:
    """
    Remove a contact's whole collection and its items.

    Returns:
        Number of collections removed (0 or 1)
    """
    db.query(StatusItem).filter(StatusItem.contact_id == contact_id).delete(synchronize_session=False)
    deleted = (
        db.query(StatusCollection)
        .filter(StatusCollection.contact_id == contact_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.info(f"Status collection delete: contact={contact_id}, removed={deleted}")
    return deleted
