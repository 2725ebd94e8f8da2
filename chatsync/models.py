"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.

All timestamps are fixed-width ISO-8601 UTC strings (see utils.to_iso),
so ordering by the column orders chronologically.
"""

from enum import Enum

from sqlalchemy import Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from chatsync.storage import Base


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class StatusKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"


class Message(Base):
    """
    One chat message.

    Table: messages
    Primary Key: id (ensures idempotent ingestion)
    """
    __tablename__ = "messages"

    id = Column(String, primary_key=True, index=True)
    meta_id = Column(String, nullable=True, index=True)  # alternate producer id
    contact_id = Column(String, nullable=False, index=True)
    display_name = Column(String, nullable=False, default="")
    direction = Column(String, nullable=False, default=Direction.INBOUND.value)
    kind = Column(String, nullable=False, default="text")
    text = Column(Text, nullable=False, default="")
    timestamp = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default=MessageStatus.SENT.value)
    avatar_url = Column(String, nullable=True)
    created_at = Column(String, nullable=False)  # Server time


class StatusCollection(Base):
    """
    Per-contact container of ephemeral status items.

    Table: status_collections
    Primary Key: contact_id (one collection per contact)
    """
    __tablename__ = "status_collections"

    contact_id = Column(String, primary_key=True)
    display_name = Column(String, nullable=False, default="")
    last_updated = Column(String, nullable=True, index=True)
    created_at = Column(String, nullable=False)

    items = relationship(
        "StatusItem",
        order_by="StatusItem.seq",
        cascade="all, delete-orphan",
        back_populates="collection",
    )


class StatusItem(Base):
    """
    Table: status_items
    seq keeps insertion order; id is the public identifier.
    """
    __tablename__ = "status_items"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, nullable=False, unique=True, index=True)
    contact_id = Column(
        String,
        ForeignKey("status_collections.contact_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind = Column(String, nullable=False)
    text = Column(Text, nullable=True)
    media_url = Column(String, nullable=True)
    created_at = Column(String, nullable=False)
    expires_at = Column(String, nullable=True, index=True)

    collection = relationship("StatusCollection", back_populates="items")


class Contact(Base):
    """
    Directory entry: display name and avatar for a contact.

    Table: contacts
    """
    __tablename__ = "contacts"

    contact_id = Column(String, primary_key=True)
    display_name = Column(String, nullable=False, default="")
    avatar_url = Column(String, nullable=False, default="")
    updated_at = Column(String, nullable=False)
