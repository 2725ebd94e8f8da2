"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses and realtime payloads
- Ingestion batch models (the normalized tagged union)

Wire format uses camelCase keys; snake_case is accepted on input.
"""

from typing import Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from chatsync.models import Direction, MessageStatus


CAMEL_CONFIG = {
    "alias_generator": to_camel,
    "populate_by_name": True,
    "from_attributes": True,  # Allow creating from ORM objects
}


class CamelModel(BaseModel):
    model_config = CAMEL_CONFIG

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys (used for realtime payloads)."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SendMessageRequest(CamelModel):
    """
    Body of POST /messages/send.

    Validates:
    - contact_id: non-empty string
    - text: non-empty, max 4096 characters
    """
    contact_id: str = Field(..., min_length=1, description="Recipient contact identifier")
    text: str = Field(..., min_length=1, max_length=4096, description="Message text")
    display_name: Optional[str] = Field(None, description="Contact display name")
    avatar_url: Optional[str] = Field(None, description="Contact avatar URL")

    model_config = {
        **CAMEL_CONFIG,
        "json_schema_extra": {
            "examples": [
                {"contactId": "91200000001", "text": "hi", "displayName": "Ravi"}
            ]
        },
    }


class CreateMessageRequest(CamelModel):
    """
    Body of POST /messages.

    Stores an outbound message with the caller's status as-is; no
    delivery/read simulation follows. Accepts the legacy wa_id, name and
    profilePic keys.
    """
    contact_id: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("contactId", "contact_id", "wa_id")
    )
    text: str = Field(..., min_length=1, max_length=4096)
    display_name: Optional[str] = Field(
        None, validation_alias=AliasChoices("displayName", "display_name", "name")
    )
    avatar_url: Optional[str] = Field(
        None, validation_alias=AliasChoices("avatarUrl", "avatar_url", "profilePic")
    )
    status: MessageStatus = MessageStatus.SENT


class PostStatusRequest(CamelModel):
    """
    Body of POST /status.

    kind/payload consistency is enforced by the status store, not here.
    """
    contact_id: str = Field(..., min_length=1)
    display_name: Optional[str] = None
    kind: str = Field("text", description="text, image or video")
    text: Optional[str] = None
    media_url: Optional[str] = None


class ProfilePicUrlRequest(CamelModel):
    """Body of POST /users/profilePic/url."""
    contact_id: str = Field(..., min_length=1)
    avatar_url: str = Field(..., min_length=1)
    display_name: Optional[str] = None


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class MessageOut(CamelModel):
    id: str
    meta_id: Optional[str] = None
    contact_id: str
    display_name: str = ""
    direction: Direction
    kind: str = "text"
    text: str = ""
    timestamp: str
    status: MessageStatus
    avatar_url: Optional[str] = None


class MessagesListResponse(CamelModel):
    messages: list[MessageOut] = Field(default_factory=list)


class CreateMessageResponse(CamelModel):
    ok: bool = True
    message: MessageOut


class MessageStatusEvent(CamelModel):
    id: str
    status: MessageStatus


class ChatSummaryOut(CamelModel):
    """One row of the chat list: a contact and its most recent message."""
    contact_id: str
    display_name: str = ""
    avatar_url: str = ""
    last_message: MessageOut


class ChatsListResponse(CamelModel):
    chats: list[ChatSummaryOut] = Field(default_factory=list)


class ConversationResponse(CamelModel):
    contact_id: str
    display_name: str = ""
    avatar_url: str = ""
    messages: list[MessageOut] = Field(default_factory=list)


class DeleteResponse(CamelModel):
    deleted_count: int = Field(..., ge=0)


class StatusItemOut(CamelModel):
    id: str
    kind: str
    text: Optional[str] = None
    media_url: Optional[str] = None
    created_at: str
    expires_at: Optional[str] = None


class StatusCollectionOut(CamelModel):
    contact_id: str
    display_name: str = ""
    avatar_url: str = ""
    last_updated: Optional[str] = None
    items: list[StatusItemOut] = Field(default_factory=list)


class StatusListResponse(CamelModel):
    statuses: list[StatusCollectionOut] = Field(default_factory=list)


class StatusItemDeletedResponse(CamelModel):
    status: Optional[StatusCollectionOut] = None


class ContactOut(CamelModel):
    contact_id: str
    display_name: str = ""
    avatar_url: str = ""


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
    database: Optional[dict[str, Any]] = Field(None, description="Database connection state")


# =============================================================================
# Ingestion Models
# =============================================================================

class IngestMessage(BaseModel):
    """
    One entry of a message batch.

    Accepts both the current camelCase keys and the legacy webhook keys
    (wa_id, name, meta_msg_id, type, profilePic).
    """
    id: str = Field(..., min_length=1)
    meta_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("metaId", "meta_id", "meta_msg_id")
    )
    contact_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("contactId", "contact_id", "wa_id")
    )
    display_name: Optional[str] = Field(
        None, validation_alias=AliasChoices("displayName", "display_name", "name")
    )
    direction: Direction = Direction.INBOUND
    kind: Literal["text"] = Field("text", validation_alias=AliasChoices("kind", "type"))
    text: str = ""
    timestamp: Optional[float] = Field(None, ge=0, description="Epoch seconds")
    status: Optional[MessageStatus] = None
    avatar_url: Optional[str] = Field(
        None, validation_alias=AliasChoices("avatarUrl", "avatar_url", "profilePic")
    )

    @field_validator("text", mode="before")
    @classmethod
    def null_text_as_empty(cls, v):
        """Producers send "text": null for empty bodies; store it as ""."""
        return "" if v is None else v


class IngestStatus(BaseModel):
    """One entry of a status-update batch; id matches a message id or meta id."""
    id: str = Field(..., min_length=1)
    status: MessageStatus


class MessageBatch(BaseModel):
    kind: Literal["messages"] = "messages"
    contact_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("contactId", "contact_id", "wa_id")
    )
    display_name: Optional[str] = Field(
        None, validation_alias=AliasChoices("displayName", "display_name", "name")
    )
    messages: list[Any]


class StatusBatch(BaseModel):
    kind: Literal["statuses"] = "statuses"
    statuses: list[Any]


IngestBatch = Union[MessageBatch, StatusBatch]


class IngestFailureOut(CamelModel):
    index: int
    id: Optional[str] = None
    reason: str


class IngestSummary(CamelModel):
    """
    Per-batch ingestion result.

    - inserted: new messages stored
    - duplicates: message entries whose id already existed
    - updated: messages whose status moved forward
    - failed: malformed entries skipped
    """
    kind: Literal["messages", "statuses"]
    received: int = 0
    inserted: int = 0
    duplicates: int = 0
    updated: int = 0
    failed: int = 0
    failures: list[IngestFailureOut] = Field(default_factory=list)


# =============================================================================
# Realtime Models
# =============================================================================

class WsInbound(BaseModel):
    """Client -> server frame."""
    type: str
    data: dict[str, Any] = Field(default_factory=dict)


class WsOutbound(BaseModel):
    """Server -> client frame."""
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
