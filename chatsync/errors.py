"""
Error taxonomy for the chat service.

HTTP mapping (see the exception handlers in main.py):
- ValidationError        -> 422
- NotFoundError          -> 404
- StoreUnavailableError  -> 503
- IngestionPartialFailure is never propagated out of a batch; it is
  collected into the ingestion summary.
"""

from typing import Optional


class ChatSyncError(Exception):
    """Base exception for all service errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(ChatSyncError):
    """Missing or malformed required fields."""

    status_code = 422


class NotFoundError(ChatSyncError):
    """Operation referenced a contact or item that does not exist."""

    status_code = 404


class StoreUnavailableError(ChatSyncError):
    """The datastore is not connected (yet, or anymore)."""

    status_code = 503

    def __init__(self, message: str = "Store unavailable"):
        super().__init__(message)


class IngestionPartialFailure(ChatSyncError):
    """One entry of an ingestion batch could not be applied."""

    status_code = 422

    def __init__(self, index: int, reason: str, entry_id: Optional[str] = None):
        self.index = index
        self.reason = reason
        self.entry_id = entry_id
        super().__init__(f"entry {index}: {reason}")
