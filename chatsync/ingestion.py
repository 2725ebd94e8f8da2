"""
Ingestion gateway for externally sourced batches.

Wire payloads come in two loosely typed shapes:

    {"contactId"?: ..., "displayName"?: ..., "messages": [...]}
    {"statuses": [...]}

normalize_payload() turns them into a MessageBatch or StatusBatch tagged by
`kind`. Entries are applied one by one through the message store; a bad
entry is recorded in the summary and skipped, never aborting the batch.
The gateway keeps no state of its own.
"""

import json
import logging
from pathlib import Path
from typing import Any, Union

from pydantic import TypeAdapter, ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from chatsync import messages
from chatsync.errors import IngestionPartialFailure, ValidationError
from chatsync.metrics import record_ingest_outcome
from chatsync.schemas import (
    IngestBatch,
    IngestFailureOut,
    IngestMessage,
    IngestStatus,
    IngestSummary,
    MessageBatch,
    StatusBatch,
)
from chatsync.services import publish_message_created, publish_status_changes, record_contact
from chatsync.utils import from_epoch_seconds

logger = logging.getLogger(__name__)

_batch_adapter = TypeAdapter(IngestBatch)


def _describe(exc: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'entry'}: {err['msg']}" for err in exc.errors()
    )


def normalize_payload(payload: Any) -> Union[MessageBatch, StatusBatch]:
    """
    Resolve the batch kind and validate the batch envelope.

    An explicit "kind" wins; otherwise it is inferred from the presence of
    "messages" or "statuses".

    Raises:
        ValidationError: not an object, unknown shape, or bad envelope
    """
    if not isinstance(payload, dict):
        raise ValidationError("Payload must be a JSON object")

    kind = payload.get("kind")
    if kind is None:
        if "messages" in payload:
            kind = "messages"
        elif "statuses" in payload:
            kind = "statuses"
        else:
            raise ValidationError("Unknown payload shape")
    if kind not in ("messages", "statuses"):
        raise ValidationError(f"Unknown payload kind: {kind!r}")

    try:
        batch = _batch_adapter.validate_python({**payload, "kind": kind})
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {kind} batch: {_describe(e)}")
    return batch


def _parse_entry(model, index: int, raw: Any):
    if not isinstance(raw, dict):
        raise IngestionPartialFailure(index, "entry must be an object")
    entry_id = raw.get("id") if isinstance(raw.get("id"), str) else None
    try:
        return model.model_validate(raw)
    except PydanticValidationError as e:
        raise IngestionPartialFailure(index, _describe(e), entry_id=entry_id)


def _record_failure(summary: IngestSummary, failure: IngestionPartialFailure) -> None:
    logger.warning(f"Ingestion entry skipped: {failure.message}")
    summary.failed += 1
    summary.failures.append(
        IngestFailureOut(index=failure.index, id=failure.entry_id, reason=failure.reason)
    )


async def _ingest_messages(db: Session, batch: MessageBatch) -> IngestSummary:
    summary = IngestSummary(kind="messages", received=len(batch.messages))

    for index, raw in enumerate(batch.messages):
        try:
            entry = _parse_entry(IngestMessage, index, raw)
            contact_id = batch.contact_id or entry.contact_id
            if not contact_id:
                raise IngestionPartialFailure(index, "contactId is required", entry_id=entry.id)
            try:
                timestamp = from_epoch_seconds(entry.timestamp)
            except (OverflowError, OSError, ValueError):
                raise IngestionPartialFailure(index, "timestamp out of range", entry_id=entry.id)
        except IngestionPartialFailure as failure:
            _record_failure(summary, failure)
            continue

        display_name = batch.display_name or entry.display_name or ""
        result = messages.append_or_skip(
            db,
            message_id=entry.id,
            contact_id=contact_id,
            text=entry.text,
            timestamp=timestamp,
            direction=entry.direction,
            kind=entry.kind,
            status=entry.status,
            meta_id=entry.meta_id,
            display_name=display_name,
            avatar_url=entry.avatar_url,
        )

        if result.created:
            summary.inserted += 1
            await record_contact(db, contact_id, display_name, entry.avatar_url)
            await publish_message_created(result.message)
        else:
            summary.duplicates += 1
            if result.status_changed:
                summary.updated += 1
                await publish_status_changes([result.message])

    record_ingest_outcome("messages", "inserted", summary.inserted)
    record_ingest_outcome("messages", "duplicate", summary.duplicates)
    record_ingest_outcome("messages", "updated", summary.updated)
    record_ingest_outcome("messages", "failed", summary.failed)
    return summary


async def _ingest_statuses(db: Session, batch: StatusBatch) -> IngestSummary:
    summary = IngestSummary(kind="statuses", received=len(batch.statuses))
    unchanged = 0

    for index, raw in enumerate(batch.statuses):
        try:
            entry = _parse_entry(IngestStatus, index, raw)
        except IngestionPartialFailure as failure:
            _record_failure(summary, failure)
            continue

        changed = messages.update_status(db, entry.id, entry.status)
        if changed:
            summary.updated += len(changed)
            await publish_status_changes(changed)
        else:
            unchanged += 1

    record_ingest_outcome("statuses", "updated", summary.updated)
    record_ingest_outcome("statuses", "unchanged", unchanged)
    record_ingest_outcome("statuses", "failed", summary.failed)
    return summary


async def ingest_payload(db: Session, payload: Any) -> IngestSummary:
    """
    Reconcile one external batch into the message store.

    Message entries are upserted by id (replays are no-ops apart from a
    forward status change); status entries advance every message whose id
    or meta id matches.

    Returns:
        IngestSummary with per-batch counts and the skipped entries
    """
    batch = normalize_payload(payload)
    logger.info(f"Ingesting {batch.kind} batch")

    if isinstance(batch, MessageBatch):
        summary = await _ingest_messages(db, batch)
    else:
        summary = await _ingest_statuses(db, batch)

    logger.info(
        f"Ingestion done: kind={summary.kind}, received={summary.received}, "
        f"inserted={summary.inserted}, duplicates={summary.duplicates}, "
        f"updated={summary.updated}, failed={summary.failed}"
    )
    return summary


async def ingest_directory(db: Session, directory: Union[str, Path]) -> dict[str, int]:
    """
    Ingest every *.json payload file of a directory, in file name order.

    Files that are not valid JSON or have an unknown shape are skipped
    with a warning.

    Returns:
        Totals across files: files, skipped_files, inserted, duplicates,
        updated, failed
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise ValidationError(f"Payloads directory not found: {directory}")

    totals = {"files": 0, "skipped_files": 0, "inserted": 0, "duplicates": 0, "updated": 0, "failed": 0}
    for path in sorted(directory.glob("*.json")):
        totals["files"] += 1
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            summary = await ingest_payload(db, payload)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Skipping payload file {path.name}: {e}")
            totals["skipped_files"] += 1
            continue
        for key in ("inserted", "duplicates", "updated", "failed"):
            totals[key] += getattr(summary, key)

    logger.info(f"Directory ingestion done: {totals}")
    return totals
