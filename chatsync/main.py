import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import (
    Depends,
    FastAPI,
    File,
    Form,
    Header,
    HTTPException,
    Request,
    Response,
    UploadFile,
    WebSocket,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from chatsync import contacts, messages, services, statuses
from chatsync.chats import list_chats
from chatsync.config import settings
from chatsync.delivery import simulator
from chatsync.errors import ChatSyncError, NotFoundError, StoreUnavailableError, ValidationError
from chatsync.ingestion import ingest_payload
from chatsync.logging_utils import setup_logging, RequestLoggingMiddleware, log_ingest_data
from chatsync.metrics import get_metrics, get_metrics_content_type
from chatsync.realtime import broadcaster, handle_client_frame
from chatsync.schemas import (
    ChatsListResponse,
    ContactOut,
    ConversationResponse,
    CreateMessageRequest,
    CreateMessageResponse,
    DeleteResponse,
    ErrorResponse,
    HealthResponse,
    IngestSummary,
    MessageOut,
    MessagesListResponse,
    PostStatusRequest,
    ProfilePicUrlRequest,
    SendMessageRequest,
    StatusCollectionOut,
    StatusItemDeletedResponse,
    StatusListResponse,
)
from chatsync.storage import check_db_health, database, get_db
from chatsync.uploads import UPLOAD_URL_PREFIX, discard_upload, media_kind_for, save_upload, upload_dir
from chatsync.utils import verify_hmac_signature


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    - Startup: connect the store; on failure keep retrying in the background
    - Shutdown: cancel pending delivery simulations and release the engine
    """
    if not database.connect():
        database.ensure_connecting()
    yield
    simulator.shutdown()
    database.dispose()


app = FastAPI(
    title="Chat Sync API",
    description="WhatsApp-like chats, delivery status and ephemeral statuses with realtime fan-out",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)

app.mount(UPLOAD_URL_PREFIX, StaticFiles(directory=str(upload_dir()), check_dir=False), name="uploads")


# =============================================================================
# Exception Handlers
# =============================================================================

@app.exception_handler(ChatSyncError)
async def chatsync_error_handler(request: Request, exc: ChatSyncError) -> JSONResponse:
    if isinstance(exc, StoreUnavailableError):
        logger.error(f"Store unavailable for {request.method} {request.url.path}")
    else:
        logger.info(f"{type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(OperationalError)
async def store_operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
    database.mark_unavailable(exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Store unavailable"},
    )


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(f"Storage error on {request.method} {request.url.path}: {type(exc).__name__}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Storage error"},
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - 200 only when the store is connected and its schema
    is applied, otherwise 503 with the connection state.
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        database.ensure_connecting()
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied",
            database=database.status(),
        )
    return HealthResponse(status="ready", database=database.status())


# =============================================================================
# Chat Routes
# =============================================================================

@app.get("/chats", response_model=ChatsListResponse)
async def get_chats(db: Session = Depends(get_db)) -> ChatsListResponse:
    """One row per contact with its latest message, newest chat first."""
    return ChatsListResponse(chats=list_chats(db))


@app.get("/conversations/{contact_id}", response_model=ConversationResponse)
async def get_conversation(contact_id: str, db: Session = Depends(get_db)) -> ConversationResponse:
    """
    All messages of a contact in conversation order (timestamp ascending).
    An unknown contact yields an empty conversation, not a 404.
    """
    history = messages.list_by_contact(db, contact_id)
    contact = contacts.get_contact(db, contact_id)

    display_name = contact.display_name if contact else ""
    if not display_name:
        display_name = next((m.display_name for m in history if m.display_name), "")

    logger.debug(f"Conversation {contact_id}: {len(history)} message(s)")
    return ConversationResponse(
        contact_id=contact_id,
        display_name=display_name,
        avatar_url=contact.avatar_url if contact else "",
        messages=[MessageOut.model_validate(m) for m in history],
    )


@app.post(
    "/messages/send",
    response_model=MessageOut,
    responses={422: {"model": ErrorResponse, "description": "Validation error"}},
)
async def send_message(body: SendMessageRequest, db: Session = Depends(get_db)) -> MessageOut:
    """
    Store an outbound message (status sent) and broadcast it.
    Delivered/read transitions follow asynchronously.
    """
    message = await services.send_message(
        db,
        contact_id=body.contact_id,
        text=body.text,
        display_name=body.display_name,
        avatar_url=body.avatar_url,
    )
    return MessageOut.model_validate(message)


@app.post(
    "/messages",
    response_model=CreateMessageResponse,
    responses={422: {"model": ErrorResponse, "description": "Validation error"}},
)
async def create_message(body: CreateMessageRequest, db: Session = Depends(get_db)) -> CreateMessageResponse:
    """
    Store an outbound message with the supplied status (default sent).
    Unlike /messages/send, no delivered/read transitions are simulated.
    """
    message = await services.post_message(
        db,
        contact_id=body.contact_id,
        text=body.text,
        status=body.status,
        display_name=body.display_name,
        avatar_url=body.avatar_url,
    )
    return CreateMessageResponse(message=MessageOut.model_validate(message))


@app.get(
    "/messages/by-id/{message_id}",
    response_model=MessageOut,
    responses={404: {"model": ErrorResponse, "description": "Message not found"}},
)
async def get_message(message_id: str, db: Session = Depends(get_db)) -> MessageOut:
    message = messages.get_message(db, message_id)
    if message is None:
        raise NotFoundError(f"Message {message_id} not found")
    return MessageOut.model_validate(message)


@app.get("/messages/{contact_id}", response_model=MessagesListResponse)
async def list_messages(contact_id: str, db: Session = Depends(get_db)) -> MessagesListResponse:
    """A contact's messages in conversation order, without directory data."""
    history = messages.list_by_contact(db, contact_id)
    return MessagesListResponse(messages=[MessageOut.model_validate(m) for m in history])


@app.delete("/chats/{contact_id}", response_model=DeleteResponse)
async def delete_chat(contact_id: str, db: Session = Depends(get_db)) -> DeleteResponse:
    """Remove every message of a contact. Irreversible."""
    deleted = await services.delete_chat(db, contact_id)
    return DeleteResponse(deleted_count=deleted)


# =============================================================================
# Status Routes
# =============================================================================

@app.get("/status", response_model=StatusListResponse)
async def get_statuses(db: Session = Depends(get_db)) -> StatusListResponse:
    """Collections with unexpired items, most recently updated first."""
    return StatusListResponse(statuses=statuses.list_visible(db))


@app.post("/status", response_model=StatusCollectionOut)
async def post_status(body: PostStatusRequest, db: Session = Depends(get_db)) -> StatusCollectionOut:
    return await services.post_status(
        db,
        contact_id=body.contact_id,
        display_name=body.display_name,
        kind=body.kind,
        text=body.text,
        media_url=body.media_url,
    )


@app.post("/status/upload", response_model=StatusCollectionOut)
async def upload_status(
    contact_id: Annotated[str, Form(alias="contactId", min_length=1)],
    file: Annotated[UploadFile, File()],
    display_name: Annotated[Optional[str], Form(alias="displayName")] = None,
    kind: Annotated[Optional[str], Form()] = None,
    db: Session = Depends(get_db),
) -> StatusCollectionOut:
    """
    Store an image/video file and post it as a status item.
    The kind is taken from the form, or inferred from the file content type.
    """
    if not contact_id.strip():
        raise ValidationError("contactId is required")
    media_kind = kind or media_kind_for(file.content_type)
    if media_kind not in ("image", "video"):
        raise ValidationError("kind must be image or video")

    media_url = await save_upload(file, prefix="status")
    try:
        return await services.post_status(
            db,
            contact_id=contact_id,
            display_name=display_name,
            kind=media_kind,
            media_url=media_url,
        )
    except Exception:
        discard_upload(media_url)
        raise


@app.get(
    "/status/{contact_id}",
    response_model=StatusCollectionOut,
    responses={404: {"model": ErrorResponse, "description": "No status collection"}},
)
async def get_status_collection(contact_id: str, db: Session = Depends(get_db)) -> StatusCollectionOut:
    """A contact's full collection, expired items included."""
    collection = statuses.get_collection(db, contact_id)
    if collection is None:
        raise NotFoundError(f"No status collection for {contact_id}")
    return collection


@app.delete("/status/{contact_id}", response_model=DeleteResponse)
async def delete_status_collection(contact_id: str, db: Session = Depends(get_db)) -> DeleteResponse:
    deleted = await services.delete_status_collection(db, contact_id)
    return DeleteResponse(deleted_count=deleted)


@app.delete("/status/{contact_id}/items/{item_id}", response_model=StatusItemDeletedResponse)
async def delete_status_item(
    contact_id: str,
    item_id: str,
    db: Session = Depends(get_db),
) -> StatusItemDeletedResponse:
    collection = await services.delete_status_item(db, contact_id, item_id)
    return StatusItemDeletedResponse(status=collection)


# =============================================================================
# Directory Routes
# =============================================================================

@app.post("/users/profilePic", response_model=ContactOut)
async def upload_profile_pic(
    contact_id: Annotated[str, Form(alias="contactId", min_length=1)],
    file: Annotated[UploadFile, File()],
    display_name: Annotated[Optional[str], Form(alias="displayName")] = None,
    db: Session = Depends(get_db),
) -> ContactOut:
    if not contact_id.strip():
        raise ValidationError("contactId is required")
    if media_kind_for(file.content_type) != "image":
        raise ValidationError("profile picture must be an image")

    avatar_url = await save_upload(file, prefix="profile")
    try:
        return await services.set_avatar(db, contact_id, avatar_url, display_name)
    except Exception:
        discard_upload(avatar_url)
        raise


@app.post("/users/profilePic/url", response_model=ContactOut)
async def set_profile_pic_url(body: ProfilePicUrlRequest, db: Session = Depends(get_db)) -> ContactOut:
    return await services.set_avatar(db, body.contact_id, body.avatar_url, body.display_name)


@app.delete("/users/{contact_id}/profilePic", response_model=ContactOut)
async def clear_profile_pic(contact_id: str, db: Session = Depends(get_db)) -> ContactOut:
    return await services.clear_avatar(db, contact_id)


# =============================================================================
# Ingestion Route
# =============================================================================

@app.post(
    "/payloads/ingest",
    response_model=IngestSummary,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        422: {"model": ErrorResponse, "description": "Validation error"},
    },
)
async def ingest(
    request: Request,
    x_signature: Annotated[Optional[str], Header(alias="X-Signature")] = None,
    db: Session = Depends(get_db),
) -> IngestSummary:
    """
    Reconcile an external batch of messages or status updates.

    - When WEBHOOK_SECRET is configured, X-Signature must be the hex
      HMAC-SHA256 of the raw body
    - Idempotent: replayed message ids are not inserted twice
    - Malformed entries are skipped and reported in the summary
    """
    raw_body = await request.body()

    if settings.WEBHOOK_SECRET:
        if not x_signature or not verify_hmac_signature(raw_body, x_signature, settings.WEBHOOK_SECRET):
            logger.error("Invalid or missing X-Signature on ingestion")
            log_ingest_data(request, result="invalid_signature")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="invalid signature"
            )

    try:
        payload = json.loads(raw_body)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON: {e}")
        log_ingest_data(request, result="validation_error")
        raise ValidationError(f"Invalid JSON: {e}")

    try:
        summary = await ingest_payload(db, payload)
    except ValidationError:
        log_ingest_data(request, result="validation_error")
        raise

    log_ingest_data(request, result="ok", summary=summary)
    return summary


# =============================================================================
# Realtime & Metrics
# =============================================================================

@app.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    """
    Event stream. Receives every event published by the service; accepts
    {"type": "typing", "data": {"contactId": ...}} frames and relays them
    to everyone.
    """
    await websocket.accept()
    broadcaster.subscribe(websocket)
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                logger.debug("Realtime client disconnected")
                break
            if frame.get("text") is None:
                logger.debug("Ignoring binary realtime frame")
                continue
            await handle_client_frame(frame["text"])
    finally:
        broadcaster.unsubscribe(websocket)


@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
