import hmac
import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import FastAPI, Response, Request, Depends, Header, HTTPException, status, Query
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import MalformedPayload, PersistenceFailure, WebhookError
from app.ingestion import process_events
from app.logging_utils import setup_logging, RequestLoggingMiddleware, log_webhook_data
from app.metrics import record_webhook_outcome, get_metrics, get_metrics_content_type
from app.models import Direction, MessageStatus, MessageType
from app.normalizer import normalize_payload, parse_body, webhook_type
from app.storage import (
    init_db,
    check_db_health,
    get_db,
    create_webhook_log,
    finish_webhook_log,
    get_conversation,
    search_messages,
    get_analytics,
)
from app.utils import normalize_phone, verify_hmac_signature
from app.schemas import (
    AnalyticsResponse,
    ConversationResponse,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    SearchResponse,
    WebhookResponse,
)


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup."""
    init_db()
    yield


app = FastAPI(
    title="eBrecho WhatsApp Webhook",
    description="WhatsApp Cloud API webhook ingestion for eBrecho partners",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. WHATSAPP_VERIFY_TOKEN is set (non-empty)
    2. DB is reachable and schema is applied

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.WHATSAPP_VERIFY_TOKEN:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="WHATSAPP_VERIFY_TOKEN not configured")

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="Database not reachable or schema not applied")

    return HealthResponse(status="ready")


# =============================================================================
# WhatsApp Webhook Routes
# =============================================================================

@app.get(
    "/api/whatsapp/webhook",
    response_class=PlainTextResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Missing or invalid hub parameters"},
        403: {"model": ErrorResponse, "description": "Verify token mismatch"},
    }
)
async def verify_webhook(
    hub_mode: Annotated[Optional[str], Query(alias="hub.mode")] = None,
    hub_challenge: Annotated[Optional[str], Query(alias="hub.challenge")] = None,
    hub_verify_token: Annotated[Optional[str], Query(alias="hub.verify_token")] = None,
) -> PlainTextResponse:
    """
    One-time verification handshake from Meta.

    Echoes hub.challenge when hub.verify_token matches WHATSAPP_VERIFY_TOKEN.
    """
    if hub_mode != "subscribe" or not hub_challenge or not hub_verify_token:
        logger.warning(f"Invalid webhook verification parameters: mode={hub_mode!r}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="invalid webhook verification parameters"
        )

    expected = settings.WHATSAPP_VERIFY_TOKEN
    if not expected or not hmac.compare_digest(hub_verify_token.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Webhook verification failed: verify token mismatch")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")

    logger.info("Webhook verified")
    return PlainTextResponse(content=hub_challenge, status_code=status.HTTP_200_OK)


def _reject(request: Request, error: WebhookError) -> HTTPException:
    record_webhook_outcome(error.result)
    log_webhook_data(request, result=error.result)
    return HTTPException(status_code=error.status_code, detail=error.detail)


def _store_delivery(db: Session, body: dict, events: Optional[list], failure: Optional[Exception]):
    """
    Log the raw delivery, then persist its events.

    Returns:
        Tuple of (result label, DeliveryResult or None)
    """
    webhook_log = None
    try:
        webhook_log = create_webhook_log(db, webhook_type(body), body)
    except PersistenceFailure as e:
        logger.error(f"Could not store webhook log: {e}")

    if failure is not None:
        _fail_webhook_log(db, webhook_log, failure)
        return "processing_error", None

    try:
        delivery = process_events(db, events)
        if webhook_log is not None:
            error = "one or more events failed to persist" if delivery.has_failures else None
            finish_webhook_log(db, webhook_log, error=error)
    except Exception as e:
        logger.exception("Unexpected error processing webhook events")
        _fail_webhook_log(db, webhook_log, e)
        return "processing_error", None
    return "ok", delivery


def _fail_webhook_log(db: Session, webhook_log, error: Exception) -> None:
    if webhook_log is None:
        return
    try:
        finish_webhook_log(db, webhook_log, error=str(error))
    except PersistenceFailure as log_error:
        logger.error(f"Could not record webhook error: {log_error}")


@app.post(
    "/api/whatsapp/webhook",
    response_model=WebhookResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Body is not a WhatsApp webhook payload"},
        403: {"model": ErrorResponse, "description": "Invalid or missing signature"},
    }
)
async def receive_webhook(
    request: Request,
    x_hub_signature_256: Annotated[Optional[str], Header(alias="X-Hub-Signature-256")] = None,
    db: Session = Depends(get_db)
) -> WebhookResponse:
    """
    Ingest WhatsApp Cloud API events.

    - 403 when X-Hub-Signature-256 is missing or does not match the raw body
    - 400 when the body is not JSON or not a whatsapp_business_account envelope
    - 200 otherwise, including unknown partners and internal failures,
      so Meta does not retry or disable the webhook

    Every accepted delivery is kept in whatsapp_webhook_logs.
    """
    raw_body = await request.body()
    logger.debug(f"Webhook request received: {len(raw_body)} bytes")

    try:
        verify_hmac_signature(raw_body, x_hub_signature_256, settings.signing_secret)
        body = parse_body(raw_body)
    except WebhookError as e:
        raise _reject(request, e)

    events = failure = None
    try:
        events = normalize_payload(body)
    except MalformedPayload as e:
        raise _reject(request, e)
    except Exception as e:
        logger.exception("Unexpected error normalizing webhook payload")
        failure = e

    # Database work runs on the threadpool, off the event loop
    result, delivery = await run_in_threadpool(_store_delivery, db, body, events, failure)

    log_webhook_data(
        request,
        result=result,
        event_count=len(events) if events is not None else None,
        outcomes=delivery.counts() if delivery is not None else None,
    )
    record_webhook_outcome(result)
    return WebhookResponse(status="ok")



# =============================================================================
# Message Read Routes
# =============================================================================

PartnerId = Annotated[str, Query(min_length=1, description="Owning partner id")]


@app.get("/api/whatsapp/conversations", response_model=ConversationResponse)
def conversation_history(
    partner_id: PartnerId,
    phone_number: Annotated[Optional[str], Query(description="Counterpart number")] = None,
    limit: Annotated[int, Query(ge=1, le=100, description="Maximum number of messages")] = 50,
    db: Session = Depends(get_db)
) -> ConversationResponse:
    """Latest messages of a partner in chronological order."""
    phone = normalize_phone(phone_number) if phone_number else None
    messages = get_conversation(db, partner_id=partner_id, phone_number=phone, limit=limit)
    data = [MessageResponse.model_validate(msg) for msg in messages]
    return ConversationResponse(data=data, count=len(data))


@app.get("/api/whatsapp/search", response_model=SearchResponse)
def search(
    partner_id: PartnerId,
    phone_number: Annotated[Optional[str], Query()] = None,
    message_type: Annotated[Optional[MessageType], Query()] = None,
    message_status: Annotated[Optional[MessageStatus], Query(alias="status")] = None,
    direction: Annotated[Optional[Direction], Query()] = None,
    since: Annotated[Optional[str], Query(description="timestamp >= since (ISO-8601 UTC)")] = None,
    until: Annotated[Optional[str], Query(description="timestamp <= until (ISO-8601 UTC)")] = None,
    q: Annotated[Optional[str], Query(max_length=100, description="Case-insensitive text search")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 25,
    offset: Annotated[int, Query(ge=0)] = 0,
    db: Session = Depends(get_db)
) -> SearchResponse:
    """
    Search a partner's messages.

    Ordering is timestamp ASC, message_id ASC; total ignores limit/offset.
    """
    messages, total = search_messages(
        db=db,
        partner_id=partner_id,
        limit=limit,
        offset=offset,
        phone_number=normalize_phone(phone_number) if phone_number else None,
        message_type=message_type.value if message_type else None,
        status=message_status.value if message_status else None,
        direction=direction.value if direction else None,
        since=since,
        until=until,
        q=q,
    )
    return SearchResponse(
        data=[MessageResponse.model_validate(msg) for msg in messages],
        total=total,
        limit=limit,
        offset=offset
    )


@app.get("/api/whatsapp/analytics", response_model=AnalyticsResponse)
def analytics(
    partner_id: PartnerId,
    since: Annotated[Optional[str], Query()] = None,
    until: Annotated[Optional[str], Query()] = None,
    db: Session = Depends(get_db)
) -> AnalyticsResponse:
    """Message totals for a partner, grouped by type, status and direction."""
    return AnalyticsResponse(**get_analytics(db, partner_id=partner_id, since=since, until=until))


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in text exposition format."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
