import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import FastAPI, Response, Request, Depends, Header, HTTPException, status, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from sms_confirm.config import settings
from sms_confirm.dispatcher import OutboundDispatcher, StoredSenderNumberProvider
from sms_confirm.errors import ConfigurationError, ProviderError, ProviderTimeoutError
from sms_confirm.logging_utils import setup_logging, RequestLoggingMiddleware, log_webhook_data
from sms_confirm.metrics import record_webhook_outcome, get_metrics, get_metrics_content_type
from sms_confirm.provider import JustCallClient
from sms_confirm.storage import (
    init_db,
    check_db_health,
    get_db,
    get_outbound_message,
    list_outbound_messages,
    get_sender_number,
    set_sender_number,
)
from sms_confirm.utils import verify_hmac_signature, verify_bearer_token, utcnow
from sms_confirm.webhook import UnrecognizedPayload, parse_webhook_payload, process_webhook
from sms_confirm.schemas import (
    HealthResponse,
    ErrorResponse,
    SendSmsRequest,
    SendSmsResponse,
    OutboundMessageResponse,
    OutboundMessagesListResponse,
    SmsSettingsRequest,
    SmsSettingsResponse,
    WebhookResponse,
)


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="Contract SMS API",
    description="Sends contract SMS through JustCall and tracks customer confirmations",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Dependencies
# =============================================================================

def get_provider_client() -> JustCallClient:
    """JustCall client built from settings; overridden in tests."""
    return JustCallClient(
        api_url=settings.JUSTCALL_API_URL,
        api_key=settings.JUSTCALL_API_KEY,
        api_secret=settings.JUSTCALL_API_SECRET,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    )


def get_dispatcher(
    db: Session = Depends(get_db),
    provider: JustCallClient = Depends(get_provider_client),
) -> OutboundDispatcher:
    return OutboundDispatcher(
        provider=provider,
        sender_numbers=StoredSenderNumberProvider(db, fallback=settings.DEFAULT_SENDER_NUMBER),
    )


def require_api_token(
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Bearer-token check for the outbound SMS and settings routes."""
    if not verify_bearer_token(authorization, settings.API_TOKEN):
        logger.warning("Rejected request with missing or invalid bearer token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
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
    Readiness probe - returns 200 only if:
    1. DB is reachable and schema is applied
    2. JustCall API credentials are set

    Otherwise returns 503 (Service Unavailable).
    """
    if not (settings.JUSTCALL_API_KEY and settings.JUSTCALL_API_SECRET):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="JustCall API credentials not configured")

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="Database not reachable or schema not applied")

    return HealthResponse(status="ready")


# =============================================================================
# Outbound SMS Routes
# =============================================================================

@app.post(
    "/api/sms/send",
    response_model=SendSmsResponse,
    dependencies=[Depends(require_api_token)],
    responses={
        400: {"model": ErrorResponse, "description": "No sender number configured"},
        401: {"model": ErrorResponse, "description": "Missing or invalid token"},
        502: {"model": ErrorResponse, "description": "Provider error"},
        503: {"model": ErrorResponse, "description": "Provider credentials not configured"},
        504: {"model": ErrorResponse, "description": "Provider timeout"},
    },
)
async def send_sms(
    payload: SendSmsRequest,
    db: Session = Depends(get_db),
    dispatcher: OutboundDispatcher = Depends(get_dispatcher),
) -> SendSmsResponse:
    """
    Send a contract SMS through JustCall and record it for confirmation tracking.

    - Renders `templateData` into the body when supplied
    - Uses `justcall_number`, else the configured global sender number
    - A stored-record failure after a successful send is reported via
      `recorded: false`, not as an error
    """
    if not dispatcher.provider.configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="JustCall API credentials not configured",
        )

    try:
        result = await dispatcher.send(
            db,
            recipient=payload.contact_number,
            body=payload.body,
            sender=payload.justcall_number,
            template_values=payload.template_data,
            owner_id=payload.owner_id,
            media_url=payload.media_url,
            restrict_once=payload.restrict_once,
            schedule_at=payload.schedule_at,
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ProviderTimeoutError as e:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=e.message)
    except ProviderError as e:
        raise HTTPException(status_code=_provider_error_status(e), detail=e.message)

    return SendSmsResponse(
        message_id=result.message.provider_message_id,
        status=result.message.provider_status or "sent",
        record_id=result.record.record_id,
        recorded=result.record.ok,
        rendered_body=result.message.rendered_body,
        justcall_response=result.provider_response,
    )


def _provider_error_status(error: ProviderError) -> int:
    # Upstream client errors (bad number, etc.) pass through; everything else is a bad gateway
    if error.status_code and 400 <= error.status_code < 500:
        return error.status_code
    return status.HTTP_502_BAD_GATEWAY


@app.get(
    "/api/sms/status/{provider_message_id}",
    dependencies=[Depends(require_api_token)],
)
async def sms_status(
    provider_message_id: str,
    provider: JustCallClient = Depends(get_provider_client),
) -> dict:
    """Look up a sent text's status at JustCall."""
    if not provider.configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="JustCall API credentials not configured",
        )
    try:
        data = await provider.get_text(provider_message_id)
    except ProviderTimeoutError as e:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=e.message)
    except ProviderError as e:
        raise HTTPException(status_code=_provider_error_status(e), detail=e.message)
    return {"success": True, "data": data}


@app.get(
    "/api/sms/history",
    dependencies=[Depends(require_api_token)],
)
async def sms_history(
    limit: Annotated[int, Query(ge=1, le=1000)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    start_date: str | None = None,
    end_date: str | None = None,
    to: str | None = None,
    from_: Annotated[str | None, Query(alias="from")] = None,
    provider: JustCallClient = Depends(get_provider_client),
) -> dict:
    """SMS history as JustCall reports it, passed through with the paging used."""
    if not provider.configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="JustCall API credentials not configured",
        )
    try:
        data = await provider.list_texts(
            limit=limit,
            offset=offset,
            start_date=start_date,
            end_date=end_date,
            to=to,
            from_=from_,
        )
    except ProviderTimeoutError as e:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=e.message)
    except ProviderError as e:
        raise HTTPException(status_code=_provider_error_status(e), detail=e.message)

    if isinstance(data, dict) and "data" in data:
        data = data["data"]
    return {"success": True, "data": data, "pagination": {"limit": limit, "offset": offset}}


@app.get(
    "/api/sms/records",
    response_model=OutboundMessagesListResponse,
    dependencies=[Depends(require_api_token)],
)
async def list_sms_records(
    limit: Annotated[int, Query(ge=1, le=1000)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    confirmed: Annotated[bool | None, Query(description="Filter by confirmation state")] = None,
    db: Session = Depends(get_db),
) -> OutboundMessagesListResponse:
    """List outbound messages, newest first."""
    messages, total = list_outbound_messages(db, limit=limit, offset=offset, confirmed=confirmed)
    return OutboundMessagesListResponse(
        data=[OutboundMessageResponse.model_validate(m) for m in messages],
        total=total,
        limit=limit,
        offset=offset,
    )


@app.get(
    "/api/sms/records/{message_id}",
    response_model=OutboundMessageResponse,
    dependencies=[Depends(require_api_token)],
    responses={404: {"model": ErrorResponse}},
)
async def get_sms_record(message_id: str, db: Session = Depends(get_db)) -> OutboundMessageResponse:
    message = get_outbound_message(db, message_id)
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="SMS record not found")
    return OutboundMessageResponse.model_validate(message)


# =============================================================================
# SMS Settings Routes
# =============================================================================

@app.get(
    "/api/sms-settings",
    response_model=SmsSettingsResponse,
    dependencies=[Depends(require_api_token)],
)
async def read_sms_settings(db: Session = Depends(get_db)) -> SmsSettingsResponse:
    return SmsSettingsResponse(sender_number=get_sender_number(db) or "")


@app.put(
    "/api/sms-settings",
    response_model=SmsSettingsResponse,
    dependencies=[Depends(require_api_token)],
)
async def update_sms_settings(
    payload: SmsSettingsRequest,
    db: Session = Depends(get_db),
) -> SmsSettingsResponse:
    """Set the global sender number used when a send omits `justcall_number`."""
    record = set_sender_number(db, payload.sender_number)
    return SmsSettingsResponse(sender_number=record.sender_number)


# =============================================================================
# JustCall Webhook Routes
# =============================================================================

@app.post(
    "/api/webhook/justcall-sms",
    response_model=WebhookResponse,
    responses={500: {"description": "Unexpected internal error"}},
)
async def justcall_sms_webhook(
    request: Request,
    x_signature: Annotated[str | None, Header(alias="X-Signature")] = None,
    db: Session = Depends(get_db),
):
    """
    Receive JustCall SMS events and record contract confirmations.

    Every handled outcome (handshake, malformed payload, outbound echo,
    confirmation, orphan or non-affirmative reply) is acknowledged with 200
    so the provider does not retry. Only unexpected failures return 500.
    """
    raw_body = await request.body()
    logger.debug(f"JustCall webhook received: {len(raw_body)} bytes")

    try:
        if settings.WEBHOOK_SECRET and not (
            x_signature and verify_hmac_signature(raw_body, x_signature, settings.WEBHOOK_SECRET)
        ):
            logger.error("Dropping webhook with missing or invalid X-Signature")
            record_webhook_outcome("invalid_signature")
            log_webhook_data(request, result="invalid_signature")
            return WebhookResponse(result="invalid_signature")

        try:
            parsed = parse_webhook_payload(json.loads(raw_body))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            parsed = UnrecognizedPayload(reason=f"invalid JSON: {e}")

        outcome = process_webhook(db, parsed)
    except Exception:
        logger.exception("Webhook processing error")
        record_webhook_outcome("error")
        log_webhook_data(request, result="error")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"status": "error", "result": "error"},
        )

    record_webhook_outcome(outcome.result)
    log_webhook_data(
        request,
        result=outcome.result,
        shape=outcome.shape,
        provider_event_id=outcome.provider_event_id,
        outbound_message_id=outcome.outbound_message_id,
    )
    return WebhookResponse(
        result=outcome.result,
        confirmed=outcome.confirmed,
        outbound_message_id=outcome.outbound_message_id,
    )


@app.get("/api/webhook/justcall-sms")
async def justcall_sms_webhook_ready() -> dict:
    """GET probe JustCall uses when the webhook URL is registered."""
    return {
        "status": "OK",
        "message": "JustCall webhook endpoint is ready",
        "endpoint": "POST /api/webhook/justcall-sms",
        "timestamp": utcnow().isoformat() + "Z",
    }


@app.get("/api/webhook/justcall-sms/health")
async def justcall_sms_webhook_health() -> dict:
    return {
        "status": "OK",
        "endpoint": "JustCall SMS Webhook",
        "timestamp": utcnow().isoformat() + "Z",
    }


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
