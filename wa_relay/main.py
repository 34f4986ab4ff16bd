import json
import logging
import os
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from wa_relay.config import Settings, get_settings
from wa_relay.errors import RelayError, WebhookParseError
from wa_relay.logging_utils import setup_logging, RequestLoggingMiddleware, log_webhook_data
from wa_relay.metrics import get_metrics, get_metrics_content_type
from wa_relay.provider import MessageSender
from wa_relay.schemas import (
    ConfigRequest,
    ConfigStatusResponse,
    ContactResponse,
    ContactsListResponse,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    MessagesListResponse,
    RenameContactRequest,
    SendMessageRequest,
    SendMessageResponse,
    SuccessResponse,
)
from wa_relay.service import RelayService
from wa_relay.utils import verify_hub_signature


logger = logging.getLogger(__name__)

router = APIRouter()


def get_service(request: Request) -> RelayService:
    """Dependency returning the relay service owned by the application."""
    return request.app.state.relay


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


# =============================================================================
# Health Check Routes
# =============================================================================

@router.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@router.get("/health/ready", response_model=HealthResponse)
async def health_ready(
    response: Response,
    service: RelayService = Depends(get_service),
) -> HealthResponse:
    """
    Readiness probe - returns 200 only once provider credentials are set,
    otherwise 503 (Service Unavailable).
    """
    if not service.credentials.configured:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="WhatsApp API not configured"
        )
    return HealthResponse(status="ready")


# =============================================================================
# Configuration Routes
# =============================================================================

@router.post(
    "/api/config",
    response_model=SuccessResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}},
)
async def save_config(
    body: ConfigRequest,
    service: RelayService = Depends(get_service),
) -> SuccessResponse:
    service.credentials.set_credentials(body.phone_number_id, body.access_token)
    return SuccessResponse(message="Configuration saved")


@router.get("/api/config", response_model=ConfigStatusResponse)
async def config_status(service: RelayService = Depends(get_service)) -> ConfigStatusResponse:
    current = service.credentials.get_status()
    return ConfigStatusResponse(
        configured=current["configured"],
        phone_number_id=current["masked_id"],
    )


# =============================================================================
# Messaging Routes
# =============================================================================

@router.post(
    "/api/send-message",
    response_model=SendMessageResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Not configured or missing fields"},
        500: {"model": ErrorResponse, "description": "Provider call failed"},
    }
)
async def send_message(
    body: SendMessageRequest,
    service: RelayService = Depends(get_service),
) -> SendMessageResponse:
    """
    Forward a text message to the provider.

    The message is recorded in the ledger and the recipient's contact
    summary only after the provider assigns it an id.
    """
    record = await service.send_message(body.to, body.message)
    return SendMessageResponse(message_id=record.provider_message_id)


@router.get("/api/messages/{phone_number}", response_model=MessagesListResponse)
async def list_messages(
    phone_number: str,
    service: RelayService = Depends(get_service),
) -> MessagesListResponse:
    records = service.messages_for(phone_number)
    logger.debug(f"GET /api/messages: {len(records)} messages for {phone_number}")
    return MessagesListResponse(
        messages=[MessageResponse.model_validate(record) for record in records]
    )


@router.get("/api/contacts", response_model=ContactsListResponse)
async def list_contacts(service: RelayService = Depends(get_service)) -> ContactsListResponse:
    """Contacts ordered by most recent activity first."""
    return ContactsListResponse(
        contacts=[ContactResponse.model_validate(contact) for contact in service.contacts()]
    )


@router.post(
    "/api/mark-read/{phone_number}",
    response_model=SuccessResponse,
    response_model_exclude_none=True,
)
async def mark_read(
    phone_number: str,
    service: RelayService = Depends(get_service),
) -> SuccessResponse:
    service.mark_read(phone_number)
    return SuccessResponse()


@router.post(
    "/api/contacts/{phone_number}/update",
    response_model=SuccessResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}},
)
async def rename_contact(
    phone_number: str,
    body: RenameContactRequest,
    service: RelayService = Depends(get_service),
) -> SuccessResponse:
    service.rename_contact(phone_number, body.name)
    return SuccessResponse()


# =============================================================================
# Webhook Routes
# =============================================================================

@router.get("/webhook")
async def verify_webhook(
    mode: Annotated[Optional[str], Query(alias="hub.mode")] = None,
    token: Annotated[Optional[str], Query(alias="hub.verify_token")] = None,
    challenge: Annotated[Optional[str], Query(alias="hub.challenge")] = None,
    service: RelayService = Depends(get_service),
) -> Response:
    """
    Subscription handshake: echo hub.challenge when the mode is
    "subscribe" and the verify token matches.
    """
    if mode == "subscribe" and service.credentials.verify_token(token):
        logger.info("Webhook verified")
        return PlainTextResponse(challenge or "", status_code=status.HTTP_200_OK)

    logger.warning("Webhook verification failed")
    return PlainTextResponse("Forbidden", status_code=status.HTTP_403_FORBIDDEN)


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    x_hub_signature_256: Annotated[Optional[str], Header(alias="X-Hub-Signature-256")] = None,
    service: RelayService = Depends(get_service),
    settings: Settings = Depends(get_app_settings),
) -> Response:
    """
    Ingest provider callbacks (new messages and delivery statuses).

    Answers promptly in every case: 200 once the payload is parsed, 500 on a
    parse failure or unexpected error. Internal failures are logged and
    dropped; the provider's own retry policy covers redelivery.
    """
    raw_body = await request.body()
    logger.debug(f"Webhook body size: {len(raw_body)} bytes")

    if settings.WHATSAPP_APP_SECRET:
        if not verify_hub_signature(raw_body, x_hub_signature_256, settings.WHATSAPP_APP_SECRET):
            log_webhook_data(request, result="invalid_signature")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"error": "invalid signature"}
            )

    try:
        try:
            payload = json.loads(raw_body)
        except json.JSONDecodeError as e:
            raise WebhookParseError(f"Invalid JSON: {e}")
        report = service.handle_webhook(payload)
    except WebhookParseError as e:
        logger.error(f"Webhook parse error: {e.message}")
        log_webhook_data(request, result="parse_error")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"status": "error"}
        )
    except Exception:
        logger.exception("Unexpected error while handling webhook")
        log_webhook_data(request, result="error")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"status": "error"}
        )

    log_webhook_data(
        request,
        result="ignored" if report.ignored else "processed",
        counters=report.as_log_data(),
    )
    return JSONResponse(content={"status": "ok"})


# =============================================================================
# Metrics Route
# =============================================================================

@router.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


# =============================================================================
# Error Handlers
# =============================================================================

async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    content = {"error": exc.message}
    if exc.details is not None:
        content["details"] = exc.details
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}", extra={"details": exc.details})
    else:
        logger.warning(f"{type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=content)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        ".".join(str(part) for part in error.get("loc", ())) + ": " + str(error.get("msg"))
        for error in exc.errors()
    ]
    logger.warning(f"Invalid request: {details}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request", "details": details}
    )


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    sender: Optional[MessageSender] = None,
    service: Optional[RelayService] = None,
) -> FastAPI:
    """
    Build the application with its own relay service.

    Args:
        settings: Settings to use; defaults to the cached environment settings
        sender: Outbound client override, e.g. an in-memory fake in tests
        service: Fully built service override
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="WhatsApp Cloud Relay",
        description="Relay between a browser dashboard and the WhatsApp Cloud API",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.relay = service or RelayService.from_settings(settings, sender=sender)

    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(RelayError, relay_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(router)

    # Mounted last so API routes take precedence
    if settings.STATIC_DIR and os.path.isdir(settings.STATIC_DIR):
        app.mount("/", StaticFiles(directory=settings.STATIC_DIR, html=True), name="dashboard")
        logger.info(f"Serving dashboard from {settings.STATIC_DIR}")

    logger.info(
        "WhatsApp relay started",
        extra={"configured": app.state.relay.credentials.configured},
    )
    return app


app = create_app()
