"""
JustCall inbound SMS webhook handling.

`parse_webhook_payload` turns a decoded JSON body into exactly one of:

- StructuredPayload: `{"type": ..., "data": {...}}`
- LegacyPayload: flat `{"id", "contact_number", "body", "direction", ...}`
- HandshakePayload: the provider's endpoint check (`type`/`webhook_url`, no data)
- UnrecognizedPayload: anything else

`process_webhook` runs an inbound reply through classification,
correlation and the confirmation update. Every outcome it returns is a
normal acknowledgement for the provider.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from sms_confirm.correlation import InboundReplyEvent, apply_reply, find_candidate
from sms_confirm.errors import WebhookValidationError
from sms_confirm.replies import classify
from sms_confirm.schemas import LegacyWebhookPayload, StructuredWebhookPayload
from sms_confirm.utils import normalize_phone, parse_provider_timestamp, utcnow

logger = logging.getLogger(__name__)

INBOUND_DIRECTIONS = frozenset({"incoming", "inbound"})

# WebhookOutcome.result values produced before correlation
RESULT_HANDSHAKE = "handshake"
RESULT_OUTBOUND_IGNORED = "outbound_ignored"
RESULT_VALIDATION_ERROR = "validation_error"


@dataclass(frozen=True)
class StructuredPayload:
    event_type: Optional[str]
    model: StructuredWebhookPayload
    shape: str = "structured"

    @property
    def direction(self) -> str:
        return self.model.data.direction

    @property
    def provider_event_id(self) -> str:
        return self.model.data.id

    def to_event(self, received_fallback: datetime) -> InboundReplyEvent:
        data = self.model.data
        body = data.sms_info.body if data.sms_info else ""
        received_at = parse_provider_timestamp(data.sms_date, data.sms_time) or received_fallback
        return _build_event(data.contact_number, body, received_at, data.id, data.justcall_number)


@dataclass(frozen=True)
class LegacyPayload:
    model: LegacyWebhookPayload
    shape: str = "legacy"

    @property
    def direction(self) -> str:
        return self.model.direction

    @property
    def provider_event_id(self) -> str:
        return self.model.id

    def to_event(self, received_fallback: datetime) -> InboundReplyEvent:
        m = self.model
        received_at = parse_provider_timestamp(m.created_at) or received_fallback
        return _build_event(m.contact_number, m.body, received_at, m.id, m.justcall_number)


@dataclass(frozen=True)
class HandshakePayload:
    event_type: Optional[str]
    webhook_url: Optional[str]
    shape: str = "handshake"


@dataclass(frozen=True)
class UnrecognizedPayload:
    reason: str
    shape: str = "unrecognized"


ParsedWebhook = Union[StructuredPayload, LegacyPayload, HandshakePayload, UnrecognizedPayload]


@dataclass(frozen=True)
class WebhookOutcome:
    result: str
    shape: str
    provider_event_id: Optional[str] = None
    outbound_message_id: Optional[str] = None
    confirmed: bool = False


def _build_event(
    contact_number: str,
    body: Optional[str],
    received_at: datetime,
    provider_event_id: str,
    provider_number: Optional[str],
) -> InboundReplyEvent:
    sender = normalize_phone(contact_number)
    if not sender:
        raise WebhookValidationError(f"contact_number is not a phone number: {contact_number!r}")
    return InboundReplyEvent(
        sender_address=sender,
        body=body or "",
        received_at=received_at,
        provider_event_id=provider_event_id,
        provider_number=normalize_phone(provider_number),
    )


def _validation_reason(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


def parse_webhook_payload(payload: Any) -> ParsedWebhook:
    """Classify a decoded webhook body into one of the known payload shapes."""
    if not isinstance(payload, dict):
        return UnrecognizedPayload(reason="payload is not a JSON object")

    try:
        if isinstance(payload.get("data"), dict):
            model = StructuredWebhookPayload.model_validate(payload)
            return StructuredPayload(event_type=model.type, model=model)
        if "contact_number" in payload or "direction" in payload:
            return LegacyPayload(model=LegacyWebhookPayload.model_validate(payload))
    except ValidationError as e:
        return UnrecognizedPayload(reason=_validation_reason(e))

    if payload.get("data") is None and ("type" in payload or "webhook_url" in payload):
        return HandshakePayload(event_type=payload.get("type"), webhook_url=payload.get("webhook_url"))

    return UnrecognizedPayload(reason="payload matches no known webhook shape")


def is_inbound(direction: Optional[str]) -> bool:
    return (direction or "").strip().lower() in INBOUND_DIRECTIONS


def process_webhook(db: Session, parsed: ParsedWebhook) -> WebhookOutcome:
    """
    Run one parsed webhook through the confirmation pipeline.

    Store errors propagate; everything else ends in a WebhookOutcome.
    """
    if isinstance(parsed, HandshakePayload):
        logger.info(f"Webhook handshake received: type={parsed.event_type}, url={parsed.webhook_url}")
        return WebhookOutcome(RESULT_HANDSHAKE, parsed.shape)

    if isinstance(parsed, UnrecognizedPayload):
        logger.warning(f"Unrecognized webhook payload: {parsed.reason}")
        return WebhookOutcome(RESULT_VALIDATION_ERROR, parsed.shape)

    if not is_inbound(parsed.direction):
        logger.info(f"Ignoring {parsed.direction!r} webhook {parsed.provider_event_id}")
        return WebhookOutcome(RESULT_OUTBOUND_IGNORED, parsed.shape, parsed.provider_event_id)

    try:
        event = parsed.to_event(received_fallback=utcnow())
    except WebhookValidationError as e:
        logger.warning(f"Invalid inbound webhook {parsed.provider_event_id}: {e}")
        return WebhookOutcome(RESULT_VALIDATION_ERROR, parsed.shape, parsed.provider_event_id)

    classification = classify(event.body)
    logger.info(
        f"Inbound reply from {event.sender_address}: {event.body!r} "
        f"(affirmative={classification.is_affirmative})"
    )

    candidate = find_candidate(db, event.sender_address, event.received_at)
    outcome = apply_reply(db, candidate, event, classification.is_affirmative)

    return WebhookOutcome(
        result=outcome.result,
        shape=parsed.shape,
        provider_event_id=event.provider_event_id,
        outbound_message_id=outcome.outbound_message_id,
        confirmed=outcome.confirmed,
    )
