"""
Outbound contract SMS dispatch.

Resolves the sender number, renders the template, submits the text to
JustCall and records the send. The provider call is the customer-facing
side effect: once it has returned a message id the send is reported as
successful, and a failure to write the local record is returned to the
caller as a SideWriteResult instead of an error.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sms_confirm import storage
from sms_confirm.errors import ConfigurationError
from sms_confirm.metrics import record_sms_send
from sms_confirm.provider import JustCallClient, extract_message_id
from sms_confirm.templates import render
from sms_confirm.utils import normalize_phone, utcnow

logger = logging.getLogger(__name__)


class SenderNumberProvider(Protocol):
    def get_default_sender_number(self) -> Optional[str]:
        ...


class StoredSenderNumberProvider:
    """
    Default sender lookup: the global SMS settings row, then the configured
    fallback number.
    """

    def __init__(self, db: Session, fallback: Optional[str] = None):
        self.db = db
        self.fallback = fallback

    def get_default_sender_number(self) -> Optional[str]:
        try:
            stored = storage.get_sender_number(self.db)
        except SQLAlchemyError as e:
            logger.error(f"Error fetching global SMS settings: {e}")
            stored = None
        return stored or self.fallback


@dataclass(frozen=True)
class SideWriteResult:
    """Outcome of a bookkeeping write that follows a committed external side effect."""
    ok: bool
    record_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class SentMessage:
    provider_message_id: str
    recipient_address: str
    sender_address: str
    rendered_body: str
    template_body: str
    sent_at: datetime
    provider_status: Optional[str]
    confirmation_state: str = "sent"


@dataclass(frozen=True)
class SendResult:
    message: SentMessage
    record: SideWriteResult
    provider_response: Any = None


class OutboundDispatcher:
    def __init__(self, provider: JustCallClient, sender_numbers: SenderNumberProvider):
        self.provider = provider
        self.sender_numbers = sender_numbers

    def resolve_sender(self, explicit_sender: Optional[str] = None) -> str:
        """Explicit sender first, then the configured default."""
        sender = explicit_sender or self.sender_numbers.get_default_sender_number()
        sender = normalize_phone(sender)
        if not sender:
            raise ConfigurationError("sender number required")
        return sender

    async def send(
        self,
        db: Session,
        recipient: str,
        body: str,
        sender: Optional[str] = None,
        template_values: Optional[Mapping[str, Any]] = None,
        owner_id: Optional[str] = None,
        media_url: Optional[str] = None,
        restrict_once: str = "No",
        schedule_at: Optional[str] = None,
    ) -> SendResult:
        """
        Send one SMS and record it.

        Raises:
            ConfigurationError: no sender number could be resolved
            ProviderError / ProviderTimeoutError: the provider send failed
        """
        recipient_address = normalize_phone(recipient)
        if not recipient_address:
            raise ValueError(f"Invalid recipient number: {recipient!r}")
        sender_address = self.resolve_sender(sender)
        rendered = render(body, template_values) if template_values else body

        logger.info(
            f"SMS send request: to={recipient_address}, from={sender_address}, "
            f"template_keys={sorted(template_values) if template_values else []}"
        )

        # Provider reply times have whole-second precision
        sent_at = utcnow().replace(microsecond=0)
        try:
            response_data = await self.provider.send_text(
                sender=sender_address,
                recipient=recipient_address,
                body=rendered,
                restrict_once=restrict_once,
                media_url=media_url,
                schedule_at=schedule_at,
            )
            provider_message_id, provider_status = extract_message_id(response_data)
        except Exception:
            record_sms_send("provider_error")
            raise

        message = SentMessage(
            provider_message_id=provider_message_id,
            recipient_address=recipient_address,
            sender_address=sender_address,
            rendered_body=rendered,
            template_body=body,
            sent_at=sent_at,
            provider_status=provider_status or "sent",
        )
        record = self._record_send(
            db,
            message,
            template_values=dict(template_values) if template_values else None,
            owner_id=owner_id,
            media_url=media_url,
            restrict_once=restrict_once,
            schedule_at=schedule_at,
        )
        record_sms_send("sent" if record.ok else "sent_unrecorded")
        return SendResult(message=message, record=record, provider_response=response_data)

    def _record_send(self, db: Session, message: SentMessage, **extra: Any) -> SideWriteResult:
        try:
            stored = storage.create_outbound_message(
                db,
                provider_message_id=message.provider_message_id,
                recipient_address=message.recipient_address,
                sender_address=message.sender_address,
                rendered_body=message.rendered_body,
                template_body=message.template_body,
                sent_at=message.sent_at,
                provider_status=message.provider_status,
                **extra,
            )
        except SQLAlchemyError as e:
            logger.exception(
                f"SMS {message.provider_message_id} was sent but the outbound record could not be saved"
            )
            return SideWriteResult(ok=False, error=str(e))
        return SideWriteResult(ok=True, record_id=stored.id)
