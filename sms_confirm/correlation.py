"""
Correlating inbound replies with the outbound message they answer.

The provider sends no conversation id with inbound texts, so a reply is
attributed to the most recent message sent to the replying number within
CORRELATION_WINDOW before the reply was received. A customer with several
unconfirmed messages in the window confirms the newest one.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from sms_confirm import storage
from sms_confirm.models import (
    OutboundMessage,
    AUDIT_ORPHAN_AFFIRMATIVE,
    AUDIT_NON_AFFIRMATIVE,
)
from sms_confirm.utils import to_utc_naive

logger = logging.getLogger(__name__)

CORRELATION_WINDOW = timedelta(days=7)

# ApplyOutcome.result values
RESULT_CONFIRMED = "confirmed"
RESULT_ALREADY_CONFIRMED = "already_confirmed"
RESULT_ORPHAN = "orphan_affirmative"
RESULT_NON_AFFIRMATIVE = "non_affirmative"


@dataclass(frozen=True)
class InboundReplyEvent:
    sender_address: str
    body: str
    received_at: datetime
    provider_event_id: Optional[str] = None
    provider_number: Optional[str] = None


@dataclass(frozen=True)
class ApplyOutcome:
    result: str
    outbound_message_id: Optional[str] = None

    @property
    def confirmed(self) -> bool:
        return self.result in (RESULT_CONFIRMED, RESULT_ALREADY_CONFIRMED)


def find_candidate(db: Session, sender_address: str, received_at: datetime) -> Optional[OutboundMessage]:
    """
    Most recent message sent to `sender_address` in
    [received_at - CORRELATION_WINDOW, received_at], or None.
    """
    window_end = to_utc_naive(received_at)
    window_start = window_end - CORRELATION_WINDOW
    candidate = storage.find_latest_outbound_to(db, sender_address, window_start, window_end)
    if candidate is None:
        logger.info(f"No outbound message to {sender_address} within {CORRELATION_WINDOW.days} days of {window_end}")
    else:
        logger.info(f"Candidate for reply from {sender_address}: {candidate.id} (sent {candidate.sent_at})")
    return candidate


def apply_reply(
    db: Session,
    candidate: Optional[OutboundMessage],
    event: InboundReplyEvent,
    is_affirmative: bool,
) -> ApplyOutcome:
    """
    Record the effect of one inbound reply.

    - affirmative, candidate: sent -> confirmed, plus a confirmation audit entry
    - affirmative, no candidate: orphan audit entry only
    - not affirmative: non-affirmative audit entry, referencing the candidate if any
    """
    received_at = to_utc_naive(event.received_at)

    if is_affirmative and candidate is not None:
        transitioned = storage.record_confirmation(
            db,
            message_id=candidate.id,
            sender_address=event.sender_address,
            reply_body=event.body,
            reply_provider_id=event.provider_event_id,
            received_at=received_at,
            provider_number=event.provider_number,
        )
        if transitioned:
            logger.info(f"Contract confirmed for outbound message {candidate.id}")
            return ApplyOutcome(RESULT_CONFIRMED, candidate.id)
        logger.info(f"Outbound message {candidate.id} was already confirmed; keeping first confirmation")
        return ApplyOutcome(RESULT_ALREADY_CONFIRMED, candidate.id)

    candidate_id = candidate.id if candidate is not None else None
    kind = AUDIT_ORPHAN_AFFIRMATIVE if is_affirmative else AUDIT_NON_AFFIRMATIVE
    storage.add_reply_audit(
        db,
        kind=kind,
        outbound_message_id=candidate_id,
        sender_address=event.sender_address,
        body=event.body,
        provider_event_id=event.provider_event_id,
        is_affirmative=is_affirmative,
        received_at=received_at,
        provider_number=event.provider_number,
    )
    if is_affirmative:
        logger.warning(f"Affirmative reply from {event.sender_address} with no outbound message to confirm")
        return ApplyOutcome(RESULT_ORPHAN)
    logger.info(f"Non-affirmative reply from {event.sender_address}: {event.body!r}")
    return ApplyOutcome(RESULT_NON_AFFIRMATIVE, candidate_id)
