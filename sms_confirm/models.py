"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
All timestamps are stored as naive UTC datetimes.
"""

import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String, Text

from sms_confirm.storage import Base


# Confirmation states for OutboundMessage.confirmation_state
STATE_SENT = "sent"
STATE_CONFIRMED = "confirmed"

# Audit kinds for ReplyAudit.kind
AUDIT_CONFIRMATION = "confirmation"
AUDIT_ALREADY_CONFIRMED = "already_confirmed"
AUDIT_ORPHAN_AFFIRMATIVE = "orphan_affirmative"
AUDIT_NON_AFFIRMATIVE = "non_affirmative"

GLOBAL_SETTINGS_ID = "global"


def _new_id() -> str:
    return uuid.uuid4().hex


class OutboundMessage(Base):
    """
    A contract SMS sent through the provider.

    Table: outbound_messages
    Created with confirmation_state='sent'; moved to 'confirmed' once, when an
    affirmative reply is correlated to it.
    """
    __tablename__ = "outbound_messages"

    id = Column(String, primary_key=True, default=_new_id)
    provider_message_id = Column(String, nullable=False, index=True)
    recipient_address = Column(String, nullable=False)
    sender_address = Column(String, nullable=False)
    rendered_body = Column(Text, nullable=False)
    template_body = Column(Text, nullable=False)
    template_values = Column(JSON, nullable=True)
    sent_at = Column(DateTime, nullable=False)

    confirmation_state = Column(String, nullable=False, default=STATE_SENT)
    confirmed_at = Column(DateTime, nullable=True)
    confirmation_reply_body = Column(Text, nullable=True)
    confirmation_reply_provider_id = Column(String, nullable=True)

    provider_status = Column(String, nullable=True)
    owner_id = Column(String, nullable=True)
    media_url = Column(String, nullable=True)
    restrict_once = Column(String, nullable=False, default="No")
    schedule_at = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        # Correlation lookup: recipient + sent_at range, newest first
        Index("ix_outbound_recipient_sent_at", "recipient_address", "sent_at"),
    )


class ReplyAudit(Base):
    """
    Audit trail of inbound replies and what the correlation engine did with them.

    Table: reply_audit
    Append-only.
    """
    __tablename__ = "reply_audit"

    id = Column(String, primary_key=True, default=_new_id)
    kind = Column(String, nullable=False, index=True)
    outbound_message_id = Column(String, nullable=True, index=True)
    sender_address = Column(String, nullable=False)
    body = Column(Text, nullable=True)
    provider_event_id = Column(String, nullable=True)
    provider_number = Column(String, nullable=True)
    is_affirmative = Column(Boolean, nullable=False)
    received_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False)


class SmsSettingsRecord(Base):
    """
    Global SMS settings (one row, id='global').

    Table: sms_settings
    """
    __tablename__ = "sms_settings"

    id = Column(String, primary_key=True)
    sender_number = Column(String, nullable=True)
    updated_at = Column(DateTime, nullable=False)
