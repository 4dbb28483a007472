import logging
from datetime import datetime
from typing import Any, Generator, Optional, Tuple

from sqlalchemy import create_engine, inspect, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from sms_confirm.config import settings
from sms_confirm.utils import utcnow

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite to work with FastAPI's async
_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args,
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()

REQUIRED_TABLES = ("outbound_messages", "reply_audit", "sms_settings")


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from sms_confirm import models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and all tables exist, False otherwise.
    """
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        inspector = inspect(engine)
        missing = [name for name in REQUIRED_TABLES if not inspector.has_table(name)]
        if missing:
            logger.error(f"Database schema not applied, missing tables: {missing}")
            return False
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Outbound Message Repository Functions
# =============================================================================

def create_outbound_message(
    db: Session,
    provider_message_id: str,
    recipient_address: str,
    sender_address: str,
    rendered_body: str,
    template_body: str,
    sent_at: datetime,
    template_values: Optional[dict] = None,
    provider_status: Optional[str] = None,
    owner_id: Optional[str] = None,
    media_url: Optional[str] = None,
    restrict_once: str = "No",
    schedule_at: Optional[str] = None,
):
    """
    Persist a newly sent message with confirmation_state='sent'.

    Rolls back and re-raises SQLAlchemyError on failure.
    """
    from sms_confirm.models import OutboundMessage, STATE_SENT

    logger.info(f"Creating outbound message: provider_id={provider_message_id}, to={recipient_address}")
    message = OutboundMessage(
        provider_message_id=provider_message_id,
        recipient_address=recipient_address,
        sender_address=sender_address,
        rendered_body=rendered_body,
        template_body=template_body,
        template_values=template_values,
        sent_at=sent_at,
        confirmation_state=STATE_SENT,
        provider_status=provider_status,
        owner_id=owner_id,
        media_url=media_url,
        restrict_once=restrict_once,
        schedule_at=schedule_at,
        created_at=utcnow(),
    )
    try:
        db.add(message)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(message)
    logger.info(f"Outbound message stored: id={message.id}")
    return message


def get_outbound_message(db: Session, message_id: str):
    """Retrieve an outbound message by its store id, or None."""
    from sms_confirm.models import OutboundMessage

    return db.query(OutboundMessage).filter(OutboundMessage.id == message_id).first()


def find_latest_outbound_to(
    db: Session,
    recipient_address: str,
    window_start: datetime,
    window_end: datetime,
):
    """
    Most recent message sent to `recipient_address` with
    window_start <= sent_at <= window_end, or None.
    """
    from sms_confirm.models import OutboundMessage

    logger.debug(f"Looking up outbound to {recipient_address} sent in [{window_start}, {window_end}]")
    return (
        db.query(OutboundMessage)
        .filter(OutboundMessage.recipient_address == recipient_address)
        .filter(OutboundMessage.sent_at >= window_start)
        .filter(OutboundMessage.sent_at <= window_end)
        .order_by(OutboundMessage.sent_at.desc(), OutboundMessage.created_at.desc())
        .first()
    )


def list_outbound_messages(
    db: Session,
    limit: int = 50,
    offset: int = 0,
    confirmed: Optional[bool] = None,
) -> Tuple[list, int]:
    """
    List outbound messages newest first.

    Returns:
        Tuple of (messages list, total count matching filters)
    """
    from sms_confirm.models import OutboundMessage, STATE_CONFIRMED

    query = db.query(OutboundMessage)
    if confirmed is True:
        query = query.filter(OutboundMessage.confirmation_state == STATE_CONFIRMED)
    elif confirmed is False:
        query = query.filter(OutboundMessage.confirmation_state != STATE_CONFIRMED)

    total = query.count()
    messages = (
        query.order_by(OutboundMessage.sent_at.desc(), OutboundMessage.id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    logger.info(f"Retrieved {len(messages)} of {total} outbound messages")
    return messages, total


# =============================================================================
# Reply Audit Repository Functions
# =============================================================================

def _audit_row(
    kind: str,
    sender_address: str,
    body: Optional[str],
    provider_event_id: Optional[str],
    is_affirmative: bool,
    received_at: datetime,
    outbound_message_id: Optional[str] = None,
    provider_number: Optional[str] = None,
):
    from sms_confirm.models import ReplyAudit

    return ReplyAudit(
        kind=kind,
        outbound_message_id=outbound_message_id,
        sender_address=sender_address,
        body=body,
        provider_event_id=provider_event_id,
        provider_number=provider_number,
        is_affirmative=is_affirmative,
        received_at=received_at,
        created_at=utcnow(),
    )


def add_reply_audit(db: Session, **fields: Any):
    """Append one reply audit entry. Rolls back and re-raises on failure."""
    row = _audit_row(**fields)
    try:
        db.add(row)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info(f"Reply audit written: kind={row.kind}, outbound={row.outbound_message_id}")
    return row


def record_confirmation(
    db: Session,
    message_id: str,
    sender_address: str,
    reply_body: str,
    reply_provider_id: Optional[str],
    received_at: datetime,
    provider_number: Optional[str] = None,
) -> bool:
    """
    Move a message from 'sent' to 'confirmed' and append the audit entry, in
    one transaction.

    The update only matches rows still in state 'sent', so concurrent or
    repeated replies cannot overwrite a recorded confirmation.

    Returns:
        True if this call performed the transition, False if the message was
        already confirmed.
    """
    from sms_confirm.models import (
        OutboundMessage,
        STATE_SENT,
        STATE_CONFIRMED,
        AUDIT_CONFIRMATION,
        AUDIT_ALREADY_CONFIRMED,
    )

    try:
        result = db.execute(
            update(OutboundMessage)
            .where(OutboundMessage.id == message_id)
            .where(OutboundMessage.confirmation_state == STATE_SENT)
            .values(
                confirmation_state=STATE_CONFIRMED,
                confirmed_at=received_at,
                confirmation_reply_body=reply_body,
                confirmation_reply_provider_id=reply_provider_id,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        transitioned = result.rowcount == 1
        db.add(_audit_row(
            kind=AUDIT_CONFIRMATION if transitioned else AUDIT_ALREADY_CONFIRMED,
            outbound_message_id=message_id,
            sender_address=sender_address,
            body=reply_body,
            provider_event_id=reply_provider_id,
            is_affirmative=True,
            received_at=received_at,
            provider_number=provider_number,
        ))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info(f"Confirmation for {message_id}: {'applied' if transitioned else 'already confirmed'}")
    return transitioned


def list_reply_audit(db: Session, outbound_message_id: Optional[str] = None) -> list:
    """Audit entries oldest first, optionally for one outbound message."""
    from sms_confirm.models import ReplyAudit

    query = db.query(ReplyAudit)
    if outbound_message_id is not None:
        query = query.filter(ReplyAudit.outbound_message_id == outbound_message_id)
    return query.order_by(ReplyAudit.created_at.asc()).all()


# =============================================================================
# SMS Settings Repository Functions
# =============================================================================

def get_sender_number(db: Session) -> Optional[str]:
    """Sender number from the global SMS settings row, or None."""
    from sms_confirm.models import SmsSettingsRecord, GLOBAL_SETTINGS_ID

    record = db.get(SmsSettingsRecord, GLOBAL_SETTINGS_ID)
    return record.sender_number if record else None


def set_sender_number(db: Session, sender_number: str):
    """Upsert the global SMS settings row."""
    from sms_confirm.models import SmsSettingsRecord, GLOBAL_SETTINGS_ID

    record = db.get(SmsSettingsRecord, GLOBAL_SETTINGS_ID)
    if record is None:
        record = SmsSettingsRecord(id=GLOBAL_SETTINGS_ID)
        db.add(record)
    record.sender_number = sender_number
    record.updated_at = utcnow()
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info(f"Global sender number updated: {sender_number}")
    return record
