"""
Tests for reply correlation and the confirmation state update.

Tests cover:
- Correlation window boundaries
- Most-recent tie-break
- Recipient isolation
- Confirmation fields and audit entries for each reply outcome
"""

from datetime import datetime, timedelta, timezone

from sms_confirm.correlation import (
    CORRELATION_WINDOW,
    InboundReplyEvent,
    apply_reply,
    find_candidate,
)
from sms_confirm.models import OutboundMessage, ReplyAudit
from sms_confirm.storage import get_outbound_message, list_reply_audit

from conftest import CUSTOMER, SENDER

T = datetime(2025, 1, 15, 10, 0, 0)


def reply(body="OK", received_at=None, sender=CUSTOMER, event_id="in-1"):
    return InboundReplyEvent(
        sender_address=sender,
        body=body,
        received_at=received_at or T + timedelta(hours=2),
        provider_event_id=event_id,
        provider_number=SENDER,
    )


class TestFindCandidate:
    """Candidate lookup."""

    def test_reply_just_inside_window(self, db, make_outbound):
        sent = make_outbound(sent_at=T)
        candidate = find_candidate(db, CUSTOMER, T + CORRELATION_WINDOW - timedelta(seconds=1))
        assert candidate is not None
        assert candidate.id == sent.id

    def test_reply_just_outside_window(self, db, make_outbound):
        make_outbound(sent_at=T)
        assert find_candidate(db, CUSTOMER, T + CORRELATION_WINDOW + timedelta(seconds=1)) is None

    def test_message_sent_after_reply_not_candidate(self, db, make_outbound):
        make_outbound(sent_at=T)
        assert find_candidate(db, CUSTOMER, T - timedelta(minutes=1)) is None

    def test_most_recent_wins(self, db, make_outbound):
        make_outbound(sent_at=T)
        newer = make_outbound(sent_at=T + timedelta(hours=1))
        candidate = find_candidate(db, CUSTOMER, T + timedelta(hours=3))
        assert candidate.id == newer.id

    def test_newer_message_outside_reply_time_ignored(self, db, make_outbound):
        older = make_outbound(sent_at=T)
        make_outbound(sent_at=T + timedelta(days=1))
        candidate = find_candidate(db, CUSTOMER, T + timedelta(hours=3))
        assert candidate.id == older.id

    def test_other_recipients_never_match(self, db, make_outbound):
        make_outbound(recipient="+4711111111", sent_at=T)
        assert find_candidate(db, CUSTOMER, T + timedelta(hours=1)) is None

    def test_aware_reply_time(self, db, make_outbound):
        sent = make_outbound(sent_at=T)
        received = (T + timedelta(hours=1)).replace(tzinfo=timezone.utc)
        assert find_candidate(db, CUSTOMER, received).id == sent.id

    def test_aware_reply_time_other_zone(self, db, make_outbound):
        sent = make_outbound(sent_at=T)
        # 11:30 in UTC+01:00 is 10:30 UTC
        received = datetime(2025, 1, 15, 11, 30, tzinfo=timezone(timedelta(hours=1)))
        assert find_candidate(db, CUSTOMER, received).id == sent.id
        # 10:30 in UTC+01:00 is 09:30 UTC, before the send
        early = datetime(2025, 1, 15, 10, 30, tzinfo=timezone(timedelta(hours=1)))
        assert find_candidate(db, CUSTOMER, early) is None


class TestApplyReply:
    """State transitions and audit entries."""

    def test_affirmative_confirms_candidate(self, db, make_outbound):
        sent = make_outbound(sent_at=T)
        assert sent.confirmation_state == "sent"
        assert sent.confirmed_at is None
        assert sent.confirmation_reply_body is None
        assert sent.confirmation_reply_provider_id is None

        event = reply("Ok!")
        outcome = apply_reply(db, sent, event, is_affirmative=True)

        assert outcome.result == "confirmed"
        assert outcome.confirmed is True
        assert outcome.outbound_message_id == sent.id

        stored = get_outbound_message(db, sent.id)
        assert stored.confirmation_state == "confirmed"
        assert stored.confirmed_at == event.received_at
        assert stored.confirmation_reply_body == "Ok!"
        assert stored.confirmation_reply_provider_id == "in-1"

        audit = list_reply_audit(db, sent.id)
        assert [a.kind for a in audit] == ["confirmation"]
        assert audit[0].provider_number == SENDER

    def test_second_affirmative_keeps_first_confirmation(self, db, make_outbound):
        sent = make_outbound(sent_at=T)
        apply_reply(db, sent, reply("OK", event_id="in-1"), is_affirmative=True)

        later = reply("yes", received_at=T + timedelta(hours=5), event_id="in-2")
        outcome = apply_reply(db, get_outbound_message(db, sent.id), later, is_affirmative=True)

        assert outcome.result == "already_confirmed"
        assert outcome.confirmed is True
        stored = get_outbound_message(db, sent.id)
        assert stored.confirmation_reply_body == "OK"
        assert stored.confirmation_reply_provider_id == "in-1"
        assert [a.kind for a in list_reply_audit(db, sent.id)] == ["confirmation", "already_confirmed"]

    def test_orphan_affirmative_writes_audit_only(self, db, make_outbound):
        other = make_outbound(recipient="+4711111111", sent_at=T)

        outcome = apply_reply(db, None, reply("OK"), is_affirmative=True)

        assert outcome.result == "orphan_affirmative"
        assert outcome.outbound_message_id is None
        assert db.query(OutboundMessage).count() == 1
        assert get_outbound_message(db, other.id).confirmation_state == "sent"

        audit = db.query(ReplyAudit).all()
        assert len(audit) == 1
        assert audit[0].kind == "orphan_affirmative"
        assert audit[0].outbound_message_id is None
        assert audit[0].is_affirmative is True

    def test_non_affirmative_references_candidate(self, db, make_outbound):
        sent = make_outbound(sent_at=T)

        outcome = apply_reply(db, sent, reply("maybe later"), is_affirmative=False)

        assert outcome.result == "non_affirmative"
        assert outcome.confirmed is False
        stored = get_outbound_message(db, sent.id)
        assert stored.confirmation_state == "sent"
        assert stored.confirmed_at is None

        audit = list_reply_audit(db, sent.id)
        assert len(audit) == 1
        assert audit[0].kind == "non_affirmative"
        assert audit[0].body == "maybe later"
        assert audit[0].is_affirmative is False

    def test_non_affirmative_without_candidate(self, db):
        outcome = apply_reply(db, None, reply("who is this?"), is_affirmative=False)

        assert outcome.result == "non_affirmative"
        assert db.query(OutboundMessage).count() == 0
        audit = db.query(ReplyAudit).one()
        assert audit.kind == "non_affirmative"
        assert audit.outbound_message_id is None
