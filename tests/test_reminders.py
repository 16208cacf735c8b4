import pytest
from datetime import timedelta

from conftest import START, token_for
from modules.signatures.models import SignatureAuditEvent, SignerStatus, SigningOrder
from modules.signatures.schemas.signature_schemas import SignatureRequestCreate, SignerIn
from modules.signatures.services.errors import AccessDenied, InvalidRequestState, NoPendingSigners
from modules.signatures.services.reminder_service import latest_due_moment, reminder_moments
from modules.signatures.services.signature_request_service import (
    SYSTEM_REMINDER_ACTOR,
    SignatureCapture,
)

SIGNERS = [("alice@example.com", "Alice"), ("bob@example.com", "Bob")]


def create(service, workspace, order=SigningOrder.PARALLEL, **kwargs):
    data = SignatureRequestCreate(
        proposal_id=workspace.proposal_id,
        signing_order=order,
        signers=[SignerIn(signer_email=e, signer_name=n) for e, n in SIGNERS],
        **kwargs,
    )
    return service.create_request(data, workspace.owner_id)


def capture():
    return SignatureCapture(ip_address="203.0.113.5", user_agent="pytest")


def test_manual_reminder_skips_signed_signers(db, service, workspace, transport, clock):
    request = create(service, workspace)
    service.sign(token_for(db, request.id, "alice@example.com"), capture())
    clock.advance(hours=2)

    sent = service.send_reminder(request.id, workspace.member_id)

    assert sent == 1
    assert [m.to for m in transport.subjects("Reminder")] == ["bob@example.com"]
    assert request.last_reminder_sent == clock.now


def test_manual_reminder_leaves_waiting_sequential_signers_alone(db, service, workspace, transport):
    request = create(service, workspace, order=SigningOrder.SEQUENTIAL)
    assert service.send_reminder(request.id, workspace.owner_id) == 1
    assert [m.to for m in transport.subjects("Reminder")] == ["alice@example.com"]


def test_manual_reminder_requires_membership(service, workspace):
    request = create(service, workspace)
    with pytest.raises(AccessDenied):
        service.send_reminder(request.id, workspace.outsider_id)


def test_manual_reminder_on_finished_request(db, service, workspace):
    request = create(service, workspace)
    service.cancel(request.id, workspace.owner_id)
    with pytest.raises(InvalidRequestState):
        service.send_reminder(request.id, workspace.owner_id)


def test_reminder_with_nobody_left_to_remind(db, service, workspace):
    request = create(service, workspace)
    # Nobody holds a link yet.
    for signer in request.signers:
        signer.status = SignerStatus.PENDING
    db.commit()
    with pytest.raises(NoPendingSigners):
        service.send_reminder(request.id, workspace.owner_id)


def test_reminder_moments_merge_final_reminder(service, workspace):
    request = create(service, workspace, reminder_days=[3, 1], expiration_days=10)
    expires = START + timedelta(days=10)
    # One day before expiry and the 24h final reminder are the same moment.
    assert reminder_moments(request.expires_at, request.reminder_schedule) == [
        expires - timedelta(days=3),
        expires - timedelta(days=1),
    ]


def test_latest_due_moment(service, workspace):
    request = create(service, workspace, reminder_days=[3], expiration_days=10)
    expires = START + timedelta(days=10)

    assert latest_due_moment(request, START + timedelta(days=1)) is None
    assert latest_due_moment(request, START + timedelta(days=7, hours=1)) == expires - timedelta(days=3)
    assert latest_due_moment(request, START + timedelta(days=9, hours=1)) == expires - timedelta(hours=24)
    assert latest_due_moment(request, expires) is None


def test_scheduled_reminders_follow_schedule(db, service, workspace, transport):
    request = create(service, workspace, reminder_days=[3], expiration_days=10)

    assert service.run_scheduled_reminders(START + timedelta(days=1)) == 0

    day7 = START + timedelta(days=7, hours=1)
    assert service.run_scheduled_reminders(day7) == 1
    assert len(transport.subjects("Reminder")) == 2
    assert request.last_reminder_sent == day7

    # Already covered by the reminder just sent.
    assert service.run_scheduled_reminders(day7 + timedelta(hours=1)) == 0

    assert service.run_scheduled_reminders(START + timedelta(days=9, hours=2)) == 1
    assert len(transport.subjects("Reminder")) == 4

    assert service.run_scheduled_reminders(START + timedelta(days=11)) == 0

    events = (
        db.query(SignatureAuditEvent)
        .filter(SignatureAuditEvent.action == "REMINDER_SENT")
        .all()
    )
    assert [e.actor for e in events] == [SYSTEM_REMINDER_ACTOR, SYSTEM_REMINDER_ACTOR]


def test_scheduled_reminders_ignore_requests_without_schedule(service, workspace):
    create(service, workspace, expiration_days=10)
    assert service.run_scheduled_reminders(START + timedelta(days=9, hours=12)) == 0


def test_scheduled_reminders_skip_completed_requests(db, service, workspace):
    request = create(service, workspace, reminder_days=[3], expiration_days=10)
    for email, _ in SIGNERS:
        service.sign(token_for(db, request.id, email), capture())
    assert service.run_scheduled_reminders(START + timedelta(days=8)) == 0
