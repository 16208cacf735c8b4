import pytest
import re
from datetime import timedelta

from conftest import seed_workspace, token_for
from config import settings
from modules.notifications.models.notification import Notification
from modules.proposals.models import Proposal, ProposalStatus
from modules.signatures.models import (
    CompletionCertificate,
    Signature,
    SignatureAuditEvent,
    SignatureRequest,
    SignatureRequestStatus,
    SignatureRequirement,
    SignerStatus,
    SigningOrder,
)
from modules.signatures.schemas.signature_schemas import SignatureRequestCreate, SignerIn
from modules.signatures.services.errors import (
    AccessDenied,
    ActiveRequestExists,
    AlreadyDeclined,
    AlreadySigned,
    DocumentIntegrityError,
    DocumentNotFinalized,
    DocumentNotFound,
    InvalidRequestState,
    InvalidSignerList,
    NotYourTurn,
    RequestNotFound,
    TokenInvalid,
)
from modules.signatures.services.signature_request_service import SignatureCapture

ALICE = ("alice@example.com", "Alice Adams")
BOB = ("bob@example.com", "Bob Brown")
CAROL = ("carol@example.com", "Carol Clark")


def capture(ip="203.0.113.5"):
    return SignatureCapture(ip_address=ip, user_agent="Mozilla/5.0 (pytest)")


def build_create(workspace, signers, order=SigningOrder.PARALLEL, **kwargs):
    return SignatureRequestCreate(
        proposal_id=workspace.proposal_id,
        signing_order=order,
        signers=[SignerIn(signer_email=email, signer_name=name) for email, name in signers],
        **kwargs,
    )


def new_request(service, workspace, signers, order=SigningOrder.PARALLEL, **kwargs):
    return service.create_request(
        build_create(workspace, signers, order, **kwargs), workspace.owner_id, "10.0.0.1", "pytest"
    )


def actions(db, request_id):
    return [
        e.action for e in db.query(SignatureAuditEvent)
        .filter(SignatureAuditEvent.request_id == request_id)
        .order_by(SignatureAuditEvent.id)
    ]


# --- Creation ---

def test_create_parallel_request_sends_every_signer_a_link(db, service, workspace, transport):
    request = new_request(service, workspace, [ALICE, BOB])

    assert request.status == SignatureRequestStatus.IN_PROGRESS
    assert request.active_document_id == workspace.proposal_id
    assert [s.status for s in request.signers] == [SignerStatus.SENT, SignerStatus.SENT]
    assert db.get(Proposal, workspace.proposal_id).status == ProposalStatus.PENDING_REVIEW

    invites = transport.subjects("Signature Requested")
    assert sorted(m.to for m in invites) == [ALICE[0], BOB[0]]
    assert "https://app.example.com/sign/" in invites[0].text
    assert actions(db, request.id) == ["SIGNATURE_REQUEST_CREATED"]


def test_tokens_are_unique_hex_strings(db, service, workspace):
    request = new_request(service, workspace, [ALICE, BOB, CAROL])
    tokens = [s.auth_token for s in request.signers]
    assert len(set(tokens)) == 3
    assert all(re.fullmatch(r"[0-9a-f]{64}", t) for t in tokens)


def test_create_rejects_non_final_proposal(db, make_service):
    ws = seed_workspace(db, status=ProposalStatus.DRAFT)
    with pytest.raises(DocumentNotFinalized):
        new_request(make_service(), ws, [ALICE])
    assert db.query(SignatureRequest).count() == 0


def test_create_requires_edit_rights(db, service, workspace):
    data = build_create(workspace, [ALICE])
    for actor in (workspace.viewer_id, workspace.outsider_id):
        with pytest.raises(AccessDenied):
            service.create_request(data, actor)
    assert db.query(SignatureRequest).count() == 0


def test_create_for_missing_proposal(service, workspace):
    data = build_create(workspace, [ALICE])
    data.proposal_id = 9999
    with pytest.raises(DocumentNotFound):
        service.create_request(data, workspace.owner_id)


def test_duplicate_active_request_is_rejected(db, service, workspace):
    new_request(service, workspace, [ALICE, BOB])
    requirements_before = db.query(SignatureRequirement).count()

    with pytest.raises(ActiveRequestExists):
        new_request(service, workspace, [CAROL])

    assert db.query(SignatureRequirement).count() == requirements_before
    assert db.query(SignatureRequest).count() == 1


def test_configured_signer_limit(db, service, workspace, monkeypatch):
    monkeypatch.setattr(settings, "MAX_SIGNERS", 2)
    with pytest.raises(InvalidSignerList):
        new_request(service, workspace, [ALICE, BOB, CAROL])
    assert db.query(SignatureRequirement).count() == 0


def test_member_may_create_request(db, service, workspace):
    request = service.create_request(build_create(workspace, [ALICE]), workspace.member_id)
    assert request.created_by_id == workspace.member_id


def test_reminder_schedule_is_stored(service, workspace, clock):
    request = new_request(service, workspace, [ALICE], reminder_days=[1, 3, 3], expiration_days=7)
    assert request.expires_at == clock.now + timedelta(days=7)
    assert request.reminder_schedule.reminder_days == [3, 1]
    assert request.reminder_schedule.final_reminder_hours_before_expiry == 24


# --- Parallel signing ---

def test_parallel_signing_completes_with_certificate(db, service, workspace, transport):
    request = new_request(service, workspace, [ALICE, BOB])

    first = service.sign(token_for(db, request.id, ALICE[0]), capture())
    assert first.all_signatures_completed is False
    assert request.status == SignatureRequestStatus.IN_PROGRESS

    second = service.sign(token_for(db, request.id, BOB[0]), capture("198.51.100.7"))
    assert second.all_signatures_completed is True

    assert request.status == SignatureRequestStatus.COMPLETED
    assert request.active_document_id is None
    assert request.completed_at is not None
    certificate = request.certificate
    assert certificate is not None
    assert request.certificate_id == certificate.id
    assert request.certificate_url.endswith(f"{certificate.id}.pdf")
    assert [e["signer_email"] for e in certificate.payload["signatures"]] == [ALICE[0], BOB[0]]
    assert db.get(Proposal, workspace.proposal_id).status == ProposalStatus.SIGNED

    completion = transport.subjects("Fully Signed")
    assert sorted(m.to for m in completion) == sorted(["owner@example.com", ALICE[0], BOB[0]])
    notes = db.query(Notification).filter(Notification.user_id == workspace.owner_id).all()
    assert [n.type for n in notes] == ["PROPOSAL_SIGNED"]

    assert actions(db, request.id) == [
        "SIGNATURE_REQUEST_CREATED",
        "DOCUMENT_SIGNED",
        "DOCUMENT_SIGNED",
        "SIGNATURE_REQUEST_COMPLETED",
    ]


def test_signature_records_capture_details(db, service, workspace):
    request = new_request(service, workspace, [ALICE, BOB])
    result = service.sign(token_for(db, request.id, ALICE[0]), SignatureCapture(
        ip_address="203.0.113.5",
        user_agent="Mozilla/5.0",
        signature_image="data:image/png;base64,AAAA",
        geo_location="48.85,2.35",
    ))
    signature = result.signature
    assert signature.request_id == request.id
    assert signature.ip_address == "203.0.113.5"
    assert signature.signature_image.startswith("data:image/png")
    assert signature.geo_location == "48.85,2.35"
    assert signature.document_hash == request.document_hash


def test_token_is_single_use(db, service, workspace):
    request = new_request(service, workspace, [ALICE, BOB])
    token = token_for(db, request.id, ALICE[0])
    service.sign(token, capture())

    with pytest.raises(AlreadySigned):
        service.sign(token, capture())
    with pytest.raises(AlreadySigned):
        service.verify_token(token)
    assert db.query(Signature).count() == 1


def test_unknown_tokens_are_invalid(service, workspace):
    new_request(service, workspace, [ALICE])
    for token in ("", "short", "f" * 64, "z" * 64):
        with pytest.raises(TokenInvalid):
            service.verify_token(token)
        with pytest.raises(TokenInvalid):
            service.sign(token, capture())


def test_verify_token_marks_viewed_once(db, service, workspace):
    request = new_request(service, workspace, [ALICE])
    token = token_for(db, request.id, ALICE[0])

    view = service.verify_token(token)
    assert view.requirement.status == SignerStatus.VIEWED
    assert view.document.title == "Website redesign"
    assert view.document.organization_name == "Acme Consulting"
    assert view.requester_name == "Olivia Tester"
    viewed_at = view.requirement.viewed_at

    again = service.verify_token(token)
    assert again.requirement.status == SignerStatus.VIEWED
    assert again.requirement.viewed_at == viewed_at
    assert actions(db, request.id).count("SIGNER_VIEWED") == 1


def test_expired_request_rejects_tokens(db, service, workspace, clock):
    request = new_request(service, workspace, [ALICE], expiration_days=3)
    token = token_for(db, request.id, ALICE[0])
    clock.advance(days=3)

    with pytest.raises(TokenInvalid):
        service.verify_token(token)
    with pytest.raises(TokenInvalid):
        service.sign(token, capture())
    assert db.query(Signature).count() == 0


# --- Sequential signing ---

def test_sequential_order_is_enforced(db, service, workspace, transport):
    request = new_request(service, workspace, [ALICE, BOB], order=SigningOrder.SEQUENTIAL)
    alice_token = token_for(db, request.id, ALICE[0])
    bob_token = token_for(db, request.id, BOB[0])

    assert [s.status for s in request.signers] == [SignerStatus.SENT, SignerStatus.PENDING]
    assert [m.to for m in transport.subjects("Signature Requested")] == [ALICE[0]]

    with pytest.raises(NotYourTurn):
        service.sign(bob_token, capture())
    with pytest.raises(NotYourTurn):
        service.decline(bob_token, "Not yet")

    # Looking early does not count as viewing.
    early = service.verify_token(bob_token)
    assert early.requirement.status == SignerStatus.PENDING

    result = service.sign(alice_token, capture())
    assert result.all_signatures_completed is False
    bob = db.query(SignatureRequirement).filter(SignatureRequirement.signer_email == BOB[0]).one()
    assert bob.status == SignerStatus.SENT
    assert [m.to for m in transport.subjects("Signature Requested")] == [ALICE[0], BOB[0]]

    result = service.sign(bob_token, capture())
    assert result.all_signatures_completed is True
    assert request.status == SignatureRequestStatus.COMPLETED


def test_sequential_explicit_positions(db, service, workspace):
    data = SignatureRequestCreate(
        proposal_id=workspace.proposal_id,
        signing_order=SigningOrder.SEQUENTIAL,
        signers=[
            SignerIn(signer_email=ALICE[0], signer_name=ALICE[1], signing_order=2),
            SignerIn(signer_email=BOB[0], signer_name=BOB[1], signing_order=1),
        ],
    )
    request = service.create_request(data, workspace.owner_id)
    statuses = {s.signer_email: (s.signing_order, s.status) for s in request.signers}
    assert statuses == {
        BOB[0]: (1, SignerStatus.SENT),
        ALICE[0]: (2, SignerStatus.PENDING),
    }


# --- Decline ---

def test_decline_after_two_signatures_keeps_them_without_certificate(db, service, workspace, transport):
    request = new_request(service, workspace, [ALICE, BOB, CAROL])
    service.sign(token_for(db, request.id, ALICE[0]), capture())
    service.sign(token_for(db, request.id, BOB[0]), capture())

    service.decline(token_for(db, request.id, CAROL[0]), "Price is too high", "192.0.2.1", "pytest")

    assert request.status == SignatureRequestStatus.DECLINED
    assert request.active_document_id is None
    assert db.query(Signature).filter(Signature.request_id == request.id).count() == 2
    assert db.query(CompletionCertificate).count() == 0
    assert request.certificate_id is None
    assert db.get(Proposal, workspace.proposal_id).status == ProposalStatus.REJECTED

    carol = db.query(SignatureRequirement).filter(SignatureRequirement.signer_email == CAROL[0]).one()
    assert carol.status == SignerStatus.DECLINED
    assert carol.decline_reason == "Price is too high"

    declined = transport.subjects("Signature Declined")
    assert [m.to for m in declined] == ["owner@example.com"]
    assert "Price is too high" in declined[0].text
    notes = db.query(Notification).filter(Notification.user_id == workspace.owner_id).all()
    assert [n.type for n in notes] == ["STATUS_CHANGE"]


def test_decline_closes_request_for_other_signers(db, service, workspace):
    request = new_request(service, workspace, [ALICE, BOB])
    alice_token = token_for(db, request.id, ALICE[0])
    service.decline(alice_token, "No")

    with pytest.raises(AlreadyDeclined):
        service.decline(alice_token, "No again")
    with pytest.raises(TokenInvalid):
        service.sign(token_for(db, request.id, BOB[0]), capture())


# --- Integrity ---

def test_tampered_document_blocks_signing_and_flags_request(db, service, workspace):
    request = new_request(service, workspace, [ALICE, BOB])
    db.query(Proposal).filter(Proposal.id == workspace.proposal_id).update(
        {"content": "Scope: marketing site redesign. Price: 1 EUR."}
    )
    db.commit()

    with pytest.raises(DocumentIntegrityError):
        service.sign(token_for(db, request.id, ALICE[0]), capture())

    assert db.query(Signature).count() == 0
    db.refresh(request)
    assert request.integrity_review_required is True
    assert request.integrity_flagged_at is not None
    assert request.status == SignatureRequestStatus.IN_PROGRESS
    alice = db.query(SignatureRequirement).filter(SignatureRequirement.signer_email == ALICE[0]).one()
    assert alice.status == SignerStatus.SENT
    assert "INTEGRITY_CHECK_FAILED" in actions(db, request.id)


# --- Management ---

def test_get_request_checks_membership(db, service, workspace):
    request = new_request(service, workspace, [ALICE])
    assert service.get_request(request.id, workspace.viewer_id).id == request.id
    with pytest.raises(AccessDenied):
        service.get_request(request.id, workspace.outsider_id)
    with pytest.raises(RequestNotFound):
        service.get_request(9999, workspace.owner_id)


def test_list_requests_for_document_newest_first(db, service, workspace, clock):
    first = new_request(service, workspace, [ALICE])
    service.cancel(first.id, workspace.owner_id)
    clock.advance(minutes=5)
    second = new_request(service, workspace, [BOB])

    listed = service.list_requests_for_document(workspace.proposal_id, workspace.viewer_id)
    assert [r.id for r in listed] == [second.id, first.id]


def test_cancel_restores_document_and_invalidates_tokens(db, service, workspace):
    request = new_request(service, workspace, [ALICE, BOB])
    token = token_for(db, request.id, ALICE[0])

    service.cancel(request.id, workspace.owner_id, "10.0.0.1", "pytest")

    assert request.status == SignatureRequestStatus.CANCELLED
    assert request.cancelled_at is not None
    assert request.active_document_id is None
    assert db.get(Proposal, workspace.proposal_id).status == ProposalStatus.FINAL
    with pytest.raises(TokenInvalid):
        service.sign(token, capture())
    with pytest.raises(InvalidRequestState):
        service.cancel(request.id, workspace.owner_id)

    # The document is free for a new request.
    assert new_request(service, workspace, [CAROL]).status == SignatureRequestStatus.IN_PROGRESS


def test_lock_registry_is_empty_after_operations(db, service, workspace, locks):
    request = new_request(service, workspace, [ALICE, BOB])
    service.verify_token(token_for(db, request.id, ALICE[0]))
    service.sign(token_for(db, request.id, ALICE[0]), capture())
    service.cancel(request.id, workspace.owner_id)

    assert len(locks) == 0


def test_cancel_permissions(db, service, workspace):
    request = service.create_request(build_create(workspace, [ALICE]), workspace.member_id)
    with pytest.raises(AccessDenied):
        service.cancel(request.id, workspace.viewer_id)
    with pytest.raises(AccessDenied):
        service.cancel(request.id, workspace.outsider_id)
    # Creator may always cancel; so may an owner.
    service.cancel(request.id, workspace.owner_id)
    assert request.status == SignatureRequestStatus.CANCELLED


def test_cannot_cancel_completed_request(db, service, workspace):
    request = new_request(service, workspace, [ALICE])
    service.sign(token_for(db, request.id, ALICE[0]), capture())
    with pytest.raises(InvalidRequestState):
        service.cancel(request.id, workspace.owner_id)
    assert request.status == SignatureRequestStatus.COMPLETED


def test_audit_trail_lists_events_in_order(db, service, workspace):
    request = new_request(service, workspace, [ALICE])
    token = token_for(db, request.id, ALICE[0])
    service.verify_token(token)
    service.sign(token, capture())

    events = service.list_audit_events(request.id, workspace.viewer_id)
    assert [e.action for e in events] == [
        "SIGNATURE_REQUEST_CREATED",
        "SIGNER_VIEWED",
        "DOCUMENT_SIGNED",
        "SIGNATURE_REQUEST_COMPLETED",
    ]
    assert events[2].ip_address == "203.0.113.5"
    assert events[0].actor == f"user:{workspace.owner_id}"
