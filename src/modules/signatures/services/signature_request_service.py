"""
Signature request lifecycle.

Every mutating operation runs inside the per-request lock and a single
database transaction. State changes that must happen exactly once
(token consumption, next-signer fan-out, completion, decline) are
conditioned updates whose rowcount decides who won. Emails and in-app
notifications are queued in an outbox and delivered only after commit.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from modules.notifications.repositories.notification_repository import NotificationRepository
from modules.notifications.services.email_dispatcher import EmailDispatcher
from modules.notifications.services.notification_service import NotificationService
from modules.notifications.services.outbox import Outbox
from modules.organizations.models import User
from modules.organizations.services.permission import can_perform_action
from modules.proposals.models.proposal import ProposalStatus
from modules.proposals.services.proposal_collaborator import (
    DocumentAccessError,
    DocumentSnapshot,
    ProposalCollaborator,
    SqlProposalCollaborator,
)
from modules.signatures.models.certificate import CompletionCertificate
from modules.signatures.models.signature import Signature
from modules.signatures.models.signature_request import (
    ACTIVE_REQUEST_STATUSES,
    OPEN_SIGNER_STATUSES,
    ReminderSchedule,
    SignatureAuditEvent,
    SignatureRequest,
    SignatureRequestStatus,
    SignatureRequirement,
    SignerStatus,
    SigningOrder,
)
from modules.signatures.schemas.signature_schemas import SignatureRequestCreate
from modules.signatures.services.certificate_service import CertificateService
from modules.signatures.services.errors import (
    AccessDenied,
    ActiveRequestExists,
    AlreadyDeclined,
    AlreadySigned,
    CertificateNotAvailable,
    ConcurrencyConflict,
    DocumentIntegrityError,
    DocumentNotFinalized,
    DocumentNotFound,
    InvalidRequestState,
    InvalidSignerList,
    NoPendingSigners,
    NotYourTurn,
    RequestNotFound,
    SignatureWorkflowError,
    TokenInvalid,
)
from modules.signatures.services.integrity import hash_document
from modules.signatures.services.locks import RequestLockRegistry
from modules.signatures.services.reminder_service import (
    ReminderScheduler,
    latest_due_moment,
    remindable_signers,
)
from modules.signatures.services.token_service import SignerTokenService

logger = logging.getLogger(__name__)

SYSTEM_REMINDER_ACTOR = "system:reminder-scheduler"

# Process-wide fallback; the application injects its own registry.
default_lock_registry = RequestLockRegistry()


@dataclass
class SignatureCapture:
    ip_address: str
    user_agent: str
    signature_image: Optional[str] = None
    geo_location: Optional[str] = None


@dataclass
class TokenView:
    requirement: SignatureRequirement
    request: SignatureRequest
    document: DocumentSnapshot
    requester_name: str


@dataclass
class SignResult:
    signature: Signature
    request: SignatureRequest
    all_signatures_completed: bool


class SignatureRequestService:

    def __init__(
        self,
        db_session: Session,
        proposals: ProposalCollaborator = None,
        dispatcher: EmailDispatcher = None,
        notifications: NotificationService = None,
        locks: RequestLockRegistry = None,
        clock=datetime.utcnow,
    ):
        self.db = db_session
        self.proposals = proposals or SqlProposalCollaborator(db_session)
        self.dispatcher = dispatcher or EmailDispatcher()
        self.notifications = notifications or NotificationService(NotificationRepository(db_session))
        self.locks = locks or default_lock_registry
        self.tokens = SignerTokenService(db_session)
        self.certificates = CertificateService(db_session)
        self.clock = clock
        self.outbox = Outbox()

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self):
        try:
            yield
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            self.outbox.discard()
            logger.warning("Signature transaction hit a constraint: %s", e.orig)
            raise ConcurrencyConflict() from e
        except Exception:
            self.db.rollback()
            self.outbox.discard()
            raise
        else:
            self.outbox.flush()

    def _lock_request(self, request_id: int) -> SignatureRequest:
        request = (
            self.db.query(SignatureRequest)
            .filter(SignatureRequest.id == request_id)
            .populate_existing()
            .with_for_update()
            .first()
        )
        if request is None:
            raise RequestNotFound()
        return request

    def _load_signers(self, request_id: int) -> List[SignatureRequirement]:
        return (
            self.db.query(SignatureRequirement)
            .filter(SignatureRequirement.request_id == request_id)
            .order_by(SignatureRequirement.signing_order.asc(), SignatureRequirement.id.asc())
            .populate_existing()
            .all()
        )

    def _transition_requirement(self, requirement: SignatureRequirement, from_statuses, values: dict) -> bool:
        updated = (
            self.db.query(SignatureRequirement)
            .filter(
                SignatureRequirement.id == requirement.id,
                SignatureRequirement.status.in_(from_statuses),
            )
            .update(values, synchronize_session=False)
        )
        self.db.expire(requirement)
        return updated == 1

    def _transition_request(self, request: SignatureRequest, from_statuses, values: dict) -> bool:
        updated = (
            self.db.query(SignatureRequest)
            .filter(
                SignatureRequest.id == request.id,
                SignatureRequest.status.in_(from_statuses),
            )
            .update(values, synchronize_session=False)
        )
        self.db.expire(request)
        return updated == 1

    def _audit(self, request: SignatureRequest, action: str, actor: str = None,
               ip_address: str = None, user_agent: str = None, metadata: dict = None):
        self.db.add(SignatureAuditEvent(
            request_id=request.id,
            action=action,
            actor=actor,
            ip_address=ip_address,
            user_agent=user_agent,
            event_metadata=metadata or {},
            created_at=self.clock(),
        ))

    def _deliver_in_app(self, create_fn, **kwargs):
        try:
            create_fn(**kwargs)
        except Exception:
            self.db.rollback()
            raise

    # ------------------------------------------------------------------
    # Lookups and permission checks
    # ------------------------------------------------------------------

    def _document(self, document_id: int) -> DocumentSnapshot:
        try:
            return self.proposals.get_document(document_id)
        except DocumentAccessError as e:
            raise DocumentNotFound(str(e))

    def _user_name(self, user_id: int, fallback: str = "") -> str:
        user = self.db.get(User, user_id)
        return user.full_name if user else fallback

    def _require_member(self, document: DocumentSnapshot, actor_id: int, action: str = "view"):
        role = self.proposals.get_member_role(document.org_id, actor_id)
        if not can_perform_action(role, action):
            raise AccessDenied()

    def _resolve_token(self, token: str) -> SignatureRequirement:
        requirement = self.tokens.resolve(token)
        if requirement is None:
            raise TokenInvalid()
        return requirement

    @staticmethod
    def _check_token_usable(request: SignatureRequest, requirement: SignatureRequirement, now: datetime):
        if requirement.status == SignerStatus.SIGNED:
            raise AlreadySigned()
        if requirement.status == SignerStatus.DECLINED:
            raise AlreadyDeclined()
        if request.status != SignatureRequestStatus.IN_PROGRESS or request.is_expired(now):
            raise TokenInvalid()

    @staticmethod
    def _is_turn(request: SignatureRequest, requirement: SignatureRequirement,
                 signers: List[SignatureRequirement]) -> bool:
        if request.signing_order == SigningOrder.PARALLEL:
            return True
        return all(
            s.status == SignerStatus.SIGNED
            for s in signers
            if s.signing_order < requirement.signing_order
        )

    # ------------------------------------------------------------------
    # Outbound messages
    # ------------------------------------------------------------------

    def _send_link(self, requirement: SignatureRequirement, document_title: str,
                   requester_name: str, token: str):
        self.outbox.enqueue(
            f"signature request email to requirement {requirement.id}",
            self.dispatcher.send_signature_request_email,
            signer_email=requirement.signer_email,
            signer_name=requirement.signer_name,
            document_title=document_title,
            requester_name=requester_name,
            token=token,
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_request(self, data: SignatureRequestCreate, requester_id: int,
                       ip_address: str = None, user_agent: str = None) -> SignatureRequest:
        try:
            document = self.proposals.get_document_for_signature(data.proposal_id, requester_id)
        except DocumentAccessError as e:
            raise (DocumentNotFound if e.not_found else AccessDenied)(str(e))

        if len(data.signers) > settings.MAX_SIGNERS:
            raise InvalidSignerList(f"A signature request accepts at most {settings.MAX_SIGNERS} signers")
        if self.proposals.has_active_signature_request(document.id):
            raise ActiveRequestExists()
        if document.status != ProposalStatus.FINAL:
            raise DocumentNotFinalized(
                "Signature requests can only be created for proposals in FINAL status. "
                f"Current status: {document.status.value}"
            )

        now = self.clock()
        requester_name = self._user_name(requester_id, document.creator_name)
        positions = data.signer_positions()
        tokens = self.tokens.issue_unique_tokens(len(data.signers))

        with self._transaction():
            request = SignatureRequest(
                document_id=document.id,
                active_document_id=document.id,
                signature_type=data.signature_type,
                signing_order=data.signing_order,
                status=SignatureRequestStatus.PENDING,
                document_hash=hash_document(document.content),
                document_status_before=document.status.value,
                created_by_id=requester_id,
                created_at=now,
                expires_at=now + timedelta(days=data.expiration_days) if data.expiration_days else None,
            )
            request.signers = [
                SignatureRequirement(
                    signer_email=signer.signer_email,
                    signer_name=signer.signer_name,
                    signing_order=position,
                    auth_method=signer.auth_method,
                    status=SignerStatus.PENDING,
                    auth_token=token,
                )
                for signer, position, token in zip(data.signers, positions, tokens)
            ]
            if data.reminder_days:
                request.reminder_schedule = ReminderSchedule(
                    reminder_days=sorted(set(data.reminder_days), reverse=True),
                    final_reminder_hours_before_expiry=settings.FINAL_REMINDER_HOURS_BEFORE_EXPIRY,
                )
            self.db.add(request)
            self.db.flush()

            self.proposals.set_document_status(document.id, ProposalStatus.PENDING_REVIEW)
            self._audit(
                request, "SIGNATURE_REQUEST_CREATED", actor=f"user:{requester_id}",
                ip_address=ip_address, user_agent=user_agent,
                metadata={
                    "document_id": document.id,
                    "signature_type": data.signature_type.value,
                    "signing_order": data.signing_order.value,
                    "signer_count": len(data.signers),
                    "document_hash": request.document_hash,
                },
            )

            first_position = min(positions)
            for requirement in request.signers:
                if data.signing_order == SigningOrder.SEQUENTIAL and requirement.signing_order != first_position:
                    continue
                requirement.status = SignerStatus.SENT
                requirement.sent_at = now
                self._send_link(requirement, document.title, requester_name, requirement.auth_token)

            request.status = SignatureRequestStatus.IN_PROGRESS

        logger.info(
            "Signature request %s created for proposal %s with %d signer(s), order %s",
            request.id, document.id, len(data.signers), data.signing_order.value,
        )
        return request

    # ------------------------------------------------------------------
    # Signer-facing operations
    # ------------------------------------------------------------------

    def verify_token(self, token: str) -> TokenView:
        requirement = self._resolve_token(token)
        request_id = requirement.request_id

        with self.locks.hold(request_id):
            with self._transaction():
                now = self.clock()
                request = self._lock_request(request_id)
                signers = self._load_signers(request_id)
                requirement = next(s for s in signers if s.id == requirement.id)
                self._check_token_usable(request, requirement, now)
                document = self._document(request.document_id)

                if (requirement.status in (SignerStatus.PENDING, SignerStatus.SENT)
                        and self._is_turn(request, requirement, signers)):
                    if self._transition_requirement(
                        requirement,
                        (SignerStatus.PENDING, SignerStatus.SENT),
                        {"status": SignerStatus.VIEWED, "viewed_at": now},
                    ):
                        self._audit(request, "SIGNER_VIEWED", actor=requirement.signer_email)

        requester_name = self._user_name(request.created_by_id, document.creator_name)
        return TokenView(requirement=requirement, request=request, document=document,
                         requester_name=requester_name)

    def sign(self, token: str, capture: SignatureCapture) -> SignResult:
        requirement = self._resolve_token(token)
        request_id = requirement.request_id

        with self.locks.hold(request_id):
            with self._transaction():
                now = self.clock()
                request = self._lock_request(request_id)
                signers = self._load_signers(request_id)
                requirement = next(s for s in signers if s.id == requirement.id)
                self._check_token_usable(request, requirement, now)
                if not self._is_turn(request, requirement, signers):
                    raise NotYourTurn()

                document = self._document(request.document_id)
                current_hash = hash_document(document.content)
                if current_hash != request.document_hash:
                    self._flag_integrity_failure(request, requirement, current_hash, capture, now)
                    raise DocumentIntegrityError()

                if not self._transition_requirement(
                    requirement, OPEN_SIGNER_STATUSES,
                    {"status": SignerStatus.SIGNED, "signed_at": now},
                ):
                    raise AlreadySigned()

                signature = Signature(
                    document_id=request.document_id,
                    request_id=request.id,
                    requirement_id=requirement.id,
                    signer_email=requirement.signer_email,
                    signer_name=requirement.signer_name,
                    signature_type=request.signature_type,
                    signature_image=capture.signature_image,
                    ip_address=capture.ip_address,
                    user_agent=capture.user_agent,
                    geo_location=capture.geo_location,
                    document_hash=current_hash,
                    signed_at=now,
                )
                self.db.add(signature)
                self.db.flush()
                self._audit(
                    request, "DOCUMENT_SIGNED", actor=requirement.signer_email,
                    ip_address=capture.ip_address, user_agent=capture.user_agent,
                    metadata={"signature_id": signature.id, "document_hash": current_hash},
                )

                signed_count = (
                    self.db.query(SignatureRequirement)
                    .filter(
                        SignatureRequirement.request_id == request.id,
                        SignatureRequirement.status == SignerStatus.SIGNED,
                    )
                    .count()
                )
                completed = signed_count == len(signers)
                if completed:
                    self._complete(request, signers, document, now)
                elif request.signing_order == SigningOrder.SEQUENTIAL:
                    self._advance_sequence(request, requirement, signers, document)

        logger.info(
            "Requirement %s signed request %s (%s)",
            requirement.id, request_id, "complete" if completed else "waiting on others",
        )
        return SignResult(signature=signature, request=request, all_signatures_completed=completed)

    def _flag_integrity_failure(self, request: SignatureRequest, requirement: SignatureRequirement,
                                current_hash: str, capture: SignatureCapture, now: datetime):
        request.integrity_review_required = True
        request.integrity_flagged_at = now
        self._audit(
            request, "INTEGRITY_CHECK_FAILED", actor=requirement.signer_email,
            ip_address=capture.ip_address, user_agent=capture.user_agent,
            metadata={
                "requirement_id": requirement.id,
                "expected_hash": request.document_hash,
                "actual_hash": current_hash,
            },
        )
        # The flag is kept; the signature attempt is not.
        self.db.commit()
        logger.error(
            "Integrity check failed for signature request %s: expected %s, got %s. "
            "Flagged for review.",
            request.id, request.document_hash, current_hash,
        )

    def _advance_sequence(self, request: SignatureRequest, current: SignatureRequirement,
                          signers: List[SignatureRequirement], document: DocumentSnapshot):
        later = [s for s in signers if s.signing_order > current.signing_order]
        if not later:
            return
        next_position = min(s.signing_order for s in later)
        requester_name = self._user_name(request.created_by_id, document.creator_name)
        now = self.clock()
        for nxt in later:
            if nxt.signing_order != next_position:
                continue
            token = nxt.auth_token
            if self._transition_requirement(
                nxt, (SignerStatus.PENDING,), {"status": SignerStatus.SENT, "sent_at": now}
            ):
                self._send_link(nxt, document.title, requester_name, token)
                logger.info("Request %s advanced to signer at position %s", request.id, next_position)

    def _complete(self, request: SignatureRequest, signers: List[SignatureRequirement],
                  document: DocumentSnapshot, now: datetime):
        if not self._transition_request(
            request, (SignatureRequestStatus.IN_PROGRESS,),
            {
                "status": SignatureRequestStatus.COMPLETED,
                "completed_at": now,
                "active_document_id": None,
            },
        ):
            raise ConcurrencyConflict()

        certificate = self.certificates.generate(request, document, now)
        request.certificate_id = certificate.id
        request.certificate_url = certificate.url
        request.integrity_digest = certificate.integrity_digest

        self.proposals.set_document_status(request.document_id, ProposalStatus.SIGNED)
        self._audit(
            request, "SIGNATURE_REQUEST_COMPLETED",
            metadata={"certificate_id": certificate.id, "integrity_digest": certificate.integrity_digest},
        )

        requester = self.db.get(User, request.created_by_id)
        parties = []
        if requester:
            parties.append((requester.email, requester.full_name))
        parties += [(s.signer_email, s.signer_name) for s in signers]

        seen = set()
        for email, name in parties:
            if email.lower() in seen:
                continue
            seen.add(email.lower())
            self.outbox.enqueue(
                f"completion email to {email}",
                self.dispatcher.send_completion_email,
                recipient_email=email,
                recipient_name=name,
                document_title=document.title,
                certificate_ref=certificate.url,
                integrity_digest=certificate.integrity_digest,
            )
            user = self.proposals.get_user_by_email(email)
            if user:
                self.outbox.enqueue(
                    f"agreement signed notification for user {user.id}",
                    self._deliver_in_app,
                    self.notifications.create_agreement_signed_notification,
                    user_id=user.id,
                    document_title=document.title,
                    document_id=document.id,
                )
        logger.info("Signature request %s completed; certificate %s", request.id, certificate.id)

    def decline(self, token: str, reason: str, ip_address: str = None,
                user_agent: str = None) -> SignatureRequest:
        requirement = self._resolve_token(token)
        request_id = requirement.request_id

        with self.locks.hold(request_id):
            with self._transaction():
                now = self.clock()
                request = self._lock_request(request_id)
                signers = self._load_signers(request_id)
                requirement = next(s for s in signers if s.id == requirement.id)
                self._check_token_usable(request, requirement, now)
                if not self._is_turn(request, requirement, signers):
                    raise NotYourTurn()

                if not self._transition_requirement(
                    requirement, OPEN_SIGNER_STATUSES,
                    {"status": SignerStatus.DECLINED, "declined_at": now, "decline_reason": reason},
                ):
                    raise AlreadyDeclined()
                if not self._transition_request(
                    request, (SignatureRequestStatus.IN_PROGRESS,),
                    {"status": SignatureRequestStatus.DECLINED, "active_document_id": None},
                ):
                    raise ConcurrencyConflict()

                self.proposals.set_document_status(request.document_id, ProposalStatus.REJECTED)
                self._audit(
                    request, "SIGNATURE_DECLINED", actor=requirement.signer_email,
                    ip_address=ip_address, user_agent=user_agent,
                    metadata={"requirement_id": requirement.id, "reason": reason},
                )

                document = self._document(request.document_id)
                requester = self.db.get(User, request.created_by_id)
                if requester:
                    self.outbox.enqueue(
                        f"declined notification for user {requester.id}",
                        self._deliver_in_app,
                        self.notifications.create_signature_declined_notification,
                        user_id=requester.id,
                        signer_name=requirement.signer_name,
                        document_title=document.title,
                        document_id=document.id,
                    )
                    self.outbox.enqueue(
                        f"declined email to {requester.email}",
                        self.dispatcher.send_signature_declined_email,
                        recipient_email=requester.email,
                        recipient_name=requester.full_name,
                        document_title=document.title,
                        signer_name=requirement.signer_name,
                        reason=reason,
                    )

        logger.info("Signature request %s declined by requirement %s", request_id, requirement.id)
        return request

    # ------------------------------------------------------------------
    # Management operations
    # ------------------------------------------------------------------

    def get_request(self, request_id: int, actor_id: int) -> SignatureRequest:
        request = self.db.get(SignatureRequest, request_id)
        if request is None:
            raise RequestNotFound()
        self._require_member(self._document(request.document_id), actor_id)
        return request

    def list_requests_for_document(self, document_id: int, actor_id: int) -> List[SignatureRequest]:
        self._require_member(self._document(document_id), actor_id)
        return (
            self.db.query(SignatureRequest)
            .filter(SignatureRequest.document_id == document_id)
            .order_by(SignatureRequest.created_at.desc(), SignatureRequest.id.desc())
            .all()
        )

    def list_audit_events(self, request_id: int, actor_id: int) -> List[SignatureAuditEvent]:
        self.get_request(request_id, actor_id)
        return (
            self.db.query(SignatureAuditEvent)
            .filter(SignatureAuditEvent.request_id == request_id)
            .order_by(SignatureAuditEvent.created_at.asc(), SignatureAuditEvent.id.asc())
            .all()
        )

    def get_certificate(self, request_id: int, actor_id: int) -> CompletionCertificate:
        request = self.get_request(request_id, actor_id)
        if request.certificate is None:
            raise CertificateNotAvailable()
        return request.certificate

    def verify_certificate(self, request_id: int, actor_id: int) -> bool:
        return self.certificates.verify(self.get_certificate(request_id, actor_id))

    def cancel(self, request_id: int, actor_id: int, ip_address: str = None,
               user_agent: str = None) -> SignatureRequest:
        with self.locks.hold(request_id):
            with self._transaction():
                request = self._lock_request(request_id)
                if request.created_by_id != actor_id:
                    self._require_member(self._document(request.document_id), actor_id, "manage")

                if request.status == SignatureRequestStatus.COMPLETED:
                    raise InvalidRequestState("Cannot cancel a completed signature request")
                if request.status not in ACTIVE_REQUEST_STATUSES:
                    raise InvalidRequestState(
                        f"Cannot cancel a signature request in {request.status.value} status"
                    )

                restore_status = ProposalStatus(request.document_status_before)
                if not self._transition_request(
                    request, ACTIVE_REQUEST_STATUSES,
                    {
                        "status": SignatureRequestStatus.CANCELLED,
                        "cancelled_at": self.clock(),
                        "active_document_id": None,
                    },
                ):
                    raise ConcurrencyConflict()

                self.proposals.set_document_status(request.document_id, restore_status)
                self._audit(
                    request, "SIGNATURE_REQUEST_CANCELLED", actor=f"user:{actor_id}",
                    ip_address=ip_address, user_agent=user_agent,
                )

        logger.info("Signature request %s cancelled by user %s", request_id, actor_id)
        return request

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    def _remind(self, request: SignatureRequest, actor: str, now: datetime = None) -> int:
        if request.status != SignatureRequestStatus.IN_PROGRESS:
            raise InvalidRequestState(
                f"Cannot send reminders for a signature request in {request.status.value} status"
            )
        targets = remindable_signers(self._load_signers(request.id))
        if not targets:
            raise NoPendingSigners()

        document = self._document(request.document_id)
        for signer in targets:
            self.outbox.enqueue(
                f"reminder email to requirement {signer.id}",
                self.dispatcher.send_signature_reminder_email,
                signer_email=signer.signer_email,
                signer_name=signer.signer_name,
                document_title=document.title,
                token=signer.auth_token,
            )
        request.last_reminder_sent = now or self.clock()
        self._audit(request, "REMINDER_SENT", actor=actor, metadata={"reminders_sent": len(targets)})
        return len(targets)

    def send_reminder(self, request_id: int, actor_id: int) -> int:
        with self.locks.hold(request_id):
            with self._transaction():
                request = self._lock_request(request_id)
                self._require_member(self._document(request.document_id), actor_id)
                sent = self._remind(request, actor=f"user:{actor_id}")

        logger.info("Sent %d reminder(s) for signature request %s", sent, request_id)
        return sent

    def run_scheduled_reminders(self, now: datetime = None) -> int:
        """Remind every request whose schedule says a reminder is due.
        Returns the number of requests reminded."""
        now = now or self.clock()
        due_ids = [r.id for r in ReminderScheduler(self.db).due_for_reminder(now)]
        reminded = 0
        for request_id in due_ids:
            try:
                with self.locks.hold(request_id):
                    with self._transaction():
                        request = self._lock_request(request_id)
                        if latest_due_moment(request, now) is None:
                            continue
                        self._remind(request, actor=SYSTEM_REMINDER_ACTOR, now=now)
                reminded += 1
            except SignatureWorkflowError as e:
                logger.warning("Scheduled reminder skipped for request %s: %s", request_id, e.detail)
        if reminded:
            logger.info("Scheduled reminders sent for %d request(s)", reminded)
        return reminded
