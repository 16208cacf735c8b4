from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Enum, ForeignKey, Boolean, JSON, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime
from enum import Enum as PyEnum
from database import Base


class SignatureType(PyEnum):
    SIMPLE = "SIMPLE"
    WET_INK_EQUIVALENT = "WET_INK_EQUIVALENT"


class SigningOrder(PyEnum):
    SEQUENTIAL = "SEQUENTIAL"
    PARALLEL = "PARALLEL"


class SignatureRequestStatus(PyEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    DECLINED = "DECLINED"
    CANCELLED = "CANCELLED"


class SignerStatus(PyEnum):
    PENDING = "PENDING"
    SENT = "SENT"
    VIEWED = "VIEWED"
    SIGNED = "SIGNED"
    DECLINED = "DECLINED"


class AuthMethod(PyEnum):
    EMAIL_LINK = "EMAIL_LINK"
    SMS = "SMS"
    ID_VERIFICATION = "ID_VERIFICATION"


ACTIVE_REQUEST_STATUSES = (SignatureRequestStatus.PENDING, SignatureRequestStatus.IN_PROGRESS)
OPEN_SIGNER_STATUSES = (SignerStatus.PENDING, SignerStatus.SENT, SignerStatus.VIEWED)
NOTIFIED_SIGNER_STATUSES = (SignerStatus.SENT, SignerStatus.VIEWED)


class SignatureRequest(Base):
    __tablename__ = 'signature_requests'

    id = Column(Integer, primary_key=True)
    document_id = Column(Integer, ForeignKey('proposals.id'), nullable=False, index=True)
    # Set to document_id only while the request is PENDING/IN_PROGRESS;
    # the unique constraint makes "one active request per document" atomic.
    active_document_id = Column(Integer, unique=True, nullable=True)

    signature_type = Column(Enum(SignatureType), nullable=False, default=SignatureType.SIMPLE)
    signing_order = Column(Enum(SigningOrder), nullable=False, default=SigningOrder.PARALLEL)
    status = Column(Enum(SignatureRequestStatus), nullable=False, default=SignatureRequestStatus.PENDING)

    document_hash = Column(String(64), nullable=False)
    document_status_before = Column(String(32), nullable=False)

    created_by_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    last_reminder_sent = Column(DateTime, nullable=True)

    certificate_id = Column(String(32), nullable=True)
    certificate_url = Column(String(255), nullable=True)
    integrity_digest = Column(String(64), nullable=True)

    integrity_review_required = Column(Boolean, nullable=False, default=False)
    integrity_flagged_at = Column(DateTime, nullable=True)

    signers = relationship(
        "SignatureRequirement",
        back_populates="request",
        order_by="[SignatureRequirement.signing_order, SignatureRequirement.id]",
    )
    reminder_schedule = relationship("ReminderSchedule", back_populates="request", uselist=False)
    certificate = relationship("CompletionCertificate", back_populates="request", uselist=False)
    created_by = relationship("User")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_REQUEST_STATUSES

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class SignatureRequirement(Base):
    __tablename__ = 'signature_requirements'
    __table_args__ = (UniqueConstraint('request_id', 'signer_email', name='uq_requirement_signer'),)

    id = Column(Integer, primary_key=True)
    request_id = Column(Integer, ForeignKey('signature_requests.id'), nullable=False, index=True)
    signer_email = Column(String, nullable=False)
    signer_name = Column(String(100), nullable=False)
    signing_order = Column(Integer, nullable=False, default=1)
    auth_method = Column(Enum(AuthMethod), nullable=False, default=AuthMethod.EMAIL_LINK)
    status = Column(Enum(SignerStatus), nullable=False, default=SignerStatus.PENDING)
    auth_token = Column(String(64), unique=True, nullable=False, index=True)

    sent_at = Column(DateTime, nullable=True)
    viewed_at = Column(DateTime, nullable=True)
    signed_at = Column(DateTime, nullable=True)
    declined_at = Column(DateTime, nullable=True)
    decline_reason = Column(String(500), nullable=True)

    request = relationship("SignatureRequest", back_populates="signers")

    @property
    def is_terminal(self) -> bool:
        return self.status in (SignerStatus.SIGNED, SignerStatus.DECLINED)


class ReminderSchedule(Base):
    __tablename__ = 'reminder_schedules'

    id = Column(Integer, primary_key=True)
    request_id = Column(Integer, ForeignKey('signature_requests.id'), nullable=False, unique=True)
    reminder_days = Column(JSON, nullable=False, default=list)
    final_reminder_hours_before_expiry = Column(Integer, nullable=False, default=24)

    request = relationship("SignatureRequest", back_populates="reminder_schedule")


class SignatureAuditEvent(Base):
    __tablename__ = 'signature_audit_events'

    id = Column(Integer, primary_key=True)
    request_id = Column(Integer, ForeignKey('signature_requests.id'), nullable=False, index=True)
    action = Column(String(64), nullable=False)
    actor = Column(String, nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    event_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
