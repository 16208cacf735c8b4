from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, PositiveInt, field_validator, model_validator

from modules.signatures.models.signature_request import (
    AuthMethod,
    SignatureRequestStatus,
    SignatureType,
    SignerStatus,
    SigningOrder,
)

MAX_SIGNERS = 20


class SignerIn(BaseModel):
    signer_email: EmailStr
    signer_name: str = Field(..., min_length=1, max_length=100)
    signing_order: Optional[PositiveInt] = None
    auth_method: AuthMethod = AuthMethod.EMAIL_LINK

    @field_validator("signer_email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("signer_name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("signer_name must not be blank")
        return value


class SignatureRequestCreate(BaseModel):
    proposal_id: int
    signature_type: SignatureType = SignatureType.SIMPLE
    signing_order: SigningOrder = SigningOrder.PARALLEL
    signers: List[SignerIn] = Field(..., min_length=1, max_length=MAX_SIGNERS)
    reminder_days: Optional[List[PositiveInt]] = None
    expiration_days: Optional[PositiveInt] = None

    @model_validator(mode="after")
    def check_signers(self):
        emails = [s.signer_email for s in self.signers]
        if len(set(emails)) != len(emails):
            raise ValueError("Signer emails must be unique")

        explicit = [s.signing_order for s in self.signers if s.signing_order is not None]
        if self.signing_order == SigningOrder.SEQUENTIAL and explicit:
            if len(explicit) != len(self.signers):
                raise ValueError("Either every signer has a signing_order or none does")
            if sorted(explicit) != list(range(1, len(self.signers) + 1)):
                raise ValueError("signing_order values must be exactly 1..N without gaps or repeats")

        if self.reminder_days and not self.expiration_days:
            raise ValueError("reminder_days requires expiration_days")
        return self

    def signer_positions(self) -> List[int]:
        """Sequence position per signer, aligned with ``signers``."""
        if self.signing_order == SigningOrder.PARALLEL:
            return [1] * len(self.signers)
        if self.signers[0].signing_order is not None:
            return [s.signing_order for s in self.signers]
        return list(range(1, len(self.signers) + 1))


class SignDocumentRequest(BaseModel):
    signature_image: Optional[str] = None  # base64 image
    geo_location: Optional[str] = Field(None, max_length=255)


class DeclineSignatureRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class SignerResponse(BaseModel):
    id: int
    signer_email: str
    signer_name: str
    signing_order: int
    auth_method: AuthMethod
    status: SignerStatus
    sent_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    decline_reason: Optional[str] = None

    model_config = {"from_attributes": True}


class ReminderScheduleResponse(BaseModel):
    reminder_days: List[int]
    final_reminder_hours_before_expiry: int

    model_config = {"from_attributes": True}


class SignatureRequestResponse(BaseModel):
    id: int
    document_id: int
    signature_type: SignatureType
    signing_order: SigningOrder
    status: SignatureRequestStatus
    document_hash: str
    created_by_id: int
    created_at: datetime
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    last_reminder_sent: Optional[datetime] = None
    certificate_id: Optional[str] = None
    certificate_url: Optional[str] = None
    integrity_digest: Optional[str] = None
    integrity_review_required: bool = False
    signers: List[SignerResponse] = []
    reminder_schedule: Optional[ReminderScheduleResponse] = None

    model_config = {"from_attributes": True}


class SignerDocumentResponse(BaseModel):
    id: int
    title: str
    content: str
    organization_name: str
    requester_name: str


class SignerViewResponse(BaseModel):
    request_id: int
    request_status: SignatureRequestStatus
    signature_type: SignatureType
    signing_order: SigningOrder
    expires_at: Optional[datetime] = None
    signer: SignerResponse
    document: SignerDocumentResponse


class SignResponse(BaseModel):
    message: str
    signature_id: int
    signed_at: datetime
    document_hash: str
    all_signatures_completed: bool


class ReminderResponse(BaseModel):
    message: str
    reminders_sent: int


class MessageResponse(BaseModel):
    message: str


class AuditEventResponse(BaseModel):
    id: int
    action: str
    actor: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    event_metadata: Optional[dict] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class CertificateResponse(BaseModel):
    id: str
    request_id: int
    url: str
    integrity_digest: str
    legal_statement: str
    completed_at: datetime
    payload: dict

    model_config = {"from_attributes": True}


class CertificateVerificationResponse(BaseModel):
    certificate_id: str
    integrity_digest: str
    valid: bool
