from .signature_request import (
    ACTIVE_REQUEST_STATUSES,
    NOTIFIED_SIGNER_STATUSES,
    OPEN_SIGNER_STATUSES,
    AuthMethod,
    ReminderSchedule,
    SignatureAuditEvent,
    SignatureRequest,
    SignatureRequestStatus,
    SignatureRequirement,
    SignatureType,
    SignerStatus,
    SigningOrder,
)
from .signature import Signature
from .certificate import CompletionCertificate

__all__ = [
    'ACTIVE_REQUEST_STATUSES', 'NOTIFIED_SIGNER_STATUSES', 'OPEN_SIGNER_STATUSES',
    'AuthMethod', 'ReminderSchedule', 'SignatureAuditEvent', 'SignatureRequest',
    'SignatureRequestStatus', 'SignatureRequirement', 'SignatureType', 'SignerStatus',
    'SigningOrder', 'Signature', 'CompletionCertificate',
]
