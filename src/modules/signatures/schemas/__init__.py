from .signature_schemas import (
    AuditEventResponse, CertificateResponse, CertificateVerificationResponse,
    DeclineSignatureRequest, MessageResponse, ReminderResponse, SignDocumentRequest,
    SignResponse, SignatureRequestCreate, SignatureRequestResponse, SignerIn,
    SignerResponse, SignerViewResponse,
)

__all__ = [
    'AuditEventResponse', 'CertificateResponse', 'CertificateVerificationResponse',
    'DeclineSignatureRequest', 'MessageResponse', 'ReminderResponse', 'SignDocumentRequest',
    'SignResponse', 'SignatureRequestCreate', 'SignatureRequestResponse', 'SignerIn',
    'SignerResponse', 'SignerViewResponse',
]
