from .errors import SignatureWorkflowError
from .signature_request_service import (
    SignatureCapture,
    SignatureRequestService,
    SignResult,
    TokenView,
)

__all__ = ['SignatureWorkflowError', 'SignatureCapture', 'SignatureRequestService', 'SignResult', 'TokenView']
