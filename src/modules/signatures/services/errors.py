class SignatureWorkflowError(Exception):
    """Base error for the signature workflow; carries its HTTP mapping."""

    status_code = 400
    retryable = False
    default_detail = "Signature workflow error"

    def __init__(self, detail: str = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


# --- Precondition violations ---

class DocumentNotFound(SignatureWorkflowError):
    status_code = 404
    default_detail = "Proposal not found"


class AccessDenied(SignatureWorkflowError):
    status_code = 403
    default_detail = "Access denied"


class DocumentNotFinalized(SignatureWorkflowError):
    default_detail = "Signature requests can only be created for proposals in FINAL status"


class ActiveRequestExists(SignatureWorkflowError):
    default_detail = (
        "An active signature request already exists for this proposal. "
        "Please cancel it before creating a new one."
    )


class InvalidSignerList(SignatureWorkflowError):
    default_detail = "Invalid signer list"


class RequestNotFound(SignatureWorkflowError):
    status_code = 404
    default_detail = "Signature request not found"


class InvalidRequestState(SignatureWorkflowError):
    default_detail = "Signature request is not in a state that allows this operation"


class NoPendingSigners(SignatureWorkflowError):
    default_detail = "No pending signers to remind"


class CertificateNotAvailable(SignatureWorkflowError):
    status_code = 404
    default_detail = "No completion certificate exists for this signature request"


# --- Token errors (signer-facing, terse) ---

class TokenInvalid(SignatureWorkflowError):
    status_code = 404
    default_detail = "Invalid or expired signature link"


class AlreadySigned(SignatureWorkflowError):
    default_detail = "This document has already been signed"


class AlreadyDeclined(SignatureWorkflowError):
    default_detail = "You have declined to sign this document"


class NotYourTurn(SignatureWorkflowError):
    status_code = 409
    default_detail = "It is not yet your turn to sign this document"


# --- Integrity and concurrency ---

class DocumentIntegrityError(SignatureWorkflowError):
    status_code = 409
    default_detail = (
        "The document has changed since signing began. "
        "The request has been flagged for review."
    )


class ConcurrencyConflict(SignatureWorkflowError):
    status_code = 409
    retryable = True
    default_detail = "The signature request was modified concurrently, please retry"
