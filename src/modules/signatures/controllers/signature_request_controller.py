# src/modules/signatures/controllers/signature_request_controller.py
from typing import List

from fastapi import APIRouter, Depends, Request, Response, status

from modules.auth.controllers.auth_controller import get_current_user
from modules.organizations.models.user import User
from modules.signatures.dependencies import (
    as_http_error, client_ip, get_signature_service, user_agent,
)
from modules.signatures.schemas.signature_schemas import (
    AuditEventResponse,
    CertificateResponse,
    CertificateVerificationResponse,
    MessageResponse,
    ReminderResponse,
    SignatureRequestCreate,
    SignatureRequestResponse,
)
from modules.signatures.services.certificate_service import CertificateService
from modules.signatures.services.errors import SignatureWorkflowError
from modules.signatures.services.signature_request_service import SignatureRequestService

router = APIRouter(tags=["signature-requests"])


@router.post("/signature-requests", response_model=SignatureRequestResponse,
             status_code=status.HTTP_201_CREATED)
def create_signature_request(
    payload: SignatureRequestCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: SignatureRequestService = Depends(get_signature_service),
):
    """Create a signature request and email the first wave of signers."""
    try:
        return service.create_request(payload, current_user.id, client_ip(request), user_agent(request))
    except SignatureWorkflowError as e:
        raise as_http_error(e)


@router.get("/signature-requests/{request_id}", response_model=SignatureRequestResponse)
def get_signature_request(
    request_id: int,
    current_user: User = Depends(get_current_user),
    service: SignatureRequestService = Depends(get_signature_service),
):
    try:
        return service.get_request(request_id, current_user.id)
    except SignatureWorkflowError as e:
        raise as_http_error(e)


@router.get("/proposals/{proposal_id}/signature-requests", response_model=List[SignatureRequestResponse])
def list_proposal_signature_requests(
    proposal_id: int,
    current_user: User = Depends(get_current_user),
    service: SignatureRequestService = Depends(get_signature_service),
):
    try:
        return service.list_requests_for_document(proposal_id, current_user.id)
    except SignatureWorkflowError as e:
        raise as_http_error(e)


@router.post("/signature-requests/{request_id}/remind", response_model=ReminderResponse)
def send_signature_reminder(
    request_id: int,
    current_user: User = Depends(get_current_user),
    service: SignatureRequestService = Depends(get_signature_service),
):
    try:
        sent = service.send_reminder(request_id, current_user.id)
    except SignatureWorkflowError as e:
        raise as_http_error(e)
    return ReminderResponse(message="Reminders sent", reminders_sent=sent)


@router.post("/signature-requests/{request_id}/cancel", response_model=MessageResponse)
def cancel_signature_request(
    request_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: SignatureRequestService = Depends(get_signature_service),
):
    try:
        service.cancel(request_id, current_user.id, client_ip(request), user_agent(request))
    except SignatureWorkflowError as e:
        raise as_http_error(e)
    return MessageResponse(message="Signature request cancelled")


@router.get("/signature-requests/{request_id}/audit", response_model=List[AuditEventResponse])
def list_signature_audit_events(
    request_id: int,
    current_user: User = Depends(get_current_user),
    service: SignatureRequestService = Depends(get_signature_service),
):
    try:
        return service.list_audit_events(request_id, current_user.id)
    except SignatureWorkflowError as e:
        raise as_http_error(e)


@router.get("/signature-requests/{request_id}/certificate", response_model=CertificateResponse)
def get_completion_certificate(
    request_id: int,
    current_user: User = Depends(get_current_user),
    service: SignatureRequestService = Depends(get_signature_service),
):
    try:
        return service.get_certificate(request_id, current_user.id)
    except SignatureWorkflowError as e:
        raise as_http_error(e)


@router.get("/signature-requests/{request_id}/certificate.pdf")
def download_completion_certificate(
    request_id: int,
    current_user: User = Depends(get_current_user),
    service: SignatureRequestService = Depends(get_signature_service),
):
    try:
        certificate = service.get_certificate(request_id, current_user.id)
    except SignatureWorkflowError as e:
        raise as_http_error(e)
    return Response(
        content=CertificateService.render_pdf(certificate),
        media_type="application/pdf",
        headers={
            "Content-Disposition": f"attachment; filename=certificate-{certificate.id}.pdf",
            "X-Integrity-Digest": certificate.integrity_digest,
        },
    )


@router.get("/signature-requests/{request_id}/certificate/verify",
            response_model=CertificateVerificationResponse)
def verify_completion_certificate(
    request_id: int,
    current_user: User = Depends(get_current_user),
    service: SignatureRequestService = Depends(get_signature_service),
):
    try:
        certificate = service.get_certificate(request_id, current_user.id)
        valid = service.certificates.verify(certificate)
    except SignatureWorkflowError as e:
        raise as_http_error(e)
    return CertificateVerificationResponse(
        certificate_id=certificate.id,
        integrity_digest=certificate.integrity_digest,
        valid=valid,
    )
