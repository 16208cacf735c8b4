# src/modules/signatures/controllers/signer_controller.py
"""Public endpoints used by signers, authenticated only by their token."""
from fastapi import APIRouter, Depends, Request

from modules.signatures.dependencies import (
    as_http_error, client_ip, get_signature_service, rate_limited, user_agent,
)
from modules.signatures.schemas.signature_schemas import (
    DeclineSignatureRequest,
    MessageResponse,
    SignDocumentRequest,
    SignerDocumentResponse,
    SignerResponse,
    SignerViewResponse,
    SignResponse,
)
from modules.signatures.services.errors import SignatureWorkflowError
from modules.signatures.services.signature_request_service import (
    SignatureCapture,
    SignatureRequestService,
)

router = APIRouter(prefix="/sign", tags=["signing"])


@router.get("/verify/{token}", response_model=SignerViewResponse,
            dependencies=[Depends(rate_limited("verify"))])
def verify_signer_token(
    token: str,
    service: SignatureRequestService = Depends(get_signature_service),
):
    try:
        view = service.verify_token(token)
    except SignatureWorkflowError as e:
        raise as_http_error(e)

    return SignerViewResponse(
        request_id=view.request.id,
        request_status=view.request.status,
        signature_type=view.request.signature_type,
        signing_order=view.request.signing_order,
        expires_at=view.request.expires_at,
        signer=SignerResponse.model_validate(view.requirement),
        document=SignerDocumentResponse(
            id=view.document.id,
            title=view.document.title,
            content=view.document.content,
            organization_name=view.document.organization_name,
            requester_name=view.requester_name,
        ),
    )


@router.post("/{token}", response_model=SignResponse,
             dependencies=[Depends(rate_limited("sign"))])
def sign_document(
    token: str,
    payload: SignDocumentRequest,
    request: Request,
    service: SignatureRequestService = Depends(get_signature_service),
):
    capture = SignatureCapture(
        ip_address=client_ip(request),
        user_agent=user_agent(request),
        signature_image=payload.signature_image,
        geo_location=payload.geo_location,
    )
    try:
        result = service.sign(token, capture)
    except SignatureWorkflowError as e:
        raise as_http_error(e)

    return SignResponse(
        message=(
            "Document signed successfully. All signatures completed!"
            if result.all_signatures_completed
            else "Document signed successfully"
        ),
        signature_id=result.signature.id,
        signed_at=result.signature.signed_at,
        document_hash=result.signature.document_hash,
        all_signatures_completed=result.all_signatures_completed,
    )


@router.post("/{token}/decline", response_model=MessageResponse,
             dependencies=[Depends(rate_limited("decline"))])
def decline_signature(
    token: str,
    payload: DeclineSignatureRequest,
    request: Request,
    service: SignatureRequestService = Depends(get_signature_service),
):
    try:
        service.decline(token, payload.reason, client_ip(request), user_agent(request))
    except SignatureWorkflowError as e:
        raise as_http_error(e)
    return MessageResponse(message="Signature declined")
