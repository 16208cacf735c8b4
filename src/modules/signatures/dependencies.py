from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from database import get_db
from modules.signatures.services.errors import SignatureWorkflowError
from modules.signatures.services.rate_limiter import RateLimitExceeded
from modules.signatures.services.signature_request_service import SignatureRequestService


def client_ip(request: Request) -> str:
    return request.client.host if request.client else ""


def user_agent(request: Request) -> str:
    return request.headers.get("user-agent", "")


def get_signature_service(request: Request, db: Session = Depends(get_db)) -> SignatureRequestService:
    state = request.app.state
    return SignatureRequestService(
        db,
        dispatcher=getattr(state, "email_dispatcher", None),
        locks=getattr(state, "request_locks", None),
    )


def rate_limited(action: str):
    def dependency(request: Request):
        limiter = getattr(request.app.state, "signer_rate_limiter", None)
        if limiter is None:
            return
        try:
            limiter.hit(f"{client_ip(request)}:{action}")
        except RateLimitExceeded as e:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=str(e),
                headers={"Retry-After": str(e.retry_after)},
            )
    return dependency


def as_http_error(error: SignatureWorkflowError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.detail)
