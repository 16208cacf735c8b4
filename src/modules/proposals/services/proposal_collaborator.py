"""
Narrow boundary between the signature engine and proposal storage.

The engine never touches the ``proposals`` or ``organization_members``
tables directly; it goes through a ``ProposalCollaborator``.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from modules.organizations.models import OrganizationMember, OrganizationRole, User
from modules.organizations.services.permission import can_perform_action
from modules.proposals.models.proposal import Proposal, ProposalStatus


class DocumentAccessError(Exception):
    """Raised when a document is missing or the actor may not use it."""

    def __init__(self, message: str, not_found: bool = False):
        super().__init__(message)
        self.not_found = not_found


@dataclass(frozen=True)
class DocumentSnapshot:
    id: int
    title: str
    content: str
    status: ProposalStatus
    org_id: int
    organization_name: str
    creator_id: int
    creator_name: str
    creator_email: str


class ProposalCollaborator:
    """Interface consumed by the signature engine."""

    def get_document_for_signature(self, document_id: int, actor_id: int) -> DocumentSnapshot:
        raise NotImplementedError

    def get_document(self, document_id: int) -> DocumentSnapshot:
        raise NotImplementedError

    def has_active_signature_request(self, document_id: int) -> bool:
        raise NotImplementedError

    def set_document_status(self, document_id: int, status: ProposalStatus) -> None:
        raise NotImplementedError

    def get_member_role(self, org_id: int, user_id: int) -> Optional[OrganizationRole]:
        raise NotImplementedError

    def get_user_by_email(self, email: str) -> Optional[User]:
        raise NotImplementedError


class SqlProposalCollaborator(ProposalCollaborator):
    """Proposal collaborator sharing the caller's session, so status
    updates commit or roll back together with the signature transition."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def _load(self, document_id: int) -> Proposal:
        proposal = self.db.get(Proposal, document_id)
        if not proposal:
            raise DocumentAccessError("Proposal not found", not_found=True)
        return proposal

    @staticmethod
    def _snapshot(proposal: Proposal) -> DocumentSnapshot:
        creator = proposal.creator
        return DocumentSnapshot(
            id=proposal.id,
            title=proposal.title,
            content=proposal.content or "",
            status=proposal.status,
            org_id=proposal.organization_id,
            organization_name=proposal.organization.name if proposal.organization else "",
            creator_id=proposal.creator_id,
            creator_name=creator.full_name if creator else "",
            creator_email=creator.email if creator else "",
        )

    def get_document_for_signature(self, document_id: int, actor_id: int) -> DocumentSnapshot:
        proposal = self._load(document_id)
        role = self.get_member_role(proposal.organization_id, actor_id)
        if not can_perform_action(role, "edit"):
            raise DocumentAccessError("You do not have edit rights on this proposal")
        return self._snapshot(proposal)

    def get_document(self, document_id: int) -> DocumentSnapshot:
        return self._snapshot(self._load(document_id))

    def has_active_signature_request(self, document_id: int) -> bool:
        # Imported here: signatures depends on proposals, not the reverse.
        from modules.signatures.models.signature_request import (
            SignatureRequest, ACTIVE_REQUEST_STATUSES,
        )
        return (
            self.db.query(SignatureRequest.id)
            .filter(
                SignatureRequest.document_id == document_id,
                SignatureRequest.status.in_(ACTIVE_REQUEST_STATUSES),
            )
            .first()
            is not None
        )

    def set_document_status(self, document_id: int, status: ProposalStatus) -> None:
        proposal = self._load(document_id)
        proposal.status = status

    def get_member_role(self, org_id: int, user_id: int) -> Optional[OrganizationRole]:
        membership = (
            self.db.query(OrganizationMember)
            .filter(
                OrganizationMember.organization_id == org_id,
                OrganizationMember.user_id == user_id,
            )
            .first()
        )
        return membership.role if membership else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(func.lower(User.email) == email.lower()).first()
