from .proposal_collaborator import (
    DocumentSnapshot,
    ProposalCollaborator,
    SqlProposalCollaborator,
)

__all__ = ['DocumentSnapshot', 'ProposalCollaborator', 'SqlProposalCollaborator']
