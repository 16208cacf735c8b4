from .proposal import Proposal, ProposalStatus

__all__ = ['Proposal', 'ProposalStatus']
