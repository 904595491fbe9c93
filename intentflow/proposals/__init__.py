"""Deferred intents and their human review workflow."""
from .models import Proposal, ProposalFilters, ProposalRequest, ProposalStatus, ReviewResult
from .persistence import InMemoryProposalStore, ProposalStore
from .service import ProposalReviewService, SubmitResult

__all__ = [
    "Proposal",
    "ProposalFilters",
    "ProposalRequest",
    "ProposalStatus",
    "ReviewResult",
    "ProposalStore",
    "InMemoryProposalStore",
    "ProposalReviewService",
    "SubmitResult",
]
