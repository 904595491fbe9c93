"""Proposal persistence layer.

``ProposalStore`` is the interface the validator and the review service talk
to. The in-memory implementation guards every write with a lock so review
transitions behave as compare-and-set.
"""
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any
import asyncio
import structlog
from .models import Proposal, ProposalFilters, ProposalStatus
from ..errors import ProposalNotFoundError, ProposalStateConflictError

log = structlog.get_logger()


class ProposalStore(ABC):

    @abstractmethod
    async def create(self, proposal: Proposal, idempotency_key: str | None = None) -> tuple[Proposal, bool]:
        """
        Insert a proposal.

        Args:
            proposal: Proposal to insert
            idempotency_key: Dedupe key; a repeated key returns the first proposal

        Returns:
            (proposal, created) where created is False for a repeated key
        """
        pass

    @abstractmethod
    async def get(self, proposal_id: str) -> Proposal | None:
        pass

    @abstractmethod
    async def list(self, filters: ProposalFilters) -> list[Proposal]:
        """Matching proposals, newest first."""
        pass

    @abstractmethod
    async def transition(
        self,
        proposal_id: str,
        from_status: ProposalStatus,
        to_status: ProposalStatus,
        **changes: Any,
    ) -> Proposal:
        """
        Move a proposal from one status to another atomically.

        Raises:
            ProposalNotFoundError: No such proposal
            ProposalStateConflictError: The proposal is not in ``from_status``
        """
        pass

    @abstractmethod
    async def count(self, status: ProposalStatus | None = None) -> int:
        pass


class InMemoryProposalStore(ProposalStore):
    """In-memory proposal storage."""

    def __init__(self):
        self._proposals: dict[str, Proposal] = {}
        self._idempotency: dict[str, str] = {}
        self._lock = asyncio.Lock()
        log.info("proposals.persistence.initialized", backend="memory")

    async def create(self, proposal: Proposal, idempotency_key: str | None = None) -> tuple[Proposal, bool]:
        async with self._lock:
            if idempotency_key is not None and idempotency_key in self._idempotency:
                existing = self._proposals[self._idempotency[idempotency_key]]
                log.info("proposal.duplicate", proposal_id=existing.id, idempotency_key=idempotency_key)
                return existing, False

            self._proposals[proposal.id] = proposal
            if idempotency_key is not None:
                self._idempotency[idempotency_key] = proposal.id

        log.info(
            "proposal.saved",
            proposal_id=proposal.id,
            workspace_id=proposal.workspace_id,
            target_type=proposal.target_type,
            target_id=proposal.target_id,
        )
        return proposal, True

    async def get(self, proposal_id: str) -> Proposal | None:
        return self._proposals.get(proposal_id)

    async def list(self, filters: ProposalFilters) -> list[Proposal]:
        matched = [p for p in self._proposals.values() if filters.matches(p)]
        matched.sort(key=lambda p: p.created_at, reverse=True)
        return matched[:filters.limit]

    async def transition(
        self,
        proposal_id: str,
        from_status: ProposalStatus,
        to_status: ProposalStatus,
        **changes: Any,
    ) -> Proposal:
        async with self._lock:
            current = self._proposals.get(proposal_id)
            if current is None:
                raise ProposalNotFoundError(proposal_id)
            if current.status != from_status:
                raise ProposalStateConflictError(proposal_id, current.status, ProposalStatus(to_status).value)

            updated = current.model_copy(
                update={
                    **changes,
                    "status": ProposalStatus(to_status).value,
                    "updated_at": datetime.now(timezone.utc),
                }
            )
            self._proposals[proposal_id] = updated

        log.info(
            "proposal.transitioned",
            proposal_id=proposal_id,
            from_status=ProposalStatus(from_status).value,
            to_status=updated.status,
        )
        return updated

    async def count(self, status: ProposalStatus | None = None) -> int:
        if status is None:
            return len(self._proposals)
        return sum(1 for p in self._proposals.values() if p.status == status)
