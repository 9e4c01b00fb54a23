"""
Module: stipend_kernel.selectors.request_selector
Responsibility: Read-only listings of stipend requests: by status,
    practice or portfolio, and the queue awaiting a given actor's gate.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from stipend_kernel.domain.dtos import StipendRequestDTO
from stipend_kernel.domain.roles import Actor, Role
from stipend_kernel.domain.workflow import PENDING_REQUEST_STATUSES, RequestStatus
from stipend_kernel.models.practice import Practice
from stipend_kernel.models.stipend_request import StipendRequest
from stipend_kernel.selectors.base import BaseSelector

# The one status each gating role works on
_GATE_STATUS = {
    Role.PSM: RequestStatus.PENDING_PSM,
    Role.LEAD_PSM: RequestStatus.PENDING_LEAD_PSM,
    Role.FINANCE: RequestStatus.PENDING_FINANCE,
}


class StipendRequestSelector(BaseSelector):

    def list_requests(
        self,
        status: str | None = None,
        practice_id: UUID | None = None,
        portfolio_id: UUID | None = None,
    ) -> list[StipendRequestDTO]:
        """Requests matching every given filter, oldest first."""
        query = select(StipendRequest)
        if status is not None:
            query = query.where(StipendRequest.status == status)
        if practice_id is not None:
            query = query.where(StipendRequest.practice_id == practice_id)
        if portfolio_id is not None:
            query = query.join(Practice, StipendRequest.practice_id == Practice.id).where(
                Practice.portfolio_id == portfolio_id
            )
        rows = self.session.execute(
            query.order_by(StipendRequest.created_at, StipendRequest.id)
        ).scalars()
        return [row.to_dto() for row in rows]

    def pending_for(self, actor: Actor) -> list[StipendRequestDTO]:
        """
        Requests waiting at ``actor``'s gate.

        PSM and Lead PSM see only their own portfolio when they have one.
        Admin sees every pending request.
        """
        if actor.role == Role.ADMIN:
            statuses = [s.value for s in PENDING_REQUEST_STATUSES]
        else:
            statuses = [_GATE_STATUS[actor.role].value]

        query = select(StipendRequest).where(StipendRequest.status.in_(statuses))
        if actor.role in (Role.PSM, Role.LEAD_PSM) and actor.portfolio_id is not None:
            query = query.join(Practice, StipendRequest.practice_id == Practice.id).where(
                Practice.portfolio_id == actor.portfolio_id
            )
        rows = self.session.execute(
            query.order_by(StipendRequest.created_at, StipendRequest.id)
        ).scalars()
        return [row.to_dto() for row in rows]
