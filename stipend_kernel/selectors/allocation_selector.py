"""
Module: stipend_kernel.selectors.allocation_selector
Responsibility: Read-only access to allocations and their lines.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import or_, select

from stipend_kernel.domain.dtos import AllocationDTO
from stipend_kernel.exceptions import AllocationNotFoundError
from stipend_kernel.models.allocation import Allocation, AllocationLine
from stipend_kernel.models.practice import Practice
from stipend_kernel.selectors.base import BaseSelector


class AllocationSelector(BaseSelector):

    def get(self, allocation_id: UUID) -> AllocationDTO:
        allocation = self.session.get(Allocation, allocation_id)
        if allocation is None:
            raise AllocationNotFoundError(str(allocation_id))
        return allocation.to_dto()

    def list_allocations(self, portfolio_id: UUID | None = None) -> list[AllocationDTO]:
        """
        Allocations, oldest first.

        With ``portfolio_id``: those touching the portfolio's suspense
        account or any practice currently in the portfolio.
        """
        query = select(Allocation)
        if portfolio_id is not None:
            touching = (
                select(AllocationLine.allocation_id)
                .outerjoin(Practice, AllocationLine.practice_id == Practice.id)
                .where(
                    or_(
                        AllocationLine.portfolio_id == portfolio_id,
                        Practice.portfolio_id == portfolio_id,
                    )
                )
            )
            query = query.where(Allocation.id.in_(touching))
        rows = self.session.execute(
            query.order_by(Allocation.created_at, Allocation.id)
        ).scalars()
        return [row.to_dto() for row in rows]
