"""
Module: stipend_kernel.models.stipend_request
Responsibility: ORM persistence for stipend requests and their per-gate
    approval metadata.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - Status is limited to the workflow states (check constraint); the
      transition rules live in domain/workflow.py.
    - amount > 0.
    - A recurring request carries an end period; a one-time request does not.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from stipend_kernel.db.base import TrackedBase, UUIDString
from stipend_kernel.domain.dtos import ApprovalStamp, StipendRequestDTO
from stipend_kernel.domain.workflow import RequestStatus

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in RequestStatus)


class StipendRequest(TrackedBase):
    """A practice's request for stipend funds."""

    __tablename__ = "stipend_requests"

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_stipend_request_status"),
        CheckConstraint("amount > 0", name="ck_stipend_request_positive"),
        CheckConstraint(
            "(request_type = 'recurring') = (end_period IS NOT NULL)",
            name="ck_stipend_request_recurring_end",
        ),
        Index("idx_stipend_request_practice", "practice_id"),
        Index("idx_stipend_request_status", "status"),
    )

    practice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("practices.id"),
        nullable=False,
    )

    requestor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Per period for recurring requests
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    request_type: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(String(4000), nullable=False)
    justification: Mapped[str] = mapped_column(String(4000), nullable=False)

    # Comma-separated staff identifiers, staff_cost_reimbursement only
    staff_emails: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    effective_period: Mapped[int] = mapped_column(Integer, nullable=False)
    effective_year: Mapped[int] = mapped_column(Integer, nullable=False)
    end_period: Mapped[int | None] = mapped_column(Integer, nullable=True)
    end_year: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=RequestStatus.PENDING_PSM.value,
    )

    psm_approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    psm_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    psm_comment: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    lead_psm_approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    lead_psm_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lead_psm_comment: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    finance_approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    finance_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finance_comment: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    rejected_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    def __repr__(self) -> str:
        return f"<StipendRequest {self.id} {self.status} {self.amount}>"

    def stamp_approval(
        self, gate: RequestStatus, approver_id: UUID, at: datetime, comment: str | None
    ) -> None:
        """Record who passed ``gate`` (the status the request was in)."""
        prefix = {
            RequestStatus.PENDING_PSM: "psm",
            RequestStatus.PENDING_LEAD_PSM: "lead_psm",
            RequestStatus.PENDING_FINANCE: "finance",
        }[gate]
        setattr(self, f"{prefix}_approved_by_id", approver_id)
        setattr(self, f"{prefix}_approved_at", at)
        setattr(self, f"{prefix}_comment", comment)

    def _stamp(self, prefix: str) -> ApprovalStamp | None:
        approver = getattr(self, f"{prefix}_approved_by_id")
        if approver is None:
            return None
        return ApprovalStamp(
            approver_id=approver,
            approved_at=getattr(self, f"{prefix}_approved_at"),
            comment=getattr(self, f"{prefix}_comment"),
        )

    def to_dto(self) -> StipendRequestDTO:
        return StipendRequestDTO(
            id=self.id,
            practice_id=self.practice_id,
            requestor_id=self.requestor_id,
            amount=Decimal(self.amount),
            request_type=self.request_type,
            category=self.category,
            description=self.description,
            justification=self.justification,
            effective_period=self.effective_period,
            effective_year=self.effective_year,
            end_period=self.end_period,
            end_year=self.end_year,
            status=self.status,
            staff_emails=self.staff_emails,
            psm_approval=self._stamp("psm"),
            lead_psm_approval=self._stamp("lead_psm"),
            finance_approval=self._stamp("finance"),
            rejected_by_id=self.rejected_by_id,
            rejected_at=self.rejected_at,
            rejection_reason=self.rejection_reason,
        )
