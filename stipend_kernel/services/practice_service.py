"""
PracticeService -- administration of the practice registry.

Responsibility:
    Create, deactivate, delete and look up portfolios and practices, and
    move a practice between portfolios while recording the move.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Only Finance or Admin may change the registry.
    - A reassignment appends a PracticeReassignment row and changes only
      the practice's portfolio pointer; ledger history is untouched.
    - Practices and portfolios with history (ledger entries, metrics,
      requests, reassignments) cannot be deleted, only deactivated.

Failure modes:
    - ActorNotPermittedError: caller is not Finance or Admin.
    - ValidationError: bad code, short name, duplicate key, deletion of a
      record with history, reassignment to the same portfolio.
    - PracticeNotFoundError / PortfolioNotFoundError.
"""

from __future__ import annotations

import re
from uuid import UUID

from sqlalchemy import func, or_, select

from stipend_kernel.domain.calendar import PeriodKey
from stipend_kernel.domain.dtos import PortfolioDTO, PracticeDTO, PracticeReassignmentDTO
from stipend_kernel.domain.roles import Actor
from stipend_kernel.exceptions import ActorNotPermittedError, ValidationError
from stipend_kernel.logging_config import get_logger
from stipend_kernel.models.allocation import Allocation, AllocationLine
from stipend_kernel.models.ledger import LedgerEntry
from stipend_kernel.models.metrics import NegativeEarningsCapRequest, PracticeMetrics
from stipend_kernel.models.practice import Portfolio, Practice, PracticeReassignment
from stipend_kernel.models.stipend_request import StipendRequest
from stipend_kernel.services.base import BaseService

logger = get_logger("services.practice")


class PracticeService(BaseService):
    """Registry administration for practices and portfolios."""

    def _require_admin(self, actor: Actor, operation: str) -> None:
        if not actor.is_administrator:
            raise ActorNotPermittedError(
                str(actor.id), operation, f"role {actor.role.value} cannot administer the registry"
            )

    def _check_name(self, name: str) -> str:
        name = (name or "").strip()
        minimum = self._config.validation.practice_name_min_length
        if len(name) < minimum:
            raise ValidationError(
                f"Name must be at least {minimum} characters", field="name"
            )
        return name

    def _count(self, model, *criteria) -> int:
        return self.session.execute(
            select(func.count()).select_from(model).where(*criteria)
        ).scalar_one()

    # -- portfolios ------------------------------------------------------

    def create_portfolio(self, code: str, name: str, actor: Actor) -> PortfolioDTO:
        self._require_admin(actor, "create_portfolio")
        code = (code or "").strip()
        if not re.match(self._config.validation.portfolio_code_pattern, code):
            raise ValidationError(f"Invalid portfolio code {code!r}", field="code")
        name = self._check_name(name)
        if self._count(Portfolio, Portfolio.code == code):
            raise ValidationError(f"Portfolio {code} already exists", field="code")

        portfolio = Portfolio(code=code, name=name, is_active=True, created_by_id=actor.id)
        self.session.add(portfolio)
        self.session.flush()
        logger.info("portfolio_created", extra={"portfolio_id": str(portfolio.id), "code": code})
        return portfolio.to_dto()

    def deactivate_portfolio(self, portfolio_id: UUID, actor: Actor) -> PortfolioDTO:
        self._require_admin(actor, "deactivate_portfolio")
        portfolio = self._get_portfolio(portfolio_id)
        portfolio.is_active = False
        portfolio.updated_by_id = actor.id
        self.session.flush()
        logger.info("portfolio_deactivated", extra={"portfolio_id": str(portfolio_id)})
        return portfolio.to_dto()

    def delete_portfolio(self, portfolio_id: UUID, actor: Actor) -> None:
        self._require_admin(actor, "delete_portfolio")
        portfolio = self._get_portfolio(portfolio_id)

        reasons = []
        if self._count(Practice, Practice.portfolio_id == portfolio_id):
            reasons.append("portfolio still owns practices")
        if self._count(LedgerEntry, LedgerEntry.portfolio_id == portfolio_id):
            reasons.append("portfolio has suspense ledger entries")
        if self._count(
            Allocation,
            or_(
                Allocation.recipient_portfolio_id == portfolio_id,
                Allocation.source_portfolio_id == portfolio_id,
            ),
        ) or self._count(AllocationLine, AllocationLine.portfolio_id == portfolio_id):
            reasons.append("portfolio is referenced by allocations")
        if self._count(
            PracticeReassignment,
            or_(
                PracticeReassignment.from_portfolio_id == portfolio_id,
                PracticeReassignment.to_portfolio_id == portfolio_id,
            ),
        ):
            reasons.append("portfolio appears in reassignment history")
        if reasons:
            raise ValidationError(reasons, field="portfolio_id")

        self.session.delete(portfolio)
        self.session.flush()
        logger.info("portfolio_deleted", extra={"portfolio_id": str(portfolio_id)})

    def list_portfolios(self, active_only: bool = False) -> list[PortfolioDTO]:
        query = select(Portfolio)
        if active_only:
            query = query.where(Portfolio.is_active.is_(True))
        return [p.to_dto() for p in self.session.execute(query.order_by(Portfolio.code)).scalars()]

    # -- practices -------------------------------------------------------

    def create_practice(
        self, key: str, name: str, portfolio_id: UUID, actor: Actor
    ) -> PracticeDTO:
        self._require_admin(actor, "create_practice")
        key = (key or "").strip()
        if not key:
            raise ValidationError("Practice key is required", field="key")
        name = self._check_name(name)
        self._get_portfolio(portfolio_id)
        if self._count(Practice, Practice.key == key):
            raise ValidationError(f"Practice {key!r} already exists", field="key")

        practice = Practice(
            key=key,
            name=name,
            portfolio_id=portfolio_id,
            is_active=True,
            created_by_id=actor.id,
        )
        self.session.add(practice)
        self.session.flush()
        logger.info(
            "practice_created",
            extra={"practice_id": str(practice.id), "practice_key": key},
        )
        return practice.to_dto()

    def deactivate_practice(self, practice_id: UUID, actor: Actor) -> PracticeDTO:
        self._require_admin(actor, "deactivate_practice")
        practice = self._get_practice(practice_id)
        practice.is_active = False
        practice.updated_by_id = actor.id
        self.session.flush()
        logger.info("practice_deactivated", extra={"practice_id": str(practice_id)})
        return practice.to_dto()

    def delete_practice(self, practice_id: UUID, actor: Actor) -> None:
        self._require_admin(actor, "delete_practice")
        practice = self._get_practice(practice_id)

        reasons = []
        if self._count(PracticeMetrics, PracticeMetrics.practice_id == practice_id):
            reasons.append("practice has imported metrics")
        if self._count(LedgerEntry, LedgerEntry.practice_id == practice_id):
            reasons.append("practice has ledger entries")
        if self._count(StipendRequest, StipendRequest.practice_id == practice_id):
            reasons.append("practice has stipend requests")
        if self._count(
            NegativeEarningsCapRequest, NegativeEarningsCapRequest.practice_id == practice_id
        ):
            reasons.append("practice has negative earnings requests")
        if self._count(AllocationLine, AllocationLine.practice_id == practice_id):
            reasons.append("practice is referenced by allocations")
        if self._count(PracticeReassignment, PracticeReassignment.practice_id == practice_id):
            reasons.append("practice has reassignment history")
        if reasons:
            raise ValidationError(reasons, field="practice_id")

        self.session.delete(practice)
        self.session.flush()
        logger.info("practice_deleted", extra={"practice_id": str(practice_id)})

    def get_practice(self, practice_id: UUID) -> PracticeDTO:
        return self._get_practice(practice_id).to_dto()

    def get_practice_by_key(self, key: str) -> PracticeDTO | None:
        practice = self.session.execute(
            select(Practice).where(Practice.key == key)
        ).scalar_one_or_none()
        return practice.to_dto() if practice else None

    def list_practices(
        self, portfolio_id: UUID | None = None, active_only: bool = False
    ) -> list[PracticeDTO]:
        query = select(Practice)
        if portfolio_id is not None:
            query = query.where(Practice.portfolio_id == portfolio_id)
        if active_only:
            query = query.where(Practice.is_active.is_(True))
        return [p.to_dto() for p in self.session.execute(query.order_by(Practice.key)).scalars()]

    # -- reassignment ----------------------------------------------------

    def reassign_practice(
        self,
        practice_id: UUID,
        new_portfolio_id: UUID,
        actor: Actor,
        effective_period: PeriodKey | None = None,
    ) -> PracticeReassignmentDTO:
        """
        Move a practice to another portfolio and record the move.

        ``effective_period`` defaults to the current pay period.
        """
        self._require_admin(actor, "reassign_practice")
        practice = self._lock_practices([practice_id])[practice_id]
        self._get_portfolio(new_portfolio_id)
        if practice.portfolio_id == new_portfolio_id:
            raise ValidationError(
                "Practice already belongs to that portfolio", field="new_portfolio_id"
            )

        if effective_period is None:
            effective_period = self._current_period().key
        self.calendar.validate(effective_period)

        record = PracticeReassignment(
            practice_id=practice_id,
            from_portfolio_id=practice.portfolio_id,
            to_portfolio_id=new_portfolio_id,
            effective_period=effective_period.number,
            effective_year=effective_period.year,
            reassigned_at=self._clock.now(),
            created_by_id=actor.id,
        )
        self.session.add(record)
        practice.portfolio_id = new_portfolio_id
        practice.updated_by_id = actor.id
        self.session.flush()

        logger.info(
            "practice_reassigned",
            extra={
                "practice_id": str(practice_id),
                "from_portfolio_id": str(record.from_portfolio_id),
                "to_portfolio_id": str(new_portfolio_id),
                "effective_period": str(effective_period),
            },
        )
        return record.to_dto()

    def reassignments_for(self, practice_id: UUID) -> list[PracticeReassignmentDTO]:
        """Reassignment history of a practice, newest first."""
        self._get_practice(practice_id)
        rows = self.session.execute(
            select(PracticeReassignment)
            .where(PracticeReassignment.practice_id == practice_id)
            .order_by(PracticeReassignment.reassigned_at.desc())
        ).scalars()
        return [row.to_dto() for row in rows]
