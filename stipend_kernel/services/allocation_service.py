"""
AllocationService -- balanced fund transfers between ledger owners.

Responsibility:
    Executes practice-to-practice allocations, inter-portfolio allocations
    into a portfolio's suspense account, and distributions out of suspense
    to the portfolio's practices.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Conservation: every allocation's ledger entries sum to exactly zero.
      Legs are rounded to cents and donor and recipient totals must be equal.
    - No negative spend: each donor's live balance is read under its row
      lock, with every touched practice locked in ascending id order, before
      any entry is written.
    - All-or-nothing: the allocation row, its lines, its entries and the
      ``completed`` status are flushed in one transaction.  Any failure
      before that leaves nothing behind.

Failure modes:
    - ValidationError: non-positive amounts, mismatched totals, a practice on
      both sides, unknown or foreign recipients, zero total.
    - InsufficientBalanceError: donor or suspense balance too small.
    - ActorNotPermittedError: PSM donating from another portfolio, or a
      distribution by someone who does not lead the portfolio.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select

from stipend_kernel.db.types import ZERO, money_from_str, round_money
from stipend_kernel.domain.dtos import AllocationDTO, AllocationLeg
from stipend_kernel.domain.ledger import LedgerOwner, NewLedgerEntry, TransactionType
from stipend_kernel.domain.roles import Actor, Role
from stipend_kernel.exceptions import (
    ActorNotPermittedError,
    AllocationNotFoundError,
    InsufficientBalanceError,
    ValidationError,
)
from stipend_kernel.logging_config import LogContext, get_logger
from stipend_kernel.models.allocation import (
    Allocation,
    AllocationKind,
    AllocationLine,
    AllocationSide,
    AllocationStatus,
)
from stipend_kernel.models.practice import Practice
from stipend_kernel.selectors.balance_selector import BalanceSelector
from stipend_kernel.services.base import BaseService, translates_lock_failures
from stipend_kernel.services.ledger_service import LedgerService
from stipend_kernel.services.notifications import (
    NotificationEvent,
    NotificationSink,
    notify_safely,
)

logger = get_logger("services.allocation")


def _legs(pairs: Iterable, side: str) -> list[AllocationLeg]:
    """Accept AllocationLeg objects or (practice_id, amount) tuples."""
    legs = []
    for pair in pairs:
        if isinstance(pair, AllocationLeg):
            practice_id, amount = pair.practice_id, pair.amount
        else:
            practice_id, amount = pair
        try:
            amount = money_from_str(amount)
        except ValueError as exc:
            raise ValidationError(f"{side} amount: {exc}", field=side) from exc
        legs.append(AllocationLeg(practice_id, round_money(amount)))
    return legs


class AllocationService(BaseService):
    """Balanced transfers.  Every public method flushes, never commits."""

    def __init__(
        self,
        session,
        config=None,
        clock=None,
        notifier: NotificationSink | None = None,
    ):
        super().__init__(session, config, clock)
        self._notifier = notifier
        self._ledger = LedgerService(session, self._config, self._clock)

    # -- validation ------------------------------------------------------

    def _check_positive(self, legs: Sequence[AllocationLeg], side: str) -> None:
        if not legs:
            raise ValidationError(f"At least one {side} is required", field=side)
        bad = [str(leg.practice_id) for leg in legs if leg.amount <= ZERO]
        if bad:
            raise ValidationError(
                [f"{side} amount for {p} must be greater than zero" for p in bad], field=side
            )
        ids = [leg.practice_id for leg in legs]
        if len(set(ids)) != len(ids):
            raise ValidationError(f"A practice appears twice among the {side}s", field=side)

    def _check_donor_balances(
        self, donors: Sequence[AllocationLeg], locked: dict[UUID, Practice], actor: Actor
    ) -> None:
        balances = BalanceSelector(self.session, self._config)
        for leg in donors:
            practice = locked[leg.practice_id]
            if (
                actor.role == Role.PSM
                and actor.portfolio_id is not None
                and practice.portfolio_id != actor.portfolio_id
            ):
                raise ActorNotPermittedError(
                    str(actor.id), "allocate", f"practice {practice.key} is in another portfolio"
                )
            available = balances.compute_balance(leg.practice_id).available_balance
            if leg.amount > available:
                logger.warning(
                    "allocation_insufficient_balance",
                    extra={
                        "practice_id": str(leg.practice_id),
                        "available": str(available),
                        "requested": str(leg.amount),
                    },
                )
                raise InsufficientBalanceError(
                    str(leg.practice_id), str(available), str(leg.amount)
                )

    def _check_total(self, total: Decimal) -> None:
        if total <= ZERO:
            raise ValidationError("Allocation total must be greater than zero", field="total")

    # -- writing ---------------------------------------------------------

    def _open(
        self,
        kind: AllocationKind,
        actor: Actor,
        total: Decimal,
        comment: str | None,
        recipient_portfolio_id: UUID | None = None,
        source_portfolio_id: UUID | None = None,
    ) -> Allocation:
        current = self._current_period()
        allocation = Allocation(
            kind=kind.value,
            status=AllocationStatus.PENDING.value,
            donor_actor_id=actor.id,
            total_amount=total,
            pay_period=current.number,
            year=current.year,
            recipient_portfolio_id=recipient_portfolio_id,
            source_portfolio_id=source_portfolio_id,
            comment=(comment or "").strip() or None,
            created_by_id=actor.id,
        )
        self.session.add(allocation)
        self.session.flush()
        return allocation

    def _line(
        self,
        allocation: Allocation,
        side: AllocationSide,
        amount: Decimal,
        actor: Actor,
        practice_id: UUID | None = None,
        portfolio_id: UUID | None = None,
    ) -> None:
        allocation.lines.append(
            AllocationLine(
                line_no=len(allocation.lines) + 1,
                side=side.value,
                practice_id=practice_id,
                portfolio_id=portfolio_id,
                amount=amount,
                created_by_id=actor.id,
            )
        )
        is_donor = side == AllocationSide.DONOR
        owner = (
            LedgerOwner.practice(practice_id)
            if practice_id is not None
            else LedgerOwner.portfolio(portfolio_id)
        )
        self._ledger.append(
            NewLedgerEntry(
                owner=owner,
                pay_period=allocation.pay_period,
                year=allocation.year,
                transaction_type=(
                    TransactionType.ALLOCATION_OUT if is_donor else TransactionType.ALLOCATION_IN
                ),
                amount=-amount if is_donor else amount,
                description=f"{allocation.kind} allocation {allocation.id}",
                related_allocation_id=allocation.id,
            ),
            actor.id,
        )

    def _complete(self, allocation: Allocation, actor: Actor, event: str) -> AllocationDTO:
        allocation.status = AllocationStatus.COMPLETED.value
        allocation.completed_at = self._clock.now()
        allocation.updated_by_id = actor.id
        self.session.flush()

        logger.info(
            "allocation_completed",
            extra={
                "allocation_id": str(allocation.id),
                "kind": allocation.kind,
                "total": str(allocation.total_amount),
                "lines": len(allocation.lines),
            },
        )
        notify_safely(
            self._notifier,
            event,
            f"{allocation.kind} allocation of {allocation.total_amount} completed",
            {"allocation_id": str(allocation.id), "kind": allocation.kind},
        )
        return allocation.to_dto()

    # -- operations ------------------------------------------------------

    @translates_lock_failures("allocate_practice_to_practice")
    def allocate_practice_to_practice(
        self,
        actor: Actor,
        donors: Iterable,
        recipients: Iterable,
        comment: str | None = None,
    ) -> AllocationDTO:
        """
        Move funds from donor practices to recipient practices.

        Validation order: donor amounts, donor live balances, recipient
        amounts, matching totals, no practice on both sides.
        """
        donor_legs = _legs(donors, "donor")
        recipient_legs = _legs(recipients, "recipient")

        self._check_positive(donor_legs, "donor")
        locked = self._lock_practices(
            [leg.practice_id for leg in donor_legs + recipient_legs]
        )
        self._check_donor_balances(donor_legs, locked, actor)
        self._check_positive(recipient_legs, "recipient")

        donor_total = sum((leg.amount for leg in donor_legs), ZERO)
        recipient_total = sum((leg.amount for leg in recipient_legs), ZERO)
        # Legs are rounded to cents, so matching within a cent means equal.
        if donor_total != recipient_total:
            raise ValidationError(
                f"Donor total {donor_total} does not match recipient total {recipient_total}",
                field="recipients",
            )
        overlap = {leg.practice_id for leg in donor_legs} & {
            leg.practice_id for leg in recipient_legs
        }
        if overlap:
            raise ValidationError(
                [
                    f"Practice {p} cannot be both donor and recipient"
                    for p in sorted(overlap, key=str)
                ],
                field="recipients",
            )
        self._check_total(donor_total)

        allocation = self._open(AllocationKind.PRACTICE_TO_PRACTICE, actor, donor_total, comment)
        with LogContext.bind(actor_id=actor.id, allocation_id=allocation.id):
            for leg in donor_legs:
                self._line(
                    allocation, AllocationSide.DONOR, leg.amount, actor, practice_id=leg.practice_id
                )
            for leg in recipient_legs:
                self._line(
                    allocation,
                    AllocationSide.RECIPIENT,
                    leg.amount,
                    actor,
                    practice_id=leg.practice_id,
                )
            return self._complete(allocation, actor, NotificationEvent.ALLOCATION_COMPLETED)

    @translates_lock_failures("allocate_to_portfolio")
    def allocate_to_portfolio(
        self,
        actor: Actor,
        donors: Iterable,
        recipient_portfolio_id: UUID,
        comment: str | None = None,
    ) -> AllocationDTO:
        """Move funds from donor practices into another portfolio's suspense."""
        donor_legs = _legs(donors, "donor")
        self._check_positive(donor_legs, "donor")
        portfolio = self._get_portfolio(recipient_portfolio_id)
        if not portfolio.is_active:
            raise ValidationError(
                f"Portfolio {portfolio.code} is inactive", field="recipient_portfolio_id"
            )

        locked = self._lock_practices([leg.practice_id for leg in donor_legs])
        self._check_donor_balances(donor_legs, locked, actor)
        inside = [p.key for p in locked.values() if p.portfolio_id == recipient_portfolio_id]
        if inside:
            raise ValidationError(
                [f"Donor {key} already belongs to portfolio {portfolio.code}" for key in inside],
                field="donors",
            )
        total = sum((leg.amount for leg in donor_legs), ZERO)
        self._check_total(total)

        self._lock_portfolio(recipient_portfolio_id)
        allocation = self._open(
            AllocationKind.INTER_PORTFOLIO,
            actor,
            total,
            comment,
            recipient_portfolio_id=recipient_portfolio_id,
        )
        with LogContext.bind(actor_id=actor.id, allocation_id=allocation.id):
            for leg in donor_legs:
                self._line(
                    allocation, AllocationSide.DONOR, leg.amount, actor, practice_id=leg.practice_id
                )
            self._line(
                allocation,
                AllocationSide.RECIPIENT,
                total,
                actor,
                portfolio_id=recipient_portfolio_id,
            )
            return self._complete(allocation, actor, NotificationEvent.ALLOCATION_COMPLETED)

    @translates_lock_failures("distribute_suspense")
    def distribute_suspense(
        self,
        actor: Actor,
        portfolio_id: UUID,
        recipients: Iterable,
        comment: str | None = None,
    ) -> AllocationDTO:
        """
        Pay suspense out to practices of the same portfolio.

        Partial distributions are allowed; the total may not exceed the
        remaining suspense balance.
        """
        leads_it = actor.role == Role.LEAD_PSM and actor.portfolio_id == portfolio_id
        if not (leads_it or actor.is_administrator):
            raise ActorNotPermittedError(
                str(actor.id),
                "distribute suspense",
                "only the portfolio's Lead PSM, Finance or Admin may distribute",
            )

        recipient_legs = _legs(recipients, "recipient")
        self._check_positive(recipient_legs, "recipient")
        portfolio = self._lock_portfolio(portfolio_id)
        locked = self._lock_practices([leg.practice_id for leg in recipient_legs])
        outside = [p.key for p in locked.values() if p.portfolio_id != portfolio_id]
        if outside:
            raise ValidationError(
                [f"Practice {key} is not in portfolio {portfolio.code}" for key in outside],
                field="recipients",
            )
        total = sum((leg.amount for leg in recipient_legs), ZERO)
        self._check_total(total)

        current = self._current_period()
        suspense = BalanceSelector(self.session, self._config).suspense_balance(
            portfolio_id, current.year
        )
        if total > suspense:
            raise InsufficientBalanceError(str(portfolio_id), str(suspense), str(total))

        allocation = self._open(
            AllocationKind.SUSPENSE_DISTRIBUTION,
            actor,
            total,
            comment,
            source_portfolio_id=portfolio_id,
        )
        with LogContext.bind(actor_id=actor.id, allocation_id=allocation.id):
            self._line(allocation, AllocationSide.DONOR, total, actor, portfolio_id=portfolio_id)
            for leg in recipient_legs:
                self._line(
                    allocation,
                    AllocationSide.RECIPIENT,
                    leg.amount,
                    actor,
                    practice_id=leg.practice_id,
                )
            return self._complete(allocation, actor, NotificationEvent.SUSPENSE_DISTRIBUTED)

    def get_allocation(self, allocation_id: UUID) -> AllocationDTO:
        allocation = self.session.execute(
            select(Allocation).where(Allocation.id == allocation_id)
        ).scalar_one_or_none()
        if allocation is None:
            raise AllocationNotFoundError(str(allocation_id))
        return allocation.to_dto()
