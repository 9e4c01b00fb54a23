"""
StipendRequestService -- the stipend request approval workflow.

Responsibility:
    Submit, approve, reject and delete stipend requests, and manage the
    per-period ledger lifecycle of approved requests (mark paid, cancel).

Architecture position:
    Kernel > Services -- imperative shell.  Transition rules come from
    ``domain.workflow.STIPEND_REQUEST_WORKFLOW``; this service applies them.

Invariants enforced:
    - Transitions are looked up in the workflow table before anything is
      written, so a rejected action has no side effects.
    - Final approval re-reads the practice balance under the practice row
      lock and posts one ``committed`` entry per covered period in the
      same transaction as the status change.
    - Period status is derived from ledger entries, never stored.
      Mark-paid appends a releasing ``committed`` credit and a ``paid``
      debit; cancel appends a ``cancelled`` entry reversing the live one.
    - Requests are deletable only while in an early pending state.

Failure modes:
    - ValidationError: bad input on submit, short comment, blank reason,
      period outside the request.
    - InsufficientBalanceError: a fiscal year's share of the commitment exceeds
      that year's available balance.
    - InvalidStateTransitionError: action not allowed from state or role,
      or a period not in the state the action needs.
    - ActorNotPermittedError: deleting someone else's request, or a PSM /
      Lead PSM acting outside their portfolio.
    - StipendRequestNotFoundError, PracticeNotFoundError.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from stipend_kernel.db.types import ZERO, money_from_str
from stipend_kernel.domain.balance import PeriodState, PeriodStatus, derive_period_status
from stipend_kernel.domain.calendar import PeriodKey
from stipend_kernel.domain.dtos import PeriodBreakdownRow, StipendRequestDTO
from stipend_kernel.domain.ledger import LedgerOwner, NewLedgerEntry, TransactionType
from stipend_kernel.domain.roles import Actor, Role
from stipend_kernel.domain.workflow import (
    STIPEND_REQUEST_WORKFLOW,
    RequestAction,
    RequestStatus,
    RequestType,
    StipendCategory,
    resolve_transition,
)
from stipend_kernel.exceptions import (
    ActorNotPermittedError,
    InsufficientBalanceError,
    InvalidStateTransitionError,
    StipendRequestNotFoundError,
    ValidationError,
)
from stipend_kernel.logging_config import LogContext, get_logger
from stipend_kernel.models.practice import Practice
from stipend_kernel.models.stipend_request import StipendRequest
from stipend_kernel.selectors.balance_selector import BalanceSelector
from stipend_kernel.services.base import BaseService, translates_lock_failures
from stipend_kernel.services.ledger_service import LedgerService
from stipend_kernel.services.notifications import (
    NotificationEvent,
    NotificationSink,
    notify_safely,
)
from stipend_kernel.services.pay_period_service import PayPeriodService

logger = get_logger("services.stipend_request")

_PORTFOLIO_SCOPED_ROLES = (Role.PSM, Role.LEAD_PSM)


class StipendRequestService(BaseService):
    """
    Stipend request lifecycle.

    Non-goals:
        - Does NOT commit; every public method flushes within the caller's
          transaction.
        - Does NOT deliver notifications itself; it hands them to the
          injected sink through ``notify_safely``.
    """

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

    # -- helpers ---------------------------------------------------------

    def _get_request(self, request_id: UUID, lock: bool = False) -> StipendRequest:
        query = select(StipendRequest).where(StipendRequest.id == request_id)
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        request = self.session.execute(query).scalar_one_or_none()
        if request is None:
            raise StipendRequestNotFoundError(str(request_id))
        return request

    def _covered_keys(self, request: StipendRequest) -> tuple[PeriodKey, ...]:
        start = PeriodKey(request.effective_year, request.effective_period)
        if request.end_period is None:
            return (start,)
        return self.calendar.keys_in_range(
            start, PeriodKey(request.end_year, request.end_period)
        )

    def _check_funds(
        self, practice_id: UUID, keys: tuple[PeriodKey, ...], amount: Decimal
    ) -> None:
        """
        Each fiscal year's share of ``keys`` must fit that year's balance.

        Balances are year-scoped, so a commitment dated next year is checked
        against next year's window, as of its first covered period.
        """
        current = self._current_period().key
        by_year: dict[int, list[PeriodKey]] = {}
        for key in keys:
            by_year.setdefault(key.year, []).append(key)

        selector = BalanceSelector(self.session, self._config)
        for year, year_keys in sorted(by_year.items()):
            as_of = current if year == current.year else min(year_keys)
            available = selector.compute_balance(practice_id, as_of=as_of).available_balance
            needed = amount * len(year_keys)
            if needed > available:
                logger.warning(
                    "stipend_request_insufficient_balance",
                    extra={"year": year, "available": str(available), "requested": str(needed)},
                )
                raise InsufficientBalanceError(str(practice_id), str(available), str(needed))

    def _check_portfolio_scope(self, actor: Actor, practice: Practice, operation: str) -> None:
        if (
            actor.role in _PORTFOLIO_SCOPED_ROLES
            and actor.portfolio_id is not None
            and practice.portfolio_id != actor.portfolio_id
        ):
            raise ActorNotPermittedError(
                str(actor.id), operation, "practice belongs to another portfolio"
            )

    def _min_length(
        self, value: str | None, minimum: int, label: str, reasons: list[str]
    ) -> None:
        if len((value or "").strip()) < minimum:
            reasons.append(f"{label} must be at least {minimum} characters")

    # -- submit ----------------------------------------------------------

    def submit(
        self,
        actor: Actor,
        practice_id: UUID,
        amount,
        request_type: str,
        category: str,
        description: str,
        justification: str,
        effective_period: PeriodKey,
        end_period: PeriodKey | None = None,
        staff_emails: str | None = None,
    ) -> StipendRequestDTO:
        """
        Create a request in ``pending_psm``.

        ``amount`` is per period for recurring requests; the balance check
        uses the total across every covered period.
        """
        rules = self._config.validation
        reasons: list[str] = []

        try:
            amount = money_from_str(amount)
        except ValueError as exc:
            raise ValidationError(str(exc), field="amount") from exc
        if amount <= ZERO:
            reasons.append("Amount must be greater than zero")

        if request_type not in {t.value for t in RequestType}:
            reasons.append(f"Unknown request type {request_type!r}")
        if category not in {c.value for c in StipendCategory}:
            reasons.append(f"Unknown stipend category {category!r}")

        self._min_length(justification, rules.justification_min_length, "Justification", reasons)
        self._min_length(description, rules.description_min_length, "Description", reasons)
        if category == StipendCategory.STAFF_COST_REIMBURSEMENT.value:
            self._min_length(staff_emails, rules.staff_emails_min_length, "Staff emails", reasons)

        if effective_period.year < self._config.calendar.min_year:
            reasons.append(f"Year {effective_period.year} is not supported")
        self.calendar.validate(effective_period)
        current = self._current_period().key
        if effective_period <= current:
            reasons.append(
                f"Effective period {effective_period} must be after the current period {current}"
            )

        if request_type == RequestType.RECURRING.value:
            if end_period is None:
                reasons.append("Recurring requests need an end period")
            else:
                self.calendar.validate(end_period)
                if end_period < effective_period:
                    reasons.append("End period cannot be before the effective period")
        elif end_period is not None:
            reasons.append("One-time requests cannot have an end period")

        if reasons:
            raise ValidationError(reasons)

        practice = self._get_practice(practice_id)
        if not practice.is_active:
            raise ValidationError(f"Practice {practice.key} is inactive", field="practice_id")

        keys = self.calendar.keys_in_range(effective_period, end_period or effective_period)
        self._check_funds(practice_id, keys, amount)
        periods = len(keys)

        request = StipendRequest(
            practice_id=practice_id,
            requestor_id=actor.id,
            amount=amount,
            request_type=request_type,
            category=category,
            description=description.strip(),
            justification=justification.strip(),
            staff_emails=staff_emails.strip() if staff_emails else None,
            effective_period=effective_period.number,
            effective_year=effective_period.year,
            end_period=end_period.number if end_period else None,
            end_year=end_period.year if end_period else None,
            status=STIPEND_REQUEST_WORKFLOW.initial_state,
            created_by_id=actor.id,
        )
        self.session.add(request)
        self.session.flush()

        logger.info(
            "stipend_request_submitted",
            extra={
                "request_id": str(request.id),
                "practice_id": str(practice_id),
                "amount": str(amount),
                "request_type": request_type,
                "periods": periods,
            },
        )
        notify_safely(
            self._notifier,
            NotificationEvent.REQUEST_SUBMITTED,
            f"New {category} request for {practice.name}: {amount}",
            {"request_id": str(request.id), "practice_id": str(practice_id)},
        )
        return request.to_dto()

    # -- approval chain --------------------------------------------------

    @translates_lock_failures("approve_stipend_request")
    def approve(
        self, request_id: UUID, actor: Actor, comment: str | None = None
    ) -> StipendRequestDTO:
        """
        Pass the gate the request is waiting at.

        The Finance gate posts ``committed`` entries for every covered period
        after re-checking the live balance under the practice lock.
        """
        request = self._get_request(request_id, lock=True)
        transition = resolve_transition(
            STIPEND_REQUEST_WORKFLOW, str(request_id), request.status,
            RequestAction.APPROVE, actor.role,
        )
        comment = (comment or "").strip() or None
        minimum = self._config.validation.approval_comment_min_length
        if comment is not None and len(comment) < minimum:
            raise ValidationError(
                f"Approval comment must be at least {minimum} characters", field="comment"
            )
        practice = self._get_practice(request.practice_id)
        self._check_portfolio_scope(actor, practice, "approve stipend request")

        with LogContext.bind(
            actor_id=actor.id, request_id=request_id, practice_id=request.practice_id
        ):
            gate = RequestStatus(request.status)
            if transition.posts_entry:
                self._commit_funds(request, actor)
            request.stamp_approval(gate, actor.id, self._clock.now(), comment)
            request.status = transition.to_state
            request.updated_by_id = actor.id
            self.session.flush()

            logger.info(
                "stipend_request_approved",
                extra={"gate": gate.value, "new_status": request.status},
            )
        notify_safely(
            self._notifier,
            NotificationEvent.REQUEST_APPROVED,
            f"Request {request_id} approved by {actor.role.value}",
            {"request_id": str(request_id), "status": request.status},
        )
        return request.to_dto()

    def _commit_funds(self, request: StipendRequest, actor: Actor) -> None:
        self._lock_practices([request.practice_id])
        keys = self._covered_keys(request)
        amount = Decimal(request.amount)
        self._check_funds(request.practice_id, keys, amount)

        periods = PayPeriodService(self.session, self._config, self._clock)
        for year in sorted({k.year for k in keys}):
            periods.ensure_year(year, actor.id)

        owner = LedgerOwner.practice(request.practice_id)
        for key in keys:
            self._ledger.append(
                NewLedgerEntry(
                    owner=owner,
                    pay_period=key.number,
                    year=key.year,
                    transaction_type=TransactionType.COMMITTED,
                    amount=-amount,
                    description=f"{request.category} {key}",
                    related_request_id=request.id,
                ),
                actor.id,
            )
        logger.info(
            "stipend_funds_committed",
            extra={"periods": len(keys), "total": str(amount * len(keys))},
        )

    def reject(self, request_id: UUID, actor: Actor, reason: str) -> StipendRequestDTO:
        """Reject from any pending state, by the role gating it.  No ledger effect."""
        request = self._get_request(request_id, lock=True)
        transition = resolve_transition(
            STIPEND_REQUEST_WORKFLOW, str(request_id), request.status,
            RequestAction.REJECT, actor.role,
        )
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A rejection reason is required", field="reason")
        self._check_portfolio_scope(
            actor, self._get_practice(request.practice_id), "reject stipend request"
        )

        previous = request.status
        request.status = transition.to_state
        request.rejected_by_id = actor.id
        request.rejected_at = self._clock.now()
        request.rejection_reason = reason
        request.updated_by_id = actor.id
        self.session.flush()

        logger.info(
            "stipend_request_rejected",
            extra={"request_id": str(request_id), "from_status": previous},
        )
        notify_safely(
            self._notifier,
            NotificationEvent.REQUEST_REJECTED,
            f"Request {request_id} rejected: {reason}",
            {"request_id": str(request_id)},
        )
        return request.to_dto()

    def delete(self, request_id: UUID, actor: Actor) -> None:
        """Hard-delete a request that has not reached the later gates."""
        request = self._get_request(request_id, lock=True)
        if request.status not in self._config.workflow.deletable_statuses:
            raise InvalidStateTransitionError(
                entity_type=STIPEND_REQUEST_WORKFLOW.name,
                entity_id=str(request_id),
                current_state=request.status,
                action="delete",
                role=actor.role.value,
            )
        if request.requestor_id != actor.id and not actor.is_administrator:
            raise ActorNotPermittedError(
                str(actor.id), "delete stipend request", "only the requestor may delete it"
            )

        self.session.delete(request)
        self.session.flush()
        logger.info("stipend_request_deleted", extra={"request_id": str(request_id)})
        notify_safely(
            self._notifier,
            NotificationEvent.REQUEST_DELETED,
            f"Request {request_id} deleted",
            {"request_id": str(request_id)},
        )

    # -- per-period lifecycle --------------------------------------------

    def _period_action(
        self, request_id: UUID, actor: Actor, pay_period: PeriodKey, action: str
    ) -> tuple[StipendRequest, PeriodState]:
        request = self._get_request(request_id, lock=True)
        resolve_transition(
            STIPEND_REQUEST_WORKFLOW, str(request_id), request.status, action, actor.role
        )
        if pay_period not in self._covered_keys(request):
            raise ValidationError(
                f"{pay_period} is not covered by request {request_id}", field="pay_period"
            )
        self._lock_practices([request.practice_id])
        state = derive_period_status(
            self._ledger.entries_for_request(request.id, pay_period.year, pay_period.number)
        )
        return request, state

    def _period_error(
        self, request_id: UUID, key: PeriodKey, status: str, action: str, actor: Actor
    ) -> InvalidStateTransitionError:
        return InvalidStateTransitionError(
            entity_type="stipend_request_period",
            entity_id=f"{request_id}:{key}",
            current_state=status,
            action=action,
            role=actor.role.value,
        )

    @translates_lock_failures("mark_period_paid")
    def mark_period_paid(
        self, request_id: UUID, actor: Actor, pay_period: PeriodKey
    ) -> PeriodBreakdownRow:
        """Reclassify one committed period as paid; available balance is unchanged."""
        request, state = self._period_action(
            request_id, actor, pay_period, RequestAction.MARK_PERIOD_PAID
        )
        if state.status != PeriodStatus.COMMITTED:
            raise self._period_error(
                request_id, pay_period, state.status.value, RequestAction.MARK_PERIOD_PAID, actor
            )

        owner = LedgerOwner.practice(request.practice_id)
        common = dict(
            owner=owner,
            pay_period=pay_period.number,
            year=pay_period.year,
            related_request_id=request.id,
        )
        self._ledger.append(
            NewLedgerEntry(
                transaction_type=TransactionType.COMMITTED,
                amount=state.amount,
                description=f"Release commitment {pay_period} (paid)",
                reverses_entry_id=state.live_entry_id,
                **common,
            ),
            actor.id,
        )
        paid_id = self._ledger.append(
            NewLedgerEntry(
                transaction_type=TransactionType.PAID,
                amount=-state.amount,
                description=f"Paid {pay_period}",
                **common,
            ),
            actor.id,
        )
        logger.info(
            "stipend_period_paid",
            extra={
                "request_id": str(request_id),
                "pay_period": str(pay_period),
                "amount": str(state.amount),
            },
        )
        notify_safely(
            self._notifier,
            NotificationEvent.PERIOD_PAID,
            f"Request {request_id} {pay_period} paid",
            {"request_id": str(request_id), "pay_period": str(pay_period)},
        )
        return PeriodBreakdownRow(
            pay_period.number, pay_period.year, state.amount, PeriodStatus.PAID.value, paid_id
        )

    @translates_lock_failures("cancel_period")
    def cancel_period(
        self,
        request_id: UUID,
        actor: Actor,
        pay_period: PeriodKey,
        reason: str | None = None,
    ) -> PeriodBreakdownRow:
        """Reverse one committed or paid period; other periods are untouched."""
        request, state = self._period_action(
            request_id, actor, pay_period, RequestAction.CANCEL_PERIOD
        )
        if state.status not in (PeriodStatus.COMMITTED, PeriodStatus.PAID):
            raise self._period_error(
                request_id, pay_period, state.status.value, RequestAction.CANCEL_PERIOD, actor
            )

        description = f"Cancel {state.status.value} {pay_period}"
        if reason:
            description = f"{description}: {reason.strip()}"
        entry_id = self._ledger.append(
            NewLedgerEntry(
                owner=LedgerOwner.practice(request.practice_id),
                pay_period=pay_period.number,
                year=pay_period.year,
                transaction_type=TransactionType.CANCELLED,
                amount=state.amount,
                description=description,
                related_request_id=request.id,
                reverses_entry_id=state.live_entry_id,
            ),
            actor.id,
        )
        logger.info(
            "stipend_period_cancelled",
            extra={
                "request_id": str(request_id),
                "pay_period": str(pay_period),
                "was": state.status.value,
                "amount": str(state.amount),
            },
        )
        notify_safely(
            self._notifier,
            NotificationEvent.PERIOD_CANCELLED,
            f"Request {request_id} {pay_period} cancelled",
            {"request_id": str(request_id), "pay_period": str(pay_period)},
        )
        return PeriodBreakdownRow(
            pay_period.number, pay_period.year, state.amount, PeriodStatus.CANCELLED.value, entry_id
        )

    # -- reads -----------------------------------------------------------

    def get_request(self, request_id: UUID) -> StipendRequestDTO:
        return self._get_request(request_id).to_dto()

    def pay_period_breakdown(self, request_id: UUID) -> list[PeriodBreakdownRow]:
        """One row per covered period with its derived status."""
        request = self._get_request(request_id)
        entries = self._ledger.entries_for_request(request.id)
        rows = []
        for key in self._covered_keys(request):
            state = derive_period_status(
                e for e in entries if e.year == key.year and e.pay_period == key.number
            )
            amount = state.amount
            if state.status == PeriodStatus.PENDING:
                amount = Decimal(request.amount)
            rows.append(
                PeriodBreakdownRow(
                    pay_period=key.number,
                    year=key.year,
                    amount=amount,
                    status=state.status.value,
                    ledger_entry_id=state.live_entry_id,
                )
            )
        return rows
