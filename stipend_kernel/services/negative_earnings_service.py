"""
NegativeEarningsService -- requests to draw on a practice's negative
earnings cap.

Responsibility:
    Submit, approve and reject negative earnings cap requests for the
    current pay period and summarize cap usage per practice.  These
    requests never touch the stipend ledger.

Architecture position:
    Kernel > Services -- imperative shell.  Transition rules come from
    ``domain.workflow.NEGATIVE_EARNINGS_WORKFLOW`` (single Finance gate).
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from stipend_kernel.db.types import ZERO, money_from_str
from stipend_kernel.domain.dtos import NegativeEarningsRequestDTO, NegativeEarningsSummaryRow
from stipend_kernel.domain.roles import Actor
from stipend_kernel.domain.workflow import (
    NEGATIVE_EARNINGS_WORKFLOW,
    NegativeEarningsStatus,
    RequestAction,
    resolve_transition,
)
from stipend_kernel.exceptions import (
    NegativeEarningsRequestNotFoundError,
    PayPeriodNotFoundError,
    ValidationError,
)
from stipend_kernel.logging_config import get_logger
from stipend_kernel.models.metrics import NegativeEarningsCapRequest, PracticeMetrics
from stipend_kernel.models.pay_period import PayPeriod
from stipend_kernel.models.practice import Practice
from stipend_kernel.services.base import BaseService
from stipend_kernel.services.notifications import (
    NotificationEvent,
    NotificationSink,
    notify_safely,
)

logger = get_logger("services.negative_earnings")


class NegativeEarningsService(BaseService):

    def __init__(
        self,
        session,
        config=None,
        clock=None,
        notifier: NotificationSink | None = None,
    ):
        super().__init__(session, config, clock)
        self._notifier = notifier

    def _get(self, request_id: UUID) -> NegativeEarningsCapRequest:
        request = self.session.execute(
            select(NegativeEarningsCapRequest)
            .where(NegativeEarningsCapRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if request is None:
            raise NegativeEarningsRequestNotFoundError(str(request_id))
        return request

    def _positive(self, value, field: str) -> Decimal:
        try:
            amount = money_from_str(value)
        except ValueError as exc:
            raise ValidationError(str(exc), field=field) from exc
        if amount <= ZERO:
            raise ValidationError("Amount must be greater than zero", field=field)
        return amount

    def submit(
        self, actor: Actor, practice_id: UUID, amount, justification: str
    ) -> NegativeEarningsRequestDTO:
        amount = self._positive(amount, "amount")
        minimum = self._config.validation.justification_min_length
        justification = (justification or "").strip()
        if len(justification) < minimum:
            raise ValidationError(
                f"Justification must be at least {minimum} characters", field="justification"
            )
        practice = self._get_practice(practice_id)
        current = self._current_period()

        request = NegativeEarningsCapRequest(
            practice_id=practice_id,
            requestor_id=actor.id,
            pay_period=current.number,
            year=current.year,
            requested_amount=amount,
            justification=justification,
            status=NEGATIVE_EARNINGS_WORKFLOW.initial_state,
            created_by_id=actor.id,
        )
        self.session.add(request)
        self.session.flush()

        logger.info(
            "negative_earnings_request_submitted",
            extra={
                "negative_earnings_request_id": str(request.id),
                "practice_id": str(practice_id),
                "amount": str(amount),
            },
        )
        notify_safely(
            self._notifier,
            NotificationEvent.NEGATIVE_EARNINGS_SUBMITTED,
            f"Negative earnings request for {practice.name}: {amount}",
            {"negative_earnings_request_id": str(request.id)},
        )
        return request.to_dto()

    def _decide(
        self,
        request: NegativeEarningsCapRequest,
        actor: Actor,
        action: str,
        notes: str | None,
    ) -> NegativeEarningsRequestDTO:
        transition = resolve_transition(
            NEGATIVE_EARNINGS_WORKFLOW, str(request.id), request.status, action, actor.role
        )
        request.status = transition.to_state
        request.decided_by_id = actor.id
        request.decided_at = self._clock.now()
        request.notes = notes
        request.updated_by_id = actor.id
        self.session.flush()

        logger.info(
            "negative_earnings_request_decided",
            extra={
                "negative_earnings_request_id": str(request.id),
                "status": request.status,
            },
        )
        notify_safely(
            self._notifier,
            NotificationEvent.NEGATIVE_EARNINGS_DECIDED,
            f"Negative earnings request {request.id} {request.status}",
            {"negative_earnings_request_id": str(request.id), "status": request.status},
        )
        return request.to_dto()

    def approve(
        self,
        request_id: UUID,
        actor: Actor,
        approved_amount=None,
        notes: str | None = None,
    ) -> NegativeEarningsRequestDTO:
        """Approve, optionally for a different amount than requested."""
        request = self._get(request_id)
        resolve_transition(
            NEGATIVE_EARNINGS_WORKFLOW, str(request_id), request.status,
            RequestAction.APPROVE, actor.role,
        )
        if approved_amount is None:
            request.approved_amount = Decimal(request.requested_amount)
        else:
            request.approved_amount = self._positive(approved_amount, "approved_amount")
        return self._decide(request, actor, RequestAction.APPROVE, (notes or "").strip() or None)

    def reject(self, request_id: UUID, actor: Actor, notes: str) -> NegativeEarningsRequestDTO:
        request = self._get(request_id)
        resolve_transition(
            NEGATIVE_EARNINGS_WORKFLOW, str(request_id), request.status,
            RequestAction.REJECT, actor.role,
        )
        notes = (notes or "").strip()
        if not notes:
            raise ValidationError("Rejection notes are required", field="notes")
        return self._decide(request, actor, RequestAction.REJECT, notes)

    def list_requests(
        self, status: str | None = None, practice_id: UUID | None = None
    ) -> list[NegativeEarningsRequestDTO]:
        query = select(NegativeEarningsCapRequest)
        if status is not None:
            query = query.where(NegativeEarningsCapRequest.status == status)
        if practice_id is not None:
            query = query.where(NegativeEarningsCapRequest.practice_id == practice_id)
        rows = self.session.execute(
            query.order_by(NegativeEarningsCapRequest.created_at)
        ).scalars()
        return [row.to_dto() for row in rows]

    def summary(self, pay_period_id: UUID | None = None) -> list[NegativeEarningsSummaryRow]:
        """Cap, approved usage and headroom per practice for one period."""
        if pay_period_id is None:
            period = self._current_period()
        else:
            period = self.session.get(PayPeriod, pay_period_id)
            if period is None:
                raise PayPeriodNotFoundError(str(pay_period_id))

        utilized: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        approved = self.session.execute(
            select(NegativeEarningsCapRequest).where(
                NegativeEarningsCapRequest.year == period.year,
                NegativeEarningsCapRequest.pay_period == period.number,
                NegativeEarningsCapRequest.status == NegativeEarningsStatus.APPROVED.value,
            )
        ).scalars()
        for request in approved:
            utilized[request.practice_id] += Decimal(request.approved_amount or ZERO)

        rows = self.session.execute(
            select(PracticeMetrics, Practice)
            .join(Practice, PracticeMetrics.practice_id == Practice.id)
            .where(
                PracticeMetrics.year == period.year,
                PracticeMetrics.pay_period == period.number,
            )
            .order_by(Practice.key)
        ).all()
        summary = []
        for metrics, practice in rows:
            cap = Decimal(metrics.negative_earnings_cap or ZERO)
            used = utilized[practice.id]
            summary.append(
                NegativeEarningsSummaryRow(
                    practice_id=practice.id,
                    practice_key=practice.key,
                    practice_name=practice.name,
                    portfolio_id=practice.portfolio_id,
                    negative_earnings_cap=cap,
                    utilized=used,
                    available=cap - used,
                )
            )
        return summary
