"""
Typed exception hierarchy for the stipend kernel.

Every error has a typed class (catch by type, not by message), a ``code``
class attribute (machine-readable, API-safe) and structured attributes
carrying the context of the failure.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StipendKernelError (base)
    |
    +-- ValidationError
    |
    +-- InvalidStateTransitionError
    |
    +-- InsufficientBalanceError
    |
    +-- ActorNotPermittedError
    |
    +-- NotFoundError
    |   +-- PracticeNotFoundError
    |   +-- PortfolioNotFoundError
    |   +-- PayPeriodNotFoundError
    |   +-- StipendRequestNotFoundError
    |   +-- AllocationNotFoundError
    |   +-- NegativeEarningsRequestNotFoundError
    |
    +-- ConcurrencyConflictError
    |
    +-- ConfigurationError
    |   +-- NoCurrentPayPeriodError (also a NotFoundError)
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                        | When Raised                                | Retry?
----------------------------|--------------------------------------------|-------
VALIDATION_ERROR            | Malformed or out-of-range input            | No
INVALID_STATE_TRANSITION    | Workflow action not allowed from state/role| No
INSUFFICIENT_BALANCE        | Operation would overdraw a practice        | No
ACTOR_NOT_PERMITTED         | Ownership / portfolio restriction violated | No
PRACTICE_NOT_FOUND (etc.)   | Missing reference                          | No
CONCURRENCY_CONFLICT        | Lock timeout, deadlock, serialization fail | Once
CONFIGURATION_ERROR         | Broken system setup                        | No
NO_CURRENT_PAY_PERIOD       | Registry has no current period             | No
IMMUTABILITY_VIOLATION      | UPDATE/DELETE of an append-only record     | No

ConcurrencyConflictError is the only category an orchestration layer may
retry automatically, and only once (see services.retry.run_with_retry).
"""


class StipendKernelError(Exception):
    """
    Base exception for all stipend kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "STIPEND_KERNEL_ERROR"


class ValidationError(StipendKernelError):
    """
    Malformed or out-of-range input.

    Carries every reason found so callers can report all problems at once.
    """

    code: str = "VALIDATION_ERROR"

    def __init__(self, reasons: str | list[str] | tuple[str, ...], field: str | None = None):
        if isinstance(reasons, str):
            reasons = (reasons,)
        self.reasons = tuple(reasons)
        self.field = field
        super().__init__("; ".join(self.reasons))


class InvalidStateTransitionError(StipendKernelError):
    """A workflow action is not permitted from the current state for this role."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        action: str,
        role: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current_state
        self.action = action
        self.role = role
        who = f" by {role}" if role else ""
        super().__init__(
            f"Cannot {action} {entity_type} {entity_id} in state "
            f"'{current_state}'{who}"
        )


class InsufficientBalanceError(StipendKernelError):
    """The operation would drive a practice's available balance below zero."""

    code: str = "INSUFFICIENT_BALANCE"

    def __init__(self, owner_id: str, available: str, requested: str):
        self.owner_id = owner_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient balance for {owner_id}: "
            f"available {available}, requested {requested}"
        )


class ActorNotPermittedError(StipendKernelError):
    """The acting user may not perform this operation on this record."""

    code: str = "ACTOR_NOT_PERMITTED"

    def __init__(self, actor_id: str, operation: str, reason: str):
        self.actor_id = actor_id
        self.operation = operation
        self.reason = reason
        super().__init__(f"Actor {actor_id} may not {operation}: {reason}")


# Missing references


class NotFoundError(StipendKernelError):
    """Base exception for missing references."""

    code: str = "NOT_FOUND"
    entity_type: str = "Entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class PracticeNotFoundError(NotFoundError):
    code: str = "PRACTICE_NOT_FOUND"
    entity_type: str = "Practice"


class PortfolioNotFoundError(NotFoundError):
    code: str = "PORTFOLIO_NOT_FOUND"
    entity_type: str = "Portfolio"


class PayPeriodNotFoundError(NotFoundError):
    code: str = "PAY_PERIOD_NOT_FOUND"
    entity_type: str = "Pay period"


class StipendRequestNotFoundError(NotFoundError):
    code: str = "STIPEND_REQUEST_NOT_FOUND"
    entity_type: str = "Stipend request"


class AllocationNotFoundError(NotFoundError):
    code: str = "ALLOCATION_NOT_FOUND"
    entity_type: str = "Allocation"


class NegativeEarningsRequestNotFoundError(NotFoundError):
    code: str = "NEGATIVE_EARNINGS_REQUEST_NOT_FOUND"
    entity_type: str = "Negative earnings cap request"


# Concurrency


class ConcurrencyConflictError(StipendKernelError):
    """
    Lock or serialization failure.

    Safe to retry the whole operation once.
    """

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        suffix = f": {detail}" if detail else ""
        super().__init__(f"Concurrency conflict during {operation}{suffix}")


# Configuration


class ConfigurationError(StipendKernelError):
    """System setup is broken. Fatal; never silently defaulted."""

    code: str = "CONFIGURATION_ERROR"


class NoCurrentPayPeriodError(ConfigurationError, NotFoundError):
    """
    No pay period is marked current.

    A lookup miss on the registry, but callers must treat it as fatal setup
    breakage, hence both bases.
    """

    code: str = "NO_CURRENT_PAY_PERIOD"
    entity_type: str = "Current pay period"

    def __init__(self):
        self.entity_id = "current"
        StipendKernelError.__init__(self, "No pay period is marked current")


# Immutability


class ImmutabilityViolationError(StipendKernelError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
