"""
Roles and the acting user.

Identity and authentication live outside the kernel.  Callers hand the
kernel an ``Actor`` and the kernel trusts its role for gating approvals,
allocations and registry administration.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class Role(str, Enum):
    """The single active role of an authenticated user."""

    PSM = "PSM"
    LEAD_PSM = "Lead PSM"
    FINANCE = "Finance"
    ADMIN = "Admin"


@dataclass(frozen=True)
class Actor:
    """
    An authenticated user as supplied by the identity provider.

    ``portfolio_id`` scopes a PSM or Lead PSM to the portfolio they manage.
    """

    id: UUID
    role: Role
    email: str = ""
    portfolio_id: UUID | None = None

    @property
    def is_finance(self) -> bool:
        return self.role == Role.FINANCE

    @property
    def is_administrator(self) -> bool:
        return self.role in (Role.FINANCE, Role.ADMIN)
