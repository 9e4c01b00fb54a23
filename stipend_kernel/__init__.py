"""
Stipend Kernel - ledger and allocation engine for practice stipend budgets.

An append-only, per-practice ledger with:
- Balances derived purely by replaying ledger entries
- Time-scoped pay periods with a single current period
- Remeasurement of stipend caps from periodic metric imports
- A three-gate approval workflow for stipend requests
- Balanced practice and portfolio allocations
"""

__version__ = "0.1.0"
