"""
Cashflow - Collaborative Ledger Engine

Keeps wallet balances and budget counters consistent while several
people record income, expenses and transfers on shared wallets.

DESIGN PRINCIPLES:
1. Balances must reconcile after any edit/delete cycle
2. Revert before re-apply, never the other way round
3. Every mutation is gated by the caller's role
4. The audit trail never breaks the ledger
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Cashflow Team"
