"""Read-side queries."""

from cashflow.queries.executor import LedgerQueries

__all__ = ["LedgerQueries"]
