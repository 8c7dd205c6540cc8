"""
Ledger Error Taxonomy

Every error here is raised BEFORE any mutation happens.
Storage failures have their own hierarchy in
cashflow.services.storage.interface.
"""

from typing import Optional


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class ValidationError(LedgerError):
    """Bad input: non-positive amount, missing wallet, transfer without destination."""
    
    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class AuthorizationError(LedgerError):
    """The caller's role is insufficient for the requested operation."""
    
    def __init__(self, message: str, required: Optional[str] = None):
        self.required = required
        super().__init__(message)


class NotFoundError(LedgerError):
    """The wallet, budget or transaction does not exist."""
    pass
