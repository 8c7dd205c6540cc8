"""
Identity Provider Interface

The ledger never verifies credentials itself. An identity provider turns
a bearer credential into a Caller (stable uid, email, display name).
"""

from abc import ABC, abstractmethod
from typing import Optional

from cashflow.models.ledger import Caller


class IdentityError(Exception):
    """The credential is missing, expired or invalid."""
    pass


class IdentityProviderInterface(ABC):
    """
    Abstract interface for credential verification.
    """

    @abstractmethod
    async def verify(self, token: str) -> Caller:
        """
        Verify a bearer credential.

        Raises:
            IdentityError: If the credential cannot be verified
        """
        pass


class StaticIdentityProvider(IdentityProviderInterface):
    """
    Token table for local development and tests.

    Maps fixed tokens to callers; any other token is rejected.
    """

    def __init__(self, tokens: Optional[dict[str, Caller]] = None):
        self._tokens = dict(tokens or {})

    def register(self, token: str, caller: Caller) -> None:
        self._tokens[token] = caller

    async def verify(self, token: str) -> Caller:
        if not token:
            raise IdentityError("No credential provided")
        try:
            return self._tokens[token]
        except KeyError:
            raise IdentityError("Invalid or expired credential")
