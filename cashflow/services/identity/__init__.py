"""Identity provider package."""

from cashflow.services.identity.interface import (
    IdentityError,
    IdentityProviderInterface,
    StaticIdentityProvider,
)

__all__ = [
    "IdentityError",
    "IdentityProviderInterface",
    "StaticIdentityProvider",
]
