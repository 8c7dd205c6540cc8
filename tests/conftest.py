"""
Shared fixtures.

Everything runs against the in-memory document store; no network.
"""

import pytest

from cashflow.config import LedgerSettings
from cashflow.models.ledger import Caller, Collaborator, Plan, Role, Wallet
from cashflow.orchestrator import LedgerApp
from cashflow.services.storage import InMemoryDocumentStore, Repositories


@pytest.fixture
def settings():
    return LedgerSettings()


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def repos(store):
    return Repositories(store)


@pytest.fixture
def app(store, settings):
    return LedgerApp(store, settings=settings)


@pytest.fixture
def owner():
    return Caller(uid="u-ana", email="ana@example.com", display_name="Ana")


@pytest.fixture
def editor():
    return Caller(uid="u-ben", email="ben@example.com", display_name="Ben")


@pytest.fixture
def viewer():
    return Caller(uid="u-cy", email="cy@example.com", display_name="Cy")


@pytest.fixture
def stranger():
    return Caller(uid="u-dee", email="dee@example.com", display_name="Dee")


def member(caller: Caller, role: Role) -> Collaborator:
    return Collaborator(identity=caller.uid, name=caller.display_name, email=caller.email, role=role)


@pytest.fixture
async def shared_wallet(repos, owner, editor, viewer):
    """A shared wallet with one Editor and one Viewer, balance 100.00."""
    wallet = Wallet(
        owner_user_id=owner.uid,
        name="House",
        plan=Plan.SHARED,
        balance="100.00",
        collaborators=[member(editor, Role.EDITOR), member(viewer, Role.VIEWER)],
    )
    return await repos.wallets.add(wallet)


@pytest.fixture
async def personal_wallet(repos, owner):
    return await repos.wallets.add(
        Wallet(owner_user_id=owner.uid, name="Cash", balance="0.00")
    )
