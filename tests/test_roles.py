"""
Tests for role resolution and the authorization gate.
"""

import pytest

from cashflow.access import AccessGate, can_edit, can_view, is_owner, resolve_role
from cashflow.errors import AuthorizationError
from cashflow.models.ledger import Budget, Caller, Collaborator, Plan, Role, Wallet


def _wallet(plan=Plan.SHARED, collaborators=()):
    return Wallet(
        owner_user_id="u-owner",
        name="House",
        plan=plan,
        collaborators=list(collaborators),
    )


OWNER = Caller(uid="u-owner", email="owner@example.com", display_name="Olive")
EDITOR = Caller(uid="u-ed", email="ed@example.com", display_name="Ed")
VIEWER = Caller(uid="u-vi", email="vi@example.com", display_name="Vi")
STRANGER = Caller(uid="u-x", email="x@example.com", display_name="X")

MEMBERS = [
    Collaborator(identity="u-ed", name="Ed", email="ed@example.com", role=Role.EDITOR),
    Collaborator(identity="u-vi", name="Vi", email="vi@example.com", role=Role.VIEWER),
]


class TestResolveRole:
    """Tests for resolve_role and the derived checks."""

    def test_owner_matched_by_uid(self):
        """Test the owning user resolves to Owner."""
        assert resolve_role(_wallet(), "u-owner", "") == Role.OWNER

    def test_owner_wins_over_collaborator_entry(self):
        """Test an owner listed as Viewer is still Owner."""
        wallet = _wallet(collaborators=[
            Collaborator(identity="u-owner", name="Olive", email="owner@example.com", role=Role.VIEWER),
        ])
        assert resolve_role(wallet, "u-owner", "owner@example.com") == Role.OWNER
        assert is_owner(wallet, "u-owner", "owner@example.com")

    def test_collaborators_matched_by_email(self):
        """Test collaborators are found by email, not uid."""
        wallet = _wallet(collaborators=MEMBERS)
        assert resolve_role(wallet, "some-other-uid", "ed@example.com") == Role.EDITOR
        assert resolve_role(wallet, "u-ed", "changed@example.com") is None

    def test_stranger_has_no_access(self):
        """Test a non-owner, non-collaborator resolves to None."""
        wallet = _wallet(collaborators=MEMBERS)
        assert resolve_role(wallet, "u-x", "x@example.com") is None
        assert not can_view(wallet, "u-x", "x@example.com")
        assert not can_edit(wallet, "u-x", "x@example.com")

    def test_empty_email_never_matches(self):
        """Test a caller without email cannot match a collaborator."""
        wallet = _wallet(collaborators=MEMBERS)
        assert resolve_role(wallet, "u-ed", "") is None

    def test_can_edit(self):
        """Test Owner and Editor can edit, Viewer cannot."""
        wallet = _wallet(collaborators=MEMBERS)
        assert can_edit(wallet, "u-owner", "")
        assert can_edit(wallet, "u-ed", "ed@example.com")
        assert not can_edit(wallet, "u-vi", "vi@example.com")
        assert can_view(wallet, "u-vi", "vi@example.com")


class TestAccessGate:
    """Tests for the authorization gate."""

    @pytest.fixture
    def gate(self):
        return AccessGate()

    def test_editor_may_edit_shared_wallet(self, gate):
        """Test an Editor passes the edit check."""
        assert gate.require_wallet_edit(_wallet(collaborators=MEMBERS), EDITOR) == Role.EDITOR

    def test_viewer_rejected_from_edit(self, gate):
        """Test a Viewer fails the edit check."""
        with pytest.raises(AuthorizationError) as exc:
            gate.require_wallet_edit(_wallet(collaborators=MEMBERS), VIEWER)
        assert exc.value.required == "Editor"

    def test_stranger_rejected_from_view(self, gate):
        """Test a stranger cannot even read."""
        with pytest.raises(AuthorizationError):
            gate.require_wallet_view(_wallet(collaborators=MEMBERS), STRANGER)

    def test_editor_is_not_owner(self, gate):
        """Test membership changes need Owner."""
        with pytest.raises(AuthorizationError):
            gate.require_wallet_owner(_wallet(collaborators=MEMBERS), EDITOR)

    def test_personal_wallet_bypasses_collaborators(self, gate):
        """Test a Personal wallet ignores its collaborator list."""
        wallet = _wallet(plan=Plan.PERSONAL, collaborators=MEMBERS)
        assert gate.require_wallet_owner(wallet, OWNER) == Role.OWNER
        with pytest.raises(AuthorizationError):
            gate.require_wallet_edit(wallet, EDITOR)

    def test_shared_budget_uses_wallet_role(self, gate):
        """Test a Shared budget defers to the role on its wallet."""
        budget = Budget(
            owner_user_id="u-owner",
            category="Food",
            amount="100",
            plan=Plan.SHARED,
            wallet="House",
        )
        wallet = _wallet(collaborators=MEMBERS)
        assert gate.require_budget_edit(budget, EDITOR, wallet) == Role.EDITOR
        with pytest.raises(AuthorizationError):
            gate.require_budget_edit(budget, VIEWER, wallet)

    def test_shared_budget_without_wallet_uses_own_list(self, gate):
        """Test a Shared budget falls back to its own collaborators."""
        budget = Budget(
            owner_user_id="u-owner",
            category="Food",
            amount="100",
            plan=Plan.SHARED,
            wallet="Gone",
            collaborators=MEMBERS,
        )
        assert gate.require_budget_edit(budget, EDITOR) == Role.EDITOR

    def test_personal_budget_needs_ownership(self, gate):
        """Test only the owner may edit a Personal budget."""
        budget = Budget(owner_user_id="u-owner", category="Food", amount="100")
        assert gate.require_budget_edit(budget, OWNER) == Role.OWNER
        with pytest.raises(AuthorizationError):
            gate.require_budget_edit(budget, EDITOR)
