"""
Role Resolution

Determines what a caller may do on a shared wallet (or budget, which
carries the same owner + collaborators shape).

Two join keys are used on purpose:
- ownership is matched on the caller's stable user id
- collaborators are matched on EMAIL, because they can be invited
  before they hold a stable identity on record

Ownership always wins, even over a stale or self-added collaborator
entry.
"""

from typing import Optional, Protocol, Sequence

from cashflow.models.ledger import Collaborator, Role


class SharedResource(Protocol):
    """Anything with an owning user and a collaborator list."""

    owner_user_id: str
    collaborators: Sequence[Collaborator]


def resolve_role(
    resource: SharedResource,
    caller_id: str,
    caller_email: str,
) -> Optional[Role]:
    """
    Return the caller's role on the resource, or None for no access.
    """
    if resource.owner_user_id == caller_id:
        return Role.OWNER

    if caller_email:
        for collaborator in resource.collaborators:
            if collaborator.email == caller_email:
                return collaborator.role

    return None


def can_edit(resource: SharedResource, caller_id: str, caller_email: str) -> bool:
    """Owners and editors may transact and update."""
    return resolve_role(resource, caller_id, caller_email) in (Role.OWNER, Role.EDITOR)


def is_owner(resource: SharedResource, caller_id: str, caller_email: str) -> bool:
    return resolve_role(resource, caller_id, caller_email) == Role.OWNER


def can_view(resource: SharedResource, caller_id: str, caller_email: str) -> bool:
    return resolve_role(resource, caller_id, caller_email) is not None
