"""Role resolution and authorization checks."""

from cashflow.access.gate import AccessGate
from cashflow.access.roles import can_edit, can_view, is_owner, resolve_role

__all__ = ["AccessGate", "can_edit", "can_view", "is_owner", "resolve_role"]
