"""
Activity and Chat Models for Cashflow

Every mutating ledger or collaboration action leaves an ActivityEntry
in the wallet's feed; chat messages are CommentEntry records.

DESIGN DECISION: Both are write-once. They are never modified, only
evicted by the retention trimmer. Messages are SNAPSHOTS rendered at the
moment of the action, so they stay correct when the source record later
changes or disappears.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from cashflow.models.ledger import (
    Budget,
    Caller,
    Collaborator,
    Role,
    Transaction,
    new_id,
    utcnow,
)
from cashflow.models.money import format_amount


class ActivityAction(str, Enum):
    """Types of actions that appear in a wallet's activity feed."""
    TRANSACTION_ADDED = "transaction_added"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    BUDGET_ADDED = "budget_added"
    BUDGET_UPDATED = "budget_updated"
    BUDGET_DELETED = "budget_deleted"
    MEMBER_ADDED = "member_added"
    MEMBER_REMOVED = "member_removed"
    COMMENT_ADDED = "comment_added"
    SYSTEM_MESSAGE = "system_message"


class EntityType(str, Enum):
    WALLET = "wallet"
    BUDGET = "budget"
    TRANSACTION = "transaction"
    MEMBER = "member"
    COMMENT = "comment"
    SYSTEM = "system"


class RecordKind(str, Enum):
    """Append-only record types subject to retention."""
    ACTIVITY = "activity"
    COMMENT = "comment"


class ActivityEntry(BaseModel):
    """
    A single entry in a wallet's activity feed.

    `user_id` scopes the entry for retention; the actor is who did it.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    user_id: str = Field(..., min_length=1)
    wallet_id: str = Field(..., min_length=1)
    actor_id: str = Field(..., min_length=1)
    actor_name: str = Field(..., min_length=1)
    action: ActivityAction
    entity_type: EntityType
    entity_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=1000)
    created_at: datetime = Field(default_factory=utcnow)

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "activity_id": self.id,
            "user_id": self.user_id,
            "wallet_id": self.wallet_id,
            "actor_id": self.actor_id,
            "action": self.action.value,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
        }


class CommentEntry(BaseModel):
    """
    A chat message on a wallet.

    The general wallet thread uses entity_id == wallet_id.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    user_id: str = Field(..., min_length=1)
    wallet_id: str = Field(..., min_length=1)
    entity_id: str = Field(..., min_length=1)
    author_id: str = Field(..., min_length=1)
    author_name: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=2000)
    created_at: datetime = Field(default_factory=utcnow)


def chat_preview(message: str, limit: int = 120) -> str:
    """Collapse whitespace and shorten long chat text for the feed."""
    sanitized = re.sub(r"\s+", " ", message).strip()
    if len(sanitized) > limit:
        return f"{sanitized[:limit - 3]}..."
    return sanitized


class ActivityMessages:
    """
    Renders the human-readable feed messages.

    Usage:
        message = ActivityMessages.transaction(caller, tx, "added")
        message = ActivityMessages.member_added(caller, collaborator)
    """

    @staticmethod
    def transaction(
        actor: Caller,
        tx: Transaction,
        verb: str,
        currency: Optional[str] = None,
    ) -> str:
        kind = tx.kind.value.lower()
        article = "an" if kind[0] in "aeiou" else "a"
        amount = format_amount(tx.amount)
        if currency:
            amount = f"{currency} {amount}"
        message = f"{actor.display_name} {verb} {article} {kind} of {amount}"
        if tx.category:
            message += f" for {tx.category}"
        if tx.wallet_to:
            message += f" to {tx.wallet_to}"
        return message

    @staticmethod
    def budget(
        actor: Caller,
        budget: Budget,
        verb: str,
        currency: Optional[str] = None,
    ) -> str:
        amount = format_amount(budget.amount)
        if currency:
            amount = f"{currency} {amount}"
        return f"{actor.display_name} {verb} the {budget.category} budget ({amount})"

    @staticmethod
    def member_added(actor: Caller, collaborator: Collaborator) -> str:
        return f"{actor.display_name} added {collaborator.name} as {collaborator.role.value}"

    @staticmethod
    def member_removed(actor: Caller, collaborator: Collaborator) -> str:
        return f"{actor.display_name} removed {collaborator.name} from the wallet"

    @staticmethod
    def role_changed(actor: Caller, collaborator: Collaborator, role: Role) -> str:
        return f"{actor.display_name} set {collaborator.name} as {role.value}"

    @staticmethod
    def comment(comment: CommentEntry, limit: int = 120) -> str:
        return f'{comment.author_name} sent a chat message: "{chat_preview(comment.message, limit)}"'
