"""
Activity Recorder

DESIGN DECISION: Every mutating ledger or collaboration action appends
an entry to the wallet's activity feed.

The recorder:
- Never fails the primary operation: activity and retention errors are
  logged and swallowed
- Trims each user's history after every insert
- Stores messages as snapshots rendered at the time of the action
"""

from typing import Optional

import pydantic
import structlog

from cashflow.config import LedgerSettings, get_settings
from cashflow.errors import ValidationError
from cashflow.models.activity import (
    ActivityAction,
    ActivityEntry,
    ActivityMessages,
    CommentEntry,
    EntityType,
    RecordKind,
)
from cashflow.retention import RetentionTrimmer
from cashflow.services.storage.repository import Repositories


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class ActivityRecorder:
    """
    Central activity feed and chat writer.

    Logs every entry both to:
    1. Structured local log (for debugging)
    2. The document store (for the wallet's feed)
    """

    def __init__(
        self,
        repositories: Repositories,
        trimmer: Optional[RetentionTrimmer] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._repos = repositories
        self._trimmer = trimmer or RetentionTrimmer(repositories)
        self._settings = settings or get_settings().ledger
        self._logger = structlog.get_logger(__name__)

    async def record(
        self,
        wallet_id: str,
        actor_id: str,
        actor_name: str,
        action: ActivityAction,
        entity_type: EntityType,
        entity_id: str,
        message: str,
        user_id: Optional[str] = None,
    ) -> Optional[ActivityEntry]:
        """
        Append one activity entry and enforce the retention cap.

        `user_id` scopes the entry for retention and defaults to the actor.

        Returns the stored entry, or None if recording failed.
        """
        owner = user_id or actor_id
        try:
            entry = ActivityEntry(
                user_id=owner,
                wallet_id=wallet_id,
                actor_id=actor_id,
                actor_name=actor_name,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                message=message,
            )
            stored = await self._repos.activities.add(entry)
        except Exception as e:
            # Log failure but don't raise
            self._logger.error(
                "activity_record_failed",
                error=str(e),
                wallet_id=wallet_id,
                action=getattr(action, "value", action),
            )
            return None

        self._logger.info("activity_recorded", **stored.to_log_dict())
        await self._enforce(owner, RecordKind.ACTIVITY, self._settings.activity_retention_cap, stored.id)
        return stored

    async def record_comment(
        self,
        wallet_id: str,
        author_id: str,
        author_name: str,
        message: str,
        entity_id: Optional[str] = None,
        user_id: Optional[str] = None,
        log_activity: bool = True,
    ) -> CommentEntry:
        """
        Store a chat message, enforce the comment cap, and (by default)
        announce it in the activity feed.

        The comment itself is the primary write: its failure propagates.

        Raises:
            ValidationError: if the message is empty or too long
        """
        owner = user_id or author_id
        try:
            comment = CommentEntry(
                user_id=owner,
                wallet_id=wallet_id,
                entity_id=entity_id or wallet_id,
                author_id=author_id,
                author_name=author_name,
                message=message,
            )
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid chat message: {e.errors()[0]['msg']}", field="message")

        stored = await self._repos.comments.add(comment)
        self._logger.info(
            "comment_recorded",
            comment_id=stored.id,
            wallet_id=wallet_id,
            author_id=author_id,
        )
        await self._enforce(owner, RecordKind.COMMENT, self._settings.comment_retention_cap, stored.id)

        if log_activity:
            await self.record(
                wallet_id=wallet_id,
                actor_id=author_id,
                actor_name=author_name,
                action=ActivityAction.COMMENT_ADDED,
                entity_type=EntityType.COMMENT,
                entity_id=stored.id,
                message=ActivityMessages.comment(stored, self._settings.chat_preview_length),
                user_id=owner,
            )
        return stored

    async def list_activity(
        self,
        user_id: Optional[str] = None,
        wallet_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[ActivityEntry]:
        """A user's feed or a wallet's feed, newest first."""
        if not user_id and not wallet_id:
            raise ValueError("Either user_id or wallet_id is required")
        filters = {}
        if user_id:
            filters["user_id"] = user_id
        if wallet_id:
            filters["wallet_id"] = wallet_id
        return await self._repos.activities.find(
            sort_by="created_at",
            descending=True,
            limit=limit or self._settings.activity_retention_cap,
            **filters,
        )

    async def list_comments(
        self,
        wallet_id: str,
        entity_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[CommentEntry]:
        """A wallet's chat thread, oldest first."""
        filters = {"wallet_id": wallet_id}
        if entity_id:
            filters["entity_id"] = entity_id
        return await self._repos.comments.find(
            sort_by="created_at",
            limit=limit or self._settings.comment_retention_cap,
            **filters,
        )

    async def _enforce(self, user_id: str, kind: RecordKind, cap: int, keep_id: str) -> None:
        try:
            await self._trimmer.enforce_cap(user_id, kind, cap, keep=[keep_id])
        except Exception as e:
            self._logger.error(
                "retention_failed",
                error=str(e),
                user_id=user_id,
                kind=kind.value,
            )
