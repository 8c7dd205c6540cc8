"""
Retention Trimmer

Caps per-user append-only history (activity feed, chat) at a fixed size
by deleting the oldest records first.

Count-then-delete can race with concurrent inserts, so:
- deletion is delete-if-present (rows already gone are not an error)
- the caller passes the ids it just inserted, and those are never chosen
"""

from typing import Iterable

import structlog

from cashflow.models.activity import RecordKind
from cashflow.services.storage.repository import Repositories, Repository


class RetentionTrimmer:
    """Oldest-first eviction for activity and comment records."""

    def __init__(self, repositories: Repositories):
        self._repos = repositories
        self._logger = structlog.get_logger(__name__)

    def _repository(self, kind: RecordKind) -> Repository:
        if kind == RecordKind.ACTIVITY:
            return self._repos.activities
        return self._repos.comments

    async def enforce_cap(
        self,
        user_id: str,
        kind: RecordKind,
        cap: int,
        keep: Iterable[str] = (),
    ) -> int:
        """
        Delete the oldest excess so that at most `cap` records remain.

        Args:
            user_id: Whose history to trim
            kind: Activity or comment
            cap: Records to keep
            keep: Ids that must survive (e.g. the record just inserted)

        Returns:
            Number of records actually deleted
        """
        if cap < 0:
            raise ValueError("Retention cap cannot be negative")

        repository = self._repository(kind)
        total = await repository.count(user_id=user_id)
        excess = total - cap
        if excess <= 0:
            return 0

        protected = set(keep)
        oldest = await repository.find(
            sort_by="created_at",
            limit=excess + len(protected),
            user_id=user_id,
        )
        victims = [record.id for record in oldest if record.id not in protected][:excess]
        deleted = await repository.delete(*victims)

        self._logger.info(
            "retention_trimmed",
            user_id=user_id,
            kind=kind.value,
            cap=cap,
            expected=excess,
            deleted=deleted,
        )
        return deleted
