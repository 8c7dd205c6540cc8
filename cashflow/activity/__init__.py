"""Activity feed, chat and post-commit side effects."""

from cashflow.activity.post_commit import PostCommitEffects
from cashflow.activity.recorder import ActivityRecorder

__all__ = ["ActivityRecorder", "PostCommitEffects"]
