"""
Post-Commit Effects

Side effects (activity entries, category registration, cache
invalidation) are queued while a flow runs and executed only after the
primary mutation has committed. Each effect is isolated: a failure is
logged and the remaining effects still run.
"""

from typing import Any, Awaitable, Callable

import structlog

Effect = Callable[[], Awaitable[Any]]


class PostCommitEffects:
    """An ordered queue of fire-and-forget follow-ups."""

    def __init__(self):
        self._pending: list[tuple[str, Effect]] = []
        self._logger = structlog.get_logger(__name__)

    def add(self, name: str, effect: Effect) -> None:
        self._pending.append((name, effect))

    def __len__(self) -> int:
        return len(self._pending)

    async def run(self) -> int:
        """
        Run and drain every queued effect.

        Returns:
            Number of effects that failed
        """
        pending, self._pending = self._pending, []
        failures = 0
        for name, effect in pending:
            try:
                await effect()
            except Exception as e:
                failures += 1
                self._logger.error("post_commit_effect_failed", effect=name, error=str(e))
        return failures
