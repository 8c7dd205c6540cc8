"""
Custom Category Registry

Known categories = built-in categories + the user's budget categories +
the user's custom categories (case-insensitive, "Income" excluded).

A category the user types that is not known yet is registered once.
Two requests racing to register the same category is fine: the
store's unique index rejects the second insert and we treat that
DuplicateError as success.
"""

from typing import Optional

import structlog

from cashflow.config import LedgerSettings, get_settings
from cashflow.models.ledger import CustomCategory
from cashflow.services.storage.interface import DuplicateError
from cashflow.services.storage.repository import Repositories


def _unique(categories: list[str]) -> list[str]:
    """Drop case-insensitive duplicates and 'Income', keeping first spelling."""
    seen = set()
    result = []
    for category in categories:
        key = category.strip().lower()
        if not key or key == "income" or key in seen:
            continue
        seen.add(key)
        result.append(category.strip())
    return result


class CategoryRegistry:
    """Insert-if-absent store for user-defined categories."""

    def __init__(
        self,
        repositories: Repositories,
        settings: Optional[LedgerSettings] = None,
    ):
        self._repos = repositories
        self._settings = settings or get_settings().ledger
        self._logger = structlog.get_logger(__name__)

    async def custom_categories(self, user_id: str) -> list[str]:
        records = await self._repos.categories.find(user_id=user_id)
        return sorted(record.category for record in records)

    async def known_categories(self, user_id: str) -> list[str]:
        budgets = await self._repos.budgets.find(owner_user_id=user_id)
        return _unique(
            self._settings.base_categories_list
            + [budget.category for budget in budgets]
            + await self.custom_categories(user_id)
        )

    async def is_known(self, user_id: str, category: str) -> bool:
        wanted = category.strip().lower()
        return any(c.lower() == wanted for c in await self.known_categories(user_id))

    async def register_if_absent(self, user_id: str, category: str) -> bool:
        """
        Register an ad hoc category.

        Returns:
            True if a new category was stored, False if it already existed
        """
        category = category.strip()
        if not category or category.lower() == "income":
            return False
        if await self.is_known(user_id, category):
            return False

        try:
            await self._repos.categories.add(CustomCategory(user_id=user_id, category=category))
        except DuplicateError:
            # Lost a race with a concurrent insert; the category exists
            return False

        self._logger.info("category_registered", user_id=user_id, category=category)
        return True
