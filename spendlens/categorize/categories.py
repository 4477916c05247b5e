"""Category tree management.

System categories (seeded by migration, user_id NULL) are immutable.
User categories hang anywhere in the tree and can be moved or deleted
as long as the tree stays acyclic and nothing still points at them.
"""

from __future__ import annotations

import logging
import sqlite3

from spendlens.database.models import Category
from spendlens.database.repository import NotFoundError, Repository

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100


class CategoryError(Exception):
    """Raised for category tree changes that are never allowed."""


class CategoryTree:
    def __init__(self, repo: Repository):
        self.repo = repo

    def list(self, user_id: str | None = None) -> list[Category]:
        return self.repo.list_categories(user_id)

    def names(self, user_id: str | None = None) -> list[str]:
        seen: list[str] = []
        for cat in self.list(user_id):
            if cat.name not in seen:
                seen.append(cat.name)
        return seen

    def find_by_name(self, name: str, user_id: str | None = None) -> Category | None:
        return self.repo.get_category_by_name(name, user_id)

    def get(self, category_id: str, user_id: str | None = None) -> Category:
        cat = self.repo.get_category(category_id, user_id)
        if cat is None:
            raise NotFoundError("category", category_id)
        return cat

    def path(self, category_id: str, user_id: str | None = None) -> list[str]:
        """Names from the root down to the category."""
        names: list[str] = []
        current: str | None = category_id
        while current is not None:
            cat = self.get(current, user_id)
            names.append(cat.name)
            current = cat.parent_id
        return list(reversed(names))

    def create(
        self,
        user_id: str,
        name: str,
        parent_id: str | None = None,
        description: str | None = None,
    ) -> Category:
        name = (name or "").strip()
        if not name or len(name) > MAX_NAME_LENGTH:
            raise CategoryError(f"Category name must be 1..{MAX_NAME_LENGTH} characters")
        if parent_id is not None:
            self.get(parent_id, user_id)
        cat = Category(
            name=name, parent_id=parent_id, user_id=user_id,
            is_system=False, description=description,
        )
        try:
            self.repo.insert_category(cat)
        except sqlite3.IntegrityError as e:
            if "UNIQUE constraint failed" in str(e):
                raise CategoryError(f"Category '{name}' already exists here") from e
            raise
        logger.info("Created category %s for user", cat.id)
        return cat

    def move(self, user_id: str, category_id: str, new_parent_id: str | None) -> Category:
        cat = self._owned(user_id, category_id)
        if new_parent_id is not None:
            self.get(new_parent_id, user_id)
            ancestor: str | None = new_parent_id
            while ancestor is not None:
                if ancestor == category_id:
                    raise CategoryError("Moving a category under its own descendant creates a cycle")
                ancestor = self.get(ancestor, user_id).parent_id
        self.repo.update_category_parent(category_id, new_parent_id)
        cat.parent_id = new_parent_id
        return cat

    def delete(self, user_id: str, category_id: str) -> None:
        self._owned(user_id, category_id)
        if self.repo.count_child_categories(category_id):
            raise CategoryError("Category has child categories")
        if self.repo.count_transactions_for_category(category_id):
            raise CategoryError("Category is still assigned to transactions")
        self.repo.delete_category(category_id)

    def _owned(self, user_id: str, category_id: str) -> Category:
        cat = self.get(category_id, user_id)
        if cat.is_system:
            raise CategoryError("System categories cannot be changed")
        return cat
