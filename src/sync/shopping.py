"""
Shopping List

The shopping list is an ordinary optimistic store plus two list-level
operations: restocking from the pantry and clearing what was bought.
"""

from typing import Iterable, Optional

from src.models.notification import NotificationBuilder
from src.models.resources import PantryItem, ShoppingItem, ShoppingItemDraft
from src.notifications import Notifier
from src.services.storage import Repository, StorageError
from src.sync.engine import OptimisticResourceStore
from src.sync.resources import SHOPPING_ITEMS


def compute_restock_delta(
    pantry_items: Iterable[PantryItem],
    shopping_items: Iterable[ShoppingItem],
) -> list[ShoppingItemDraft]:
    """
    Pantry items that are running low and aren't on the list yet.

    An item counts as "on the list" when an incomplete shopping item links
    to it; once that entry is ticked off the pantry item can be suggested
    again. The suggested quantity is what's missing to reach the ideal.
    """
    linked = {
        item.pantry_item_id
        for item in shopping_items
        if item.pantry_item_id and not item.completed
    }
    return [
        ShoppingItemDraft(
            name=pantry_item.name,
            category=pantry_item.category,
            quantity=pantry_item.shortfall,
            unit=pantry_item.unit,
            pantry_item_id=pantry_item.id,
        )
        for pantry_item in pantry_items
        if pantry_item.is_low and pantry_item.id not in linked
    ]


class ShoppingListStore(OptimisticResourceStore[ShoppingItem]):
    """Shopping items with pantry import and clear-completed."""

    def __init__(self, repository: Repository[ShoppingItem], notifier: Notifier):
        super().__init__(repository, SHOPPING_ITEMS, notifier)

    async def import_from_pantry(
        self, pantry_items: Iterable[PantryItem]
    ) -> Optional[list[ShoppingItem]]:
        """
        Add everything the pantry is short of, in one remote insert.

        Returns the added items ([] when nothing is low), or None if the
        insert failed.
        """
        scope = self._scope
        if scope is None:
            await self._fail("import", "No active scope")
            return None

        drafts = compute_restock_delta(pantry_items, self._items)
        if not drafts:
            await self._notifier.notify(
                NotificationBuilder.nothing_to_import(self._definition.name, "pantry")
            )
            return []

        rows = [{**draft.model_dump(), **scope.owner_values()} for draft in drafts]
        try:
            created = await self._repo.create_many(rows)
        except StorageError as e:
            await self._fail("import", str(e))
            return None

        if self._scope == scope:
            self._items[0:0] = created

        await self._notifier.notify(
            NotificationBuilder.resources_imported(self._definition.name, len(created), "pantry")
        )
        return created

    async def clear_completed(self) -> Optional[int]:
        """Remove every ticked-off item. Returns the count, None on failure."""
        return await self.bulk_remove(lambda item: item.completed)
