"""
Typed Repositories

DESIGN DECISION: Rows come back from the remote store as loosely typed
dicts. Each entity gets exactly one Repository that turns them into
pydantic models, so a schema drift (renamed column, new enum value)
fails loudly in one place instead of at every call site.
"""

from typing import Generic, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel, ValidationError

from src.models.family import Family, JoinRequest, Member
from src.models.resources import (
    Bill,
    PantryItem,
    ShoppingItem,
    Task,
    Transaction,
)
from src.services.storage.interface import (
    Filter,
    Order,
    RemoteStore,
    SchemaError,
    to_cell,
)
from src.services.storage.schema import get_table


ModelT = TypeVar("ModelT", bound=BaseModel)


class Repository(Generic[ModelT]):
    """
    Typed access to one table.

    Every method raises StorageError subclasses from the store unchanged;
    a row that doesn't fit the model raises SchemaError.
    """

    def __init__(self, store: RemoteStore, table: str, model: Type[ModelT]):
        self._store = store
        self._table = get_table(table)
        self._model = model

    @property
    def table(self) -> str:
        return self._table.name

    @property
    def model(self) -> Type[ModelT]:
        return self._model

    def to_entity(self, row: dict) -> ModelT:
        """Map a stored row to the model."""
        try:
            return self._model.model_validate(row)
        except ValidationError as e:
            raise SchemaError(f"Malformed {self.table} row {row.get('id')}: {e}")

    def to_row(self, values: dict) -> dict:
        """Map model-level values to storable cells."""
        return {key: to_cell(value) for key, value in values.items()}

    async def find_all(
        self,
        filters: Sequence[Filter] = (),
        order: Optional[Order] = None,
        limit: Optional[int] = None,
    ) -> list[ModelT]:
        rows = await self._store.select(self.table, filters, order, limit)
        return [self.to_entity(row) for row in rows]

    async def find_one(
        self,
        filters: Sequence[Filter],
        order: Optional[Order] = None,
    ) -> Optional[ModelT]:
        rows = await self._store.select(self.table, filters, order, limit=1)
        return self.to_entity(rows[0]) if rows else None

    async def get(self, entity_id: str) -> Optional[ModelT]:
        return await self.find_one([Filter.eq("id", entity_id)])

    async def create(self, values: dict) -> ModelT:
        row = await self._store.insert(self.table, self.to_row(values))
        return self.to_entity(row)

    async def create_many(self, values: Sequence[dict]) -> list[ModelT]:
        rows = await self._store.insert_many(self.table, [self.to_row(v) for v in values])
        return [self.to_entity(row) for row in rows]

    async def update(self, entity_id: str, patch: dict) -> ModelT:
        row = await self._store.update(self.table, entity_id, self.to_row(patch))
        return self.to_entity(row)

    async def delete(self, entity_id: str) -> None:
        await self._store.delete(self.table, entity_id)

    async def delete_many(self, entity_ids: Sequence[str]) -> None:
        await self._store.delete_many(self.table, list(entity_ids))


class Repositories:
    """One repository per household table, sharing a store."""

    def __init__(self, store: RemoteStore):
        self.store = store
        self.families = Repository(store, "families", Family)
        self.members = Repository(store, "family_members", Member)
        self.join_requests = Repository(store, "join_requests", JoinRequest)
        self.tasks = Repository(store, "tasks", Task)
        self.bills = Repository(store, "bills", Bill)
        self.transactions = Repository(store, "transactions", Transaction)
        self.shopping_items = Repository(store, "shopping_items", ShoppingItem)
        self.pantry_items = Repository(store, "pantry_items", PantryItem)
