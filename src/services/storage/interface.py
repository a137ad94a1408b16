"""
Abstract Remote Store Interface

DESIGN DECISION: The household data lives in a remote relational store
that the client talks to directly. We define an abstract interface for it
so we can:
1. Run against Google Sheets (the shared household spreadsheet)
2. Use in-memory storage for testing and offline development
3. Keep membership and synchronization logic decoupled from the backend

The interface is intentionally table-scoped and dumb: select with simple
filters, insert, update and delete by id. Rows are plain dicts of
JSON-compatible values; typed mapping happens in the repositories.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional, Sequence
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator


def to_cell(value: Any) -> Any:
    """Normalize a Python value to the JSON-compatible form rows are stored in."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_cell(v) for v in value]
    return value


class Filter(BaseModel):
    """
    A single column predicate.

    Supported operators: eq, neq, gte, lte, in. Values are normalized
    with to_cell so dates, enums and UUIDs compare like stored cells.
    """
    model_config = ConfigDict(frozen=True)

    column: str
    op: str = "eq"
    value: Any = None

    @field_validator("op")
    @classmethod
    def validate_op(cls, v: str) -> str:
        if v not in {"eq", "neq", "gte", "lte", "in"}:
            raise ValueError(f"Unsupported filter operator: {v}")
        return v

    @field_validator("value")
    @classmethod
    def normalize_value(cls, v: Any) -> Any:
        return to_cell(v)

    @classmethod
    def eq(cls, column: str, value: Any) -> "Filter":
        return cls(column=column, op="eq", value=value)

    @classmethod
    def gte(cls, column: str, value: Any) -> "Filter":
        return cls(column=column, op="gte", value=value)

    @classmethod
    def lte(cls, column: str, value: Any) -> "Filter":
        return cls(column=column, op="lte", value=value)

    @classmethod
    def is_in(cls, column: str, values: Iterable[Any]) -> "Filter":
        return cls(column=column, op="in", value=list(values))

    def matches(self, row: dict) -> bool:
        """Evaluate this predicate against a stored row."""
        cell = row.get(self.column)
        if self.op == "eq":
            return cell == self.value
        if self.op == "neq":
            return cell != self.value
        if self.op == "in":
            return cell in self.value
        # Range operators never match missing cells
        if cell is None or self.value is None:
            return False
        if self.op == "gte":
            return cell >= self.value
        return cell <= self.value


class Order(BaseModel):
    """Sort specification for select."""
    model_config = ConfigDict(frozen=True)

    column: str
    descending: bool = False


def apply_query(
    rows: Iterable[dict],
    filters: Sequence[Filter] = (),
    order: Optional[Order] = None,
    limit: Optional[int] = None,
) -> list[dict]:
    """Filter, sort and limit rows in Python. Shared by backends that can't query."""
    result = [dict(row) for row in rows if all(f.matches(row) for f in filters)]
    if order is not None:
        # None sorts last regardless of direction
        present = [r for r in result if r.get(order.column) is not None]
        missing = [r for r in result if r.get(order.column) is None]
        present.sort(key=lambda r: r[order.column], reverse=order.descending)
        result = present + missing
    if limit is not None:
        result = result[:limit]
    return result


class RemoteStore(ABC):
    """
    Abstract interface for the household's remote relational store.

    Any backend (Google Sheets, in-memory, a hosted Postgres API...)
    must implement these methods. All of them are async and raise
    StorageError subclasses on failure; there is no partial success
    for the *_many calls.
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order: Optional[Order] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """
        Fetch rows of a table.

        Args:
            table: Table name (see src.services.storage.schema.TABLES)
            filters: Predicates that must all hold
            order: Optional sort
            limit: Maximum number of rows

        Returns:
            Matching rows as dicts

        Raises:
            StorageError: If the backend call fails
        """
        pass

    @abstractmethod
    async def insert(self, table: str, row: dict) -> dict:
        """
        Insert a row.

        The store fills in id, created_at and table defaults.

        Returns:
            The canonical stored row

        Raises:
            DuplicateError: If a unique constraint is violated
            StorageError: If the backend call fails
        """
        pass

    @abstractmethod
    async def insert_many(self, table: str, rows: Sequence[dict]) -> list[dict]:
        """Insert several rows as one unit. Either all are stored or none."""
        pass

    @abstractmethod
    async def update(self, table: str, row_id: str, patch: dict) -> dict:
        """
        Update columns of one row.

        Returns:
            The canonical row after the update

        Raises:
            NotFoundError: If the row doesn't exist
            DuplicateError: If the patch violates a unique constraint
        """
        pass

    @abstractmethod
    async def delete(self, table: str, row_id: str) -> None:
        """
        Delete one row by id.

        Raises:
            NotFoundError: If the row doesn't exist
        """
        pass

    @abstractmethod
    async def delete_many(self, table: str, row_ids: Sequence[str]) -> None:
        """Delete several rows as one unit. Either all are deleted or none."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Row not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to store a row that violates a unique constraint."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class SchemaError(StorageError):
    """Unknown table or column."""
    pass
