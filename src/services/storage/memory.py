"""
In-Memory Remote Store

A process-local RemoteStore. It applies the same table definitions,
defaults and unique constraints as the Google Sheets backend, so tests
and offline development exercise the same contract.

Every call yields to the event loop once before touching data, like a
real network round trip would. That keeps interleavings in concurrent
tests honest.
"""

import asyncio
import copy
from typing import Optional, Sequence

from src.services.storage.interface import (
    DuplicateError,
    Filter,
    NotFoundError,
    Order,
    RemoteStore,
    apply_query,
    to_cell,
)
from src.services.storage.schema import (
    TABLES,
    check_unique,
    get_table,
    prepare_insert,
)


# Attempts at finding a free generated invite code before giving up
_MAX_CODE_ATTEMPTS = 5


class InMemoryRemoteStore(RemoteStore):
    """Dict-of-lists implementation of RemoteStore."""

    def __init__(self, invite_code_length: int = 8):
        self._tables: dict[str, list[dict]] = {name: [] for name in TABLES}
        self._invite_code_length = invite_code_length

    def rows(self, table: str) -> list[dict]:
        """Snapshot of a table's rows (copies)."""
        get_table(table)
        return copy.deepcopy(self._tables[table])

    def _prepare(self, table: str, row: dict, existing: list[dict]) -> dict:
        definition = get_table(table)
        for _ in range(_MAX_CODE_ATTEMPTS):
            prepared = prepare_insert(
                definition, row, invite_code_length=self._invite_code_length
            )
            try:
                check_unique(definition, prepared, existing)
                return prepared
            except DuplicateError:
                # Only a generated column is worth another attempt
                if not any(not row.get(c) for c in definition.generated):
                    raise
        raise DuplicateError(f"Could not generate a unique row for {table}")

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order: Optional[Order] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        get_table(table)
        await asyncio.sleep(0)
        return copy.deepcopy(apply_query(self._tables[table], filters, order, limit))

    async def insert(self, table: str, row: dict) -> dict:
        get_table(table)
        await asyncio.sleep(0)
        prepared = self._prepare(table, row, self._tables[table])
        self._tables[table].append(prepared)
        return copy.deepcopy(prepared)

    async def insert_many(self, table: str, rows: Sequence[dict]) -> list[dict]:
        get_table(table)
        await asyncio.sleep(0)
        staged: list[dict] = []
        for row in rows:
            staged.append(self._prepare(table, row, self._tables[table] + staged))
        self._tables[table].extend(staged)
        return copy.deepcopy(staged)

    def _index_of(self, table: str, row_id: str) -> int:
        for idx, row in enumerate(self._tables[table]):
            if row.get("id") == row_id:
                return idx
        raise NotFoundError(f"{table} row not found: {row_id}")

    async def update(self, table: str, row_id: str, patch: dict) -> dict:
        definition = get_table(table)
        definition.check_columns(patch)
        await asyncio.sleep(0)
        idx = self._index_of(table, row_id)
        updated = dict(self._tables[table][idx])
        updated.update({k: to_cell(v) for k, v in patch.items() if k != "id"})
        check_unique(definition, updated, self._tables[table])
        self._tables[table][idx] = updated
        return copy.deepcopy(updated)

    async def delete(self, table: str, row_id: str) -> None:
        get_table(table)
        await asyncio.sleep(0)
        idx = self._index_of(table, row_id)
        del self._tables[table][idx]

    async def delete_many(self, table: str, row_ids: Sequence[str]) -> None:
        get_table(table)
        await asyncio.sleep(0)
        wanted = set(row_ids)
        found = {row["id"] for row in self._tables[table] if row.get("id") in wanted}
        missing = wanted - found
        if missing:
            raise NotFoundError(f"{table} rows not found: {', '.join(sorted(missing))}")
        self._tables[table] = [
            row for row in self._tables[table] if row.get("id") not in wanted
        ]
