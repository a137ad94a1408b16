"""
Shared test fixtures.

Everything runs against the in-memory store. FlakyRemoteStore lets a
test make chosen store operations fail, to exercise rollbacks and
compensating writes without a network.
"""

import asyncio
from datetime import date
from typing import Optional

import pytest

from src.household import Household
from src.membership import MembershipDirectory
from src.notifications import Notifier
from src.services.identity import Identity, IdentitySession
from src.services.storage import ConnectionError, InMemoryRemoteStore, Repositories


class FlakyRemoteStore(InMemoryRemoteStore):
    """
    In-memory store that fails on demand.

    store.fail("update", "tasks") makes every update of tasks raise
    ConnectionError until heal() is called; times=1 fails only once.
    Failing calls still yield to the event loop first, like a timeout would.
    """

    def __init__(self):
        super().__init__()
        self._failures: dict[tuple[str, Optional[str]], Optional[int]] = {}
        self.calls: list[tuple[str, str]] = []

    def fail(self, operation: str, table: Optional[str] = None, times: Optional[int] = None) -> None:
        self._failures[(operation, table)] = times

    def heal(self) -> None:
        self._failures.clear()

    def count(self, operation: str, table: str) -> int:
        return self.calls.count((operation, table))

    async def _maybe_fail(self, operation: str, table: str) -> None:
        self.calls.append((operation, table))
        for key in ((operation, table), (operation, None)):
            if key not in self._failures:
                continue
            remaining = self._failures[key]
            if remaining is not None:
                if remaining <= 1:
                    del self._failures[key]
                else:
                    self._failures[key] = remaining - 1
            await asyncio.sleep(0)
            raise ConnectionError(f"simulated {operation} failure on {table}")

    async def select(self, table, filters=(), order=None, limit=None):
        await self._maybe_fail("select", table)
        return await super().select(table, filters, order, limit)

    async def insert(self, table, row):
        await self._maybe_fail("insert", table)
        return await super().insert(table, row)

    async def insert_many(self, table, rows):
        await self._maybe_fail("insert_many", table)
        return await super().insert_many(table, rows)

    async def update(self, table, row_id, patch):
        await self._maybe_fail("update", table)
        return await super().update(table, row_id, patch)

    async def delete(self, table, row_id):
        await self._maybe_fail("delete", table)
        return await super().delete(table, row_id)

    async def delete_many(self, table, row_ids):
        await self._maybe_fail("delete_many", table)
        return await super().delete_many(table, row_ids)


ANA = Identity(id="user-ana", email="ana@silva.family", display_name="Ana")
BRUNO = Identity(id="user-bruno", email="bruno@silva.family", display_name="Bruno")
CARLA = Identity(id="user-carla", email="carla@costa.family", display_name="Carla")

TODAY = date(2024, 5, 15)


@pytest.fixture
def store() -> FlakyRemoteStore:
    return FlakyRemoteStore()


@pytest.fixture
def repositories(store) -> Repositories:
    return Repositories(store)


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def session() -> IdentitySession:
    return IdentitySession()


@pytest.fixture
def directory(repositories, session, notifier) -> MembershipDirectory:
    return MembershipDirectory(repositories, session, notifier)


@pytest.fixture
def household(store, notifier) -> Household:
    return Household(store=store, notifier=notifier, today=TODAY)


@pytest.fixture
def make_directory(repositories, notifier):
    """Build another client's directory on the same store."""
    def factory() -> tuple[MembershipDirectory, IdentitySession]:
        other_session = IdentitySession()
        return MembershipDirectory(repositories, other_session, notifier), other_session
    return factory
