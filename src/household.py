"""
Household

This module ties together the components of the household core:

    IdentitySession ──> MembershipDirectory ──> resource stores

DESIGN DECISION: The household owns the scope keys. Whenever the
membership state or a selected period changes, it recomputes the scope
of every store and reloads only the stores whose scope actually changed.
Without a family every store is reset, so nothing from a previous family
can leak into the next session.
"""

import asyncio
from datetime import date
from typing import Optional

import structlog

from src.config import Settings, get_settings
from src.membership import MembershipDirectory
from src.models.family import FamilyMembership, MembershipState
from src.models.resources import Bill, PantryItem, ShoppingItem, Task, Transaction
from src.notifications import Notifier, configure_logging
from src.services.identity import Identity, IdentitySession
from src.services.storage import (
    GoogleSheetsRemoteStore,
    InMemoryRemoteStore,
    RemoteStore,
    Repositories,
)
from src.sync import (
    BILLS,
    PANTRY_ITEMS,
    TASKS,
    TRANSACTIONS,
    FamilyScope,
    MonthScope,
    OptimisticResourceStore,
    PeriodScope,
    Scope,
    ShoppingListStore,
)


logger = structlog.get_logger(__name__)


class Household:
    """
    The wired-up household core for one client.

    Stores are reachable as attributes: tasks, bills, transactions,
    shopping, pantry.
    """

    def __init__(
        self,
        store: RemoteStore,
        session: Optional[IdentitySession] = None,
        notifier: Optional[Notifier] = None,
        today: Optional[date] = None,
    ):
        self.repositories = Repositories(store)
        self.session = session or IdentitySession()
        self.notifier = notifier or Notifier()
        self.membership = MembershipDirectory(self.repositories, self.session, self.notifier)

        self.tasks: OptimisticResourceStore[Task] = OptimisticResourceStore(
            self.repositories.tasks, TASKS, self.notifier
        )
        self.bills: OptimisticResourceStore[Bill] = OptimisticResourceStore(
            self.repositories.bills, BILLS, self.notifier
        )
        self.transactions: OptimisticResourceStore[Transaction] = OptimisticResourceStore(
            self.repositories.transactions, TRANSACTIONS, self.notifier
        )
        self.shopping = ShoppingListStore(self.repositories.shopping_items, self.notifier)
        self.pantry: OptimisticResourceStore[PantryItem] = OptimisticResourceStore(
            self.repositories.pantry_items, PANTRY_ITEMS, self.notifier
        )

        today = today or date.today()
        self._bill_month = (today.year, today.month)
        self._transaction_period = {
            "year": today.year,
            "month": today.month,
            "mode": "month",
            "owner": "family",
        }

        self._unsubscribe = self.membership.subscribe(self._on_membership_changed)

    @property
    def stores(self) -> dict[str, OptimisticResourceStore]:
        return {
            "tasks": self.tasks,
            "bills": self.bills,
            "transactions": self.transactions,
            "shopping_items": self.shopping,
            "pantry_items": self.pantry,
        }

    # =========================================================================
    # Session
    # =========================================================================

    async def start(self) -> MembershipState:
        """Resolve membership for whoever is signed in and load the lists."""
        return await self.membership.resolve()

    async def sign_in(self, identity: Identity) -> None:
        await self.session.sign_in(identity)

    async def sign_out(self) -> None:
        await self.session.sign_out()

    def close(self) -> None:
        self._unsubscribe()
        self.membership.close()

    # =========================================================================
    # Scope keys
    # =========================================================================

    def scopes_for(self, family_id: str) -> dict[str, Scope]:
        """The scope every store should hold for a family."""
        year, month = self._bill_month
        period = dict(self._transaction_period)
        if period["owner"] == "personal":
            identity = self.session.current_identity
            period["owner_id"] = identity.id if identity else None
        else:
            period["family_id"] = family_id

        return {
            "tasks": FamilyScope(family_id=family_id),
            "bills": MonthScope(family_id=family_id, year=year, month=month),
            "transactions": PeriodScope(**period),
            "shopping_items": FamilyScope(family_id=family_id),
            "pantry_items": FamilyScope(family_id=family_id),
        }

    async def _on_membership_changed(self, state: MembershipState) -> None:
        if isinstance(state, FamilyMembership):
            await self._sync_scopes(state.family.id)
        else:
            for store in self.stores.values():
                store.reset()

    async def _sync_scopes(self, family_id: str) -> None:
        scopes = self.scopes_for(family_id)
        pending = [
            store.load(scopes[name])
            for name, store in self.stores.items()
            if store.scope != scopes[name]
        ]
        if pending:
            logger.info("reloading_stores", family_id=family_id, count=len(pending))
            await asyncio.gather(*pending)

    async def _refresh_scopes(self) -> None:
        family = self.membership.family
        if family is not None:
            await self._sync_scopes(family.id)

    async def select_bill_month(self, year: int, month: int) -> None:
        """Switch the bills list to another month."""
        self._bill_month = (year, month)
        await self._refresh_scopes()

    async def select_transaction_period(
        self,
        year: int,
        month: int = 1,
        mode: str = "month",
        owner: str = "family",
    ) -> None:
        """Switch the transactions list to another window or owner."""
        self._transaction_period = {"year": year, "month": month, "mode": mode, "owner": owner}
        await self._refresh_scopes()

    # =========================================================================
    # Cross-store operations
    # =========================================================================

    async def restock_shopping_list(self) -> Optional[list[ShoppingItem]]:
        """Import what the pantry is short of into the shopping list."""
        return await self.shopping.import_from_pantry(self.pantry.items)


def create_store(settings: Optional[Settings] = None) -> RemoteStore:
    """Build the configured RemoteStore backend."""
    settings = settings or get_settings()
    app = settings.app
    if app.storage_backend == "google_sheets":
        return GoogleSheetsRemoteStore(invite_code_length=app.invite_code_length)
    return InMemoryRemoteStore(invite_code_length=app.invite_code_length)


def create_household(
    settings: Optional[Settings] = None,
    store: Optional[RemoteStore] = None,
    session: Optional[IdentitySession] = None,
) -> Household:
    """
    Factory function to create the household core.

    Args:
        settings: Settings to use (defaults to get_settings())
        store: A ready RemoteStore; built from settings when omitted
        session: The identity session fed by the auth provider

    Returns:
        A Household whose stores follow the membership state
    """
    settings = settings or get_settings()
    app = settings.app
    configure_logging(app.log_level, app.log_format)

    store = store or create_store(settings)
    logger.info(
        "household_created",
        environment=app.app_environment,
        backend=type(store).__name__,
    )
    return Household(
        store=store,
        session=session,
        notifier=Notifier(history_size=app.notification_history_size),
    )
