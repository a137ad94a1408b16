"""Optimistic synchronization of the household lists."""

from src.sync.engine import OptimisticResourceStore
from src.sync.resources import (
    BILLS,
    PANTRY_ITEMS,
    SHOPPING_ITEMS,
    TASKS,
    TRANSACTIONS,
    ResourceDefinition,
)
from src.sync.scopes import FamilyScope, MonthScope, PeriodScope, Scope, month_bounds
from src.sync.shopping import ShoppingListStore, compute_restock_delta

__all__ = [
    "OptimisticResourceStore",
    "ShoppingListStore",
    "compute_restock_delta",
    "ResourceDefinition",
    "TASKS",
    "BILLS",
    "TRANSACTIONS",
    "SHOPPING_ITEMS",
    "PANTRY_ITEMS",
    "Scope",
    "FamilyScope",
    "MonthScope",
    "PeriodScope",
    "month_bounds",
]
