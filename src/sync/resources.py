"""
Resource Definitions

Everything that differs between the household lists lives here; the
synchronization engine itself is the same for all of them.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Type

from pydantic import BaseModel

from src.models.resources import (
    Bill,
    BillDraft,
    BillStatus,
    PantryItem,
    PantryItemDraft,
    ShoppingItem,
    ShoppingItemDraft,
    Task,
    TaskDraft,
    Transaction,
    TransactionDraft,
)
from src.services.storage import Order


@dataclass(frozen=True)
class ResourceDefinition:
    """
    How one resource is stored, ordered, scoped and toggled.

    Attributes:
        name: Repository attribute and entity type in notifications
        label: Human label ("Task")
        model: Entity model
        draft: Model validating what callers hand to add()
        order: Cache order after a load
        date_column: Column the scope window applies to, if any
        toggle: Patch flipping the resource's main field, if it has one
        summary: Short description for notifications
        tracks_creator: Whether rows record who created them
    """
    name: str
    label: str
    model: Type[BaseModel]
    draft: Type[BaseModel]
    order: Order
    summary: Callable[[BaseModel], str]
    date_column: Optional[str] = None
    toggle: Optional[Callable[[BaseModel], dict]] = None
    tracks_creator: bool = False


def _toggle_bill(bill: Bill) -> dict:
    # Overdue bills toggle to paid like pending ones
    return {"status": BillStatus.PENDING if bill.is_paid else BillStatus.PAID}


TASKS = ResourceDefinition(
    name="tasks",
    label="Task",
    model=Task,
    draft=TaskDraft,
    order=Order(column="due_date"),
    summary=lambda task: task.title,
    toggle=lambda task: {"completed": not task.completed},
    tracks_creator=True,
)

BILLS = ResourceDefinition(
    name="bills",
    label="Bill",
    model=Bill,
    draft=BillDraft,
    order=Order(column="due_date"),
    summary=lambda bill: bill.description,
    date_column="due_date",
    toggle=_toggle_bill,
)

TRANSACTIONS = ResourceDefinition(
    name="transactions",
    label="Transaction",
    model=Transaction,
    draft=TransactionDraft,
    order=Order(column="date", descending=True),
    summary=lambda tx: tx.description,
    date_column="date",
    tracks_creator=True,
)

SHOPPING_ITEMS = ResourceDefinition(
    name="shopping_items",
    label="Item",
    model=ShoppingItem,
    draft=ShoppingItemDraft,
    order=Order(column="created_at", descending=True),
    summary=lambda item: item.name,
    toggle=lambda item: {"completed": not item.completed},
)

PANTRY_ITEMS = ResourceDefinition(
    name="pantry_items",
    label="Pantry item",
    model=PantryItem,
    draft=PantryItemDraft,
    order=Order(column="name"),
    summary=lambda item: item.name,
)
