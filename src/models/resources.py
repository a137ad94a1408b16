"""
Household Resource Models

The collaborative lists every family member edits: tasks, bills,
transactions, shopping items and pantry items.

Each entity is scoped by family_id, carries a store-assigned id and
created_at, and has one field that users flip constantly (completed /
status). That field is the main target of optimistic updates.

Each resource also has a *Draft model: the fields a caller supplies
before the store assigns the id and defaults.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from src.models.family import utcnow


# =============================================================================
# ENUMS
# =============================================================================

class TaskPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class BillStatus(str, Enum):
    """
    Payment status of a household bill.

    Toggling only moves between PENDING and PAID; OVERDUE is set
    by whoever entered the bill and toggles to PAID like PENDING does.
    """
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


# =============================================================================
# ENTITIES
# =============================================================================

class Task(BaseModel):
    """A household chore or to-do, assigned to someone by name."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    family_id: str
    title: str = Field(..., min_length=1, max_length=200)
    assignee: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    completed: bool = False
    due_date: date
    recurring: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    created_by: Optional[str] = None


class Bill(BaseModel):
    """A bill the household has to pay by its due date."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    family_id: str
    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    due_date: date
    status: BillStatus = BillStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_paid(self) -> bool:
        return self.status == BillStatus.PAID


class Transaction(BaseModel):
    """
    An income or expense entry.

    family_id is None for personal transactions, which are scoped by
    created_by instead.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    family_id: Optional[str] = None
    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    type: TransactionType = TransactionType.EXPENSE
    category: str = "other"
    date: date
    icon: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    created_by: Optional[str] = None


class ShoppingItem(BaseModel):
    """
    An entry on the family shopping list.

    pantry_item_id links items generated by the pantry import back to
    the pantry entry that ran low.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    family_id: str
    name: str = Field(..., min_length=1, max_length=200)
    category: str = "others"
    quantity: Decimal = Field(default=Decimal("1"), ge=0)
    unit: str = "un"
    completed: bool = False
    pantry_item_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class PantryItem(BaseModel):
    """Stock of one product at home versus how much the family wants."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    family_id: str
    name: str = Field(..., min_length=1, max_length=200)
    category: str = "others"
    current_amount: Decimal = Field(default=Decimal("0"), ge=0)
    ideal_amount: Decimal = Field(default=Decimal("0"), ge=0)
    unit: str = "un"
    expiration_date: Optional[date] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_low(self) -> bool:
        return self.current_amount < self.ideal_amount

    @property
    def shortfall(self) -> Decimal:
        return max(self.ideal_amount - self.current_amount, Decimal("0"))


# =============================================================================
# DRAFTS
# =============================================================================

class TaskDraft(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200)
    assignee: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: date
    recurring: bool = False


class BillDraft(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    due_date: date


class TransactionDraft(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    type: TransactionType = TransactionType.EXPENSE
    category: str = "other"
    date: date
    icon: Optional[str] = None


class ShoppingItemDraft(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    category: str = "others"
    quantity: Decimal = Field(default=Decimal("1"), ge=0)
    unit: str = "un"
    pantry_item_id: Optional[str] = None


class PantryItemDraft(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    category: str = "others"
    current_amount: Decimal = Field(default=Decimal("0"), ge=0)
    ideal_amount: Decimal = Field(default=Decimal("0"), ge=0)
    unit: str = "un"
    expiration_date: Optional[date] = None
