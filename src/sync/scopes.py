"""
Scope Keys

A scope decides which remote rows a resource store holds: always an
owner (a family, or a single identity for personal transactions) and,
for time-scoped resources, a date window.

Scopes are frozen value objects. Two loads with equal scopes ask for the
same rows, so the household only reloads when a scope actually changes.
"""

import calendar
from abc import ABC, abstractmethod
from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.services.storage import Filter


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last day of a calendar month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


class Scope(BaseModel, ABC):
    """Base class for scope keys."""
    model_config = ConfigDict(frozen=True)

    @abstractmethod
    def owner_values(self) -> dict:
        """Columns every row created in this scope gets."""

    def window(self) -> Optional[tuple[date, date]]:
        """Inclusive date window, or None when the scope isn't time-bound."""
        return None

    def filters(self, date_column: Optional[str] = None) -> list[Filter]:
        filters = [Filter.eq(column, value) for column, value in self.owner_values().items()]
        window = self.window()
        if date_column and window is not None:
            start, end = window
            filters.append(Filter.gte(date_column, start))
            filters.append(Filter.lte(date_column, end))
        return filters

    def contains(self, entity: BaseModel, date_column: Optional[str] = None) -> bool:
        """Whether an entity belongs to this scope (owner and window)."""
        for column, value in self.owner_values().items():
            if getattr(entity, column, None) != value:
                return False
        window = self.window()
        if date_column and window is not None:
            when = getattr(entity, date_column, None)
            if when is None:
                return False
            start, end = window
            return start <= when <= end
        return True


class FamilyScope(Scope):
    """Everything of one family. Tasks, shopping and pantry items."""

    family_id: str = Field(..., min_length=1)

    def owner_values(self) -> dict:
        return {"family_id": self.family_id}


class MonthScope(Scope):
    """One family's rows dated within a calendar month. Bills."""

    family_id: str = Field(..., min_length=1)
    year: int = Field(..., ge=1900, le=9999)
    month: int = Field(..., ge=1, le=12)

    def owner_values(self) -> dict:
        return {"family_id": self.family_id}

    def window(self) -> tuple[date, date]:
        return month_bounds(self.year, self.month)


class PeriodScope(Scope):
    """
    Transactions of a family or of one identity, over a month, a year or
    all time.

    Personal transactions have no family_id and are owned by created_by.
    """

    owner: Literal["family", "personal"] = "family"
    family_id: Optional[str] = None
    owner_id: Optional[str] = None
    year: int = Field(..., ge=1900, le=9999)
    month: int = Field(default=1, ge=1, le=12)
    mode: Literal["month", "year", "total"] = "month"

    @model_validator(mode="after")
    def check_owner(self) -> "PeriodScope":
        if self.owner == "family" and not self.family_id:
            raise ValueError("family_id is required for family transactions")
        if self.owner == "personal" and not self.owner_id:
            raise ValueError("owner_id is required for personal transactions")
        return self

    def owner_values(self) -> dict:
        if self.owner == "personal":
            return {"family_id": None, "created_by": self.owner_id}
        return {"family_id": self.family_id}

    def window(self) -> Optional[tuple[date, date]]:
        if self.mode == "month":
            return month_bounds(self.year, self.month)
        if self.mode == "year":
            return date(self.year, 1, 1), date(self.year, 12, 31)
        return None
