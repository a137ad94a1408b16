"""
Table Definitions

The columns, server-side defaults and unique constraints of every table
the household core reads or writes. Both backends use these so that an
in-memory test run behaves like the shared spreadsheet: ids, created_at
and invite codes are always assigned by the store, never by the caller.
"""

import secrets
import string
from typing import Any, Callable, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.models.family import utcnow
from src.services.storage.interface import DuplicateError, SchemaError, to_cell


INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_invite_code(length: int = 8) -> str:
    """Random upper-case invite code."""
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(length))


class TableDefinition(BaseModel):
    """Shape of one table."""
    model_config = ConfigDict(frozen=True)

    name: str
    columns: tuple[str, ...]
    defaults: dict[str, Any] = Field(default_factory=dict)
    unique: tuple[tuple[str, ...], ...] = ()
    # Columns that the store generates when the caller leaves them empty
    generated: tuple[str, ...] = ()
    # Columns holding booleans (text backends need this to read them back)
    booleans: tuple[str, ...] = ()

    def check_columns(self, row: dict) -> None:
        unknown = set(row) - set(self.columns)
        if unknown:
            raise SchemaError(
                f"Unknown column(s) for {self.name}: {', '.join(sorted(unknown))}"
            )


TABLES: dict[str, TableDefinition] = {
    "families": TableDefinition(
        name="families",
        columns=("id", "name", "invite_code", "created_by", "created_at"),
        unique=(("invite_code",),),
        generated=("invite_code",),
    ),
    "family_members": TableDefinition(
        name="family_members",
        columns=(
            "id", "family_id", "user_id", "name", "role",
            "email", "phone", "avatar_url", "created_at",
        ),
        defaults={"role": "member", "email": None, "phone": None, "avatar_url": None},
        unique=(("family_id", "user_id"),),
    ),
    "join_requests": TableDefinition(
        name="join_requests",
        columns=(
            "id", "family_id", "user_id", "user_name", "user_email",
            "status", "created_at", "responded_at", "responded_by",
        ),
        defaults={
            "user_email": "",
            "status": "pending",
            "responded_at": None,
            "responded_by": None,
        },
    ),
    "tasks": TableDefinition(
        name="tasks",
        columns=(
            "id", "family_id", "title", "assignee", "priority", "completed",
            "due_date", "recurring", "created_at", "created_by",
        ),
        defaults={
            "assignee": "",
            "priority": "medium",
            "completed": False,
            "recurring": False,
            "created_by": None,
        },
        booleans=("completed", "recurring"),
    ),
    "bills": TableDefinition(
        name="bills",
        columns=("id", "family_id", "description", "amount", "due_date", "status", "created_at"),
        defaults={"status": "pending"},
    ),
    "transactions": TableDefinition(
        name="transactions",
        columns=(
            "id", "family_id", "description", "amount", "type", "category",
            "date", "icon", "created_at", "created_by",
        ),
        defaults={
            "family_id": None,
            "type": "expense",
            "category": "other",
            "icon": None,
            "created_by": None,
        },
    ),
    "shopping_items": TableDefinition(
        name="shopping_items",
        columns=(
            "id", "family_id", "name", "category", "quantity", "unit",
            "completed", "pantry_item_id", "created_at",
        ),
        defaults={
            "category": "others",
            "quantity": "1",
            "unit": "un",
            "completed": False,
            "pantry_item_id": None,
        },
        booleans=("completed",),
    ),
    "pantry_items": TableDefinition(
        name="pantry_items",
        columns=(
            "id", "family_id", "name", "category", "current_amount",
            "ideal_amount", "unit", "expiration_date", "created_at",
        ),
        defaults={
            "category": "others",
            "current_amount": "0",
            "ideal_amount": "0",
            "unit": "un",
            "expiration_date": None,
        },
    ),
}


def get_table(name: str) -> TableDefinition:
    try:
        return TABLES[name]
    except KeyError:
        raise SchemaError(f"Unknown table: {name}")


def prepare_insert(
    table: TableDefinition,
    row: dict,
    invite_code_length: int = 8,
    code_factory: Optional[Callable[[int], str]] = None,
) -> dict:
    """
    Build the canonical row for an insert: caller values + defaults +
    store-generated id, created_at and (for families) invite_code.
    """
    table.check_columns(row)
    prepared = {column: None for column in table.columns}
    prepared.update(table.defaults)
    prepared.update({k: to_cell(v) for k, v in row.items()})
    if not prepared.get("id"):
        prepared["id"] = str(uuid4())
    if not prepared.get("created_at"):
        prepared["created_at"] = utcnow().isoformat()
    if "invite_code" in table.generated and not prepared.get("invite_code"):
        prepared["invite_code"] = (code_factory or generate_invite_code)(invite_code_length)
    return prepared


def check_unique(table: TableDefinition, candidate: dict, existing: list[dict]) -> None:
    """
    Raise DuplicateError if candidate collides with any existing row on a
    unique key. Rows with the same id are the candidate itself and skipped.
    """
    for key in table.unique:
        values = tuple(candidate.get(column) for column in key)
        if any(v is None for v in values):
            continue
        for other in existing:
            if other.get("id") == candidate.get("id"):
                continue
            if tuple(other.get(column) for column in key) == values:
                raise DuplicateError(
                    f"Duplicate {table.name} row for ({', '.join(key)}) = {values}"
                )
