"""In-memory record store for CRM entities.

Stands in for the relational storage layer: each entity type gets a
``Table`` offering create/get/update/delete by id and listing with a filter
predicate. Rows handed out are deep copies, so callers hold immutable
snapshots of the row as it was at read time.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Generic, TypeVar

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from leadhub.errors import NotFoundError, ValidationError
from leadhub.storage.models import Interaction, Lead, Product, User

logger = structlog.get_logger(__name__)

R = TypeVar("R", bound=BaseModel)


class Table(Generic[R]):
    """A single entity table keyed by auto-incremented integer ids."""

    def __init__(self, name: str, model: type[R]) -> None:
        self.name = name
        self._model = model
        self._rows: dict[int, R] = {}
        self._next_id = 1

    def _validate(self, values: dict[str, Any]) -> R:
        try:
            return self._model.model_validate(values)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e, prefix=f"Invalid {self.name}") from e

    def get(self, record_id: int) -> R | None:
        """Get a copy of a row, or None if absent."""
        row = self._rows.get(record_id)
        return row.model_copy(deep=True) if row is not None else None

    def require(self, record_id: int) -> R:
        """Get a copy of a row.

        Raises:
            NotFoundError: If the row does not exist.
        """
        row = self.get(record_id)
        if row is None:
            raise NotFoundError(self.name, record_id)
        return row

    def exists(self, record_id: int) -> bool:
        return record_id in self._rows

    def insert(self, values: dict[str, Any]) -> R:
        """Insert a new row and return its snapshot.

        Args:
            values: Column values (without ``id``).

        Returns:
            The stored row.
        """
        record_id = self._next_id
        row = self._validate({**values, "id": record_id})
        self._rows[record_id] = row
        self._next_id += 1
        return row.model_copy(deep=True)

    def update(self, record_id: int, changes: dict[str, Any]) -> R:
        """Apply changes to a row and return the post-update snapshot.

        Raises:
            NotFoundError: If the row does not exist.
        """
        current = self._rows.get(record_id)
        if current is None:
            raise NotFoundError(self.name, record_id)
        row = self._validate({**current.model_dump(), **changes, "id": record_id})
        self._rows[record_id] = row
        return row.model_copy(deep=True)

    def delete(self, record_id: int) -> R:
        """Remove a row and return the removed snapshot.

        Raises:
            NotFoundError: If the row does not exist.
        """
        row = self._rows.pop(record_id, None)
        if row is None:
            raise NotFoundError(self.name, record_id)
        return row

    def list(self, predicate: Callable[[R], bool] | None = None) -> list[R]:
        """List rows in insertion order, optionally filtered."""
        return [
            row.model_copy(deep=True)
            for row in self._rows.values()
            if predicate is None or predicate(row)
        ]

    def count(self, predicate: Callable[[R], bool] | None = None) -> int:
        if predicate is None:
            return len(self._rows)
        return sum(1 for row in self._rows.values() if predicate(row))

    def clear(self) -> None:
        self._rows.clear()
        self._next_id = 1


class RecordStore:
    """Holds the CRM entity tables."""

    def __init__(self) -> None:
        self.users: Table[User] = Table("User", User)
        self.products: Table[Product] = Table("Product", Product)
        self.leads: Table[Lead] = Table("Lead", Lead)
        self.interactions: Table[Interaction] = Table("Interaction", Interaction)

    def clear(self) -> None:
        """Remove all rows from every table."""
        for table in (self.users, self.products, self.leads, self.interactions):
            table.clear()
        logger.info("record_store_cleared")


# Global store instance
_record_store: RecordStore | None = None


def get_record_store() -> RecordStore:
    """Get the global record store.

    Returns:
        Singleton RecordStore.
    """
    global _record_store
    if _record_store is None:
        _record_store = RecordStore()
    return _record_store


def set_record_store(store: RecordStore | None) -> None:
    """Set the global record store.

    Useful for testing.

    Args:
        store: RecordStore instance (None resets to a fresh default).
    """
    global _record_store
    _record_store = store
