from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from .errors import DuplicateKeyError, PersistenceError

logger = logging.getLogger(__name__)

# Unique columns of the cache tables.
DEFAULT_UNIQUE_KEYS: Dict[str, Tuple[str, ...]] = {
    "email_validations": ("email",),
    "phone_validations": ("e164",),
    "address_validations": ("cache_key",),
    "name_validations": ("name_key",),
}


class DataStore(Protocol):
    """Persistence collaborator used for reference data and the result cache."""

    def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        columns: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        order: Optional[str] = None,
    ) -> List[Dict[str, Any]]: ...

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]: ...

    def update(
        self, table: str, filters: Mapping[str, Any], changes: Mapping[str, Any]
    ) -> int: ...


def _matches(row: Mapping[str, Any], filters: Optional[Mapping[str, Any]]) -> bool:
    return all(row.get(key) == value for key, value in (filters or {}).items())


class InMemoryStore:
    """Thread-safe dict-of-lists store honouring per-table unique keys."""

    def __init__(
        self,
        tables: Optional[Mapping[str, Iterable[Mapping[str, Any]]]] = None,
        unique_keys: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        self._unique_keys = {
            table: tuple(cols)
            for table, cols in (unique_keys or DEFAULT_UNIQUE_KEYS).items()
        }
        for table, rows in (tables or {}).items():
            self._tables[table] = [dict(row) for row in rows]

    def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        columns: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        order: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [row for row in self._tables.get(table, []) if _matches(row, filters)]
        if order:
            descending = order.startswith("-")
            key = order.lstrip("-")
            rows = sorted(rows, key=lambda row: str(row.get(key, "")), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        if columns:
            rows = [{col: row.get(col) for col in columns} for row in rows]
        return copy.deepcopy(rows)

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        stored = copy.deepcopy(dict(row))
        unique = self._unique_keys.get(table, ())
        with self._lock:
            existing = self._tables.setdefault(table, [])
            if unique:
                key = {col: stored.get(col) for col in unique}
                if any(_matches(current, key) for current in existing):
                    raise DuplicateKeyError(
                        f"duplicate key {key!r} in {table}", operation="insert", table=table
                    )
            existing.append(stored)
        return copy.deepcopy(stored)

    def update(
        self, table: str, filters: Mapping[str, Any], changes: Mapping[str, Any]
    ) -> int:
        if not filters:
            raise PersistenceError("update requires filters", operation="update", table=table)
        updated = 0
        with self._lock:
            for row in self._tables.get(table, []):
                if _matches(row, filters):
                    row.update(copy.deepcopy(dict(changes)))
                    updated += 1
        return updated

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._tables.get(table, []))
