from __future__ import annotations

import logging
from typing import Dict, Optional

from .errors import DuplicateKeyError, PersistenceError
from .logging_utils import mask_value
from .models import ValidationResult
from .store import DataStore

logger = logging.getLogger(__name__)

EMAIL_TABLE = "email_validations"
PHONE_TABLE = "phone_validations"
ADDRESS_TABLE = "address_validations"
NAME_TABLE = "name_validations"

# Column holding the lookup key for each cache table.
CACHE_KEY_COLUMNS: Dict[str, str] = {
    EMAIL_TABLE: "email",
    PHONE_TABLE: "e164",
    ADDRESS_TABLE: "cache_key",
    NAME_TABLE: "name_key",
}


class ResultCache:
    """
    Trust-forever store of previously confirmed results.

    A hit is returned exactly as it was written. Nothing here expires or
    re-validates; callers decide what is worth writing.
    """

    def __init__(self, store: Optional[DataStore], enabled: bool = True) -> None:
        self.store = store
        self.enabled = enabled and store is not None

    def _column(self, table: str) -> str:
        try:
            return CACHE_KEY_COLUMNS[table]
        except KeyError:
            raise ValueError(f"Unknown cache table: {table}") from None

    def get(self, table: str, key: str) -> Optional[ValidationResult]:
        if not self.enabled or not key:
            return None
        column = self._column(table)
        try:
            rows = self.store.select(table, {column: key}, limit=1)
        except PersistenceError as exc:
            logger.warning("Cache read failed for %s: %s", table, exc)
            return None
        if not rows:
            return None
        payload = rows[0].get("result")
        if not payload:
            return None
        try:
            return ValidationResult.from_mapping(payload)
        except (KeyError, ValueError, TypeError) as exc:
            logger.warning("Ignoring unreadable cache row in %s for %s: %s", table, mask_value(key), exc)
            return None

    def put(self, table: str, key: str, result: ValidationResult) -> bool:
        if not self.enabled or not key:
            return False
        column = self._column(table)
        row = {column: key, "result": result.to_dict(), "check_id": result.check_id}
        try:
            self.store.insert(table, row)
        except DuplicateKeyError:
            logger.debug("Cache row already present in %s", table)
            return False
        except PersistenceError as exc:
            logger.warning("Cache write failed for %s: %s", table, exc)
            return False
        logger.debug("Cached %s result for %s", table, mask_value(key))
        return True
