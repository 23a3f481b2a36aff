"""
stores/memory.py - In-process record store

Thread-safe dictionary-backed implementation of RecordStore. Useful for
dry runs and as the reference behavior for remote stores.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional
import copy
import logging
import threading
import uuid

from ..errors import RecordNotFoundError
from .protocol import DEFAULT_ID_FIELD

logger = logging.getLogger("stores.memory")


class InMemoryRecordStore:
    """Tables of dict records keyed by a generated identifier."""

    def __init__(self, id_field: str = DEFAULT_ID_FIELD):
        self.id_field = id_field
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def _new_id(self) -> str:
        return uuid.uuid4().hex

    def create(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            record_id = self._new_id()
            record = copy.deepcopy(dict(data))
            record[self.id_field] = record_id
            self._tables.setdefault(table, {})[record_id] = record
            logger.debug(f"Created {table}/{record_id}")
            return copy.deepcopy(record)

    def update(self, table: str, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            record = self._tables.get(table, {}).get(record_id)
            if record is None:
                raise RecordNotFoundError(table, record_id)

            for key, value in data.items():
                if key == self.id_field:
                    continue
                record[key] = copy.deepcopy(value)

            logger.debug(f"Updated {table}/{record_id}")
            return copy.deepcopy(record)

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            records = self._tables.get(table, {})
            if record_id not in records:
                raise RecordNotFoundError(table, record_id)

            del records[record_id]
            logger.debug(f"Deleted {table}/{record_id}")
            return True

    def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._tables.get(table, {}).get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def records(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._tables.get(table, {}).values()]

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._tables.get(table, {}))

    def clear(self) -> None:
        with self._lock:
            self._tables.clear()
