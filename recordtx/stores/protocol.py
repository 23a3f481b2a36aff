"""
stores/protocol.py - Record store protocol

The non-transactional collaborator a transaction writes through.
Each call either returns or raises; partial success is never reported.
"""

from __future__ import annotations

from typing import Any, Dict, Protocol, Union, runtime_checkable


DEFAULT_ID_FIELD = "sys_id"


@runtime_checkable
class RecordStore(Protocol):
    """
    Create, update and delete records in named tables.

    Stores may expose an ``id_field`` attribute naming the identifier key
    of returned records; ``sys_id`` is assumed otherwise.
    """

    def create(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a record and return it with its assigned identifier."""
        ...

    def update(self, table: str, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Update fields of an existing record and return the updated record."""
        ...

    def delete(self, table: str, record_id: str) -> Union[bool, Dict[str, Any]]:
        """Delete a record. A False return means nothing was deleted."""
        ...


def id_field_of(store: Any) -> str:
    """Identifier key used by a store's records."""
    return getattr(store, "id_field", None) or DEFAULT_ID_FIELD
