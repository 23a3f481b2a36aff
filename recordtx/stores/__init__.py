"""
stores/ - Record stores

Non-transactional collaborators a transaction writes through.
"""

from .protocol import RecordStore, DEFAULT_ID_FIELD, id_field_of
from .memory import InMemoryRecordStore
from .servicenow import ServiceNowRecordStore, TableResponse

__all__ = [
    "RecordStore",
    "DEFAULT_ID_FIELD",
    "id_field_of",
    "InMemoryRecordStore",
    "ServiceNowRecordStore",
    "TableResponse",
]
