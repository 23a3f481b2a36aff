"""
errors/ - Exception hierarchy

Precondition violations are raised synchronously; record store failures
are captured into transaction results.
"""

from .exceptions import (
    RecordTxError,
    TransactionStateError,
    CoordinatorDisabledError,
    RecordStoreError,
    RecordNotFoundError,
    TransientStoreError,
)

__all__ = [
    "RecordTxError",
    "TransactionStateError",
    "CoordinatorDisabledError",
    "RecordStoreError",
    "RecordNotFoundError",
    "TransientStoreError",
]
