"""
recordtx/errors/exceptions.py - Transaction and record store exceptions

Precondition violations are raised to the caller. Store failures are raised
by record stores and captured by the transaction into its result.
"""

from __future__ import annotations

from typing import Optional


class RecordTxError(Exception):
    """Base exception for recordtx."""

    def __init__(
        self,
        message: str,
        recoverable: bool = False,
        transaction_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable
        self.transaction_id = transaction_id

    def __str__(self) -> str:
        parts = [self.message]
        if self.transaction_id:
            parts.append(f"[transaction_id={self.transaction_id}]")
        return " ".join(parts)


class TransactionStateError(RecordTxError):
    """Raised when an operation is not allowed in the transaction's current state."""

    def __init__(
        self,
        message: str,
        state: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ):
        super().__init__(message, recoverable=False, transaction_id=transaction_id)
        self.state = state


class CoordinatorDisabledError(RecordTxError):
    """Raised by begin() while transaction support is disabled."""

    def __init__(self, message: str = "Transaction support is disabled"):
        super().__init__(message, recoverable=False)


class RecordStoreError(RecordTxError):
    """Raised when a record store call fails."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        record_id: Optional[str] = None,
        status_code: Optional[int] = None,
        recoverable: bool = False,
    ):
        super().__init__(message, recoverable=recoverable)
        self.table = table
        self.record_id = record_id
        self.status_code = status_code

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f"(HTTP {self.status_code})")
        return " ".join(parts)


class RecordNotFoundError(RecordStoreError):
    """Raised when the target record does not exist."""

    def __init__(
        self,
        table: str,
        record_id: str,
        status_code: Optional[int] = None,
    ):
        super().__init__(
            f"Record {record_id} not found in {table}",
            table=table,
            record_id=record_id,
            status_code=status_code,
        )


class TransientStoreError(RecordStoreError):
    """Raised for store failures that may succeed on retry."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        record_id: Optional[str] = None,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            table=table,
            record_id=record_id,
            status_code=status_code,
            recoverable=True,
        )
        self.original_error = original_error
