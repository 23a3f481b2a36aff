"""
stores/servicenow.py - ServiceNow Table API record store

RecordStore implementation over /api/now/table using a synchronous
httpx client. Responses are unwrapped from the {"result": ...} envelope.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, TYPE_CHECKING

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..errors import RecordNotFoundError, RecordStoreError, TransientStoreError
from .protocol import DEFAULT_ID_FIELD

if TYPE_CHECKING:
    from recordtx.bootstrap.config import ServiceNowConfig

logger = logging.getLogger("stores.servicenow")

TABLE_API_PATH = "/api/now/table"

# Status codes worth retrying
TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class TableResponse(BaseModel):
    """Envelope returned by the Table API for single-record calls."""

    result: Dict[str, Any]


class ServiceNowRecordStore:
    """
    Record store backed by a ServiceNow instance.

    Authenticates with a bearer token when one is given, otherwise with
    basic auth.

    Usage:
        with ServiceNowRecordStore("https://dev1234.service-now.com", token="...") as store:
            tx = coordinator.begin(store)
            tx.create("incident", {"short_description": "Printer on fire"})
            tx.commit()
    """

    id_field = DEFAULT_ID_FIELD

    def __init__(
        self,
        instance_url: str,
        token: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout_seconds: float = 30.0,
        verify_ssl: bool = True,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the store.

        Args:
            instance_url: Instance base URL, e.g. https://dev1234.service-now.com
            token: Bearer token (with or without the "Bearer " prefix)
            username: Basic auth user, used when no token is given
            password: Basic auth password
            timeout_seconds: Per-request timeout
            verify_ssl: Verify TLS certificates
            transport: Optional httpx transport, mainly for tests
        """
        self.instance_url = instance_url.rstrip("/")

        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        auth = None
        if token:
            headers["Authorization"] = token if token.startswith("Bearer ") else f"Bearer {token}"
        elif username:
            auth = httpx.BasicAuth(username, password or "")

        self._client = httpx.Client(
            base_url=f"{self.instance_url}{TABLE_API_PATH}",
            headers=headers,
            auth=auth,
            timeout=timeout_seconds,
            verify=verify_ssl,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: "ServiceNowConfig") -> "ServiceNowRecordStore":
        if not config.instance_url:
            raise ValueError("ServiceNow instance_url is not configured")
        return cls(
            instance_url=config.instance_url,
            token=config.token or None,
            username=config.username or None,
            password=config.password or None,
            timeout_seconds=config.timeout_seconds,
            verify_ssl=config.verify_ssl,
        )

    # === RECORD STORE ===

    def create(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        response = self._request("POST", f"/{table}", table, json=data)
        record = self._unwrap(response, table)
        logger.debug(f"Created {table}/{record.get(self.id_field)}")
        return record

    def update(self, table: str, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        response = self._request("PUT", f"/{table}/{record_id}", table, record_id, json=data)
        if response.status_code == 404:
            raise RecordNotFoundError(table, record_id, status_code=404)
        logger.debug(f"Updated {table}/{record_id}")
        return self._unwrap(response, table, record_id)

    def delete(self, table: str, record_id: str) -> bool:
        response = self._request("DELETE", f"/{table}/{record_id}", table, record_id)
        if response.status_code == 404:
            logger.debug(f"Delete of {table}/{record_id}: not found")
            return False
        logger.debug(f"Deleted {table}/{record_id}")
        return True

    def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a record, e.g. to capture a prior snapshot. None if missing."""
        response = self._request("GET", f"/{table}/{record_id}", table, record_id)
        if response.status_code == 404:
            return None
        return self._unwrap(response, table, record_id)

    # === HTTP ===

    def _request(
        self,
        method: str,
        path: str,
        table: str,
        record_id: Optional[str] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request. Returns 2xx and 404 responses, raises otherwise."""
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientStoreError(
                f"ServiceNow request timed out: {method} {table}",
                table=table,
                record_id=record_id,
                original_error=e,
            ) from e
        except httpx.TransportError as e:
            raise TransientStoreError(
                f"ServiceNow connection failed: {e}",
                table=table,
                record_id=record_id,
                original_error=e,
            ) from e

        if response.is_success or response.status_code == 404:
            return response

        message = f"ServiceNow API error on {method} {table}: {_error_detail(response)}"
        if response.status_code in TRANSIENT_STATUS_CODES:
            raise TransientStoreError(
                message,
                table=table,
                record_id=record_id,
                status_code=response.status_code,
            )
        raise RecordStoreError(
            message,
            table=table,
            record_id=record_id,
            status_code=response.status_code,
        )

    def _unwrap(
        self,
        response: httpx.Response,
        table: str,
        record_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            return TableResponse.model_validate(response.json()).result
        except (ValueError, PydanticValidationError) as e:
            raise RecordStoreError(
                f"Unexpected ServiceNow response for {table}: {e}",
                table=table,
                record_id=record_id,
                status_code=response.status_code,
            ) from e

    # === LIFECYCLE ===

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ServiceNowRecordStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def _error_detail(response: httpx.Response) -> str:
    """Best-effort error message from a Table API error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message") or error.get("detail") or str(error)
    return response.text[:200]
