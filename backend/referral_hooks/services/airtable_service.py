"""Airtable record store - REST API access over httpx"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from referral_hooks.core.config import settings
from referral_hooks.core.errors import UpstreamError
from referral_hooks.core.logging import airtable_logger as logger
from referral_hooks.core.metrics import upstream_errors_counter


@dataclass
class AirtableRecord:
    id: str
    fields: Dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default=None):
        return self.fields.get(name, default)


def escape_formula_value(value: str) -> str:
    """Escape a string so it can sit inside a double-quoted formula literal"""
    return str(value).replace("\\", "\\\\").replace('"', '\\"')


def field_equals(field_name: str, value: str) -> str:
    """Formula matching records whose field equals value exactly"""
    return f'{{{field_name}}} = "{escape_formula_value(value)}"'


class AirtableClient:
    """Handle on one Airtable base.

    Pass ``http_client`` to reuse a connection pool or to plug in a test
    transport; otherwise a client is created from the timeout setting.
    """

    def __init__(
        self,
        api_key: str,
        base_id: str,
        api_url: str = "https://api.airtable.com/v0",
        timeout: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self.base_id = base_id
        self.api_url = api_url.rstrip("/")
        self._client = http_client or httpx.Client(timeout=timeout)
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    @classmethod
    def from_settings(cls) -> "AirtableClient":
        return cls(
            settings.AIRTABLE_API_KEY,
            settings.AIRTABLE_BASE_ID,
            api_url=settings.AIRTABLE_API_URL,
            timeout=settings.AIRTABLE_TIMEOUT,
        )

    def close(self):
        self._client.close()

    def _table_url(self, table: str) -> str:
        return f"{self.api_url}/{self.base_id}/{quote(table, safe='')}"

    def _request(self, method: str, table: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self._client.request(method, self._table_url(table), headers=self._headers, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            upstream_errors_counter.labels(service="airtable").inc()
            body = e.response.text[:200] if e.response.text else ""
            logger.error(f"Airtable {method} {table} returned HTTP {e.response.status_code}: {body}")
            raise UpstreamError(
                f"Airtable request failed on table {table}",
                details=f"HTTP {e.response.status_code}: {body}",
                service="airtable",
            )
        except httpx.RequestError as e:
            upstream_errors_counter.labels(service="airtable").inc()
            logger.error(f"Airtable {method} {table} transport error: {e}")
            raise UpstreamError(
                f"Airtable request failed on table {table}", details=str(e), service="airtable"
            )

    def select(self, table: str, formula: Optional[str] = None, max_records: Optional[int] = None) -> List[AirtableRecord]:
        """Return the first page of records matching formula"""
        params: Dict[str, Any] = {}
        if formula:
            params["filterByFormula"] = formula
        if max_records:
            params["maxRecords"] = max_records

        payload = self._request("GET", table, params=params)
        records = [
            AirtableRecord(id=record["id"], fields=record.get("fields", {}))
            for record in payload.get("records", [])
        ]
        logger.debug(f"Airtable select on {table} returned {len(records)} record(s)")
        return records

    def find_first(self, table: str, field_name: str, value: str) -> Optional[AirtableRecord]:
        records = self.select(table, formula=field_equals(field_name, value), max_records=1)
        return records[0] if records else None

    def update(self, table: str, record_id: str, fields: Dict[str, Any]) -> AirtableRecord:
        """Patch the given fields of one record, leaving the others untouched"""
        payload = self._request(
            "PATCH", table, json={"records": [{"id": record_id, "fields": fields}]}
        )
        updated = payload.get("records", [{}])[0]
        logger.info(f"Airtable record {record_id} updated on {table}: {sorted(fields)}")
        return AirtableRecord(id=updated.get("id", record_id), fields=updated.get("fields", {}))
