"""
rfidtrack/record_store.py
-------------------------
Thin client for the remote tag table (Airtable REST shape).

    GET    /{base}/{table}?filterByFormula=...   filtered lookup
    GET    /{base}/{table}?offset=<token>        paginated scan
    GET    /{base}/{table}/{id}                  single record
    POST   /{base}/{table}        {fields}       create
    PATCH  /{base}/{table}/{id}   {fields}       partial update

Every call has a bounded timeout. Transport errors, 429 and 5xx are retried
with exponential backoff (doubling, capped); anything else non-2xx raises
StoreError straight away. Nothing here knows what a tag is.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterator, List, Optional

import httpx

from .config_loader import get_http_cfg, get_record_store_cfg
from .errors import ConfigurationMissing, NetworkError, StoreError

log = logging.getLogger("rfidtrack.store")

DEFAULT_BASE_URL = "https://api.airtable.com/v0"


def formula_equals(field_name: str, value: str) -> str:
    """Build `{Field}="value"` with embedded quotes escaped."""
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'{{{field_name}}}="{escaped}"'


class RecordStoreClient:
    """
    CRUD over one remote table. Returns the store's raw record dicts
    ({"id", "fields", "createdTime"}); parsing belongs to the repository.
    """
    def __init__(
        self,
        api_key: str,
        base_id: str,
        table: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = 10.0,
        retries: int = 3,
        backoff_start_s: float = 0.25,
        backoff_max_s: float = 4.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        missing = [name for name, val in (
            ("AIRTABLE_API_KEY", api_key),
            ("AIRTABLE_BASE_ID", base_id),
            ("AIRTABLE_RFID_TABLE", table),
        ) if not val]
        if missing:
            raise ConfigurationMissing(missing, service="RFID record store")

        self.base_id = base_id
        self.table = table
        self.retries = max(0, int(retries))
        self.backoff_start_s = float(backoff_start_s)
        self.backoff_max_s = float(backoff_max_s)
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=f"{base_url.rstrip('/')}/{base_id}/{table}",
            timeout=timeout_s,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    @classmethod
    def from_config(cls, **overrides: Any) -> "RecordStoreClient":
        rs = get_record_store_cfg()
        http = get_http_cfg()
        kwargs: Dict[str, Any] = {
            "api_key": rs.get("api_key", ""),
            "base_id": rs.get("base_id", ""),
            "table": rs.get("table", ""),
            "base_url": rs.get("base_url") or DEFAULT_BASE_URL,
            "timeout_s": http["timeout_s"],
            "retries": http["retries"],
            "backoff_start_s": http["backoff_start_s"],
            "backoff_max_s": http["backoff_max_s"],
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    def close(self) -> None:
        self._client.close()

    # ---------- transport ----------
    def _request(self, method: str, path: str = "", *,
                 params: Optional[Dict[str, Any]] = None,
                 json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        backoff = self.backoff_start_s
        attempt = 0
        while True:
            attempt += 1
            t0 = time.perf_counter()
            try:
                resp = self._client.request(method, path, params=params, json=json)
            except httpx.TransportError as e:
                if attempt > self.retries:
                    log.error("store_network_error", extra={"method": method, "path": path, "err": str(e)})
                    raise NetworkError(f"Network error: {e}") from e
                log.warning("store_retry", extra={"method": method, "path": path,
                                                  "attempt": attempt, "err": str(e)})
                self._sleep(backoff)
                backoff = min(backoff * 2.0, self.backoff_max_s)
                continue
            except httpx.HTTPError as e:
                log.error("store_http_failure", extra={"method": method, "path": path, "err": str(e)})
                raise NetworkError(f"Network error: {e}") from e

            code = resp.status_code
            if (code == 429 or code >= 500) and attempt <= self.retries:
                log.warning("store_retry", extra={"method": method, "path": path,
                                                  "attempt": attempt, "status": code})
                self._sleep(backoff)
                backoff = min(backoff * 2.0, self.backoff_max_s)
                continue

            if not (200 <= code < 300):
                log.error("store_http_error", extra={"method": method, "path": path,
                                                     "status": code, "body": resp.text[:500]})
                raise StoreError(code, resp.text)

            log.debug("store_ok", extra={
                "method": method, "path": path, "status": code,
                "latency_ms": round((time.perf_counter() - t0) * 1000, 1),
            })
            try:
                return resp.json()
            except ValueError as e:
                raise StoreError(code, f"invalid JSON body: {e}") from e

    # ---------- reads ----------
    def list_page(self, offset: Optional[str] = None) -> Dict[str, Any]:
        """One page: {"records": [...], "offset"?: str}."""
        params = {"offset": offset} if offset else None
        return self._request("GET", "", params=params)

    def iter_records(self) -> Iterator[Dict[str, Any]]:
        """Follow offset tokens until the store stops returning one."""
        offset: Optional[str] = None
        while True:
            page = self.list_page(offset)
            for rec in page.get("records", []) or []:
                yield rec
            offset = page.get("offset")
            if not offset:
                return

    def list_all(self) -> List[Dict[str, Any]]:
        return list(self.iter_records())

    def find(self, formula: str) -> List[Dict[str, Any]]:
        data = self._request("GET", "", params={"filterByFormula": formula})
        return list(data.get("records", []) or [])

    def get(self, record_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/{record_id}")

    # ---------- writes ----------
    def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "", json={"fields": fields})

    def update(self, record_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PATCH", f"/{record_id}", json={"fields": fields})
