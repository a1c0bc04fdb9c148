"""
rfidtrack/ticketing.py
----------------------
Client for the event ticketing system (Tito shape).

Two things are consumed:
  - check-in at a named station (POST to the check-in list of that station)
  - ticket lookup by convocation number (used while encoding graduate tags)

Check-ins never raise. The outcome is a CheckinResult value so the scan
engine can attach it to an already-committed scan.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx

from .config_loader import get_http_cfg, get_ticketing_cfg
from .errors import ConfigurationMissing, NetworkError, StoreError

log = logging.getLogger("rfidtrack.tito")

DEFAULT_API_BASE = "https://api.tito.io/v3"
DEFAULT_CHECKIN_BASE = "https://checkin.tito.io"


@dataclass(frozen=True)
class CheckinResult:
    success: bool
    station_name: Optional[str] = None
    error: Optional[str] = None
    uuid: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success}
        if self.station_name:
            out["station"] = self.station_name
        if self.error:
            out["error"] = self.error
        if self.uuid:
            out["uuid"] = self.uuid
        return out


@dataclass(frozen=True)
class TicketInfo:
    id: int
    slug: str
    name: str = ""


class TicketingClient:
    def __init__(
        self,
        checkin_lists: Mapping[str, str],
        *,
        token: str = "",
        account: str = "",
        event: str = "",
        api_base: str = DEFAULT_API_BASE,
        checkin_base: str = DEFAULT_CHECKIN_BASE,
        timeout_s: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        # blank slugs in YAML mean "not wired yet"
        self.checkin_lists = {k: v for k, v in (checkin_lists or {}).items() if v}
        self.token = token
        self.account = account
        self.event = event
        self.api_base = api_base.rstrip("/")
        self.checkin_base = checkin_base.rstrip("/")
        self._client = httpx.Client(timeout=timeout_s, transport=transport,
                                    headers={"Accept": "application/json"})

    @classmethod
    def from_config(cls, **overrides: Any) -> "TicketingClient":
        tc = get_ticketing_cfg()
        kwargs: Dict[str, Any] = {
            "checkin_lists": tc.get("checkin_lists") or {},
            "token": tc.get("token", ""),
            "account": tc.get("account", ""),
            "event": tc.get("event", ""),
            "api_base": tc.get("api_base") or DEFAULT_API_BASE,
            "checkin_base": tc.get("checkin_base") or DEFAULT_CHECKIN_BASE,
            "timeout_s": get_http_cfg()["timeout_s"],
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    def close(self) -> None:
        self._client.close()

    # ---------- check-in ----------
    def checkin_at_station(self, ticket_id: Optional[int], station_name: str) -> CheckinResult:
        slug = self.checkin_lists.get(station_name)
        if not slug:
            return CheckinResult(False, station_name, f"No checkin list configured for station: {station_name}")
        if not ticket_id:
            return CheckinResult(False, station_name, "Invalid ticket ID for check-in")

        url = f"{self.checkin_base}/checkin_lists/{slug}/checkins"
        t0 = time.perf_counter()
        try:
            resp = self._client.post(url, json={"checkin": {"ticket_id": int(ticket_id)}})
        except httpx.HTTPError as e:
            log.warning("tito_checkin_network_error",
                        extra={"ticket_id": ticket_id, "station": station_name, "err": str(e)})
            return CheckinResult(False, station_name, f"Network error: {e}")

        if resp.status_code == 422 and "already" in resp.text:
            return CheckinResult(False, station_name, "Ticket already checked in at this station")
        if not (200 <= resp.status_code < 300):
            log.warning("tito_checkin_failed", extra={
                "ticket_id": ticket_id, "station": station_name,
                "status": resp.status_code, "body": resp.text[:300],
            })
            return CheckinResult(False, station_name, f"Check-in failed: {resp.status_code}")

        try:
            data = resp.json()
        except ValueError:
            data = {}
        log.info("tito_checkin_ok", extra={
            "ticket_id": ticket_id, "station": station_name,
            "latency_ms": round((time.perf_counter() - t0) * 1000, 1),
        })
        return CheckinResult(True, station_name, uuid=(data or {}).get("uuid"))

    # ---------- ticket lookup ----------
    def find_ticket_by_convocation_number(self, convocation_number: str) -> Optional[TicketInfo]:
        """
        Search tickets and return the one tagged with this convocation number.
        Raises ConfigurationMissing / NetworkError / StoreError; None when no match.
        """
        missing = [name for name, val in (
            ("TITO_API_TOKEN", self.token),
            ("TITO_ACCOUNT_SLUG", self.account),
            ("TITO_EVENT_SLUG", self.event),
        ) if not val]
        if missing:
            raise ConfigurationMissing(missing, service="Tito API")

        conv = str(convocation_number or "").strip().upper()
        url = f"{self.api_base}/{self.account}/{self.event}/tickets"
        try:
            resp = self._client.get(
                url,
                params={"search[q]": conv},
                headers={"Authorization": f"Token token={self.token}"},
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"Network error: {e}") from e
        if not (200 <= resp.status_code < 300):
            raise StoreError(resp.status_code, resp.text)

        try:
            tickets = (resp.json() or {}).get("tickets", []) or []
        except ValueError as e:
            raise StoreError(resp.status_code, f"invalid JSON body: {e}") from e
        for t in tickets:
            tags = [str(x).strip().upper() for x in (t.get("tag_names") or [])]
            if conv in tags:
                return TicketInfo(id=int(t.get("id") or 0), slug=str(t.get("slug") or ""),
                                  name=str(t.get("name") or ""))
        return None
