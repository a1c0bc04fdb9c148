from __future__ import annotations
"""
rfidtrack/scan_engine.py
------------------------
Scan ingestion: one EPC at one station by one operator.

Order of operations for a single scan
  1) normalize + validate EPC and station (no store call on bad input)
  2) resolve the tag (TagNotFound is a hard stop)
  3) status = fixed function of the station, never of the previous status
  4) append exactly one ScanRecord to the history
  5) persist status/station/last-scan/history in ONE update
  6) graduate tags with a ticket id: check in at the mapped station

Step 6 runs only after step 5 succeeded and its outcome never undoes step 5.
The internal record of movement is authoritative; the check-in result is
reported next to the tag.

Bulk scans are strictly sequential (record store rate limits) and isolate
failures per EPC.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .errors import PersistenceFailure, TagNotFound, TagTrackError
from .models import (
    ScanRecord, Tag, normalize_epc, require_station, require_valid_epc,
    status_for_station, ticketing_station_for, utc_iso,
)
from .repository import TagRepository
from .ticketing import CheckinResult, TicketingClient

log = logging.getLogger("rfidtrack.scan")


# ----------------------------- Results -----------------------------
@dataclass
class ScanOutcome:
    tag: Tag
    tito_checkin: Optional[CheckinResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag": self.tag.to_dict(),
            "titoCheckin": self.tito_checkin.to_dict() if self.tito_checkin else None,
        }


@dataclass
class BulkItemResult:
    epc: str
    success: bool
    tag: Optional[Tag] = None
    tito_checkin: Optional[CheckinResult] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"epc": self.epc, "success": self.success}
        if self.tag is not None:
            out["tag"] = self.tag.to_dict()
        if self.tito_checkin is not None:
            out["titoCheckin"] = self.tito_checkin.to_dict()
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class BulkScanResult:
    results: List[BulkItemResult] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        successful = sum(1 for r in self.results if r.success)
        return {
            "total": len(self.results),
            "successful": successful,
            "failed": len(self.results) - successful,
            "titoCheckins": sum(1 for r in self.results
                                if r.tito_checkin is not None and r.tito_checkin.success),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"results": [r.to_dict() for r in self.results], "summary": self.summary}


# ----------------------------- Engine -----------------------------
class ScanEngine:
    def __init__(self, repo: TagRepository, ticketing: Optional[TicketingClient] = None,
                 *, bulk_limit: int = 100, now: Callable[[], str] = utc_iso):
        self.repo = repo
        self.ticketing = ticketing
        self.bulk_limit = int(bulk_limit)
        self._now = now

    def process_scan(self, epc: str, station: str, scanned_by: str,
                     action: Optional[str] = None, notes: Optional[str] = None) -> ScanOutcome:
        norm = require_valid_epc(epc)
        station = require_station(station)
        t0 = time.perf_counter()

        tag = self.repo.get_by_epc(norm)
        if tag is None:
            raise TagNotFound(norm)

        record = ScanRecord(
            station=station,
            timestamp=self._now(),
            scanned_by=scanned_by,
            action=action or f"Scanned at {station}",
            notes=notes or None,
        )
        changes = {
            "status": status_for_station(station),
            "current_station": station,
            "last_scan_at": record.timestamp,
            "last_scan_by": scanned_by,
            "last_scan_station": station,
            "scan_history": [*tag.scan_history, record],
        }

        try:
            updated = self.repo.update(tag.id, changes, base=tag)
        except TagTrackError as e:
            log.error("scan_persist_failed", extra={"epc": norm, "station": station, "err": e.message})
            raise PersistenceFailure(norm, e) from e

        checkin = self._sync_checkin(tag, station)

        log.info("scan_recorded", extra={
            "epc": norm,
            "station": station,
            "status": changes["status"],
            "by": scanned_by,
            "tito": None if checkin is None else checkin.success,
            "latency_ms": round((time.perf_counter() - t0) * 1000, 1),
        })
        return ScanOutcome(tag=updated, tito_checkin=checkin)

    def _sync_checkin(self, tag: Tag, station: str) -> Optional[CheckinResult]:
        # Box tags never check in; their items sync when they are scanned themselves.
        if self.ticketing is None or not tag.is_graduate or not tag.tito_ticket_id:
            return None
        station_name = ticketing_station_for(station)
        if not station_name:
            return None

        result = self.ticketing.checkin_at_station(tag.tito_ticket_id, station_name)
        if not result.success:
            log.warning("tito_checkin_failed", extra={
                "epc": tag.epc, "ticket_id": tag.tito_ticket_id,
                "station": station_name, "err": result.error,
            })
        return result

    def process_bulk_scan(self, epcs: Sequence[str], station: str, scanned_by: str,
                          action: Optional[str] = None, notes: Optional[str] = None) -> BulkScanResult:
        if len(epcs) > self.bulk_limit:
            raise TagTrackError(f"Maximum {self.bulk_limit} EPCs per bulk scan")
        station = require_station(station)

        out = BulkScanResult()
        for epc in epcs:
            norm = normalize_epc(epc)
            try:
                res = self.process_scan(norm, station, scanned_by, action, notes)
            except TagTrackError as e:
                out.results.append(BulkItemResult(epc=norm, success=False, error=e.message))
                continue
            out.results.append(BulkItemResult(epc=norm, success=True, tag=res.tag,
                                              tito_checkin=res.tito_checkin))

        s = out.summary
        log.info("bulk_scan_done", extra={"station": station, "by": scanned_by, **s})
        return out
