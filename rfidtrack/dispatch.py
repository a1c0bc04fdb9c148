from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .errors import TagTrackError
from .models import normalize_epc
from .scan_engine import ScanEngine

log = logging.getLogger("rfidtrack.dispatch")

DISPATCH_STATION = "final-dispatch"
HANDOVER_STATION = "handover"


@dataclass
class TerminalResult:
    """Coarse per-EPC outcome; ticketing detail is only on the bulk-scan path."""
    results: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r["success"])

    @property
    def failed(self) -> int:
        return len(self.results) - self.successful

    def to_dict(self) -> Dict[str, Any]:
        return {"successful": self.successful, "failed": self.failed, "results": list(self.results)}


def dispatch_notes(tracking_number: Optional[str], notes: Optional[str]) -> str:
    parts = [f"Tracking: {tracking_number}" if tracking_number else "", notes or ""]
    return " | ".join(p for p in parts if p)


class DispatchEngine:
    def __init__(self, scans: ScanEngine):
        self.scans = scans

    def _run(self, epcs: Sequence[str], station: str, by: str, action: str,
             notes: Optional[str]) -> TerminalResult:
        if len(epcs) > self.scans.bulk_limit:
            raise TagTrackError(f"Maximum {self.scans.bulk_limit} EPCs per request")
        out = TerminalResult()
        for epc in epcs:
            try:
                self.scans.process_scan(epc, station, by, action, notes or None)
            except TagTrackError as e:
                out.results.append({"epc": normalize_epc(epc), "success": False, "error": e.message})
                continue
            out.results.append({"epc": normalize_epc(epc), "success": True})
        return out

    def process_dispatch(self, epcs: Sequence[str], dispatched_by: str,
                         tracking_number: Optional[str] = None,
                         dispatch_method: Optional[str] = None,
                         notes: Optional[str] = None) -> TerminalResult:
        # no structured columns for courier data; it rides in the scan notes
        res = self._run(
            epcs, DISPATCH_STATION, dispatched_by,
            f"Dispatched via {dispatch_method or 'Unknown'}",
            dispatch_notes(tracking_number, notes),
        )
        log.info("dispatch_done", extra={"by": dispatched_by, "tracking": tracking_number,
                                         "successful": res.successful, "failed": res.failed})
        return res

    def process_handover(self, epcs: Sequence[str], handover_by: str, handover_to: str,
                         notes: Optional[str] = None) -> TerminalResult:
        res = self._run(epcs, HANDOVER_STATION, handover_by, f"Handed over to {handover_to}", notes)
        log.info("handover_done", extra={"by": handover_by, "to": handover_to,
                                         "successful": res.successful, "failed": res.failed})
        return res
