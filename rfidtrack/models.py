from __future__ import annotations
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import InvalidEpc, InvalidStation

# ----------------------------- Vocabulary -----------------------------
TAG_TYPES = ("graduate", "box")
STATUSES = ("encoded", "scanned", "dispatched", "delivered", "returned", "void")

# Physical workflow order; dashboards render breakdowns in this order.
STATIONS = (
    "encoding",
    "packing",
    "dispatch-venue",
    "registration",
    "gown-issue",
    "gown-return",
    "certificate-collection",
    "return-ho",
    "address-label",
    "final-dispatch",
    "handover",
)

# Stations that move a tag past plain "scanned"; everything else is "scanned".
_TERMINAL_STATUS = {
    "final-dispatch": "dispatched",
    "handover": "delivered",
    "return-ho": "returned",
}

# internal station -> check-in station name on the ticketing side.
# encoding and handover have no check-in list.
TICKETING_STATION_NAMES = {
    "packing": "Packing",
    "dispatch-venue": "Dispatch to Convocation",
    "registration": "Registration",
    "gown-issue": "Gown Issued",
    "gown-return": "Gown Returned",
    "certificate-collection": "Certificate Collected",
    "return-ho": "Dispatch to Head Office",
    "address-label": "Address Label Printed",
    "final-dispatch": "Dispatched DTDC",
}

# Graduate EPCs are convocation numbers like 118AEC1001 (AEC/WEC exam categories)
EPC_GRADUATE_PATTERN = re.compile(r"^\d+(?:AEC|WEC)\d+$", re.IGNORECASE)
EPC_PREFIX_BOX = "BOX-"

def utc_iso() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ----------------------------- EPC helpers -----------------------------
def normalize_epc(epc: Any) -> str:
    return str(epc or "").strip().upper()


def is_graduate_epc(epc: str) -> bool:
    return bool(EPC_GRADUATE_PATTERN.match(normalize_epc(epc)))


def is_box_epc(epc: str) -> bool:
    return normalize_epc(epc).startswith(EPC_PREFIX_BOX)


def is_valid_epc(epc: str) -> bool:
    norm = normalize_epc(epc)
    if not norm:
        return False
    return is_graduate_epc(norm) or is_box_epc(norm)


def require_valid_epc(epc: Any) -> str:
    """Normalize and validate; raises InvalidEpc before anything touches the store."""
    norm = normalize_epc(epc)
    if not is_valid_epc(norm):
        raise InvalidEpc(str(epc))
    return norm


def tag_type_from_epc(epc: str) -> Optional[str]:
    if is_graduate_epc(epc):
        return "graduate"
    if is_box_epc(epc):
        return "box"
    return None


def box_id_from_epc(epc: str) -> Optional[str]:
    norm = normalize_epc(epc)
    if norm.startswith(EPC_PREFIX_BOX):
        return norm[len(EPC_PREFIX_BOX):]
    return None


# ----------------------------- Station helpers -----------------------------
def require_station(station: Any) -> str:
    s = str(station or "").strip().lower()
    if s not in STATIONS:
        raise InvalidStation(str(station))
    return s


def status_for_station(station: str) -> str:
    """Pure function of the station; prior status never matters."""
    return _TERMINAL_STATUS.get(station, "scanned")


def ticketing_station_for(station: str) -> Optional[str]:
    return TICKETING_STATION_NAMES.get(station)


# ----------------------------- Data structs -----------------------------
@dataclass(frozen=True)
class ScanRecord:
    station: str
    timestamp: str
    scanned_by: str
    action: str
    notes: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ScanRecord":
        return cls(
            station=str(d.get("station") or ""),
            timestamp=str(d.get("timestamp") or ""),
            scanned_by=str(d.get("scannedBy") or ""),
            action=str(d.get("action") or ""),
            notes=d.get("notes") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "station": self.station,
            "timestamp": self.timestamp,
            "scannedBy": self.scanned_by,
            "action": self.action,
        }
        if self.notes:
            out["notes"] = self.notes
        return out


@dataclass
class Tag:
    epc: str
    type: str = "graduate"
    id: Optional[str] = None
    status: str = "encoded"
    current_station: str = "encoding"
    encoded_at: str = ""
    encoded_by: str = ""

    # graduate tags
    convocation_number: Optional[str] = None
    graduate_name: Optional[str] = None
    tito_ticket_id: Optional[int] = None
    tito_ticket_slug: Optional[str] = None

    # box tags
    box_id: Optional[str] = None
    box_label: Optional[str] = None
    box_contents: List[str] = field(default_factory=list)

    last_scan_at: Optional[str] = None
    last_scan_by: Optional[str] = None
    last_scan_station: Optional[str] = None
    scan_history: List[ScanRecord] = field(default_factory=list)

    @property
    def is_graduate(self) -> bool:
        return self.type == "graduate"

    @property
    def is_box(self) -> bool:
        return self.type == "box"

    @property
    def checkin_ready(self) -> bool:
        # graduate tags encoded without a resolvable ticket cannot be synced
        return self.is_graduate and bool(self.tito_ticket_slug)

    def has_scan_at(self, station: str) -> bool:
        return any(rec.station == station for rec in self.scan_history)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly snapshot in the camelCase shape callers expect."""
        out: Dict[str, Any] = {
            "id": self.id,
            "epc": self.epc,
            "type": self.type,
            "status": self.status,
            "currentStation": self.current_station,
            "encodedAt": self.encoded_at,
            "encodedBy": self.encoded_by,
            "lastScanAt": self.last_scan_at,
            "lastScanBy": self.last_scan_by,
            "lastScanStation": self.last_scan_station,
            "scanHistory": [rec.to_dict() for rec in self.scan_history],
        }
        if self.is_graduate:
            out.update({
                "convocationNumber": self.convocation_number,
                "graduateName": self.graduate_name,
                "titoTicketId": self.tito_ticket_id,
                "titoTicketSlug": self.tito_ticket_slug,
            })
        else:
            out.update({
                "boxId": self.box_id,
                "boxLabel": self.box_label,
                "boxContents": list(self.box_contents),
            })
        return out
