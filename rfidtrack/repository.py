"""
rfidtrack/repository.py
-----------------------
Tag records <-> record-store fields, plus get/create/update/list built on the
RecordStoreClient and a TagCache.

Field mapping is fixed (see FIELDS). `Scan History` and `Box Contents` are
JSON strings in the store; anything unparseable reads back as an empty list.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from .errors import DuplicateEpc, TagTrackError
from .models import STATIONS, STATUSES, TAG_TYPES, ScanRecord, Tag, normalize_epc
from .record_store import RecordStoreClient, formula_equals
from .tag_cache import TagCache

log = logging.getLogger("rfidtrack.repo")

# Tag attribute -> store column
FIELDS = {
    "epc":                "EPC",
    "type":               "Type",
    "convocation_number": "Convocation Number",
    "box_id":             "Box ID",
    "graduate_name":      "Graduate Name",
    "tito_ticket_id":     "Tito Ticket ID",
    "tito_ticket_slug":   "Tito Ticket Slug",
    "status":             "Status",
    "current_station":    "Current Station",
    "encoded_at":         "Encoded At",
    "encoded_by":         "Encoded By",
    "last_scan_at":       "Last Scan At",
    "last_scan_by":       "Last Scan By",
    "last_scan_station":  "Last Scan Station",
    "scan_history":       "Scan History",
    "box_contents":       "Box Contents",
    "box_label":          "Box Label",
}

# Immutable after creation; update() refuses to write these.
IMMUTABLE = {"epc", "type", "encoded_at", "encoded_by"}


# ---------- parsing ----------
def _json_list(raw: Any) -> List[Any]:
    if isinstance(raw, list):
        return raw
    if not raw:
        return []
    try:
        val = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return val if isinstance(val, list) else []


def _dedupe_epcs(items: List[Any]) -> List[str]:
    seen: Dict[str, None] = {}
    for item in items:
        epc = normalize_epc(item)
        if epc:
            seen.setdefault(epc, None)
    return list(seen)


def _opt_int(raw: Any) -> Optional[int]:
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def parse_record(record: Dict[str, Any]) -> Tag:
    f = record.get("fields", {}) or {}

    history = [ScanRecord.from_dict(x) for x in _json_list(f.get("Scan History")) if isinstance(x, dict)]

    ttype = f.get("Type") if f.get("Type") in TAG_TYPES else "graduate"
    status = f.get("Status") if f.get("Status") in STATUSES else "encoded"
    station = f.get("Current Station") if f.get("Current Station") in STATIONS else "encoding"

    return Tag(
        id=record.get("id"),
        epc=normalize_epc(f.get("EPC")),
        type=ttype,
        convocation_number=f.get("Convocation Number") or None,
        box_id=f.get("Box ID") or None,
        graduate_name=f.get("Graduate Name") or None,
        tito_ticket_id=_opt_int(f.get("Tito Ticket ID")),
        tito_ticket_slug=f.get("Tito Ticket Slug") or None,
        status=status,
        current_station=station,
        encoded_at=f.get("Encoded At") or record.get("createdTime") or "",
        encoded_by=f.get("Encoded By") or "",
        last_scan_at=f.get("Last Scan At") or None,
        last_scan_by=f.get("Last Scan By") or None,
        last_scan_station=f.get("Last Scan Station") or None,
        scan_history=history,
        box_contents=_dedupe_epcs(_json_list(f.get("Box Contents"))),
        box_label=f.get("Box Label") or None,
    )


# ---------- serialization ----------
def to_fields(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Map Tag attribute names to store columns; None values are skipped."""
    fields: Dict[str, Any] = {}
    for attr, value in changes.items():
        column = FIELDS.get(attr)
        if column is None or value is None:
            continue
        if attr == "scan_history":
            value = json.dumps([rec.to_dict() if isinstance(rec, ScanRecord) else rec for rec in value])
        elif attr == "box_contents":
            value = json.dumps(list(value))
        elif attr == "tito_ticket_id":
            value = str(value)
        fields[column] = value
    return fields


def tag_to_fields(tag: Tag) -> Dict[str, Any]:
    changes = {attr: getattr(tag, attr) for attr in FIELDS}
    if not tag.is_box:
        changes.pop("box_contents")
    return to_fields(changes)


class TagRepository:
    def __init__(self, client: RecordStoreClient, cache_ttl_s: float = 120.0,
                 cache: Optional[TagCache] = None):
        self.client = client
        self.cache = cache or TagCache(self._load_all, ttl_s=cache_ttl_s)

    def _load_all(self) -> Dict[str, Tag]:
        tags: Dict[str, Tag] = {}
        for rec in self.client.iter_records():
            tag = parse_record(rec)
            if tag.epc:
                tags[tag.epc] = tag
        return tags

    # ---------- reads ----------
    def get_all(self) -> Dict[str, Tag]:
        return self.cache.get_all()

    def get_by_epc(self, epc: str) -> Optional[Tag]:
        norm = normalize_epc(epc)
        try:
            hit = self.cache.get_all().get(norm)
        except TagTrackError as e:
            log.warning("cache_unavailable_live_lookup", extra={"epc": norm, "err": e.message})
            hit = None
        if hit is not None:
            return hit

        # Miss: ask the store directly so a tag created seconds ago is found.
        records = self.client.find(formula_equals("EPC", norm))
        if not records:
            return None
        return parse_record(records[0])

    def get_by_convocation_number(self, convocation_number: str) -> Optional[Tag]:
        conv = str(convocation_number or "").strip().upper()
        if not conv:
            return None
        for tag in self.get_all().values():
            if tag.is_graduate and (tag.convocation_number or "").upper() == conv:
                return tag
        return None

    # ---------- writes ----------
    def create(self, tag: Tag) -> Tag:
        """
        Duplicate-check then insert. The check is not atomic against the store:
        two concurrent creates of one EPC can both pass it.
        """
        tag = replace(tag, epc=normalize_epc(tag.epc))
        existing = self.get_by_epc(tag.epc)
        if existing is not None:
            raise DuplicateEpc(tag.epc, existing.convocation_number or existing.box_id)

        created = self.client.create(tag_to_fields(tag))
        self.cache.invalidate()
        log.info("tag_created", extra={"epc": tag.epc, "type": tag.type, "id": created.get("id")})
        return replace(tag, id=created.get("id"))

    def update(self, record_id: str, changes: Dict[str, Any], base: Optional[Tag] = None) -> Tag:
        """
        PATCH only the given attributes. Returns the store's view of the record
        when it sends one back, else `base` with the changes applied.
        """
        bad = IMMUTABLE.intersection(changes)
        if bad:
            raise ValueError(f"immutable tag fields cannot be updated: {sorted(bad)}")

        resp = self.client.update(record_id, to_fields(changes))
        self.cache.invalidate()

        if (resp.get("fields") or {}).get("EPC"):
            return parse_record(resp)
        try:
            return parse_record(self.client.get(record_id))
        except TagTrackError:
            if base is None:
                raise
            return replace(base, **changes)
