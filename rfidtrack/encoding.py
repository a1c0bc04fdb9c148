from __future__ import annotations
"""
rfidtrack/encoding.py
---------------------
Tag lifecycle edges that sit outside the scan path:

- encode: first write of a tag (duplicate-checked, graduate tags linked to
  their ticket when one can be found)
- verify: read-only lookup, by EPC first and convocation number second
- void: soft delete; the tag stays in the table with status 'void'
"""

import logging
from dataclasses import replace
from typing import Any, Dict, Optional, Sequence

from .box_engine import BoxEngine
from .errors import DuplicateEpc, InvalidEpc, TagNotFound, TagTrackError
from .models import (
    TAG_TYPES, ScanRecord, Tag, box_id_from_epc, normalize_epc,
    require_valid_epc, tag_type_from_epc, utc_iso,
)
from .repository import TagRepository
from .ticketing import TicketingClient

log = logging.getLogger("rfidtrack.encode")


class EncodingService:
    def __init__(self, repo: TagRepository, ticketing: Optional[TicketingClient] = None,
                 boxes: Optional[BoxEngine] = None, *, now=utc_iso):
        self.repo = repo
        self.ticketing = ticketing
        self.boxes = boxes or BoxEngine(repo)
        self._now = now

    # ---------- encode ----------
    def encode_tag(self, epc: str, tag_type: str, encoded_by: str,
                   convocation_number: Optional[str] = None,
                   box_id: Optional[str] = None,
                   box_label: Optional[str] = None) -> Tag:
        norm = require_valid_epc(epc)
        tag_type = str(tag_type or "").strip().lower()
        if tag_type not in TAG_TYPES:
            raise TagTrackError(f"Invalid tag type: {tag_type!r}")
        if tag_type_from_epc(norm) != tag_type:
            raise TagTrackError(f"EPC {norm} is not a valid {tag_type} EPC")
        if not encoded_by:
            raise TagTrackError("encodedBy is required")

        conv = str(convocation_number or "").strip().upper() or None
        if tag_type == "graduate" and not conv:
            raise TagTrackError("Convocation number is required for graduate tags")

        existing = self.repo.get_by_epc(norm)
        if existing is not None:
            raise DuplicateEpc(norm, existing.convocation_number or existing.box_id)

        now = self._now()
        tag = Tag(
            epc=norm,
            type=tag_type,
            status="encoded",
            current_station="encoding",
            encoded_at=now,
            encoded_by=encoded_by,
            # encodedAt/encodedBy carry the encode event; history starts at the first scan
            scan_history=[],
        )

        if tag_type == "graduate":
            tag = self._link_ticket(tag, conv)
        else:
            effective_box_id = box_id or box_id_from_epc(norm)
            tag = replace(
                tag,
                box_id=effective_box_id,
                box_label=box_label or f"Box {effective_box_id or '?'}",
                box_contents=[],
            )

        return self.repo.create(tag)

    def _link_ticket(self, tag: Tag, conv: str) -> Tag:
        tag = replace(tag, convocation_number=conv)
        if self.ticketing is None:
            log.warning("graduate_tag_without_ticket", extra={"epc": tag.epc, "conv": conv,
                                                              "reason": "ticketing not configured"})
            return tag
        try:
            ticket = self.ticketing.find_ticket_by_convocation_number(conv)
        except TagTrackError as e:
            # still encoded; the tag just cannot check in until fixed upstream
            log.warning("ticket_lookup_failed", extra={"epc": tag.epc, "conv": conv, "err": e.message})
            return tag
        if ticket is None:
            log.warning("graduate_tag_without_ticket", extra={"epc": tag.epc, "conv": conv,
                                                              "reason": "no ticket tagged with conv number"})
            return tag
        return replace(tag, tito_ticket_id=ticket.id, tito_ticket_slug=ticket.slug,
                       graduate_name=ticket.name or None)

    # ---------- verify ----------
    def verify_epc(self, epc: str) -> Dict[str, Any]:
        norm = normalize_epc(epc)
        if not norm:
            raise InvalidEpc(str(epc))

        tag = self.repo.get_by_epc(norm)
        if tag is None:
            tag = self.repo.get_by_convocation_number(norm)
        if tag is None:
            return {"found": False, "tag": None,
                    "message": f"Tag {norm} is not registered in the system"}

        out: Dict[str, Any] = {"found": True, "tag": tag.to_dict()}
        if tag.is_box and tag.box_contents:
            contents = self.boxes.get_contents(tag.epc)
            out["boxItems"] = [t.to_dict() for t in contents.items]
        return out

    def verify_many(self, epcs: Sequence[str]) -> Dict[str, Any]:
        results = []
        for epc in epcs:
            norm = normalize_epc(epc)
            try:
                tag = self.repo.get_by_epc(norm) if norm else None
            except TagTrackError as e:
                results.append({"epc": norm, "found": False, "error": e.message})
                continue
            entry: Dict[str, Any] = {"epc": norm, "found": tag is not None}
            if tag is not None:
                entry["tag"] = tag.to_dict()
            results.append(entry)

        found = sum(1 for r in results if r["found"])
        return {
            "results": results,
            "summary": {"total": len(results), "found": found, "notFound": len(results) - found},
        }

    # ---------- void ----------
    def void_tag(self, epc: str, reason: str, voided_by: str) -> Tag:
        norm = require_valid_epc(epc)
        if not reason or not voided_by:
            raise TagTrackError("reason and voidedBy are required")

        tag = self.repo.get_by_epc(norm)
        if tag is None:
            raise TagNotFound(norm, hint="")
        if tag.status == "void":
            raise TagTrackError(f"Tag {norm} is already void")

        record = ScanRecord(
            station=tag.current_station,
            timestamp=self._now(),
            scanned_by=voided_by,
            action="Voided",
            notes=reason,
        )
        updated = self.repo.update(tag.id, {
            "status": "void",
            "scan_history": [*tag.scan_history, record],
        }, base=tag)
        log.info("tag_voided", extra={"epc": norm, "by": voided_by, "reason": reason})
        return updated
