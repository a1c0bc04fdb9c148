from __future__ import annotations
from typing import Any, Dict, List

from .models import require_station
from .repository import TagRepository


class ReconciliationEngine:
    """
    Expected vs. seen at one station. A tag counts as seen if ANY entry of its
    history is at that station, so tags that moved on are still reconciled.
    """
    def __init__(self, repo: TagRepository):
        self.repo = repo

    def get_reconciliation(self, station: str) -> Dict[str, Any]:
        station = require_station(station)
        population = [
            t for t in self.repo.get_all().values()
            if t.status != "void" and t.type in ("graduate", "box")
        ]

        seen = 0
        missing: List[Dict[str, Any]] = []
        for tag in population:
            if tag.has_scan_at(station):
                seen += 1
                continue
            missing.append({
                "epc": tag.epc,
                "type": tag.type,
                "graduateName": tag.graduate_name,
                "convocationNumber": tag.convocation_number,
                "boxLabel": tag.box_label,
                "status": tag.status,
                "currentStation": tag.current_station,
            })

        missing.sort(key=lambda m: m["epc"])
        return {
            "station": station,
            "totalEncoded": len(population),
            "scannedAtStation": seen,
            "missingCount": len(missing),
            "missing": missing,
        }
