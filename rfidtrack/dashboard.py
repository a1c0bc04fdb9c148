from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, List

from .models import STATIONS, STATUSES, TAG_TYPES
from .repository import TagRepository

RECENT_SCANS_LIMIT = 50
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _ts(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DashboardAggregator:
    """Read-only fold over the cached tag population. No pagination."""

    def __init__(self, repo: TagRepository):
        self.repo = repo

    def get_stats(self) -> Dict[str, Any]:
        tags = list(self.repo.get_all().values())

        by_type = {t: 0 for t in TAG_TYPES}
        by_status = {s: 0 for s in STATUSES}
        # every station reports, never-scanned ones as 0
        by_station = {s: 0 for s in STATIONS}
        recent: List[Dict[str, Any]] = []
        total_boxes = 0
        items_in_boxes = 0

        for tag in tags:
            by_type[tag.type] = by_type.get(tag.type, 0) + 1
            by_status[tag.status] = by_status.get(tag.status, 0) + 1
            if tag.current_station in by_station:
                by_station[tag.current_station] += 1
            for rec in tag.scan_history:
                recent.append({**rec.to_dict(), "epc": tag.epc})
            if tag.is_box:
                total_boxes += 1
                items_in_boxes += len(tag.box_contents)

        recent.sort(key=lambda r: _ts(r["timestamp"]), reverse=True)

        return {
            "totalTags": len(tags),
            "graduateTags": by_type["graduate"],
            "boxTags": by_type["box"],
            **by_status,
            "stationBreakdown": by_station,
            "recentScans": recent[:RECENT_SCANS_LIMIT],
            "boxSummary": {
                "totalBoxes": total_boxes,
                "itemsInBoxes": items_in_boxes,
            },
        }
