from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from .errors import NotABox, TagNotFound
from .models import Tag, normalize_epc, require_valid_epc
from .repository import TagRepository

log = logging.getLogger("rfidtrack.box")


@dataclass
class BoxContents:
    box: Tag
    items: List[Tag]

    def to_dict(self) -> Dict[str, Any]:
        return {"box": self.box.to_dict(), "items": [t.to_dict() for t in self.items]}


class BoxEngine:
    """
    Container tags. Contents are a set of item EPCs stored as a list; every
    write sends the full merged list (read-merge-write, not atomic across
    concurrent adds to the same box).
    """
    def __init__(self, repo: TagRepository):
        self.repo = repo

    def _require_box(self, box_epc: str) -> Tag:
        norm = require_valid_epc(box_epc)
        box = self.repo.get_by_epc(norm)
        if box is None:
            raise TagNotFound(norm, hint="")
        if not box.is_box:
            raise NotABox(norm)
        return box

    def add_items(self, box_epc: str, item_epcs: Sequence[str]) -> Tag:
        box = self._require_box(box_epc)

        merged: Dict[str, None] = dict.fromkeys(box.box_contents)
        for epc in item_epcs:
            norm = normalize_epc(epc)
            if norm and norm != box.epc:
                merged.setdefault(norm, None)
        contents = list(merged)

        updated = self.repo.update(box.id, {"box_contents": contents}, base=box)
        log.info("box_items_added", extra={
            "box": box.epc, "added": len(contents) - len(box.box_contents), "total_items": len(contents),
        })
        return updated

    def get_contents(self, box_epc: str) -> BoxContents:
        box = self._require_box(box_epc)
        items: List[Tag] = []
        for epc in box.box_contents:
            item = self.repo.get_by_epc(epc)
            # contents describe intent; an EPC that no longer resolves is skipped
            if item is not None:
                items.append(item)
        return BoxContents(box=box, items=items)
