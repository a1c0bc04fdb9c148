"""
Shared fixtures: in-memory stand-ins for the record store and the ticketing
system, plus a fully wired engine graph on top of them.
"""

import re
from typing import Any, Dict, List, Optional

import pytest

from rfidtrack.errors import NetworkError, StoreError
from rfidtrack.repository import TagRepository, tag_to_fields
from rfidtrack.scan_engine import ScanEngine
from rfidtrack.box_engine import BoxEngine
from rfidtrack.dispatch import DispatchEngine
from rfidtrack.encoding import EncodingService
from rfidtrack.models import Tag
from rfidtrack.ticketing import CheckinResult, TicketInfo

_FORMULA = re.compile(r'^\{(?P<field>[^}]+)\}="(?P<value>.*)"$')


class FakeRecordStore:
    """Same surface as RecordStoreClient, backed by a dict."""

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []
        self.fail_updates = False
        self.fail_reads = False
        self._next = 1

    def _check_read(self):
        if self.fail_reads:
            raise NetworkError("Network error: store unreachable")

    def iter_records(self):
        self.calls.append("list")
        self._check_read()
        for rec in list(self.records.values()):
            yield {"id": rec["id"], "createdTime": rec["createdTime"], "fields": dict(rec["fields"])}

    def find(self, formula: str):
        self.calls.append("find")
        self._check_read()
        m = _FORMULA.match(formula)
        assert m, formula
        return [
            {"id": r["id"], "createdTime": r["createdTime"], "fields": dict(r["fields"])}
            for r in self.records.values()
            if str(r["fields"].get(m["field"], "")) == m["value"]
        ]

    def get(self, record_id: str):
        self.calls.append("get")
        self._check_read()
        rec = self.records[record_id]
        return {"id": rec["id"], "createdTime": rec["createdTime"], "fields": dict(rec["fields"])}

    def create(self, fields: Dict[str, Any]):
        self.calls.append("create")
        rid = f"rec{self._next:04d}"
        self._next += 1
        self.records[rid] = {"id": rid, "createdTime": "2026-08-01T09:00:00.000Z", "fields": dict(fields)}
        return self.get(rid)

    def update(self, record_id: str, fields: Dict[str, Any]):
        self.calls.append("update")
        if self.fail_updates:
            raise StoreError(422, "INVALID_VALUE_FOR_COLUMN")
        self.records[record_id]["fields"].update(fields)
        return self.get(record_id)

    # ---------- test helpers ----------
    def seed(self, tag: Tag) -> str:
        created = self.create(tag_to_fields(tag))
        return created["id"]


class FakeTicketing:
    def __init__(self):
        self.checkins: List[tuple] = []
        self.fail_checkins = False
        self.tickets: Dict[str, TicketInfo] = {}

    def checkin_at_station(self, ticket_id: Optional[int], station_name: str) -> CheckinResult:
        self.checkins.append((ticket_id, station_name))
        if self.fail_checkins:
            return CheckinResult(False, station_name, "Check-in failed: 500")
        return CheckinResult(True, station_name, uuid=f"uuid-{len(self.checkins)}")

    def find_ticket_by_convocation_number(self, convocation_number: str):
        return self.tickets.get(convocation_number.upper())


def graduate(epc: str, ticket_id: Optional[int] = 501, **kw) -> Tag:
    return Tag(
        epc=epc,
        type="graduate",
        convocation_number=epc,
        graduate_name=kw.pop("name", f"Graduate {epc}"),
        tito_ticket_id=ticket_id,
        tito_ticket_slug=f"ti_{epc.lower()}" if ticket_id else None,
        encoded_at="2026-08-01T09:00:00.000Z",
        encoded_by="encoder1",
        **kw,
    )


def box(epc: str, contents=None, **kw) -> Tag:
    return Tag(
        epc=epc,
        type="box",
        box_id=epc[4:],
        box_label=f"Box {epc[4:]}",
        box_contents=list(contents or []),
        encoded_at="2026-08-01T09:00:00.000Z",
        encoded_by="encoder1",
        **kw,
    )


class Clock:
    """Monotonic-ish clock the tests can move by hand."""

    def __init__(self, start: float = 1000.0):
        self.t = start

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


class Timestamps:
    """Strictly increasing ISO timestamps so history order is observable."""

    def __init__(self):
        self.n = 0

    def __call__(self) -> str:
        self.n += 1
        return f"2026-08-27T10:{self.n // 60:02d}:{self.n % 60:02d}.000Z"


@pytest.fixture
def store():
    return FakeRecordStore()


@pytest.fixture
def ticketing():
    return FakeTicketing()


@pytest.fixture
def repo(store):
    return TagRepository(store, cache_ttl_s=120)


@pytest.fixture
def scans(repo, ticketing):
    return ScanEngine(repo, ticketing, now=Timestamps())


@pytest.fixture
def boxes(repo):
    return BoxEngine(repo)


@pytest.fixture
def dispatch(scans):
    return DispatchEngine(scans)


@pytest.fixture
def encoding(repo, ticketing, boxes):
    return EncodingService(repo, ticketing, boxes, now=Timestamps())
