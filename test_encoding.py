import pytest

from conftest import box, graduate
from rfidtrack.errors import DuplicateEpc, NetworkError, TagNotFound, TagTrackError
from rfidtrack.models import Tag
from rfidtrack.reconciliation import ReconciliationEngine
from rfidtrack.ticketing import TicketInfo


# ---------- encode ----------
def test_encode_graduate_links_ticket(store, encoding, ticketing):
    ticketing.tickets["118AEC1001"] = TicketInfo(id=9001, slug="ti_abc", name="Dr. A. Sen")

    tag = encoding.encode_tag(" 118aec1001 ", "graduate", "encoder1", convocation_number="118aec1001")

    assert tag.id is not None
    assert tag.epc == "118AEC1001"
    assert tag.status == "encoded"
    assert tag.current_station == "encoding"
    assert tag.scan_history == []
    assert tag.encoded_by == "encoder1"
    assert tag.tito_ticket_id == 9001
    assert tag.graduate_name == "Dr. A. Sen"
    assert tag.checkin_ready

    fields = store.records[tag.id]["fields"]
    assert fields["Tito Ticket ID"] == "9001"
    assert fields["Tito Ticket Slug"] == "ti_abc"
    assert fields["Scan History"] == "[]"


def test_encode_graduate_without_ticket_still_persists(store, encoding):
    tag = encoding.encode_tag("118AEC1001", "graduate", "encoder1", convocation_number="118AEC1001")
    assert tag.id in store.records
    assert tag.tito_ticket_id is None
    assert not tag.checkin_ready


def test_encode_survives_ticket_lookup_failure(store, encoding, ticketing, monkeypatch):
    def boom(conv):
        raise NetworkError("Network error: tito down")

    monkeypatch.setattr(ticketing, "find_ticket_by_convocation_number", boom)

    tag = encoding.encode_tag("118AEC1001", "graduate", "encoder1", convocation_number="118AEC1001")
    assert tag.id in store.records
    assert tag.convocation_number == "118AEC1001"


def test_encode_rejects_duplicate(store, encoding):
    store.seed(graduate("118AEC1001"))
    with pytest.raises(DuplicateEpc) as ei:
        encoding.encode_tag("118AEC1001", "graduate", "encoder2", convocation_number="118AEC1001")
    assert ei.value.linked_to == "118AEC1001"
    assert store.calls.count("create") == 1


def test_encode_box_defaults(encoding):
    tag = encoding.encode_tag("box-007", "box", "encoder1")
    assert tag.epc == "BOX-007"
    assert tag.box_id == "007"
    assert tag.box_label == "Box 007"
    assert tag.box_contents == []
    assert tag.convocation_number is None


def test_encode_box_explicit_label(encoding):
    tag = encoding.encode_tag("BOX-007", "box", "encoder1", box_id="A7", box_label="Hall A, shelf 7")
    assert (tag.box_id, tag.box_label) == ("A7", "Hall A, shelf 7")


@pytest.mark.parametrize("epc,tag_type,by,conv", [
    ("BOX-007", "graduate", "encoder1", "118AEC1001"),   # type does not match EPC form
    ("118AEC1001", "box", "encoder1", None),
    ("118AEC1001", "sticker", "encoder1", "118AEC1001"),
    ("118AEC1001", "graduate", "", "118AEC1001"),
    ("118AEC1001", "graduate", "encoder1", None),
])
def test_encode_validation(store, encoding, epc, tag_type, by, conv):
    with pytest.raises(TagTrackError):
        encoding.encode_tag(epc, tag_type, by, convocation_number=conv)
    assert "create" not in store.calls


# ---------- verify ----------
def test_verify_by_epc_and_by_convocation_number(store, encoding):
    store.seed(Tag(epc="118AEC1001", type="graduate", convocation_number="118AEC2002",
                   graduate_name="Late Registrant", encoded_by="encoder1"))

    by_epc = encoding.verify_epc("118aec1001")
    assert by_epc["found"] is True
    assert by_epc["tag"]["epc"] == "118AEC1001"

    by_conv = encoding.verify_epc("118aec2002")
    assert by_conv["found"] is True
    assert by_conv["tag"]["graduateName"] == "Late Registrant"


def test_verify_unknown(encoding):
    res = encoding.verify_epc("118AEC9999")
    assert res["found"] is False
    assert res["tag"] is None
    assert "118AEC9999" in res["message"]


def test_verify_box_includes_items(store, encoding):
    store.seed(graduate("118AEC1001"))
    store.seed(box("BOX-001", contents=["118AEC1001"]))
    res = encoding.verify_epc("BOX-001")
    assert [t["epc"] for t in res["boxItems"]] == ["118AEC1001"]


def test_verify_many(store, encoding):
    store.seed(graduate("118AEC1001"))
    store.seed(box("BOX-001"))

    res = encoding.verify_many(["118aec1001", "BOX-001", "118AEC4040", ""])

    assert res["summary"] == {"total": 4, "found": 2, "notFound": 2}
    assert [r["epc"] for r in res["results"]] == ["118AEC1001", "BOX-001", "118AEC4040", ""]
    assert "tag" not in res["results"][2]


# ---------- void ----------
def test_void_soft_deletes(store, repo, encoding, scans):
    store.seed(graduate("118AEC1001"))
    scans.process_scan("118AEC1001", "packing", "ops1")

    tag = encoding.void_tag("118AEC1001", "damaged tag", "supervisor")

    assert tag.status == "void"
    assert tag.current_station == "packing"
    assert len(tag.scan_history) == 2
    last = tag.scan_history[-1]
    assert (last.action, last.notes, last.scanned_by, last.station) == (
        "Voided", "damaged tag", "supervisor", "packing")
    assert repo.get_by_epc("118AEC1001") is not None
    assert ReconciliationEngine(repo).get_reconciliation("packing")["totalEncoded"] == 0


def test_void_twice_and_unknown(store, encoding):
    store.seed(graduate("118AEC1001"))
    encoding.void_tag("118AEC1001", "damaged", "supervisor")
    with pytest.raises(TagTrackError, match="already void"):
        encoding.void_tag("118AEC1001", "damaged", "supervisor")
    with pytest.raises(TagNotFound):
        encoding.void_tag("118AEC9999", "damaged", "supervisor")


def test_void_requires_reason_and_actor(store, encoding):
    store.seed(graduate("118AEC1001"))
    with pytest.raises(TagTrackError):
        encoding.void_tag("118AEC1001", "", "supervisor")
    with pytest.raises(TagTrackError):
        encoding.void_tag("118AEC1001", "damaged", "")
    assert "update" not in store.calls
