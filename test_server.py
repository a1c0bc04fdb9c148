import pytest
from fastapi.testclient import TestClient

from conftest import FakeRecordStore, FakeTicketing, graduate
from rfidtrack.errors import ConfigurationMissing, NetworkError, PersistenceFailure, StoreError, TagTrackError
from rfidtrack.server import app, build_services, get_services, status_for_error
from rfidtrack.ticketing import TicketInfo


@pytest.fixture
def wired():
    store, ticketing = FakeRecordStore(), FakeTicketing()
    svc = build_services(store, ticketing)
    app.dependency_overrides[get_services] = lambda: svc
    yield TestClient(app), store, ticketing
    app.dependency_overrides.clear()


def test_healthz(wired):
    client, _, _ = wired
    assert client.get("/healthz").json() == {"ok": True}


def test_encode_scan_flow(wired):
    client, store, ticketing = wired
    ticketing.tickets["118AEC1001"] = TicketInfo(id=9001, slug="ti_abc", name="Dr. A. Sen")

    r = client.post("/rfid/encode", json={
        "epc": "118aec1001", "type": "graduate", "encodedBy": "encoder1", "convocationNumber": "118AEC1001",
    })
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["data"]["titoTicketSlug"] == "ti_abc"
    assert "warning" not in body

    r = client.post("/rfid/scan", json={"epc": "118AEC1001", "station": "registration", "scannedBy": "ops1"})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["tag"]["status"] == "scanned"
    assert data["tag"]["currentStation"] == "registration"
    assert len(data["tag"]["scanHistory"]) == 1
    assert data["titoCheckin"]["station"] == "Registration"


def test_encode_warns_when_no_ticket(wired):
    client, _, _ = wired
    r = client.post("/rfid/encode", json={
        "epc": "118AEC1001", "type": "graduate", "encodedBy": "encoder1", "convocationNumber": "118AEC1001",
    })
    assert r.status_code == 200
    assert "warning" in r.json()


def test_error_statuses(wired):
    client, store, _ = wired
    store.seed(graduate("118AEC1001"))

    r = client.post("/rfid/scan", json={"epc": "118AEC9999", "station": "packing", "scannedBy": "ops1"})
    assert r.status_code == 404
    assert r.json()["success"] is False
    assert "not found" in r.json()["error"]

    r = client.post("/rfid/scan", json={"epc": "nope", "station": "packing", "scannedBy": "ops1"})
    assert r.status_code == 400

    r = client.post("/rfid/encode", json={
        "epc": "118AEC1001", "type": "graduate", "encodedBy": "x", "convocationNumber": "118AEC1001",
    })
    assert r.status_code == 409

    assert client.get("/rfid/reconciliation", params={"station": "car-park"}).status_code == 400
    assert client.post("/rfid/box/add", json={"boxEpc": "118AEC1001", "itemEpcs": ["118AEC1002"]}).status_code == 400


def test_request_validation(wired):
    client, _, _ = wired
    r = client.post("/rfid/bulk-scan", json={"epcs": [], "station": "packing", "scannedBy": "ops1"})
    assert r.status_code == 422
    assert r.json()["success"] is False
    assert "epcs" in r.json()["error"]

    r = client.post("/rfid/scan", json={"epc": "118AEC1001", "station": "packing"})
    assert r.status_code == 422
    assert set(r.json()) == {"success", "error"}
    assert "scannedBy" in r.json()["error"]


def test_bulk_scan_route(wired):
    client, store, _ = wired
    store.seed(graduate("118AEC1001"))
    r = client.post("/rfid/bulk-scan", json={
        "epcs": ["118AEC1001", "118AEC1002"], "station": "packing", "scannedBy": "ops1",
    })
    assert r.status_code == 200
    assert r.json()["data"]["summary"] == {"total": 2, "successful": 1, "failed": 1, "titoCheckins": 1}


def test_box_dispatch_handover_void_routes(wired):
    client, store, _ = wired
    store.seed(graduate("118AEC1001"))
    store.seed(graduate("118AEC1002"))
    client.post("/rfid/encode", json={"epc": "BOX-001", "type": "box", "encodedBy": "encoder1"})

    r = client.post("/rfid/box/add", json={"boxEpc": "BOX-001", "itemEpcs": ["118AEC1001"]})
    assert r.json()["data"]["boxContents"] == ["118AEC1001"]
    r = client.get("/rfid/box/BOX-001")
    assert [t["epc"] for t in r.json()["data"]["items"]] == ["118AEC1001"]

    r = client.post("/rfid/dispatch", json={
        "epcs": ["118AEC1001"], "dispatchedBy": "ops2", "trackingNumber": "D1", "dispatchMethod": "DTDC",
    })
    assert r.json()["data"]["successful"] == 1

    r = client.post("/rfid/handover", json={"epcs": ["118AEC1002"], "handoverBy": "ops4", "handoverTo": "Parent"})
    assert r.json()["data"]["successful"] == 1

    r = client.post("/rfid/void", json={"epc": "118AEC1002", "reason": "lost", "voidedBy": "supervisor"})
    assert r.json()["data"]["status"] == "void"

    r = client.get("/rfid/verify", params={"epc": "118AEC1001"})
    assert r.json()["data"]["tag"]["status"] == "dispatched"
    r = client.post("/rfid/verify", json={"epcs": ["118AEC1001", "118AEC7777"]})
    assert r.json()["data"]["summary"] == {"total": 2, "found": 1, "notFound": 1}


def test_dashboard_and_reconciliation_routes(wired):
    client, store, _ = wired
    store.seed(graduate("118AEC1001"))

    stats = client.get("/rfid/dashboard").json()["data"]
    assert stats["totalTags"] == 1
    assert len(stats["stationBreakdown"]) == 11

    rep = client.get("/rfid/reconciliation", params={"station": "packing"}).json()["data"]
    assert rep["missingCount"] == 1


def test_missing_configuration_is_503():
    def unconfigured():
        raise ConfigurationMissing(["AIRTABLE_API_KEY"])

    app.dependency_overrides[get_services] = unconfigured
    try:
        r = TestClient(app).get("/rfid/dashboard")
    finally:
        app.dependency_overrides.clear()
    assert r.status_code == 503
    assert "AIRTABLE_API_KEY" in r.json()["error"]


def test_status_for_error_mapping():
    assert status_for_error(NetworkError("down")) == 502
    assert status_for_error(StoreError(500, "x")) == 502
    assert status_for_error(PersistenceFailure("118AEC1001", StoreError(422))) == 502
    assert status_for_error(TagTrackError("bad input")) == 400
