from __future__ import annotations

"""
rfidtrack/server.py
-------------------
Thin HTTP surface over the engines. Handlers validate, call one engine
method, and shape the JSON:

    success -> {"success": true,  "data": {...}}
    failure -> {"success": false, "error": "..."}   (status from the error type)

The engine graph (clients -> cache -> repository -> engines) is built once on
first use by get_services(). Tests swap it via app.dependency_overrides.

Run:
    python -m rfidtrack.server
    uvicorn rfidtrack.server:app --host 127.0.0.1 --port 8000
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .box_engine import BoxEngine
from .config_loader import get_bulk_limit, get_cache_ttl_s, get_log_level, get_server_bind
from .dashboard import DashboardAggregator
from .dispatch import DispatchEngine
from .encoding import EncodingService
from .errors import (
    ConfigurationMissing, DuplicateEpc, InvalidEpc, InvalidStation, NetworkError,
    NotABox, PersistenceFailure, StoreError, TagNotFound, TagTrackError,
)
from .reconciliation import ReconciliationEngine
from .record_store import RecordStoreClient
from .repository import TagRepository
from .scan_engine import ScanEngine
from .ticketing import TicketingClient

log = logging.getLogger("rfidtrack")


# ------------------------------------------------------------
# Engine wiring
# ------------------------------------------------------------
@dataclass
class Services:
    repo: TagRepository
    scans: ScanEngine
    boxes: BoxEngine
    dispatch: DispatchEngine
    dashboard: DashboardAggregator
    reconciliation: ReconciliationEngine
    encoding: EncodingService


def build_services(store: RecordStoreClient, ticketing: Optional[TicketingClient],
                   *, cache_ttl_s: float = 120.0, bulk_limit: int = 100) -> Services:
    repo = TagRepository(store, cache_ttl_s=cache_ttl_s)
    scans = ScanEngine(repo, ticketing, bulk_limit=bulk_limit)
    boxes = BoxEngine(repo)
    return Services(
        repo=repo,
        scans=scans,
        boxes=boxes,
        dispatch=DispatchEngine(scans),
        dashboard=DashboardAggregator(repo),
        reconciliation=ReconciliationEngine(repo),
        encoding=EncodingService(repo, ticketing, boxes),
    )


_SERVICES: Optional[Services] = None
_SERVICES_LOCK = threading.Lock()


def get_services() -> Services:
    """Build once from config; ConfigurationMissing surfaces as a 503."""
    global _SERVICES
    with _SERVICES_LOCK:
        if _SERVICES is None:
            _SERVICES = build_services(
                RecordStoreClient.from_config(),
                TicketingClient.from_config(),
                cache_ttl_s=get_cache_ttl_s(),
                bulk_limit=get_bulk_limit(),
            )
        return _SERVICES


# ------------------------------------------------------------
# FastAPI app bootstrap
# ------------------------------------------------------------
app = FastAPI(title="RFID Tag Tracking", version="0.1.0")

_STATUS_BY_ERROR = (
    (InvalidEpc, 400),
    (InvalidStation, 400),
    (NotABox, 400),
    (TagNotFound, 404),
    (DuplicateEpc, 409),
    (ConfigurationMissing, 503),
    (NetworkError, 502),
    (StoreError, 502),
    (PersistenceFailure, 502),
)


def status_for_error(exc: TagTrackError) -> int:
    for cls, code in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return code
    return 400


@app.exception_handler(TagTrackError)
async def _tagtrack_error(request: Request, exc: TagTrackError) -> JSONResponse:
    code = status_for_error(exc)
    if code >= 500:
        log.error("request_failed", extra={"url_path": request.url.path, "err": exc.message})
    return JSONResponse(status_code=code, content={"success": False, "error": exc.message})


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return JSONResponse(status_code=422,
                        content={"success": False, "error": "; ".join(parts) or "Invalid request"})


def _ok(data: Any) -> Dict[str, Any]:
    return {"success": True, "data": data}


# ------------------------------------------------------------
# Request contracts
# ------------------------------------------------------------
class _In(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class EncodeReq(_In):
    epc: str
    type: str
    encoded_by: str = Field(alias="encodedBy")
    convocation_number: Optional[str] = Field(default=None, alias="convocationNumber")
    box_id: Optional[str] = Field(default=None, alias="boxId")
    box_label: Optional[str] = Field(default=None, alias="boxLabel")


class ScanReq(_In):
    epc: str
    station: str
    scanned_by: str = Field(alias="scannedBy")
    action: Optional[str] = None
    notes: Optional[str] = None


class BulkScanReq(_In):
    epcs: List[str] = Field(min_length=1)
    station: str
    scanned_by: str = Field(alias="scannedBy")
    action: Optional[str] = None
    notes: Optional[str] = None


class VerifyManyReq(_In):
    epcs: List[str] = Field(min_length=1)


class BoxAddReq(_In):
    box_epc: str = Field(alias="boxEpc")
    item_epcs: List[str] = Field(alias="itemEpcs", min_length=1)


class DispatchReq(_In):
    epcs: List[str] = Field(min_length=1)
    dispatched_by: str = Field(alias="dispatchedBy")
    tracking_number: Optional[str] = Field(default=None, alias="trackingNumber")
    dispatch_method: Optional[str] = Field(default=None, alias="dispatchMethod")
    notes: Optional[str] = None


class HandoverReq(_In):
    epcs: List[str] = Field(min_length=1)
    handover_by: str = Field(alias="handoverBy")
    handover_to: str = Field(alias="handoverTo")
    notes: Optional[str] = None


class VoidReq(_In):
    epc: str
    reason: str
    voided_by: str = Field(alias="voidedBy")


# ------------------------------------------------------------
# Routes
# ------------------------------------------------------------
@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@app.post("/rfid/encode")
def encode(req: EncodeReq, svc: Services = Depends(get_services)) -> Dict[str, Any]:
    tag = svc.encoding.encode_tag(req.epc, req.type, req.encoded_by,
                                  req.convocation_number, req.box_id, req.box_label)
    out = _ok(tag.to_dict())
    if tag.is_graduate and not tag.checkin_ready:
        out["warning"] = "No ticket found for this convocation number; check-ins will not sync"
    return out


@app.get("/rfid/verify")
def verify(epc: str, svc: Services = Depends(get_services)) -> Dict[str, Any]:
    return _ok(svc.encoding.verify_epc(epc))


@app.post("/rfid/verify")
def verify_many(req: VerifyManyReq, svc: Services = Depends(get_services)) -> Dict[str, Any]:
    return _ok(svc.encoding.verify_many(req.epcs))


@app.post("/rfid/scan")
def scan(req: ScanReq, svc: Services = Depends(get_services)) -> Dict[str, Any]:
    res = svc.scans.process_scan(req.epc, req.station, req.scanned_by, req.action, req.notes)
    return _ok(res.to_dict())


@app.post("/rfid/bulk-scan")
def bulk_scan(req: BulkScanReq, svc: Services = Depends(get_services)) -> Dict[str, Any]:
    res = svc.scans.process_bulk_scan(req.epcs, req.station, req.scanned_by, req.action, req.notes)
    return _ok(res.to_dict())


@app.post("/rfid/box/add")
def box_add(req: BoxAddReq, svc: Services = Depends(get_services)) -> Dict[str, Any]:
    return _ok(svc.boxes.add_items(req.box_epc, req.item_epcs).to_dict())


@app.get("/rfid/box/{epc}")
def box_contents(epc: str, svc: Services = Depends(get_services)) -> Dict[str, Any]:
    return _ok(svc.boxes.get_contents(epc).to_dict())


@app.post("/rfid/dispatch")
def dispatch(req: DispatchReq, svc: Services = Depends(get_services)) -> Dict[str, Any]:
    res = svc.dispatch.process_dispatch(req.epcs, req.dispatched_by, req.tracking_number,
                                        req.dispatch_method, req.notes)
    return _ok(res.to_dict())


@app.post("/rfid/handover")
def handover(req: HandoverReq, svc: Services = Depends(get_services)) -> Dict[str, Any]:
    res = svc.dispatch.process_handover(req.epcs, req.handover_by, req.handover_to, req.notes)
    return _ok(res.to_dict())


@app.post("/rfid/void")
def void(req: VoidReq, svc: Services = Depends(get_services)) -> Dict[str, Any]:
    return _ok(svc.encoding.void_tag(req.epc, req.reason, req.voided_by).to_dict())


@app.get("/rfid/dashboard")
def dashboard(svc: Services = Depends(get_services)) -> Dict[str, Any]:
    return _ok(svc.dashboard.get_stats())


@app.get("/rfid/reconciliation")
def reconciliation(station: str, svc: Services = Depends(get_services)) -> Dict[str, Any]:
    return _ok(svc.reconciliation.get_reconciliation(station))


# ------------------------------------------------------------
# Entry point
# ------------------------------------------------------------
def main() -> None:
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, get_log_level("INFO"), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host, port = get_server_bind()
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
