from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
import time
from typing import List, Optional

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import Response, StreamingResponse

from analytics.aggregator import derive_status
from models.count_event import EntryExitType, Location, utc_now_iso
from ..api_models import (
    CameraDevice,
    CompactStatusResponse,
    CountCreateRequest,
    CountRecord,
    EntryExitCreateRequest,
    EntryExitRecord,
    LiveStatusResponse,
    LocationResponse,
    LowPowerRequest,
)
from ..events import COUNT_UPDATED, ENTRY_EXIT_RECORDED
from ..services.health_service import HealthService
from ..state import state

router = APIRouter()
ws_router = APIRouter()

MJPEG_BOUNDARY = b"--frame\r\nContent-Type: image/jpeg\r\n\r\n"


def _db():
    if state.database is None:
        raise HTTPException(status_code=503, detail="Database not initialized")
    return state.database


def _session():
    if state.session is None:
        raise HTTPException(status_code=503, detail="Live feed not initialized")
    return state.session


def _location_or_404(location_id: str) -> Location:
    location = _db().get_location(location_id)
    if location is None:
        raise HTTPException(status_code=404, detail="Location not found")
    return location


def _require_range(start: Optional[str], end: Optional[str]) -> None:
    if not start or not end:
        raise HTTPException(status_code=400, detail="Start and end dates are required")


async def _broadcast(event: str, data: dict) -> None:
    if state.events is not None:
        await state.events.broadcast(event, data)


# -----------------------------------------------------------------------------
# Locations (read-only)
# -----------------------------------------------------------------------------

@router.get("/locations", response_model=List[LocationResponse])
def list_locations():
    return [loc.to_dict() for loc in _db().get_locations()]


@router.get("/locations/{location_id}", response_model=LocationResponse)
def get_location(location_id: str):
    return _location_or_404(location_id).to_dict()


# -----------------------------------------------------------------------------
# Counts
# -----------------------------------------------------------------------------

@router.get("/counts/{location_id}", response_model=List[CountRecord])
def get_counts(location_id: str, limit: int = 100):
    _location_or_404(location_id)
    try:
        return _db().get_counts(location_id, limit=max(1, limit))
    except sqlite3.Error:
        raise HTTPException(status_code=500, detail="Failed to get counts")


@router.get("/counts/{location_id}/range", response_model=List[CountRecord])
def get_counts_range(location_id: str, start: Optional[str] = None, end: Optional[str] = None):
    _require_range(start, end)
    _location_or_404(location_id)
    try:
        return _db().get_counts_range(location_id, start, end)
    except sqlite3.Error:
        raise HTTPException(status_code=500, detail="Failed to get counts in range")


@router.post("/counts/{location_id}", response_model=CountRecord, status_code=201)
async def add_count(location_id: str, req: CountCreateRequest):
    if req.count is None or not req.status:
        raise HTTPException(status_code=400, detail="Count and status are required")
    db = _db()
    if await asyncio.to_thread(db.get_location, location_id) is None:
        raise HTTPException(status_code=404, detail="Location not found")
    try:
        row = await asyncio.to_thread(
            db.add_count, location_id, req.count, req.status, req.message, req.timestamp or utc_now_iso()
        )
    except sqlite3.Error:
        raise HTTPException(status_code=500, detail="Failed to add count")
    await _broadcast(COUNT_UPDATED, row)
    return row


@router.get("/counts/{location_id}/entry-exit", response_model=List[EntryExitRecord])
def get_entry_exit(location_id: str, limit: int = 100):
    _location_or_404(location_id)
    try:
        return _db().get_entry_exit(location_id, limit=max(1, limit))
    except sqlite3.Error:
        raise HTTPException(status_code=500, detail="Failed to get entry/exit records")


@router.get("/counts/{location_id}/entry-exit/range", response_model=List[EntryExitRecord])
def get_entry_exit_range(location_id: str, start: Optional[str] = None, end: Optional[str] = None):
    _require_range(start, end)
    _location_or_404(location_id)
    try:
        return _db().get_entry_exit_range(location_id, start, end)
    except sqlite3.Error:
        raise HTTPException(status_code=500, detail="Failed to get entry/exit records in range")


@router.post("/counts/{location_id}/entry-exit", response_model=EntryExitRecord, status_code=201)
async def add_entry_exit(location_id: str, req: EntryExitCreateRequest):
    if not req.type or req.current_occupancy is None:
        raise HTTPException(status_code=400, detail="Type and current_occupancy are required")
    if req.type not in (EntryExitType.ENTRY.value, EntryExitType.EXIT.value):
        raise HTTPException(status_code=400, detail='Type must be "entry" or "exit"')
    db = _db()
    if await asyncio.to_thread(db.get_location, location_id) is None:
        raise HTTPException(status_code=404, detail="Location not found")
    try:
        row = await asyncio.to_thread(
            db.add_entry_exit, location_id, req.type, req.count, req.current_occupancy,
            req.timestamp or utc_now_iso(),
        )
    except sqlite3.Error:
        raise HTTPException(status_code=500, detail="Failed to record entry/exit")
    await _broadcast(ENTRY_EXIT_RECORDED, row)
    return row


# -----------------------------------------------------------------------------
# Reports
# -----------------------------------------------------------------------------

@router.get("/reports/{location_id}/hourly")
def hourly_report(location_id: str, start: Optional[str] = None, end: Optional[str] = None):
    _require_range(start, end)
    _location_or_404(location_id)
    try:
        return _db().get_hourly_report(location_id, start, end)
    except sqlite3.Error:
        raise HTTPException(status_code=500, detail="Failed to generate hourly report")


@router.get("/reports/{location_id}/daily")
def daily_report(location_id: str, start: Optional[str] = None, end: Optional[str] = None):
    _require_range(start, end)
    _location_or_404(location_id)
    try:
        return _db().get_daily_report(location_id, start, end)
    except sqlite3.Error:
        raise HTTPException(status_code=500, detail="Failed to generate daily report")


@router.get("/reports/{location_id}/summary")
def summary_report(location_id: str, start: Optional[str] = None, end: Optional[str] = None):
    _require_range(start, end)
    location = _location_or_404(location_id)
    try:
        return _db().get_summary_report(location, start, end)
    except sqlite3.Error:
        raise HTTPException(status_code=500, detail="Failed to generate summary report")


@router.get("/reports/{location_id}/csv")
def csv_report(location_id: str, start: Optional[str] = None, end: Optional[str] = None, type: str = "counts"):
    _require_range(start, end)
    location = _location_or_404(location_id)
    try:
        content = _db().export_csv(location_id, start, end, report_type=type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except sqlite3.Error:
        raise HTTPException(status_code=500, detail="Failed to generate CSV report")
    filename = f"{location.name}-{type}-{start}-{end}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# -----------------------------------------------------------------------------
# Live feed control
# -----------------------------------------------------------------------------

@router.get("/live/status", response_model=LiveStatusResponse)
def live_status():
    return _session().status()


@router.post("/live/start", response_model=LiveStatusResponse)
async def live_start():
    session = _session()
    await session.start()
    return session.status()


@router.post("/live/stop", response_model=LiveStatusResponse)
async def live_stop():
    session = _session()
    await session.stop()
    return session.status()


@router.post("/live/pause", response_model=LiveStatusResponse)
def live_pause():
    session = _session()
    session.pause()
    return session.status()


@router.post("/live/resume", response_model=LiveStatusResponse)
def live_resume():
    session = _session()
    session.resume()
    return session.status()


@router.post("/live/low-power", response_model=LiveStatusResponse)
async def live_low_power(req: LowPowerRequest):
    session = _session()
    await session.set_low_power(req.enabled)
    return session.status()


@router.post("/live/camera/retry", response_model=LiveStatusResponse)
async def live_camera_retry():
    session = _session()
    await session.retry_camera()
    return session.status()


@router.post("/live/model/reload", response_model=LiveStatusResponse)
async def live_model_reload():
    session = _session()
    await session.reload_model()
    return session.status()


@router.get("/live/cameras", response_model=List[CameraDevice])
async def live_cameras():
    devices = await _session().list_cameras()
    return [d.to_dict() for d in devices]


@router.get("/live/snapshot.jpg")
def live_snapshot():
    session = _session()
    jpg = session.canvas.encode_jpeg(state.config.pump.jpeg_quality if state.config else 80)
    if jpg is None:
        raise HTTPException(status_code=500, detail="Failed to encode snapshot")
    return Response(content=jpg, media_type="image/jpeg")


@router.get("/live/stream.mjpg")
def live_stream(fps: int = 5):
    session = _session()
    delay = 1.0 / max(1, min(fps, 30))
    quality = state.config.pump.jpeg_quality if state.config else 80

    async def gen():
        last_version = -1
        while True:
            canvas = session.canvas
            if canvas.version != last_version:
                jpg = canvas.encode_jpeg(quality)
                last_version = canvas.version
                if jpg is not None:
                    yield MJPEG_BOUNDARY + jpg + b"\r\n"
            await asyncio.sleep(delay)

    return StreamingResponse(gen(), media_type="multipart/x-mixed-replace; boundary=frame")


# -----------------------------------------------------------------------------
# Health / status
# -----------------------------------------------------------------------------

@router.get("/health")
def health():
    if state.config is None:
        raise HTTPException(status_code=503, detail="Config not loaded")
    summary = HealthService(
        cfg=state.config, db=state.database, sink=state.sink, session=state.session
    ).get_health_summary()
    summary["tier"] = state.tier.value if state.tier is not None else None
    summary["uptime_seconds"] = state.uptime_seconds
    return summary


def _compute_warnings(
    running: bool,
    last_frame_age_s: Optional[float],
    disk_free_pct: Optional[float],
    cpu_temp_c: Optional[float],
    last_error: Optional[dict],
) -> List[str]:
    """
    Compute warning flags for the compact status endpoint.

    Thresholds:
    - camera_offline: not streaming, or last frame older than 10s
    - camera_stale: last frame older than 2s
    - disk_low: disk_free_pct < 10
    - temp_high: cpu_temp_c > 80
    """
    warnings = []
    if not running or last_frame_age_s is None or last_frame_age_s > 10:
        warnings.append("camera_offline")
    elif last_frame_age_s > 2:
        warnings.append("camera_stale")

    if disk_free_pct is not None and disk_free_pct < 10:
        warnings.append("disk_low")

    if cpu_temp_c is not None and cpu_temp_c > 80:
        warnings.append("temp_high")

    if last_error is not None:
        warnings.append(last_error["code"])
    return warnings


@router.get("/status", response_model=CompactStatusResponse)
def compact_status():
    """
    Compact status endpoint for dashboard polling: live feed freshness,
    current count and occupancy band, host warnings.
    """
    now = time.time()
    session = state.session
    live = session.status() if session is not None else None
    pump = (live or {}).get("pump") or {}

    last_frame_ts = session.pump.stats.last_frame_ts if session is not None and session.pump is not None else None
    last_frame_age_s = (now - last_frame_ts) if last_frame_ts else None

    count = live["count"] if live else 0
    occupancy_status = None
    if session is not None:
        occupancy_status = derive_status(count, session.aggregator.location.capacity)[0].value

    db_path = state.config.storage.local_database_path if state.config else "."
    disk = HealthService.disk_usage(os.path.dirname(db_path) or ".")
    temp_c = HealthService.read_cpu_temp_c()

    last_detection_s = pump.get("last_detection_s")
    running = bool(live and live["streaming"])
    return {
        "running": running,
        "last_frame_age_s": last_frame_age_s,
        "fps": pump.get("effective_fps"),
        "last_detection_ms": last_detection_s * 1000 if last_detection_s is not None else None,
        "current_count": count,
        "occupancy_status": occupancy_status,
        "tier": live["tier"] if live else None,
        "low_power": bool(live and live["low_power"]),
        "cpu_temp_c": temp_c,
        "disk_free_pct": disk.get("pct_free"),
        "warnings": _compute_warnings(
            running, last_frame_age_s, disk.get("pct_free"), temp_c, (live or {}).get("last_error")
        ),
    }


# -----------------------------------------------------------------------------
# WebSocket events
# -----------------------------------------------------------------------------

@ws_router.websocket("/ws")
async def events_ws(websocket: WebSocket):
    hub = state.events
    if hub is None:
        await websocket.close(code=1013)
        return
    await hub.connect(websocket)
    try:
        while True:
            # Clients only listen; reading detects disconnects
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(websocket)
        logging.debug("WebSocket handler finished")
