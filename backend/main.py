# backend/main.py
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from config import get_line_config, get_settings
from data_cache import TimetableCache
from database import init_db
from departure_lookup import DEFAULT_LIMIT, LookupOptions, lookup_departures
from service_day import DAY_TYPES, JST, current_clock, determine_day_type, parse_clock
from session_state import DepartureSession, StationPreferenceStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI()

line_config = get_line_config(settings.default_line_id)
if line_config is None:
    raise RuntimeError(f"Unsupported DEFAULT_LINE_ID: {settings.default_line_id}")

timetable_cache = TimetableCache(
    settings.data_dir,
    line_config,
    holiday_source=settings.holiday_csv_source,
    holiday_encoding=settings.holiday_csv_encoding,
)
preference_store = StationPreferenceStore()

LOOKUP_MODES = {
    "service_day": LookupOptions.service_day(),
    "simple": LookupOptions.simple(),
}


@app.on_event("startup")
async def startup_event():
    init_db()
    timetable_cache.load_all()
    logger.info(
        "Timetable state for %s: %s",
        timetable_cache.line.id,
        timetable_cache.state,
    )
    app.state.http_client = httpx.AsyncClient()
    await timetable_cache.load_holidays(app.state.http_client)


@app.on_event("shutdown")
async def shutdown_event():
    if hasattr(app.state, "http_client"):
        await app.state.http_client.aclose()
        logger.info("httpx.AsyncClient closed")


app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.frontend_urls),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_ready() -> None:
    if not timetable_cache.is_ready:
        detail = timetable_cache.error or "Timetable is still loading"
        raise HTTPException(status_code=503, detail=detail)


def _resolve_day_type(day_type: Optional[str], now: datetime) -> str:
    if day_type is None:
        return determine_day_type(now, timetable_cache.holidays)
    if day_type not in DAY_TYPES:
        raise HTTPException(status_code=400, detail=f"day_type must be one of {list(DAY_TYPES)}")
    return day_type


@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.get("/api/status")
async def get_status():
    return {
        "line_id": timetable_cache.line.id,
        "state": timetable_cache.state,
        "error": timetable_cache.error,
        "trains": {day: len(timetable_cache.rows_for(day)) for day in DAY_TYPES},
        "holidays": len(timetable_cache.holidays),
    }


@app.get("/api/lines/{line_id}")
async def get_line(line_id: str):
    logger.info("GET /api/lines/%s", line_id)

    line = get_line_config(line_id)
    if line is None:
        raise HTTPException(status_code=404, detail=f"Line not found: {line_id}")

    return {
        "id": line.id,
        "name": line.name,
        "terminus": line.terminus,
        "through_destination": line.through_destination,
        "through_arrival_station": line.through_arrival_station,
        "stations": [s.model_dump() for s in line.station_list()],
    }


@app.get("/api/stations")
async def get_stations():
    line = timetable_cache.line
    return {
        "line_id": line.id,
        "stations": line.selectable_stations(),
        "major_stations": list(line.major_stations),
    }


@app.get("/api/day-type")
async def get_day_type(at: Optional[datetime] = None):
    now = at or datetime.now(JST)
    return {
        "at": now.isoformat(),
        "day_type": determine_day_type(now, timetable_cache.holidays),
    }


@app.get("/api/departures")
async def get_departures(
    station: str,
    time: Optional[str] = None,
    day_type: Optional[str] = None,
    mode: str = "service_day",
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=20),
):
    logger.info("GET /api/departures station=%s time=%s day_type=%s", station, time, day_type)

    line = timetable_cache.line
    if not line.has_station(station):
        raise HTTPException(status_code=404, detail=f"Station not found: {station}")

    options = LOOKUP_MODES.get(mode)
    if options is None:
        raise HTTPException(status_code=400, detail=f"mode must be one of {list(LOOKUP_MODES)}")

    _require_ready()

    now = datetime.now(JST)
    reference = time or current_clock(now)
    try:
        parse_clock(reference)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    resolved_day_type = _resolve_day_type(day_type, now)
    departures = lookup_departures(
        timetable_cache,
        station,
        reference,
        resolved_day_type,
        options=options,
        limit=limit,
    )

    return {
        "station": station,
        "reference_time": reference,
        "day_type": resolved_day_type,
        "use_current_time": time is None,
        "departures": [d.to_dict() for d in departures],
    }


class LastStationBody(BaseModel):
    station: str


@app.get("/api/preferences/last-station")
async def get_last_station():
    saved = preference_store.get_last_station()
    if saved and not timetable_cache.line.has_station(saved):
        saved = None
    return {"station": saved}


@app.put("/api/preferences/last-station")
async def put_last_station(body: LastStationBody):
    line = timetable_cache.line
    if not line.has_station(body.station) or body.station == line.terminus:
        raise HTTPException(status_code=400, detail=f"Station cannot be selected: {body.station}")
    preference_store.set_last_station(body.station)
    return {"station": body.station}


# ============================================================================
# WebSocket: 発車案内のライブ更新
# ============================================================================

def _board_payload(session: DepartureSession) -> Dict[str, Any]:
    return {
        "type": "departures",
        "station": session.selected_station,
        "reference_time": session.selected_time,
        "day_type": session.day_type,
        "use_current_time": session.use_current_time,
        "ready": timetable_cache.is_ready,
        "departures": [d.to_dict() for d in session.departures],
    }


def _parse_ws_message(text: str) -> Dict[str, Any]:
    """クライアントのメッセージは JSON オブジェクトのみ受け付ける"""
    message = json.loads(text)
    if not isinstance(message, dict):
        raise ValueError("Message must be a JSON object")
    return message


@app.websocket("/ws/departures")
async def departures_ws(websocket: WebSocket, mode: str = "service_day"):
    """
    1接続 = 1セッション。クライアントからのメッセージ:
      {"station": "町田"} / {"time": "08:00"} / {"use_current_time": true} / {"day_type": "holiday"}
    状態が変わるたび、また「現在時刻」モード中は毎秒、発車案内を送る。
    """
    await websocket.accept()

    options = LOOKUP_MODES.get(mode)
    if options is None:
        await websocket.send_json(
            {"type": "error", "detail": f"mode must be one of {list(LOOKUP_MODES)}"}
        )
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    async def push(_departures) -> None:
        await websocket.send_json(_board_payload(session))

    session = DepartureSession(
        timetable_cache,
        preference_store,
        options=options,
        on_update=push,
    )

    try:
        session.start()
        await websocket.send_json(_board_payload(session))

        while True:
            text = await websocket.receive_text()
            try:
                # JSONDecodeError も ValueError のサブクラス
                message = _parse_ws_message(text)
                if "station" in message:
                    session.select_station(str(message["station"]))
                if "day_type" in message:
                    if message["day_type"] not in DAY_TYPES:
                        raise ValueError(f"Unknown day_type: {message['day_type']}")
                    session.set_day_type(message["day_type"])
                if "time" in message:
                    session.set_time(str(message["time"]))
                if message.get("use_current_time"):
                    session.enable_current_time()
            except ValueError as e:
                await websocket.send_json({"type": "error", "detail": str(e)})
                continue

            await websocket.send_json(_board_payload(session))
    except WebSocketDisconnect:
        logger.info("Departure board websocket disconnected")
    finally:
        session.close()
