"""
Planner routes: the per-device trip schedule over HTTP.

Each browser gets a device_id cookie on first use; its schedule lives in
schedule_storage under that id, independent of any saved trip until the
user saves or loads explicitly.
"""

import os
import uuid
import logging
from typing import Optional, Dict, Any

from fastapi import APIRouter, Request, HTTPException, Depends
from fastapi.responses import JSONResponse

from app.attractions import get_attraction, get_catalog_index
from app.auth import require_user, optional_user
from app.models import User, can_edit_attraction
from app.schedule import TripSchedule, SqliteScheduleStorage, ScheduleError
from app.trips import (
    save_trip, load_trip_details, enrich_days, get_trip_owner, validate_save_request
)

logger = logging.getLogger("nycguide.planner")

router = APIRouter(prefix="/api/schedule", tags=["schedule"])

DEVICE_COOKIE = "device_id"
DEVICE_COOKIE_MAX_AGE = 365 * 24 * 60 * 60


class DeviceSchedule:
    """A TripSchedule bound to the requesting device."""

    def __init__(self, device_id: str, is_new: bool):
        self.device_id = device_id
        self.is_new = is_new
        self.schedule = TripSchedule(SqliteScheduleStorage(device_id))

    def respond(self, extra: Optional[Dict[str, Any]] = None, status_code: int = 200) -> JSONResponse:
        content = {"schedule": self.schedule.to_dict()}
        if extra:
            content.update(extra)
        resp = JSONResponse(status_code=status_code, content=content)
        if self.is_new:
            resp.set_cookie(
                DEVICE_COOKIE,
                self.device_id,
                httponly=True,
                samesite="lax",
                secure=os.getenv("BASE_URL", "").startswith("https"),
                path="/",
                max_age=DEVICE_COOKIE_MAX_AGE
            )
        return resp


def get_device_schedule(request: Request) -> DeviceSchedule:
    device_id = request.cookies.get(DEVICE_COOKIE)
    if device_id:
        return DeviceSchedule(device_id, is_new=False)
    return DeviceSchedule(str(uuid.uuid4()), is_new=True)


async def _read_json(request: Request) -> Dict[str, Any]:
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Expected a JSON object")
    return data


def _schedule_error(device: DeviceSchedule, exc: ScheduleError) -> JSONResponse:
    return device.respond({"success": False, "error": str(exc)}, status_code=400)


# ─────────────────────────── STATE ───────────────────────────

@router.get("")
async def api_get_schedule(device: DeviceSchedule = Depends(get_device_schedule)):
    return device.respond()


@router.put("/range")
async def api_set_range(request: Request, device: DeviceSchedule = Depends(get_device_schedule)):
    data = await _read_json(request)
    start, end = data.get("start"), data.get("end")
    if any(v is not None and not isinstance(v, str) for v in (start, end)):
        raise HTTPException(status_code=400, detail="start and end must be date strings")
    device.schedule.set_date_range(start, end)
    return device.respond()


@router.put("/active-day")
async def api_set_active_day(request: Request, device: DeviceSchedule = Depends(get_device_schedule)):
    data = await _read_json(request)
    index = data.get("index")
    if not isinstance(index, int) or isinstance(index, bool):
        raise HTTPException(status_code=400, detail="index must be an integer")
    try:
        device.schedule.set_active_day(index)
    except ScheduleError as e:
        return _schedule_error(device, e)
    return device.respond()


@router.post("/items")
async def api_add_item(
    request: Request,
    user: Optional[User] = Depends(optional_user),
    device: DeviceSchedule = Depends(get_device_schedule)
):
    data = await _read_json(request)
    attraction = get_attraction(str(data.get("attraction_id") or ""))
    # Pending submissions stay hidden from anyone who could not edit them
    if not attraction or (attraction.is_pending and not can_edit_attraction(user, attraction)):
        raise HTTPException(status_code=404, detail="Attraction not found")
    try:
        added = device.schedule.add_to_active_day(attraction.to_dict())
    except ScheduleError as e:
        return _schedule_error(device, e)
    return device.respond({"added": added})


@router.delete("/days/{day_index}/items/{attraction_id}")
async def api_remove_item(day_index: int, attraction_id: str, device: DeviceSchedule = Depends(get_device_schedule)):
    try:
        removed = device.schedule.remove_from_day(day_index, attraction_id)
    except ScheduleError as e:
        return _schedule_error(device, e)
    return device.respond({"removed": removed})


@router.post("/reset")
async def api_reset(device: DeviceSchedule = Depends(get_device_schedule)):
    device.schedule.reset()
    return device.respond()


# ─────────────────────────── SAVE / LOAD ───────────────────────────

@router.post("/save")
async def api_save(
    request: Request,
    user: User = Depends(require_user),
    device: DeviceSchedule = Depends(get_device_schedule)
):
    data = await _read_json(request)
    schedule = device.schedule

    name = data.get("name") or ""
    if not isinstance(name, str):
        return device.respond({"success": False, "errors": ["Trip name must be text"]}, status_code=400)

    errors = validate_save_request(schedule.start_date, schedule.end_date, schedule.days)
    if errors:
        return device.respond({"success": False, "errors": errors}, status_code=400)

    result = save_trip(user.id, name, schedule.start_date, schedule.end_date, schedule.days)
    if not result.success:
        return device.respond(result.to_dict(), status_code=500)
    return device.respond(result.to_dict(), status_code=201)


@router.post("/load/{trip_id}")
async def api_load(
    trip_id: str,
    user: User = Depends(require_user),
    device: DeviceSchedule = Depends(get_device_schedule)
):
    if get_trip_owner(trip_id) != user.id:
        raise HTTPException(status_code=404, detail="Trip not found")

    details = load_trip_details(trip_id)
    if not details:
        return device.respond({"success": False, "error": "Failed to load trip"}, status_code=500)

    days = enrich_days(details.days, get_catalog_index())
    device.schedule.replace(details.schedule["start_date"], details.schedule["end_date"], days)
    logger.info(f"Trip {trip_id} loaded onto device {device.device_id}")
    return device.respond({"success": True, "trip": {
        "id": details.schedule["id"],
        "name": details.schedule["name"],
    }})
