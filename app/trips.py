"""
Saved trips for the NYC visitor guide.

Synchronizes a trip schedule with server-side storage:
- save: one trip_schedules row plus one scheduled_attractions row per
  (day, attraction), written in a single transaction
- list/load: active trips for a user, and a single trip rebuilt into days
- delete: soft delete of one trip, hard delete of everything a user owns

Scheduled attractions keep only the attraction id and name; callers re-join
loaded trips against the live catalog with enrich_days().
"""

import uuid
import sqlite3
import logging
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, HTTPException, Depends
from fastapi.responses import JSONResponse

from app.attractions import get_catalog_index
from app.auth import db, utc_now_iso, log_audit, require_user
from app.models import (
    Attraction, AuditAction, DEFAULT_TRIP_NAME, SavedTrip, SaveTripResult,
    ScheduleDay, TripDetails, User
)
from app.schedule import days_in_range

logger = logging.getLogger("nycguide.trips")

# ─────────────────────────── SETUP ───────────────────────────

router = APIRouter(prefix="/api/trips", tags=["trips"])


def _day_date(day) -> str:
    return day.date if isinstance(day, ScheduleDay) else day.get("date")


def _day_items(day) -> List[Dict[str, Any]]:
    return day.items if isinstance(day, ScheduleDay) else (day.get("items") or [])


def validate_save_request(start_date: Optional[str], end_date: Optional[str], days) -> List[str]:
    """Caller-side preconditions for save_trip; the service itself trusts its input."""
    errors = []
    if not start_date or not end_date:
        errors.append("Please select trip dates")
    if not any(_day_items(d) for d in (days or [])):
        errors.append("Add at least one attraction before saving")
    return errors


# ─────────────────────────── SAVE ───────────────────────────

def save_trip(
    user_id: str,
    trip_name: str,
    start_date: str,
    end_date: str,
    days: List[Any],
) -> SaveTripResult:
    """
    Persist a trip. The schedule row and its attraction rows commit together;
    if the attraction rows fail, the schedule row is rolled back with them.
    """
    name = (trip_name.strip() if isinstance(trip_name, str) else "") or DEFAULT_TRIP_NAME
    schedule_id = str(uuid.uuid4())
    now = utc_now_iso()

    try:
        conn = db()
    except sqlite3.Error as e:
        logger.error(f"Save trip error: {e}")
        return SaveTripResult(success=False, error="Failed to save trip schedule")

    try:
        try:
            conn.execute("""
                INSERT INTO trip_schedules (id, user_id, name, start_date, end_date, is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 1, ?, ?)
            """, (schedule_id, user_id, name, start_date, end_date, now, now))
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Schedule creation error: {e}")
            return SaveTripResult(success=False, error="Failed to save trip schedule")

        rows = []
        for day in days or []:
            for position, item in enumerate(_day_items(day)):
                rows.append((
                    str(uuid.uuid4()), schedule_id, item.get("id"), item.get("name"),
                    _day_date(day), position, now
                ))

        try:
            if rows:
                conn.executemany("""
                    INSERT INTO scheduled_attractions (id, schedule_id, attraction_id, attraction_name, day_date, position, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, rows)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Attractions save error for schedule {schedule_id}: {e}")
            return SaveTripResult(success=False, error="Failed to save trip attractions")
    finally:
        conn.close()

    logger.info(f"Trip saved: {name} ({schedule_id}) with {len(rows)} attraction(s) for user {user_id}")
    log_audit(AuditAction.TRIP_SAVED, "user", actor_id=user_id, target_type="trip",
              target_id=schedule_id, details={"attraction_count": len(rows)})
    return SaveTripResult(success=True, trip_id=schedule_id)


# ─────────────────────────── LOAD ───────────────────────────

def load_user_trips(user_id: str) -> List[SavedTrip]:
    """Active trips for a user, newest first. Errors read as 'no trips'."""
    try:
        conn = db()
        try:
            rows = conn.execute("""
                SELECT t.id, t.name, t.start_date, t.end_date, t.created_at,
                       COUNT(sa.id) AS attraction_count
                FROM trip_schedules t
                LEFT JOIN scheduled_attractions sa ON sa.schedule_id = t.id
                WHERE t.user_id = ? AND t.is_active = 1
                GROUP BY t.id
                ORDER BY t.created_at DESC, t.rowid DESC
            """, (user_id,)).fetchall()
        finally:
            conn.close()
    except sqlite3.Error as e:
        logger.error(f"Load trips error for user {user_id}: {e}")
        return []

    return [
        SavedTrip(
            id=row["id"],
            name=row["name"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            created_at=row["created_at"],
            attraction_count=row["attraction_count"] or 0,
        )
        for row in rows
    ]


def get_trip_owner(trip_id: str) -> Optional[str]:
    """user_id of an active trip, or None."""
    try:
        conn = db()
        try:
            row = conn.execute(
                "SELECT user_id FROM trip_schedules WHERE id = ? AND is_active = 1", (trip_id,)
            ).fetchone()
        finally:
            conn.close()
    except sqlite3.Error as e:
        logger.error(f"Trip owner lookup error for {trip_id}: {e}")
        return None
    return row["user_id"] if row else None


def load_trip_details(trip_id: str) -> Optional[TripDetails]:
    """
    Rebuild an active trip into one ScheduleDay per calendar date in its range.
    Returns None if the trip is missing, inactive, or a query fails.
    """
    try:
        conn = db()
        try:
            schedule = conn.execute(
                "SELECT * FROM trip_schedules WHERE id = ? AND is_active = 1", (trip_id,)
            ).fetchone()
            if not schedule:
                logger.warning(f"Schedule load error: trip {trip_id} not found or inactive")
                return None

            rows = conn.execute("""
                SELECT * FROM scheduled_attractions
                WHERE schedule_id = ?
                ORDER BY day_date ASC, position ASC, rowid ASC
            """, (trip_id,)).fetchall()
        finally:
            conn.close()
    except sqlite3.Error as e:
        logger.error(f"Load trip details error for {trip_id}: {e}")
        return None

    by_date: Dict[str, List[Dict[str, Any]]] = {}
    for row in rows:
        by_date.setdefault(row["day_date"], []).append({
            "id": row["attraction_id"],
            "name": row["attraction_name"],
        })

    days = [
        ScheduleDay(date=d, items=by_date.get(d, []))
        for d in days_in_range(schedule["start_date"], schedule["end_date"])
    ]

    return TripDetails(
        schedule=dict(schedule),
        attractions=[dict(row) for row in rows],
        days=days,
    )


def enrich_days(days: List[ScheduleDay], catalog: Dict[str, Attraction]) -> List[ScheduleDay]:
    """
    Swap stored {id, name} stubs for full catalog entries. Ids the catalog no
    longer has stay as stubs.
    """
    enriched = []
    for day in days:
        items = []
        for item in day.items:
            attraction = catalog.get(item.get("id"))
            items.append(attraction.to_dict() if attraction else {"id": item.get("id"), "name": item.get("name")})
        enriched.append(ScheduleDay(date=day.date, items=items))
    return enriched


# ─────────────────────────── DELETE ───────────────────────────

def delete_trip_by_id(trip_id: str) -> bool:
    """Soft delete: the trip disappears from lists and loads."""
    try:
        conn = db()
        try:
            cur = conn.execute(
                "UPDATE trip_schedules SET is_active = 0, updated_at = ? WHERE id = ?",
                (utc_now_iso(), trip_id)
            )
            conn.commit()
            affected = cur.rowcount
        finally:
            conn.close()
    except sqlite3.Error as e:
        logger.error(f"Delete trip error for {trip_id}: {e}")
        return False

    if affected == 0:
        return False

    logger.info(f"Trip deleted: {trip_id}")
    return True


def delete_user_data(user_id: str) -> bool:
    """
    Erase everything a user owns: trips (active or not), their attractions,
    sessions and the users row. All or nothing.
    """
    try:
        conn = db()
        try:
            conn.execute("""
                DELETE FROM scheduled_attractions
                WHERE schedule_id IN (SELECT id FROM trip_schedules WHERE user_id = ?)
            """, (user_id,))
            trips = conn.execute("DELETE FROM trip_schedules WHERE user_id = ?", (user_id,)).rowcount
            conn.execute("DELETE FROM user_sessions WHERE user_id = ?", (user_id,))
            conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()
    except sqlite3.Error as e:
        logger.error(f"Delete user data error for {user_id}: {e}")
        return False

    logger.info(f"User data deleted for {user_id} ({trips} trip(s))")
    log_audit(AuditAction.USER_DATA_DELETED, "user", actor_id=user_id, target_type="user",
              target_id=user_id, details={"trips_deleted": trips})
    return True


# ─────────────────────────── ROUTES ───────────────────────────

def _require_owned_trip(trip_id: str, user: User):
    # Someone else's trip looks the same as a missing one
    if get_trip_owner(trip_id) != user.id:
        raise HTTPException(status_code=404, detail="Trip not found")


@router.get("")
async def api_list_trips(user: User = Depends(require_user)):
    trips = load_user_trips(user.id)
    return JSONResponse({"trips": [t.to_dict() for t in trips]})


@router.get("/{trip_id}")
async def api_trip_details(trip_id: str, user: User = Depends(require_user)):
    _require_owned_trip(trip_id, user)

    details = load_trip_details(trip_id)
    if not details:
        raise HTTPException(status_code=404, detail="Trip not found")

    details.days = enrich_days(details.days, get_catalog_index())
    return JSONResponse(details.to_dict())


@router.delete("/{trip_id}")
async def api_delete_trip(trip_id: str, user: User = Depends(require_user)):
    _require_owned_trip(trip_id, user)

    if not delete_trip_by_id(trip_id):
        return JSONResponse(status_code=500, content={"success": False, "error": "Failed to delete trip"})

    log_audit(AuditAction.TRIP_DELETED, "user", actor_id=user.id, target_type="trip", target_id=trip_id)
    return JSONResponse({"success": True})
