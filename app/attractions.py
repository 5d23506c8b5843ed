"""
Attraction catalog for the NYC visitor guide.

Provides:
- Attraction CRUD with a pending -> approved moderation workflow
- Append-only category list
- Tag/name lookups and in-memory search filtering
- Seeding from the bundled static catalog
- JSON routes for browsing, submitting and moderating attractions
"""

import os
import uuid
import sqlite3
import json
import logging
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Request, HTTPException, Depends
from fastapi.responses import JSONResponse

from app.auth import (
    db, utc_now_iso, log_audit, optional_user, require_user, require_admin
)
from app.models import (
    Attraction, AttractionStatus, AuditAction, OperationResult, ResourceLink, User,
    can_edit_attraction, can_delete_attraction
)

logger = logging.getLogger("nycguide.attractions")

# ─────────────────────────── SETUP ───────────────────────────

router = APIRouter(tags=["attractions"])

DEFAULT_SEED_PATH = os.path.join(os.path.dirname(__file__), "data", "attractions.json")

# Fields a creator/admin may change after submission
EDITABLE_FIELDS = {
    "name", "category", "tags", "price_range", "duration", "location", "venue_size",
    "walking_distance", "notes", "resources", "nearby_attractions", "todos",
}
LIST_FIELDS = {"tags", "resources", "nearby_attractions", "todos"}


def get_seed_path() -> str:
    return os.getenv("CATALOG_SEED_PATH", DEFAULT_SEED_PATH)


# ─────────────────────────── VALIDATION ───────────────────────────

def _clean_str_list(values) -> List[str]:
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, (list, tuple)):
        return []
    cleaned = []
    for v in values:
        if not isinstance(v, (str, int, float)) or isinstance(v, bool):
            continue
        v = str(v).strip()
        if v and v not in cleaned:
            cleaned.append(v)
    return cleaned


def _parse_resources(raw) -> List[Dict[str, str]]:
    """Normalize resource entries; keeps half-filled ones so validation can reject them."""
    resources = []
    if not isinstance(raw, (list, tuple)):
        return resources
    for entry in raw:
        if isinstance(entry, str):
            # Seed data may list bare URLs
            entry = {"text": entry, "url": entry}
        if not isinstance(entry, dict):
            continue
        text = _text(entry.get("text"))
        url = _text(entry.get("url"))
        if not text and not url:
            continue
        resources.append({"text": text, "url": url})
    return resources


def _text(value) -> str:
    """Stripped string, or "" for anything that is not a string."""
    return value.strip() if isinstance(value, str) else ""


def validate_attraction(data: Dict[str, Any]) -> List[str]:
    """Return a list of human-readable problems; empty means valid."""
    errors = []
    if not _text(data.get("name")):
        errors.append("Name is required")
    if not _text(data.get("category")):
        errors.append("Category is required")
    if not _text(data.get("location")):
        errors.append("Location is required")
    resources = _parse_resources(data.get("resources"))
    if any(not r["text"] or not r["url"] for r in resources):
        errors.append("Resources must have both URL and text")
    return errors


# ─────────────────────────── DATABASE HELPERS ───────────────────────────

def _load_json_list(value) -> list:
    if not value:
        return []
    try:
        parsed = json.loads(value)
    except ValueError:
        return []
    return parsed if isinstance(parsed, list) else []


def _row_to_attraction(row: sqlite3.Row) -> Attraction:
    """Convert database row to Attraction object."""
    resources = [
        ResourceLink(text=r.get("text", ""), url=r.get("url", ""))
        for r in _load_json_list(row["resources"]) if isinstance(r, dict)
    ]
    try:
        status = AttractionStatus(row["status"])
    except ValueError:
        status = AttractionStatus.PENDING

    return Attraction(
        id=row["id"],
        name=row["name"],
        category=row["category"],
        tags=_load_json_list(row["tags"]),
        price_range=row["price_range"],
        duration=row["duration"],
        location=row["location"],
        venue_size=row["venue_size"],
        walking_distance=row["walking_distance"],
        notes=row["notes"],
        resources=resources,
        nearby_attractions=_load_json_list(row["nearby_attractions"]),
        todos=_load_json_list(row["todos"]),
        status=status,
        created_by=row["created_by"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _column_values(data: Dict[str, Any]) -> Dict[str, Any]:
    """Map submitted fields onto column values (lists become JSON text)."""
    values = {}
    for key in EDITABLE_FIELDS:
        if key not in data:
            continue
        value = data[key]
        if key == "resources":
            values[key] = json.dumps(_parse_resources(value))
        elif key in LIST_FIELDS:
            values[key] = json.dumps(_clean_str_list(value))
        elif isinstance(value, str):
            values[key] = value.strip() or None
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            values[key] = str(value)
        else:
            values[key] = None
    return values


# ─────────────────────────── ATTRACTIONS ───────────────────────────

def get_attractions(status: Optional[AttractionStatus] = AttractionStatus.APPROVED) -> List[Attraction]:
    """Catalog entries ordered by name; status=None returns everything."""
    conn = db()
    if status is None:
        rows = conn.execute("SELECT * FROM attractions ORDER BY name COLLATE NOCASE").fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM attractions WHERE status = ? ORDER BY name COLLATE NOCASE",
            (status.value,)
        ).fetchall()
    conn.close()
    return [_row_to_attraction(row) for row in rows]


def get_attraction(attraction_id: str) -> Optional[Attraction]:
    conn = db()
    row = conn.execute("SELECT * FROM attractions WHERE id = ?", (attraction_id,)).fetchone()
    conn.close()
    if not row:
        return None
    return _row_to_attraction(row)


def get_user_attractions(user_id: str) -> List[Attraction]:
    """A user's own submissions, newest first."""
    conn = db()
    rows = conn.execute("""
        SELECT * FROM attractions WHERE created_by = ?
        ORDER BY created_at DESC, rowid DESC
    """, (user_id,)).fetchall()
    conn.close()
    return [_row_to_attraction(row) for row in rows]


def get_pending_attractions() -> List[Attraction]:
    """Moderation queue, oldest first."""
    conn = db()
    rows = conn.execute("""
        SELECT * FROM attractions WHERE status = ?
        ORDER BY created_at ASC, rowid ASC
    """, (AttractionStatus.PENDING.value,)).fetchall()
    conn.close()
    return [_row_to_attraction(row) for row in rows]


def get_catalog_index() -> Dict[str, Attraction]:
    """All attractions keyed by id, for re-joining saved trips."""
    return {a.id: a for a in get_attractions(status=None)}


def create_attraction(data: Dict[str, Any], user_id: str) -> OperationResult:
    """Submit an attraction for moderation. New rows always start pending."""
    errors = validate_attraction(data)
    if errors:
        return OperationResult(success=False, error="; ".join(errors))

    values = _column_values(data)
    attraction_id = str(uuid.uuid4())
    now = utc_now_iso()

    conn = db()
    try:
        conn.execute("""
            INSERT INTO attractions (
                id, name, category, tags, price_range, duration, location, venue_size,
                walking_distance, notes, resources, nearby_attractions, todos,
                status, created_by, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            attraction_id,
            values["name"],
            values["category"],
            values.get("tags", "[]"),
            values.get("price_range"),
            values.get("duration"),
            values.get("location"),
            values.get("venue_size"),
            values.get("walking_distance"),
            values.get("notes"),
            values.get("resources", "[]"),
            values.get("nearby_attractions", "[]"),
            values.get("todos", "[]"),
            AttractionStatus.PENDING.value,
            user_id,
            now, now
        ))
        conn.execute(
            "INSERT OR IGNORE INTO categories (name, created_at) VALUES (?, ?)",
            (values["category"], now)
        )
        conn.commit()
    except sqlite3.Error as e:
        logger.error(f"Attraction create error: {e}")
        return OperationResult(success=False, error="Failed to create attraction")
    finally:
        conn.close()

    logger.info(f"Attraction submitted: {values['name']} ({attraction_id}) by user {user_id}")
    log_audit(AuditAction.ATTRACTION_CREATED, "user", actor_id=user_id,
              target_type="attraction", target_id=attraction_id, details={"name": values["name"]})
    return OperationResult(success=True, data=get_attraction(attraction_id))


def update_attraction(attraction_id: str, data: Dict[str, Any], actor_id: str = None) -> OperationResult:
    """Update editable fields; status and creator are not editable here."""
    existing = get_attraction(attraction_id)
    if not existing:
        return OperationResult(success=False, error="Attraction not found")

    merged = existing.to_dict()
    merged.update({k: v for k, v in data.items() if k in EDITABLE_FIELDS})
    errors = validate_attraction(merged)
    if errors:
        return OperationResult(success=False, error="; ".join(errors))

    updates = _column_values({k: v for k, v in data.items() if k in EDITABLE_FIELDS})
    if not updates:
        return OperationResult(success=True, data=existing)

    updates["updated_at"] = utc_now_iso()
    set_clause = ", ".join(f"{k} = ?" for k in updates.keys())
    params = list(updates.values()) + [attraction_id]

    conn = db()
    try:
        conn.execute(f"UPDATE attractions SET {set_clause} WHERE id = ?", params)
        if "category" in updates:
            conn.execute(
                "INSERT OR IGNORE INTO categories (name, created_at) VALUES (?, ?)",
                (updates["category"], updates["updated_at"])
            )
        conn.commit()
    except sqlite3.Error as e:
        logger.error(f"Attraction update error for {attraction_id}: {e}")
        return OperationResult(success=False, error="Failed to update attraction")
    finally:
        conn.close()

    log_audit(AuditAction.ATTRACTION_UPDATED, "user", actor_id=actor_id,
              target_type="attraction", target_id=attraction_id,
              details={"fields": sorted(k for k in updates if k != "updated_at")})
    return OperationResult(success=True, data=get_attraction(attraction_id))


def approve_attraction(attraction_id: str, actor_id: str = None) -> OperationResult:
    """pending -> approved. There is no way back."""
    conn = db()
    try:
        cur = conn.execute("""
            UPDATE attractions SET status = ?, updated_at = ?
            WHERE id = ? AND status = ?
        """, (AttractionStatus.APPROVED.value, utc_now_iso(), attraction_id, AttractionStatus.PENDING.value))
        conn.commit()
        affected = cur.rowcount
    except sqlite3.Error as e:
        logger.error(f"Attraction approve error for {attraction_id}: {e}")
        return OperationResult(success=False, error="Failed to approve attraction")
    finally:
        conn.close()

    if affected == 0:
        existing = get_attraction(attraction_id)
        if not existing:
            return OperationResult(success=False, error="Attraction not found")
        return OperationResult(success=False, error="Attraction is already approved")

    logger.info(f"Attraction approved: {attraction_id}")
    log_audit(AuditAction.ATTRACTION_APPROVED, "admin", actor_id=actor_id,
              target_type="attraction", target_id=attraction_id)
    return OperationResult(success=True, data=get_attraction(attraction_id))


def delete_attraction(attraction_id: str, actor_id: str = None) -> OperationResult:
    """Remove an attraction. Saved trips keep their id + name snapshot."""
    conn = db()
    try:
        cur = conn.execute("DELETE FROM attractions WHERE id = ?", (attraction_id,))
        conn.commit()
        affected = cur.rowcount
    except sqlite3.Error as e:
        logger.error(f"Attraction delete error for {attraction_id}: {e}")
        return OperationResult(success=False, error="Failed to delete attraction")
    finally:
        conn.close()

    if affected == 0:
        return OperationResult(success=False, error="Attraction not found")

    logger.info(f"Attraction deleted: {attraction_id}")
    log_audit(AuditAction.ATTRACTION_DELETED, "user", actor_id=actor_id,
              target_type="attraction", target_id=attraction_id)
    return OperationResult(success=True)


# ─────────────────────────── CATEGORIES & LOOKUPS ───────────────────────────

def get_categories() -> List[str]:
    conn = db()
    rows = conn.execute("SELECT name FROM categories ORDER BY name COLLATE NOCASE").fetchall()
    conn.close()
    return [row["name"] for row in rows]


def add_category(name: str, actor_id: str = None) -> OperationResult:
    """Append a category. Names are unique; there is no delete."""
    name = _text(name)
    if not name:
        return OperationResult(success=False, error="Category name is required")

    conn = db()
    try:
        conn.execute("INSERT INTO categories (name, created_at) VALUES (?, ?)", (name, utc_now_iso()))
        conn.commit()
    except sqlite3.IntegrityError:
        return OperationResult(success=False, error="Category already exists")
    except sqlite3.Error as e:
        logger.error(f"Category create error: {e}")
        return OperationResult(success=False, error="Failed to add category")
    finally:
        conn.close()

    log_audit(AuditAction.CATEGORY_CREATED, "user", actor_id=actor_id,
              target_type="category", target_id=name)
    return OperationResult(success=True, data=name)


def get_all_tags() -> List[str]:
    tags = set()
    for attraction in get_attractions(status=None):
        tags.update(attraction.tags)
    return sorted(tags, key=str.lower)


def get_attraction_names() -> List[Dict[str, str]]:
    return [a.to_stub() for a in get_attractions(status=None)]


def filter_attractions(
    attractions: List[Attraction],
    query: str = "",
    category: Optional[str] = None
) -> List[Attraction]:
    """
    Case-insensitive search over name, category and tags, optionally limited
    to one category. An empty query matches everything.
    """
    q = (query or "").strip().lower()
    results = []
    for a in attractions:
        if category and a.category != category:
            continue
        if q and not (
            q in a.name.lower()
            or q in (a.category or "").lower()
            or any(q in tag.lower() for tag in a.tags)
        ):
            continue
        results.append(a)
    return results


# ─────────────────────────── SEEDING ───────────────────────────

def seed_catalog(path: str = None) -> int:
    """
    Load the static catalog into empty tables as approved entries.
    Returns the number of attractions inserted (0 when already seeded).
    """
    path = path or get_seed_path()
    if not os.path.exists(path):
        logger.warning(f"Catalog seed not found: {path}")
        return 0

    conn = db()
    existing = conn.execute("SELECT COUNT(*) FROM attractions").fetchone()[0]
    if existing:
        conn.close()
        return 0

    try:
        with open(path, "r", encoding="utf-8") as f:
            seed = json.load(f)
    except (OSError, ValueError) as e:
        conn.close()
        logger.error(f"Could not read catalog seed {path}: {e}")
        return 0

    now = utc_now_iso()
    inserted = 0
    try:
        for name in seed.get("categories", []):
            conn.execute("INSERT OR IGNORE INTO categories (name, created_at) VALUES (?, ?)", (name, now))

        for item in seed.get("attractions", []):
            values = _column_values({
                "name": item.get("name"),
                "category": item.get("category"),
                "tags": item.get("tags"),
                "price_range": item.get("priceRange") or item.get("price_range"),
                "duration": item.get("duration"),
                "location": item.get("location"),
                "venue_size": item.get("venueSize") or item.get("venue_size"),
                "walking_distance": item.get("walkingDistance") or item.get("walking_distance"),
                "notes": item.get("notes"),
                "resources": item.get("resources"),
                "nearby_attractions": item.get("nearbyAttractions") or item.get("nearby_attractions"),
                "todos": item.get("todos"),
            })
            conn.execute("""
                INSERT INTO attractions (
                    id, name, category, tags, price_range, duration, location, venue_size,
                    walking_distance, notes, resources, nearby_attractions, todos,
                    status, created_by, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, ?, ?)
            """, (
                str(item.get("id") or uuid.uuid4()),
                values["name"],
                values["category"],
                values.get("tags", "[]"),
                values.get("price_range"),
                values.get("duration"),
                values.get("location"),
                values.get("venue_size"),
                values.get("walking_distance"),
                values.get("notes"),
                values.get("resources", "[]"),
                values.get("nearby_attractions", "[]"),
                values.get("todos", "[]"),
                AttractionStatus.APPROVED.value,
                now, now
            ))
            conn.execute(
                "INSERT OR IGNORE INTO categories (name, created_at) VALUES (?, ?)",
                (values["category"], now)
            )
            inserted += 1
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        logger.error(f"Catalog seed failed: {e}")
        return 0
    finally:
        conn.close()

    logger.info(f"Seeded {inserted} attractions from {path}")
    return inserted


# ─────────────────────────── ROUTES ───────────────────────────

async def _read_json(request: Request) -> Dict[str, Any]:
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Expected a JSON object")
    return data


def _require_attraction(attraction_id: str) -> Attraction:
    attraction = get_attraction(attraction_id)
    if not attraction:
        raise HTTPException(status_code=404, detail="Attraction not found")
    return attraction


@router.get("/api/attractions")
async def api_list_attractions(q: str = "", category: Optional[str] = None):
    """Approved catalog, optionally filtered."""
    attractions = filter_attractions(get_attractions(), q, category or None)
    return JSONResponse({"attractions": [a.to_dict() for a in attractions]})


@router.get("/api/attractions/names")
async def api_attraction_names():
    return JSONResponse({"attractions": get_attraction_names()})


@router.get("/api/attractions/mine")
async def api_my_attractions(user: User = Depends(require_user)):
    attractions = get_user_attractions(user.id)
    pending = sum(1 for a in attractions if a.status == AttractionStatus.PENDING)
    return JSONResponse({
        "attractions": [a.to_dict() for a in attractions],
        "total": len(attractions),
        "pending": pending,
        "approved": len(attractions) - pending,
    })


@router.get("/api/attractions/pending")
async def api_pending_attractions(admin: User = Depends(require_admin)):
    return JSONResponse({"attractions": [a.to_dict() for a in get_pending_attractions()]})


@router.get("/api/attractions/{attraction_id}")
async def api_get_attraction(attraction_id: str, user: Optional[User] = Depends(optional_user)):
    attraction = _require_attraction(attraction_id)
    # Pending submissions are only visible to people who could act on them
    if attraction.is_pending and not can_edit_attraction(user, attraction):
        raise HTTPException(status_code=404, detail="Attraction not found")
    return JSONResponse({
        "attraction": attraction.to_dict(),
        "can_edit": can_edit_attraction(user, attraction),
        "can_delete": can_delete_attraction(user, attraction),
    })


@router.post("/api/attractions")
async def api_create_attraction(request: Request, user: User = Depends(require_user)):
    data = await _read_json(request)
    errors = validate_attraction(data)
    if errors:
        return JSONResponse(status_code=400, content={"success": False, "errors": errors})

    result = create_attraction(data, user.id)
    if not result.success:
        return JSONResponse(status_code=500, content={"success": False, "error": result.error})
    return JSONResponse(status_code=201, content={"success": True, "attraction": result.data.to_dict()})


@router.patch("/api/attractions/{attraction_id}")
async def api_update_attraction(attraction_id: str, request: Request, user: User = Depends(require_user)):
    attraction = _require_attraction(attraction_id)
    if not user.can_edit_attraction(attraction):
        raise HTTPException(status_code=403, detail="You can't edit this attraction")

    data = await _read_json(request)
    merged = attraction.to_dict()
    merged.update({k: v for k, v in data.items() if k in EDITABLE_FIELDS})
    errors = validate_attraction(merged)
    if errors:
        return JSONResponse(status_code=400, content={"success": False, "errors": errors})

    result = update_attraction(attraction_id, data, actor_id=user.id)
    if not result.success:
        return JSONResponse(status_code=500, content={"success": False, "error": result.error})
    return JSONResponse({"success": True, "attraction": result.data.to_dict()})


@router.post("/api/attractions/{attraction_id}/approve")
async def api_approve_attraction(attraction_id: str, admin: User = Depends(require_admin)):
    _require_attraction(attraction_id)
    result = approve_attraction(attraction_id, actor_id=admin.id)
    if not result.success:
        return JSONResponse(status_code=409, content={"success": False, "error": result.error})
    return JSONResponse({"success": True, "attraction": result.data.to_dict()})


@router.delete("/api/attractions/{attraction_id}")
async def api_delete_attraction(attraction_id: str, user: User = Depends(require_user)):
    attraction = _require_attraction(attraction_id)
    if not user.can_delete(attraction):
        raise HTTPException(status_code=403, detail="You can't delete this attraction")

    result = delete_attraction(attraction_id, actor_id=user.id)
    if not result.success:
        return JSONResponse(status_code=500, content={"success": False, "error": result.error})
    return JSONResponse({"success": True})


@router.get("/api/categories")
async def api_categories():
    return JSONResponse({"categories": get_categories()})


@router.post("/api/categories")
async def api_add_category(request: Request, user: User = Depends(require_user)):
    data = await _read_json(request)
    result = add_category(data.get("name", ""), actor_id=user.id)
    if not result.success:
        return JSONResponse(status_code=400, content={"success": False, "error": result.error})
    return JSONResponse(status_code=201, content={"success": True, "category": result.data})


@router.get("/api/tags")
async def api_tags():
    return JSONResponse({"tags": get_all_tags()})
