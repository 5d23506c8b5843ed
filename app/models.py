"""
Database models and schema definitions for the NYC visitor guide.

This module defines:
- User accounts with a role (user/admin)
- Attractions with a two-state moderation workflow
- Saved trip schedules and their scheduled attractions
- Authorization predicates for attraction editing/moderation
- Audit logging
"""

from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any
from enum import Enum


DEFAULT_TRIP_NAME = "My NYC Trip"


# ─────────────────────────── ENUMS ───────────────────────────

class UserRole(str, Enum):
    """Account role stored on the users row (authoritative)"""
    USER = "user"
    ADMIN = "admin"


class AttractionStatus(str, Enum):
    """Moderation status: pending -> approved, one way"""
    PENDING = "pending"
    APPROVED = "approved"


class AuditAction(str, Enum):
    """Types of auditable actions"""
    # User actions
    USER_CREATED = "user_created"
    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"
    USER_DATA_DELETED = "user_data_deleted"

    # Attraction actions
    ATTRACTION_CREATED = "attraction_created"
    ATTRACTION_UPDATED = "attraction_updated"
    ATTRACTION_APPROVED = "attraction_approved"
    ATTRACTION_DELETED = "attraction_deleted"
    CATEGORY_CREATED = "category_created"

    # Trip actions
    TRIP_SAVED = "trip_saved"
    TRIP_DELETED = "trip_deleted"


# ─────────────────────────── DATA CLASSES ───────────────────────────

@dataclass
class ResourceLink:
    """A {text, url} link attached to an attraction"""
    text: str
    url: str

    def to_dict(self) -> Dict[str, str]:
        return {"text": self.text, "url": self.url}


@dataclass
class Attraction:
    """A catalog entry"""
    id: str
    name: str
    category: str = ""
    tags: List[str] = field(default_factory=list)

    price_range: Optional[str] = None
    duration: Optional[str] = None
    location: Optional[str] = None
    venue_size: Optional[str] = None
    walking_distance: Optional[str] = None
    notes: Optional[str] = None
    resources: List[ResourceLink] = field(default_factory=list)
    nearby_attractions: List[str] = field(default_factory=list)
    todos: List[str] = field(default_factory=list)

    # Moderation
    status: AttractionStatus = AttractionStatus.PENDING
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == AttractionStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "tags": list(self.tags),
            "price_range": self.price_range,
            "duration": self.duration,
            "location": self.location,
            "venue_size": self.venue_size,
            "walking_distance": self.walking_distance,
            "notes": self.notes,
            "resources": [r.to_dict() for r in self.resources],
            "nearby_attractions": list(self.nearby_attractions),
            "todos": list(self.todos),
            "status": self.status.value if isinstance(self.status, AttractionStatus) else self.status,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def to_stub(self) -> Dict[str, str]:
        """The id + name snapshot stored with a saved trip."""
        return {"id": self.id, "name": self.name}


@dataclass
class User:
    """User account (magic link only)"""
    id: str
    email: str
    created_at: str
    updated_at: str
    role: UserRole = UserRole.USER

    # Auth
    magic_link_token: Optional[str] = None
    magic_link_expires: Optional[str] = None
    last_login: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def can_approve(self) -> bool:
        """Only admins move attractions from pending to approved."""
        return self.is_admin

    def can_edit_attraction(self, attraction: Attraction) -> bool:
        return self.is_admin or attraction.created_by == self.id

    def can_delete(self, attraction: Attraction) -> bool:
        """Admins always; creators only until the attraction is approved."""
        if self.is_admin:
            return True
        return attraction.created_by == self.id and attraction.status == AttractionStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role.value if isinstance(self.role, UserRole) else self.role,
            "is_admin": self.is_admin,
            "can_approve": self.can_approve,
            "created_at": self.created_at,
            "last_login": self.last_login,
        }

    @property
    def display_name(self) -> str:
        return self.email.split('@')[0]


def can_edit_attraction(user: Optional[User], attraction: Attraction) -> bool:
    """Anonymous visitors can never edit."""
    if not user:
        return False
    return user.can_edit_attraction(attraction)


def can_delete_attraction(user: Optional[User], attraction: Attraction) -> bool:
    if not user:
        return False
    return user.can_delete(attraction)


@dataclass
class ScheduleDay:
    """One calendar date and the attractions planned for it"""
    date: str  # ISO date (YYYY-MM-DD)
    items: List[Dict[str, Any]] = field(default_factory=list)

    def item_ids(self) -> List[str]:
        return [item.get("id") for item in self.items]

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date, "items": [dict(item) for item in self.items]}


@dataclass
class SavedTrip:
    """Server-side summary of a saved trip"""
    id: str
    name: str
    start_date: str
    end_date: str
    created_at: str
    attraction_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "created_at": self.created_at,
            "attraction_count": self.attraction_count,
        }


@dataclass
class SaveTripResult:
    success: bool
    trip_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.trip_id:
            data["trip_id"] = self.trip_id
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class TripDetails:
    """A saved trip rebuilt into schedule days"""
    schedule: Dict[str, Any]
    attractions: List[Dict[str, Any]]
    days: List[ScheduleDay]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schedule": self.schedule,
            "attractions": self.attractions,
            "days": [d.to_dict() for d in self.days],
        }


@dataclass
class OperationResult:
    """Outcome of a repository write"""
    success: bool
    error: Optional[str] = None
    data: Any = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.error:
            result["error"] = self.error
        if self.data is not None:
            result["data"] = self.data
        return result


@dataclass
class AuditLog:
    """Audit trail entry"""
    id: str
    created_at: str
    action: AuditAction

    # Who performed the action
    actor_type: str  # "user", "admin", "system"
    actor_id: Optional[str] = None

    # What was affected
    target_type: Optional[str] = None  # "attraction", "trip", "user", "category"
    target_id: Optional[str] = None

    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "action": self.action.value if isinstance(self.action, AuditAction) else self.action,
            "actor_type": self.actor_type,
            "actor_id": self.actor_id,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "details": self.details,
        }


# ─────────────────────────── SQL SCHEMAS ───────────────────────────

# Used by init_db() in app.auth

USERS_TABLE = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    role TEXT NOT NULL DEFAULT 'user',

    -- Auth tokens
    magic_link_token TEXT,
    magic_link_expires TEXT,

    -- Timestamps
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_login TEXT
);
"""

USER_SESSIONS_TABLE = """
CREATE TABLE IF NOT EXISTS user_sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    token TEXT NOT NULL UNIQUE,
    device_info TEXT,
    ip_address TEXT,
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    last_active TEXT,
    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
);
"""

CATEGORIES_TABLE = """
CREATE TABLE IF NOT EXISTS categories (
    name TEXT PRIMARY KEY,
    created_at TEXT NOT NULL
);
"""

ATTRACTIONS_TABLE = """
CREATE TABLE IF NOT EXISTS attractions (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    category TEXT NOT NULL,
    tags TEXT DEFAULT '[]',
    price_range TEXT,
    duration TEXT,
    location TEXT,
    venue_size TEXT,
    walking_distance TEXT,
    notes TEXT,
    resources TEXT DEFAULT '[]',
    nearby_attractions TEXT DEFAULT '[]',
    todos TEXT DEFAULT '[]',

    -- Moderation
    status TEXT NOT NULL DEFAULT 'pending',
    created_by TEXT,

    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

TRIP_SCHEDULES_TABLE = """
CREATE TABLE IF NOT EXISTS trip_schedules (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    start_date TEXT NOT NULL,  -- ISO date
    end_date TEXT NOT NULL,    -- ISO date
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

SCHEDULED_ATTRACTIONS_TABLE = """
CREATE TABLE IF NOT EXISTS scheduled_attractions (
    id TEXT PRIMARY KEY,
    schedule_id TEXT NOT NULL,
    attraction_id TEXT NOT NULL,
    attraction_name TEXT NOT NULL,
    day_date TEXT NOT NULL,
    position INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    FOREIGN KEY(schedule_id) REFERENCES trip_schedules(id) ON DELETE CASCADE
);
"""

SCHEDULE_STORAGE_TABLE = """
CREATE TABLE IF NOT EXISTS schedule_storage (
    device_id TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (device_id, key)
);
"""

AUDIT_LOG_TABLE = """
CREATE TABLE IF NOT EXISTS audit_log (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    action TEXT NOT NULL,

    -- Actor (who did it)
    actor_type TEXT NOT NULL,
    actor_id TEXT,

    -- Target (what was affected)
    target_type TEXT,
    target_id TEXT,

    -- Additional details as JSON
    details TEXT DEFAULT '{}'
);
"""

# Index definitions for performance
INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_users_email ON users(email);",
    "CREATE INDEX IF NOT EXISTS idx_user_sessions_token ON user_sessions(token);",
    "CREATE INDEX IF NOT EXISTS idx_user_sessions_user ON user_sessions(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_attractions_status ON attractions(status);",
    "CREATE INDEX IF NOT EXISTS idx_attractions_created_by ON attractions(created_by);",
    "CREATE INDEX IF NOT EXISTS idx_trip_schedules_user ON trip_schedules(user_id, is_active);",
    "CREATE INDEX IF NOT EXISTS idx_scheduled_attractions_schedule ON scheduled_attractions(schedule_id);",
    "CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_log(action);",
    "CREATE INDEX IF NOT EXISTS idx_audit_target ON audit_log(target_type, target_id);",
]

ALL_TABLES = [
    USERS_TABLE,
    USER_SESSIONS_TABLE,
    CATEGORIES_TABLE,
    ATTRACTIONS_TABLE,
    TRIP_SCHEDULES_TABLE,
    SCHEDULED_ATTRACTIONS_TABLE,
    SCHEDULE_STORAGE_TABLE,
    AUDIT_LOG_TABLE,
]
