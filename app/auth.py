"""
Authentication and authorization services for the NYC visitor guide.

Provides:
- Database connection helpers and schema setup
- Passwordless (magic link) sign-in
- Session tokens
- Lazy user-row creation with a stored role
- Audit logging
- FastAPI dependencies for user/admin access
"""

import os
import uuid
import secrets
import sqlite3
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List
import json
import logging

from fastapi import Request, HTTPException

from app.models import (
    User, UserRole, AuditAction, AuditLog, ALL_TABLES, INDEXES
)

logger = logging.getLogger("nycguide.auth")

SESSION_DAYS = 30
SESSION_COOKIE = "user_session"

# ─────────────────────────── DATABASE HELPERS ───────────────────────────

def get_db_path():
    """Get database path from environment."""
    return os.getenv("DB_PATH", "/data/app.db")


def db():
    """Get database connection."""
    conn = sqlite3.connect(get_db_path(), timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def utc_now_iso() -> str:
    """UTC timestamp with Z suffix and no microseconds."""
    return datetime.utcnow().isoformat(timespec="seconds") + "Z"


def init_db():
    """Create all tables and indexes."""
    db_dir = os.path.dirname(get_db_path())
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    conn = db()
    cur = conn.cursor()

    for table_sql in ALL_TABLES:
        cur.execute(table_sql)

    for index_sql in INDEXES:
        try:
            cur.execute(index_sql)
        except sqlite3.Error as e:
            logger.warning(f"Index creation warning: {e}")

    conn.commit()
    conn.close()
    logger.info("Database tables initialized")


def ensure_migrations():
    """
    Lightweight migrations for SQLite without external tooling.
    Adds columns if missing.
    """
    conn = db()
    cur = conn.cursor()

    cur.execute("PRAGMA table_info(scheduled_attractions)")
    cols = {row[1] for row in cur.fetchall()}  # row[1] = name
    if "position" not in cols:
        # Keeps per-day ordering stable across save/load
        cur.execute("ALTER TABLE scheduled_attractions ADD COLUMN position INTEGER NOT NULL DEFAULT 0")

    cur.execute("PRAGMA table_info(users)")
    cols = {row[1] for row in cur.fetchall()}
    if "last_login" not in cols:
        cur.execute("ALTER TABLE users ADD COLUMN last_login TEXT")

    conn.commit()
    conn.close()


# ─────────────────────────── TOKENS ───────────────────────────

def new_token(nbytes: int = 32) -> str:
    """URL-safe random token for sessions and sign-in links."""
    return secrets.token_urlsafe(nbytes)


def expires_in(**delta) -> str:
    """utc_now_iso() shifted forward, e.g. expires_in(days=30)."""
    return (datetime.utcnow() + timedelta(**delta)).isoformat(timespec="seconds") + "Z"


def get_magic_link_minutes() -> int:
    try:
        return int(os.getenv("MAGIC_LINK_MINUTES", "60"))
    except ValueError:
        return 60


def get_admin_emails() -> List[str]:
    """Emails promoted to admin when their user row is first created."""
    raw = os.getenv("ADMIN_EMAILS", "")
    return [e.strip().lower() for e in raw.split(",") if e.strip()]


def normalize_email(email: str) -> str:
    return email.strip().lower() if isinstance(email, str) else ""


def is_valid_email(email: str) -> bool:
    """Cheap shape check; delivery is the real test."""
    email = normalize_email(email)
    if not email or " " in email or email.count("@") != 1:
        return False
    local, domain = email.split("@")
    return bool(local) and "." in domain and not domain.startswith(".") and not domain.endswith(".")


# ─────────────────────────── USERS ───────────────────────────

def _fetch_user(where: str, value: str) -> Optional[User]:
    conn = db()
    row = conn.execute(f"SELECT * FROM users WHERE {where}", (value,)).fetchone()
    conn.close()
    return _row_to_user(row) if row else None


def get_user_by_id(user_id: str) -> Optional[User]:
    return _fetch_user("id = ?", user_id)


def get_user_by_email(email: str) -> Optional[User]:
    """Emails are stored normalized, so this is a case-insensitive lookup."""
    return _fetch_user("email = ?", normalize_email(email))


def _row_to_user(row: sqlite3.Row) -> User:
    try:
        role = UserRole(row["role"])
    except ValueError:
        role = UserRole.USER

    return User(
        id=row["id"],
        email=row["email"],
        role=role,
        magic_link_token=row["magic_link_token"],
        magic_link_expires=row["magic_link_expires"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        last_login=row["last_login"],
    )


def ensure_user(user_id: str, email: str) -> User:
    """
    Return the users row for user_id, creating it with role=user if absent.

    Emails in ADMIN_EMAILS start out as admins. An existing row's role is
    never touched here.
    """
    existing = get_user_by_id(user_id)
    if existing:
        return existing

    email = normalize_email(email)
    role = UserRole.ADMIN if email in get_admin_emails() else UserRole.USER
    now = utc_now_iso()

    conn = db()
    try:
        conn.execute("""
            INSERT INTO users (id, email, role, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
        """, (user_id, email, role.value, now, now))
        conn.commit()
        logger.info(f"User created: {email} ({role.value})")
        log_audit(AuditAction.USER_CREATED, "system", target_type="user", target_id=user_id,
                  details={"role": role.value})
    except sqlite3.IntegrityError:
        # Lost a race with another request creating the same row
        logger.debug(f"User row already exists for {user_id}")
    finally:
        conn.close()

    return get_user_by_id(user_id) or get_user_by_email(email)


def get_or_create_user_by_email(email: str) -> User:
    user = get_user_by_email(email)
    if user:
        return user
    return ensure_user(str(uuid.uuid4()), email)


def set_user_role(user_id: str, role: UserRole) -> bool:
    """Change a user's role (used for admin bootstrap and tests)."""
    conn = db()
    cur = conn.execute(
        "UPDATE users SET role = ?, updated_at = ? WHERE id = ?",
        (role.value, utc_now_iso(), user_id)
    )
    conn.commit()
    affected = cur.rowcount
    conn.close()
    return affected > 0




# ─────────────────────────── MAGIC LINKS ───────────────────────────

def create_magic_link(email: str) -> Optional[str]:
    """
    Issue a sign-in token for email, creating the user row on first use.
    Returns None for a malformed address. A new link replaces any older one.
    """
    if not is_valid_email(email):
        return None

    user = get_or_create_user_by_email(normalize_email(email))
    token = new_token(48)

    conn = db()
    conn.execute(
        "UPDATE users SET magic_link_token = ?, magic_link_expires = ?, updated_at = ? WHERE id = ?",
        (token, expires_in(minutes=get_magic_link_minutes()), utc_now_iso(), user.id)
    )
    conn.commit()
    conn.close()
    return token


def verify_magic_link(token: str) -> Optional[User]:
    """Consume a sign-in token. Each token works once, before it expires."""
    if not token:
        return None

    now = utc_now_iso()
    conn = db()
    try:
        row = conn.execute(
            "SELECT id FROM users WHERE magic_link_token = ? AND magic_link_expires > ?",
            (token, now)
        ).fetchone()
        if not row:
            return None
        # Guarded on the token so two concurrent clicks cannot both win
        cur = conn.execute("""
            UPDATE users
            SET magic_link_token = NULL, magic_link_expires = NULL, last_login = ?, updated_at = ?
            WHERE id = ? AND magic_link_token = ?
        """, (now, now, row["id"], token))
        conn.commit()
        if cur.rowcount == 0:
            return None
    finally:
        conn.close()

    return get_user_by_id(row["id"])


# ─────────────────────────── SESSIONS ───────────────────────────

def create_user_session(user_id: str, device_info: str = None, ip_address: str = None) -> str:
    """Start a SESSION_DAYS session and return its bearer token."""
    token = new_token()
    now = utc_now_iso()

    conn = db()
    conn.execute("""
        INSERT INTO user_sessions (id, user_id, token, device_info, ip_address, created_at, expires_at, last_active)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    """, (str(uuid.uuid4()), user_id, token, device_info, ip_address, now, expires_in(days=SESSION_DAYS), now))
    conn.commit()
    conn.close()
    return token


def get_user_by_session(token: str) -> Optional[User]:
    """User behind a live session; touches last_active."""
    now = utc_now_iso()
    conn = db()
    try:
        row = conn.execute("""
            SELECT users.* FROM user_sessions
            JOIN users ON users.id = user_sessions.user_id
            WHERE user_sessions.token = ? AND user_sessions.expires_at > ?
        """, (token, now)).fetchone()
        if not row:
            return None
        conn.execute("UPDATE user_sessions SET last_active = ? WHERE token = ?", (now, token))
        conn.commit()
    finally:
        conn.close()
    return _row_to_user(row)


def delete_user_session(token: str):
    conn = db()
    conn.execute("DELETE FROM user_sessions WHERE token = ?", (token,))
    conn.commit()
    conn.close()


# ─────────────────────────── AUDIT LOGGING ───────────────────────────

def log_audit(
    action: AuditAction,
    actor_type: str,
    actor_id: str = None,
    target_type: str = None,
    target_id: str = None,
    details: Dict[str, Any] = None
):
    """Append to audit_log. Failures are logged, never raised."""
    try:
        conn = db()
        try:
            conn.execute("""
                INSERT INTO audit_log (id, created_at, action, actor_type, actor_id, target_type, target_id, details)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                str(uuid.uuid4()), utc_now_iso(), action.value, actor_type, actor_id,
                target_type, target_id, json.dumps(details or {})
            ))
            conn.commit()
        finally:
            conn.close()
    except sqlite3.Error as e:
        logger.error(f"Audit write failed for {action.value}: {e}")


def _row_to_audit_log(row: sqlite3.Row) -> AuditLog:
    try:
        details = json.loads(row["details"] or "{}")
    except ValueError:
        details = {}
    try:
        action = AuditAction(row["action"])
    except ValueError:
        action = row["action"]
    return AuditLog(
        id=row["id"],
        created_at=row["created_at"],
        action=action,
        actor_type=row["actor_type"],
        actor_id=row["actor_id"],
        target_type=row["target_type"],
        target_id=row["target_id"],
        details=details,
    )


def get_audit_logs(limit: int = 100, action: str = None, target_id: str = None) -> List[AuditLog]:
    """Newest first, optionally narrowed to one action and/or target."""
    clauses, params = [], []
    if action:
        clauses.append("action = ?")
        params.append(action)
    if target_id:
        clauses.append("target_id = ?")
        params.append(target_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    conn = db()
    rows = conn.execute(
        f"SELECT * FROM audit_log {where} ORDER BY created_at DESC, rowid DESC LIMIT ?",
        params + [limit]
    ).fetchall()
    conn.close()
    return [_row_to_audit_log(row) for row in rows]


# ─────────────────────────── FASTAPI DEPENDENCIES ───────────────────────────

def get_session_token(request: Request) -> Optional[str]:
    """Session token from the cookie, or a Bearer header for API clients."""
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip() or None
    return None


async def get_current_user(request: Request) -> Optional[User]:
    token = get_session_token(request)
    return get_user_by_session(token) if token else None


async def optional_user(request: Request) -> Optional[User]:
    """Signed-in user or None; for routes that show more to some callers."""
    return await get_current_user(request)


async def require_user(request: Request) -> User:
    user = await get_current_user(request)
    if not user:
        raise HTTPException(status_code=401, detail="Sign in required")
    return user


async def require_admin(request: Request) -> User:
    """Require a user whose stored role is admin."""
    user = await require_user(request)
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
